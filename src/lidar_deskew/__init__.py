from lidar_deskew.common.sensors import InertialSample, PointSample, PoseSample, Sweep
from lidar_deskew.common.settings import Settings
from lidar_deskew.deskewer import Deskewer
from lidar_deskew.pipeline.deskew_worker import DeskewResult, DeskewStatistics, SweepStatus

__version__ = "0.1.0"
