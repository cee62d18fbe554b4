"""
Loads recordings stored as CSV files and feeds them to a Deskewer in arrival order.

A recording directory holds:
    imu.csv        timestamp,wx,wy,wz,ax,ay,az
    odometry.csv   timestamp,x,y,z,qw,qx,qy,qz,vx,vy,vz
    sweeps/        one <start time in ns>.csv per sweep, with columns t_ns,x,y,z,intensity,reflectivity
"""

import glob
import logging
import os
from typing import List, Tuple, Union

import numpy as np
import pandas as pd
import torch

from lidar_deskew.common.pose_utils import build_pose_samples_from_df
from lidar_deskew.common.sensors import NANOSECONDS_PER_SECOND, InertialSample, PointSample, PoseSample, Sweep
from lidar_deskew.deskewer import Deskewer

_logger = logging.getLogger(__name__)

IMU_COLUMNS = ["timestamp", "wx", "wy", "wz", "ax", "ay", "az"]
SWEEP_COLUMNS = ["t_ns", "x", "y", "z", "intensity", "reflectivity"]


def load_imu_csv(path: str) -> List[InertialSample]:
    data = pd.read_csv(path)[IMU_COLUMNS].to_numpy(dtype=np.float64)
    return [InertialSample(row[0], row[1:4], row[4:7]) for row in data]


def load_odometry_csv(path: str) -> List[PoseSample]:
    return build_pose_samples_from_df(pd.read_csv(path))


## Loads one sweep. The file name (without extension) is the start time in nanoseconds.
def load_sweep_csv(path: str, seq: int = -1) -> Sweep:
    start_ns = int(os.path.splitext(os.path.basename(path))[0])

    df = pd.read_csv(path)[SWEEP_COLUMNS].sort_values("t_ns", kind="stable")

    samples = [PointSample(int(row.t_ns), torch.tensor([row.x, row.y, row.z]), row.intensity, row.reflectivity)
               for row in df.itertuples(index=False)]

    return Sweep.from_point_samples(start_ns / NANOSECONDS_PER_SECOND, samples, seq)


## Loads a whole recording directory.
# @returns a list of (arrival_time, sample) sorted by arrival time. Sweeps arrive once their last point is captured.
def load_recording(recording_dir: str, duration: float = None) -> List[Tuple[float, Union[InertialSample, PoseSample, Sweep]]]:
    events = []

    for sample in load_imu_csv(os.path.join(recording_dir, "imu.csv")):
        events.append((sample.timestamp, sample))

    for pose in load_odometry_csv(os.path.join(recording_dir, "odometry.csv")):
        events.append((pose.timestamp, pose))

    sweep_paths = sorted(glob.glob(os.path.join(recording_dir, "sweeps", "*.csv")),
                         key=lambda p: int(os.path.splitext(os.path.basename(p))[0]))
    for seq, path in enumerate(sweep_paths):
        sweep = load_sweep_csv(path, seq)
        events.append((sweep.get_end_time(), sweep))

    # Stable, so samples with equal arrival times keep the order above
    events.sort(key=lambda e: e[0])

    if duration is not None and len(events) > 0:
        end_time = events[0][0] + duration
        events = [e for e in events if e[0] <= end_time]

    _logger.info("Loaded %d events from %s", len(events), recording_dir)
    return events


## Feeds @p events to @p deskewer, dispatching on sample type. The deskewer must be started.
def replay(deskewer: Deskewer, events: List[Tuple[float, Union[InertialSample, PoseSample, Sweep]]]) -> None:
    for _, sample in events:
        if isinstance(sample, InertialSample):
            deskewer.process_imu(sample)
        elif isinstance(sample, PoseSample):
            deskewer.process_pose(sample)
        elif isinstance(sample, Sweep):
            deskewer.process_sweep(sample)
        else:
            raise ValueError(f"Can't replay a sample of type {type(sample).__name__}")
