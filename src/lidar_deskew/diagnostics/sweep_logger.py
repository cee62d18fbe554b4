import logging
import os

import open3d as o3d
import torch

from lidar_deskew.common.pose_utils import dump_trajectory_to_tum
from lidar_deskew.common.signals import Slot, StopSignal
from lidar_deskew.pipeline.deskew_worker import DeskewResult

_logger = logging.getLogger(__name__)

SWEEP_LOG_HEADER = ("count,seq,anchor_time,sweep_start,sweep_end,num_points,imu_samples,"
                    "window_start,window_end,out_of_window,end_yaw,end_pitch,end_roll,end_x,end_y,end_z\n")


"""
Listens to deskew results on the given slot, and writes a report of each sweep to disk.
"""


class SweepLogger:

    ## Constructor
    # @param result_slot: Slot registered on the Deskewer's output
    # @param log_directory: Where to write the report. Created if needed.
    # @param write_clouds: If set, every deskewed (and distorted, when available) sweep is written as a pcd.
    def __init__(self, result_slot: Slot, log_directory: str, write_clouds: bool = False) -> None:
        self._result_slot = result_slot
        self._log_directory = os.path.expanduser(log_directory)
        self._write_clouds = write_clouds

        os.makedirs(self._log_directory, exist_ok=True)
        if self._write_clouds:
            os.makedirs(f"{self._log_directory}/clouds", exist_ok=True)

        with open(f"{self._log_directory}/sweeps.csv", "w+") as f:
            f.write(SWEEP_LOG_HEADER)

        self._timestamps = torch.zeros(0, dtype=torch.float64)
        self._anchor_poses = torch.zeros((0, 4, 4), dtype=torch.float64)

        self._end_timestamps = torch.zeros(0, dtype=torch.float64)
        self._end_poses = torch.zeros((0, 4, 4), dtype=torch.float64)

        self._done = False
        self.num_logged = 0

    def is_done(self) -> bool:
        return self._done

    def update(self) -> None:
        while self._result_slot.has_value():
            result = self._result_slot.get_value()
            if isinstance(result, StopSignal):
                self._done = True
                break

            self._log_result(result)

    def _log_result(self, result: DeskewResult) -> None:
        sweep = result.deskewed
        trajectory = result.trajectory

        anchor_pose = result.anchor.get_pose().get_transformation_matrix()
        end_pose = trajectory.get_pose(len(trajectory) - 1)
        end_ypr = end_pose.get_ypr()
        end_xyz = end_pose.get_translation()

        self._timestamps = torch.cat([self._timestamps, torch.tensor([result.anchor.timestamp], dtype=torch.float64)])
        self._anchor_poses = torch.cat([self._anchor_poses, anchor_pose.unsqueeze(0)])
        self._end_timestamps = torch.cat([self._end_timestamps,
                                          torch.tensor([trajectory.get_end_time()], dtype=torch.float64)])
        self._end_poses = torch.cat([self._end_poses, end_pose.get_transformation_matrix().unsqueeze(0)])

        with open(f"{self._log_directory}/sweeps.csv", "a+") as f:
            f.write(f"{result.count},{sweep.seq},{result.anchor.timestamp:.6f},"
                    f"{sweep.get_start_time():.6f},{sweep.get_end_time():.6f},{len(sweep)},"
                    f"{len(result.window)},{result.window.get_start_time():.6f},{result.window.get_end_time():.6f},"
                    f"{int(result.out_of_window.sum().item())},"
                    f"{end_ypr[0]:.4f},{end_ypr[1]:.4f},{end_ypr[2]:.4f},"
                    f"{end_xyz[0].item():.4f},{end_xyz[1].item():.4f},{end_xyz[2].item():.4f}\n")

        if self._write_clouds:
            o3d.io.write_point_cloud(f"{self._log_directory}/clouds/deskewed_{result.count}.pcd",
                                     sweep.build_point_cloud())
            if result.distorted is not None:
                o3d.io.write_point_cloud(f"{self._log_directory}/clouds/distorted_{result.count}.pcd",
                                         result.distorted.build_point_cloud())

        self.num_logged += 1

    def finish(self) -> None:
        self.update()

        # Dump it all to TUM format
        os.makedirs(f"{self._log_directory}/trajectory", exist_ok=True)
        dump_trajectory_to_tum(self._anchor_poses, self._timestamps,
                               f"{self._log_directory}/trajectory/anchor_poses.txt")
        dump_trajectory_to_tum(self._end_poses, self._end_timestamps,
                               f"{self._log_directory}/trajectory/propagated_end_poses.txt")

        _logger.info("Wrote %d sweep reports to %s", self.num_logged, self._log_directory)
