import logging
from typing import Tuple

import torch
from scipy.spatial.transform import Rotation

from lidar_deskew.common.pose import Pose
from lidar_deskew.common.sensors import PoseSample, Sweep
from lidar_deskew.pipeline.motion_propagator import Trajectory

_logger = logging.getLogger(__name__)


## Interpolates @p trajectory at each of @p times.
# For ts[j] <= t <= ts[j+1], orientation is slerped and position lerped between samples j and j+1
# with s = (t - ts[j]) / (ts[j+1] - ts[j]).
# @param times: (n,) float64 tensor of query times, any order
# @returns (rotations, positions, valid): a scipy Rotation of n elements, (n,3) float64 positions,
#          and an (n,) bool tensor that's False where a time falls outside the trajectory.
#          Those times are clamped to the nearest end.
def interpolate_trajectory(trajectory: Trajectory,
                           times: torch.Tensor) -> Tuple[Rotation, torch.Tensor, torch.Tensor]:
    ts = trajectory.timestamps
    m = len(trajectory)

    valid = (times >= ts[0]) & (times <= ts[-1])

    if m == 1:
        idx = torch.zeros(times.shape[0], dtype=torch.long)
        return trajectory.rotations[idx.numpy()], trajectory.positions[idx], valid

    # Capture times are sorted within a sweep, but searchsorted doesn't need them to be.
    j = (torch.searchsorted(ts, times, right=True) - 1).clamp(0, m - 2)

    t0, t1 = ts[j], ts[j + 1]
    dt = t1 - t0
    s = torch.where(dt > 0, (times - t0) / torch.where(dt > 0, dt, torch.ones_like(dt)), torch.zeros_like(dt))
    s = s.clamp(0., 1.)

    positions = (1 - s)[:, None] * trajectory.positions[j] + s[:, None] * trajectory.positions[j + 1]

    # Slerp as q_j * exp(s * log(q_j^-1 q_{j+1})), with the relative rotation computed once per segment
    segment_rotvecs = (trajectory.rotations[:-1].inv() * trajectory.rotations[1:]).as_rotvec()
    j_np, s_np = j.numpy(), s.numpy()
    rotations = trajectory.rotations[j_np] * Rotation.from_rotvec(segment_rotvecs[j_np] * s_np[:, None])

    return rotations, positions, valid


class PointDeskewer:
    """ Re-projects every point of a sweep into the world frame using the body pose at the
    point's own capture time.

    p_world = R(q_ti) (R_ext p_lidar + t_ext) + p_ti

    Points are independent of each other, so the whole sweep is transformed as one batch.
    """

    ## Constructor
    # @param T_lidar_to_body: Extrinsic calibration, transforms points from the lidar frame to the body frame
    # @param use_gpu: If true, will do the batched transform on the GPU
    def __init__(self, T_lidar_to_body: Pose, use_gpu: bool = False) -> None:
        self._t_lidar_to_body = T_lidar_to_body

        if use_gpu and not torch.cuda.is_available():
            _logger.warning("deskew.use_gpu is set but CUDA is unavailable. Deskewing on the CPU.")
            use_gpu = False
        self._device = 'cuda' if use_gpu else 'cpu'

        self.num_out_of_window_points = 0

    ## Transforms every point of @p sweep by the single pose of @p anchor. No motion correction.
    # @returns the distorted sweep in the world frame
    def distort(self, sweep: Sweep, anchor: PoseSample) -> Sweep:
        return sweep.transform(anchor.get_pose() * self._t_lidar_to_body)

    ## Deskews @p sweep along @p trajectory.
    # @returns (deskewed_sweep, out_of_window): the sweep in the world frame, and a mask of points whose
    #          capture time fell outside the trajectory. Those keep the distorted position.
    def deskew(self, sweep: Sweep, anchor: PoseSample, trajectory: Trajectory) -> Tuple[Sweep, torch.Tensor]:
        if len(sweep) == 0:
            return sweep.clone(), torch.zeros(0, dtype=torch.bool)

        capture_times = sweep.get_capture_times().cpu()

        rotations, positions, valid = interpolate_trajectory(trajectory, capture_times)

        device = self._device
        ext = self._t_lidar_to_body.get_transformation_matrix().to(device)
        rotation_matrices = torch.from_numpy(rotations.as_matrix()).to(device)
        positions = positions.to(device)

        points_lidar = sweep.points.to(device=device, dtype=torch.float64)
        points_body = points_lidar @ ext[:3, :3].T + ext[:3, 3]
        points_world = (rotation_matrices @ points_body.unsqueeze(2)).squeeze(2) + positions

        out_of_window = ~valid
        num_invalid = int(out_of_window.sum().item())
        if num_invalid > 0:
            self.num_out_of_window_points += num_invalid
            _logger.error("Sweep %d: %d of %d points captured outside the trajectory [%.6f, %.6f]. "
                          "Leaving them distorted.", sweep.seq, num_invalid, len(sweep),
                          trajectory.get_start_time(), trajectory.get_end_time())
            distorted = (anchor.get_pose() * self._t_lidar_to_body).transform_points(points_lidar)
            points_world[out_of_window.to(device)] = distorted[out_of_window.to(device)]

        deskewed_points = points_world.to(device=sweep.points.device, dtype=sweep.points.dtype)
        return sweep.with_points(deskewed_points), out_of_window
