from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
import torch
from scipy.spatial.transform import Rotation

from lidar_deskew.common.pose import Pose, quaternion_to_rotation, rotation_to_quaternion
from lidar_deskew.common.sensors import PoseSample
from lidar_deskew.common.settings import Settings
from lidar_deskew.pipeline.imu_window import InertialWindow


@dataclass
class TrajectorySample:
    """ Body state in the world frame at one instant. orientation is ordered [w,x,y,z].
    """
    timestamp: float
    orientation: torch.Tensor
    position: torch.Tensor
    velocity: torch.Tensor

    def get_pose(self) -> Pose:
        return Pose.from_quaternion(self.orientation, self.position)


class Trajectory:
    """ A time-ordered sequence of body states, stored column-wise.
    """

    ## Constructor
    # @param timestamps: (n,) float64 tensor, non-decreasing
    # @param rotations: A scipy Rotation holding n body to world rotations
    # @param positions: (n,3) float64 tensor
    # @param velocities: (n,3) float64 tensor, world frame
    def __init__(self, timestamps: torch.Tensor, rotations: Rotation,
                 positions: torch.Tensor, velocities: torch.Tensor) -> None:
        self.timestamps = timestamps
        self.rotations = rotations
        self.positions = positions
        self.velocities = velocities

    def __len__(self) -> int:
        return self.timestamps.shape[0]

    def __getitem__(self, idx: int) -> TrajectorySample:
        return TrajectorySample(self.timestamps[idx].item(),
                                torch.from_numpy(rotation_to_quaternion(self.rotations[idx])),
                                self.positions[idx].clone(),
                                self.velocities[idx].clone())

    def get_start_time(self) -> float:
        return self.timestamps[0].item()

    def get_end_time(self) -> float:
        return self.timestamps[-1].item()

    ## @returns True if the trajectory brackets [@p t_start, @p t_end]
    def covers(self, t_start: float, t_end: float) -> bool:
        return len(self) > 0 and self.get_start_time() <= t_start and t_end <= self.get_end_time()

    ## @returns the body to world transform at sample @p idx
    def get_pose(self, idx: int) -> Pose:
        return Pose.from_rotation_translation(self.rotations[idx], self.positions[idx])


class MotionPropagator:
    """ Integrates inertial readings into a short trajectory, starting from a known pose.

    First-order (Euler) integration, one inertial step at a time:
        q_{i+1} = q_i * exp((w_i - b_g) dt)
        a_i     = q_i (alpha_i - b_a) - g
        v_{i+1} = v_i + a_i dt
        p_{i+1} = p_i + v_i dt + a_i dt^2 / 2
    """

    ## Constructor
    # @param gravity: Gravity vector in the world frame, subtracted from the rotated specific force
    # @param gyro_bias: Subtracted from every angular velocity reading
    # @param accel_bias: Subtracted from every linear acceleration reading
    def __init__(self,
                 gravity: Sequence[float],
                 gyro_bias: Sequence[float] = (0., 0., 0.),
                 accel_bias: Sequence[float] = (0., 0., 0.)) -> None:
        self._gravity = np.asarray(gravity, dtype=np.float64).reshape(3)
        self._gyro_bias = np.asarray(gyro_bias, dtype=np.float64).reshape(3)
        self._accel_bias = np.asarray(accel_bias, dtype=np.float64).reshape(3)

    ## Builds a propagator from the imu settings (gravity, gyro_bias, accel_bias)
    def from_settings(imu_settings: Settings) -> "MotionPropagator":
        return MotionPropagator(imu_settings.gravity, imu_settings.gyro_bias, imu_settings.accel_bias)

    ## Propagates @p anchor through @p window.
    # @returns a Trajectory with one sample per window timestamp. The first sample is the anchor
    #          state itself, placed at the window's start time.
    def propagate(self, anchor: PoseSample, window: InertialWindow) -> Union[Trajectory, None]:
        if len(window) == 0:
            return None

        ts = window.timestamps.numpy()
        gyro = window.angular_velocities.numpy() - self._gyro_bias
        acce = window.linear_accelerations.numpy() - self._accel_bias

        q0 = quaternion_to_rotation(anchor.orientation)
        q = [q0]
        p = [anchor.position.numpy().copy()]
        v = [q0.apply(anchor.linear_velocity.numpy())]

        for i in range(1, len(ts)):
            dt = ts[i] - ts[i - 1]
            q_o, p_o, v_o = q[-1], p[-1], v[-1]

            a_world = q_o.apply(acce[i - 1]) - self._gravity

            q.append(q_o * Rotation.from_rotvec(gyro[i - 1] * dt))
            v.append(v_o + a_world * dt)
            p.append(p_o + v_o * dt + 0.5 * a_world * dt * dt)

        return Trajectory(window.timestamps.clone(),
                          Rotation.concatenate(q),
                          torch.from_numpy(np.stack(p)),
                          torch.from_numpy(np.stack(v)))
