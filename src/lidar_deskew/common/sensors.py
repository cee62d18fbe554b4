from dataclasses import dataclass
from typing import List, Sequence

import open3d as o3d
import torch

from lidar_deskew.common.pose import Pose

NANOSECONDS_PER_SECOND = 1e9


def _as_vector(value) -> torch.Tensor:
    vec = torch.as_tensor(value, dtype=torch.float64).reshape(-1)
    assert vec.shape[0] == 3, f"Expected a 3-vector, got shape {tuple(vec.shape)}"
    return vec


@dataclass
class InertialSample:
    """ A single gyroscope + accelerometer reading, in the body frame.
    """
    timestamp: float
    angular_velocity: torch.Tensor
    linear_acceleration: torch.Tensor

    def __post_init__(self):
        self.timestamp = float(self.timestamp)
        self.angular_velocity = _as_vector(self.angular_velocity)
        self.linear_acceleration = _as_vector(self.linear_acceleration)


@dataclass
class PoseSample:
    """ An odometry estimate of the body in the world frame.

    orientation is a unit quaternion ordered [w,x,y,z]. linear_velocity is expressed in the
    body frame, as odometry twists usually are.
    """
    timestamp: float
    orientation: torch.Tensor
    position: torch.Tensor
    linear_velocity: torch.Tensor

    def __post_init__(self):
        self.timestamp = float(self.timestamp)
        self.orientation = torch.as_tensor(self.orientation, dtype=torch.float64).reshape(4)
        self.orientation = self.orientation / torch.linalg.norm(self.orientation)
        self.position = _as_vector(self.position)
        self.linear_velocity = _as_vector(self.linear_velocity)

    ## @returns the body to world transform of this sample
    def get_pose(self) -> Pose:
        return Pose.from_quaternion(self.orientation, self.position)

    ## @returns the velocity rotated into the world frame
    def get_world_velocity(self) -> torch.Tensor:
        return self.get_pose().get_rotation_matrix() @ self.linear_velocity


@dataclass
class PointSample:
    """ One lidar return. relative_time is the offset from the sweep start in nanoseconds.
    """
    relative_time: int
    position: torch.Tensor
    intensity: float
    reflectivity: float


class Sweep:
    """ Sweep class holding one full acquisition cycle of the lidar.

    Points are stored column-wise. Each point carries its capture time as an offset
    (nanoseconds) from start_timestamp.
    """

    ## Constructor
    # @param start_timestamp: Time (seconds) at which the first point of the sweep could have been captured
    # @param relative_times: Offset of each point from @p start_timestamp in nanoseconds. n tensor
    # @param points: Position of each point in the lidar frame. nx3 tensor
    # @param intensities: n tensor
    # @param reflectivities: n tensor
    # @param seq: Sequence number assigned by the sensor driver, used for reporting only.
    # @precond: relative_times are non-negative and sorted.
    def __init__(self,
                 start_timestamp: float,
                 relative_times: torch.Tensor = None,
                 points: torch.Tensor = None,
                 intensities: torch.Tensor = None,
                 reflectivities: torch.Tensor = None,
                 seq: int = -1) -> None:

        self.start_timestamp = float(start_timestamp)
        self.relative_times = torch.zeros(0, dtype=torch.int64) if relative_times is None else relative_times
        self.points = torch.zeros((0, 3), dtype=torch.float32) if points is None else points
        self.intensities = torch.zeros(0, dtype=torch.float32) if intensities is None else intensities
        self.reflectivities = torch.zeros(0, dtype=torch.float32) if reflectivities is None else reflectivities
        self.seq = seq

        n = self.points.shape[0]
        assert self.relative_times.shape[0] == n and self.intensities.shape[0] == n \
            and self.reflectivities.shape[0] == n, "All point fields must have the same length"

    ## Builds a sweep from a list of individual PointSample objects
    def from_point_samples(start_timestamp: float, samples: List[PointSample], seq: int = -1) -> "Sweep":
        if len(samples) == 0:
            return Sweep(start_timestamp, seq=seq)

        relative_times = torch.tensor([s.relative_time for s in samples], dtype=torch.int64)
        points = torch.stack([torch.as_tensor(s.position, dtype=torch.float32) for s in samples])
        intensities = torch.tensor([s.intensity for s in samples], dtype=torch.float32)
        reflectivities = torch.tensor([s.reflectivity for s in samples], dtype=torch.float32)
        return Sweep(start_timestamp, relative_times, points, intensities, reflectivities, seq)

    ## @returns the number of points in the sweep
    def __len__(self) -> int:
        return self.points.shape[0]

    def __getitem__(self, idx: int) -> PointSample:
        return PointSample(int(self.relative_times[idx].item()),
                           self.points[idx].clone(),
                           float(self.intensities[idx].item()),
                           float(self.reflectivities[idx].item()))

    def __str__(self):
        return f"<Sweep {self.seq}; {len(self)} pts, ({self.get_start_time():.3f},{self.get_end_time():.3f})>"

    def __repr__(self):
        return self.__str__()

    def get_start_time(self) -> float:
        return self.start_timestamp

    ## Gets the capture time of the last point. An empty sweep ends where it starts.
    def get_end_time(self) -> float:
        if len(self) == 0:
            return self.start_timestamp
        return self.start_timestamp + self.relative_times.max().item() / NANOSECONDS_PER_SECOND

    ## @returns the absolute capture time (seconds) of every point as a float64 tensor
    def get_capture_times(self) -> torch.Tensor:
        return self.start_timestamp + self.relative_times.to(torch.float64) / NANOSECONDS_PER_SECOND

    ## @returns True if the relative times are non-negative and non-decreasing
    def is_time_ordered(self) -> bool:
        if len(self) == 0:
            return True
        return bool(self.relative_times[0] >= 0) and bool(torch.all(torch.diff(self.relative_times) >= 0))

    ## @returns a deep copy of the current sweep
    def clone(self) -> "Sweep":
        return Sweep(self.start_timestamp,
                     self.relative_times.clone(),
                     self.points.clone(),
                     self.intensities.clone(),
                     self.reflectivities.clone(),
                     self.seq)

    ## @returns a new Sweep with the given @p points and copies of every other field of this sweep
    def with_points(self, points: torch.Tensor) -> "Sweep":
        return Sweep(self.start_timestamp,
                     self.relative_times.clone(),
                     points,
                     self.intensities.clone(),
                     self.reflectivities.clone(),
                     self.seq)

    ## @returns a new Sweep with every point rigidly transformed by @p pose
    def transform(self, pose: Pose) -> "Sweep":
        return self.with_points(pose.transform_points(self.points))

    ## Builds an open3d point cloud from the sweep, with intensity mapped to gray scale
    def build_point_cloud(self) -> o3d.geometry.PointCloud:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points.detach().cpu().to(torch.float64).numpy())

        if len(self) > 0:
            intensities = self.intensities.detach().cpu().to(torch.float64)
            span = intensities.max() - intensities.min()
            if span > 0:
                gray = (intensities - intensities.min()) / span
            else:
                gray = torch.zeros_like(intensities)
            pcd.colors = o3d.utility.Vector3dVector(gray.unsqueeze(1).repeat(1, 3).numpy())
        return pcd


## Stacks the given samples' vectors into (n,3) tensors. @returns (timestamps, angular_velocities, linear_accelerations)
def stack_inertial_samples(samples: Sequence[InertialSample]):
    timestamps = torch.tensor([s.timestamp for s in samples], dtype=torch.float64)
    gyro = torch.stack([s.angular_velocity for s in samples]) if len(samples) > 0 else torch.zeros((0, 3), dtype=torch.float64)
    acce = torch.stack([s.linear_acceleration for s in samples]) if len(samples) > 0 else torch.zeros((0, 3), dtype=torch.float64)
    return timestamps, gyro, acce
