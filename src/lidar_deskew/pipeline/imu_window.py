from dataclasses import dataclass
from typing import Sequence, Union

import torch

from lidar_deskew.common.buffers import SampleBuffer
from lidar_deskew.common.sensors import InertialSample, stack_inertial_samples


@dataclass
class InertialWindow:
    """ Time-ordered inertial readings covering [timestamps[0], timestamps[-1]] exactly.

    The first and last readings are interpolated at the window boundaries, the rest are real samples.
    """
    timestamps: torch.Tensor  # (n,) seconds, float64
    angular_velocities: torch.Tensor  # (n,3) rad/s
    linear_accelerations: torch.Tensor  # (n,3) m/s^2

    def __len__(self) -> int:
        return self.timestamps.shape[0]

    def get_start_time(self) -> float:
        return self.timestamps[0].item()

    def get_end_time(self) -> float:
        return self.timestamps[-1].item()


## Linearly interpolates the readings of @p before and @p after at time @p t.
# x(s) = (1-s)*x_before + s*x_after, s = (t - t_before)/(t_after - t_before)
def interpolate_inertial_sample(before: InertialSample, after: InertialSample, t: float) -> InertialSample:
    s = (t - before.timestamp) / (after.timestamp - before.timestamp)

    gyro = (1 - s) * before.angular_velocity + s * after.angular_velocity
    acce = (1 - s) * before.linear_acceleration + s * after.linear_acceleration

    return InertialSample(t, gyro, acce)


## Builds the inertial window for [@p t_start, @p t_end] out of @p samples.
# @param samples: Strictly time-ordered samples. Leading samples entirely before t_start are skipped.
# @returns an InertialWindow starting exactly at t_start and ending exactly at t_end, or None
#          if there are fewer than two samples or they don't bracket the interval.
def extract_inertial_window(samples: Sequence[InertialSample],
                            t_start: float,
                            t_end: float) -> Union[InertialWindow, None]:
    n = len(samples)
    if n < 2 or t_end < t_start:
        return None

    # Skip pairs that both precede t_start
    first = 0
    while first + 2 < n and samples[first + 1].timestamp <= t_start:
        first += 1

    if not samples[first].timestamp <= t_start <= samples[first + 1].timestamp:
        return None

    last = first
    while last + 2 < n and samples[last + 1].timestamp <= t_end:
        last += 1

    if not samples[last].timestamp <= t_end <= samples[last + 1].timestamp:
        return None

    window = [interpolate_inertial_sample(samples[first], samples[first + 1], t_start)]

    for sample in samples[first + 1:last + 1]:
        if t_start < sample.timestamp < t_end:
            window.append(sample)

    window.append(interpolate_inertial_sample(samples[last], samples[last + 1], t_end))

    return InertialWindow(*stack_inertial_samples(window))


## Prunes samples no longer needed for intervals starting at @p t_start from @p imu_buffer,
# then extracts the window for [@p t_start, @p t_end] from a snapshot of what's left.
# The buffer lock is only held while pruning and copying.
def take_inertial_window(imu_buffer: SampleBuffer,
                         t_start: float,
                         t_end: float) -> Union[InertialWindow, None]:
    imu_buffer.prune(t_start)
    samples = imu_buffer.take_until(t_end)
    return extract_inertial_window(samples, t_start, t_end)
