"""
Synthetic recordings shared by the tests.

The body spins about z at a constant rate while sitting at the origin. Gravity is along +z and
the accelerometer reads exactly the reaction to it, so the true pose at time t is a pure yaw
of YAW_RATE * t. Every lidar point sits at (1,0,0) in the lidar frame.

The worker holds the anchor pose at the sweep start, so a deskewed point captured at t is
rotated by the anchor yaw plus YAW_RATE * (t - sweep start).
"""

import math
import os
import sys

import numpy as np
import torch

PROJECT_ROOT = os.path.abspath(os.path.join(
    os.path.dirname(__file__),
    os.pardir))
sys.path.append(PROJECT_ROOT + "/src")

from lidar_deskew.common.sensors import InertialSample, PoseSample, Sweep
from lidar_deskew.common.settings import Settings

YAW_RATE = 0.5
GRAVITY = 9.81
IMU_RATE_HZ = 200
POSE_PERIOD = 0.1
SWEEP_OFFSET = 0.05
SWEEP_DURATION = 0.09
POINTS_PER_SWEEP = 10


def load_test_settings(warmup_skip_count: int = 0) -> Settings:
    settings = Settings.load_from_file(os.path.join(PROJECT_ROOT, "cfg/default_settings.yaml"))
    return settings.augment({
        "system": {"single_threaded": True, "log_level": "WARNING", "worker_sleep_sec": 0.001},
        "calibration": {"lidar_to_body": {"xyz": [0., 0., 0.], "orientation": [1., 0., 0., 0.]}},
        "imu": {"gravity": [0., 0., GRAVITY], "gyro_bias": [0., 0., 0.], "accel_bias": [0., 0., 0.]},
        "synchronization": {"warmup_skip_count": warmup_skip_count},
    })


def yaw_quaternion(yaw: float):
    return [math.cos(yaw / 2), 0., 0., math.sin(yaw / 2)]


def expected_point(t: float) -> np.ndarray:
    yaw = YAW_RATE * t
    return np.array([math.cos(yaw), math.sin(yaw), 0.])


def expected_deskewed_point(anchor_time: float, sweep_start: float, t: float) -> np.ndarray:
    return expected_point(anchor_time + t - sweep_start)


def build_imu(duration: float, yaw_rate: float = YAW_RATE):
    n = int(round(duration * IMU_RATE_HZ)) + 1
    return [InertialSample(i / IMU_RATE_HZ, [0., 0., yaw_rate], [0., 0., GRAVITY]) for i in range(n)]


def build_poses(duration: float):
    n = int(round(duration / POSE_PERIOD)) + 1
    return [PoseSample(k * POSE_PERIOD, yaw_quaternion(YAW_RATE * k * POSE_PERIOD), [0., 0., 0.], [0., 0., 0.])
            for k in range(n)]


def build_sweep(start: float, seq: int = -1, duration: float = SWEEP_DURATION, num_points: int = POINTS_PER_SWEEP):
    relative_times = torch.linspace(0, duration * 1e9, num_points, dtype=torch.float64).round().to(torch.int64)
    points = torch.tensor([[1., 0., 0.]], dtype=torch.float32).repeat(num_points, 1)
    intensities = torch.arange(num_points, dtype=torch.float32)
    reflectivities = torch.arange(num_points, dtype=torch.float32) * 2
    return Sweep(start, relative_times, points, intensities, reflectivities, seq)


def build_sweeps(duration: float):
    sweeps = []
    k = 0
    while SWEEP_OFFSET + k * POSE_PERIOD + SWEEP_DURATION <= duration:
        sweeps.append(build_sweep(SWEEP_OFFSET + k * POSE_PERIOD, k))
        k += 1
    return sweeps


## @returns (arrival_time, sample) tuples sorted by arrival. Sweeps arrive at their end time.
def build_events(duration: float):
    events = [(s.timestamp, s) for s in build_imu(duration)]
    events += [(p.timestamp, p) for p in build_poses(duration)]
    events += [(s.get_end_time(), s) for s in build_sweeps(duration)]
    events.sort(key=lambda e: e[0])
    return events


## Number of sweeps the worker can finish once everything up to @p duration has arrived
def num_processable_sweeps(duration: float, coverage_margin: float = 0.125) -> int:
    return len([s for s in build_sweeps(duration) if s.get_end_time() + coverage_margin <= duration])
