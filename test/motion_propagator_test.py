import math
import os
import sys
import torch
import unittest

import numpy as np

PROJECT_ROOT = os.path.abspath(os.path.join(
    os.path.dirname(__file__),
    os.pardir))
sys.path.append(PROJECT_ROOT)
sys.path.append(PROJECT_ROOT + "/src")

from lidar_deskew.common.sensors import InertialSample, PoseSample, stack_inertial_samples
from lidar_deskew.pipeline.imu_window import InertialWindow, extract_inertial_window
from lidar_deskew.pipeline.motion_propagator import MotionPropagator

from deskew_scenarios import GRAVITY, build_imu, load_test_settings, yaw_quaternion


def build_window(samples):
    return InertialWindow(*stack_inertial_samples(samples))


class TestMotionPropagator(unittest.TestCase):
    def setUp(self):
        self.propagator = MotionPropagator([0., 0., GRAVITY])

    def test_first_sample_is_anchor(self):
        anchor = PoseSample(0., yaw_quaternion(0.3), [1., 2., 3.], [0.5, 0., 0.])
        window = build_window(build_imu(0.5))

        trajectory = self.propagator.propagate(anchor, window)

        self.assertEqual(len(trajectory), len(window))
        first = trajectory[0]
        self.assertEqual(first.timestamp, window.get_start_time())
        self.assertTrue(torch.allclose(first.orientation, anchor.orientation, atol=1e-12))
        self.assertTrue(torch.allclose(first.position, anchor.position))
        self.assertTrue(torch.allclose(first.get_pose().get_transformation_matrix(),
                                       anchor.get_pose().get_transformation_matrix(), atol=1e-12))

    def test_constant_yaw_rate(self):
        anchor = PoseSample(0., [1., 0., 0., 0.], [0., 0., 0.], [0., 0., 0.])
        window = build_window(build_imu(1.0, yaw_rate=1.0))

        trajectory = self.propagator.propagate(anchor, window)

        self.assertAlmostEqual(trajectory.get_end_time(), 1.0)
        yaw, pitch, roll = trajectory.get_pose(len(trajectory) - 1).get_ypr()
        self.assertAlmostEqual(yaw, math.degrees(1.0), places=6)
        self.assertAlmostEqual(pitch, 0., places=6)
        self.assertAlmostEqual(roll, 0., places=6)

        # Gravity is cancelled exactly, so the body doesn't move
        self.assertTrue(torch.allclose(trajectory.positions, torch.zeros_like(trajectory.positions), atol=1e-9))
        self.assertTrue(torch.allclose(trajectory.velocities, torch.zeros_like(trajectory.velocities), atol=1e-9))

    def test_yaw_rate_coarse_steps(self):
        # Ten 0.1 s steps at 1 rad/s with gravity already removed from the readings
        samples = [InertialSample(i * 0.1, [0., 0., 1.], [0., 0., 0.]) for i in range(11)]
        anchor = PoseSample(0., [1., 0., 0., 0.], [0., 0., 0.], [0., 0., 0.])
        window = extract_inertial_window(samples, 0., 1.)

        trajectory = MotionPropagator([0., 0., 0.]).propagate(anchor, window)

        self.assertEqual(len(trajectory), 11)
        for i in range(len(trajectory)):
            t = trajectory.timestamps[i].item()
            yaw, pitch, roll = trajectory.get_pose(i).get_ypr()
            self.assertAlmostEqual(yaw, math.degrees(t), places=6)
            self.assertAlmostEqual(pitch, 0., places=6)
            self.assertAlmostEqual(roll, 0., places=6)

        end_yaw = trajectory.get_pose(10).get_ypr()[0]
        self.assertAlmostEqual(end_yaw, math.degrees(1.0), places=6)
        self.assertTrue(torch.allclose(trajectory.positions, torch.zeros_like(trajectory.positions)))

    def test_constant_acceleration(self):
        samples = [InertialSample(i * 0.01, [0., 0., 0.], [2., 0., GRAVITY]) for i in range(101)]
        anchor = PoseSample(0., [1., 0., 0., 0.], [0., 0., 0.], [1., 0., 0.])

        trajectory = self.propagator.propagate(anchor, build_window(samples))

        t = trajectory.timestamps
        expected_x = 1. * t + 0.5 * 2. * t ** 2
        self.assertTrue(torch.allclose(trajectory.positions[:, 0], expected_x, atol=1e-9))
        self.assertTrue(torch.allclose(trajectory.velocities[:, 0], 1. + 2. * t, atol=1e-9))
        self.assertTrue(torch.allclose(trajectory.positions[:, 1:], torch.zeros_like(trajectory.positions[:, 1:])))

    def test_body_velocity_rotated_to_world(self):
        anchor = PoseSample(0., yaw_quaternion(math.pi / 2), [0., 0., 0.], [1., 0., 0.])
        window = build_window(build_imu(0.1, yaw_rate=0.))

        trajectory = self.propagator.propagate(anchor, window)

        self.assertTrue(torch.allclose(trajectory.velocities[0], torch.tensor([0., 1., 0.], dtype=torch.float64),
                                       atol=1e-12))
        self.assertAlmostEqual(trajectory.positions[-1, 1].item(), 0.1, places=9)

    def test_biases_subtracted(self):
        propagator = MotionPropagator([0., 0., GRAVITY], gyro_bias=[0., 0., 1.0], accel_bias=[0., 0., 0.5])

        # Readings are exactly the biases on top of a stationary body
        samples = [InertialSample(i * 0.01, [0., 0., 1.0], [0., 0., GRAVITY + 0.5]) for i in range(51)]
        anchor = PoseSample(0., [1., 0., 0., 0.], [0., 0., 0.], [0., 0., 0.])

        trajectory = propagator.propagate(anchor, build_window(samples))

        end_pose = trajectory.get_pose(len(trajectory) - 1)
        self.assertTrue(torch.allclose(end_pose.get_transformation_matrix(), torch.eye(4, dtype=torch.float64),
                                       atol=1e-9))

    def test_window_from_extraction(self):
        settings = load_test_settings()
        propagator = MotionPropagator.from_settings(settings.imu)

        window = extract_inertial_window(build_imu(1.0, yaw_rate=0.5), 0.2, 0.6)
        anchor = PoseSample(0.2, yaw_quaternion(0.1), [0., 0., 0.], [0., 0., 0.])

        trajectory = propagator.propagate(anchor, window)

        self.assertTrue(trajectory.covers(0.2, 0.6))
        self.assertFalse(trajectory.covers(0.1, 0.6))
        self.assertTrue(np.all(np.diff(trajectory.timestamps.numpy()) > 0))

        yaw = trajectory.get_pose(len(trajectory) - 1).get_ypr()[0]
        self.assertAlmostEqual(yaw, math.degrees(0.1 + 0.5 * 0.4), places=6)


if __name__ == "__main__":
    unittest.main()
