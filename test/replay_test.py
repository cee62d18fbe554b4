import os
import sys
import tempfile
import unittest

import numpy as np
import pandas as pd

PROJECT_ROOT = os.path.abspath(os.path.join(
    os.path.dirname(__file__),
    os.pardir))
sys.path.append(PROJECT_ROOT)
sys.path.append(PROJECT_ROOT + "/src")

from lidar_deskew.common.sensors import InertialSample, PoseSample, Sweep
from lidar_deskew.deskewer import Deskewer
from lidar_deskew.replay import load_recording, load_sweep_csv, replay

from deskew_scenarios import (build_imu, build_poses, build_sweeps, expected_deskewed_point, load_test_settings,
                              num_processable_sweeps)

DURATION = 1.0


## Writes the synthetic scenario to @p recording_dir the way a recorder would
def write_recording(recording_dir):
    imu = build_imu(DURATION)
    pd.DataFrame({
        "timestamp": [s.timestamp for s in imu],
        "wx": [s.angular_velocity[0].item() for s in imu],
        "wy": [s.angular_velocity[1].item() for s in imu],
        "wz": [s.angular_velocity[2].item() for s in imu],
        "ax": [s.linear_acceleration[0].item() for s in imu],
        "ay": [s.linear_acceleration[1].item() for s in imu],
        "az": [s.linear_acceleration[2].item() for s in imu],
    }).to_csv(os.path.join(recording_dir, "imu.csv"), index=False)

    poses = build_poses(DURATION)
    data = np.array([[p.timestamp, *p.position.tolist(), *p.orientation.tolist(), *p.linear_velocity.tolist()]
                     for p in poses])
    pd.DataFrame(data, columns=["timestamp", "x", "y", "z", "qw", "qx", "qy", "qz", "vx", "vy", "vz"]) \
        .to_csv(os.path.join(recording_dir, "odometry.csv"), index=False, float_format="%.17g")

    os.makedirs(os.path.join(recording_dir, "sweeps"))
    for sweep in build_sweeps(DURATION):
        start_ns = int(round(sweep.get_start_time() * 1e9))
        points = sweep.points.numpy()
        pd.DataFrame({
            "t_ns": sweep.relative_times.numpy(),
            "x": points[:, 0],
            "y": points[:, 1],
            "z": points[:, 2],
            "intensity": sweep.intensities.numpy(),
            "reflectivity": sweep.reflectivities.numpy(),
        }).to_csv(os.path.join(recording_dir, "sweeps", f"{start_ns}.csv"), index=False)


class TestReplay(unittest.TestCase):
    def test_load_recording(self):
        with tempfile.TemporaryDirectory() as recording_dir:
            write_recording(recording_dir)
            events = load_recording(recording_dir)

        arrival_times = [t for t, _ in events]
        self.assertEqual(arrival_times, sorted(arrival_times))

        imu = [s for _, s in events if isinstance(s, InertialSample)]
        poses = [s for _, s in events if isinstance(s, PoseSample)]
        sweeps = [(t, s) for t, s in events if isinstance(s, Sweep)]

        self.assertEqual(len(imu), len(build_imu(DURATION)))
        self.assertEqual(len(poses), len(build_poses(DURATION)))
        self.assertEqual(len(sweeps), len(build_sweeps(DURATION)))

        for seq, (arrival, sweep) in enumerate(sweeps):
            self.assertEqual(sweep.seq, seq)
            self.assertEqual(arrival, sweep.get_end_time())
            self.assertTrue(sweep.is_time_ordered())

    def test_duration(self):
        with tempfile.TemporaryDirectory() as recording_dir:
            write_recording(recording_dir)
            events = load_recording(recording_dir, duration=0.5)

        self.assertLessEqual(events[-1][0], 0.5)
        self.assertGreater(len(events), 0)

    def test_load_sweep_sorts_points(self):
        with tempfile.TemporaryDirectory() as recording_dir:
            path = os.path.join(recording_dir, "1500000000.csv")
            pd.DataFrame({
                "t_ns": [300, 100, 200],
                "x": [3., 1., 2.],
                "y": [0., 0., 0.],
                "z": [0., 0., 0.],
                "intensity": [30., 10., 20.],
                "reflectivity": [0., 0., 0.],
            }).to_csv(path, index=False)

            sweep = load_sweep_csv(path, seq=4)

        self.assertEqual(sweep.get_start_time(), 1.5)
        self.assertEqual(sweep.relative_times.tolist(), [100, 200, 300])
        self.assertEqual(sweep.points[:, 0].tolist(), [1., 2., 3.])
        self.assertEqual(sweep.intensities.tolist(), [10., 20., 30.])
        self.assertEqual(sweep.seq, 4)

        point = sweep[2]
        self.assertEqual(point.relative_time, 300)
        self.assertEqual(point.position.tolist(), [3., 0., 0.])
        self.assertEqual(point.intensity, 30.)

    def test_replay_recording(self):
        with tempfile.TemporaryDirectory() as recording_dir:
            write_recording(recording_dir)
            events = load_recording(recording_dir)

        deskewer = Deskewer(load_test_settings())
        slot = deskewer.register_output()
        deskewer.start()
        replay(deskewer, events)
        deskewer.flush()
        deskewer.stop()

        results = []
        while slot.has_value():
            results.append(slot.get_value())
        results = results[:-1]

        self.assertEqual(len(results), num_processable_sweeps(DURATION))
        for result in results:
            sweep = result.deskewed
            for t, point in zip(sweep.get_capture_times(), sweep.points):
                expected = expected_deskewed_point(result.anchor.timestamp, sweep.get_start_time(), t.item())
                self.assertTrue(np.allclose(point.numpy(), expected, atol=1e-4))

    def test_unknown_sample(self):
        deskewer = Deskewer(load_test_settings())
        with self.assertRaises(ValueError):
            replay(deskewer, [(0., "not a sample")])


if __name__ == "__main__":
    unittest.main()
