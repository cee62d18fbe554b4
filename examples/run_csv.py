#!/usr/bin/env python3

import argparse
import datetime
import os
import sys
import time

import yaml

PROJECT_ROOT = os.path.abspath(os.path.join(
    os.path.dirname(__file__),
    os.pardir))

sys.path.append(PROJECT_ROOT + "/src")

from lidar_deskew.common.settings import Settings
from lidar_deskew.deskewer import Deskewer
from lidar_deskew.diagnostics.sweep_logger import SweepLogger
from lidar_deskew.replay import load_recording, replay


if __name__ == "__main__":

    parser = argparse.ArgumentParser("Deskew a CSV recording")
    parser.add_argument("recording_dir", help="Directory with imu.csv, odometry.csv and sweeps/")
    parser.add_argument("--configuration_path", default=f"{PROJECT_ROOT}/cfg/default_settings.yaml")
    parser.add_argument("--overrides", type=str, default=None, help="YAML file with settings to change")
    parser.add_argument("--duration", help="How long to run for (in input data time, sec)", type=float, default=None)
    parser.add_argument("--log_dir", type=str, default=None, help="Where to write results. Defaults to debug.log_directory")
    parser.add_argument("--write_clouds", action="store_true", default=False, help="If set, writes every sweep as a pcd")
    parser.add_argument("--threaded", action="store_true", default=False,
                        help="If set, runs the worker thread instead of processing synchronously")

    args = parser.parse_args()

    overrides = None
    if args.overrides is not None:
        with open(args.overrides) as overrides_file:
            overrides = yaml.safe_load(overrides_file)

    settings = Settings.load_from_file(args.configuration_path, overrides)

    settings.augment({"system": {"single_threaded": not args.threaded}})

    now_str = datetime.datetime.now().strftime("%m%d%y_%H%M%S")
    log_dir = args.log_dir
    if log_dir is None:
        log_dir = os.path.expanduser(f"{settings.debug.log_directory}/deskew_{now_str}")

    deskewer = Deskewer(settings)
    sweep_logger = SweepLogger(deskewer.register_output(), log_dir,
                               args.write_clouds or settings.debug.write_sweep_clouds)

    events = load_recording(args.recording_dir, args.duration)

    deskewer.start()

    if args.threaded:
        replay(deskewer, events)
        # Give the worker a chance to drain what's buffered
        time.sleep(1.0)
    else:
        for start in range(0, len(events), 1000):
            replay(deskewer, events[start:start + 1000])
            sweep_logger.update()
        deskewer.flush()

    deskewer.stop()
    sweep_logger.finish()

    with open(f"{log_dir}/full_config.yaml", 'w+') as f:
        yaml.dump(settings.to_dict(), f)

    print(deskewer.get_statistics())
