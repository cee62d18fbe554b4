import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Union

import torch

from lidar_deskew.common.buffers import IngestBuffers
from lidar_deskew.common.log_utils import ThrottledLogger
from lidar_deskew.common.pose import Pose
from lidar_deskew.common.sensors import PoseSample, Sweep
from lidar_deskew.common.settings import Settings
from lidar_deskew.common.signals import Signal
from lidar_deskew.pipeline.imu_window import InertialWindow, take_inertial_window
from lidar_deskew.pipeline.motion_propagator import MotionPropagator, Trajectory
from lidar_deskew.pipeline.point_deskewer import PointDeskewer
from lidar_deskew.pipeline.sweep_pose_matcher import MatchedSweep, SweepPoseMatcher

_logger = logging.getLogger(__name__)


class SweepStatus(enum.Enum):
    """ Outcome of one worker iteration.
    """
    DESKEWED = 0
    # Nothing matched yet, or no imu data at all
    WAITING = 1
    # The imu buffer doesn't cover the oldest matched sweep yet. It'll be retried.
    DEFERRED = 2
    DROPPED_STALE = 3
    DROPPED_SHORT_WINDOW = 4
    # Deferred too many times
    DROPPED_TIMEOUT = 5
    # The propagated trajectory doesn't bracket the sweep
    DROPPED_UNCOVERED = 6


@dataclass
class DeskewResult:
    """ Everything produced for one accepted sweep. All points are in the world frame.
    """
    count: int
    anchor: PoseSample
    deskewed: Sweep
    # Every point transformed by the anchor pose only. None unless deskew.publish_distorted is set.
    distorted: Union[Sweep, None]
    window: InertialWindow
    trajectory: Trajectory
    # Points whose capture time fell outside the trajectory. Should never have any set.
    out_of_window: torch.Tensor


@dataclass
class DeskewStatistics:
    deskewed: int = 0
    deferrals: int = 0
    stale_pairs: int = 0
    short_windows: int = 0
    timeouts: int = 0
    uncovered: int = 0
    # Filled in from the matcher, buffers and deskewer by DeskewWorker.get_statistics
    matched: int = 0
    warmup_skipped: int = 0
    overwritten_sweeps: int = 0
    stale_sweeps: int = 0
    ordering_violations: int = 0
    buffer_overflows: int = 0
    out_of_window_points: int = 0


class DeskewWorker:
    """ DeskewWorker: drives matching, imu window extraction, propagation and deskewing.

    Only this class pops from the ingest buffers. Each call to update handles at most one sweep.
    """

    ## Constructor
    # @param settings: Top level settings. Needs calibration, imu, synchronization, deskew and system.
    # @param buffers: The queues producers push into
    # @param result_signal: A Signal which the worker emits DeskewResult objects to
    def __init__(self, settings: Settings, buffers: IngestBuffers, result_signal: Signal) -> None:
        self._settings = settings
        self._sync_settings = settings.synchronization
        self._buffers = buffers
        self._result_signal = result_signal

        self._matcher = SweepPoseMatcher(self._sync_settings, buffers.poses)
        self._propagator = MotionPropagator.from_settings(settings.imu)

        t_lidar_to_body = Pose.from_settings(settings.calibration.lidar_to_body)
        self._deskewer = PointDeskewer(t_lidar_to_body, settings.deskew.use_gpu)

        self._publish_distorted = settings.deskew.publish_distorted
        self._min_imu_samples = self._sync_settings.min_imu_samples
        self._coverage_margin = self._sync_settings.imu_coverage_margin_sec
        self._max_deferrals = self._sync_settings.max_deferrals
        self._sleep_sec = settings.system.worker_sleep_sec

        self._throttled = ThrottledLogger(_logger, settings.system.log_throttle_sec)

        self.reset()

    ## Restarts the sweep count, the statistics and the matcher (including the warm-up).
    def reset(self) -> None:
        self._sweep_count = 0
        self._stats = DeskewStatistics()
        self._matcher.reset()
        self._throttled.reset()

    ## One iteration: pulls new sweeps into the matcher, then tries to deskew the oldest matched sweep.
    # @returns what happened to it
    def update(self) -> SweepStatus:
        self._matcher.update(self._buffers.sweeps)

        status = self._check_data()
        if status is not None:
            return status

        pair = self._matcher.peek_pair()

        # The anchor pose is taken to hold at the sweep start, which is where the window begins
        t_start = pair.sweep.get_start_time()
        t_end = pair.sweep.get_end_time()

        window = take_inertial_window(self._buffers.imu, t_start, t_end)
        if window is None:
            return self._defer(pair)

        self._matcher.pop_pair()
        return self._process(pair, window)

    ## Run spins and processes incoming data until @p stop_event is set.
    # The event is only checked between iterations, so a sweep being processed is always finished.
    def run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            status = self.update()
            if status in (SweepStatus.WAITING, SweepStatus.DEFERRED):
                time.sleep(self._sleep_sec)

        _logger.info("Deskew worker done.")

    def get_statistics(self) -> DeskewStatistics:
        stats = DeskewStatistics(**vars(self._stats))
        stats.matched = self._matcher.num_matched
        stats.warmup_skipped = self._matcher.num_warmup_skipped
        stats.overwritten_sweeps = self._matcher.num_overwritten
        stats.stale_sweeps = self._matcher.num_stale
        stats.ordering_violations = self._buffers.get_ordering_violations()
        stats.buffer_overflows = sum(b.overflows for b in (self._buffers.imu, self._buffers.poses, self._buffers.sweeps))
        stats.out_of_window_points = self._deskewer.num_out_of_window_points
        return stats

    ## Checks whether the oldest matched pair can be processed.
    # @returns None if it can, otherwise the reason it can't
    def _check_data(self) -> Union[SweepStatus, None]:
        pair = self._matcher.peek_pair()
        if pair is None:
            self._throttled.info("no_pair", "Waiting for data: no matched sweep/pose pair")
            return SweepStatus.WAITING

        imu_front = self._buffers.imu.front()
        imu_back = self._buffers.imu.back()
        if imu_front is None:
            self._throttled.warning("no_imu", "Waiting for data: imu buffer empty")
            return SweepStatus.WAITING

        if pair.sweep.get_start_time() < imu_front.timestamp:
            self._matcher.pop_pair()
            self._stats.stale_pairs += 1
            _logger.warning("Deleting stale sweep/pose pair: sweep %d starts at %.3f, "
                            "before the oldest imu sample at %.3f",
                            pair.sweep.seq, pair.sweep.get_start_time(), imu_front.timestamp)
            return SweepStatus.DROPPED_STALE

        if pair.sweep.get_end_time() + self._coverage_margin > imu_back.timestamp:
            return self._defer(pair)

        return None

    def _defer(self, pair: MatchedSweep) -> SweepStatus:
        pair.deferrals += 1

        if pair.deferrals > self._max_deferrals:
            self._matcher.pop_pair()
            self._stats.timeouts += 1
            _logger.warning("Dropping sweep %d: imu data never covered it after %d tries",
                            pair.sweep.seq, self._max_deferrals)
            return SweepStatus.DROPPED_TIMEOUT

        self._stats.deferrals += 1
        self._throttled.warning("coverage",
                                "Imu buffer doesn't propagate far enough to cover the entire sweep %d (%.3f -> %.3f)",
                                pair.sweep.seq, pair.sweep.get_start_time(), pair.sweep.get_end_time())
        return SweepStatus.DEFERRED

    def _process(self, pair: MatchedSweep, window: InertialWindow) -> SweepStatus:
        anchor, sweep = pair.pose, pair.sweep

        if len(window) < self._min_imu_samples:
            self._stats.short_windows += 1
            _logger.warning("Short imu sequence (%d < %d samples) for sweep %d, ignoring",
                            len(window), self._min_imu_samples, sweep.seq)
            return SweepStatus.DROPPED_SHORT_WINDOW

        trajectory = self._propagator.propagate(anchor, window)

        if trajectory is None or not trajectory.covers(sweep.get_start_time(), sweep.get_end_time()):
            self._stats.uncovered += 1
            _logger.error("Propagated trajectory doesn't bracket sweep %d (%.6f -> %.6f), rejecting it",
                          sweep.seq, sweep.get_start_time(), sweep.get_end_time())
            return SweepStatus.DROPPED_UNCOVERED

        distorted = self._deskewer.distort(sweep, anchor) if self._publish_distorted else None
        deskewed, out_of_window = self._deskewer.deskew(sweep, anchor, trajectory)

        self._report(anchor, sweep, window, trajectory)

        self._result_signal.emit(DeskewResult(self._sweep_count, anchor, deskewed, distorted,
                                              window, trajectory, out_of_window))
        self._sweep_count += 1
        self._stats.deskewed += 1
        return SweepStatus.DESKEWED

    def _report(self, anchor: PoseSample, sweep: Sweep, window: InertialWindow, trajectory: Trajectory) -> None:
        _logger.info("Count %3d, %3d. Odom: %.3f. Sweep: %.3f -> %.3f. Imu: %d, %.3f -> %.3f. Buf: pairs %d, imu %d",
                     self._sweep_count, sweep.seq, anchor.timestamp,
                     sweep.get_start_time(), sweep.get_end_time(),
                     len(window), window.get_start_time(), window.get_end_time(),
                     len(self._matcher), len(self._buffers.imu))

        if _logger.isEnabledFor(logging.DEBUG):
            for i in range(len(trajectory)):
                pose = trajectory.get_pose(i)
                ypr = pose.get_ypr()
                xyz = pose.get_translation()
                _logger.debug("Imu prop %2d. Time: %.3f. YPR: %8.3f, %8.3f, %8.3f. XYZ: %.3f, %.3f, %.3f.",
                              i, trajectory.timestamps[i].item(), ypr[0], ypr[1], ypr[2],
                              xyz[0].item(), xyz[1].item(), xyz[2].item())
