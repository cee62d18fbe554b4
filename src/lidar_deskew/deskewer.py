import logging
import threading
from typing import Union

import torch

from lidar_deskew.common.buffers import IngestBuffers
from lidar_deskew.common.log_utils import configure_logging
from lidar_deskew.common.sensors import InertialSample, PoseSample, Sweep
from lidar_deskew.common.settings import Settings
from lidar_deskew.common.signals import Signal, Slot, StopSignal
from lidar_deskew.pipeline.deskew_worker import DeskewStatistics, DeskewWorker, SweepStatus

_logger = logging.getLogger(__name__)


class Deskewer:
    """ Top-level deskewing module.

    Producers call process_imu, process_pose and process_sweep from any thread. A worker thread
    matches sweeps with poses, propagates the imu and emits a DeskewResult per accepted sweep
    to every Slot obtained from register_output.

    With system.single_threaded set, no thread is started and every process_* call runs one
    worker update before returning.
    """

    def __init__(self, settings: Union[Settings, str]) -> None:
        if isinstance(settings, str):
            self._settings = Settings.load_from_file(settings)
        elif type(settings).__name__ == "Settings":  # Avoiding strange attrdict behavior
            self._settings = settings
        else:
            raise RuntimeError(
                f"Can't load settings of type {type(settings).__name__}")

        configure_logging(self._settings.system.log_level)

        self._single_threaded = self._settings.system.single_threaded

        num_threads = self._settings.system.num_threads
        if num_threads is not None and num_threads > 0:
            torch.set_num_threads(num_threads)

        self._buffers = IngestBuffers(self._settings)

        # The worker emits a DeskewResult per sweep, and any number of listeners read them
        self._result_signal = Signal(single_threaded=self._single_threaded)

        self._worker = DeskewWorker(self._settings, self._buffers, self._result_signal)

        self._stop_event = threading.Event()
        self._worker_thread = None
        self._started = False

    def get_settings(self) -> Settings:
        return self._settings

    ## Creates and returns a Slot which receives every DeskewResult, followed by a StopSignal on stop()
    def register_output(self) -> Slot:
        return self._result_signal.register()

    def start(self) -> None:
        if self._started:
            raise RuntimeError("Can't Start: Deskewer is already running.")

        self._stop_event.clear()
        self._started = True

        _logger.info("Starting lidar deskewing")

        if not self._single_threaded:
            self._worker_thread = threading.Thread(target=self._worker.run,
                                                   args=(self._stop_event,),
                                                   name="deskew_worker",
                                                   daemon=True)
            self._worker_thread.start()

    # Stop the worker. A sweep being processed is finished first.
    def stop(self) -> None:
        if not self._started:
            return

        self._stop_event.set()

        if self._worker_thread is not None:
            self._worker_thread.join()
            self._worker_thread = None

        self._started = False
        self._result_signal.emit(StopSignal())

        stats = self.get_statistics()
        _logger.info("Stopped lidar deskewing. %d sweeps deskewed, %d dropped (stale %d, short %d, timeout %d), "
                     "%d ordering violations",
                     stats.deskewed,
                     stats.stale_pairs + stats.stale_sweeps + stats.short_windows + stats.timeouts + stats.uncovered,
                     stats.stale_pairs + stats.stale_sweeps, stats.short_windows, stats.timeouts,
                     stats.ordering_violations)

    ## Drops every buffered sample and restarts counters and the warm-up. Only call while stopped.
    def reset(self) -> None:
        if self._started:
            raise RuntimeError("Can't reset a running Deskewer. Call stop first.")
        self._buffers.clear()
        self._worker.reset()

    def get_statistics(self) -> DeskewStatistics:
        return self._worker.get_statistics()

    def is_running(self) -> bool:
        return self._started

    # For use in single-threaded system.
    def _system_update(self) -> SweepStatus:
        assert self._single_threaded, "_system_update should only be called in single-threaded mode"
        return self._worker.update()

    ## Single-threaded only: runs worker updates until nothing more can be done with the buffered data.
    # @returns the number of sweeps deskewed
    def flush(self) -> int:
        num_deskewed = 0
        while True:
            status = self._system_update()
            if status in (SweepStatus.WAITING, SweepStatus.DEFERRED):
                return num_deskewed
            if status == SweepStatus.DESKEWED:
                num_deskewed += 1

    ## Raises OrderingViolationError (after rejecting the sample) if timestamps don't strictly increase,
    # unless synchronization.raise_on_ordering_violation is false.
    def process_imu(self, sample: InertialSample) -> None:
        self._buffers.imu.push(sample)

        if self._single_threaded and self._started:
            self._system_update()

    ## Same ordering contract as process_imu.
    def process_pose(self, pose: PoseSample) -> None:
        self._buffers.poses.push(pose)

        if self._single_threaded and self._started:
            self._system_update()

    def process_sweep(self, sweep: Sweep) -> None:
        assert sweep.is_time_ordered(), "sort your points by relative time!"

        self._buffers.sweeps.push(sweep)

        if self._single_threaded and self._started:
            self._system_update()
