import logging
import threading
from collections import deque
from typing import Any, Callable, List, Optional

from lidar_deskew.common.settings import Settings

_logger = logging.getLogger(__name__)


class OrderingViolationError(RuntimeError):
    """ Raised to a producer when it pushes a sample whose timestamp doesn't strictly
    increase. The offending sample is never stored.
    """
    pass


def _default_timestamp(sample) -> float:
    return sample.timestamp


class SampleBuffer:
    """ A FIFO of timestamped samples guarded by its own lock.

    Producers push, a single consumer pops, prunes and takes snapshots. The lock is only held
    while the deque is mutated or copied, never while samples are processed.
    """

    ## Constructor
    # @param name: Used in log messages
    # @param max_length: Oldest samples are dropped (and an error logged) past this length. None for unbounded.
    # @param ordered: If set, timestamps must strictly increase from one push to the next.
    # @param raise_on_violation: If set, an OrderingViolationError is raised to the producer after
    #                            the offending sample is rejected.
    # @param timestamp_fn: Extracts the timestamp from a sample. Defaults to sample.timestamp
    def __init__(self, name: str,
                 max_length: Optional[int] = None,
                 ordered: bool = True,
                 raise_on_violation: bool = True,
                 timestamp_fn: Callable[[Any], float] = None) -> None:
        self.name = name
        self._max_length = max_length
        self._ordered = ordered
        self._raise_on_violation = raise_on_violation
        self._timestamp_fn = _default_timestamp if timestamp_fn is None else timestamp_fn

        self._lock = threading.Lock()
        self._data = deque()
        self._last_timestamp = None

        self.ordering_violations = 0
        self.overflows = 0

    ## Appends @p sample. @returns True if it was stored, False if it was rejected.
    def push(self, sample) -> bool:
        timestamp = self._timestamp_fn(sample)
        overflowed = False

        with self._lock:
            if self._ordered and self._last_timestamp is not None and timestamp <= self._last_timestamp:
                self.ordering_violations += 1
                last = self._last_timestamp
                violation = True
            else:
                violation = False
                self._data.append(sample)
                self._last_timestamp = timestamp

                if self._max_length is not None and len(self._data) > self._max_length:
                    self._data.popleft()
                    self.overflows += 1
                    overflowed = True

        if violation:
            _logger.error("%s buffer: rejected sample at %.6f, not after previous sample at %.6f",
                          self.name, timestamp, last)
            if self._raise_on_violation:
                raise OrderingViolationError(
                    f"{self.name} sample at {timestamp:.6f} is not after previous sample at {last:.6f}")
            return False

        if overflowed:
            _logger.error("%s buffer exceeded %d samples, dropped the oldest one. Is the consumer running?",
                          self.name, self._max_length)
        return True

    ## Removes and @returns the oldest sample, or None if the buffer is empty.
    def pop(self):
        with self._lock:
            if len(self._data) == 0:
                return None
            return self._data.popleft()

    ## Removes and @returns every sample currently in the buffer, oldest first.
    def pop_all(self) -> List:
        with self._lock:
            samples = list(self._data)
            self._data.clear()
        return samples

    ## @returns the oldest sample without removing it, or None
    def front(self):
        with self._lock:
            return self._data[0] if len(self._data) > 0 else None

    ## @returns the newest sample without removing it, or None
    def back(self):
        with self._lock:
            return self._data[-1] if len(self._data) > 0 else None

    ## @returns a list of (at most) the @p n oldest samples, without removing them
    def peek(self, n: int) -> List:
        with self._lock:
            return [self._data[i] for i in range(min(n, len(self._data)))]

    ## Drops samples from the front while the second sample is at or before @p t.
    # The newest sample at or before @p t is always kept, so it can bracket t.
    # Never removes a sample with timestamp >= t.
    # @returns the number of samples removed
    def prune(self, t: float) -> int:
        removed = 0
        with self._lock:
            while len(self._data) >= 2 and self._timestamp_fn(self._data[1]) <= t:
                self._data.popleft()
                removed += 1
        return removed

    ## @returns a snapshot of the samples from the front up to and including the first one later than @p t.
    def take_until(self, t: float) -> List:
        snapshot = []
        with self._lock:
            for sample in self._data:
                snapshot.append(sample)
                if self._timestamp_fn(sample) > t:
                    break
        return snapshot

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._last_timestamp = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def is_empty(self) -> bool:
        return len(self) == 0


class IngestBuffers:
    """ The three input queues: inertial samples, pose samples, and raw sweeps.
    """

    def __init__(self, settings: Settings) -> None:
        sync_settings = settings.synchronization
        raise_on_violation = sync_settings.raise_on_ordering_violation

        self.imu = SampleBuffer("imu",
                                sync_settings.buffers.imu_max_length,
                                ordered=True,
                                raise_on_violation=raise_on_violation)
        self.poses = SampleBuffer("pose",
                                  sync_settings.buffers.pose_max_length,
                                  ordered=True,
                                  raise_on_violation=raise_on_violation)
        # Sweep start times are assumed non-decreasing, the matcher drops stale ones.
        self.sweeps = SampleBuffer("sweep",
                                   sync_settings.buffers.sweep_max_length,
                                   ordered=False,
                                   timestamp_fn=lambda sweep: sweep.get_start_time())

    def get_ordering_violations(self) -> int:
        return self.imu.ordering_violations + self.poses.ordering_violations

    def clear(self) -> None:
        for buffer in (self.imu, self.poses, self.sweeps):
            buffer.clear()
