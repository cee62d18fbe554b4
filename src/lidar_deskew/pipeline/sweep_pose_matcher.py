import logging
from dataclasses import dataclass
from typing import List, Union

from lidar_deskew.common.buffers import SampleBuffer
from lidar_deskew.common.sensors import PoseSample, Sweep
from lidar_deskew.common.settings import Settings

_logger = logging.getLogger(__name__)


@dataclass
class MatchedSweep:
    """ A sweep together with the pose sample immediately preceding its start.
    """
    pose: PoseSample
    sweep: Sweep
    # How many worker iterations this pair has waited for imu coverage
    deferrals: int = 0


class SweepPoseMatcher:
    """ SweepPoseMatcher pairs each incoming sweep with the pose at or right before its start time.

    At most one sweep waits for a match at a time. Matched pairs are queued in arrival order
    until the worker pops them.
    """

    ## Constructor
    # @param settings: The synchronization settings
    # @param pose_buffer: The buffer pose samples are pushed into. Poses no longer needed are pruned from it.
    def __init__(self, settings: Settings, pose_buffer: SampleBuffer) -> None:
        self._settings = settings
        self._pose_buffer = pose_buffer

        self.reset()

    ## Clears the pending sweep, matched pairs and all counters. The warm-up restarts.
    def reset(self) -> None:
        self._candidate: Union[Sweep, None] = None
        self._matched: List[MatchedSweep] = []

        self._skip_remaining = self._settings.warmup_skip_count
        self._last_matched_start = float('-inf')

        self.num_matched = 0
        self.num_overwritten = 0
        self.num_stale = 0
        self.num_warmup_skipped = 0

    ## Pulls every sweep waiting in @p sweep_buffer, in order, and tries to match it.
    # Also retries the pending sweep against newly arrived poses.
    def update(self, sweep_buffer: SampleBuffer) -> None:
        for sweep in sweep_buffer.pop_all():
            self.process_sweep(sweep)
        self.try_match()

    ## Makes @p sweep the pending sweep and tries to match it.
    def process_sweep(self, sweep: Sweep) -> None:
        if sweep.get_start_time() < self._last_matched_start:
            self.num_stale += 1
            _logger.warning("Dropping stale sweep %d starting at %.3f, before the last matched sweep at %.3f",
                            sweep.seq, sweep.get_start_time(), self._last_matched_start)
            return

        if self._candidate is not None:
            self.num_overwritten += 1
            _logger.warning("Throwing away unmatched sweep %d starting at %.3f",
                            self._candidate.seq, self._candidate.get_start_time())

        self._candidate = sweep
        self.try_match()

    ## Looks for poses p0, p1 in the pose buffer with p0 <= sweep start <= p1.
    # @returns True if the pending sweep was matched
    def try_match(self) -> bool:
        if self._candidate is None or self._pose_buffer.is_empty():
            return False

        t = self._candidate.get_start_time()

        # Drop poses while the second one is still not after the sweep start
        self._pose_buffer.prune(t)

        poses = self._pose_buffer.peek(2)

        if poses[0].timestamp > t:
            # Every buffered pose is after the sweep, it can never be matched
            self.num_stale += 1
            _logger.warning("Dropping sweep %d starting at %.3f: oldest pose is at %.3f",
                            self._candidate.seq, t, poses[0].timestamp)
            self._candidate = None
            return False

        if len(poses) == 2 and poses[0].timestamp <= t <= poses[1].timestamp:
            self._on_match(poses[0], self._candidate)
            self._candidate = None
            return True

        return False

    def _on_match(self, pose: PoseSample, sweep: Sweep) -> None:
        self._last_matched_start = sweep.get_start_time()

        if self._skip_remaining > 0:
            self._skip_remaining -= 1
            self.num_warmup_skipped += 1
            _logger.debug("Skipping sweep %d during warm-up (%d left)", sweep.seq, self._skip_remaining)
            return

        self.num_matched += 1
        self._matched.append(MatchedSweep(pose, sweep))

    ## @returns True if there's a sweep waiting to be matched
    def has_candidate(self) -> bool:
        return self._candidate is not None

    ## Check if a matched pair exists to be returned
    def has_pair(self) -> bool:
        return len(self._matched) != 0

    ## @returns the oldest matched pair without removing it. If unavailable, returns None.
    def peek_pair(self) -> Union[MatchedSweep, None]:
        if len(self._matched) == 0:
            return None
        return self._matched[0]

    ## Return and remove the oldest matched pair. If unavailable, returns None.
    def pop_pair(self) -> Union[MatchedSweep, None]:
        if len(self._matched) == 0:
            return None
        return self._matched.pop(0)

    def __len__(self) -> int:
        return len(self._matched)
