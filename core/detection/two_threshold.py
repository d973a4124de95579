import logging
from typing import Optional

from shared.models import SpikeWaveform
from shared.rolling_window import RollingWindow
from .base import Candidate, DetectorCounters, DetectorState

logger = logging.getLogger(__name__)


class SpikeDetector:
    """
    Two-threshold spike detector for a single channel.

    A sample whose magnitude lies strictly between threshold1 and threshold2
    opens a candidate. If a later sample within ``before_peak`` samples of
    the candidate exceeds threshold2 the spike is confirmed and the rolling
    window (the last ``spike_length`` filtered samples, ending at the
    confirming sample) is emitted. Otherwise the candidate expires silently.

    After a confirmation no candidate may open until ``min_spike_gap``
    samples have passed, measured from the confirming sample.
    """

    def __init__(
        self,
        channel_id: int,
        *,
        before_peak: int,
        min_spike_gap: int,
        t1_floor: float = 0.0,
    ) -> None:
        if before_peak <= 0:
            raise ValueError("before_peak must be positive")
        if min_spike_gap < 0:
            raise ValueError("min_spike_gap must be non-negative")
        self.channel_id = int(channel_id)
        self._before_peak = int(before_peak)
        self._min_spike_gap = int(min_spike_gap)
        self._t1_floor = float(t1_floor)
        self._candidate: Optional[Candidate] = None
        self.last_spike_end: int = -self._min_spike_gap - 1
        self.counters = DetectorCounters()

    @property
    def state(self) -> DetectorState:
        return DetectorState.CANDIDATE if self._candidate is not None else DetectorState.IDLE

    @property
    def candidate(self) -> Optional[Candidate]:
        return self._candidate

    def warmed_up(self, threshold1: float) -> bool:
        # A zero floor disables warm-up gating.
        if self._t1_floor <= 0:
            return True
        return threshold1 > self._t1_floor

    def process(
        self,
        count: int,
        value: float,
        threshold1: float,
        threshold2: float,
        window: RollingWindow,
    ) -> Optional[SpikeWaveform]:
        """Advance the state machine by one filtered sample.

        `window` must already contain `value` as its newest sample. Returns the
        confirmed waveform, if any.
        """
        if not window.is_full or not self.warmed_up(threshold1):
            return None

        abs_value = abs(value)
        candidate = self._candidate

        if candidate is not None:
            offset = candidate.offset(count)
            if 0 < offset < self._before_peak and abs_value > threshold2:
                self._candidate = None
                self.last_spike_end = count
                self.counters.spikes_confirmed += 1
                waveform = SpikeWaveform(
                    channel_id=self.channel_id,
                    start_index=candidate.start_index,
                    confirm_index=count,
                    samples=window.snapshot(),
                )
                logger.debug(
                    "Channel %d: spike confirmed at %d (candidate %d)",
                    self.channel_id,
                    count,
                    candidate.start_index,
                )
                return waveform
            if offset >= self._before_peak:
                self._candidate = None
                self.counters.candidates_expired += 1
            return None

        if (
            threshold1 < abs_value < threshold2
            and count > self.last_spike_end + self._min_spike_gap
        ):
            self._candidate = Candidate(start_index=count)
            self.counters.candidates_opened += 1
        return None

    def reset(self) -> None:
        self._candidate = None
        self.last_spike_end = -self._min_spike_gap - 1
        self.counters = DetectorCounters()


__all__ = ["SpikeDetector"]
