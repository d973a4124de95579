"""Running variability estimate and the adaptive thresholds derived from it."""
from __future__ import annotations

import math
from typing import Optional, Tuple

from .settings import ThresholdSettings


class RunningStats:
    """
    Welford online mean/variance for a single channel.

    Each call to `update` consumes one filtered sample and returns the
    (threshold1, threshold2) pair computed from the updated standard
    deviation. Until two samples have been seen the deviation is taken as 0,
    so both thresholds sit at their floors.
    """

    def __init__(self, thresholds: Optional[ThresholdSettings] = None) -> None:
        self._thresholds = thresholds or ThresholdSettings()
        self.mean: float = 0.0
        self.sum_squared_diff: float = 0.0
        self.sample_count: int = 0

    @property
    def thresholds(self) -> ThresholdSettings:
        return self._thresholds

    @property
    def variance(self) -> float:
        if self.sample_count < 2:
            return 0.0
        return self.sum_squared_diff / (self.sample_count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(max(self.variance, 0.0))

    def update(self, value: float) -> Tuple[float, float]:
        n = self.sample_count + 1
        delta = value - self.mean
        new_mean = self.mean + delta / n
        new_ssd = self.sum_squared_diff + delta * (value - new_mean)

        self.mean = new_mean
        self.sum_squared_diff = new_ssd
        self.sample_count = n
        return self.current_thresholds()

    def current_thresholds(self) -> Tuple[float, float]:
        cfg = self._thresholds
        std = self.std
        return max(std * cfg.t1_mult, cfg.t1_floor), max(std * cfg.t2_mult, cfg.t2_floor)

    def reset(self) -> None:
        self.mean = 0.0
        self.sum_squared_diff = 0.0
        self.sample_count = 0


__all__ = ["RunningStats"]
