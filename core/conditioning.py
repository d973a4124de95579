from __future__ import annotations

import math
from typing import Optional

import numpy as np
from scipy import signal

from .errors import ConfigurationError


def highpass_alpha(cutoff_hz: float, sample_rate: float) -> float:
    """Smoothing factor of the single-pole RC high-pass stage.

    alpha = RC / (RC + dt) with RC = 1 / (2*pi*cutoff_hz) and dt = 1 / sample_rate.
    """
    if not (math.isfinite(cutoff_hz) and math.isfinite(sample_rate)):
        raise ConfigurationError("cutoff_hz and sample_rate must be finite")
    if cutoff_hz <= 0:
        raise ConfigurationError("cutoff_hz must be positive")
    if sample_rate <= 0:
        raise ConfigurationError("sample_rate must be positive")
    rc = 1.0 / (2.0 * math.pi * cutoff_hz)
    dt = 1.0 / sample_rate
    return rc / (rc + dt)


class ChannelFilterState:
    """Causal single-pole high-pass filter holding the memory of one channel.

    The first sample passes through unchanged and seeds both memories;
    afterwards ``y[n] = alpha * (y[n-1] + x[n] - x[n-1])``. Samples must be
    fed strictly in arrival order.
    """

    __slots__ = ("alpha", "last_raw", "last_filtered")

    def __init__(self, alpha: float) -> None:
        self.alpha = float(alpha)
        self.last_raw: Optional[float] = None
        self.last_filtered: Optional[float] = None

    @classmethod
    def for_cutoff(cls, cutoff_hz: float, sample_rate: float) -> "ChannelFilterState":
        return cls(highpass_alpha(cutoff_hz, sample_rate))

    @property
    def primed(self) -> bool:
        return self.last_raw is not None

    def update(self, raw: float) -> float:
        if self.last_raw is None or self.last_filtered is None:
            filtered = raw
        else:
            filtered = self.alpha * (self.last_filtered + raw - self.last_raw)
        self.last_raw = raw
        self.last_filtered = filtered
        return filtered

    def reset(self) -> None:
        self.last_raw = None
        self.last_filtered = None


def highpass_block(samples: np.ndarray, cutoff_hz: float, sample_rate: float) -> np.ndarray:
    """Apply the single-pole high-pass offline to a (channels, frames) block.

    Produces the same values as running a fresh `ChannelFilterState` over each
    channel sample by sample: the first frame passes through and seeds the
    filter state for the rest.
    """
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim == 1:
        data = data.reshape(1, -1)
    if data.ndim != 2:
        raise ValueError("samples must be 1D or 2D (channels, frames)")

    out = np.array(data, copy=True)
    if data.shape[1] < 2:
        return out

    alpha = highpass_alpha(cutoff_hz, sample_rate)
    b = np.array([alpha, -alpha], dtype=np.float64)
    a = np.array([1.0, -alpha], dtype=np.float64)
    for idx in range(data.shape[0]):
        row = data[idx]
        # Transposed direct form state after the pass-through first sample:
        # z = b1*x0 - a1*y0 = alpha*(y0 - x0) = 0 since y0 == x0.
        zi = np.array([alpha * (out[idx, 0] - row[0])], dtype=np.float64)
        filtered, _ = signal.lfilter(b, a, row[1:], zi=zi)
        out[idx, 1:] = filtered
    return out


__all__ = ["highpass_alpha", "ChannelFilterState", "highpass_block"]
