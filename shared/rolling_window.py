from __future__ import annotations

import numpy as np


class RollingWindow:
    """
    Fixed-capacity FIFO of the most recent samples of one channel, backed by a
    preallocated NumPy array.

    Pushing into a full window overwrites the oldest sample. Once the window
    has filled it stays full for the rest of the run.
    """

    def __init__(self, capacity: int, dtype: np.dtype | str = np.float64) -> None:
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._data = np.zeros(capacity, dtype=dtype)
        self._write_pos = 0
        self._filled = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def is_full(self) -> bool:
        return self._filled == self._capacity

    def __len__(self) -> int:
        return self._filled

    def push(self, value: float) -> None:
        """Append one sample, evicting the oldest one when at capacity."""
        self._data[self._write_pos] = value
        self._write_pos = (self._write_pos + 1) % self._capacity
        if self._filled < self._capacity:
            self._filled += 1

    def snapshot(self) -> np.ndarray:
        """
        Return the buffered samples oldest-first as a new array.

        The copy is independent of the window, so later pushes never alter a
        snapshot that has already been handed out.
        """
        if self._filled < self._capacity:
            return self._data[: self._filled].copy()
        # Full: the write position points at the oldest sample.
        return np.concatenate((self._data[self._write_pos :], self._data[: self._write_pos]))

    def clear(self) -> None:
        self._write_pos = 0
        self._filled = 0


__all__ = ["RollingWindow"]
