from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np


def _freeze_array(array: np.ndarray, *, ndim: int | None = None) -> np.ndarray:
    """Return a read-only, C-contiguous float64 copy of `array`, validating dimensions."""
    arr = np.array(array, dtype=np.float64, copy=True, order="C")
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"array must be {ndim}D, got {arr.ndim}D")
    arr.setflags(write=False)
    return arr


# ----------------------------
# Detection / compression models
# ----------------------------

@dataclass(frozen=True)
class SpikeWaveform:
    """Confirmed spike emitted by a channel's detector.

    Attributes:
        channel_id: Channel index the spike was detected on
        start_index: Sample index where the first-threshold candidate opened
        confirm_index: Sample index of the confirming second-threshold crossing;
            this is also the last sample of `samples`
        samples: The last `spike_length` filtered samples ending at `confirm_index`
    """

    channel_id: int
    start_index: int
    confirm_index: int
    samples: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        if self.channel_id < 0:
            raise ValueError("channel_id must be non-negative")
        if self.start_index < 0:
            raise ValueError("start_index must be non-negative")
        if self.confirm_index < self.start_index:
            raise ValueError("confirm_index must not precede start_index")
        samples = _freeze_array(self.samples, ndim=1)
        if samples.size == 0:
            raise ValueError("samples must not be empty")
        object.__setattr__(self, "samples", samples)

    @property
    def length(self) -> int:
        return int(self.samples.shape[0])

    def __reduce__(self):
        return (
            self.__class__,
            (
                self.channel_id,
                self.start_index,
                self.confirm_index,
                np.array(self.samples, copy=True, order="C"),
            ),
        )


@dataclass(frozen=True)
class EmbeddingBatch:
    """Compressed representation of one full batch of spikes from a single channel.

    `embeddings` has one row per compressed spike and one column per principal
    component. `sequence` counts batches per channel starting at 0, so a
    consumer can check that batches of a channel arrive in emission order.
    """

    channel_id: int
    sequence: int
    embeddings: np.ndarray = field(repr=False)
    spike_indices: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.channel_id < 0:
            raise ValueError("channel_id must be non-negative")
        if self.sequence < 0:
            raise ValueError("sequence must be non-negative")
        embeddings = _freeze_array(self.embeddings, ndim=2)
        indices = tuple(int(idx) for idx in self.spike_indices)
        if indices and len(indices) != embeddings.shape[0]:
            raise ValueError("spike_indices length must match the number of embedding rows")
        object.__setattr__(self, "embeddings", embeddings)
        object.__setattr__(self, "spike_indices", indices)

    @property
    def n_spikes(self) -> int:
        return int(self.embeddings.shape[0])

    @property
    def n_components(self) -> int:
        return int(self.embeddings.shape[1])


def _restore_end_of_stream() -> "_EndOfStreamSentinel":
    return EndOfStream


class _EndOfStreamSentinel:
    __slots__ = ()

    def __repr__(self) -> str:
        return "EndOfStream"

    def __reduce__(self):
        return (_restore_end_of_stream, ())


EndOfStream = _EndOfStreamSentinel()


__all__ = [
    "SpikeWaveform",
    "EmbeddingBatch",
    "EndOfStream",
]
