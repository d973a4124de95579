"""Batch-wise PCA compression of confirmed spike waveforms.

The projection basis (component means and coefficient matrix) is trained
offline and supplied as configuration. Compressing a batch is a single
matrix product::

    embeddings = W @ coefficients - mean

where ``W`` stacks ``spike_buffer_length`` waveforms of ``spike_length``
samples each.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from shared.models import EmbeddingBatch, SpikeWaveform
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _readonly(array, *, ndim: int, name: str) -> np.ndarray:
    try:
        arr = np.array(array, dtype=np.float64, copy=True, order="C")
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be numeric: {exc}") from exc
    if arr.ndim != ndim:
        raise ConfigurationError(f"{name} must be {ndim}D, got {arr.ndim}D")
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} must contain only finite values")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class CompressionBasis:
    """Precomputed PCA projection shared read-only by every channel.

    Attributes:
        mean: Length-K vector subtracted after projection
        coefficients: (spike_length, K) projection matrix
    """

    mean: np.ndarray = field(repr=False)
    coefficients: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        mean = _readonly(self.mean, ndim=1, name="mean")
        coefficients = _readonly(self.coefficients, ndim=2, name="coefficients")
        if coefficients.shape[1] != mean.shape[0]:
            raise ConfigurationError(
                f"mean length {mean.shape[0]} does not match coefficient columns {coefficients.shape[1]}"
            )
        if mean.shape[0] == 0:
            raise ConfigurationError("basis must have at least one component")
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "coefficients", coefficients)

    @property
    def spike_length(self) -> int:
        return int(self.coefficients.shape[0])

    @property
    def n_components(self) -> int:
        return int(self.coefficients.shape[1])

    def check_spike_length(self, spike_length: int) -> None:
        if self.spike_length != spike_length:
            raise ConfigurationError(
                f"basis has {self.spike_length} coefficient rows, expected spike_length={spike_length}"
            )

    @classmethod
    def load(cls, path: str | Path) -> "CompressionBasis":
        """Load a basis from an ``.npz`` archive holding ``mean`` and ``coefficients``."""
        path = Path(path)
        with np.load(path) as archive:
            missing = [key for key in ("mean", "coefficients") if key not in archive.files]
            if missing:
                raise ConfigurationError(f"{path} is missing arrays: {', '.join(missing)}")
            basis = cls(mean=archive["mean"], coefficients=archive["coefficients"])
        logger.info("Loaded compression basis from %s (%d x %d)", path, basis.spike_length, basis.n_components)
        return basis

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        if path.suffix.lower() != ".npz":
            path = path.with_suffix(".npz")
        np.savez(path, mean=self.mean, coefficients=self.coefficients)
        return path


# Four-component basis trained on a 22-sample spike window of a 32-channel,
# 30 kHz MEA recording.
_DEFAULT_MEAN = (-115.21631559, -20.40026275, -2.17209171, 0.88116711)
_DEFAULT_COEFFICIENTS = (
    (0.22092193, 0.11558138, -0.21872051, 0.37172734),
    (0.30996979, 0.15590247, -0.26609597, 0.34530065),
    (0.33207249, 0.16399986, -0.23350182, 0.1798407),
    (0.34520316, 0.15720681, -0.17618261, 0.00708204),
    (0.33748027, 0.13236452, -0.09906053, -0.13809233),
    (0.31999083, 0.09622249, -0.02029416, -0.22862091),
    (0.29940146, 0.0552858, 0.05841917, -0.26879006),
    (0.27570837, 0.01144066, 0.14106933, -0.26928983),
    (0.24976398, -0.03503576, 0.22421329, -0.22981739),
    (0.22309473, -0.0857638, 0.29285845, -0.14309402),
    (0.19717888, -0.13959793, 0.32705755, -0.01600818),
    (0.17181376, -0.19323624, 0.31075467, 0.12294715),
    (0.14671264, -0.24203982, 0.24896777, 0.22944826),
    (0.12279778, -0.27909411, 0.1548717, 0.27321599),
    (0.10111053, -0.30258439, 0.0492714, 0.25135961),
    (0.08204061, -0.31325844, -0.04798948, 0.17961701),
    (0.06559903, -0.31458296, -0.13010998, 0.08260568),
    (0.05129058, -0.30863557, -0.19506353, -0.02281793),
    (0.03849774, -0.29780081, -0.24144244, -0.11958309),
    (0.02737146, -0.28140923, -0.26782115, -0.19380861),
    (0.01843086, -0.26248544, -0.27446996, -0.24009034),
    (0.01076361, -0.24122548, -0.26766447, -0.25659321),
)


def default_basis() -> CompressionBasis:
    return CompressionBasis(mean=np.array(_DEFAULT_MEAN), coefficients=np.array(_DEFAULT_COEFFICIENTS))


def project(waveforms: np.ndarray, basis: CompressionBasis) -> np.ndarray:
    """Project a (n_spikes, spike_length) matrix onto `basis`."""
    W = np.asarray(waveforms, dtype=np.float64)
    if W.ndim != 2 or W.shape[1] != basis.spike_length:
        raise ValueError(
            f"waveforms must have shape (n, {basis.spike_length}), got {W.shape}"
        )
    return W @ basis.coefficients - basis.mean


class SpikeBatchCompressor:
    """Collects confirmed waveforms per channel and compresses every full batch."""

    def __init__(self, basis: CompressionBasis, num_channels: int, batch_length: int) -> None:
        if num_channels <= 0:
            raise ConfigurationError("num_channels must be positive")
        if batch_length <= 0:
            raise ConfigurationError("batch_length must be positive")
        self._basis = basis
        self._batch_length = int(batch_length)
        self._batches: List[List[SpikeWaveform]] = [[] for _ in range(num_channels)]
        self._next_sequence: List[int] = [0] * num_channels

    @property
    def basis(self) -> CompressionBasis:
        return self._basis

    @property
    def batch_length(self) -> int:
        return self._batch_length

    def pending(self, channel_id: int) -> int:
        return len(self._batches[channel_id])

    def add(self, waveform: SpikeWaveform) -> Optional[EmbeddingBatch]:
        channel_id = waveform.channel_id
        if not 0 <= channel_id < len(self._batches):
            raise IndexError(f"channel {channel_id} out of range")
        if waveform.length != self._basis.spike_length:
            raise ValueError(
                f"waveform has {waveform.length} samples, basis expects {self._basis.spike_length}"
            )
        batch = self._batches[channel_id]
        batch.append(waveform)
        if len(batch) < self._batch_length:
            return None

        # Swap in a fresh list before projecting so the channel never holds a full batch.
        self._batches[channel_id] = []
        return self._compress(channel_id, batch)

    def _compress(self, channel_id: int, batch: Sequence[SpikeWaveform]) -> EmbeddingBatch:
        W = np.stack([wf.samples for wf in batch])
        embeddings = project(W, self._basis)
        sequence = self._next_sequence[channel_id]
        self._next_sequence[channel_id] = sequence + 1
        logger.debug("Channel %d: compressed batch %d (%d spikes)", channel_id, sequence, len(batch))
        return EmbeddingBatch(
            channel_id=channel_id,
            sequence=sequence,
            embeddings=embeddings,
            spike_indices=tuple(wf.confirm_index for wf in batch),
        )

    def discard(self) -> Dict[int, int]:
        """Drop every partially filled batch; returns dropped counts by channel."""
        dropped = {idx: len(batch) for idx, batch in enumerate(self._batches) if batch}
        for idx in dropped:
            self._batches[idx] = []
        return dropped


__all__ = ["CompressionBasis", "SpikeBatchCompressor", "default_basis", "project"]
