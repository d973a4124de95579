from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from shared.models import EmbeddingBatch, EndOfStream, SpikeWaveform
from shared.rolling_window import RollingWindow
from .compression import CompressionBasis, SpikeBatchCompressor, default_basis
from .conditioning import ChannelFilterState, highpass_alpha
from .detection import SpikeDetector
from .errors import MalformedRowError
from .settings import PipelineSettings
from .statistics import RunningStats

logger = logging.getLogger(__name__)

BatchSink = Callable[[EmbeddingBatch], None]
DiagnosticSink = Callable[[int, Sequence[float]], None]


@dataclass
class PipelineStats:
    rows: int = 0
    spikes: Counter = field(default_factory=Counter)
    batches: Counter = field(default_factory=Counter)
    candidates_expired: Counter = field(default_factory=Counter)
    discarded: Counter = field(default_factory=Counter)

    def snapshot(self) -> Dict[str, object]:
        return {
            "rows": self.rows,
            "spikes": dict(self.spikes),
            "batches": dict(self.batches),
            "candidates_expired": dict(self.candidates_expired),
            "discarded": dict(self.discarded),
        }


class ChannelState:
    """Everything one channel owns: filter memory, statistics, window and detector."""

    __slots__ = ("channel_id", "filter", "stats", "window", "detector")

    def __init__(self, channel_id: int, settings: PipelineSettings, alpha: float) -> None:
        self.channel_id = channel_id
        self.filter = ChannelFilterState(alpha)
        self.stats = RunningStats(settings.thresholds)
        self.window = RollingWindow(settings.spike_length)
        self.detector = SpikeDetector(
            channel_id,
            before_peak=settings.before_peak,
            min_spike_gap=settings.min_spike_gap,
            t1_floor=settings.thresholds.t1_floor,
        )

    def step(self, count: int, raw: float) -> tuple[float, Optional[SpikeWaveform]]:
        filtered = self.filter.update(raw)
        threshold1, threshold2 = self.stats.update(filtered)
        self.window.push(filtered)
        waveform = self.detector.process(count, filtered, threshold1, threshold2, self.window)
        return filtered, waveform


def _parse_sample(value: object, row_index: int, channel: int) -> float:
    if isinstance(value, bool):
        raise MalformedRowError(f"non-numeric field {value!r}", row_index=row_index, channel=channel)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (str, bytes)):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            raise MalformedRowError(
                f"non-numeric field {value!r}", row_index=row_index, channel=channel
            ) from None
    try:
        return float(value)  # numpy scalars and friends
    except (TypeError, ValueError):
        raise MalformedRowError(
            f"non-numeric field {value!r}", row_index=row_index, channel=channel
        ) from None


class SpikePipeline:
    """
    Streams sample rows through per-channel filtering, detection and compression.

    Rows must be delivered in temporal order. With ``workers > 1`` the channels
    of a row are processed on a thread pool; the row completes on every channel
    before the next row starts, so results do not depend on the worker count.
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        basis: Optional[CompressionBasis] = None,
        sink: Optional[BatchSink] = None,
        *,
        workers: int = 1,
        diagnostic_sink: Optional[DiagnosticSink] = None,
    ) -> None:
        self._settings = settings or PipelineSettings()
        self._settings.validate()
        self._basis = basis if basis is not None else default_basis()
        self._basis.check_spike_length(self._settings.spike_length)
        if workers <= 0:
            raise ValueError("workers must be positive")

        alpha = highpass_alpha(self._settings.cutoff_hz, self._settings.sample_rate)
        self._channels: List[ChannelState] = [
            ChannelState(ch, self._settings, alpha) for ch in range(self._settings.num_channels)
        ]
        self._compressor = SpikeBatchCompressor(
            self._basis,
            self._settings.num_channels,
            self._settings.spike_buffer_length,
        )
        self._sink = sink
        self._diagnostic_sink = diagnostic_sink
        self._workers = int(workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        if self._workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="SpikePipeline")
        self._row_index = 0
        self._stats = PipelineStats()
        self._closed = False
        logger.info(
            "Spike pipeline ready: %d channels, %.0f Hz, spike_length=%d, batch=%d, workers=%d",
            self._settings.num_channels,
            self._settings.sample_rate,
            self._settings.spike_length,
            self._settings.spike_buffer_length,
            self._workers,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def basis(self) -> CompressionBasis:
        return self._basis

    @property
    def row_index(self) -> int:
        """Number of rows processed so far; also the index of the next row."""
        return self._row_index

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    def channel(self, channel_id: int) -> ChannelState:
        if not 0 <= channel_id < len(self._channels):
            raise IndexError(f"channel {channel_id} out of range [0, {len(self._channels)})")
        return self._channels[channel_id]

    def pending(self, channel_id: int) -> int:
        return self._compressor.pending(channel_id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def parse_row(self, row: Sequence[object]) -> List[float]:
        index = self._row_index
        try:
            length = len(row)
        except TypeError:
            raise MalformedRowError("row is not a sequence", row_index=index) from None
        expected = self._settings.num_channels
        if length != expected:
            raise MalformedRowError(
                f"expected {expected} samples, got {length}", row_index=index
            )
        return [_parse_sample(value, index, ch) for ch, value in enumerate(row)]

    def process_row(self, row: Sequence[object]) -> List[EmbeddingBatch]:
        """Run one timestep through every channel; returns any batches completed by it."""
        if self._closed:
            raise RuntimeError("pipeline is closed")
        samples = self.parse_row(row)
        count = self._row_index

        if self._executor is not None:
            # map() yields in channel order and blocks until every channel is done.
            results = list(
                self._executor.map(lambda state: state.step(count, samples[state.channel_id]), self._channels)
            )
        else:
            results = [state.step(count, samples[state.channel_id]) for state in self._channels]

        emitted: List[EmbeddingBatch] = []
        for channel_id, (_, waveform) in enumerate(results):
            if waveform is None:
                continue
            self._stats.spikes[channel_id] += 1
            batch = self._compressor.add(waveform)
            if batch is not None:
                self._stats.batches[channel_id] += 1
                emitted.append(batch)
        self._sync_expired()

        self._row_index += 1
        self._stats.rows = self._row_index

        if self._diagnostic_sink is not None:
            self._diagnostic_sink(count, [filtered for filtered, _ in results])
        if self._sink is not None:
            for batch in emitted:
                self._sink(batch)
        return emitted

    def _sync_expired(self) -> None:
        for state in self._channels:
            expired = state.detector.counters.candidates_expired
            if expired:
                self._stats.candidates_expired[state.channel_id] = expired

    def run(self, rows: Iterable[Sequence[object]]) -> int:
        """Consume `rows` in order; returns the number of rows processed."""
        processed = 0
        for row in rows:
            self.process_row(row)
            processed += 1
        return processed

    def close(self) -> Dict[int, int]:
        """Stop accepting rows and discard partially filled batches."""
        if self._closed:
            return {}
        self._closed = True
        dropped = self._compressor.discard()
        for channel_id, count in dropped.items():
            self._stats.discarded[channel_id] += count
        self._sync_expired()
        if dropped:
            logger.info(
                "Discarded %d buffered spikes across %d channels at shutdown",
                sum(dropped.values()),
                len(dropped),
            )
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        return dropped

    def __enter__(self) -> "SpikePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class PipelineWorker(threading.Thread):
    """Background thread feeding rows from a queue through a SpikePipeline.

    Every emitted EmbeddingBatch is put on `output_queue` in emission order,
    followed by `EndOfStream` once the input ends, the worker is stopped or
    an error aborts the run. An aborting exception is kept in `error`; rows
    still queued at that point are dropped, and later `submit`/`finish`
    calls re-raise it.
    """

    def __init__(
        self,
        pipeline: SpikePipeline,
        *,
        queue_size: int = 1024,
        poll_timeout: float = 0.05,
    ) -> None:
        super().__init__(name="SpikePipelineWorker", daemon=True)
        self.pipeline = pipeline
        self.input_queue: "queue.Queue[Sequence[object] | EndOfStream]" = queue.Queue(maxsize=queue_size)
        self.output_queue: "queue.Queue[EmbeddingBatch | EndOfStream]" = queue.Queue()
        self.error: Optional[BaseException] = None
        self._poll_timeout = poll_timeout
        self._stop_evt = threading.Event()
        self._finished_evt = threading.Event()

    @property
    def finished(self) -> bool:
        return self._finished_evt.is_set()

    def run(self) -> None:  # type: ignore[override]
        logger.info("Pipeline worker started")
        try:
            while not self._stop_evt.is_set():
                try:
                    item = self.input_queue.get(timeout=self._poll_timeout)
                except queue.Empty:
                    continue
                try:
                    if item is EndOfStream:
                        break
                    for batch in self.pipeline.process_row(item):
                        self.output_queue.put(batch)
                finally:
                    self.input_queue.task_done()
        except MalformedRowError as exc:
            self.error = exc
            logger.error("Pipeline aborted: %s", exc)
        except Exception as exc:
            self.error = exc
            logger.exception("Pipeline aborted at row %d", self.pipeline.row_index)
        finally:
            self._finished_evt.set()
            dropped = self._drain_input()
            if dropped:
                logger.warning("Dropped %d queued rows after the worker stopped", dropped)
            self.pipeline.close()
            self.output_queue.put(EndOfStream)
            logger.info("Pipeline worker stopped after %d rows", self.pipeline.row_index)

    def _drain_input(self) -> int:
        dropped = 0
        while True:
            try:
                item = self.input_queue.get_nowait()
            except queue.Empty:
                return dropped
            self.input_queue.task_done()
            if item is not EndOfStream:
                dropped += 1

    def _raise_if_finished(self) -> None:
        if not self._finished_evt.is_set():
            return
        if self.error is not None:
            raise self.error
        raise RuntimeError("pipeline worker has stopped")

    def _put(self, item: object, timeout: Optional[float]) -> None:
        # Poll so a producer blocked on a full queue notices the worker ending.
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self._raise_if_finished()
            wait = self._poll_timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Full
                wait = min(wait, remaining)
            try:
                self.input_queue.put(item, timeout=wait)
            except queue.Full:
                continue
            if self._finished_evt.is_set():
                # Raced with shutdown; nothing will consume what is left.
                self._drain_input()
            return

    def submit(self, row: Sequence[object], timeout: Optional[float] = None) -> None:
        """Queue a row; raises the worker's error once it has stopped."""
        self._put(row, timeout)

    def finish(self) -> None:
        """Signal end of input; the worker drains queued rows first."""
        self._put(EndOfStream, None)

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """Cancel between rows; rows still queued are not processed."""
        self._stop_evt.set()
        self.join(timeout=timeout)


__all__ = [
    "BatchSink",
    "ChannelState",
    "DiagnosticSink",
    "PipelineStats",
    "PipelineWorker",
    "SpikePipeline",
]
