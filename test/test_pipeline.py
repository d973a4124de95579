import queue

import numpy as np
import pytest

from core import (
    CompressionBasis,
    ConfigurationError,
    MalformedRowError,
    PipelineSettings,
    PipelineWorker,
    SpikePipeline,
    ThresholdSettings,
)
from daq import SimulatedRecording
from shared.models import EndOfStream

# A near-zero cutoff makes the high-pass an identity for zero-started input,
# and zero multipliers pin the thresholds to their floors.
FIXED_THRESHOLDS = ThresholdSettings(t1_mult=0.0, t1_floor=0.0, t2_mult=0.0, t2_floor=10.0)


def _basis(spike_length=4, n_components=2):
    coefficients = np.arange(spike_length * n_components, dtype=np.float64).reshape(spike_length, n_components)
    return CompressionBasis(mean=np.ones(n_components), coefficients=coefficients / 10.0)


def _small_settings(**overrides):
    params = dict(
        num_channels=2,
        sample_rate=30_000.0,
        cutoff_hz=0.001,
        spike_length=4,
        before_peak=2,
        min_spike_gap=3,
        spike_buffer_length=1,
        thresholds=FIXED_THRESHOLDS,
    )
    params.update(overrides)
    return PipelineSettings(**params)


def _sim_settings(**overrides):
    params = dict(
        num_channels=3,
        spike_buffer_length=2,
        thresholds=ThresholdSettings(t1_mult=3.0, t1_floor=5.0, t2_mult=10.0, t2_floor=10.0),
    )
    params.update(overrides)
    return PipelineSettings(**params)


def _sim_rows(num_channels=3, seed=12):
    rec = SimulatedRecording(
        num_channels,
        30_000.0,
        duration_sec=0.5,
        spike_rate_hz=10.0,
        spike_width_samples=24,
        noise_std=10.0,
        dc_offset=50.0,
        seed=seed,
    )
    return rec.as_array()


def test_worked_example_through_pipeline():
    batches = []
    with SpikePipeline(_small_settings(), _basis(), sink=batches.append) as pipeline:
        trace = [0, 0, 0, 0, 7, 12, 0, 0, 0, 0]
        for value in trace:
            pipeline.process_row([value, 0])

    assert len(batches) == 1
    batch = batches[0]
    assert batch.channel_id == 0
    assert batch.sequence == 0
    assert batch.spike_indices == (5,)
    basis = _basis()
    expected = np.array([[0.0, 0.0, 7.0, 12.0]]) @ basis.coefficients - basis.mean
    np.testing.assert_allclose(batch.embeddings, expected, atol=1e-4)
    assert pipeline.stats.spikes[0] == 1
    assert pipeline.stats.spikes[1] == 0


def test_all_zero_rows_produce_nothing():
    pipeline = SpikePipeline(_small_settings(), _basis())
    emitted = [pipeline.process_row([0, 0]) for _ in range(200)]
    assert all(batch == [] for batch in emitted)
    assert pipeline.row_index == 200
    assert pipeline.stats.rows == 200
    pipeline.close()


def test_string_fields_are_parsed():
    pipeline = SpikePipeline(_small_settings(), _basis())
    pipeline.process_row(["1.5", " -2 "])
    assert pipeline.channel(0).filter.last_raw == 1.5
    assert pipeline.channel(1).filter.last_raw == -2.0
    pipeline.close()


@pytest.mark.parametrize("row", [[1.0], [1.0, 2.0, 3.0], []])
def test_wrong_row_width_is_malformed(row):
    pipeline = SpikePipeline(_small_settings(), _basis())
    pipeline.process_row([0, 0])
    with pytest.raises(MalformedRowError) as excinfo:
        pipeline.process_row(row)
    assert excinfo.value.row_index == 1
    assert excinfo.value.channel is None
    assert pipeline.row_index == 1


@pytest.mark.parametrize("bad", ["abc", "", None, True, object()])
def test_non_numeric_field_is_malformed(bad):
    pipeline = SpikePipeline(_small_settings(), _basis())
    with pytest.raises(MalformedRowError) as excinfo:
        pipeline.process_row([0.0, bad])
    assert excinfo.value.row_index == 0
    assert excinfo.value.channel == 1
    assert "row 0, channel 1" in str(excinfo.value)


def test_malformed_row_leaves_channel_state_untouched():
    pipeline = SpikePipeline(_small_settings(), _basis())
    pipeline.process_row([3.0, 4.0])
    with pytest.raises(MalformedRowError):
        pipeline.process_row([5.0, "x"])
    assert pipeline.channel(0).stats.sample_count == 1
    assert pipeline.channel(0).filter.last_raw == 3.0


def test_basis_must_match_spike_length():
    with pytest.raises(ConfigurationError):
        SpikePipeline(_small_settings(spike_length=5), _basis(spike_length=4))


def test_default_basis_used_with_default_spike_length():
    pipeline = SpikePipeline(PipelineSettings(num_channels=1))
    assert pipeline.basis.spike_length == 22
    pipeline.close()


def test_invalid_settings_rejected():
    with pytest.raises(ConfigurationError):
        SpikePipeline(_small_settings(num_channels=0), _basis())


def test_invalid_worker_count_rejected():
    with pytest.raises(ValueError):
        SpikePipeline(_small_settings(), _basis(), workers=0)


def test_channel_lookup_bounds():
    pipeline = SpikePipeline(_small_settings(), _basis())
    assert pipeline.channel(1).channel_id == 1
    with pytest.raises(IndexError):
        pipeline.channel(2)
    with pytest.raises(IndexError):
        pipeline.channel(-1)


def test_diagnostic_sink_receives_filtered_rows():
    seen = []
    pipeline = SpikePipeline(_small_settings(), _basis(), diagnostic_sink=lambda idx, row: seen.append((idx, list(row))))
    pipeline.process_row([5.0, -1.0])
    pipeline.process_row([5.0, -1.0])
    assert [idx for idx, _ in seen] == [0, 1]
    # First sample passes the filter unchanged.
    assert seen[0][1] == [5.0, -1.0]
    assert len(seen[1][1]) == 2


def test_closed_pipeline_rejects_rows():
    pipeline = SpikePipeline(_small_settings(), _basis())
    pipeline.close()
    with pytest.raises(RuntimeError):
        pipeline.process_row([0, 0])
    assert pipeline.close() == {}


def test_close_discards_partial_batches():
    pipeline = SpikePipeline(_small_settings(spike_buffer_length=5), _basis())
    for value in [0, 0, 0, 0, 7, 12, 0, 0]:
        pipeline.process_row([value, value])
    assert pipeline.pending(0) == 1
    assert pipeline.pending(1) == 1
    dropped = pipeline.close()
    assert dropped == {0: 1, 1: 1}
    assert pipeline.pending(0) == 0
    snapshot = pipeline.stats.snapshot()
    assert snapshot["discarded"] == {0: 1, 1: 1}
    assert snapshot["batches"] == {}


def test_sink_order_matches_return_order():
    received = []
    pipeline = SpikePipeline(_sim_settings(), sink=received.append)
    returned = []
    for row in _sim_rows():
        returned.extend(pipeline.process_row(row))
    pipeline.close()
    assert len(received) == len(returned)
    assert all(a is b for a, b in zip(received, returned))
    assert len(received) > 0
    for channel in range(3):
        seqs = [b.sequence for b in received if b.channel_id == channel]
        assert seqs == list(range(len(seqs)))


def test_run_returns_row_count():
    rows = _sim_rows()
    with SpikePipeline(_sim_settings()) as pipeline:
        assert pipeline.run(rows) == len(rows)
        assert pipeline.row_index == len(rows)


@pytest.mark.parametrize("workers", [2, 4])
def test_parallel_channels_are_deterministic(workers):
    rows = _sim_rows(seed=33)

    def collect(n_workers):
        out = []
        with SpikePipeline(_sim_settings(), sink=out.append, workers=n_workers) as pipeline:
            pipeline.run(rows)
        return out, pipeline.stats.snapshot()

    serial, serial_stats = collect(1)
    parallel, parallel_stats = collect(workers)

    assert len(serial) > 0
    assert [(b.channel_id, b.sequence, b.spike_indices) for b in serial] == [
        (b.channel_id, b.sequence, b.spike_indices) for b in parallel
    ]
    for a, b in zip(serial, parallel):
        assert a.embeddings.tobytes() == b.embeddings.tobytes()
    assert serial_stats == parallel_stats


def test_replay_is_deterministic():
    rows = _sim_rows(seed=8)

    def collect():
        out = []
        with SpikePipeline(_sim_settings(), sink=out.append) as pipeline:
            pipeline.run(rows)
        return [(b.channel_id, b.spike_indices, b.embeddings.tobytes()) for b in out]

    assert collect() == collect()


def test_expired_candidates_reported_during_run():
    pipeline = SpikePipeline(_small_settings(), _basis())
    # Candidate opens at 4 and expires at 6 without a second crossing.
    for value in [0, 0, 0, 0, 7, 0, 0]:
        pipeline.process_row([value, 0])
    assert pipeline.stats.snapshot()["candidates_expired"] == {0: 1}
    pipeline.close()
    assert pipeline.stats.snapshot()["candidates_expired"] == {0: 1}


def _drain(q, timeout=5.0):
    items = []
    while True:
        item = q.get(timeout=timeout)
        if item is EndOfStream:
            return items
        items.append(item)


def test_worker_reports_sink_failure():
    def failing_sink(batch):
        raise RuntimeError("downstream unavailable")

    worker = PipelineWorker(SpikePipeline(_small_settings(), _basis(), sink=failing_sink))
    for value in [0, 0, 0, 0, 7, 12, 0]:
        worker.submit([value, 0])
    worker.start()
    batches = _drain(worker.output_queue)
    worker.join(timeout=5.0)

    assert batches == []
    assert isinstance(worker.error, RuntimeError)
    assert "downstream unavailable" in str(worker.error)
    assert worker.finished
    assert worker.pipeline.row_index == 6


def test_submit_after_abort_raises_worker_error():
    worker = PipelineWorker(SpikePipeline(_small_settings(), _basis()), queue_size=2, poll_timeout=0.01)
    worker.start()
    worker.submit(["bad"])
    assert _drain(worker.output_queue) == []
    worker.join(timeout=5.0)

    assert isinstance(worker.error, MalformedRowError)
    for _ in range(3):
        with pytest.raises(MalformedRowError):
            worker.submit([0.0, 0.0])
    with pytest.raises(MalformedRowError):
        worker.finish()
    # Nothing is left unacknowledged on the input queue.
    worker.input_queue.join()
    assert worker.input_queue.empty()


def test_queued_rows_dropped_after_abort():
    worker = PipelineWorker(SpikePipeline(_small_settings(), _basis()), queue_size=8)
    worker.submit(["bad"])
    worker.submit([0.0, 0.0])
    worker.submit([1.0, 1.0])
    worker.start()
    assert _drain(worker.output_queue) == []
    worker.join(timeout=5.0)

    assert worker.error.row_index == 0
    assert worker.pipeline.row_index == 0
    worker.input_queue.join()


def test_submit_after_stop_raises():
    worker = PipelineWorker(SpikePipeline(_small_settings(), _basis()), poll_timeout=0.01)
    worker.start()
    worker.stop(timeout=5.0)
    assert worker.error is None
    with pytest.raises(RuntimeError, match="stopped"):
        worker.submit([0.0, 0.0])


def test_submit_times_out_on_full_queue():
    worker = PipelineWorker(SpikePipeline(_small_settings(), _basis()), queue_size=1, poll_timeout=0.01)
    worker.submit([0.0, 0.0])
    with pytest.raises(queue.Full):
        worker.submit([0.0, 0.0], timeout=0.05)
