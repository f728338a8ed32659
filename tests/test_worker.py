"""
Analysis Worker Tests

Tests for the threaded front end: latest-wins inbox, sinks and reset.
"""

import logging
import queue
import warnings

import pytest
import numpy as np

from stereoscope import AnalysisWorker, AudioBlock
from stereoscope.params import BandParams, EngineConfig, WorkerParams


SR = 44100
FFT = 1024


def make_block(timestamp: float, seed: int = 0) -> AudioBlock:
    rng = np.random.default_rng(seed)
    return AudioBlock.from_time_data(
        rng.normal(0, 0.2, FFT), rng.normal(0, 0.2, FFT), SR, timestamp=timestamp
    )


def small_config(capacity: int = 2) -> EngineConfig:
    return EngineConfig(
        bands=BandParams(band_count=8),
        worker=WorkerParams(queue_capacity=capacity, poll_interval_sec=0.05),
    )


def drain(results: queue.Queue):
    items = []
    while True:
        try:
            items.append(results.get_nowait())
        except queue.Empty:
            return items


@pytest.fixture(autouse=True)
def quiet_history_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        yield


class TestDelivery:
    """Tests for metrics delivery to sinks."""

    def test_queue_sink_receives_metrics(self):
        results = queue.Queue()
        with AnalysisWorker(config=small_config(), sinks=[results]) as worker:
            assert worker.submit(make_block(0.5))
            metrics = results.get(timeout=5.0)
        assert metrics.timestamp == 0.5
        assert metrics.block_index == 0
        assert not worker.is_running

    def test_callable_sink(self):
        received = []
        with AnalysisWorker(config=small_config(), sinks=[received.append]) as worker:
            for i in range(3):
                worker.submit(make_block(float(i), seed=i))
                assert worker.wait_idle(5.0)
        assert [m.block_index for m in received] == [0, 1, 2]
        assert worker.processed_blocks == 3

    def test_failing_sink_is_logged_and_others_still_served(self, caplog):
        def broken(metrics):
            raise RuntimeError("display went away")

        results = queue.Queue()
        with caplog.at_level(logging.ERROR, logger='stereoscope.worker'):
            with AnalysisWorker(config=small_config(), sinks=[broken, results]) as worker:
                worker.submit(make_block(0.0))
                assert worker.wait_idle(5.0)
        assert results.qsize() == 1
        assert any('failed' in r.getMessage() for r in caplog.records)

    def test_full_queue_sink_drops_snapshot(self):
        results = queue.Queue(maxsize=1)
        with AnalysisWorker(config=small_config(), sinks=[results]) as worker:
            for i in range(3):
                worker.submit(make_block(float(i)))
                assert worker.wait_idle(5.0)
        assert results.qsize() == 1
        assert results.get_nowait().timestamp == 0.0

    def test_add_and_remove_sink(self):
        received = []
        worker = AnalysisWorker(config=small_config())
        worker.add_sink(received.append)
        worker.remove_sink(received.append)
        worker.remove_sink(received.append)
        with worker:
            worker.submit(make_block(0.0))
            assert worker.wait_idle(5.0)
        assert received == []


class TestBackpressure:
    """Tests for the latest-wins inbox."""

    def test_oldest_pending_block_dropped(self):
        results = queue.Queue()
        worker = AnalysisWorker(config=small_config(capacity=2), sinks=[results])
        assert worker.submit(make_block(1.0))
        assert worker.submit(make_block(2.0))
        assert not worker.submit(make_block(3.0))
        assert worker.dropped_blocks == 1

        with worker:
            assert worker.wait_idle(5.0)
        assert [m.timestamp for m in drain(results)] == [2.0, 3.0]

    def test_single_slot_inbox_keeps_newest(self):
        results = queue.Queue()
        worker = AnalysisWorker(config=small_config(capacity=1), sinks=[results])
        for i in range(5):
            worker.submit(make_block(float(i)))
        assert worker.dropped_blocks == 4

        with worker:
            assert worker.wait_idle(5.0)
        assert [m.timestamp for m in drain(results)] == [4.0]

    def test_submit_never_blocks(self):
        worker = AnalysisWorker(config=small_config(capacity=1))
        for i in range(50):
            worker.submit(make_block(float(i)))
        assert worker.dropped_blocks == 49


class TestReset:
    """Tests for reset through the worker."""

    def test_reset_without_thread_clears_engine(self):
        worker = AnalysisWorker(config=small_config())
        worker.engine.process_block(make_block(0.0))
        worker.submit(make_block(1.0))
        worker.reset()
        assert worker.engine.block_count == 0
        assert worker.engine.tracker.history_length() == 0

        results = queue.Queue()
        worker.add_sink(results)
        with worker:
            assert worker.wait_idle(5.0)
        assert results.empty()

    def test_reset_while_running_restarts_analysis(self):
        results = queue.Queue()
        with AnalysisWorker(config=small_config(), sinks=[results]) as worker:
            for i in range(4):
                worker.submit(make_block(float(i), seed=i))
                assert worker.wait_idle(5.0)
            worker.reset()
            worker.submit(make_block(10.0))
            assert worker.wait_idle(5.0)

        delivered = drain(results)
        assert delivered[-1].timestamp == 10.0
        assert delivered[-1].block_index == 0

    def test_stop_is_idempotent(self):
        worker = AnalysisWorker(config=small_config())
        worker.start()
        worker.start()
        worker.stop()
        worker.stop()
        assert not worker.is_running
