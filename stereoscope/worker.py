"""
Analysis Worker Module

Runs an AnalysisEngine on a dedicated thread.

- submit() never blocks the producer. The inbox holds at most
  queue_capacity blocks; when it is full the oldest pending block is
  dropped so the newest data wins.
- Blocks are processed strictly one after another; only the worker thread
  touches the engine.
- Each Metrics snapshot is handed to every registered sink. A sink is
  either a queue-like object (put_nowait) or a callable.
- reset() discards pending blocks and clears the engine before the next
  block is analyzed. Snapshots of a block that was in flight during the
  reset are not delivered.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, List, Optional, Tuple, Union

from stereoscope.blocks import AudioBlock
from stereoscope.engine import AnalysisEngine
from stereoscope.metrics import Metrics
from stereoscope.params import EngineConfig

Sink = Union[Callable[[Metrics], Any], "queue.Queue[Metrics]"]

_LOG = logging.getLogger(__name__)


class AnalysisWorker:
    """
    Threaded front end of one engine.

    Usage:
        results: queue.Queue = queue.Queue(maxsize=8)
        with AnalysisWorker(sinks=[results]) as worker:
            worker.submit(block)
            metrics = results.get(timeout=1.0)
    """

    def __init__(
        self,
        engine: Optional[AnalysisEngine] = None,
        *,
        config: Optional[EngineConfig] = None,
        sinks: Optional[List[Sink]] = None,
        name: str = "StereoscopeAnalysis",
    ) -> None:
        self.engine = engine or AnalysisEngine(config)
        worker_params = self.engine.config.worker
        self._poll_interval = worker_params.poll_interval_sec
        self._name = name

        self._inbox: queue.Queue[Tuple[int, AudioBlock]] = queue.Queue(
            maxsize=worker_params.queue_capacity
        )
        self._inbox_guard = threading.Lock()
        self._sinks: List[Sink] = list(sinks or [])
        self._sinks_guard = threading.Lock()

        self._generation = 0
        self._applied_generation = 0
        self._stop = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._thread: Optional[threading.Thread] = None

        self.dropped_blocks = 0
        self.processed_blocks = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> "AnalysisWorker":
        if self._thread and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        _LOG.info("Analysis worker %s started (%d bands)", self._name, self.engine.band_count)
        return self

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the worker thread; pending blocks are discarded."""
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                _LOG.warning("Analysis worker %s did not stop within %.1fs", self._name, timeout)
        self._thread = None
        self._drain()
        self._idle.set()
        _LOG.info("Analysis worker %s stopped after %d blocks", self._name, self.processed_blocks)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "AnalysisWorker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # -------------------------------------------------------------------------
    # Sinks
    # -------------------------------------------------------------------------

    def add_sink(self, sink: Sink) -> None:
        with self._sinks_guard:
            self._sinks.append(sink)

    def remove_sink(self, sink: Sink) -> None:
        with self._sinks_guard:
            if sink in self._sinks:
                self._sinks.remove(sink)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def submit(self, block: AudioBlock) -> bool:
        """
        Queue a block for analysis without blocking.

        Returns:
            True if the block was queued without displacing another one,
            False if the oldest pending block was dropped to make room
        """
        with self._inbox_guard:
            item = (self._generation, block)
            self._idle.clear()
            try:
                self._inbox.put_nowait(item)
                return True
            except queue.Full:
                pass
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                pass
            self.dropped_blocks += 1
            _LOG.debug("Analysis inbox full, dropped oldest pending block")
            self._inbox.put_nowait(item)
            return False

    def reset(self) -> None:
        """
        Request a full engine reset (e.g. a new source was loaded).

        Pending blocks are discarded. The engine is cleared before the next
        block is analyzed; with no running thread it is cleared immediately.
        """
        with self._inbox_guard:
            self._generation += 1
            self._drain()
            if not self.is_running:
                self.engine.reset()
                self._applied_generation = self._generation
        _LOG.info("Analysis worker %s reset requested", self._name)

    def wait_idle(self, timeout: float = 2.0) -> bool:
        """Wait until every submitted block has been processed."""
        return self._idle.wait(timeout)

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _drain(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                generation, block = self._inbox.get(timeout=self._poll_interval)
            except queue.Empty:
                self._mark_idle_if_empty()
                continue

            if self._stop.is_set():
                break

            with self._inbox_guard:
                current = self._generation
            if generation != current:
                self._mark_idle_if_empty()
                continue
            if self._applied_generation != current:
                self.engine.reset()
                self._applied_generation = current
                _LOG.debug("Engine state cleared for generation %d", current)

            try:
                metrics = self.engine.process_block(block)
            except Exception:
                _LOG.exception("Analysis failed for block at t=%.3f", block.timestamp)
                self._mark_idle_if_empty()
                continue

            self.processed_blocks += 1
            with self._inbox_guard:
                stale = generation != self._generation
            if not stale:
                self._deliver(metrics)
            self._mark_idle_if_empty()

    def _mark_idle_if_empty(self) -> None:
        with self._inbox_guard:
            if self._inbox.empty():
                self._idle.set()

    def _deliver(self, metrics: Metrics) -> None:
        with self._sinks_guard:
            sinks = list(self._sinks)
        for sink in sinks:
            put_nowait = getattr(sink, 'put_nowait', None)
            try:
                if put_nowait is not None:
                    put_nowait(metrics)
                else:
                    sink(metrics)
            except queue.Full:
                _LOG.debug("Metrics sink %r full, dropping snapshot %d", sink, metrics.block_index)
            except Exception:
                _LOG.exception("Metrics sink %r failed", sink)
