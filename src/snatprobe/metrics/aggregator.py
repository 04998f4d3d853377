from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Sequence

import numpy as np

from snatprobe.metrics.models import CounterSnapshot, EmptyWindow, Sample, WindowReport, WindowStats

logger = logging.getLogger(__name__)

Reporter = Callable[[WindowReport], None]


class AttemptCounters:
    """Run-scoped attempt/error totals. Only ``record`` and ``snapshot`` touch them."""

    __slots__ = ("_lock", "_attempts", "_errors")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attempts = 0
        self._errors = 0

    def record(self, failed: bool) -> None:
        with self._lock:
            self._attempts += 1
            if failed:
                self._errors += 1

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(total_attempts=self._attempts, total_errors=self._errors)


def percentile_index(n: int, k: int) -> int:
    """Index of the k-th percentile in a sorted sequence of length n: floor((n-1)*k/100)."""
    if n <= 0:
        msg = "percentile_index needs at least one element"
        raise ValueError(msg)
    return (n - 1) * k // 100


def compute_window_stats(
    durations: Sequence[float],
    errors: int,
    period_sec: int,
    totals: CounterSnapshot,
) -> WindowReport:
    n = len(durations)
    if n == 0:
        return EmptyWindow(period_sec=period_sec, totals=totals)
    ordered = np.sort(np.asarray(durations, dtype=np.float64))
    return WindowStats(
        period_sec=period_sec,
        count=n,
        errors=errors,
        max_sec=float(ordered[n - 1]),
        p99_sec=float(ordered[percentile_index(n, 99)]),
        p95_sec=float(ordered[percentile_index(n, 95)]),
        median_sec=float(ordered[percentile_index(n, 50)]),
        mean_sec=float(ordered.mean()),
        rate=n // period_sec,
        totals=totals,
    )


class Aggregator:
    def __init__(
        self,
        queue: asyncio.Queue[Sample],
        summary_interval: int,
        reporter: Reporter,
        stop: asyncio.Event,
        counters: AttemptCounters | None = None,
        final_flush: bool = False,
    ) -> None:
        if summary_interval <= 0:
            msg = f"Summary interval must be positive, got {summary_interval}"
            raise ValueError(msg)
        self.summary_interval = summary_interval
        self.counters = counters or AttemptCounters()
        self.final_flush = final_flush
        self._queue = queue
        self._reporter = reporter
        self._stop = stop
        self._durations: list[float] = []
        self._window_errors = 0

    @property
    def pending(self) -> int:
        return len(self._durations)

    def ingest(self, sample: Sample) -> None:
        self._durations.append(sample.elapsed)
        if sample.failed:
            self._window_errors += 1
        self.counters.record(sample.failed)

    def flush(self) -> WindowReport:
        report = compute_window_stats(
            self._durations,
            self._window_errors,
            self.summary_interval,
            self.counters.snapshot(),
        )
        self._durations.clear()
        self._window_errors = 0
        logger.debug("Flushed window: %s", report)
        self._reporter(report)
        return report

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        next_flush = loop.time() + self.summary_interval
        stopped = asyncio.create_task(self._stop.wait())
        next_sample: asyncio.Task[Sample] | None = None
        try:
            while not self._stop.is_set():
                if next_sample is None:
                    next_sample = asyncio.create_task(self._queue.get())
                timeout = max(0.0, next_flush - loop.time())
                done, _ = await asyncio.wait(
                    {next_sample, stopped},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if next_sample in done:
                    self.ingest(next_sample.result())
                    next_sample = None
                    self._drain_ready(loop, next_flush)
                now = loop.time()
                if now >= next_flush:
                    self.flush()
                    while next_flush <= now:
                        next_flush += self.summary_interval
        finally:
            stopped.cancel()
            if next_sample is not None:
                if next_sample.done() and not next_sample.cancelled():
                    self.ingest(next_sample.result())
                else:
                    next_sample.cancel()
        logger.debug("Aggregator stopped with %d samples in the open window", self.pending)

    def _drain_ready(self, loop: asyncio.AbstractEventLoop, next_flush: float) -> None:
        while not self._queue.empty() and not self._stop.is_set() and loop.time() < next_flush:
            self.ingest(self._queue.get_nowait())

    def finalize(self) -> WindowReport | None:
        """Close the run. Must only be called once every producer has exited."""
        if not self.final_flush:
            logger.info("Discarding %d samples from the partial window", self.pending + self._queue.qsize())
            return None
        while not self._queue.empty():
            self.ingest(self._queue.get_nowait())
        return self.flush()
