from __future__ import annotations

import asyncio

import pytest

from snatprobe.metrics import (
    Aggregator,
    AttemptCounters,
    EmptyWindow,
    ErrorType,
    Sample,
    WindowReport,
    WindowStats,
)


def _aggregator(
    reports: list[WindowReport],
    summary_interval: int = 1,
    final_flush: bool = False,
) -> tuple[Aggregator, asyncio.Queue[Sample], asyncio.Event]:
    queue: asyncio.Queue[Sample] = asyncio.Queue(maxsize=1024)
    stop = asyncio.Event()
    agg = Aggregator(queue, summary_interval, reports.append, stop, final_flush=final_flush)
    return agg, queue, stop


def test_counters_only_grow() -> None:
    counters = AttemptCounters()
    counters.record(failed=False)
    counters.record(failed=True)
    counters.record(failed=True)
    snap = counters.snapshot()
    assert snap.total_attempts == 3
    assert snap.total_errors == 2


def test_summary_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Aggregator(asyncio.Queue(), 0, lambda report: None, asyncio.Event())


def test_flush_keeps_cumulative_counters() -> None:
    reports: list[WindowReport] = []
    agg, _, _ = _aggregator(reports, summary_interval=2)
    agg.ingest(Sample(elapsed=0.01, failed=False))
    agg.ingest(Sample(elapsed=0.5, failed=True, error_type=ErrorType.TIMEOUT))
    first = agg.flush()
    assert isinstance(first, WindowStats)
    assert first.count == 2
    assert first.errors == 1
    assert first.rate == 1
    assert agg.pending == 0

    agg.ingest(Sample(elapsed=0.02, failed=False))
    second = agg.flush()
    assert isinstance(second, WindowStats)
    assert second.count == 1
    assert second.errors == 0
    assert second.totals.total_attempts == 3
    assert second.totals.total_errors == 1
    assert reports == [first, second]


def test_empty_flush_reports_no_data() -> None:
    reports: list[WindowReport] = []
    agg, _, _ = _aggregator(reports)
    agg.ingest(Sample(elapsed=0.01, failed=True))
    agg.flush()
    empty = agg.flush()
    assert isinstance(empty, EmptyWindow)
    assert empty.totals.total_attempts == 1
    assert empty.totals.total_errors == 1


@pytest.mark.asyncio
async def test_run_flushes_on_interval_and_stops() -> None:
    reports: list[WindowReport] = []
    agg, queue, stop = _aggregator(reports, summary_interval=1)
    task = asyncio.create_task(agg.run())
    for _ in range(5):
        await queue.put(Sample(elapsed=0.001, failed=False))
    await asyncio.sleep(1.2)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert len(reports) == 1
    stats = reports[0]
    assert isinstance(stats, WindowStats)
    assert stats.count == 5
    assert stats.rate == 5
    assert agg.counters.snapshot().total_attempts == 5


@pytest.mark.asyncio
async def test_run_reports_no_data_when_idle() -> None:
    reports: list[WindowReport] = []
    agg, _, stop = _aggregator(reports, summary_interval=1)
    task = asyncio.create_task(agg.run())
    await asyncio.sleep(1.1)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)
    assert len(reports) == 1
    assert isinstance(reports[0], EmptyWindow)


@pytest.mark.asyncio
async def test_cancellation_wins_without_final_flush() -> None:
    reports: list[WindowReport] = []
    agg, queue, stop = _aggregator(reports, summary_interval=60)
    task = asyncio.create_task(agg.run())
    await queue.put(Sample(elapsed=0.001, failed=False))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)
    assert agg.finalize() is None
    assert reports == []


@pytest.mark.asyncio
async def test_finalize_flushes_partial_window_when_enabled() -> None:
    reports: list[WindowReport] = []
    agg, queue, stop = _aggregator(reports, summary_interval=60, final_flush=True)
    task = asyncio.create_task(agg.run())
    await queue.put(Sample(elapsed=0.001, failed=False))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)
    queue.put_nowait(Sample(elapsed=0.002, failed=True))

    final = agg.finalize()
    assert isinstance(final, WindowStats)
    assert final.count == 2
    assert final.totals.total_errors == 1
    assert reports == [final]


async def _flood(queue: asyncio.Queue[Sample], stop: asyncio.Event) -> int:
    sent = 0
    while not stop.is_set():
        await queue.put(Sample(elapsed=0.001, failed=False))
        sent += 1
    return sent


@pytest.mark.asyncio
async def test_flush_timer_fires_while_queue_stays_busy() -> None:
    reports: list[WindowReport] = []
    queue: asyncio.Queue[Sample] = asyncio.Queue(maxsize=8)
    stop = asyncio.Event()
    agg = Aggregator(queue, 1, reports.append, stop)
    producer_stop = asyncio.Event()
    producers = [asyncio.create_task(_flood(queue, producer_stop)) for _ in range(4)]
    task = asyncio.create_task(agg.run())

    loop = asyncio.get_running_loop()
    deadline = loop.time() + 1.6
    while not reports and loop.time() < deadline:
        await asyncio.sleep(0.05)
    assert reports
    assert isinstance(reports[0], WindowStats)
    assert reports[0].count > 8

    stop.set()
    await asyncio.wait_for(task, timeout=0.5)
    producer_stop.set()
    for producer in producers:
        producer.cancel()
    await asyncio.gather(*producers, return_exceptions=True)


@pytest.mark.asyncio
async def test_cancellation_wins_over_saturated_queue() -> None:
    reports: list[WindowReport] = []
    queue: asyncio.Queue[Sample] = asyncio.Queue(maxsize=8)
    stop = asyncio.Event()
    agg = Aggregator(queue, 60, reports.append, stop)
    producer_stop = asyncio.Event()
    producers = [asyncio.create_task(_flood(queue, producer_stop)) for _ in range(4)]
    task = asyncio.create_task(agg.run())
    await asyncio.sleep(0.2)
    assert agg.pending > 8

    stop.set()
    await asyncio.wait_for(task, timeout=0.5)
    assert reports == []
    producer_stop.set()
    for producer in producers:
        producer.cancel()
    await asyncio.gather(*producers, return_exceptions=True)
