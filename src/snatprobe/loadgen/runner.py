from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import signal
from dataclasses import dataclass

from snatprobe.config import ClientConfig
from snatprobe.loadgen.pool import WorkerPool
from snatprobe.loadgen.probe import Attempt
from snatprobe.metrics import Aggregator, CounterSnapshot, Reporter, Sample, TextReporter

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True, slots=True)
class RunResult:
    totals: CounterSnapshot
    attempts: int
    dropped: int


def install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> list[signal.Signals]:
    installed: list[signal.Signals] = []
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install a handler for %s on this platform", sig.name)
            continue
        installed.append(sig)
    return installed


async def run_client(
    config: ClientConfig,
    reporter: Reporter | None = None,
    duration: float | None = None,
    handle_signals: bool = True,
    attempt: Attempt | None = None,
) -> RunResult:
    worker_config = config.worker_config()
    logger.debug("Client configuration: %s", dict(config.to_metadata()))
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    queue: asyncio.Queue[Sample] = asyncio.Queue(maxsize=config.queue_size)

    installed = install_signal_handlers(loop, stop) if handle_signals else []
    timer = loop.call_later(duration, stop.set) if duration is not None else None

    pool = WorkerPool(stop)
    aggregator = Aggregator(
        queue,
        config.summary_interval_sec,
        reporter or TextReporter(),
        stop,
        final_flush=config.final_summary,
    )
    aggregator_task: asyncio.Task[None] | None = None
    try:
        pool.start(config.workers, worker_config, queue, attempt)
        logger.info("Recording, printing a summary every %ds", config.summary_interval_sec)
        aggregator_task = asyncio.create_task(aggregator.run(), name="aggregator")
        aggregator_task.add_done_callback(functools.partial(_stop_on_failure, stop))
        await stop.wait()
        logger.info("Stopping...")
        await pool.join()
        await aggregator_task
        aggregator.finalize()
    finally:
        stop.set()
        if timer is not None:
            timer.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)
        if aggregator_task is not None and not aggregator_task.done():
            aggregator_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await aggregator_task
    return RunResult(
        totals=aggregator.counters.snapshot(),
        attempts=pool.attempts,
        dropped=pool.dropped,
    )


def _stop_on_failure(stop: asyncio.Event, task: asyncio.Task[None]) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error("Aggregator failed, stopping the run", exc_info=task.exception())
    stop.set()
