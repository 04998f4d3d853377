from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from snatprobe.config import WorkerConfig
from snatprobe.loadgen.probe import Attempt
from snatprobe.loadgen.worker import ProbeWorker
from snatprobe.metrics import Sample

logger = logging.getLogger(__name__)


class WorkerPool:
    """Owns a fixed set of probe workers sharing one config and one egress queue.

    ``stop`` is a join barrier: it returns only once every worker task has
    exited, so the egress queue has no writers left afterwards.
    """

    def __init__(self, stop: asyncio.Event | None = None) -> None:
        self._stop = stop or asyncio.Event()
        self._workers: list[ProbeWorker] = []
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def attempts(self) -> int:
        return sum(worker.attempts for worker in self._workers)

    @property
    def dropped(self) -> int:
        return sum(worker.dropped for worker in self._workers)

    def start(
        self,
        n: int,
        config: WorkerConfig,
        egress: asyncio.Queue[Sample],
        attempt: Attempt | None = None,
    ) -> None:
        if n < 1:
            msg = f"Worker count must be positive, got {n}"
            raise ValueError(msg)
        if self._tasks:
            msg = "Worker pool already started"
            raise RuntimeError(msg)
        self._workers = [ProbeWorker(i, config, self._stop, egress, attempt) for i in range(n)]
        self._tasks = [
            asyncio.create_task(worker.run(), name=f"probe-worker-{worker.worker_id}")
            for worker in self._workers
        ]
        logger.info(
            "Started %d workers with a %dus interval on %s",
            n,
            int(config.dial_interval * 1_000_000),
            config.target,
        )

    async def join(self) -> None:
        if not self._tasks:
            return
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError)]
        for exc in failures:
            logger.error("Worker exited with an error", exc_info=exc)
        if failures:
            raise failures[0]

    async def stop(self) -> None:
        self._stop.set()
        await self.join()
        logger.debug("All %d workers joined", self.size)

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
