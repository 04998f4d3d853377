from __future__ import annotations

import asyncio
import logging

from snatprobe.config import WorkerConfig
from snatprobe.loadgen.probe import Attempt, ProbeResult, open_prober
from snatprobe.metrics import Sample

logger = logging.getLogger(__name__)


class ProbeWorker:
    """Fires one attempt per dial interval and hands every outcome to the egress queue.

    Ticks follow a fixed cadence on the loop clock. A tick that falls behind
    because an attempt ran long is skipped rather than fired late.
    """

    def __init__(
        self,
        worker_id: int,
        config: WorkerConfig,
        stop: asyncio.Event,
        egress: asyncio.Queue[Sample],
        attempt: Attempt | None = None,
    ) -> None:
        self.worker_id = worker_id
        self.config = config
        self._stop = stop
        self._egress = egress
        self._attempt = attempt
        self._attempts = 0
        self._dropped = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def dropped(self) -> int:
        return self._dropped

    async def run(self) -> None:
        if self._attempt is not None:
            await self._loop(self._attempt)
            return
        async with open_prober(self.config) as attempt:
            await self._loop(attempt)

    async def _loop(self, attempt: Attempt) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.dial_interval
        next_tick = loop.time() + interval
        while True:
            if await self._wait_until(loop, next_tick):
                break
            result = await attempt()
            self._attempts += 1
            self._log(result)
            if not await self._emit(result.sample):
                break
            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                next_tick += ((now - next_tick) // interval + 1) * interval
        logger.debug("Worker %d stopped after %d attempts", self.worker_id, self._attempts)

    async def _wait_until(self, loop: asyncio.AbstractEventLoop, deadline: float) -> bool:
        """Sleep until ``deadline``; True when cancellation arrived first."""
        if self._stop.is_set():
            return True
        delay = deadline - loop.time()
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _emit(self, sample: Sample) -> bool:
        try:
            self._egress.put_nowait(sample)
            return True
        except asyncio.QueueFull:
            logger.debug("Worker %d blocked on a full queue", self.worker_id)
        put = asyncio.create_task(self._egress.put(sample))
        stopped = asyncio.create_task(self._stop.wait())
        try:
            done, _ = await asyncio.wait({put, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not put.done():
                put.cancel()
        if put in done:
            return True
        self._dropped += 1
        logger.debug("Worker %d dropped a sample during shutdown", self.worker_id)
        return False

    def _log(self, result: ProbeResult) -> None:
        elapsed_ms = int(result.sample.elapsed_ms)
        if result.sample.failed:
            logger.warning("error after %dms, err: %r", elapsed_ms, result.error)
            return
        if result.sample.elapsed <= self.config.slow_threshold:
            return
        if result.request_id is None:
            logger.warning("slow | %6dms", elapsed_ms)
        else:
            logger.warning("slow | %6dms | %s | %d", elapsed_ms, result.body, result.request_id)
