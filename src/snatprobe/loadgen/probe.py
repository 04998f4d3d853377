from __future__ import annotations

import asyncio
import contextlib
import functools
import random
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

import httpx

from snatprobe.config import ProbeProtocol, WorkerConfig
from snatprobe.metrics import ErrorType, Sample

BODY_LOG_LIMIT = 256


@dataclass(frozen=True, slots=True)
class ProbeResult:
    sample: Sample
    error: str | None = None
    status_code: int | None = None
    request_id: int | None = None
    body: str = ""


Attempt = Callable[[], Awaitable[ProbeResult]]


def _failure(start: float, err: ErrorType, exc: BaseException, request_id: int | None = None) -> ProbeResult:
    elapsed = time.perf_counter() - start
    return ProbeResult(
        sample=Sample(elapsed=elapsed, failed=True, error_type=err),
        error=str(exc) or exc.__class__.__name__,
        request_id=request_id,
    )


async def probe_tcp(config: WorkerConfig) -> ProbeResult:
    host, port = config.address()
    local_addr = (config.local_ip, 0) if config.local_ip else None
    start = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, local_addr=local_addr),
            timeout=config.timeout,
        )
    except (asyncio.TimeoutError, TimeoutError) as exc:
        return _failure(start, ErrorType.TIMEOUT, exc)
    except OSError as exc:
        return _failure(start, ErrorType.CONNECT, exc)
    elapsed = time.perf_counter() - start
    writer.close()
    # the peer may reset before our close completes
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return ProbeResult(sample=Sample(elapsed=elapsed, failed=False))


def cache_busted_url(url: str, request_id: int) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{request_id}"


def make_http_client(config: WorkerConfig) -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(
        local_address=config.local_ip,
        limits=httpx.Limits(max_keepalive_connections=0),
        retries=0,
    )
    return httpx.AsyncClient(transport=transport, timeout=config.timeout)


async def probe_http(client: httpx.AsyncClient, config: WorkerConfig) -> ProbeResult:
    request_id = random.getrandbits(62)
    url = cache_busted_url(config.target, request_id)
    start = time.perf_counter()
    try:
        resp = await asyncio.wait_for(client.get(url), timeout=config.timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        return _failure(start, ErrorType.TIMEOUT, exc, request_id)
    except httpx.ConnectError as exc:
        return _failure(start, ErrorType.CONNECT, exc, request_id)
    except httpx.ReadError as exc:
        return _failure(start, ErrorType.READ, exc, request_id)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return _failure(start, ErrorType.OTHER, exc, request_id)
    elapsed = time.perf_counter() - start
    return ProbeResult(
        sample=Sample(elapsed=elapsed, failed=False),
        status_code=resp.status_code,
        request_id=request_id,
        body=resp.text[:BODY_LOG_LIMIT],
    )


@contextlib.asynccontextmanager
async def open_prober(config: WorkerConfig) -> AsyncIterator[Attempt]:
    """Yield a zero-argument coroutine function performing one attempt against the target."""
    if config.protocol is ProbeProtocol.HTTP:
        async with make_http_client(config) as client:
            yield functools.partial(probe_http, client, config)
    else:
        yield functools.partial(probe_tcp, config)
