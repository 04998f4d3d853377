from __future__ import annotations

import asyncio
import logging
import socket

from snatprobe.config import ProbeProtocol, ServerConfig
from snatprobe.loadgen.runner import install_signal_handlers

logger = logging.getLogger(__name__)

MAX_REQUEST_HEAD = 64 * 1024


def _listen(host: str, port: int, reuse_port: bool) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if reuse_port:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class TargetServer:
    """Connection sink used as a probe target.

    ``workers`` listening sockets share the port through ``SO_REUSEPORT`` so
    the kernel spreads incoming connections across them; platforms without it
    get a single listener. In TCP mode every accepted connection is closed
    immediately. In HTTP mode each request gets a ``200 OK`` echoing the
    request target, then the connection is closed.
    """

    def __init__(self, config: ServerConfig) -> None:
        config.validate()
        self.config = config
        self._socks: list[socket.socket] = []
        self._servers: list[asyncio.AbstractServer] = []
        self.accepted = 0

    @property
    def listeners(self) -> int:
        return len(self._servers)

    @property
    def port(self) -> int:
        if not self._socks:
            msg = "Server is not listening"
            raise RuntimeError(msg)
        return self._socks[0].getsockname()[1]

    async def start(self) -> None:
        host, port = self.config.address()
        count = self.config.workers if hasattr(socket, "SO_REUSEPORT") else 1
        reuse_port = count > 1
        try:
            self._socks.append(_listen(host, port, reuse_port))
            for _ in range(count - 1):
                self._socks.append(_listen(host, self.port, reuse_port))
        except OSError:
            for sock in self._socks:
                sock.close()
            self._socks = []
            raise
        handler = self._handle_http if self.config.protocol is ProbeProtocol.HTTP else self._handle_tcp
        self._servers = [await asyncio.start_server(handler, sock=sock) for sock in self._socks]
        logger.info(
            "Ready to accept connections on %s:%d (%s, %d listeners)",
            host,
            self.port,
            self.config.protocol.value,
            self.listeners,
        )

    async def _handle_tcp(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.accepted += 1
        writer.close()

    async def _handle_http(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.accepted += 1
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ConnectionError):
            writer.close()
            return
        request_line = head[:MAX_REQUEST_HEAD].split(b"\r\n", 1)[0].decode("latin-1")
        parts = request_line.split(" ")
        body = (parts[1] if len(parts) >= 2 else "/").encode("latin-1")
        writer.write(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: text/plain\r\n"
            b"Connection: close\r\n"
            + f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
            + body
        )
        try:
            await writer.drain()
        except ConnectionError as exc:
            logger.debug("Client went away before the response was sent: %s", exc)
        finally:
            writer.close()

    async def stop(self) -> None:
        for server in self._servers:
            server.close()
        for server in self._servers:
            await server.wait_closed()
        for sock in self._socks:
            sock.close()
        self._servers = []
        self._socks = []
        logger.info("Server stopped after %d connections", self.accepted)

    async def __aenter__(self) -> TargetServer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()


async def run_server(config: ServerConfig, stop: asyncio.Event | None = None, handle_signals: bool = True) -> int:
    loop = asyncio.get_running_loop()
    stop = stop or asyncio.Event()
    installed = install_signal_handlers(loop, stop) if handle_signals else []
    try:
        async with TargetServer(config) as server:
            await stop.wait()
            logger.info("Stopping...")
        return server.accepted
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
