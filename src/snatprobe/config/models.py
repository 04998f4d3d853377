from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx

DEFAULT_QUEUE_SIZE = 1024
SLOW_ATTEMPT_SEC = 0.5


class ConfigError(ValueError):
    """Invalid startup configuration. Raised before any worker starts."""


class ProbeProtocol(str, Enum):
    TCP = "tcp"
    HTTP = "http"


def default_workers() -> int:
    return os.cpu_count() or 1


def parse_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port:
        msg = f"Address {addr!r} is not of the form <host>:<port>"
        raise ConfigError(msg)
    try:
        port_num = int(port)
    except ValueError:
        msg = f"Invalid port in address {addr!r}"
        raise ConfigError(msg) from None
    if not 0 <= port_num <= 65535:
        msg = f"Port out of range in address {addr!r}"
        raise ConfigError(msg)
    host = host.strip("[]")
    return host or "0.0.0.0", port_num


def parse_local_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        msg = f"Unable to parse local IP {value!r}"
        raise ConfigError(msg) from None


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    target: str
    dial_interval: float
    timeout: float
    protocol: ProbeProtocol = ProbeProtocol.TCP
    local_ip: str | None = None
    slow_threshold: float = SLOW_ATTEMPT_SEC

    def address(self) -> tuple[str, int]:
        return parse_host_port(self.target)


@dataclass(frozen=True, slots=True)
class ClientConfig:
    remote_addr: str
    local_ip: str | None = None
    workers: int = field(default_factory=default_workers)
    dial_interval_us: int = 100_000
    timeout_ms: int = 500
    summary_interval_sec: int = 5
    protocol: ProbeProtocol = ProbeProtocol.TCP
    final_summary: bool = False
    queue_size: int = DEFAULT_QUEUE_SIZE

    def validate(self) -> None:
        if self.workers < 1:
            msg = f"Worker count must be positive, got {self.workers}"
            raise ConfigError(msg)
        if self.dial_interval_us <= 0:
            msg = f"Dial interval must be positive, got {self.dial_interval_us}us"
            raise ConfigError(msg)
        if self.timeout_ms <= 0:
            msg = f"Timeout must be positive, got {self.timeout_ms}ms"
            raise ConfigError(msg)
        if self.summary_interval_sec <= 0:
            msg = f"Summary interval must be positive, got {self.summary_interval_sec}s"
            raise ConfigError(msg)
        if self.queue_size < 1:
            msg = f"Queue size must be positive, got {self.queue_size}"
            raise ConfigError(msg)
        parse_local_ip(self.local_ip)
        if self.protocol is ProbeProtocol.HTTP:
            try:
                url = httpx.URL(self.remote_addr)
                scheme, host, _ = url.scheme, url.host, url.port
            except httpx.InvalidURL as exc:
                msg = f"Unable to parse URL {self.remote_addr!r}: {exc}"
                raise ConfigError(msg) from None
            if scheme not in ("http", "https") or not host:
                msg = f"HTTP probes need an http(s) URL, got {self.remote_addr!r}"
                raise ConfigError(msg)
        else:
            parse_host_port(self.remote_addr)

    def worker_config(self) -> WorkerConfig:
        self.validate()
        return WorkerConfig(
            target=self.remote_addr,
            dial_interval=self.dial_interval_us / 1_000_000,
            timeout=self.timeout_ms / 1000,
            protocol=self.protocol,
            local_ip=parse_local_ip(self.local_ip),
        )

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "remote_addr": self.remote_addr,
            "local_ip": self.local_ip or "",
            "workers": self.workers,
            "dial_interval_us": self.dial_interval_us,
            "timeout_ms": self.timeout_ms,
            "summary_interval_sec": self.summary_interval_sec,
            "protocol": self.protocol.value,
            "final_summary": self.final_summary,
        }


@dataclass(frozen=True, slots=True)
class ServerConfig:
    local_addr: str = "0.0.0.0:8080"
    workers: int = field(default_factory=default_workers)
    protocol: ProbeProtocol = ProbeProtocol.TCP

    def validate(self) -> None:
        if self.workers < 1:
            msg = f"Worker count must be positive, got {self.workers}"
            raise ConfigError(msg)
        parse_host_port(self.local_addr)

    def address(self) -> tuple[str, int]:
        return parse_host_port(self.local_addr)
