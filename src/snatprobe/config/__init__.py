from __future__ import annotations

from snatprobe.config.models import (
    DEFAULT_QUEUE_SIZE,
    ClientConfig,
    ConfigError,
    ProbeProtocol,
    ServerConfig,
    WorkerConfig,
    default_workers,
    parse_host_port,
    parse_local_ip,
)

__all__ = [
    "DEFAULT_QUEUE_SIZE",
    "ClientConfig",
    "ConfigError",
    "ProbeProtocol",
    "ServerConfig",
    "WorkerConfig",
    "default_workers",
    "parse_host_port",
    "parse_local_ip",
]
