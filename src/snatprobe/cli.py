from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Mapping, Sequence

from snatprobe.config import (
    ClientConfig,
    ConfigError,
    ProbeProtocol,
    ServerConfig,
    default_workers,
)
from snatprobe.loadgen.runner import run_client
from snatprobe.logging_config import setup_logging
from snatprobe.target import run_server

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in TRUTHY


def build_parser(env: Mapping[str, str] | None = None) -> argparse.ArgumentParser:
    env = os.environ if env is None else env
    parser = argparse.ArgumentParser(
        prog="snatprobe",
        description="Reproduce SNAT port-exhaustion races with short-lived connections",
    )
    parser.add_argument("--log-level", default=env.get("LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", default=env.get("LOG_FILE"))
    sub = parser.add_subparsers(dest="command", required=True)

    client = sub.add_parser(
        "client",
        aliases=["c"],
        help="Continuously connect to an endpoint and periodically print statistics",
    )
    client.add_argument(
        "-r",
        "--remote-addr",
        required="REMOTE_ADDR" not in env,
        default=env.get("REMOTE_ADDR"),
        help="Remote address (<host>:<port>), or URL for http probes",
    )
    client.add_argument("-l", "--local-ip", default=env.get("LOCAL_IP"), help="Local IP to connect from")
    client.add_argument(
        "-c",
        "--workers",
        type=int,
        default=env.get("WORKERS", default_workers()),
        help="Number of probe workers, the CPU count by default",
    )
    client.add_argument(
        "-d",
        "--dial-interval-us",
        type=int,
        default=env.get("DIAL_INTERVAL_US", 100_000),
        help="Interval between two attempts of one worker, in microseconds",
    )
    client.add_argument(
        "-t",
        "--timeout-ms",
        type=int,
        default=env.get("TIMEOUT_MS", 500),
        help="Attempt timeout in milliseconds. Should be less than a second.",
    )
    client.add_argument(
        "-s",
        "--summary-interval-sec",
        type=int,
        default=env.get("SUMMARY_INTERVAL_S", 5),
        help="Interval between two statistics summaries, in seconds",
    )
    client.add_argument(
        "-p",
        "--protocol",
        choices=[p.value for p in ProbeProtocol],
        default=env.get("PROTOCOL", ProbeProtocol.TCP.value),
    )
    client.add_argument(
        "--final-summary",
        action="store_true",
        default=_env_flag(env, "FINAL_SUMMARY"),
        help="Print a summary of the partial window on shutdown",
    )
    client.set_defaults(command="client")

    server = sub.add_parser("server", aliases=["s"], help="Simple TCP server to connect to")
    server.add_argument(
        "-a",
        "--local-addr",
        default=env.get("LOCAL_ADDR", "0.0.0.0:8080"),
        help="Local address (<host>:<port>) to listen at",
    )
    server.add_argument(
        "-c",
        "--workers",
        type=int,
        default=env.get("WORKERS", default_workers()),
        help="Number of accept loops, the CPU count by default",
    )
    server.add_argument(
        "-p",
        "--protocol",
        choices=[p.value for p in ProbeProtocol],
        default=env.get("PROTOCOL", ProbeProtocol.TCP.value),
    )
    server.set_defaults(command="server")
    return parser


def client_config_from_args(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig(
        remote_addr=args.remote_addr,
        local_ip=args.local_ip or None,
        workers=args.workers,
        dial_interval_us=args.dial_interval_us,
        timeout_ms=args.timeout_ms,
        summary_interval_sec=args.summary_interval_sec,
        protocol=ProbeProtocol(args.protocol),
        final_summary=args.final_summary,
    )
    config.validate()
    return config


def server_config_from_args(args: argparse.Namespace) -> ServerConfig:
    config = ServerConfig(
        local_addr=args.local_addr,
        workers=args.workers,
        protocol=ProbeProtocol(args.protocol),
    )
    config.validate()
    return config


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        if args.command == "client":
            client_config = client_config_from_args(args)
        else:
            server_config = server_config_from_args(args)
    except ConfigError as exc:
        parser.error(str(exc))

    if args.command == "client":
        if client_config.timeout_ms >= 1000:
            logger.warning("Timeout of %dms is above one second", client_config.timeout_ms)
        result = asyncio.run(run_client(client_config))
        logger.info(
            "Stopped after %d attempts (%d errors)",
            result.totals.total_attempts,
            result.totals.total_errors,
        )
        return 0

    try:
        asyncio.run(run_server(server_config))
    except OSError as exc:
        logger.error("Error while listening on %r: %s", server_config.local_addr, exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
