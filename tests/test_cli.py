from __future__ import annotations

import pytest

from snatprobe.cli import build_parser, client_config_from_args, main, server_config_from_args
from snatprobe.config import ProbeProtocol


def test_client_defaults() -> None:
    args = build_parser(env={}).parse_args(["client", "-r", "10.0.0.1:80"])
    config = client_config_from_args(args)
    assert config.remote_addr == "10.0.0.1:80"
    assert config.dial_interval_us == 100_000
    assert config.timeout_ms == 500
    assert config.summary_interval_sec == 5
    assert config.protocol is ProbeProtocol.TCP
    assert config.local_ip is None
    assert not config.final_summary


def test_client_environment_bindings() -> None:
    env = {
        "REMOTE_ADDR": "10.0.0.2:443",
        "LOCAL_IP": "127.0.0.1",
        "WORKERS": "7",
        "DIAL_INTERVAL_US": "5000",
        "TIMEOUT_MS": "250",
        "SUMMARY_INTERVAL_S": "2",
        "FINAL_SUMMARY": "true",
    }
    args = build_parser(env=env).parse_args(["client"])
    config = client_config_from_args(args)
    assert config.remote_addr == "10.0.0.2:443"
    assert config.local_ip == "127.0.0.1"
    assert config.workers == 7
    assert config.dial_interval_us == 5000
    assert config.timeout_ms == 250
    assert config.summary_interval_sec == 2
    assert config.final_summary


def test_flags_override_environment() -> None:
    args = build_parser(env={"WORKERS": "7"}).parse_args(["c", "-r", "h:1", "-c", "3"])
    assert args.command == "client"
    assert client_config_from_args(args).workers == 3


def test_remote_addr_is_required() -> None:
    with pytest.raises(SystemExit):
        build_parser(env={}).parse_args(["client"])


def test_server_defaults() -> None:
    args = build_parser(env={}).parse_args(["server"])
    config = server_config_from_args(args)
    assert config.local_addr == "0.0.0.0:8080"
    assert config.protocol is ProbeProtocol.TCP


def test_bad_local_ip_exits_before_starting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_FILE", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main(["client", "-r", "127.0.0.1:1", "-l", "nope"])
    assert excinfo.value.code == 2
