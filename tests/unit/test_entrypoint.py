from __future__ import annotations

import asyncio
import logging
import logging.handlers
from pathlib import Path

import pytest

from giganto import entrypoint
from giganto.core.config import Settings
from giganto.core.signals import Signal

TLS_ARGS = ["--cert", "cert.pem", "--key", "key.pem", "--ca-certs", "ca.pem"]


def test_parse_args_local_mode(sample_config_file: Path) -> None:
    args = entrypoint.parse_args(["-c", str(sample_config_file), *TLS_ARGS, "--ca-certs", "b.pem"])
    assert args.is_local is True
    assert args.ca_certs == ["ca.pem", "b.pem"]
    assert args.repair is False

    settings = entrypoint.load_settings(args)
    assert settings.cfg_path == str(sample_config_file)


def test_parse_args_remote_mode() -> None:
    args = entrypoint.parse_args([*TLS_ARGS, "--repair"])
    assert args.is_local is False
    assert args.repair is True


def test_parse_args_requires_ca_certs() -> None:
    with pytest.raises(SystemExit):
        entrypoint.parse_args(["--cert", "cert.pem", "--key", "key.pem"])


def test_main_reports_configuration_errors(tmp_path: Path) -> None:
    code = entrypoint.main(["-c", str(tmp_path / "absent.toml"), *TLS_ARGS])
    assert code == 2


@pytest.mark.asyncio
async def test_run_returns_requested_signal(
    monkeypatch: pytest.MonkeyPatch, default_settings: Settings
) -> None:
    started: list[bool] = []

    async def fake_start(self) -> None:
        started.append(True)

    async def fake_stop(self) -> None:
        started.append(False)

    monkeypatch.setattr(entrypoint.AdminApi, "start", fake_start)
    monkeypatch.setattr(entrypoint.AdminApi, "stop", fake_stop)

    captured = {}
    original = entrypoint.LifecycleSignals

    def capture_signals() -> entrypoint.LifecycleSignals:
        captured["signals"] = original()
        return captured["signals"]

    monkeypatch.setattr(entrypoint, "LifecycleSignals", capture_signals)
    monkeypatch.setattr(entrypoint, "_install_signal_handlers", lambda signals: None)

    args = entrypoint.parse_args(TLS_ARGS)
    runner = asyncio.create_task(entrypoint.run(args, default_settings))
    await asyncio.sleep(0.02)
    captured["signals"].fire(Signal.REBOOT)

    outcome = await asyncio.wait_for(runner, timeout=0.5)
    assert outcome is Signal.REBOOT
    assert entrypoint.EXIT_CODES[outcome] == 3
    assert started == [True, False]


def test_attach_log_file_follows_log_dir(tmp_path: Path) -> None:
    root_logger = logging.getLogger()
    before = list(root_logger.handlers)
    try:
        first = entrypoint.attach_log_file(tmp_path / "logs")
        assert first == (tmp_path / "logs" / entrypoint.LOG_FILE_NAME).absolute()
        assert entrypoint.attach_log_file(tmp_path / "logs") == first

        second = entrypoint.attach_log_file(tmp_path / "moved")
        assert second is not None and second.parent.name == "moved"

        files = [
            Path(handler.baseFilename)
            for handler in root_logger.handlers
            if isinstance(handler, logging.handlers.RotatingFileHandler)
        ]
        assert files == [second]
    finally:
        for handler in root_logger.handlers[:]:
            if handler not in before:
                root_logger.removeHandler(handler)
                handler.close()
