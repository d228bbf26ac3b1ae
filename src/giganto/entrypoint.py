"""
CLI entrypoint that boots the giganto control plane.

It loads settings (from a local file in local mode, from the default location
otherwise), serves the administrative API and runs the supervisor until a
lifecycle signal arrives. The exit code tells the service manager what the
operator asked for.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import os
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .api import AdminApi
from .core.config import ConfigError, Settings
from .core.contracts import FormatError
from .core.reconfigure import ReconfigurationCoordinator, ReloadChannel
from .core.signals import LifecycleSignals, Signal
from .core.supervisor import LiveSettings, Supervisor

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE_NAME = "giganto.log"

EXIT_CODES: dict[Signal, int] = {
    Signal.STOP: 0,
    Signal.REBOOT: 3,
    Signal.POWER_OFF: 4,
}


@dataclass
class Args:
    """Validated command-line arguments."""

    cert: str
    key: str
    ca_certs: list[str]
    config: str | None = None
    repair: bool = False
    log_level: str = "INFO"
    debug: bool = False

    @property
    def is_local(self) -> bool:
        return self.config is not None


def attach_log_file(log_dir: Path, *, max_mb: int = 10, backup_count: int = 3) -> Path | None:
    """
    Point the giganto log file at ``log_dir``.

    A handler left behind by an earlier ``log_dir`` is closed and replaced, so
    a reloaded configuration moves the log file. Returns the file in use, or
    ``None`` when the directory cannot be created.
    """
    log_file = Path(os.path.abspath(log_dir / LOG_FILE_NAME))
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_dir, exc)
        return None

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if not isinstance(handler, logging.handlers.RotatingFileHandler):
            continue
        existing = Path(handler.baseFilename)
        if existing == log_file:
            return log_file
        if existing.name == LOG_FILE_NAME:
            root_logger.removeHandler(handler)
            handler.close()

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    return log_file


def configure_logging(level: str, log_dir: Path | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )
    if log_dir is not None:
        attach_log_file(log_dir)


def _install_signal_handlers(signals: LifecycleSignals) -> None:
    loop = asyncio.get_running_loop()

    def _request_stop(sig_name: str) -> None:
        LOGGER.info("Received %s, stopping.", sig_name)
        signals.fire(Signal.STOP)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_stop, sig_name or str(signum)
                ),
            )


def load_settings(args: Args) -> Settings:
    if args.config is not None:
        return Settings.from_file(args.config)
    return Settings.new()


async def run(args: Args, settings: Settings) -> Signal:
    """Serve the admin API and supervise until a lifecycle signal fires."""
    live = LiveSettings(settings)
    channel = ReloadChannel()
    signals = LifecycleSignals()
    coordinator = ReconfigurationCoordinator(channel)
    api = AdminApi(
        settings=live,
        coordinator=coordinator,
        signals=signals,
        is_local=args.is_local,
        debug=args.debug,
        cert=args.cert,
        key=args.key,
        ca_certs=args.ca_certs,
    )

    async def on_reload(new_settings: Settings) -> None:
        attach_log_file(new_settings.config.log_dir)
        await api.restart(new_settings)

    supervisor = Supervisor(live, channel, signals, on_reload=on_reload)

    _install_signal_handlers(signals)
    await api.start()
    mode = "local" if args.is_local else "remote"
    LOGGER.info("Giganto control plane running in %s mode.", mode)
    try:
        return await supervisor.run()
    finally:
        channel.close()
        await coordinator.wait_idle()
        await api.stop()


def parse_args(argv: Sequence[str] | None) -> Args:
    parser = argparse.ArgumentParser(description="Giganto control plane.")
    parser.add_argument(
        "-c",
        dest="config",
        metavar="CONFIG_PATH",
        default=None,
        help="Path to the local configuration TOML file (enables local mode).",
    )
    parser.add_argument("--cert", required=True, metavar="CERT_PATH", help="Certificate file.")
    parser.add_argument("--key", required=True, metavar="KEY_PATH", help="Key file.")
    parser.add_argument(
        "--ca-certs",
        dest="ca_certs",
        action="append",
        required=True,
        metavar="CA_CERTS_PATHS",
        help="CA certificate file (repeat for several).",
    )
    parser.add_argument("--repair", action="store_true", help="Enable the repair mode.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Expose storage diagnostics on the admin API.",
    )
    namespace = parser.parse_args(argv)
    return Args(
        cert=namespace.cert,
        key=namespace.key,
        ca_certs=list(namespace.ca_certs),
        config=namespace.config,
        repair=namespace.repair,
        log_level=namespace.log_level,
        debug=namespace.debug,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        settings = load_settings(args)
        configure_logging(args.log_level, settings.config.log_dir)
        if args.repair:
            LOGGER.warning("Repair mode requested; the storage engine performs the repair.")
        outcome = asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except (ConfigError, FormatError) as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("Giganto control plane crashed.")
        return 1
    LOGGER.info("Exiting after %s request.", outcome.value)
    return EXIT_CODES[outcome]


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = [
    "Args",
    "EXIT_CODES",
    "attach_log_file",
    "configure_logging",
    "load_settings",
    "main",
    "parse_args",
    "run",
]
