"""
Reload consumer and lifecycle supervisor.

`LiveSettings` owns the settings every request reads. The `Supervisor` drains
the reload channel, swaps in each delivered draft and returns as soon as a
lifecycle signal fires, leaving the process action to its caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from .config import ConfigError, Settings
from .contracts import FormatError
from .reconfigure import ReloadChannel
from .signals import LifecycleSignals, Signal

logger = logging.getLogger(__name__)

ReloadHook = Callable[[Settings], Awaitable[None]]


class LiveSettings:
    """Versioned holder of the current settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._version = 0
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Settings:
        return self._settings

    @property
    def version(self) -> int:
        return self._version

    async def replace(self, settings: Settings) -> int:
        """Swap in new settings; readers see either the old or the new value."""
        async with self._lock:
            self._settings = settings
            self._version += 1
            return self._version


class Supervisor:
    """Consume reload drafts and lifecycle signals until a signal fires."""

    def __init__(
        self,
        live: LiveSettings,
        channel: ReloadChannel,
        signals: LifecycleSignals,
        *,
        on_reload: ReloadHook | None = None,
    ) -> None:
        self._live = live
        self._channel = channel
        self._signals = signals
        self._on_reload = on_reload

    async def run(self) -> Signal:
        receiver: asyncio.Task[str | None] | None = None
        watcher = asyncio.create_task(self._signals.wait_any(), name="giganto-signal-watch")
        drained = False
        try:
            while True:
                if receiver is None and not drained:
                    receiver = asyncio.create_task(
                        self._channel.recv(), name="giganto-reload-recv"
                    )
                waiting: set[asyncio.Task] = {watcher}
                if receiver is not None:
                    waiting.add(receiver)
                await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if receiver is not None and receiver.done():
                    draft = receiver.result()
                    receiver = None
                    if draft is None:
                        logger.info("Reload channel closed; waiting for lifecycle signals only.")
                        drained = True
                    else:
                        await self._apply(draft)
                if watcher.done():
                    signal = watcher.result()
                    logger.info("Supervisor received %s signal.", signal.value)
                    return signal
        finally:
            for task in (receiver, watcher):
                if task is not None and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

    async def _apply(self, draft: str) -> None:
        try:
            settings = Settings.from_server(draft)
        except (ConfigError, FormatError):
            logger.exception("Rejected configuration draft delivered for reload.")
            return
        version = await self._live.replace(settings)
        logger.info("Applied configuration version %d.", version)
        if self._on_reload is not None:
            await self._on_reload(settings)


__all__ = ["LiveSettings", "ReloadHook", "Supervisor"]
