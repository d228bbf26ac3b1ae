"""
Remote reconfiguration: validate a draft, compare it with the live
configuration and hand accepted drafts to the reload consumer.

Delivery happens on a detached task after a short delay so the response that
accepted the draft can reach the caller before the consumer starts tearing
down servers. Once accepted, a draft cannot be cancelled; delivery failures
are logged and not retried.
"""

from __future__ import annotations

import asyncio
import logging

from .config import Settings, parse_configuration_draft
from .contracts import DeliveryFailed, NoChange

logger = logging.getLogger(__name__)

RELOAD_DELAY_SECONDS = 0.1


class ReloadChannel:
    """Bounded handoff of raw drafts to the reload consumer."""

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop accepting drafts; queued drafts can still be received."""
        self._closed.set()

    async def send(self, draft: str) -> None:
        """Queue ``draft``; a send still waiting on a full channel fails on close."""
        if self._closed.is_set():
            raise DeliveryFailed("reload channel closed")
        if not self._queue.full():
            self._queue.put_nowait(draft)
            return
        logger.warning("Reload channel is full; waiting for the consumer.")
        putter = asyncio.create_task(self._queue.put(draft))
        closer = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({putter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not putter.done():
                putter.cancel()
        if putter.done() and not putter.cancelled():
            return
        raise DeliveryFailed("reload channel closed while full")

    async def recv(self) -> str | None:
        """Next draft, or ``None`` once the channel is closed and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._closed.is_set():
            return None
        getter = asyncio.create_task(self._queue.get())
        closer = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None


class ReconfigurationCoordinator:
    """Accept or reject configuration drafts against a settings snapshot."""

    def __init__(self, channel: ReloadChannel, *, delay: float = RELOAD_DELAY_SECONDS) -> None:
        self._channel = channel
        self._delay = delay
        self._deliveries: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        """Number of accepted drafts not yet handed to the consumer."""
        return len(self._deliveries)

    async def propose(self, settings: Settings, draft: str) -> bool:
        """
        Schedule ``draft`` for delivery if it differs from ``settings``.

        The draft must be a complete configuration; only the peer settings
        may be left out. Raises the parse error for an invalid or partial
        draft and `NoChange` when the
        draft equals the live configuration. Concurrent proposals are not
        serialized; each is compared with the snapshot it was given.
        """
        config_draft = parse_configuration_draft(draft)
        if settings.config == config_draft:
            logger.info("No changes.")
            raise NoChange()

        task = asyncio.create_task(self._deliver(draft), name="giganto-config-delivery")
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        logger.info("Draft applied.")
        return True

    async def wait_idle(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def _deliver(self, draft: str) -> bool:
        await asyncio.sleep(self._delay)
        try:
            await self._channel.send(draft)
        except DeliveryFailed as exc:
            logger.error("Failed to send config: %s", exc)
            return False
        logger.debug("Configuration draft delivered to the reload consumer.")
        return True


__all__ = ["RELOAD_DELAY_SECONDS", "ReconfigurationCoordinator", "ReloadChannel"]
