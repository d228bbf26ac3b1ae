"""
One-shot lifecycle notifications (stop, reboot, power-off).

Each signal is a single-slot wakeup: firing it any number of times before the
supervisor consumes it results in one wakeup. Firing never blocks and never
fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging

logger = logging.getLogger(__name__)


class Signal(enum.Enum):
    STOP = "stop"
    REBOOT = "reboot"
    POWER_OFF = "power_off"


class Notify:
    """Single permit notification consumed by one waiter."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def notify_one(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Wait until notified without consuming the permit."""
        await self._event.wait()

    def consume(self) -> bool:
        """Take the permit if one is stored."""
        if not self._event.is_set():
            return False
        self._event.clear()
        return True

    async def notified(self) -> None:
        """Wait for and consume the permit."""
        await self._event.wait()
        self._event.clear()


class LifecycleSignals:
    """The three process-level signals observed by the supervisor."""

    def __init__(self) -> None:
        self._slots: dict[Signal, Notify] = {signal: Notify() for signal in Signal}

    @property
    def stop(self) -> Notify:
        return self._slots[Signal.STOP]

    @property
    def reboot(self) -> Notify:
        return self._slots[Signal.REBOOT]

    @property
    def power_off(self) -> Notify:
        return self._slots[Signal.POWER_OFF]

    def fire(self, signal: Signal) -> None:
        logger.info("Lifecycle signal %s requested.", signal.value)
        self._slots[signal].notify_one()

    async def wait_any(self) -> Signal:
        """
        Wait until any signal fires and consume it.

        When several are pending, they are reported in declaration order
        (stop, reboot, power-off); the others stay pending.
        """
        while True:
            for signal, slot in self._slots.items():
                if slot.consume():
                    return signal
            waiters = [asyncio.create_task(slot.wait()) for slot in self._slots.values()]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    if not waiter.done():
                        waiter.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await waiter


__all__ = ["LifecycleSignals", "Notify", "Signal"]
