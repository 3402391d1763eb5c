"""Coordinated application clock for consistent time across engine modules."""
from __future__ import annotations

import asyncio
import dataclasses

import whenever


@dataclasses.dataclass
class AppClock:
    """Shared time source and delay primitive.

    The supervisor, its reconnect timers, and the keep-alive scheduler
    all read time and sleep through one clock instance, so tests can
    swap in a virtual clock and advance time deterministically.
    """

    def now(self) -> whenever.Instant:
        return whenever.Instant.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
