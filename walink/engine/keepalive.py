"""Periodic best-effort liveness probing while connected."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from walink.engine.clock import AppClock


class KeepAlive:
    """Liveness probe timer owned by exactly one connection cycle.

    Probes once immediately, then every `interval` seconds. A failed probe
    is only logged: the session's own close event is the authority on
    connection loss. stop() is synchronous and final; a stopped instance
    never probes again, and a new cycle gets a new instance.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[None]],
        interval: float,
        clock: AppClock | None = None,
        name: str = "",
    ):
        self.probe = probe
        self.interval = interval
        self.clock = clock or AppClock()
        self.name = name
        self.probes = 0
        self.failures = 0
        self._stopped = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("KeepAlive can't be restarted after stop()")

        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"keepalive {self.name}")

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while not self._stopped:
            await self._probeOnce()
            await self.clock.sleep(self.interval)

    async def _probeOnce(self) -> None:
        try:
            self.probes += 1
            await self.probe()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.warning("[keepalive {}] Keep-alive failed: {}", self.name, e)
