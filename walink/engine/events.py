"""Lifecycle event bus.

Delivers supervisor transitions (pairing challenge issued, ready,
connecting, logged out) to subscribers without ever blocking or failing
the supervisor. Each subscriber gets its own queue and delivery task, so
a slow subscriber only delays itself, and every subscriber sees events in
the order they were emitted.

Not a replay log: events emitted while nobody is subscribed are dropped.
"""
from __future__ import annotations

import asyncio
import enum
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import whenever
from loguru import logger

from walink.engine.clock import AppClock


class EventKind(enum.Enum):
    PAIRING_CHALLENGE = "pairingChallenge"
    READY = "ready"
    CONNECTING = "connecting"
    LOGOUT = "logout"


@dataclass(slots=True, frozen=True)
class Event:
    kind: EventKind
    at: whenever.Instant
    payload: Any = None


Subscriber = Callable[[Event], Awaitable[None] | None]


@dataclass(slots=True)
class Subscription:
    callback: Subscriber

    # None means every kind
    kinds: frozenset[EventKind] | None = None

    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: asyncio.Task | None = None

    def wants(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds


class EventBus:
    """Fire-and-forget fan-out of lifecycle Events."""

    def __init__(self, clock: AppClock | None = None):
        self.clock = clock or AppClock()
        self.subscriptions: list[Subscription] = []

    def subscribe(self, callback: Subscriber, *kinds: EventKind) -> Callable[[], None]:
        """Register callback for the given kinds (all kinds if none given).

        callback may be a plain function or a coroutine function.
        Returns a function that removes the subscription.
        """
        sub = Subscription(callback, frozenset(kinds) if kinds else None)
        self.subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self.subscriptions:
                self.subscriptions.remove(sub)

            if sub.task is not None:
                sub.task.cancel()
                sub.task = None

        return unsubscribe

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        """Queue an event for every interested subscriber; never blocks."""
        event = Event(kind, self.clock.now(), payload)
        logger.debug("[events] {} {}", kind.value, payload if payload is not None else "")

        for sub in self.subscriptions:
            if not sub.wants(kind):
                continue

            sub.queue.put_nowait(event)
            self._ensureWorker(sub)

    def _ensureWorker(self, sub: Subscription) -> None:
        if sub.task is not None and not sub.task.done():
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; the worker starts on the next emit() or drain() inside one
            return

        sub.task = asyncio.create_task(self._deliver(sub), name="event delivery")

    async def _deliver(self, sub: Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                result = sub.callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[events] Subscriber {} failed on {}", sub.callback, event.kind.value)
            finally:
                sub.queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        for sub in list(self.subscriptions):
            if not sub.queue.empty():
                self._ensureWorker(sub)

            await sub.queue.join()

    async def close(self) -> None:
        """Stop all delivery tasks; undelivered events are dropped."""
        tasks = [sub.task for sub in self.subscriptions if sub.task is not None]
        for sub in self.subscriptions:
            sub.task = None

        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
