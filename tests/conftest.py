"""Shared test fixtures for the walink test suite.

FakeSession provides a test double for the external session library's
session object, and FakeFactory stands in for its openSession() entry
point, allowing headless testing of the supervisor without a network.

VirtualClock replaces AppClock so reconnect timers and keep-alive probes
can be driven deterministically by advancing virtual time.
"""

import asyncio
import functools
import heapq
from io import StringIO
from typing import Any

import pytest
import pytest_asyncio
import whenever
from loguru import logger

from walink.engine.clock import AppClock
from walink.engine.config import SupervisorConfig
from walink.engine.credstore import CredentialStore
from walink.engine.events import EventBus
from walink.engine.primitives import Phase
from walink.engine.supervisor import LifecycleSupervisor


class ServiceError(Exception):
    """Stand-in for the session library's close error carrying a status code."""

    def __init__(self, statusCode: int, message: str = "stream errored"):
        super().__init__(message)
        self.statusCode = statusCode


class FakeSession:
    """Test double for a session library session.

    Records every outbound call; tests drive inbound events with fire().
    """

    def __init__(self):
        self.callbacks: dict[str, Any] = {}
        self.sent: list[tuple[str, str]] = []
        self.sendError: BaseException | None = None
        self.probeError: BaseException | None = None
        self.closeError: BaseException | None = None
        self.logoutError: BaseException | None = None
        self.probes = 0
        self.closes = 0
        self.logouts = 0

    def on(self, event: str, callback) -> None:
        self.callbacks[event] = callback

    def fire(self, event: str, *args) -> None:
        self.callbacks[event](*args)

    # ── Test helpers ──

    def challenge(self, token: str) -> None:
        self.fire("pairingChallenge", token)

    def open(self) -> None:
        self.fire("statusChanged", "open")

    def closeWith(self, reason: Any = None) -> None:
        self.fire("statusChanged", "close", reason)

    # ── Library surface ──

    async def sendText(self, destination: str, body: str) -> str:
        if self.sendError is not None:
            raise self.sendError

        self.sent.append((destination, body))
        return f"MSG{len(self.sent)}"

    async def probeLiveness(self) -> None:
        self.probes += 1
        if self.probeError is not None:
            raise self.probeError

    async def close(self) -> None:
        self.closes += 1
        if self.closeError is not None:
            raise self.closeError

    async def logout(self) -> None:
        self.logouts += 1
        if self.logoutError is not None:
            raise self.logoutError


class FakeFactory:
    """Test double for openSession(config); fails the first `failures` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[dict] = []
        self.sessions: list[FakeSession] = []

    async def __call__(self, config):
        self.calls.append(config)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("service unreachable")

        session = FakeSession()
        self.sessions.append(session)
        return session

    @property
    def session(self) -> FakeSession:
        """Most recently opened session."""
        return self.sessions[-1]


async def yieldLoop(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class VirtualClock(AppClock):
    """AppClock whose time only moves when a test calls advance()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.time = start
        self.sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = 0

        # awaited after each timer wakes; the supervisor fixture replaces it
        self.settle = yieldLoop

    def now(self) -> whenever.Instant:
        return whenever.Instant.from_timestamp(self.time)

    async def sleep(self, seconds: float) -> None:
        done = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self.sleepers, (self.time + seconds, self._seq, done))
        await done

    def pending(self) -> list[float]:
        """Remaining delays of live sleepers, soonest first."""
        return sorted(d - self.time for d, _, f in self.sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        target = self.time + seconds
        await self.settle()
        while self.sleepers and self.sleepers[0][0] <= target:
            deadline, _, done = heapq.heappop(self.sleepers)
            if done.done():
                # cancelled sleeper
                continue

            self.time = max(self.time, deadline)
            done.set_result(None)
            await yieldLoop()
            await self.settle()

        self.time = target
        await self.settle()


async def settle(sup) -> None:
    """Run every queued supervisor transition and deliver every emitted event."""
    await sup.drain()
    await sup.bus.drain()


def kinds(received) -> list:
    return [e.kind for e in received]


async def connect(sup, factory: FakeFactory) -> None:
    await sup.start()
    factory.session.open()
    await settle(sup)
    await yieldLoop()
    assert sup.state.phase is Phase.CONNECTED


# ── Fixtures ──


@pytest.fixture
def log_capture():
    """Capture loguru output for assertion. Yields a StringIO buffer."""
    buf = StringIO()
    handler_id = logger.add(buf, format="{level} {message}", level="DEBUG")
    yield buf
    logger.remove(handler_id)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def config(tmp_path) -> SupervisorConfig:
    return SupervisorConfig(authDir=tmp_path / "auth", logDir=tmp_path / "logs")


@pytest.fixture
def store(config) -> CredentialStore:
    return CredentialStore(config.authDir)


@pytest.fixture
def populated_store(store) -> CredentialStore:
    """Store holding a plausible set of valid credential records."""
    store.persist(
        {
            "creds.json": {"me": {"id": "15552345678:1@s.whatsapp.net"}, "registered": True},
            "app-state-sync-key-AAAA.json": {"keyData": "c2VjcmV0"},
            "session-15552345678.0.bin": b"\x01\x02\x03",
        }
    )
    return store


@pytest.fixture
def bus(clock) -> EventBus:
    return EventBus(clock)


@pytest.fixture
def received(bus) -> list:
    """Every Event the bus delivers, in order."""
    events = []
    bus.subscribe(events.append)
    return events


@pytest_asyncio.fixture
async def supervisor(factory, store, bus, config, clock):
    sup = LifecycleSupervisor(factory, store, bus=bus, config=config, clock=clock)
    clock.settle = functools.partial(settle, sup)
    yield sup
    await sup.stop()
