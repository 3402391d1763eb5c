"""Connection lifecycle supervisor.

Owns the connection state machine, the reconnection policy, the keep-alive
timer, and the one Session Handle of the current cycle.

Every state change runs inside a single supervisor task that consumes an
inbox of transitions one at a time: public commands (start, restart,
logout), handle events, and due reconnect timers all go through the inbox,
so no two transitions ever evaluate concurrently and policy always sees
consistent prior state.

Phases:
    IDLE -> CONNECTING -> {PAIRING_PENDING, CONNECTED, CLOSING}
    PAIRING_PENDING -> {CONNECTED, CLOSING}
    CONNECTED -> CLOSING
    CLOSING -> {CONNECTING, LOGGED_OUT}
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable

from loguru import logger

from walink.engine.backoff import connectionGone, constructionRetryDelay, planReconnect
from walink.engine.clock import AppClock
from walink.engine.config import SupervisorConfig
from walink.engine.credstore import CredentialStore
from walink.engine.errors import HandleConstructionFailed, NotConnected, SendFailed
from walink.engine.events import EventBus, EventKind
from walink.engine.keepalive import KeepAlive
from walink.engine.primitives import (
    TRANSITIONS,
    ConnectionState,
    Phase,
    SendReceipt,
    StatusReport,
    normalizeDestination,
)
from walink.engine.protocols import SessionFactory
from walink.engine.session import Closed, HandleEvent, Opened, PairingChallenged, SessionHandle

Transition = Callable[[], Awaitable[None]]


class LifecycleSupervisor:
    """Supervises one authenticated session against the messaging service.

    Parameters
    ----------
    factory:
        External session library entry point: openSession(config) -> session.
    store:
        Credential store the library persists into; validated before every cycle.
    bus:
        Event bus for lifecycle notifications (created if not given).
    config:
        Delays, limits, and session options.
    clock:
        Time source for reconnect timers and keep-alive (virtual in tests).
    """

    def __init__(
        self,
        factory: SessionFactory,
        store: CredentialStore,
        bus: EventBus | None = None,
        config: SupervisorConfig | None = None,
        clock: AppClock | None = None,
    ):
        self.factory = factory
        self.store = store
        self.config = config or SupervisorConfig()
        self.clock = clock or AppClock()
        self.bus = bus or EventBus(self.clock)
        self.state = ConnectionState(lastTransitionTime=self.clock.now())

        self.handle: SessionHandle | None = None
        self.keepalive: KeepAlive | None = None

        # delay of the currently scheduled reconnect (None if nothing is scheduled)
        self.reconnectDelay: float | None = None
        self._reconnect: asyncio.Task | None = None
        self._reconnectToken = 0

        self._inbox: asyncio.Queue[tuple[Transition, asyncio.Future | None]] = asyncio.Queue()
        self._pump: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def __repr__(self) -> str:
        return (
            f"LifecycleSupervisor(phase={self.state.phase.value}, "
            f"attempts={self.state.attemptCount}, cycle={self.state.cycle})"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin connecting unless a handle is already open or pending."""
        await self._submit(self._startRequested)

    async def restart(self) -> None:
        """Tear down the current handle and reconnect after a fixed delay."""
        await self._submit(self._restartRequested)

    async def logout(self) -> None:
        """Log out, wipe credentials, and stay LOGGED_OUT until start()."""
        await self._submit(self._logoutRequested)

    async def sendMessage(self, destination: str, body: str) -> SendReceipt:
        number = normalizeDestination(destination)

        handle = self.handle
        if self.state.phase is not Phase.CONNECTED or handle is None:
            raise NotConnected(self.state.phase)

        logger.info("[supervisor] Sending message to {}...", number)
        try:
            messageId = await handle.sendText(number, body)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[supervisor] Failed to send message to {}: {}", number, e)
            if connectionGone(e):
                logger.warning("[supervisor] Connection issue detected, restarting...")
                self._post(self._restartRequested)

            raise SendFailed(number, str(e)) from e

        logger.info("[supervisor] Message sent to {}", number)
        return SendReceipt(id=messageId, destination=number)

    def getStatus(self) -> StatusReport:
        return StatusReport(
            phase=self.state.phase,
            hasCredentials=self.store.hasCredentials(),
            attemptCount=self.state.attemptCount,
            lastTransitionTime=self.state.lastTransitionTime,
            hasPairingChallenge=self.state.pairingChallenge is not None,
            reconnectDelay=self.reconnectDelay,
        )

    async def drain(self) -> None:
        """Wait until every queued transition (including pending handle events) ran."""
        while True:
            # let call_soon_threadsafe deliveries land in the inbox
            await asyncio.sleep(0)
            if not self._inbox.empty():
                self._ensurePump()

            await self._inbox.join()
            await asyncio.sleep(0)
            if self._inbox.empty():
                return

    async def stop(self) -> None:
        """Cancel timers, close the handle, and stop the supervisor task."""
        logger.info("[supervisor] Shutting down...")
        self._cancelReconnect()
        self._stopKeepAlive()

        if self._pump is not None:
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
            self._pump = None

        await self._destroyHandle()
        await self.bus.close()

    # ------------------------------------------------------------------
    # Serialized transition pump
    # ------------------------------------------------------------------

    def _ensurePump(self) -> None:
        if self._pump is None or self._pump.done():
            self._loop = asyncio.get_running_loop()
            self._pump = asyncio.create_task(self._run(), name="walink supervisor")

    async def _submit(self, transition: Transition) -> None:
        self._ensurePump()
        done = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((transition, done))
        await done

    def _post(self, transition: Transition) -> None:
        """Queue a transition without waiting; safe to call from any thread."""
        if self._loop is None:
            self._ensurePump()

        assert self._loop
        self._loop.call_soon_threadsafe(self._inbox.put_nowait, (transition, None))

    async def _run(self) -> None:
        while True:
            transition, done = await self._inbox.get()
            try:
                await transition()
            except asyncio.CancelledError:
                if done is not None and not done.done():
                    done.cancel()

                raise
            except Exception as e:
                logger.exception("[supervisor] Transition {} failed", transition)
                if done is not None and not done.done():
                    done.set_exception(e)
            else:
                if done is not None and not done.done():
                    done.set_result(None)
            finally:
                self._inbox.task_done()

    def _deliver(self, event: HandleEvent) -> None:
        self._post(functools.partial(self._onHandleEvent, event))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _setPhase(self, phase: Phase) -> None:
        previous = self.state.phase
        if previous is phase:
            return

        if phase not in TRANSITIONS[previous]:
            logger.warning(
                "[supervisor] Unexpected transition {} -> {}", previous.value, phase.value
            )

        self.state.phase = phase
        self.state.lastTransitionTime = self.clock.now()
        logger.info("[supervisor] {} -> {}", previous.value, phase.value)

    async def _startRequested(self) -> None:
        if self.handle is not None:
            logger.info(
                "[supervisor] Already {} (cycle {}), not starting another session",
                self.state.phase.value,
                self.state.cycle,
            )
            return

        await self._startCycle()

    async def _startCycle(self) -> None:
        # only one handle may be open or pending: a new cycle invalidates any
        # reconnect still scheduled by an older one
        self._cancelReconnect()
        self._stopKeepAlive()
        await self._destroyHandle()

        self.state.attemptCount += 1
        self.state.cycle += 1
        cycle = self.state.cycle

        self._setPhase(Phase.CONNECTING)
        self.bus.emit(EventKind.CONNECTING)

        try:
            await asyncio.to_thread(self.store.validateAndRepair)
            self.handle = await SessionHandle.open(
                cycle, self.factory, self.config, self.store, self._deliver
            )
        except Exception as e:
            failure = e
            if not isinstance(e, HandleConstructionFailed):
                failure = HandleConstructionFailed(f"{type(e).__name__}: {e}")

            delay = constructionRetryDelay(self.state.attemptCount, self.config)
            logger.error("[supervisor] Failed to start session: {}", failure)
            self._setPhase(Phase.CLOSING)
            self._scheduleReconnect(delay, "session construction failed")

    async def _onHandleEvent(self, event: HandleEvent) -> None:
        if self.handle is None or event.cycle != self.handle.cycle:
            logger.warning("[supervisor] Dropping stale event from cycle {}: {}", event.cycle, event)
            return

        match event:
            case PairingChallenged(token=token):
                self._onPairingChallenge(token)
            case Opened():
                self._onOpened()
            case Closed():
                await self._onClosed(event)

    def _onPairingChallenge(self, token: str) -> None:
        if self.state.phase not in {Phase.CONNECTING, Phase.PAIRING_PENDING}:
            logger.warning(
                "[supervisor] Ignoring pairing challenge while {}", self.state.phase.value
            )
            return

        logger.info("[supervisor] Pairing challenge received")
        self._setPhase(Phase.PAIRING_PENDING)

        # the remote end is responsive, so don't penalize later disconnects
        self.state.attemptCount = 0
        self.state.pairingChallenge = token
        self.bus.emit(EventKind.PAIRING_CHALLENGE, token)

    def _onOpened(self) -> None:
        if self.state.phase not in {Phase.CONNECTING, Phase.PAIRING_PENDING}:
            logger.warning("[supervisor] Ignoring open while {}", self.state.phase.value)
            return

        assert self.handle
        self._setPhase(Phase.CONNECTED)
        self.state.attemptCount = 0
        self.state.pairingChallenge = None
        logger.info("[supervisor] Connected successfully!")
        self.bus.emit(EventKind.READY)

        self._stopKeepAlive()
        self.keepalive = KeepAlive(
            self.handle.probe,
            self.config.keepAliveInterval,
            self.clock,
            name=str(self.state.cycle),
        )
        self.keepalive.start()

    async def _onClosed(self, event: Closed) -> None:
        self._stopKeepAlive()
        await self._destroyHandle()
        self._setPhase(Phase.CLOSING)
        self.state.pairingChallenge = None

        if event.detail:
            logger.info("[supervisor] Close details: {}", event.detail)

        if self.state.isExplicitLogout:
            logger.info("[supervisor] Logout requested, not reconnecting")
            self._setPhase(Phase.LOGGED_OUT)
            return

        plan = planReconnect(event.reason, self.state.attemptCount, self.config)
        logger.info("[supervisor] Closed ({}): {}", event.reason.value, plan.why)

        if plan.wipeStore:
            await self._wipeAndNotify()

        if plan.resetAttempts:
            self.state.attemptCount = 0

        self._scheduleReconnect(plan.delay, plan.why)

    async def _restartRequested(self) -> None:
        logger.info("[supervisor] Restarting connection...")
        self._cancelReconnect()
        self._stopKeepAlive()
        await self._destroyHandle()
        self._setPhase(Phase.CLOSING)
        self.state.pairingChallenge = None

        # manual restarts bypass attempt throttling
        self.state.attemptCount = 0
        self._scheduleReconnect(self.config.manualRestartDelay, "manual restart")

    async def _logoutRequested(self) -> None:
        logger.info("[supervisor] Logging out...")
        self.state.isExplicitLogout = True
        try:
            self._cancelReconnect()
            self._stopKeepAlive()

            if self.handle is not None:
                await self.handle.logout(self.config.closeTimeout)

            await self._destroyHandle()
            self._setPhase(Phase.CLOSING)
            self.state.pairingChallenge = None
            self.state.attemptCount = 0
            self._setPhase(Phase.LOGGED_OUT)
            await self._wipeAndNotify()
            logger.info("[supervisor] Logged out successfully")
        finally:
            self.state.isExplicitLogout = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _wipeAndNotify(self) -> None:
        try:
            await asyncio.to_thread(self.store.wipe)
        except OSError as e:
            logger.error("[supervisor] Error clearing credentials: {}", e)

        self.bus.emit(EventKind.LOGOUT)

    async def _destroyHandle(self) -> None:
        handle, self.handle = self.handle, None
        if handle is not None:
            await handle.close(self.config.closeTimeout)

    def _stopKeepAlive(self) -> None:
        if self.keepalive is not None:
            self.keepalive.stop()
            self.keepalive = None

    def _scheduleReconnect(self, delay: float, why: str) -> None:
        self._cancelReconnect()
        token = self._reconnectToken
        self.reconnectDelay = delay
        logger.info("[supervisor] Reconnecting in {:.1f}s ({})", delay, why)
        self._reconnect = asyncio.create_task(
            self._reconnectAfter(delay, token), name=f"reconnect in {delay}s"
        )

    def _cancelReconnect(self) -> None:
        # bumping the token also invalidates a timer that already fired but
        # whose transition is still waiting in the inbox
        self._reconnectToken += 1
        self.reconnectDelay = None
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None

    async def _reconnectAfter(self, delay: float, token: int) -> None:
        await self.clock.sleep(delay)
        self._post(functools.partial(self._reconnectDue, token))

    async def _reconnectDue(self, token: int) -> None:
        if token != self._reconnectToken:
            logger.debug("[supervisor] Dropping stale reconnect timer")
            return

        self._reconnect = None
        await self._startCycle()
