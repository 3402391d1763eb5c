"""Session Handle: one connection cycle's wrapper around a ProtocolSession.

The handle translates the session library's callback events into typed
HandleEvents tagged with the cycle id, and delivers them to the supervisor.
A handle is created fresh for every cycle and closed before the next one
starts; events from a closed handle are dropped by the supervisor because
their cycle id no longer matches.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from loguru import logger

from walink.engine.config import SupervisorConfig
from walink.engine.credstore import CredentialStore
from walink.engine.errors import HandleConstructionFailed
from walink.engine.primitives import CloseReason
from walink.engine.protocols import SESSION_EVENTS, ProtocolSession, SessionFactory

# Status codes reported by the session library on close.
STATUS_LOGGED_OUT: Final = 401
STATUS_CONNECTION_LOST: Final = 408  # also used for timeouts
STATUS_RESTART_REQUIRED: Final = 515

CLOSE_STATUS_MAP: Final[dict[int, CloseReason]] = {
    STATUS_LOGGED_OUT: CloseReason.REMOTE_SESSION_REVOKED,
    STATUS_CONNECTION_LOST: CloseReason.TRANSIENT_NETWORK_LOSS,
    STATUS_RESTART_REQUIRED: CloseReason.REMOTE_RESTART_REQUESTED,
}

# inbound message previews are truncated in logs
PREVIEW_LENGTH: Final = 50


@dataclass(slots=True, frozen=True)
class PairingChallenged:
    cycle: int
    token: str


@dataclass(slots=True, frozen=True)
class Opened:
    cycle: int


@dataclass(slots=True, frozen=True)
class Closed:
    cycle: int
    reason: CloseReason
    statusCode: int | None = None
    detail: str = ""


HandleEvent = PairingChallenged | Opened | Closed


def statusCodeOf(closeReason: Any) -> int | None:
    """Pull a numeric status code out of whatever the library reported.

    Accepts a bare int, or an object (usually an exception) carrying
    statusCode / status_code directly or under an .output attribute.
    """
    if closeReason is None or isinstance(closeReason, bool):
        return None

    if isinstance(closeReason, int):
        return closeReason

    for holder in (closeReason, getattr(closeReason, "output", None)):
        if holder is None:
            continue

        for attr in ("statusCode", "status_code"):
            code = getattr(holder, attr, None)
            if isinstance(code, int) and not isinstance(code, bool):
                return code

    return None


def classifyClose(closeReason: Any) -> tuple[CloseReason, int | None]:
    code = statusCodeOf(closeReason)
    return CLOSE_STATUS_MAP.get(code, CloseReason.UNCLASSIFIED), code


class SessionHandle:
    """Adapter owning exactly one ProtocolSession for one connection cycle."""

    def __init__(
        self,
        cycle: int,
        session: ProtocolSession,
        store: CredentialStore,
        deliver: Callable[[HandleEvent], None],
        addressSuffix: str = "",
    ):
        self.cycle = cycle
        self.session = session
        self.store = store
        self.deliver = deliver
        self.addressSuffix = addressSuffix
        self.closed = False

        # last scheduled credential write; writes run in order off the event loop
        self._persisting: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"SessionHandle(cycle={self.cycle}, closed={self.closed})"

    @classmethod
    async def open(
        cls,
        cycle: int,
        factory: SessionFactory,
        config: SupervisorConfig,
        store: CredentialStore,
        deliver: Callable[[HandleEvent], None],
    ) -> SessionHandle:
        """Open a session through the library and attach event routing.

        Any library error is re-raised as HandleConstructionFailed.
        """
        logger.info("[session :: {}] Opening session...", cycle)
        try:
            session = await factory(config.sessionOptions())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise HandleConstructionFailed(f"{type(e).__name__}: {e}") from e

        handle = cls(cycle, session, store, deliver, config.addressSuffix)
        handle.attach()
        return handle

    def attach(self) -> None:
        for event in SESSION_EVENTS:
            self.session.on(event, getattr(self, f"on{event[0].upper()}{event[1:]}"))

    # ------------------------------------------------------------------
    # Library callbacks
    # ------------------------------------------------------------------

    def onCredentialsUpdated(self, records: Mapping[str, Any] | None = None) -> None:
        # a torn-down handle must not write into a store that may have been wiped since
        if self.closed:
            logger.debug("[session :: {}] Ignoring credentials from closed session", self.cycle)
            return

        # libraries that persist on their own report without a payload
        if not records:
            logger.debug("[session :: {}] Credentials updated", self.cycle)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._persist(records)
            return

        # the store lock may be held by a validation pass in a worker thread
        self._persisting = loop.create_task(
            self._persistAfter(self._persisting, dict(records)),
            name=f"persist credentials {self.cycle}",
        )

    def _persist(self, records: Mapping[str, Any]) -> None:
        try:
            self.store.persist(records)
        except (OSError, ValueError, TypeError) as e:
            logger.error("[session :: {}] Failed to persist credentials: {}", self.cycle, e)

    async def _persistAfter(self, previous: asyncio.Task | None, records: Mapping[str, Any]) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)

        await asyncio.to_thread(self._persist, records)

    async def flush(self) -> None:
        """Wait for every scheduled credential write to land."""
        if self._persisting is not None:
            await asyncio.gather(self._persisting, return_exceptions=True)

    def onStatusChanged(self, phase: str, closeReason: Any = None) -> None:
        match phase:
            case "connecting":
                logger.info("[session :: {}] Connecting...", self.cycle)
            case "open":
                self.deliver(Opened(self.cycle))
            case "close":
                reason, code = classifyClose(closeReason)
                detail = str(closeReason) if closeReason is not None else ""
                logger.info(
                    "[session :: {}] Connection closed. Status: {} ({})",
                    self.cycle,
                    code or "unknown",
                    reason.value,
                )
                self.deliver(Closed(self.cycle, reason, code, detail))
            case _:
                logger.warning("[session :: {}] Unknown status: {}", self.cycle, phase)

    def onPairingChallenge(self, token: str) -> None:
        self.deliver(PairingChallenged(self.cycle, token))

    def onMessageReceived(self, sender: str, text: str = "") -> None:
        if not text:
            return

        preview = text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")
        logger.info("[session :: {}] Message from {}: {}", self.cycle, sender, preview)

    def onConnectionError(self, error: Any) -> None:
        logger.error("[session :: {}] Connection error: {}", self.cycle, error)

    # ------------------------------------------------------------------
    # Outbound operations
    # ------------------------------------------------------------------

    def address(self, number: str) -> str:
        if "@" in number:
            return number

        return f"{number}{self.addressSuffix}"

    async def sendText(self, number: str, body: str) -> str:
        return await self.session.sendText(self.address(number), body)

    async def probe(self) -> None:
        await self.session.probeLiveness()

    async def logout(self, timeout: float | None = None) -> None:
        """Graceful logout handshake; best-effort and bounded by timeout."""
        try:
            await asyncio.wait_for(self.session.logout(), timeout)
        except TimeoutError:
            logger.warning("[session :: {}] Logout timed out after {}s", self.cycle, timeout)
        except Exception as e:
            logger.warning("[session :: {}] Error during logout: {}", self.cycle, e)

    async def close(self, timeout: float | None = None) -> None:
        """Close the underlying session once; errors are logged, not raised.

        Credential writes already scheduled are allowed to land first, so a
        wipe that follows the close always sees the final store contents.
        """
        if self.closed:
            return

        self.closed = True
        await self.flush()
        try:
            await asyncio.wait_for(self.session.close(), timeout)
        except TimeoutError:
            logger.warning("[session :: {}] Close timed out after {}s", self.cycle, timeout)
        except Exception as e:
            logger.warning("[session :: {}] Error during close: {}", self.cycle, e)
