"""Pure types, constants, and utility functions: no external dependencies beyond whenever."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Final

import whenever

from walink.engine.errors import InvalidDestination

# destinations are phone numbers with country code; anything shorter can't be routed
MIN_DESTINATION_DIGITS: Final = 10

NON_DIGITS: Final = re.compile(r"\D")


class Phase(enum.Enum):
    """Lifecycle phase of the connection supervisor."""

    IDLE = "idle"
    CONNECTING = "connecting"
    PAIRING_PENDING = "pairingPending"
    CONNECTED = "connected"
    CLOSING = "closing"
    LOGGED_OUT = "loggedOut"


# Allowed phase changes. LOGGED_OUT only leaves via a fresh cycle (start/restart).
TRANSITIONS: Final[dict[Phase, frozenset[Phase]]] = {
    Phase.IDLE: frozenset({Phase.CONNECTING, Phase.CLOSING}),
    Phase.CONNECTING: frozenset({Phase.PAIRING_PENDING, Phase.CONNECTED, Phase.CLOSING}),
    Phase.PAIRING_PENDING: frozenset({Phase.PAIRING_PENDING, Phase.CONNECTED, Phase.CLOSING}),
    Phase.CONNECTED: frozenset({Phase.CLOSING}),
    Phase.CLOSING: frozenset({Phase.CONNECTING, Phase.LOGGED_OUT}),
    Phase.LOGGED_OUT: frozenset({Phase.CONNECTING, Phase.CLOSING}),
}


class CloseReason(enum.Enum):
    """Typed classification of why a session closed."""

    # the remote end dropped us or the link timed out
    TRANSIENT_NETWORK_LOSS = "transientNetworkLoss"

    # the remote end asks for a fresh protocol connection (normal after pairing)
    REMOTE_RESTART_REQUESTED = "remoteRestartRequested"

    # logged out remotely or credentials no longer accepted
    REMOTE_SESSION_REVOKED = "remoteSessionRevoked"

    UNCLASSIFIED = "unclassified"


@dataclass(slots=True)
class ConnectionState:
    """Supervisor-owned connection state (one per process)."""

    phase: Phase = Phase.IDLE

    # reconnect attempts since the last successful connect or pairing challenge
    attemptCount: int = 0

    # set only while a user-requested logout is being processed
    isExplicitLogout: bool = False

    lastTransitionTime: whenever.Instant = field(default_factory=whenever.Instant.now)

    # latest pairing token, cleared once superseded by a connect or close
    pairingChallenge: str | None = None

    # monotonically increasing connection cycle id (one Session Handle per cycle)
    cycle: int = 0


@dataclass(slots=True, frozen=True)
class StatusReport:
    """Snapshot returned by getStatus() for dashboards and the console toolbar."""

    phase: Phase
    hasCredentials: bool
    attemptCount: int
    lastTransitionTime: whenever.Instant
    hasPairingChallenge: bool = False
    reconnectDelay: float | None = None

    @property
    def connected(self) -> bool:
        return self.phase is Phase.CONNECTED

    def asdict(self) -> dict[str, Any]:
        return dict(
            phase=self.phase.value,
            connected=self.connected,
            hasCredentials=self.hasCredentials,
            attemptCount=self.attemptCount,
            lastTransitionTime=str(self.lastTransitionTime),
            hasPairingChallenge=self.hasPairingChallenge,
            reconnectDelay=self.reconnectDelay,
        )


@dataclass(slots=True, frozen=True)
class SendReceipt:
    id: str
    destination: str


def normalizeDestination(destination: str) -> str:
    """Strip everything except digits from a destination number.

    e.g. "1 (555) 234-5678" -> "15552345678"

    Raises InvalidDestination if fewer than MIN_DESTINATION_DIGITS remain.
    """
    digits = NON_DIGITS.sub("", destination or "")
    if len(digits) < MIN_DESTINATION_DIGITS:
        raise InvalidDestination(destination)

    return digits
