"""Reconnect policy: what to do after a session closes or fails to open.

Pure functions of (close reason, attempt count, config) so every branch
can be tested without a running supervisor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from walink.engine.config import SupervisorConfig
from walink.engine.primitives import CloseReason

# lowercase fragments of library error messages meaning the socket itself is gone
CONNECTION_GONE_MARKERS: Final = (
    "not connected",
    "socket closed",
    "connection closed",
    "timed out",
)


@dataclass(slots=True, frozen=True)
class ReconnectPlan:
    """Decision for one close event."""

    delay: float
    why: str

    # wipe the credential store (and notify logout) before reconnecting
    wipeStore: bool = False

    # start counting attempts from zero again
    resetAttempts: bool = False


def backoffDelay(attemptCount: int, config: SupervisorConfig) -> float:
    """Linear backoff for unclassified closes, capped."""
    return min(config.backoffStep * attemptCount, config.backoffCap)


def constructionRetryDelay(attemptCount: int, config: SupervisorConfig) -> float:
    """Retry delay after the session couldn't even be opened.

    Steeper than the post-connect curve: construction failures usually
    mean a systemic problem (network, library version) rather than one
    dropped session.
    """
    return min(config.constructionStep * attemptCount, config.constructionCap)


def planReconnect(
    reason: CloseReason, attemptCount: int, config: SupervisorConfig
) -> ReconnectPlan:
    match reason:
        case CloseReason.REMOTE_SESSION_REVOKED:
            # fresh store forces re-pairing, so no backoff needed
            return ReconnectPlan(
                config.revokedDelay, "session revoked", wipeStore=True, resetAttempts=True
            )
        case CloseReason.REMOTE_RESTART_REQUESTED:
            return ReconnectPlan(config.restartRequiredDelay, "restart required")
        case CloseReason.TRANSIENT_NETWORK_LOSS:
            return ReconnectPlan(config.networkLossDelay, "connection lost")

    if attemptCount < config.maxReconnectAttempts:
        return ReconnectPlan(
            backoffDelay(attemptCount, config),
            f"attempt {attemptCount + 1}/{config.maxReconnectAttempts}",
        )

    # Repeated unexplained failures are treated as credential corruption,
    # even when the real cause might be the network.
    return ReconnectPlan(
        config.capExceededDelay,
        "max reconnection attempts reached",
        wipeStore=True,
        resetAttempts=True,
    )


def connectionGone(error: BaseException) -> bool:
    """True if a send failure means the underlying connection is dead."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    message = str(error).lower()
    return any(marker in message for marker in CONNECTION_GONE_MARKERS)
