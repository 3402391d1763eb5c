"""Narrow protocols for the external messaging session library.

The session library owns the handshake, encryption, pairing cryptography,
and message encoding. These protocols define the minimal surface the
supervisor consumes, so any library can be plugged in through a small
adapter exposing a SessionFactory.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Final, Protocol, runtime_checkable

# Event names a ProtocolSession must accept in on().
#   credentialsUpdated(records: Mapping[str, bytes | str | dict] | None = None)
#   statusChanged(phase: "connecting" | "open" | "close", closeReason: Any = None)
#   pairingChallenge(token: str)
#   messageReceived(sender: str, text: str)      (optional)
#   connectionError(error: Exception)            (optional)
SESSION_EVENTS: Final = (
    "credentialsUpdated",
    "statusChanged",
    "pairingChallenge",
    "messageReceived",
    "connectionError",
)


@runtime_checkable
class ProtocolSession(Protocol):
    """One live (or attempting) connection owned by the session library."""

    def on(self, event: str, callback: Callable[..., Any]) -> None: ...
    async def sendText(self, destination: str, body: str) -> str: ...
    async def probeLiveness(self) -> None: ...
    async def close(self) -> None: ...
    async def logout(self) -> None: ...


@runtime_checkable
class SessionFactory(Protocol):
    """openSession(config) -> ProtocolSession; may raise."""

    async def __call__(self, config: Mapping[str, Any]) -> ProtocolSession: ...
