"""walink engine layer: connection lifecycle logic with no UI dependency.

This package contains the testable core of walink: everything needed to
keep one authenticated session against the messaging service alive.
The session library itself (handshake, encryption, pairing, encoding) is
an external collaborator plugged in through ``protocols.SessionFactory``.

Modules
-------
primitives
    Pure types and helpers.
    - ``Phase``: lifecycle phases (idle, connecting, pairingPending, connected, closing, loggedOut)
    - ``CloseReason``: typed close classification consumed by the reconnect policy
    - ``ConnectionState``, ``StatusReport``, ``SendReceipt``
    - ``normalizeDestination``: digits-only destination with a 10 digit minimum

errors
    ``WalinkError`` and the taxonomy: ``StoreCorrupted``, ``HandleConstructionFailed``,
    ``SendFailed``, ``NotConnected``, ``InvalidDestination``, ``ConfigError``

config
    ``SupervisorConfig`` (delays, limits, session options) and ``loadConfig()``
    (``.env.walink`` merged under the process environment)

clock
    ``AppClock``: shared ``now()`` / ``sleep()`` so tests can run on virtual time

protocols
    ``ProtocolSession`` / ``SessionFactory``: the surface consumed from the session library

credstore
    ``CredentialStore``: all-or-nothing validation and repair of persisted credentials

session
    ``SessionHandle``: per-cycle adapter turning library callbacks into typed events;
    ``classifyClose`` maps library status codes to ``CloseReason``

backoff
    ``planReconnect``, ``constructionRetryDelay``, ``connectionGone``: reconnect policy

keepalive
    ``KeepAlive``: per-cycle liveness probe timer

events
    ``EventBus``, ``EventKind``, ``Event``: ordered, non-blocking lifecycle notifications

supervisor
    ``LifecycleSupervisor``: the serialized state machine tying it all together
"""

# Convenience re-exports for common usage:
# from walink.engine import LifecycleSupervisor, CredentialStore, EventBus
from walink.engine.config import SupervisorConfig, loadConfig
from walink.engine.credstore import CredentialStore
from walink.engine.events import Event, EventBus, EventKind
from walink.engine.primitives import CloseReason, Phase, SendReceipt, StatusReport
from walink.engine.supervisor import LifecycleSupervisor

__all__ = [
    "CloseReason",
    "CredentialStore",
    "Event",
    "EventBus",
    "EventKind",
    "LifecycleSupervisor",
    "Phase",
    "SendReceipt",
    "StatusReport",
    "SupervisorConfig",
    "loadConfig",
]
