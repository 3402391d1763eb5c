"""Error taxonomy for the connection supervisor.

Nothing here is fatal to the process: store and construction errors are
recovered by the supervisor itself, the rest are surfaced to callers.
"""

from __future__ import annotations


class WalinkError(Exception):
    """Base class for all walink errors."""


class ConfigError(WalinkError):
    """A configuration value could not be parsed or resolved."""


class StoreCorrupted(WalinkError):
    """One or more credential records are empty or unparseable."""

    def __init__(self, records: list[str], detail: str = ""):
        self.records = records
        super().__init__(detail or f"Corrupted credential records: {', '.join(records)}")


class HandleConstructionFailed(WalinkError):
    """The external session library could not open a session."""


class NotConnected(WalinkError):
    """An operation needs a connected session but the supervisor isn't connected."""

    def __init__(self, phase):
        self.phase = phase
        super().__init__(f"Not connected (current phase: {getattr(phase, 'value', phase)})")


class InvalidDestination(WalinkError):
    """The destination did not normalize to a routable number."""

    def __init__(self, destination: str):
        self.destination = destination
        super().__init__(f"Invalid destination: {destination!r}")


class SendFailed(WalinkError):
    """The session library rejected or failed an outbound message."""

    def __init__(self, destination: str, detail: str):
        self.destination = destination
        super().__init__(f"Failed to send message to {destination}: {detail}")
