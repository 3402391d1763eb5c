"""Helpers shared by the console app and its commands."""

from __future__ import annotations

import importlib
from typing import Final

from prompt_toolkit.formatted_text import HTML

from walink.engine.errors import ConfigError
from walink.engine.primitives import Phase, StatusReport
from walink.engine.protocols import SessionFactory

PAIRING_INSTRUCTIONS: Final = """
=== LINK THIS DEVICE ===
1. Open the app on your phone -> Settings -> Linked Devices
2. Tap "Link a Device"
3. Scan the pairing code within 30 seconds
4. Wait for the "Ready" message
========================"""

PHASE_STYLE: Final = {
    Phase.IDLE: "ansigray",
    Phase.CONNECTING: "ansiyellow",
    Phase.PAIRING_PENDING: "ansimagenta",
    Phase.CONNECTED: "ansigreen",
    Phase.CLOSING: "ansiyellow",
    Phase.LOGGED_OUT: "ansired",
}


def resolveFactory(target: str) -> SessionFactory:
    """Import a session factory from a "package.module:callable" string."""
    if not target:
        raise ConfigError("No session factory configured (set WALINK_SESSION_FACTORY)")

    moduleName, sep, attr = target.partition(":")
    if not sep or not moduleName or not attr:
        raise ConfigError(f"Session factory must look like 'module:callable', got {target!r}")

    try:
        module = importlib.import_module(moduleName)
    except ImportError as e:
        raise ConfigError(f"Can't import session factory module {moduleName!r}: {e}") from e

    factory = module
    for part in attr.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as e:
            raise ConfigError(f"{moduleName!r} has no attribute {attr!r}") from e

    if not callable(factory):
        raise ConfigError(f"Session factory {target!r} is not callable")

    return factory


def statusToolbar(report: StatusReport) -> HTML:
    """Bottom toolbar line for the REPL."""
    style = PHASE_STYLE.get(report.phase, "ansiwhite")
    parts = [
        f"<{style}>{report.phase.value}</{style}>",
        f"attempts: {report.attemptCount}",
        f"creds: {'yes' if report.hasCredentials else 'no'}",
    ]

    if report.hasPairingChallenge:
        parts.append("<b>pairing code waiting</b>")

    if report.reconnectDelay is not None:
        parts.append(f"reconnect in {report.reconnectDelay:.0f}s")

    parts.append(f"since {report.lastTransitionTime}")
    return HTML(" :: ".join(parts))
