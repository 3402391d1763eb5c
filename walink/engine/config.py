"""Supervisor configuration loaded once at startup."""
from __future__ import annotations

import dataclasses
import os
import pathlib
from collections.abc import Mapping
from typing import Any

from dotenv import dotenv_values

from walink.engine.errors import ConfigError

ENV_FILE = ".env.walink"


@dataclasses.dataclass(slots=True)
class SupervisorConfig:
    """Scalar settings for the supervisor and its session library.

    These values are set once during startup and read by the supervisor,
    the credential store guard, and the session handle adapter.
    All delays are in seconds.
    """

    authDir: pathlib.Path = pathlib.Path("./auth_info_walink")

    # consecutive unclassified failures before the store is assumed corrupt
    maxReconnectAttempts: int = 10

    keepAliveInterval: float = 25.0

    # fixed delays per close classification
    revokedDelay: float = 5.0
    restartRequiredDelay: float = 2.0
    networkLossDelay: float = 3.0
    capExceededDelay: float = 10.0
    manualRestartDelay: float = 2.0

    # linear backoff for unclassified closes: min(step * attempts, cap)
    backoffStep: float = 3.0
    backoffCap: float = 20.0

    # linear backoff when the session can't even be constructed
    constructionStep: float = 5.0
    constructionCap: float = 30.0

    # upper bound on best-effort handle close during teardown
    closeTimeout: float = 5.0

    connectTimeout: float = 60.0

    # appended to normalized destination digits to form the remote address
    addressSuffix: str = "@s.whatsapp.net"

    # "module:callable" of the external session library adapter
    sessionFactory: str = ""

    logDir: pathlib.Path = pathlib.Path("runlogs")
    logLevel: str = "INFO"

    def sessionOptions(self) -> dict[str, Any]:
        """Options handed to the session library on every openSession() call."""
        return dict(
            authDir=str(self.authDir),
            connectTimeoutMs=int(self.connectTimeout * 1000),
            keepAliveIntervalMs=20_000,
            markOnlineOnConnect=True,
            syncFullHistory=False,
            retryRequestDelayMs=1000,
            maxRetries=3,
            defaultQueryTimeoutMs=60_000,
        )

    @classmethod
    def fromMapping(cls, env: Mapping[str, Any]) -> SupervisorConfig:
        """Build a config from WALINK_* keys, ignoring everything else."""

        def number(key: str, default: float, kind=float):
            raw = env.get(key)
            if raw is None or raw == "":
                return default

            try:
                return kind(raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{key} must be a {kind.__name__}, got {raw!r}") from e

        defaults = cls()
        return cls(
            authDir=pathlib.Path(env.get("WALINK_AUTH_DIR") or defaults.authDir),
            maxReconnectAttempts=number(
                "WALINK_MAX_RECONNECT_ATTEMPTS", defaults.maxReconnectAttempts, int
            ),
            keepAliveInterval=number("WALINK_KEEPALIVE_INTERVAL", defaults.keepAliveInterval),
            closeTimeout=number("WALINK_CLOSE_TIMEOUT", defaults.closeTimeout),
            connectTimeout=number("WALINK_CONNECT_TIMEOUT", defaults.connectTimeout),
            addressSuffix=env.get("WALINK_ADDRESS_SUFFIX") or defaults.addressSuffix,
            sessionFactory=env.get("WALINK_SESSION_FACTORY") or defaults.sessionFactory,
            logDir=pathlib.Path(env.get("WALINK_LOGDIR") or defaults.logDir),
            logLevel=(env.get("WALINK_LOGLEVEL") or defaults.logLevel).upper(),
        )


def loadConfig(envFile: str | os.PathLike = ENV_FILE) -> SupervisorConfig:
    """Load config from the dotenv file, overridden by the process environment."""
    return SupervisorConfig.fromMapping({**dotenv_values(envFile), **os.environ})
