"""Credential store integrity guard.

The session library persists its key material as a directory of named
records (JSON documents or raw binary). The records depend on each other,
so a single bad record makes the whole store useless: repair is always
all-or-nothing.
"""

from __future__ import annotations

import os
import pathlib
import platform
import shutil
import threading
import types
from collections.abc import Mapping
from typing import Any

from loguru import logger

from walink.engine.errors import StoreCorrupted

# Use orjson for CPython (faster), stdlib json for PyPy
ourjson: types.ModuleType
if platform.python_implementation() == "CPython":
    import orjson

    ourjson = orjson
else:
    import json

    ourjson = json

STRUCTURED_SUFFIX = ".json"


class CredentialStore:
    """Directory of credential records plus its validation and wipe paths.

    All mutation (wipe, persist) and validation run under one lock so a
    validation pass never observes a half-written or half-deleted store.
    Methods block on file I/O; async callers run them via asyncio.to_thread().
    """

    def __init__(self, path: str | os.PathLike):
        self.path = pathlib.Path(path)
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"CredentialStore({str(self.path)!r})"

    def records(self) -> list[pathlib.Path]:
        """Record files currently in the store, sorted by name."""
        if not self.path.is_dir():
            return []

        return sorted(p for p in self.path.iterdir() if p.is_file())

    def hasCredentials(self) -> bool:
        try:
            return bool(self.records())
        except OSError:
            return False

    def scan(self) -> None:
        """Raise StoreCorrupted listing every invalid record.

        A record is invalid if it is empty, or if it claims to be structured
        (by its .json suffix) and doesn't parse. Directory read errors
        propagate as OSError.
        """
        bad = []
        for record in self.records():
            try:
                content = record.read_bytes()
                if not content:
                    bad.append(record.name)
                    continue

                if record.suffix == STRUCTURED_SUFFIX:
                    ourjson.loads(content)
            except (OSError, ValueError):
                bad.append(record.name)

        if bad:
            raise StoreCorrupted(bad)

    def validateAndRepair(self) -> None:
        """Delete the whole store if any record is invalid or the scan fails."""
        with self._lock:
            if not self.path.exists():
                return

            if not self.path.is_dir():
                logger.warning("[store] {} is not a directory; clearing it", self.path)
                self.wipe()
                return

            try:
                self.scan()
            except StoreCorrupted as e:
                logger.warning("[store] {}; clearing {}", e, self.path)
                self.wipe()
            except OSError as e:
                logger.warning("[store] Can't read {} ({}); clearing it", self.path, e)
                self.wipe()

    def wipe(self) -> None:
        """Remove every record (and the directory itself)."""
        with self._lock:
            if not self.path.exists():
                return

            if self.path.is_dir():
                shutil.rmtree(self.path)
            else:
                self.path.unlink()

            logger.info("[store] Credential store cleared: {}", self.path)

    def persist(self, records: Mapping[str, Any]) -> None:
        """Write named records through the store.

        dict/list values are serialized as JSON, str as UTF-8, bytes verbatim.
        Each record is written to a temp file and renamed into place.
        """
        with self._lock:
            self.path.mkdir(parents=True, exist_ok=True)
            for name, value in records.items():
                target = self.path / name
                if target.parent != self.path:
                    raise ValueError(f"Record name escapes the store: {name!r}")

                match value:
                    case bytes() | bytearray():
                        data = bytes(value)
                    case str():
                        data = value.encode()
                    case _:
                        data = ourjson.dumps(value)
                        if isinstance(data, str):
                            data = data.encode()

                tmp = target.with_name(f".{target.name}.tmp")
                tmp.write_bytes(data)
                os.replace(tmp, target)

            logger.debug("[store] Persisted {} record(s)", len(records))
