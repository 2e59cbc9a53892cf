"""Key/value relay store used to carry quiz state across the sign-in redirect.

Architecture note:
    The redirect to the sign-in provider is a navigation the quiz code does
    not control, so the only channel between the page that sends the user
    away and the page that receives them back is persistent storage. Two
    scopes mirror the browser: ``session`` entries die with the browser
    session, ``durable`` entries survive it. Writes are last-writer-wins per
    key; the coordinator and the reconciler agree on who writes and who
    consumes each key.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Protocol

from quiz_relay.core.models import StorageScope

logger = logging.getLogger(__name__)


class RelayStore(Protocol):
    """Port consumed by the quiz core; values are opaque strings."""

    def get(self, key: str, scope: StorageScope) -> str | None: ...

    def set(self, key: str, value: str, scope: StorageScope) -> None: ...

    def delete(self, key: str, scope: StorageScope) -> None: ...

    def keys(self, scope: StorageScope) -> list[str]: ...


class InMemoryRelayStore:
    """Relay store holding both scopes in process memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[StorageScope, dict[str, str]] = {
            StorageScope.SESSION: {},
            StorageScope.DURABLE: {},
        }

    def get(self, key: str, scope: StorageScope) -> str | None:
        with self._lock:
            return self._entries[scope].get(key)

    def set(self, key: str, value: str, scope: StorageScope) -> None:
        with self._lock:
            self._entries[scope][key] = value

    def delete(self, key: str, scope: StorageScope) -> None:
        with self._lock:
            self._entries[scope].pop(key, None)

    def keys(self, scope: StorageScope) -> list[str]:
        with self._lock:
            return list(self._entries[scope])

    def end_session(self) -> None:
        """Drop session-scoped entries, as closing the browser would."""
        with self._lock:
            self._entries[StorageScope.SESSION].clear()


class FileRelayStore(InMemoryRelayStore):
    """Relay store whose durable scope is persisted to a JSON file.

    The file holds one object mapping keys to string values. An unreadable
    file is logged and treated as empty rather than failing startup.
    """

    def __init__(self, file_path: Path) -> None:
        super().__init__()
        self._file_path = file_path.resolve()
        self._entries[StorageScope.DURABLE] = self._load()

    def set(self, key: str, value: str, scope: StorageScope) -> None:
        with self._lock:
            self._entries[scope][key] = value
            if scope is StorageScope.DURABLE:
                self._flush()

    def delete(self, key: str, scope: StorageScope) -> None:
        with self._lock:
            removed = self._entries[scope].pop(key, None)
            if removed is not None and scope is StorageScope.DURABLE:
                self._flush()

    def _load(self) -> dict[str, str]:
        if not self._file_path.exists():
            return {}
        try:
            data = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable relay file %s: %s", self._file_path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring relay file %s: expected an object", self._file_path)
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _flush(self) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._file_path.with_suffix(self._file_path.suffix + ".tmp")
        temp_path.write_text(json.dumps(self._entries[StorageScope.DURABLE]), encoding="utf-8")
        os.replace(temp_path, self._file_path)
