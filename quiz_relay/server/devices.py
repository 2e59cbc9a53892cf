"""Per-browser quiz state for the web server.

Each browser is identified by a device cookie and gets its own relay store
(standing in for the browser's own storage), auth provider and
``QuizManager``.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
import logging
from pathlib import Path
import re
from threading import Lock
from time import monotonic

from quiz_relay.core.quiz_manager import QuizManager
from quiz_relay.core.services.auth_provider import StaticAuthProvider
from quiz_relay.core.services.relay_store import FileRelayStore, InMemoryRelayStore
from quiz_relay.core.services.result_store import RemoteResultStore
from quiz_relay.utils.settings import Settings

logger = logging.getLogger(__name__)

_DEVICE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def is_valid_device_id(device_id: str | None) -> bool:
    return bool(device_id) and bool(_DEVICE_ID_PATTERN.match(device_id))


@dataclass(slots=True)
class DeviceContext:
    relay_store: InMemoryRelayStore
    auth: StaticAuthProvider
    manager: QuizManager


@dataclass(slots=True)
class _Entry:
    timestamp: float
    device: DeviceContext


class DeviceRegistry:
    """Devices by id, most recently used last.

    Devices idle for longer than ``device_idle_timeout_seconds`` are dropped,
    and the least recently used ones go once ``max_devices`` is exceeded. A
    device that is still saving a completion is kept. A dropped device with a
    file-backed relay store picks its durable entries up from disk on its
    next request; session-scoped entries start empty.
    """

    def __init__(
        self,
        settings: Settings,
        result_store: RemoteResultStore,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._settings = settings
        self._result_store = result_store
        self._clock = clock
        self._ttl = max(0.0, float(settings.device_idle_timeout_seconds))
        self._maxsize = max(1, int(settings.max_devices))
        self._lock = Lock()
        self._devices: OrderedDict[str, _Entry] = OrderedDict()

    def get_device(self, device_id: str) -> DeviceContext:
        with self._lock:
            now = self._clock()
            self._purge(now)
            entry = self._devices.get(device_id)
            if entry is None:
                entry = _Entry(timestamp=now, device=self._create_device(device_id))
                self._devices[device_id] = entry
            else:
                entry.timestamp = now
                self._devices.move_to_end(device_id)
            self._shrink()
            return entry.device

    def get_device_count(self) -> int:
        with self._lock:
            return len(self._devices)

    def _purge(self, now: float) -> None:
        if self._ttl <= 0:
            return
        expired = [
            device_id
            for device_id, entry in self._devices.items()
            if now - entry.timestamp > self._ttl and not entry.device.manager.is_completing()
        ]
        for device_id in expired:
            self._devices.pop(device_id, None)
        if expired:
            logger.debug("Dropped %d idle devices", len(expired))

    def _shrink(self) -> None:
        if len(self._devices) <= self._maxsize:
            return
        for device_id in list(self._devices.keys()):
            entry = self._devices[device_id]
            if not entry.device.manager.is_completing():
                self._devices.pop(device_id)
                logger.debug("Dropped least recently used device %s", device_id)
            if len(self._devices) <= self._maxsize:
                break

    def _create_device(self, device_id: str) -> DeviceContext:
        settings = self._settings
        if settings.relay_store_dir:
            relay_store = FileRelayStore(Path(settings.relay_store_dir) / f"{device_id}.json")
        else:
            relay_store = InMemoryRelayStore()
        auth = StaticAuthProvider()
        manager = QuizManager(
            relay_store=relay_store,
            result_store=self._result_store,
            auth=auth,
            gated_quiz_types=settings.gated_quiz_types,
            progress_max_age_days=settings.progress_snapshot_max_age_days,
            fill_blank_threshold=settings.fill_blank_similarity_threshold,
            open_ended_threshold=settings.open_ended_similarity_threshold,
        )
        return DeviceContext(relay_store=relay_store, auth=auth, manager=manager)
