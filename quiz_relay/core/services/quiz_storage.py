"""Typed access to the quiz entries kept in the relay store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, TypeVar

from pydantic import TypeAdapter, ValidationError

from quiz_relay.constants.quiz_constants import (
    AUTH_REDIRECT_KEY,
    COMPLETED_MARKER_KEY,
    FLAG_TRUE,
    GUEST_RESULT_KEY,
    IN_AUTH_FLOW_KEY,
    PENDING_PACKET_KEY,
    PROGRESS_SNAPSHOT_KEY,
    PROGRESS_SNAPSHOT_PREFIX,
)
from quiz_relay.core.models import (
    PendingRedirectPacket,
    ProgressSnapshot,
    QuizResult,
    QuizType,
    StorageScope,
)
from quiz_relay.core.services.relay_store import RelayStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RESULT_ADAPTER = TypeAdapter(QuizResult)
_PACKET_ADAPTER = TypeAdapter(PendingRedirectPacket)
_SNAPSHOT_ADAPTER = TypeAdapter(ProgressSnapshot)

_QUIZ_KEY_PREFIXES = ("quiz_", "guest_quiz_")
_AUTH_FLOW_KEYS = (PENDING_PACKET_KEY, AUTH_REDIRECT_KEY, IN_AUTH_FLOW_KEY)


class RelayDecodeError(ValueError):
    """Raised when a relay entry does not hold the expected JSON payload."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode_result(result: QuizResult) -> str:
    return _RESULT_ADAPTER.dump_json(result).decode("utf-8")


def decode_result(raw: str | bytes) -> QuizResult:
    return _decode(_RESULT_ADAPTER, raw, "quiz result")


def _decode(adapter: TypeAdapter[T], raw: str | bytes, label: str) -> T:
    try:
        return adapter.validate_json(raw)
    except ValidationError as exc:
        raise RelayDecodeError(f"Malformed {label}: {exc.error_count()} error(s)") from exc


class QuizRelayStorage:
    """Reads and writes the quiz keys of a ``RelayStore``.

    Every reader treats a malformed entry as absent: the problem is logged,
    the entry is removed, and ``None`` is returned.
    """

    def __init__(self, store: RelayStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> RelayStore:
        return self._store

    # --- Completion marker ---

    def mark_completed(self, quiz_id: str) -> None:
        self._store.set(COMPLETED_MARKER_KEY.format(quiz_id=quiz_id), FLAG_TRUE, StorageScope.DURABLE)

    def is_marked_completed(self, quiz_id: str) -> bool:
        key = COMPLETED_MARKER_KEY.format(quiz_id=quiz_id)
        return self._store.get(key, StorageScope.DURABLE) == FLAG_TRUE

    def clear_completed_marker(self, quiz_id: str) -> None:
        self._store.delete(COMPLETED_MARKER_KEY.format(quiz_id=quiz_id), StorageScope.DURABLE)

    # --- Guest results ---

    def save_guest_result(self, result: QuizResult) -> None:
        key = GUEST_RESULT_KEY.format(quiz_id=result.quiz_id)
        self._store.set(key, encode_result(result), StorageScope.DURABLE)

    def load_guest_result(self, quiz_id: str) -> QuizResult | None:
        key = GUEST_RESULT_KEY.format(quiz_id=quiz_id)
        return self._read(key, StorageScope.DURABLE, _RESULT_ADAPTER, "guest result")

    def clear_guest_result(self, quiz_id: str) -> None:
        self._store.delete(GUEST_RESULT_KEY.format(quiz_id=quiz_id), StorageScope.DURABLE)

    # --- Sign-in redirect ---

    def save_pending_packet(self, packet: PendingRedirectPacket) -> None:
        payload = _PACKET_ADAPTER.dump_json(packet).decode("utf-8")
        self._store.set(PENDING_PACKET_KEY, payload, StorageScope.DURABLE)

    def load_pending_packet(self) -> PendingRedirectPacket | None:
        return self._read(PENDING_PACKET_KEY, StorageScope.DURABLE, _PACKET_ADAPTER, "redirect packet")

    def set_auth_redirect(self, redirect_url: str) -> None:
        self._store.set(AUTH_REDIRECT_KEY, redirect_url, StorageScope.DURABLE)

    def get_auth_redirect(self) -> str | None:
        return self._store.get(AUTH_REDIRECT_KEY, StorageScope.DURABLE)

    def mark_in_auth_flow(self) -> None:
        self._store.set(IN_AUTH_FLOW_KEY, FLAG_TRUE, StorageScope.DURABLE)

    def is_in_auth_flow(self) -> bool:
        return self._store.get(IN_AUTH_FLOW_KEY, StorageScope.DURABLE) == FLAG_TRUE

    def clear_auth_flow(self) -> None:
        """Remove the packet and both markers written before the redirect."""
        for key in _AUTH_FLOW_KEYS:
            self._store.delete(key, StorageScope.DURABLE)

    # --- In-progress snapshots ---

    def save_progress(self, snapshot: ProgressSnapshot) -> None:
        key = PROGRESS_SNAPSHOT_KEY.format(quiz_type=snapshot.quiz_type.value, quiz_id=snapshot.quiz_id)
        payload = _SNAPSHOT_ADAPTER.dump_json(snapshot).decode("utf-8")
        # Written to both scopes; the session copy covers a durable write that was dropped.
        self._store.set(key, payload, StorageScope.DURABLE)
        self._store.set(key, payload, StorageScope.SESSION)

    def load_progress(self, quiz_type: QuizType, quiz_id: str) -> ProgressSnapshot | None:
        key = PROGRESS_SNAPSHOT_KEY.format(quiz_type=quiz_type.value, quiz_id=quiz_id)
        for scope in (StorageScope.DURABLE, StorageScope.SESSION):
            snapshot = self._read(key, scope, _SNAPSHOT_ADAPTER, "progress snapshot")
            if snapshot is not None:
                return snapshot
        return None

    def clear_progress(self, quiz_type: QuizType, quiz_id: str) -> None:
        key = PROGRESS_SNAPSHOT_KEY.format(quiz_type=quiz_type.value, quiz_id=quiz_id)
        self._store.delete(key, StorageScope.DURABLE)
        self._store.delete(key, StorageScope.SESSION)

    def purge_stale_progress(self, max_age: timedelta) -> int:
        """Delete snapshots not updated within ``max_age``; return how many were removed."""
        cutoff = self._clock() - max_age
        removed = 0
        for scope in (StorageScope.DURABLE, StorageScope.SESSION):
            for key in self._store.keys(scope):
                if not key.startswith(PROGRESS_SNAPSHOT_PREFIX):
                    continue
                snapshot = self._read(key, scope, _SNAPSHOT_ADAPTER, "progress snapshot")
                if snapshot is None:
                    removed += 1
                elif snapshot.updated_at < cutoff:
                    self._store.delete(key, scope)
                    removed += 1
        if removed:
            logger.info("Purged %d stale progress snapshot(s)", removed)
        return removed

    # --- Bulk cleanup ---

    def clear_quiz_keys(self, quiz_id: str, quiz_type: QuizType) -> None:
        """Delete the transient entries of one quiz, leaving other quizzes alone."""
        self.clear_progress(quiz_type, quiz_id)
        self.clear_guest_result(quiz_id)
        self.clear_completed_marker(quiz_id)
        packet = self.load_pending_packet()
        if packet is not None and packet.quiz_id == quiz_id:
            self.clear_auth_flow()

    def clear_all_quiz_data(self) -> None:
        """Delete every quiz entry on the device, used when the user signs out."""
        for scope in (StorageScope.DURABLE, StorageScope.SESSION):
            for key in self._store.keys(scope):
                if key.startswith(_QUIZ_KEY_PREFIXES) or key in _AUTH_FLOW_KEYS:
                    self._store.delete(key, scope)
        logger.info("Cleared all quiz data from the relay store")

    def _read(self, key: str, scope: StorageScope, adapter: TypeAdapter[T], label: str) -> T | None:
        raw = self._store.get(key, scope)
        if raw is None:
            return None
        try:
            return _decode(adapter, raw, label)
        except RelayDecodeError as exc:
            logger.warning("Discarding relay entry %r (%s): %s", key, scope.value, exc)
            self._store.delete(key, scope)
            return None
