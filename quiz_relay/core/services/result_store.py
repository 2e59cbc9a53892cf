"""Remote result store: the authoritative home of finished quiz results."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from quiz_relay.constants.network_constants import RESULT_STORE_TIMEOUT_SECONDS, USER_HEADER
from quiz_relay.core.models import QuizResult

logger = logging.getLogger(__name__)

_RESULT_ADAPTER = TypeAdapter(QuizResult)


class ResultStoreError(RuntimeError):
    """Raised for any failure talking to the result store, timeouts included."""


class RemoteResultStore(Protocol):
    def submit_result(self, result: QuizResult, user_id: str) -> None: ...

    def fetch_result(self, quiz_id: str, slug: str, user_id: str) -> QuizResult | None: ...


class InMemoryResultStore:
    """Result store kept in process memory, one result per user, quiz and slug.

    Submissions are upserts. A resubmission carrying the ``completed_at`` of
    the stored result is the same attempt arriving twice and is accepted
    without changing anything.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._results: dict[tuple[str, str, str], QuizResult] = {}

    def submit_result(self, result: QuizResult, user_id: str) -> None:
        if not user_id:
            raise ResultStoreError("An authenticated user is required to save results.")
        key = (user_id, result.quiz_id, result.slug)
        with self._lock:
            existing = self._results.get(key)
            if existing is not None and existing.dedupe_key() == result.dedupe_key():
                logger.debug("Duplicate submission for quiz %s ignored", result.quiz_id)
                return
            self._results[key] = result
        logger.info("Stored result for quiz %s (user %s, score %s)", result.quiz_id, user_id, result.score)

    def fetch_result(self, quiz_id: str, slug: str, user_id: str) -> QuizResult | None:
        with self._lock:
            return self._results.get((user_id, quiz_id, slug))

    def get_result_count(self) -> int:
        with self._lock:
            return len(self._results)


class HttpResultStore:
    """Result store client speaking to the ``/results`` endpoints over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = RESULT_STORE_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def submit_result(self, result: QuizResult, user_id: str) -> None:
        payload = _RESULT_ADAPTER.dump_python(result, mode="json")
        try:
            response = self._client.post("/results", json=payload, headers={USER_HEADER: user_id})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ResultStoreError(f"Submitting result for quiz {result.quiz_id} failed: {exc}") from exc

    def fetch_result(self, quiz_id: str, slug: str, user_id: str) -> QuizResult | None:
        path = f"/results/{quote(quiz_id, safe='')}/{quote(slug, safe='')}"
        try:
            response = self._client.get(path, headers={USER_HEADER: user_id})
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return _RESULT_ADAPTER.validate_python(response.json())
        except httpx.HTTPError as exc:
            raise ResultStoreError(f"Fetching result for quiz {quiz_id} failed: {exc}") from exc
        except (ValueError, ValidationError) as exc:
            raise ResultStoreError(f"Result store returned a malformed result for quiz {quiz_id}") from exc

    def close(self) -> None:
        self._client.close()
