"""Hands a guest over to the sign-in provider and recognizes their return."""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from quiz_relay.constants.quiz_constants import RETURN_MARKER_PARAM, RETURN_MARKER_VALUE
from quiz_relay.core.models import PendingRedirectPacket, SessionState
from quiz_relay.core.services.auth_provider import AuthProvider
from quiz_relay.core.services.quiz_storage import QuizRelayStorage

logger = logging.getLogger(__name__)


def has_return_marker(url: str | None) -> bool:
    if not url:
        return False
    query = parse_qsl(urlsplit(url).query, keep_blank_values=True)
    return (RETURN_MARKER_PARAM, RETURN_MARKER_VALUE) in query


def add_return_marker(url: str) -> str:
    if has_return_marker(url):
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != RETURN_MARKER_PARAM]
    query.append((RETURN_MARKER_PARAM, RETURN_MARKER_VALUE))
    return urlunsplit(parts._replace(query=urlencode(query)))


def strip_return_marker(url: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != RETURN_MARKER_PARAM]
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthRedirectCoordinator:
    """Writes the redirect packet before sign-in and consumes it afterwards.

    The coordinator is the only writer of the packet and its markers; the
    reconciler reads them through ``consume_return``.
    """

    def __init__(self, storage: QuizRelayStorage, auth: AuthProvider) -> None:
        self._storage = storage
        self._auth = auth

    def require_authentication(self, state: SessionState, redirect_path: str) -> str | None:
        """Send the user to sign in; return the return URL, or ``None`` when already signed in."""
        if self._auth.is_authenticated():
            logger.debug("Sign-in requested for quiz %s but the user is already signed in", state.quiz_id)
            return None

        return_url = add_return_marker(redirect_path)
        packet = PendingRedirectPacket(
            quiz_id=state.quiz_id,
            slug=state.slug,
            quiz_type=state.quiz_type,
            answers=list(state.answers),
            score=state.score,
            redirect_url=return_url,
        )
        self._storage.save_pending_packet(packet)
        self._storage.set_auth_redirect(return_url)
        self._storage.mark_in_auth_flow()
        logger.info("Redirecting to sign in for quiz %s, returning to %s", state.quiz_id, return_url)
        self._auth.redirect_to_sign_in(return_url)
        return return_url

    def has_pending_flow(self) -> bool:
        """True while any entry written before the sign-in redirect is still stored."""
        return (
            self._storage.is_in_auth_flow()
            or self._storage.get_auth_redirect() is not None
            or self._storage.load_pending_packet() is not None
        )

    def is_returning(self, current_url: str | None) -> bool:
        """A return from sign-in: marked URL, signed-in user and an unconsumed redirect.

        A marked URL without stored redirect entries is a reload of a page
        whose return was already handled.
        """
        if not has_return_marker(current_url) or not self._auth.is_authenticated():
            return False
        return self.has_pending_flow()

    def consume_return(self, quiz_id: str) -> PendingRedirectPacket | None:
        """Read the packet for ``quiz_id`` once and clear the redirect entries.

        A packet written for another quiz is left in place untouched.
        """
        packet = self._storage.load_pending_packet()
        if packet is not None and packet.quiz_id != quiz_id:
            logger.info("Pending sign-in packet belongs to quiz %s, not %s", packet.quiz_id, quiz_id)
            return None
        self._storage.clear_auth_flow()
        return packet
