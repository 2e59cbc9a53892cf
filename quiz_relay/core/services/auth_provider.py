"""Authentication status port and the provider used by the web server."""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urlencode

DEFAULT_SIGN_IN_PATH = "/auth/sign-in"


class AuthProvider(Protocol):
    def is_authenticated(self) -> bool: ...

    def current_user_id(self) -> str | None: ...

    def redirect_to_sign_in(self, return_url: str) -> None: ...


class StaticAuthProvider:
    """Auth provider whose signed-in user is set explicitly.

    ``redirect_to_sign_in`` cannot navigate a browser from Python, so it
    records the sign-in URL for the HTTP layer to answer with.
    """

    def __init__(self, user_id: str | None = None, sign_in_path: str = DEFAULT_SIGN_IN_PATH) -> None:
        self._user_id = user_id
        self._sign_in_path = sign_in_path
        self.redirects: list[str] = []

    def is_authenticated(self) -> bool:
        return bool(self._user_id)

    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None

    def redirect_to_sign_in(self, return_url: str) -> None:
        self.redirects.append(f"{self._sign_in_path}?{urlencode({'callback_url': return_url})}")

    @property
    def last_redirect(self) -> str | None:
        return self.redirects[-1] if self.redirects else None
