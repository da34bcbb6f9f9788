"""
client/session.py -- Client-side session agent for the TokenGate API.

SessionAgent is what a Python caller (a CLI, a service, an integration test)
uses instead of raw requests:

  - Keeps the access token in memory and attaches it as a Bearer header to
    every request while one is cached.
  - Relies on the underlying requests.Session cookie jar for the refresh
    token; the agent never reads or stores it itself.
  - On a 401 for a request that carried a token, exchanges the refresh cookie
    for a new access token ONCE and retries the original request ONCE. The
    retried call is marked so a second 401 is returned as-is instead of
    looping.
  - If the refresh fails, the cached token is dropped, on_reauth_required()
    is called (the "send the user back to the login screen" hook) and
    SessionExpiredError is raised.

Auth endpoints themselves (login, register, refresh) are never retried --
refresh and login are not safe to replay automatically.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

import requests

logger = logging.getLogger("tokengate.client")

DEFAULT_BASE_URL = "http://localhost:8000/api"
_NO_RETRY_PATHS = ("/auth/login", "/auth/register", "/auth/refresh")


class SessionExpiredError(Exception):
    """Raised when the refresh cookie can no longer be exchanged for an access token."""


class SessionAgent:
    """Stateful API client with one-shot refresh-and-retry.

    Usage:
        agent = SessionAgent("https://app.example.com/api", on_reauth_required=show_login)
        agent.login("a@x.com", "Secret123!")
        profile = agent.me()
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        on_reauth_required: Optional[Callable[[], None]] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token: Optional[str] = None
        self.timeout = timeout
        self._on_reauth_required = on_reauth_required
        if session is None:
            session = requests.Session()
            # Our own API never needs more than a couple of hops.
            session.max_redirects = 3
        self._session = session

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    # ------------------------------------------------------------------
    # Core request path
    # ------------------------------------------------------------------

    def request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send a request, refreshing the access token at most once on 401."""
        return self._send(method, path, retried=False, **kwargs)

    def _send(self, method: str, path: str, *, retried: bool, **kwargs: Any) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        sent_token = self.access_token
        if sent_token:
            headers["Authorization"] = f"Bearer {sent_token}"
        kwargs.setdefault("timeout", self.timeout)
        resp = self._session.request(method, self._url(path), headers=headers, **kwargs)

        if resp.status_code != 401 or retried or not sent_token:
            return resp
        if any(path.rstrip("/").endswith(p) for p in _NO_RETRY_PATHS):
            return resp

        logger.debug("Access token rejected on %s %s; refreshing once", method, path)
        self.refresh()
        headers.pop("Authorization", None)
        return self._send(method, path, retried=True, headers=headers, **kwargs)

    def refresh(self) -> str:
        """Exchange the refresh cookie for a new access token.

        Raises SessionExpiredError (after clearing local state) on any failure.
        """
        try:
            resp = self._session.post(self._url("/auth/refresh"), timeout=self.timeout)
            resp.raise_for_status()
            token = resp.json()["access_token"]
        except (requests.RequestException, ValueError, KeyError) as exc:
            logger.info("Token refresh failed: %s", exc)
            self._end_session()
            raise SessionExpiredError("Session expired. Please log in again.") from exc
        self.access_token = token
        return token

    def _end_session(self) -> None:
        self.access_token = None
        if self._on_reauth_required is not None:
            self._on_reauth_required()

    # ------------------------------------------------------------------
    # Auth API helpers
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str, **profile: Any) -> dict:
        """Create an account, cache its access token and return the principal."""
        body = {"username": username, "email": email, "password": password, **profile}
        resp = self.request("POST", "/auth/register", json=body)
        resp.raise_for_status()
        data = resp.json()
        self.access_token = data["access_token"]
        return data["principal"]

    def login(self, email: str, password: str) -> dict:
        resp = self.request("POST", "/auth/login", json={"email": email, "password": password})
        resp.raise_for_status()
        data = resp.json()
        self.access_token = data["access_token"]
        return data["principal"]

    def logout(self) -> None:
        """End the session server-side (best effort) and drop the cached token."""
        try:
            if self.access_token:
                self.request("POST", "/auth/logout")
        except (requests.RequestException, SessionExpiredError) as exc:
            logger.info("Logout request failed: %s", exc)
        finally:
            self.access_token = None
            self._session.cookies.clear()

    def me(self) -> dict:
        resp = self.request("GET", "/auth/me")
        resp.raise_for_status()
        return resp.json()["principal"]
