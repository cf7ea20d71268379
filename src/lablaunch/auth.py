"""Supabase email/password authentication via the GoTrue REST API.

The panel keeps the signed-in session in memory only and notifies listeners
whenever it changes, mirroring supabase-js ``onAuthStateChange``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from lablaunch.config import settings
from lablaunch.errors import AuthError

logger = logging.getLogger(__name__)

AuthListener = Callable[[str, "AuthSession | None"], None]

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
INITIAL_SESSION = "INITIAL_SESSION"


class AuthUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    email: str | None = None


class AuthSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "bearer"
    user: AuthUser


def _auth_error(resp: httpx.Response, fallback: str) -> AuthError:
    message = fallback
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                message = value
                break
    return AuthError(message, status_code=resp.status_code)


class SupabaseAuthPanel:
    """Sign in, sign out and session restore against a Supabase project."""

    def __init__(
        self,
        *,
        url: str | None = None,
        anon_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = (url if url is not None else settings.supabase_url).strip().rstrip("/")
        key = (anon_key if anon_key is not None else settings.supabase_anon_key).strip()
        if not base or not key:
            raise ValueError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY")

        self._client = httpx.AsyncClient(
            base_url=f"{base}/auth/v1",
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
            headers={"apikey": key, "Content-Type": "application/json"},
        )
        self.session: AuthSession | None = None
        self._listeners: list[AuthListener] = []

    @property
    def user(self) -> AuthUser | None:
        return self.session.user if self.session else None

    async def aclose(self) -> None:
        self._listeners.clear()
        await self._client.aclose()

    async def __aenter__(self) -> SupabaseAuthPanel:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    # --- Listeners ---

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, event: str, session: AuthSession | None) -> None:
        self.session = session
        for listener in list(self._listeners):
            listener(event, session)

    # --- HTTP ---

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise AuthError(str(e) or type(e).__name__) from e

    # --- Operations ---

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if not resp.is_success:
            err = _auth_error(resp, f"Sign-in failed: {resp.status_code}")
            logger.warning("Sign-in rejected for %s: %s", email, err.message)
            raise err
        try:
            session = AuthSession.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthError("Sign-in response did not contain a session") from e
        logger.info("Logged in: %s", session.user.email or session.user.id)
        self._set_session(SIGNED_IN, session)
        return session

    async def restore_session(self, access_token: str, refresh_token: str | None = None) -> AuthSession:
        """Rebuild a session from a stored access token by looking up its user."""
        resp = await self._request(
            "GET", "/user", headers={"Authorization": f"Bearer {access_token}"}
        )
        if not resp.is_success:
            self._set_session(INITIAL_SESSION, None)
            raise _auth_error(resp, f"Session lookup failed: {resp.status_code}")
        try:
            user = AuthUser.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthError("User response is malformed") from e
        session = AuthSession(access_token=access_token, refresh_token=refresh_token, user=user)
        self._set_session(INITIAL_SESSION, session)
        return session

    async def sign_out(self) -> None:
        if self.session is None:
            return
        resp = await self._request(
            "POST",
            "/logout",
            headers={"Authorization": f"Bearer {self.session.access_token}"},
        )
        if not resp.is_success:
            err = _auth_error(resp, f"Sign-out failed: {resp.status_code}")
            logger.warning("Sign-out rejected: %s", err.message)
            raise err
        logger.info("Logged out")
        self._set_session(SIGNED_OUT, None)
