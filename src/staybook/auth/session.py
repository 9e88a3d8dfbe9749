"""Auth session handling against the external auth provider.

The session never refreshes itself on a timer. Callers decide when to call
``refresh`` (or ``refresh_if_needed``), and the clock is injectable so expiry
can be tested without waiting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

import httpx
from sqlalchemy.orm import Session

from staybook.config import get_env, section
from staybook.errors import AuthorizationError, TransientStoreError
from staybook.events import Event, EventType, event_bus
from staybook.models.user import User

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    email: str


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: datetime


class AuthProvider(Protocol):
    def sign_in(self, email: str, password: str) -> AuthSession: ...

    def refresh(self, refresh_token: str) -> AuthSession: ...

    def sign_out(self, access_token: str) -> None: ...

    def get_user(self, access_token: str) -> AuthIdentity: ...


class HttpAuthProvider:
    """GoTrue-style REST auth API client."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        clock: Clock = utc_now,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = (base_url or get_env("AUTH_URL", "")).rstrip("/")
        self._api_key = api_key or get_env("AUTH_API_KEY", "")
        self._clock = clock
        self._client = client or httpx.Client(timeout=30, follow_redirects=True)

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    def sign_in(self, email: str, password: str) -> AuthSession:
        data = self._post("/token", {"grant_type": "password"}, {"email": email, "password": password})
        return self._to_session(data)

    def refresh(self, refresh_token: str) -> AuthSession:
        data = self._post("/token", {"grant_type": "refresh_token"}, {"refresh_token": refresh_token})
        return self._to_session(data)

    def sign_out(self, access_token: str) -> None:
        self._post("/logout", None, None, access_token=access_token)

    def get_user(self, access_token: str) -> AuthIdentity:
        """Identity behind an access token."""
        data = self._request("GET", "/user", None, None, access_token=access_token)
        if not data.get("id"):
            raise AuthorizationError("Invalid credentials or expired session")
        return AuthIdentity(user_id=str(data["id"]), email=data.get("email", ""))

    def _post(
        self,
        path: str,
        params: dict[str, str] | None,
        payload: dict[str, Any] | None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        return self._request("POST", path, params, payload, access_token=access_token)

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None,
        payload: dict[str, Any] | None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self._api_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            resp = self._client.request(
                method, f"{self._base_url}{path}", params=params, json=payload, headers=headers
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (400, 401, 403):
                raise AuthorizationError("Invalid credentials or expired session") from exc
            logger.exception("Auth provider returned %s", exc.response.status_code)
            raise TransientStoreError("Authentication service unavailable. Please try again.") from exc
        except httpx.HTTPError as exc:
            logger.exception("Failed to reach auth provider at %s", self._base_url)
            raise TransientStoreError("Authentication service unavailable. Please try again.") from exc
        return resp.json() if resp.content else {}

    def _to_session(self, data: dict[str, Any]) -> AuthSession:
        user = data.get("user") or {}
        return AuthSession(
            user_id=str(user.get("id", "")),
            email=user.get("email", ""),
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=self._clock() + timedelta(seconds=int(data.get("expires_in", 3600))),
        )


class SessionManager:
    """Holds the signed-in session and refreshes it on request."""

    def __init__(
        self,
        provider: AuthProvider,
        clock: Clock = utc_now,
        refresh_margin: timedelta | None = None,
    ) -> None:
        self._provider = provider
        self._clock = clock
        if refresh_margin is None:
            refresh_margin = timedelta(seconds=section("auth").get("refresh_margin_seconds", 60))
        self._refresh_margin = refresh_margin
        self._session: AuthSession | None = None

    @property
    def current_session(self) -> AuthSession | None:
        return self._session

    @property
    def is_signed_in(self) -> bool:
        return self._session is not None

    def is_expired(self) -> bool:
        return self._session is not None and self._clock() >= self._session.expires_at

    def needs_refresh(self) -> bool:
        if self._session is None:
            return False
        return self._clock() >= self._session.expires_at - self._refresh_margin

    def sign_in(self, email: str, password: str) -> AuthSession:
        self._session = self._provider.sign_in(email, password)
        logger.info("Signed in %s", self._session.email)
        event_bus.publish(Event(
            event_type=EventType.SIGNED_IN,
            data={"user_id": self._session.user_id, "email": self._session.email},
        ))
        return self._session

    def sign_out(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        try:
            self._provider.sign_out(session.access_token)
        except (AuthorizationError, TransientStoreError):
            # Local session is gone either way
            logger.warning("Provider sign-out failed for %s", session.email)
        event_bus.publish(Event(event_type=EventType.SIGNED_OUT, data={"user_id": session.user_id}))

    def refresh(self) -> AuthSession:
        """Exchange the refresh token for a new session.

        A rejected refresh token signs the user out.
        """
        if self._session is None:
            raise AuthorizationError("Not signed in")
        try:
            self._session = self._provider.refresh(self._session.refresh_token)
        except AuthorizationError:
            user_id = self._session.user_id
            self._session = None
            event_bus.publish(Event(event_type=EventType.SIGNED_OUT, data={"user_id": user_id}))
            raise
        logger.debug("Refreshed session for %s", self._session.email)
        return self._session

    def refresh_if_needed(self) -> AuthSession | None:
        if self.needs_refresh():
            return self.refresh()
        return self._session

    def require_user(self) -> AuthSession:
        """The signed-in, unexpired session, or AuthorizationError."""
        if self._session is None:
            raise AuthorizationError("You must be logged in to book")
        if self.is_expired():
            raise AuthorizationError("Your session has expired. Please sign in again.")
        return self._session


def resolve_user(session: Session, provider: AuthProvider, access_token: str) -> User:
    """Map an access token to the local User, linking or creating it on first sight.

    Users seeded by email (property owners from config) are linked to their
    provider id the first time they present a token.
    """
    identity = provider.get_user(access_token)
    user = session.query(User).filter(User.auth_id == identity.user_id).first()
    if user is not None:
        return user

    user = session.query(User).filter(User.email == identity.email).first() if identity.email else None
    if user is not None and user.auth_id is not None:
        raise AuthorizationError("Account is linked to another identity")
    if user is None:
        user = User(email=identity.email or f"{identity.user_id}@users.invalid")
        session.add(user)
        logger.info("Created user for provider id %s", identity.user_id)
    user.auth_id = identity.user_id
    session.commit()
    return user
