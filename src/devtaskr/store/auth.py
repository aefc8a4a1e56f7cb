# src/devtaskr/store/auth.py

from __future__ import annotations

"""
Authentication providers. They only produce a UserIdentity; whoever owns
the engine forwards it to TaskSyncEngine.initialize().
"""

import logging
from typing import Any

import httpx

from ..core.errors import AuthorizationError, RemoteError, ValidationError
from ..core.session import UserIdentity
from .rest_store import error_message, make_timeout
from .sqlite_store import SQLiteRemoteStore

logger = logging.getLogger(__name__)


class LocalAuthProvider:
    """
    Profile-based sign-in for the local SQLite backend.

    There are no passwords locally: signing in selects an existing profile by email.
    """

    def __init__(self, store: SQLiteRemoteStore) -> None:
        self._store = store

    async def sign_in(self, email: str, password: str = "") -> UserIdentity:
        profile = await self._store.get_profile_by_email(email)
        if profile is None:
            raise AuthorizationError("Invalid login credentials")
        logger.info("Local sign-in user=%s", profile.id)
        return UserIdentity(id=profile.id, email=profile.email, name=profile.name)

    async def sign_up(self, email: str, password: str = "", name: str = "") -> UserIdentity:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required.")
        if await self._store.get_profile_by_email(email) is not None:
            raise ValidationError("User already registered")
        profile = await self._store.add_profile(name=name.strip() or email.split("@")[0], email=email)
        logger.info("Local sign-up user=%s", profile.id)
        return UserIdentity(id=profile.id, email=profile.email, name=profile.name)

    async def sign_out(self) -> None:
        return


class PasswordAuthProvider:
    """Email/password sign-in against the hosted auth endpoint (/auth/v1)."""

    def __init__(
            self,
            base_url: str,
            api_key: str,
            *,
            client: httpx.AsyncClient | None = None,
            timeout_seconds: float = 10.0,
    ) -> None:
        self._auth_url = base_url.rstrip("/") + "/auth/v1"
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=make_timeout(timeout_seconds))
        self._owns_client = client is None
        self.current: UserIdentity | None = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any] | None, *, token: str | None = None) -> Any:
        headers = {"apikey": self._api_key, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = await self._client.post(f"{self._auth_url}{path}", json=payload or {}, headers=headers)
        except httpx.HTTPError as e:
            raise RemoteError(f"Network error talking to the auth service: {e.__class__.__name__}") from e
        if resp.status_code in (400, 401, 422):
            raise AuthorizationError(error_message(resp))
        if resp.status_code >= 400:
            raise RemoteError(error_message(resp), status_code=resp.status_code)
        return resp.json() if resp.content else {}

    @staticmethod
    def _identity(data: dict[str, Any]) -> UserIdentity:
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        if not isinstance(user, dict) or not user.get("id"):
            raise RemoteError("Auth response did not contain a user")
        meta = user.get("user_metadata") or {}
        return UserIdentity(
            id=str(user["id"]),
            email=user.get("email"),
            name=meta.get("name") if isinstance(meta, dict) else None,
            access_token=data.get("access_token"),
        )

    async def sign_in(self, email: str, password: str = "") -> UserIdentity:
        if not email or not password:
            raise ValidationError("Email and password are required.")
        data = await self._post("/token?grant_type=password", {"email": email, "password": password})
        self.current = self._identity(data)
        logger.info("Signed in user=%s", self.current.id)
        return self.current

    async def sign_up(self, email: str, password: str = "", name: str = "") -> UserIdentity:
        if not email or not password:
            raise ValidationError("Email and password are required.")
        data = await self._post("/signup", {"email": email, "password": password, "data": {"name": name}})
        identity = self._identity(data)
        if identity.access_token:
            self.current = identity
        else:
            logger.info("Sign-up for %s needs email confirmation before sign-in", email)
        return identity

    async def sign_out(self) -> None:
        current = self.current
        self.current = None
        if current is None or not current.access_token:
            return
        try:
            await self._post("/logout", None, token=current.access_token)
        except (RemoteError, AuthorizationError):
            logger.info("Remote sign-out failed; local session dropped anyway", exc_info=True)
