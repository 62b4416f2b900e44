"""Auth provider contract and a session-token implementation backed by the record store."""

import inspect
import secrets
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

import structlog

from chemsnap.errors import DataStoreError, IdentityUnavailable, RecordNotFound
from chemsnap.models.user_profile import AuthUser

logger = structlog.get_logger()

SESSIONS = "sessions"

IdentityCallback = Callable[[AuthUser | None], Awaitable[None] | None]


class AuthProvider(Protocol):
    async def get_current_identity(self) -> AuthUser | None: ...

    async def sign_out(self) -> None: ...

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]: ...


class StoreAuthProvider:
    """Resolves a bearer token against the ``sessions`` collection.

    Args:
        store: Record store holding session records.
        token: Session token presented by the client, if any.
    """

    def __init__(self, store, token: str | None = None):
        self.store = store
        self.token = token
        self._callbacks: list[IdentityCallback] = []

    async def get_current_identity(self) -> AuthUser | None:
        """Return the signed-in user, None without a session.

        Raises:
            IdentityUnavailable: The session lookup itself failed.
        """
        if not self.token:
            return None
        try:
            session = await self.store.get_record(SESSIONS, self.token)
        except RecordNotFound:
            return None
        except DataStoreError as exc:
            logger.error("session_lookup_failed", error=str(exc))
            raise IdentityUnavailable(
                "Failed to check session. Please try logging in again."
            ) from exc
        return AuthUser(id=session["user_id"], email=session.get("email"))

    async def sign_in(self, user_id: str, email: str | None = None) -> str:
        """Open a session for ``user_id`` and return its token."""
        token = secrets.token_urlsafe(32)
        await self.store.insert_record(SESSIONS, {
            "id": token,
            "user_id": user_id,
            "email": email,
            "created_at": datetime.now(),
        })
        self.token = token
        logger.info("signed_in", user_id=user_id)
        await self._notify(AuthUser(id=user_id, email=email))
        return token

    async def sign_out(self) -> None:
        if self.token:
            try:
                await self.store.delete_record(SESSIONS, self.token)
            except RecordNotFound:
                pass
            logger.info("signed_out")
        self.token = None
        await self._notify(None)

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """Subscribe to sign-in/sign-out. Returns the unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _notify(self, user: AuthUser | None) -> None:
        for callback in list(self._callbacks):
            result = callback(user)
            if inspect.isawaitable(result):
                await result
