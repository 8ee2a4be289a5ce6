"""
Token refresher — the single way to get a usable access token.

``ensure_valid`` returns the cached token while it is comfortably inside its
lifetime and otherwise performs a *single-flight* refresh: concurrent callers
for the same (user, provider) await one shared task, so N callers cost one
network round-trip and all observe the same token — or the same error.

A failed refresh deletes the credential (the integration is then
disconnected) and raises ``AuthExpiredError``.  Refreshes are never retried
automatically.

Every write of a credential goes through ``locked(user_id, provider_id)``.
A refresh only commits its outcome when the stored record is still the one
it started from; a connect or disconnect that landed during the network
call wins.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from connectors.errors import AuthExpiredError
from connectors.models import Credential, utcnow

if TYPE_CHECKING:
    from connectors.credential_store import CredentialStore
    from connectors.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
_Key = Tuple[str, str]


class TokenRefresher:
    def __init__(
        self,
        store: "CredentialStore",
        registry: "ConnectorRegistry",
        *,
        skew_seconds: int = 300,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._registry = registry
        self._skew = timedelta(seconds=skew_seconds)
        self._clock = clock or utcnow
        self._inflight: Dict[_Key, "asyncio.Task[str]"] = {}
        self._locks: Dict[_Key, asyncio.Lock] = {}

    def is_fresh(self, credential: Credential) -> bool:
        return self._clock() + self._skew < credential.expires_at

    def locked(self, user_id: str, provider_id: str) -> asyncio.Lock:
        """Per-(user, provider) lock serialising credential writes."""
        key = (user_id, provider_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def ensure_valid(self, user_id: str, provider_id: str) -> str:
        """
        Return a valid access token for the user + provider.

        Raises ``AuthExpiredError`` when there is no credential or it can
        no longer be refreshed.
        """
        credential = await self._store.get(user_id, provider_id)
        if credential is None:
            raise AuthExpiredError(user_id, provider_id, "not connected")
        if self.is_fresh(credential):
            return credential.access_token

        key = (user_id, provider_id)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._refresh(user_id, provider_id))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("Joining in-flight %s refresh for user %s", provider_id, user_id)

        # A cancelled waiter must not cancel the refresh other callers share.
        return await asyncio.shield(task)

    def _forget(self, key: _Key, task: "asyncio.Task[str]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled.
            task.exception()

    async def _refresh(self, user_id: str, provider_id: str) -> str:
        # Re-read: a refresh that finished while this caller was loading the
        # credential has already rotated the token.
        credential = await self._store.get(user_id, provider_id)
        if credential is None:
            raise AuthExpiredError(user_id, provider_id, "not connected")
        if self.is_fresh(credential):
            return credential.access_token

        if not credential.can_refresh:
            async with self.locked(user_id, provider_id):
                current = await self._store.get(user_id, provider_id)
                if current != credential:
                    return self._superseded_by(current, user_id, provider_id)
                await self._store.delete(user_id, provider_id)
            logger.warning(
                "%s token for user %s expired with no refresh token — credential removed",
                provider_id, user_id,
            )
            raise AuthExpiredError(user_id, provider_id, "token expired and no refresh token available")

        connector = self._registry.require(provider_id)
        try:
            grant = await connector.refresh_access_token(credential.refresh_token)
        except Exception as exc:
            logger.warning("Token refresh failed for %s/%s: %s", provider_id, user_id, exc)
            async with self.locked(user_id, provider_id):
                current = await self._store.get(user_id, provider_id)
                if current != credential:
                    return self._superseded_by(current, user_id, provider_id)
                await self._store.delete(user_id, provider_id)
            raise AuthExpiredError(user_id, provider_id, f"refresh failed: {exc}") from exc

        now = self._clock()
        refreshed = credential.model_copy(
            update={
                "access_token": grant.access_token,
                # Some providers rotate refresh tokens, others keep the old one.
                "refresh_token": grant.refresh_token or credential.refresh_token,
                "scopes": grant.scopes or credential.scopes,
                "expires_at": now + timedelta(seconds=grant.expires_in),
                "updated_at": now,
            }
        )
        async with self.locked(user_id, provider_id):
            current = await self._store.get(user_id, provider_id)
            if current != credential:
                return self._superseded_by(current, user_id, provider_id)
            await self._store.upsert(refreshed)
        logger.info("Refreshed %s token for user %s", provider_id, user_id)
        return refreshed.access_token

    def _superseded_by(self, current: Optional[Credential], user_id: str, provider_id: str) -> str:
        """Outcome when a connect or disconnect replaced the credential mid-refresh."""
        if current is None:
            logger.info("%s/%s disconnected during token refresh — result discarded", provider_id, user_id)
            raise AuthExpiredError(user_id, provider_id, "disconnected during refresh")
        if self.is_fresh(current):
            logger.info("%s/%s reconnected during token refresh — using the new credential", provider_id, user_id)
            return current.access_token
        raise AuthExpiredError(user_id, provider_id, "credential replaced during refresh")
