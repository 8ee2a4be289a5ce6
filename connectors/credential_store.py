"""
Credential stores — persisted per-(user, provider) credential CRUD.

Pure persistence: no retries, no classification.  Writes replace the whole
record so readers never observe a half-updated token set; concurrent
upserts for the same key are last-write-wins.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timezone
from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from connectors.models import Credential
from database.models import ProviderCredential

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Protocol for credential storage."""

    async def get(self, user_id: str, provider_id: str) -> Optional[Credential]:
        """Return the stored credential, or ``None``."""
        ...

    async def upsert(self, credential: Credential) -> None:
        """Insert or atomically replace the credential for its key."""
        ...

    async def delete(self, user_id: str, provider_id: str) -> None:
        """Remove the credential (no-op if absent)."""
        ...


class InMemoryCredentialStore:
    """Process-local store, used in tests and single-process dev setups."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], Credential] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, provider_id: str) -> Optional[Credential]:
        return self._rows.get((user_id, provider_id))

    async def upsert(self, credential: Credential) -> None:
        async with self._lock:
            self._rows[(credential.user_id, credential.provider_id)] = credential

    async def delete(self, user_id: str, provider_id: str) -> None:
        async with self._lock:
            self._rows.pop((user_id, provider_id), None)


class SqlCredentialStore:
    """Async SQLAlchemy store; tokens are encrypted with ``TokenCipher``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: Optional[TokenCipher] = None,
    ):
        self._session_factory = session_factory
        self._cipher = cipher or TokenCipher(None)

    async def get(self, user_id: str, provider_id: str) -> Optional[Credential]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProviderCredential).where(
                    ProviderCredential.user_id == user_id,
                    ProviderCredential.provider == provider_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return self._to_credential(row)

    async def upsert(self, credential: Credential) -> None:
        try:
            await self._write(credential)
        except IntegrityError:
            # A concurrent insert for the same key won; replace it.
            logger.debug(
                "Concurrent insert for %s/%s — retrying as update",
                credential.provider_id, credential.user_id,
            )
            await self._write(credential)

    async def delete(self, user_id: str, provider_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(ProviderCredential).where(
                        ProviderCredential.user_id == user_id,
                        ProviderCredential.provider == provider_id,
                    )
                )
        logger.info("Deleted %s credential for user %s", provider_id, user_id)

    # ── internals ───────────────────────────────────────────────────────

    async def _write(self, credential: Credential) -> None:
        encrypt = self._cipher.encrypt
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ProviderCredential).where(
                        ProviderCredential.user_id == credential.user_id,
                        ProviderCredential.provider == credential.provider_id,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = ProviderCredential(
                        user_id=credential.user_id,
                        provider=credential.provider_id,
                    )
                    session.add(row)
                row.access_token = encrypt(credential.access_token)
                row.refresh_token = encrypt(credential.refresh_token) if credential.refresh_token else None
                row.scopes = sorted(credential.scopes)
                row.expires_at = credential.expires_at
                row.updated_at = credential.updated_at

    def _to_credential(self, row: ProviderCredential) -> Credential:
        decrypt = self._cipher.decrypt
        return Credential(
            user_id=row.user_id,
            provider_id=row.provider,
            access_token=decrypt(row.access_token),
            refresh_token=decrypt(row.refresh_token) if row.refresh_token else None,
            scopes=frozenset(row.scopes or []),
            expires_at=_aware(row.expires_at),
            updated_at=_aware(row.updated_at),
        )


def _aware(value):
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
