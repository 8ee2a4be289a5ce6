"""
Tests for the in-memory and SQL credential stores.
"""

import asyncio

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import select

from connectors.credential_store import InMemoryCredentialStore, SqlCredentialStore
from connectors.encryption import TokenCipher
from database.models import ProviderCredential
from database.session import build_engine, build_session_factory, create_tables
from fakes import make_credential


async def _sql_store(tmp_path, key=None):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}")
    await create_tables(engine)
    factory = build_session_factory(engine)
    return engine, factory, SqlCredentialStore(factory, TokenCipher(key))


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await InMemoryCredentialStore().get("user-1", "fakefarm") is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_whole_record(self):
        store = InMemoryCredentialStore()
        await store.upsert(make_credential(access_token="old"))
        await store.upsert(make_credential(access_token="new", refresh_token=None))

        stored = await store.get("user-1", "fakefarm")
        assert stored.access_token == "new"
        assert stored.refresh_token is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self):
        store = InMemoryCredentialStore()
        await store.upsert(make_credential())
        await store.delete("user-1", "fakefarm")
        await store.delete("user-1", "fakefarm")
        assert await store.get("user-1", "fakefarm") is None

    @pytest.mark.asyncio
    async def test_keys_are_per_user_and_provider(self):
        store = InMemoryCredentialStore()
        await store.upsert(make_credential(user_id="user-1"))
        await store.upsert(make_credential(user_id="user-2", access_token="other"))
        await store.delete("user-1", "fakefarm")

        assert await store.get("user-1", "fakefarm") is None
        assert (await store.get("user-2", "fakefarm")).access_token == "other"


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        engine, _, store = await _sql_store(tmp_path)
        try:
            credential = make_credential()
            await store.upsert(credential)
            assert await store.get("user-1", "fakefarm") == credential
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_row(self, tmp_path):
        engine, factory, store = await _sql_store(tmp_path)
        try:
            await store.upsert(make_credential(access_token="old"))
            await store.upsert(make_credential(access_token="new", expires_in=60))

            async with factory() as session:
                rows = (await session.execute(select(ProviderCredential))).scalars().all()
            assert len(rows) == 1
            assert (await store.get("user-1", "fakefarm")).access_token == "new"
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_upserts_leave_one_record(self, tmp_path):
        engine, factory, store = await _sql_store(tmp_path)
        try:
            await asyncio.gather(
                *(store.upsert(make_credential(access_token=f"token-{i}")) for i in range(5))
            )
            async with factory() as session:
                rows = (await session.execute(select(ProviderCredential))).scalars().all()
            assert len(rows) == 1
            assert rows[0].access_token.startswith("token-")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        engine, _, store = await _sql_store(tmp_path)
        try:
            await store.upsert(make_credential())
            await store.delete("user-1", "fakefarm")
            await store.delete("user-1", "fakefarm")
            assert await store.get("user-1", "fakefarm") is None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, tmp_path):
        engine, factory, store = await _sql_store(tmp_path, key=Fernet.generate_key().decode())
        try:
            await store.upsert(make_credential(access_token="secret-access", refresh_token="secret-refresh"))

            async with factory() as session:
                row = (await session.execute(select(ProviderCredential))).scalar_one()
            assert row.access_token != "secret-access"
            assert row.refresh_token != "secret-refresh"

            stored = await store.get("user-1", "fakefarm")
            assert stored.access_token == "secret-access"
            assert stored.refresh_token == "secret-refresh"
        finally:
            await engine.dispose()


class TestTokenCipher:
    def test_disabled_is_pass_through(self):
        cipher = TokenCipher(None)
        assert not cipher.enabled
        assert cipher.encrypt("abc") == "abc"
        assert cipher.decrypt("abc") == "abc"

    def test_plaintext_rows_survive_enabling_encryption(self):
        cipher = TokenCipher(Fernet.generate_key().decode())
        assert cipher.decrypt("legacy-plaintext") == "legacy-plaintext"
        assert cipher.decrypt(cipher.encrypt("abc")) == "abc"
