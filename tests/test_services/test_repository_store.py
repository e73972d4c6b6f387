"""Tests for repository persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select, update

from docmirror.exceptions import DecryptionError, RepositoryNotFoundError
from docmirror.git.base import Repository
from docmirror.models.repository import RepositoryRecord
from docmirror.services.crypto_service import TokenEncryptor
from docmirror.services.repository_store import SqlRepositoryStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

CREATED = datetime(2026, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc)


def _repo(
    repo_id: str = "r1", url: str = "https://github.com/acme/docs", token: str = ""
) -> Repository:
    return Repository(
        id=repo_id,
        name=url.rsplit("/", 1)[-1],
        url=url,
        access_token=token,
        created_at=CREATED,
        updated_at=CREATED,
    )


async def _raw_token(session_factory: async_sessionmaker[AsyncSession], repo_id: str) -> str:
    async with session_factory() as session:
        stmt = select(RepositoryRecord.access_token).where(RepositoryRecord.id == repo_id)
        return (await session.execute(stmt)).scalar_one()


class TestRepositories:
    async def test_save_and_find(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo(token="ghp_secret"))

        found = await store.find_by_id("r1")
        assert found == _repo(token="ghp_secret")
        assert await store.find_by_url("https://github.com/acme/docs") == found
        assert await store.find_by_id("missing") is None
        assert await store.find_by_url("https://github.com/acme/other") is None

    async def test_tokens_are_encrypted_at_rest(
        self,
        store: SqlRepositoryStore,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: TokenEncryptor,
    ) -> None:
        await store.save(_repo(token="ghp_secret"))

        raw = await _raw_token(session_factory, "r1")
        assert raw
        assert "ghp_secret" not in raw
        assert encryptor.decrypt(raw) == "ghp_secret"

    async def test_empty_token_stored_as_empty(
        self, store: SqlRepositoryStore, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await store.save(_repo())
        assert await _raw_token(session_factory, "r1") == ""

    async def test_find_all_in_creation_order(self, store: SqlRepositoryStore) -> None:
        later = Repository(
            id="r2",
            name="later",
            url="https://github.com/acme/later",
            created_at=datetime(2027, 1, 1, tzinfo=timezone.utc),
            updated_at=datetime(2027, 1, 1, tzinfo=timezone.utc),
        )
        await store.save(later)
        await store.save(_repo())

        assert [repo.id for repo in await store.find_all()] == ["r1", "r2"]

    async def test_save_updates_existing_row(self, store: SqlRepositoryStore) -> None:
        repo = _repo()
        await store.save(repo)
        await store.save(repo.with_access_token("new-token"))

        found = await store.find_by_id("r1")
        assert found is not None
        assert found.access_token == "new-token"
        assert found.updated_at > CREATED
        assert len(await store.find_all()) == 1

    async def test_update_access_token(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo(token="old"))
        await store.update_access_token("r1", "new")

        found = await store.find_by_id("r1")
        assert found is not None
        assert found.access_token == "new"
        assert found.updated_at > CREATED

    async def test_update_access_token_missing_repository(self, store: SqlRepositoryStore) -> None:
        with pytest.raises(RepositoryNotFoundError):
            await store.update_access_token("missing", "t")

    async def test_corrupted_token_fails_closed(
        self, store: SqlRepositoryStore, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await store.save(_repo(token="ghp_secret"))
        async with session_factory() as session:
            await session.execute(
                update(RepositoryRecord)
                .where(RepositoryRecord.id == "r1")
                .values(access_token="AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA")
            )
            await session.commit()

        with pytest.raises(DecryptionError):
            await store.find_by_id("r1")


class TestManagedFiles:
    async def test_selection_keeps_order(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo())
        await store.save_managed_files("r1", ["z.md", "a.md", "m/b.md"])
        assert await store.get_managed_files("r1") == ["z.md", "a.md", "m/b.md"]

    async def test_selection_is_replaced(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo())
        await store.save_managed_files("r1", ["a.md", "b.md"])
        await store.save_managed_files("r1", ["c.md"])
        assert await store.get_managed_files("r1") == ["c.md"]

    async def test_duplicates_collapse_to_first_position(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo())
        await store.save_managed_files("r1", ["a.md", "b.md", "a.md"])
        assert await store.get_managed_files("r1") == ["a.md", "b.md"]

    async def test_empty_selection(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo())
        await store.save_managed_files("r1", ["a.md"])
        await store.save_managed_files("r1", [])
        assert await store.get_managed_files("r1") == []

    async def test_selection_for_missing_repository(self, store: SqlRepositoryStore) -> None:
        with pytest.raises(RepositoryNotFoundError):
            await store.save_managed_files("missing", ["a.md"])

    async def test_selections_are_per_repository(self, store: SqlRepositoryStore) -> None:
        await store.save(_repo())
        await store.save(_repo("r2", "https://github.com/acme/other"))
        await store.save_managed_files("r1", ["a.md"])
        await store.save_managed_files("r2", ["a.md", "b.md"])
        assert await store.get_managed_files("r1") == ["a.md"]


class TestReencryptTokens:
    async def test_rotates_every_stored_token(
        self,
        store: SqlRepositoryStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await store.save(_repo(token="one"))
        await store.save(_repo("r2", "https://github.com/acme/two", token="two"))
        await store.save(_repo("r3", "https://github.com/acme/none"))
        new_encryptor = TokenEncryptor(bytes(range(100, 132)))

        assert await store.reencrypt_tokens(new_encryptor) == 2

        assert new_encryptor.decrypt(await _raw_token(session_factory, "r1")) == "one"
        found = await store.find_by_id("r2")
        assert found is not None
        assert found.access_token == "two"
        assert await _raw_token(session_factory, "r3") == ""

    async def test_old_store_cannot_read_rotated_rows(
        self,
        store: SqlRepositoryStore,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: TokenEncryptor,
    ) -> None:
        await store.save(_repo(token="one"))
        await store.reencrypt_tokens(TokenEncryptor(bytes(range(100, 132))))

        stale = SqlRepositoryStore(session_factory, encryptor)
        with pytest.raises(DecryptionError):
            await stale.find_by_id("r1")
