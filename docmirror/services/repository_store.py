"""Persistence of repositories and managed-file selections.

Access tokens are encrypted with the TokenEncryptor before they are written
and decrypted when rows are loaded; plaintext tokens never reach the
database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import delete, select, update

from docmirror.exceptions import RepositoryNotFoundError
from docmirror.git.base import Repository
from docmirror.models.repository import ManagedFile, RepositoryRecord
from docmirror.services.crypto_service import rotate_ciphertext
from docmirror.services.datetime_service import from_storage, now_utc, to_storage

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from docmirror.services.crypto_service import TokenEncryptor

logger = logging.getLogger(__name__)


class RepositoryStore(Protocol):
    """Storage operations needed by the repository use cases."""

    async def save(self, repo: Repository) -> None: ...

    async def find_by_id(self, repo_id: str) -> Repository | None: ...

    async def find_by_url(self, url: str) -> Repository | None: ...

    async def find_all(self) -> list[Repository]: ...

    async def save_managed_files(self, repo_id: str, file_paths: Sequence[str]) -> None: ...

    async def get_managed_files(self, repo_id: str) -> list[str]: ...

    async def update_access_token(self, repo_id: str, access_token: str) -> None: ...


class SqlRepositoryStore:
    """SQLAlchemy-backed RepositoryStore."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: TokenEncryptor,
    ) -> None:
        self._session_factory = session_factory
        self._encryptor = encryptor

    def _to_repository(self, record: RepositoryRecord) -> Repository:
        return Repository(
            id=record.id,
            name=record.name,
            url=record.url,
            access_token=self._encryptor.decrypt(record.access_token),
            created_at=from_storage(record.created_at),
            updated_at=from_storage(record.updated_at),
        )

    async def save(self, repo: Repository) -> None:
        """Insert or update a repository."""
        async with self._session_factory() as session:
            record = await session.get(RepositoryRecord, repo.id)
            if record is None:
                record = RepositoryRecord(id=repo.id, url=repo.url)
                session.add(record)
            record.name = repo.name
            record.access_token = self._encryptor.encrypt(repo.access_token)
            record.created_at = to_storage(repo.created_at)
            record.updated_at = to_storage(repo.updated_at)
            await session.commit()

    async def find_by_id(self, repo_id: str) -> Repository | None:
        async with self._session_factory() as session:
            record = await session.get(RepositoryRecord, repo_id)
            return None if record is None else self._to_repository(record)

    async def find_by_url(self, url: str) -> Repository | None:
        async with self._session_factory() as session:
            stmt = select(RepositoryRecord).where(RepositoryRecord.url == url)
            record = (await session.execute(stmt)).scalar_one_or_none()
            return None if record is None else self._to_repository(record)

    async def find_all(self) -> list[Repository]:
        async with self._session_factory() as session:
            stmt = select(RepositoryRecord).order_by(RepositoryRecord.created_at)
            records = (await session.execute(stmt)).scalars().all()
            return [self._to_repository(record) for record in records]

    async def save_managed_files(self, repo_id: str, file_paths: Sequence[str]) -> None:
        """Replace the selection for a repository, keeping the given order."""
        unique_paths = list(dict.fromkeys(file_paths))
        async with self._session_factory() as session:
            if await session.get(RepositoryRecord, repo_id) is None:
                raise RepositoryNotFoundError(repo_id)
            await session.execute(delete(ManagedFile).where(ManagedFile.repository_id == repo_id))
            session.add_all(
                ManagedFile(repository_id=repo_id, file_path=path, position=position)
                for position, path in enumerate(unique_paths)
            )
            await session.commit()

    async def get_managed_files(self, repo_id: str) -> list[str]:
        async with self._session_factory() as session:
            stmt = (
                select(ManagedFile.file_path)
                .where(ManagedFile.repository_id == repo_id)
                .order_by(ManagedFile.position)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def update_access_token(self, repo_id: str, access_token: str) -> None:
        async with self._session_factory() as session:
            stmt = (
                update(RepositoryRecord)
                .where(RepositoryRecord.id == repo_id)
                .values(
                    access_token=self._encryptor.encrypt(access_token),
                    updated_at=to_storage(now_utc()),
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise RepositoryNotFoundError(repo_id)
            await session.commit()

    async def reencrypt_tokens(self, new_encryptor: TokenEncryptor) -> int:
        """Re-encrypt every stored token under ``new_encryptor``.

        Runs in one transaction; on any decryption failure nothing is
        changed. Returns the number of rows rewritten.
        """
        rewritten = 0
        async with self._session_factory() as session:
            records = (await session.execute(select(RepositoryRecord))).scalars().all()
            for record in records:
                if not record.access_token:
                    continue
                record.access_token = rotate_ciphertext(
                    record.access_token, self._encryptor, new_encryptor
                )
                rewritten += 1
            await session.commit()
        self._encryptor = new_encryptor
        logger.info("Re-encrypted %d repository access tokens", rewritten)
        return rewritten
