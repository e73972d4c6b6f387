"""Repository use cases: registration, file listing, selection and export."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections import defaultdict
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from docmirror.exceptions import (
    InvalidRepositoryURLError,
    RepositoryAlreadyExistsError,
    RepositoryNotFoundError,
    SyncTimeoutError,
    UnsupportedURLSchemeError,
)
from docmirror.git.base import FileNode, Repository
from docmirror.services.markdown_service import aggregate_markdown

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from docmirror.git.base import GitManager
    from docmirror.services.repository_store import RepositoryStore

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")

_SEGMENT = r"[A-Za-z0-9_.-]+"


def validate_repository_url(
    repo_url: str, allowed_hosts: Sequence[str] = DEFAULT_ALLOWED_HOSTS
) -> None:
    """Validate that a repository URL is https and on an allowed host."""
    parsed = urlparse(repo_url)
    if not parsed.scheme or not parsed.netloc:
        msg = f"invalid repository URL format: {repo_url!r}"
        raise InvalidRepositoryURLError(msg)
    if parsed.scheme != "https":
        msg = "unsupported repository URL scheme: only https is supported"
        raise UnsupportedURLSchemeError(msg)

    hosts = "|".join(re.escape(host) for host in allowed_hosts)
    pattern = rf"^https://(?:{hosts})/{_SEGMENT}/{_SEGMENT}$"
    if not re.fullmatch(pattern, repo_url):
        msg = f"invalid repository URL format: {repo_url!r}"
        raise InvalidRepositoryURLError(msg)


def repository_name_from_url(repo_url: str) -> str:
    """Derive a display name from the last path segment, without ``.git``."""
    name = urlparse(repo_url).path.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git")
    return name if name and name != "." else "unknown"


class RepositoryService:
    """Coordinates the repository store and the git manager.

    Synchronizing a mirror and the reads that follow are serialized per
    repository id, so concurrent requests never observe a half-refreshed
    mirror.
    """

    def __init__(
        self,
        store: RepositoryStore,
        git_manager: GitManager,
        allowed_hosts: Sequence[str] = DEFAULT_ALLOWED_HOSTS,
        sync_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.git_manager = git_manager
        self.allowed_hosts = tuple(allowed_hosts)
        self.sync_timeout = sync_timeout
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, repo_id: str) -> asyncio.Lock:
        """Return the lock serializing work on one repository's mirror."""
        return self._locks[repo_id]

    async def _require(self, repo_id: str) -> Repository:
        repo = await self.store.find_by_id(repo_id)
        if repo is None:
            raise RepositoryNotFoundError(repo_id)
        return repo

    async def _ensure_cloned(self, repo: Repository) -> Path:
        """Sync the mirror within the configured time budget. Caller holds the lock.

        Strategies may run blocking work in worker threads that cannot be
        interrupted, so on timeout or cancellation the sync task is awaited
        to completion before the caller's lock is released.
        """
        sync = asyncio.ensure_future(self.git_manager.ensure_cloned(repo))
        try:
            async with asyncio.timeout(self.sync_timeout):
                return await asyncio.shield(sync)
        except TimeoutError as exc:
            logger.warning(
                "Sync of %s exceeded %ss, waiting for in-flight work", repo.url, self.sync_timeout
            )
            await self._drain(sync, repo)
            msg = f"synchronizing {repo.url} exceeded {self.sync_timeout}s"
            raise SyncTimeoutError(msg) from exc
        except asyncio.CancelledError:
            await self._drain(sync, repo)
            raise

    @staticmethod
    async def _drain(sync: asyncio.Future[Path], repo: Repository) -> None:
        await asyncio.wait({sync})
        if not sync.cancelled() and sync.exception() is not None:
            logger.warning("Abandoned sync of %s failed: %s", repo.url, sync.exception())

    async def register(self, repo_url: str, access_token: str = "") -> Repository:
        """Validate and persist a new repository."""
        validate_repository_url(repo_url, self.allowed_hosts)
        if await self.store.find_by_url(repo_url) is not None:
            raise RepositoryAlreadyExistsError(repo_url)

        repo = Repository(
            id=str(uuid.uuid4()),
            name=repository_name_from_url(repo_url),
            url=repo_url,
            access_token=access_token,
        )
        await self.store.save(repo)
        logger.info("Registered repository %s as %s", repo_url, repo.id)
        return repo

    async def get_repository(self, repo_id: str) -> Repository:
        return await self._require(repo_id)

    async def list_repositories(self) -> list[Repository]:
        return await self.store.find_all()

    async def list_files(self, repo_id: str) -> list[FileNode]:
        """Sync the mirror and list its tracked files."""
        repo = await self._require(repo_id)
        async with self.lock_for(repo_id):
            local_path = await self._ensure_cloned(repo)
            files = await self.git_manager.list_repository_files(local_path, repo)
        return [FileNode(path=path, type="file") for path in files]

    async def select_files(self, repo_id: str, file_paths: Sequence[str]) -> None:
        """Validate and persist the ordered selection of managed files."""
        repo = await self._require(repo_id)
        async with self.lock_for(repo_id):
            local_path = await self._ensure_cloned(repo)
            await self.git_manager.validate_files_exist(local_path, file_paths, repo)
        await self.store.save_managed_files(repo_id, file_paths)

    async def get_selected_markdown(self, repo_id: str) -> bytes:
        """Return the selected Markdown files joined by horizontal rules.

        File bytes are passed through unchanged, whatever their encoding.
        """
        repo = await self._require(repo_id)
        selected = await self.store.get_managed_files(repo_id)
        if not selected:
            return b""

        async with self.lock_for(repo_id):
            local_path = await self._ensure_cloned(repo)
            return await aggregate_markdown(self.git_manager, local_path, repo, selected)

    async def update_access_token(self, repo_id: str, access_token: str) -> None:
        await self._require(repo_id)
        await self.store.update_access_token(repo_id, access_token)
        logger.info("Rotated access token for repository %s", repo_id)
