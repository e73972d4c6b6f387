"""Base protocol and data classes for repository mirroring."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

from docmirror.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from pathlib import Path


@dataclass(frozen=True)
class Repository:
    """A registered remote repository.

    ``access_token`` is plaintext here; it is only encrypted by the store.
    The URL never changes after registration; rotate the token with
    :meth:`with_access_token`.
    """

    id: str
    name: str
    url: str
    access_token: str = field(default="", repr=False)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def with_access_token(self, access_token: str) -> Repository:
        """Return a copy with a new access token and a bumped update time."""
        return replace(self, access_token=access_token, updated_at=now_utc())


@dataclass(frozen=True)
class FileNode:
    """A file or directory in a mirror, relative to its root."""

    path: str
    type: Literal["file", "dir"] = "file"


@runtime_checkable
class GitManager(Protocol):
    """Strategy for keeping a local mirror of a remote repository.

    Both implementations enforce the same read policy: every path goes
    through the path validator and must appear in a fresh listing of the
    repository's tracked files.
    """

    async def ensure_cloned(self, repo: Repository) -> Path:
        """Clone or refresh the mirror and return its local path."""
        ...

    async def list_repository_files(self, local_path: Path, repo: Repository) -> list[str]:
        """List tracked files, forward-slash separated and relative to the mirror root."""
        ...

    async def validate_files_exist(
        self, local_path: Path, file_paths: Sequence[str], repo: Repository
    ) -> None:
        """Raise if any of ``file_paths`` is not a tracked file."""
        ...

    async def read_managed_file_content(
        self, local_path: Path, file_path: str, repo: Repository
    ) -> bytes:
        """Read a tracked file from the mirror."""
        ...
