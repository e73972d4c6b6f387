"""Repository request/response schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from docmirror.services.datetime_service import to_iso

if TYPE_CHECKING:
    from docmirror.git.base import FileNode, Repository


class RepositoryCreate(BaseModel):
    """Request to register a remote repository."""

    url: str = Field(min_length=1, description="HTTPS URL, e.g. 'https://github.com/acme/docs'")
    access_token: str = Field(
        default="", description="Optional access token for private repositories"
    )


class RepositoryResponse(BaseModel):
    """A registered repository. The access token itself is never returned."""

    id: str
    name: str
    url: str
    has_access_token: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_repository(cls, repo: Repository) -> RepositoryResponse:
        return cls(
            id=repo.id,
            name=repo.name,
            url=repo.url,
            has_access_token=bool(repo.access_token),
            created_at=to_iso(repo.created_at),
            updated_at=to_iso(repo.updated_at),
        )


class FileNodeResponse(BaseModel):
    """A file in a repository mirror."""

    path: str
    type: Literal["file", "dir"]

    @classmethod
    def from_file_node(cls, node: FileNode) -> FileNodeResponse:
        return cls(path=node.path, type=node.type)


class SelectFilesRequest(BaseModel):
    """Ordered list of file paths to manage."""

    file_paths: list[str] = Field(description="Paths relative to the repository root")


class AccessTokenUpdate(BaseModel):
    """Request to rotate a repository's access token."""

    access_token: str = Field(description="New access token; empty to remove it")
