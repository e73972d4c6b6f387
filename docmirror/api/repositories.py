"""Repository endpoints: registration, file listing, selection and export."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response

from docmirror.api.deps import get_repository_service
from docmirror.schemas.repository import (
    AccessTokenUpdate,
    FileNodeResponse,
    RepositoryCreate,
    RepositoryResponse,
    SelectFilesRequest,
)
from docmirror.services.repository_service import RepositoryService

router = APIRouter(prefix="/api/repositories", tags=["repositories"])

Service = Annotated[RepositoryService, Depends(get_repository_service)]


@router.post("", response_model=RepositoryResponse, status_code=status.HTTP_201_CREATED)
async def register_repository(body: RepositoryCreate, service: Service) -> RepositoryResponse:
    """Register a remote repository."""
    repo = await service.register(body.url, body.access_token)
    return RepositoryResponse.from_repository(repo)


@router.get("", response_model=list[RepositoryResponse])
async def list_repositories(service: Service) -> list[RepositoryResponse]:
    repos = await service.list_repositories()
    return [RepositoryResponse.from_repository(repo) for repo in repos]


@router.get("/{repo_id}", response_model=RepositoryResponse)
async def get_repository(repo_id: str, service: Service) -> RepositoryResponse:
    repo = await service.get_repository(repo_id)
    return RepositoryResponse.from_repository(repo)


@router.get("/{repo_id}/files", response_model=list[FileNodeResponse])
async def list_files(repo_id: str, service: Service) -> list[FileNodeResponse]:
    """Sync the mirror and list its tracked files."""
    nodes = await service.list_files(repo_id)
    return [FileNodeResponse.from_file_node(node) for node in nodes]


@router.put("/{repo_id}/files", status_code=status.HTTP_204_NO_CONTENT)
async def select_files(repo_id: str, body: SelectFilesRequest, service: Service) -> Response:
    """Replace the set of managed files for a repository."""
    await service.select_files(repo_id, body.file_paths)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{repo_id}/markdown")
async def get_selected_markdown(repo_id: str, service: Service) -> Response:
    """Return the selected Markdown files concatenated in selection order."""
    content = await service.get_selected_markdown(repo_id)
    return Response(content=content, media_type="text/markdown")


@router.put("/{repo_id}/access-token", status_code=status.HTTP_204_NO_CONTENT)
async def update_access_token(
    repo_id: str, body: AccessTokenUpdate, service: Service
) -> Response:
    await service.update_access_token(repo_id, body.access_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
