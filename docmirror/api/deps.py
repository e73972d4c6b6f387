"""Shared API dependencies: DB session, repository service."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from docmirror.config import Settings
from docmirror.services.repository_service import RepositoryService


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_repository_service(request: Request) -> RepositoryService:
    """Get the repository service from app state."""
    service: RepositoryService = request.app.state.repository_service
    return service


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session
