"""Liveness endpoint reporting database and mirror storage status."""

from __future__ import annotations

import logging
import os
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from docmirror.api.deps import get_session, get_settings
from docmirror.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    mirrors: str
    git_manager: str


def _mirror_storage_status(settings: Settings) -> str:
    base = settings.clone_base_path
    if not base.is_dir():
        return "missing"
    return "ok" if os.access(base, os.W_OK) else "read-only"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """Report whether the database answers and mirrors can be written."""
    try:
        await session.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        database = "error"

    mirrors = _mirror_storage_status(settings)
    healthy = database == "ok" and mirrors == "ok"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version="0.1.0",
        database=database,
        mirrors=mirrors,
        git_manager=settings.git_manager,
    )
