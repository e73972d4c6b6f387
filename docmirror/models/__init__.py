"""SQLAlchemy ORM models for docmirror."""

from docmirror.models.base import Base
from docmirror.models.repository import ManagedFile, RepositoryRecord

__all__ = [
    "Base",
    "ManagedFile",
    "RepositoryRecord",
]
