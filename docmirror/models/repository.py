"""Repository and managed-file selection models."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docmirror.models.base import Base


class RepositoryRecord(Base):
    """Registered remote repository. ``access_token`` holds ciphertext."""

    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    managed_files: Mapped[list[ManagedFile]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
        order_by="ManagedFile.position",
    )


class ManagedFile(Base):
    """A file selected for export, in selection order."""

    __tablename__ = "managed_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[str] = mapped_column(
        String, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    repository: Mapped[RepositoryRecord] = relationship(back_populates="managed_files")

    __table_args__ = (UniqueConstraint("repository_id", "file_path"),)
