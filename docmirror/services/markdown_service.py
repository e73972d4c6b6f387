"""Concatenate selected Markdown files from a mirror."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from docmirror.exceptions import AggregationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from docmirror.git.base import GitManager, Repository

MARKDOWN_EXTENSIONS = frozenset({".md", ".markdown"})

# Markdown horizontal rule between successive files
SEPARATOR = b"\n\n---\n\n"


def is_markdown_path(path: str) -> bool:
    """Return True for ``.md`` / ``.markdown`` paths, case-insensitively."""
    return PurePosixPath(path).suffix.lower() in MARKDOWN_EXTENSIONS


def join_markdown(chunks: Iterable[bytes]) -> bytes:
    """Join file contents with a horizontal rule between them."""
    return SEPARATOR.join(chunks)


async def aggregate_markdown(
    git_manager: GitManager,
    local_path: Path,
    repo: Repository,
    file_paths: Sequence[str],
) -> bytes:
    """Read the Markdown files among ``file_paths`` in order and join them.

    Non-Markdown paths are skipped. A failure on any file aborts the whole
    aggregation with an AggregationError naming that file.
    """
    chunks: list[bytes] = []
    for path in file_paths:
        if not is_markdown_path(path):
            continue
        try:
            chunks.append(await git_manager.read_managed_file_content(local_path, path, repo))
        except Exception as exc:
            raise AggregationError(path, exc) from exc
    return join_markdown(chunks)
