"""Confine file access to a mirror root.

Two gates are applied before any read:

1. ``resolve_within`` rejects traversal sequences, absolute paths and
   symlinks that escape the root.
2. ``ensure_tracked`` requires the path to appear in a listing freshly
   derived from the repository itself, so files that merely sit inside the
   mirror directory are never served.
"""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import TYPE_CHECKING

from docmirror.exceptions import PathTraversalError, UntrackedFileError

if TYPE_CHECKING:
    from collections.abc import Iterable

_FORBIDDEN_SEQUENCES = ("..", "~", "\x00")


def normalize_repo_path(user_path: str) -> str:
    """Return ``user_path`` with forward slashes and ``.`` segments collapsed."""
    return posixpath.normpath(user_path.replace("\\", "/"))


def resolve_within(root: Path, user_path: str) -> Path:
    """Resolve ``user_path`` against ``root`` or raise PathTraversalError.

    The returned path is ``root / normalized`` (not symlink-resolved), so
    callers read exactly the entry the repository tracks.
    """
    if not user_path or not user_path.strip():
        raise PathTraversalError(user_path, "path is empty")
    for sequence in _FORBIDDEN_SEQUENCES:
        if sequence in user_path:
            raise PathTraversalError(user_path, f"contains forbidden sequence {sequence!r}")

    normalized = normalize_repo_path(user_path)
    if posixpath.isabs(normalized) or Path(normalized).is_absolute():
        raise PathTraversalError(user_path, "absolute paths are not allowed")

    candidate = root / normalized
    relative = os.path.relpath(candidate, root)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep) or os.path.isabs(relative):
        raise PathTraversalError(user_path)

    # Follow symlinks: a tracked link pointing outside the mirror is an escape.
    if not candidate.resolve().is_relative_to(root.resolve()):
        raise PathTraversalError(user_path, "resolves outside the repository root")

    return candidate


def ensure_tracked(user_path: str, tracked_files: Iterable[str]) -> str:
    """Return the normalized path if it is in ``tracked_files``, else raise."""
    normalized = normalize_repo_path(user_path)
    if normalized not in set(tracked_files):
        raise UntrackedFileError(user_path)
    return normalized
