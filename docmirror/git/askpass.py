"""Hand an access token to git without exposing it on the command line.

Git asks the program named by ``GIT_ASKPASS`` for credentials.  A one-off
script is written to a private temporary directory for the duration of a
single git invocation and removed afterwards.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

ASKPASS_USERNAME = "x-access-token"

_SCRIPT_TEMPLATE = """#!/bin/sh
case "$1" in
    Username*) printf '%s\\n' {username} ;;
    *) printf '%s\\n' {token} ;;
esac
"""


def render_askpass_script(token: str) -> str:
    """Return the askpass script body answering username and password prompts."""
    return _SCRIPT_TEMPLATE.format(
        username=shlex.quote(ASKPASS_USERNAME),
        token=shlex.quote(token),
    )


def _write_script(directory: Path, token: str) -> Path:
    script_path = directory / "askpass"
    fd = os.open(script_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o700)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(render_askpass_script(token))
    # umask may have stripped the execute bit
    os.chmod(script_path, 0o700)
    return script_path


@contextmanager
def askpass_relay(token: str) -> Iterator[Path | None]:
    """Yield the path of a temporary askpass helper for ``token``.

    Yields None when there is no token, or when the helper cannot be
    created; git then runs unauthenticated, which is enough for public
    repositories.
    """
    if not token:
        yield None
        return

    try:
        directory = Path(tempfile.mkdtemp(prefix="docmirror-askpass-"))
    except OSError as exc:
        logger.warning(
            "Failed to create git askpass helper, continuing without credentials: %s", exc
        )
        yield None
        return

    try:
        script_path: Path | None = _write_script(directory, token)
    except OSError as exc:
        logger.warning(
            "Failed to create git askpass helper, continuing without credentials: %s", exc
        )
        script_path = None

    try:
        yield script_path
    finally:
        shutil.rmtree(directory, ignore_errors=True)
