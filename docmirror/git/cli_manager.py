"""Mirror repositories with the git CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from docmirror.exceptions import (
    ConfigurationError,
    DisallowedCommandError,
    GitCommandError,
    InsecureURLError,
    UntrackedFileError,
)
from docmirror.git.askpass import askpass_relay
from docmirror.git.paths import ensure_tracked, normalize_repo_path, resolve_within

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docmirror.git.base import Repository

logger = logging.getLogger(__name__)

ALLOWED_GIT_COMMANDS = frozenset({"clone", "fetch", "reset", "ls-tree", "ls-files"})

_GIT_TIMEOUT_SECONDS = 120.0


def check_git_command(args: Sequence[str]) -> None:
    """Reject verbs outside the allow-list and non-https clone sources."""
    if not args:
        msg = "no git command specified"
        raise DisallowedCommandError(msg)
    if args[0] not in ALLOWED_GIT_COMMANDS:
        raise DisallowedCommandError(args[0])
    if args[0] == "clone":
        sources = [a for a in args[1:] if not a.startswith("-")]
        if not sources or not sources[0].startswith("https://"):
            raise InsecureURLError(sources[0] if sources else "")


def _split_nul(output: str) -> list[str]:
    return [entry for entry in output.split("\0") if entry]


class CliGitManager:
    """Keeps mirrors in sync by driving an allow-listed subset of git."""

    def __init__(self, base_clone_path: Path, timeout: float = _GIT_TIMEOUT_SECONDS) -> None:
        try:
            base_clone_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"failed to create base clone directory {base_clone_path}: {exc}"
            raise ConfigurationError(msg) from exc
        self.base_clone_path = base_clone_path
        self.timeout = timeout

    def local_path(self, repo: Repository) -> Path:
        """Return the mirror directory for a repository."""
        return resolve_within(self.base_clone_path, repo.id)

    def _build_env(self, askpass: Path | None) -> dict[str, str]:
        env = {
            "PATH": os.environ.get("PATH", ""),
            "HOME": os.environ.get("HOME", ""),
            "GIT_TERMINAL_PROMPT": "0",
        }
        if askpass is not None:
            env["GIT_ASKPASS"] = str(askpass)
        return env

    def _run(self, cwd: Path, repo: Repository, *args: str) -> str:
        """Run an allow-listed git command and return its stdout."""
        check_git_command(args)

        with askpass_relay(repo.access_token) as askpass:
            try:
                result = subprocess.run(
                    ["git", *args],
                    cwd=cwd,
                    env=self._build_env(askpass),
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as exc:
                raise GitCommandError(
                    args, None, f"timed out after {self.timeout}s", remote=repo.url
                ) from exc
            except FileNotFoundError as exc:
                raise GitCommandError(
                    args, None, f"git executable not found: {exc}", remote=repo.url
                ) from exc

        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr, remote=repo.url)
        return result.stdout

    def _clone(self, repo: Repository, local_path: Path) -> None:
        staging = local_path.with_name(f".{local_path.name}.partial")
        shutil.rmtree(staging, ignore_errors=True)
        logger.info("Cloning repository %s to %s", repo.url, local_path)
        try:
            self._run(self.base_clone_path, repo, "clone", "--quiet", repo.url, str(staging))
            staging.rename(local_path)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    def _refresh(self, repo: Repository, local_path: Path) -> None:
        logger.info("Updating repository %s in %s", repo.url, local_path)
        self._run(local_path, repo, "fetch", "--quiet", "origin")
        # Hard reset so the mirror always matches the remote default branch.
        self._run(local_path, repo, "reset", "--hard", "--quiet", "origin/HEAD")

    def _ensure_cloned_sync(self, repo: Repository) -> Path:
        local_path = self.local_path(repo)
        if local_path.is_dir():
            self._refresh(repo, local_path)
        elif local_path.exists():
            msg = f"mirror path exists but is not a directory: {local_path}"
            raise NotADirectoryError(msg)
        else:
            self._clone(repo, local_path)
        return local_path

    async def ensure_cloned(self, repo: Repository) -> Path:
        return await asyncio.to_thread(self._ensure_cloned_sync, repo)

    def _list_files_sync(self, local_path: Path, repo: Repository) -> list[str]:
        output = self._run(local_path, repo, "ls-tree", "-r", "-z", "--name-only", "HEAD")
        return _split_nul(output)

    async def list_repository_files(self, local_path: Path, repo: Repository) -> list[str]:
        return await asyncio.to_thread(self._list_files_sync, local_path, repo)

    def _validate_files_sync(
        self, local_path: Path, file_paths: Sequence[str], repo: Repository
    ) -> None:
        for file_path in file_paths:
            resolve_within(local_path, file_path)
        indexed = set(_split_nul(self._run(local_path, repo, "ls-files", "-z")))
        for file_path in file_paths:
            if normalize_repo_path(file_path) not in indexed:
                raise UntrackedFileError(file_path)

    async def validate_files_exist(
        self, local_path: Path, file_paths: Sequence[str], repo: Repository
    ) -> None:
        if not file_paths:
            return
        await asyncio.to_thread(self._validate_files_sync, local_path, file_paths, repo)

    def _read_file_sync(self, local_path: Path, file_path: str, repo: Repository) -> bytes:
        target = resolve_within(local_path, file_path)
        ensure_tracked(file_path, self._list_files_sync(local_path, repo))
        return target.read_bytes()

    async def read_managed_file_content(
        self, local_path: Path, file_path: str, repo: Repository
    ) -> bytes:
        return await asyncio.to_thread(self._read_file_sync, local_path, file_path, repo)
