"""Application-level exception types.

Convention:
- ``InternalServerError`` — for errors whose details must never reach clients
  (decryption failures and similar).  The global handler logs the full
  message at ERROR and returns a generic "Internal server error" (500).
- ``PolicyViolationError`` — a request tried to do something the sync layer
  never allows (disallowed git verb, insecure URL, path traversal, reading an
  untracked file).  Always raised before any I/O.  Subclasses ``ValueError``
  so that callers treating it as bad input keep working.
- ``SyncError`` — an external collaborator (git process, hosted API, local
  mirror storage) failed.
  Carries the underlying diagnostic and is never retried internally.
- ``ConfigurationError`` — invalid settings detected at startup.
- ``ValueError`` — other business validation errors that are safe to forward
  to clients.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``docmirror/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class DecryptionError(InternalServerError):
    """Ciphertext could not be authenticated or decoded. Never carries plaintext."""


class ConfigurationError(Exception):
    """Settings are unusable; the application must not start."""


class InvalidKeyError(ConfigurationError):
    """Encryption key has the wrong length or encoding."""


# ── Policy violations ────────────────────────────────


class PolicyViolationError(ValueError):
    """An operation was rejected by a security policy before touching I/O."""


class DisallowedCommandError(PolicyViolationError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"git command not allowed: {command}")


class InsecureURLError(PolicyViolationError):
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"only https URLs are allowed for git operations: {url}")


class PathTraversalError(PolicyViolationError):
    def __init__(self, path: str, reason: str = "path escapes the repository root") -> None:
        self.path = path
        super().__init__(f"invalid file path {path!r}: {reason}")


class UntrackedFileError(PolicyViolationError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"requested file {path!r} is not tracked in the repository")


# ── External failures ────────────────────────────────


class SyncError(Exception):
    """Synchronizing or reading a mirror failed because of an external collaborator."""


class GitCommandError(SyncError):
    """A git subprocess exited non-zero, timed out, or could not be started."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stderr: str,
        remote: str | None = None,
    ) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        self.remote = remote
        verb = self.command[0] if self.command else "<none>"
        status = "timed out" if returncode is None else f"exit {returncode}"
        where = f" for {remote}" if remote else ""
        super().__init__(f"git {verb} failed{where} ({status}): {stderr.strip() or 'no stderr'}")


class HostedAPIError(SyncError):
    """A hosted Git provider API call failed (network error or non-2xx response)."""

    def __init__(self, endpoint: str, message: str, status_code: int | None = None) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        status = f"status {status_code}" if status_code is not None else "no response"
        super().__init__(f"hosted API call to {endpoint} failed ({status}): {message}")


class MirrorStorageError(SyncError):
    """Writing a mirror to local storage failed."""

    def __init__(self, remote: str, path: Path, reason: str) -> None:
        self.remote = remote
        self.path = path
        super().__init__(f"failed to store mirror of {remote} in {path}: {reason}")


class SyncTimeoutError(SyncError):
    """Synchronizing a repository exceeded the configured time budget."""


# ── Use-case errors ──────────────────────────────────


class RepositoryNotFoundError(LookupError):
    def __init__(self, repo_id: str) -> None:
        self.repo_id = repo_id
        super().__init__(f"repository not found: {repo_id}")


class RepositoryAlreadyExistsError(ValueError):
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"repository with this URL already exists: {url}")


class InvalidRepositoryURLError(ValueError):
    """Repository URL is malformed or not on an allowed host."""


class UnsupportedURLSchemeError(InvalidRepositoryURLError):
    """Repository URL uses a scheme other than https."""


class AggregationError(Exception):
    """Reading one of the selected files failed; no partial output is produced."""

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        super().__init__(f"failed to read content of file '{path}': {cause}")
