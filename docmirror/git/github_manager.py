"""Mirror GitHub repositories through the REST contents API."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlparse

import httpx

from docmirror.exceptions import (
    ConfigurationError,
    HostedAPIError,
    InvalidRepositoryURLError,
    MirrorStorageError,
)
from docmirror.git.paths import ensure_tracked, resolve_within

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docmirror.git.base import Repository

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_HOST = "github.com"

_DEFAULT_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
    "User-Agent": "docmirror",
}


def parse_github_url(repo_url: str, host: str = GITHUB_HOST) -> tuple[str, str]:
    """Extract (owner, repo) from ``https://github.com/owner/repo[.git]``."""
    parsed = urlparse(repo_url)
    if parsed.scheme != "https" or (parsed.hostname or "").lower() != host:
        msg = f"invalid GitHub URL format: {repo_url}"
        raise InvalidRepositoryURLError(msg)
    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) < 2:
        msg = f"invalid GitHub URL format: {repo_url}"
        raise InvalidRepositoryURLError(msg)
    owner, name = segments[0], segments[1].removesuffix(".git")
    if not owner or not name:
        msg = f"invalid GitHub URL format: {repo_url}"
        raise InvalidRepositoryURLError(msg)
    return owner, name


def decode_content(entry: dict[str, Any]) -> bytes | None:
    """Decode the inline content of a contents-API file entry.

    Returns None when the entry carries no inline content (directory
    listings, or files too large for inline delivery).
    """
    content = entry.get("content")
    encoding = entry.get("encoding")
    if content is None or encoding in (None, "", "none"):
        return None
    if encoding != "base64":
        msg = f"unsupported content encoding {encoding!r} for {entry.get('path')}"
        raise ValueError(msg)
    try:
        return base64.b64decode(content)
    except (binascii.Error, ValueError) as exc:
        msg = f"invalid base64 content for {entry.get('path')}"
        raise ValueError(msg) from exc


class GitHubClientCache:
    """Shares one HTTP client per access token.

    Anonymous calls share the client stored under ``""``.  Entries live for
    the lifetime of the cache; the key space is bounded by the number of
    tokens in use.
    """

    def __init__(
        self,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._lock = threading.Lock()

    def get(self, access_token: str) -> httpx.AsyncClient:
        """Return the client for ``access_token``, creating it on first use."""
        with self._lock:
            client = self._clients.get(access_token)
            if client is None:
                headers = dict(_DEFAULT_HEADERS)
                if access_token:
                    headers["Authorization"] = f"Bearer {access_token}"
                client = httpx.AsyncClient(
                    base_url=self.api_url,
                    headers=headers,
                    timeout=self.timeout,
                    transport=self._transport,
                )
                self._clients[access_token] = client
            return client

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    async def aclose(self) -> None:
        """Close every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()


class GitHubApiManager:
    """Keeps mirrors in sync by walking the GitHub contents API."""

    def __init__(
        self,
        base_clone_path: Path,
        client_cache: GitHubClientCache | None = None,
        host: str = GITHUB_HOST,
    ) -> None:
        try:
            base_clone_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"failed to create base clone directory {base_clone_path}: {exc}"
            raise ConfigurationError(msg) from exc
        self.base_clone_path = base_clone_path
        self.client_cache = client_cache if client_cache is not None else GitHubClientCache()
        self.host = host

    def local_path(self, repo: Repository) -> Path:
        """Return the mirror directory for a repository."""
        return resolve_within(self.base_clone_path, repo.id)

    async def _get_json(self, client: httpx.AsyncClient, endpoint: str) -> Any:
        try:
            response = await client.get(endpoint)
        except httpx.HTTPError as exc:
            raise HostedAPIError(endpoint, str(exc) or type(exc).__name__) from exc
        if response.status_code != 200:
            message = response.text[:200] if response.text else response.reason_phrase
            raise HostedAPIError(endpoint, message, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise HostedAPIError(endpoint, "response is not valid JSON") from exc

    async def _get_contents(
        self, client: httpx.AsyncClient, owner: str, repo: str, path: str
    ) -> Any:
        endpoint = f"/repos/{quote(owner)}/{quote(repo)}/contents/{quote(path)}"
        return await self._get_json(client, endpoint.rstrip("/"))

    async def _fetch_file(
        self, client: httpx.AsyncClient, owner: str, repo: str, entry: dict[str, Any]
    ) -> bytes:
        path = str(entry["path"])
        try:
            data = decode_content(entry)
        except ValueError as exc:
            raise HostedAPIError(path, str(exc)) from exc
        if data is not None:
            return data

        detail = await self._get_contents(client, owner, repo, path)
        if not isinstance(detail, dict):
            raise HostedAPIError(path, "expected a file entry")
        try:
            data = decode_content(detail)
        except ValueError as exc:
            raise HostedAPIError(path, str(exc)) from exc
        if data is not None:
            return data

        # Large files are not delivered inline.
        download_url = detail.get("download_url")
        if not download_url:
            raise HostedAPIError(path, "file content is not available")
        try:
            response = await client.get(download_url)
        except httpx.HTTPError as exc:
            raise HostedAPIError(download_url, str(exc) or type(exc).__name__) from exc
        if response.status_code != 200:
            raise HostedAPIError(download_url, response.reason_phrase, response.status_code)
        return response.content

    async def _download_tree(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        path: str,
        target_root: Path,
    ) -> None:
        listing = await self._get_contents(client, owner, repo, path)
        if not isinstance(listing, list):
            listing = [listing]

        for entry in listing:
            entry_path = str(entry.get("path", ""))
            entry_type = entry.get("type")
            destination = resolve_within(target_root, entry_path)
            if entry_type == "file":
                data = await self._fetch_file(client, owner, repo, entry)
                await asyncio.to_thread(_write_file, destination, data)
            elif entry_type == "dir":
                await asyncio.to_thread(destination.mkdir, parents=True, exist_ok=True)
                await self._download_tree(client, owner, repo, entry_path, target_root)
            else:
                logger.debug("Skipping %s entry %s", entry_type, entry_path)

    async def ensure_cloned(self, repo: Repository) -> Path:
        local_path = self.local_path(repo)
        owner, name = parse_github_url(repo.url, self.host)
        client = self.client_cache.get(repo.access_token)

        refreshing = local_path.is_dir()
        if refreshing:
            logger.info("Updating repository %s in %s", repo.url, local_path)
        else:
            logger.info("Cloning repository %s to %s", repo.url, local_path)

        staging = local_path.with_name(f".{local_path.name}.partial")
        action = "update" if refreshing else "clone"
        try:
            await asyncio.to_thread(_reset_dir, staging)
            await self._download_tree(client, owner, name, "", staging)
            await asyncio.to_thread(_promote, staging, local_path)
        except HostedAPIError as exc:
            msg = f"failed to {action} repository {repo.url}: {exc}"
            raise HostedAPIError(exc.endpoint, msg, exc.status_code) from exc
        except OSError as exc:
            logger.error("Storing %s of %s failed: %s", action, repo.url, exc)
            raise MirrorStorageError(repo.url, local_path, str(exc)) from exc
        finally:
            await asyncio.to_thread(shutil.rmtree, staging, True)
        return local_path

    async def _list_files_from_api(
        self, client: httpx.AsyncClient, owner: str, repo: str, path: str
    ) -> list[str]:
        listing = await self._get_contents(client, owner, repo, path)
        if not isinstance(listing, list):
            listing = [listing]
        files: list[str] = []
        for entry in listing:
            if entry.get("type") == "file":
                files.append(str(entry["path"]))
            elif entry.get("type") == "dir":
                files.extend(await self._list_files_from_api(client, owner, repo, entry["path"]))
        return files

    async def list_repository_files(self, local_path: Path, repo: Repository) -> list[str]:
        try:
            return await asyncio.to_thread(walk_mirror, local_path)
        except OSError as exc:
            logger.warning("Failed to walk %s, falling back to API listing: %s", local_path, exc)

        owner, name = parse_github_url(repo.url, self.host)
        client = self.client_cache.get(repo.access_token)
        return await self._list_files_from_api(client, owner, name, "")

    async def validate_files_exist(
        self, local_path: Path, file_paths: Sequence[str], repo: Repository
    ) -> None:
        if not file_paths:
            return
        for file_path in file_paths:
            resolve_within(local_path, file_path)
        tracked = await self.list_repository_files(local_path, repo)
        for file_path in file_paths:
            ensure_tracked(file_path, tracked)

    async def read_managed_file_content(
        self, local_path: Path, file_path: str, repo: Repository
    ) -> bytes:
        target = resolve_within(local_path, file_path)
        normalized = ensure_tracked(file_path, await self.list_repository_files(local_path, repo))
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError:
            logger.info("File %s missing from mirror, fetching from API", normalized)

        owner, name = parse_github_url(repo.url, self.host)
        client = self.client_cache.get(repo.access_token)
        detail = await self._get_contents(client, owner, name, normalized)
        if not isinstance(detail, dict) or detail.get("type") != "file":
            raise HostedAPIError(normalized, "expected a file entry")
        return await self._fetch_file(client, owner, name, detail)


def walk_mirror(root: Path) -> list[str]:
    """List files under ``root``, skipping hidden files and directories."""
    if not root.is_dir():
        msg = f"mirror directory does not exist: {root}"
        raise FileNotFoundError(msg)

    def _raise(exc: OSError) -> None:
        raise exc

    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            relative = Path(dirpath, filename).relative_to(root)
            files.append(relative.as_posix())
    return files


def _write_file(destination: Path, data: bytes) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(data)


def _reset_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True)


def _promote(staging: Path, local_path: Path) -> None:
    """Replace the contents of ``local_path`` with those of ``staging``.

    The mirror root itself is kept; only its entries are swapped.
    """
    local_path.mkdir(parents=True, exist_ok=True)
    for child in local_path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    for child in staging.iterdir():
        child.rename(local_path / child.name)
