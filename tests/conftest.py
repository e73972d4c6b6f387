"""Shared test fixtures for docmirror."""

from __future__ import annotations

import base64
import json
import subprocess
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import unquote

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docmirror.config import Settings
from docmirror.git.base import Repository
from docmirror.git.github_manager import GitHubClientCache
from docmirror.main import build_repository_service, create_app
from docmirror.models.base import Base
from docmirror.services.crypto_service import TokenEncryptor
from docmirror.services.repository_store import SqlRepositoryStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"

REMOTE_OWNER_URL = "https://github.com/acme/"
REMOTE_URL = REMOTE_OWNER_URL + "docs"

_GIT_IDENTITY = ("-c", "user.name=Test", "-c", "user.email=test@example.com")


def run_git(cwd: Path, *args: str) -> str:
    """Run git for test setup (not subject to the manager's allow-list)."""
    result = subprocess.run(
        ["git", *_GIT_IDENTITY, *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@dataclass
class RemoteRepo:
    """A bare repository reachable as ``https://github.com/acme/<name>``.

    Files are committed from a separate working copy and pushed to the bare
    repository, like a collaborator would.
    """

    url: str
    bare: Path
    work: Path

    def commit(self, files: dict[str, str], message: str = "update") -> None:
        for rel_path, content in files.items():
            target = self.work / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        run_git(self.work, "add", "-A")
        run_git(self.work, "commit", "-q", "-m", message)
        run_git(self.work, "push", "-q", str(self.bare), "HEAD:refs/heads/main")

    def remove(self, *rel_paths: str, message: str = "remove") -> None:
        run_git(self.work, "rm", "-q", *rel_paths)
        run_git(self.work, "commit", "-q", "-m", message)
        run_git(self.work, "push", "-q", str(self.bare), "HEAD:refs/heads/main")


@pytest.fixture
def git_remotes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a private directory whose .gitconfig maps the acme
    https remote onto local bare repositories."""
    home = tmp_path / "home"
    remotes = tmp_path / "remotes"
    home.mkdir()
    remotes.mkdir()
    (home / ".gitconfig").write_text(
        f'[url "file://{remotes.as_posix()}/"]\n'
        f"\tinsteadOf = {REMOTE_OWNER_URL}\n"
        "[init]\n"
        "\tdefaultBranch = main\n"
        "[advice]\n"
        "\tdetachedHead = false\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("GIT_CONFIG_GLOBAL", raising=False)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return remotes


@pytest.fixture
def remote_repo(git_remotes: Path, tmp_path: Path) -> RemoteRepo:
    """Create ``https://github.com/acme/docs`` with a README and a guide."""
    bare = git_remotes / "docs"
    run_git(git_remotes, "init", "-q", "--bare", "--initial-branch=main", str(bare))
    work = tmp_path / "work"
    work.mkdir()
    run_git(work, "init", "-q", "--initial-branch=main")
    remote = RemoteRepo(url=REMOTE_URL, bare=bare, work=work)
    remote.commit(
        {
            "README.md": "# Docs\n",
            "docs/guide.md": "Guide\n",
            "src/main.py": "print('hi')\n",
        },
        message="initial",
    )
    return remote


@pytest.fixture
def repo() -> Repository:
    return Repository(id="11111111-2222-3333-4444-555555555555", name="docs", url=REMOTE_URL)


@pytest.fixture
def encryptor() -> TokenEncryptor:
    return TokenEncryptor.from_hex(TEST_ENCRYPTION_KEY)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        clone_base_path=tmp_path / "repos",
        encryption_key=TEST_ENCRYPTION_KEY,
        git_timeout_seconds=30,
        sync_timeout_seconds=60,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession], encryptor: TokenEncryptor
) -> SqlRepositoryStore:
    return SqlRepositoryStore(session_factory, encryptor)


# ── Fake GitHub contents API ─────────────────────────


@dataclass
class FakeGitHub:
    """In-memory stand-in for ``GET /repos/{owner}/{repo}/contents/{path}``.

    ``large`` files are listed without inline content and served through
    ``download_url`` only.
    """

    owner: str = "acme"
    name: str = "docs"
    files: dict[str, bytes] = field(default_factory=dict)
    large: set[str] = field(default_factory=set)
    fail_status: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    @property
    def prefix(self) -> str:
        return f"/repos/{self.owner}/{self.name}/contents"

    def _file_entry(self, path: str, with_content: bool) -> dict[str, object]:
        entry: dict[str, object] = {
            "type": "file",
            "name": path.rsplit("/", 1)[-1],
            "path": path,
            "size": len(self.files[path]),
            "download_url": f"https://raw.example.test/{self.owner}/{self.name}/{path}",
        }
        if with_content:
            if path in self.large:
                entry["content"] = ""
                entry["encoding"] = "none"
            else:
                entry["content"] = base64.encodebytes(self.files[path]).decode("ascii")
                entry["encoding"] = "base64"
        return entry

    def _listing(self, directory: str) -> list[dict[str, object]]:
        prefix = f"{directory}/" if directory else ""
        entries: dict[str, dict[str, object]] = {}
        for path in sorted(self.files):
            if not path.startswith(prefix):
                continue
            head, _, rest = path[len(prefix) :].partition("/")
            child = prefix + head
            if rest:
                entries.setdefault(child, {"type": "dir", "name": head, "path": child})
            else:
                entries[child] = self._file_entry(child, with_content=False)
        return list(entries.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "boom"})

        if request.url.host == "raw.example.test":
            path = unquote(request.url.path).split("/", 3)[-1]
            if path in self.files:
                return httpx.Response(200, content=self.files[path])
            return httpx.Response(404, text="Not Found")

        url_path = unquote(request.url.path)
        if not url_path.startswith(self.prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        rel = url_path[len(self.prefix) :].strip("/")
        if rel in self.files:
            return httpx.Response(200, json=self._file_entry(rel, with_content=True))
        listing = self._listing(rel)
        if listing:
            return httpx.Response(200, content=json.dumps(listing).encode())
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub(
        files={
            "README.md": b"# Docs\n",
            "docs/guide.md": b"Guide\n",
            "docs/img/logo.png": b"\x89PNG\r\n",
        }
    )


@pytest.fixture
async def github_cache(fake_github: FakeGitHub) -> AsyncGenerator[GitHubClientCache]:
    cache = GitHubClientCache(transport=httpx.MockTransport(fake_github.handler))
    yield cache
    await cache.aclose()


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    client_cache: GitHubClientCache | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan because
    ASGITransport does not trigger it.
    """
    from docmirror.database import create_engine as create_db_engine

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = SqlRepositoryStore(session_factory, settings.build_encryptor())
    app.state.repository_service = build_repository_service(settings, store, client_cache)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()
