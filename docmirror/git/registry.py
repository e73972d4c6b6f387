"""Strategy registry for repository mirroring."""

from __future__ import annotations

from typing import TYPE_CHECKING

from docmirror.exceptions import ConfigurationError
from docmirror.git.cli_manager import CliGitManager
from docmirror.git.github_manager import GitHubApiManager, GitHubClientCache

if TYPE_CHECKING:
    from docmirror.config import Settings
    from docmirror.git.base import GitManager

STRATEGIES = ("cli", "github")


def list_strategies() -> list[str]:
    """Return the supported strategy names."""
    return list(STRATEGIES)


def create_git_manager(
    settings: Settings,
    client_cache: GitHubClientCache | None = None,
) -> GitManager:
    """Create the git manager selected by ``settings.git_manager``.

    Raises ConfigurationError if the strategy is unknown.
    """
    strategy = settings.git_manager
    if strategy == "cli":
        return CliGitManager(settings.clone_base_path, timeout=settings.git_timeout_seconds)
    if strategy == "github":
        if client_cache is None:
            client_cache = GitHubClientCache(
                api_url=settings.github_api_url,
                timeout=settings.http_timeout_seconds,
            )
        return GitHubApiManager(
            settings.clone_base_path,
            client_cache=client_cache,
            host=settings.github_host,
        )
    msg = f"Unknown git manager: {strategy!r}. Available: {list_strategies()}"
    raise ConfigurationError(msg)
