"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from docmirror.exceptions import ConfigurationError
from docmirror.services.crypto_service import KEY_SIZE, TokenEncryptor

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Docmirror application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/docmirror.db"

    # Mirrors
    clone_base_path: Path = Path("./data/repos")
    git_manager: Literal["cli", "github"] = "cli"

    # Token encryption: 64 hex characters (256-bit key)
    encryption_key: str = ""

    # Timeouts
    git_timeout_seconds: float = Field(default=120.0, gt=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    sync_timeout_seconds: float = Field(default=600.0, gt=0)

    # Hosted provider
    github_api_url: str = "https://api.github.com"
    github_host: str = "github.com"
    allowed_git_hosts: list[str] = Field(
        default_factory=lambda: ["github.com", "gitlab.com", "bitbucket.org"]
    )

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.encryption_key:
            violations.append("ENCRYPTION_KEY must be set outside debug mode")
        elif not _is_valid_hex_key(self.encryption_key):
            violations.append(
                f"ENCRYPTION_KEY must be {KEY_SIZE * 2} hex characters ({KEY_SIZE} bytes)"
            )
        if not self.github_api_url.startswith("https://"):
            violations.append("GITHUB_API_URL must use https")

        if violations:
            joined = "; ".join(violations)
            raise ConfigurationError(f"Insecure production configuration: {joined}")

    def build_encryptor(self) -> TokenEncryptor:
        """Create the token encryptor from the configured key.

        In debug mode an ephemeral key is generated when none is configured;
        tokens stored with it cannot be read after a restart.
        """
        if self.encryption_key:
            return TokenEncryptor.from_hex(self.encryption_key)
        if not self.debug:
            raise ConfigurationError("ENCRYPTION_KEY is required outside debug mode")
        logger.warning(
            "ENCRYPTION_KEY not set, generating an ephemeral key "
            "(stored access tokens will be unreadable after restart)"
        )
        return TokenEncryptor.generate()


def _is_valid_hex_key(value: str) -> bool:
    try:
        return len(bytes.fromhex(value)) == KEY_SIZE
    except ValueError:
        return False
