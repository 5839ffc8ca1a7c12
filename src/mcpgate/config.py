# Configuration: environment-driven settings for the gateway.
# Created: 2026-10-19
#
# Values come from MCPGATE_* environment variables or a local .env file.

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Origins that may read OAuth responses cross-origin (MCP Inspector + common dev ports)
_DEFAULT_CORS_ORIGINS = [
    "http://localhost:6274",
    "http://localhost:3000",
    "http://localhost:8080",
    "http://127.0.0.1:6274",
]

DEFAULT_DIRECT_TOKEN_LABELS = ["mcp-remote token", "n8n token", "manus token"]


def get_config_dir() -> Path:
    """Return ~/.mcpgate, creating it if needed."""
    path = Path.home() / ".mcpgate"
    path.mkdir(parents=True, exist_ok=True)
    return path


class Settings(BaseSettings):
    """Gateway settings."""

    model_config = SettingsConfigDict(
        env_prefix="MCPGATE_",
        env_file=".env",
        extra="ignore",
    )

    # Storage
    database_url: str = Field(
        default="",
        description="SQLite or PostgreSQL SQLAlchemy URL; empty means SQLite under ~/.mcpgate",
    )

    # Signing key for the continuation cookie and host session cookie
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    # Public base URL when running behind a reverse proxy
    base_url: str = ""

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_CORS_ORIGINS)
    )

    # Host integration
    login_url: str = "/login"
    home_path: str = "/"
    host_users: dict[str, str] = Field(
        default_factory=dict,
        description="username -> password for the built-in host login",
    )
    session_ttl_hours: int = 8

    # Lifetimes
    code_ttl_seconds: int = 600
    token_ttl_seconds: int = 2592000
    continuation_cookie_ttl_seconds: int = 600

    direct_token_labels: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DIRECT_TOKEN_LABELS)
    )
    scopes_supported: list[str] = Field(default_factory=lambda: ["mcp"])

    # Server
    web_host: str = "127.0.0.1"
    web_port: int = 8080

    @classmethod
    def load(cls) -> Settings:
        return cls()

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{get_config_dir() / 'mcpgate.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings.load()
    if "secret_key" not in settings.model_fields_set:
        logger.warning(
            "MCPGATE_SECRET_KEY is not set; cookies will not survive a restart"
        )
    return settings
