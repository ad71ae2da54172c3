"""Configuration for protecting an MCP server.

``MCPServerAuthConfig`` is the programmatic form. ``ServerAuthSettings``
reads the same values from the environment (or a ``.env`` file).
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_AUTH_SERVER_URL = "http://localhost:4444"
DEFAULT_INTROSPECTION_URL = "http://localhost:4445/admin/oauth2/introspect"
DEFAULT_CLIENT_ID = "mcp-server"
DEFAULT_CLIENT_SECRET = "secret"
DEFAULT_CACHE_TTL_SECONDS = 60


class MCPServerAuthConfig(BaseModel):
    """Everything needed to protect an MCP endpoint with introspection."""

    resource_url: str = Field(min_length=1)
    auth_server_url: str = Field(min_length=1)
    introspection_endpoint: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str

    required_scopes: list[str] | None = None
    # Falls back to required_scopes when unset
    scopes_supported: list[str] | None = None
    cache_ttl_seconds: float = Field(default=DEFAULT_CACHE_TTL_SECONDS, gt=0)
    enabled: bool = True

    # Audience is only enforced when an allow-list is configured
    allowed_audiences: list[str] | None = None
    introspection_timeout: float = Field(default=10.0, gt=0)


class ServerAuthSettings(BaseSettings):
    """Environment variables for server auth.

    Values are read as raw strings and interpreted by the accessors below,
    so that empty or malformed values fall back to defaults instead of
    failing startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    auth_enabled: str | None = Field(default=None, description="'false' disables")
    resource_url: str | None = Field(default=None, description="Canonical resource")
    auth_server_url: str | None = Field(default=None)
    introspection_url: str | None = Field(default=None)
    auth_client_id: str | None = Field(default=None)
    auth_client_secret: SecretStr | None = Field(default=None)
    auth_scopes: str | None = Field(default=None, description="Comma-separated")
    auth_cache_ttl: str | None = Field(default=None, description="Seconds")

    @property
    def enabled(self) -> bool:
        return (self.auth_enabled or "").strip().lower() != "false"

    @property
    def required_scopes(self) -> list[str] | None:
        if not self.auth_scopes:
            return None
        scopes = [scope.strip() for scope in self.auth_scopes.split(",")]
        return [scope for scope in scopes if scope]

    @property
    def cache_ttl_seconds(self) -> float | None:
        if not self.auth_cache_ttl:
            return None
        try:
            ttl = float(self.auth_cache_ttl)
        except ValueError:
            logger.warning(f"Ignoring invalid AUTH_CACHE_TTL: {self.auth_cache_ttl}")
            return None
        return ttl if ttl > 0 else None

    @property
    def client_secret(self) -> str | None:
        if self.auth_client_secret is None:
            return None
        return self.auth_client_secret.get_secret_value() or None
