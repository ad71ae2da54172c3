"""Discovery-related models for OAuth 2.1 server metadata.

Contains models for Protected Resource Metadata (RFC 9728),
Authorization Server Metadata (RFC 8414) and the parsed form of a
``WWW-Authenticate`` Bearer challenge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728).

    Published by MCP servers to name their authorization servers and
    describe how bearer tokens are accepted.
    """

    model_config = ConfigDict(extra="allow")

    resource: str = Field(min_length=1)
    authorization_servers: list[str] = Field(min_length=1)
    bearer_methods_supported: list[str] = Field(default_factory=lambda: ["header"])

    # Optional fields from RFC 9728
    scopes_supported: list[str] | None = None
    jwks_uri: str | None = None
    resource_documentation: str | None = None
    resource_policy_uri: str | None = None
    resource_tos_uri: str | None = None
    resource_signing_alg_values_supported: list[str] | None = None

    @field_validator("authorization_servers")
    @classmethod
    def validate_auth_servers(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one authorization server is required")
        return v

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize for the well-known endpoint, omitting unset fields."""
        return self.model_dump(exclude_none=True)


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Unknown fields are preserved. ``code_challenge_methods_supported`` is
    left as ``None`` when the server omits it so that PKCE support checks
    fail closed.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    issuer: str = Field(min_length=1)
    authorization_endpoint: str = Field(min_length=1)
    token_endpoint: str = Field(min_length=1)

    # PKCE support (required for OAuth 2.1)
    code_challenge_methods_supported: list[str] | None = None

    registration_endpoint: str | None = None
    jwks_uri: str | None = None
    userinfo_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None

    # Some servers publish these under their OIDC names
    introspection_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "introspection_endpoint", "token_introspection_endpoint"
        ),
    )
    revocation_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "revocation_endpoint", "token_revocation_endpoint"
        ),
    )

    # MCP 2025-11-25
    client_id_metadata_document_supported: bool | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    """Complete discovery results for an MCP server.

    Combines the resource's Protected Resource Metadata with the metadata of
    the authorization server it names first.
    """

    protected_resource: ProtectedResourceMetadata
    authorization_server: AuthorizationServerMetadata

    @property
    def resource(self) -> str:
        """Resource identifier for the RFC 8707 ``resource`` parameter."""
        return self.protected_resource.resource

    @property
    def auth_server_url(self) -> str:
        return self.protected_resource.authorization_servers[0]


@dataclass(frozen=True)
class WWWAuthenticateChallenge:
    """A Bearer challenge as carried in a 401 ``WWW-Authenticate`` header."""

    resource_metadata: str
    scheme: str = "Bearer"
    realm: str | None = None
    error: str | None = None
    error_description: str | None = None
    scope: str | None = None
