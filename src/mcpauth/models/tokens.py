"""Token request and response models.

Covers the token endpoint (RFC 6749), Token Exchange (RFC 8693) and
Token Introspection (RFC 7662).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"


class TokenType:
    """RFC 8693 token type identifiers."""

    ACCESS_TOKEN = "urn:ietf:params:oauth:token-type:access_token"
    REFRESH_TOKEN = "urn:ietf:params:oauth:token-type:refresh_token"
    ID_TOKEN = "urn:ietf:params:oauth:token-type:id_token"
    SAML1 = "urn:ietf:params:oauth:token-type:saml1"
    SAML2 = "urn:ietf:params:oauth:token-type:saml2"
    JWT = "urn:ietf:params:oauth:token-type:jwt"


TOKEN_TYPES = {
    "access_token": TokenType.ACCESS_TOKEN,
    "refresh_token": TokenType.REFRESH_TOKEN,
    "id_token": TokenType.ID_TOKEN,
    "saml1": TokenType.SAML1,
    "saml2": TokenType.SAML2,
    "jwt": TokenType.JWT,
}


class TokenResponse(BaseModel):
    """OAuth 2.1 token response (RFC 6749 Section 5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None

    def calculate_expires_at(
        self, default_expires_in: int | None = None
    ) -> float | None:
        """Calculate absolute expiry timestamp from expires_in.

        Args:
            default_expires_in: Lifetime to assume when the server omits it

        Returns:
            Unix timestamp when token expires, or None if no expiry
        """
        expires_in = self.expires_in
        if expires_in is None:
            expires_in = default_expires_in
        if expires_in is None:
            return None
        return time.time() + expires_in


class TokenExchangeResponse(BaseModel):
    """RFC 8693 Section 2.2.1 successful response."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    issued_token_type: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None
    refresh_token: str | None = None


class TokenIntrospectionResponse(BaseModel):
    """RFC 7662 introspection response.

    ``active`` is the only authority on validity. A payload that omits it is
    treated as inactive.
    """

    model_config = ConfigDict(extra="allow")

    active: bool = False
    scope: str | None = None
    client_id: str | None = None
    username: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None
    nbf: int | None = None
    sub: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None
    jti: str | None = None

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []

    @property
    def audiences(self) -> list[str]:
        if self.aud is None:
            return []
        if isinstance(self.aud, str):
            return [self.aud]
        return list(self.aud)


@dataclass(frozen=True)
class TokenExchangeOptions:
    """Parameters of an RFC 8693 token exchange request."""

    subject_token: str
    subject_token_type: str = TokenType.ACCESS_TOKEN
    requested_token_type: str | None = None
    audience: str | None = None
    resource: str | None = None
    scope: str | None = None
    actor_token: str | None = None
    actor_token_type: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        ``actor_token_type`` defaults to the access token type whenever an
        actor token is present.
        """
        data = {
            "grant_type": TOKEN_EXCHANGE_GRANT_TYPE,
            "subject_token": self.subject_token,
            "subject_token_type": self.subject_token_type,
        }

        if self.requested_token_type:
            data["requested_token_type"] = self.requested_token_type
        if self.audience:
            data["audience"] = self.audience
        if self.resource:
            data["resource"] = self.resource
        if self.scope:
            data["scope"] = self.scope
        if self.actor_token:
            data["actor_token"] = self.actor_token
            data["actor_token_type"] = self.actor_token_type or TokenType.ACCESS_TOKEN

        return data


@dataclass(frozen=True)
class ClientCredentialsConfig:
    """Configuration for the client_credentials grant (machine-to-machine)."""

    token_endpoint: str
    client_id: str
    client_secret: str
    scope: str | None = None
    resource: str | None = None  # RFC 8707
    audience: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {"grant_type": "client_credentials"}

        if self.scope:
            data["scope"] = self.scope
        if self.resource:
            data["resource"] = self.resource
        if self.audience:
            data["audience"] = self.audience

        return data


def parse_error_body(response: Any) -> dict[str, Any]:
    """Best-effort decode of an OAuth error body (RFC 6749 Section 5.2)."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
