"""Authorization code flow models.

An ``AuthorizationRequest`` renders the front-channel URL; the matching
``AuthorizationState`` holds the secrets the client keeps until the
``AuthorizationResponse`` comes back on the redirect URI.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from mcpauth.models.security import PKCEPair


@dataclass(frozen=True)
class AuthorizationRequest:
    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    pkce: PKCEPair
    state: str
    scopes: list[str] | None = None
    resource: str | None = None  # RFC 8707
    nonce: str | None = None  # OpenID Connect

    def query_params(self) -> dict[str, str]:
        """Front-channel parameters; PKCE is always S256."""
        optional = {
            "scope": " ".join(self.scopes) if self.scopes else None,
            "resource": self.resource,
            "nonce": self.nonce,
        }
        return {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "code_challenge": self.pkce.code_challenge,
            "code_challenge_method": self.pkce.code_challenge_method,
            **{key: value for key, value in optional.items() if value},
        }

    def build_authorization_url(self) -> str:
        # Endpoints may already carry a query string
        joiner = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{joiner}{urlencode(self.query_params())}"

    def to_state(self) -> AuthorizationState:
        return AuthorizationState(
            state=self.state,
            pkce=self.pkce,
            redirect_uri=self.redirect_uri,
            nonce=self.nonce,
        )


@dataclass(frozen=True)
class AuthorizationState:
    """Per-flow secrets the caller must persist until the callback arrives.

    Keyed by ``state``; the PKCE verifier is needed for the code exchange.
    """

    state: str
    pkce: PKCEPair
    redirect_uri: str
    nonce: str | None = None


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters delivered to the redirect URI."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
