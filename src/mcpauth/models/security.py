"""Security-related models for OAuth 2.1 authorization.

Contains the PKCE pair and client credential value objects used across
the token and provider services.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PKCEPair:
    """PKCE (Proof Key for Code Exchange) parameters for one authorization flow.

    Immutable parameters generated per flow to prevent authorization code
    interception attacks (RFC 7636). Only the S256 method is accepted.
    """

    code_verifier: str = field()
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not self.code_challenge:
            raise ValueError("code_challenge must not be empty")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client identifier with an optional secret.

    Public clients carry no secret and send ``client_id`` in the request body.
    """

    client_id: str
    client_secret: str | None = None

    @property
    def is_confidential(self) -> bool:
        return bool(self.client_secret)
