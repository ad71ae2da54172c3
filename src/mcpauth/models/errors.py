"""Exception hierarchy for MCP authorization.

Every failure carries a machine-readable ``code`` alongside the message so
callers can branch on the failure mode without parsing strings. When an
authorization server rejects a request, ``code`` holds the OAuth ``error``
value it returned instead of one of the library codes below.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Library error codes."""

    # PKCE
    PKCE_INVALID_LENGTH = "PKCE_INVALID_LENGTH"
    PKCE_INVALID_VERIFIER = "PKCE_INVALID_VERIFIER"
    PKCE_INVALID_METHOD = "PKCE_INVALID_METHOD"
    PKCE_NOT_SUPPORTED = "PKCE_NOT_SUPPORTED"

    # Discovery
    DISCOVERY_FAILED = "DISCOVERY_FAILED"
    DISCOVERY_INVALID_METADATA = "DISCOVERY_INVALID_METADATA"
    DISCOVERY_ISSUER_MISMATCH = "DISCOVERY_ISSUER_MISMATCH"
    DISCOVERY_NO_AUTH_SERVER = "DISCOVERY_NO_AUTH_SERVER"
    DISCOVERY_INVALID_PRM = "DISCOVERY_INVALID_PRM"
    DISCOVERY_PRM_FAILED = "DISCOVERY_PRM_FAILED"

    # Client ID Metadata Documents
    CIMD_INVALID_URL = "CIMD_INVALID_URL"
    CIMD_INSECURE_URL = "CIMD_INSECURE_URL"
    CIMD_TOO_LARGE = "CIMD_TOO_LARGE"
    CIMD_FETCH_FAILED = "CIMD_FETCH_FAILED"
    CIMD_INVALID = "CIMD_INVALID"
    CIMD_CLIENT_ID_MISMATCH = "CIMD_CLIENT_ID_MISMATCH"
    CIMD_REDIRECT_ORIGIN_MISMATCH = "CIMD_REDIRECT_ORIGIN_MISMATCH"

    # Tokens
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    CLIENT_CREDENTIALS_FAILED = "CLIENT_CREDENTIALS_FAILED"
    MISSING_CLIENT_SECRET = "MISSING_CLIENT_SECRET"

    # Authorization callback
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    STATE_MISMATCH = "STATE_MISMATCH"
    INVALID_CALLBACK = "INVALID_CALLBACK"

    # Provider
    CONFIG_INVALID = "CONFIG_INVALID"
    INTROSPECTION_NOT_SUPPORTED = "INTROSPECTION_NOT_SUPPORTED"
    INTROSPECTION_FAILED = "INTROSPECTION_FAILED"
    REVOCATION_NOT_SUPPORTED = "REVOCATION_NOT_SUPPORTED"
    REVOCATION_FAILED = "REVOCATION_FAILED"


class AuthError(Exception):
    """Base exception for all authorization errors.

    Args:
        message: Human readable description
        code: An ``ErrorCode`` or an OAuth ``error`` string from a provider
        details: Optional structured context (provider payload, last error)
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class PKCEError(AuthError):
    """Raised when PKCE parameter generation or validation fails."""

    pass


class DiscoveryError(AuthError):
    """Raised when authorization server or resource discovery fails."""

    pass


class CIMDError(AuthError):
    """Raised when a Client ID Metadata Document is unusable."""

    pass


class TokenError(AuthError):
    """Raised when token endpoint operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when an RFC 8693 exchange or authorization code exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class ClientCredentialsError(TokenError):
    """Raised when a client_credentials grant fails."""

    pass


class AuthorizationCallbackError(AuthError):
    """Raised when the authorization server callback is malformed or invalid.

    This indicates the authorization server sent an invalid callback URL,
    or a state mismatch which could indicate a CSRF attack.
    """

    pass


class ConfigError(AuthError):
    """Raised when provider or server configuration is invalid."""

    pass


class IntrospectionError(AuthError):
    """Raised when token introspection fails."""

    pass


class RevocationError(AuthError):
    """Raised when token revocation fails."""

    pass
