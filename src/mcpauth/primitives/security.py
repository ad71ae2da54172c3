"""Security utilities for OAuth 2.1 flows.

Provides random state generation, constant-time state validation and the
client authentication header used against token endpoints.
"""

from __future__ import annotations

import base64
import secrets
from urllib.parse import quote_plus, urlparse

from mcpauth.models.errors import (
    AuthorizationCallbackError,
    ErrorCode,
    TokenError,
)
from mcpauth.models.security import ClientCredentials

LOCALHOST_NAMES = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    Returns:
        64 hex characters (32 random bytes)
    """
    return secrets.token_hex(32)


def generate_nonce() -> str:
    """Generate an OpenID Connect nonce (32 random bytes, hex)."""
    return secrets.token_hex(32)


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State parameter from original authorization request
        actual: State parameter from callback URL

    Raises:
        AuthorizationCallbackError: If state parameters don't match
    """
    if actual is None or not secrets.compare_digest(expected, actual):
        raise AuthorizationCallbackError(
            "State parameter mismatch - possible CSRF attack",
            ErrorCode.STATE_MISMATCH,
        )


def create_basic_auth_header(credentials: ClientCredentials) -> str:
    """Build an HTTP Basic ``Authorization`` value for client authentication.

    RFC 6749 Section 2.3.1 requires the client id and secret to be
    form-urlencoded before they are joined and base64 encoded.

    Raises:
        TokenError: With code MISSING_CLIENT_SECRET for public clients
    """
    if not credentials.client_secret:
        raise TokenError(
            "Client secret is required for Basic authentication",
            ErrorCode.MISSING_CLIENT_SECRET,
        )
    user = quote_plus(credentials.client_id)
    password = quote_plus(credentials.client_secret)
    encoded = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")
    return f"Basic {encoded}"


def is_secure_url(url: str) -> bool:
    """Return True for HTTPS URLs and for plain HTTP on loopback."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    if parsed.scheme == "https":
        return True
    return parsed.scheme == "http" and parsed.hostname in LOCALHOST_NAMES
