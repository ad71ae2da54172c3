"""PKCE (Proof Key for Code Exchange) primitives for OAuth 2.1.

Implements RFC 7636 with the S256 method only. OAuth 2.1 and the MCP
authorization profile make PKCE mandatory and ``plain`` is never accepted.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from mcpauth.models.errors import ErrorCode, PKCEError
from mcpauth.models.security import PKCEPair

PKCE_VERIFIER_MIN_LENGTH = 43
PKCE_VERIFIER_MAX_LENGTH = 128
PKCE_VERIFIER_DEFAULT_LENGTH = 64

# RFC 7636 Section 4.1 unreserved characters
_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"


def generate_code_verifier(length: int = PKCE_VERIFIER_DEFAULT_LENGTH) -> str:
    """Generate a cryptographically secure code verifier.

    Args:
        length: Verifier length, 43-128 characters

    Returns:
        Random string over ``[A-Za-z0-9-._~]``

    Raises:
        PKCEError: If length is outside the RFC 7636 bounds
    """
    if not (PKCE_VERIFIER_MIN_LENGTH <= length <= PKCE_VERIFIER_MAX_LENGTH):
        raise PKCEError(
            f"Code verifier length must be between {PKCE_VERIFIER_MIN_LENGTH} "
            f"and {PKCE_VERIFIER_MAX_LENGTH}, got {length}",
            ErrorCode.PKCE_INVALID_LENGTH,
        )
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    with the padding removed.

    Raises:
        PKCEError: If the verifier is empty or shorter than 43 characters
    """
    if not code_verifier or len(code_verifier) < PKCE_VERIFIER_MIN_LENGTH:
        raise PKCEError(
            f"Code verifier must be at least {PKCE_VERIFIER_MIN_LENGTH} characters",
            ErrorCode.PKCE_INVALID_VERIFIER,
        )
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce(length: int | None = None) -> PKCEPair:
    """Generate a fresh verifier/challenge pair for one authorization flow."""
    code_verifier = generate_code_verifier(
        length if length is not None else PKCE_VERIFIER_DEFAULT_LENGTH
    )
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
        code_challenge_method="S256",
    )


def verify_code_challenge(
    code_verifier: str, code_challenge: str, method: str = "S256"
) -> bool:
    """Check a verifier against a previously issued challenge.

    The comparison is constant-time. Empty inputs and verifiers too short to
    hash simply fail verification.

    Raises:
        PKCEError: If ``method`` is anything other than S256
    """
    if method != "S256":
        raise PKCEError(
            f"Unsupported code challenge method: {method}. Only S256 is allowed",
            ErrorCode.PKCE_INVALID_METHOD,
        )
    if not code_verifier or not code_challenge:
        return False
    if len(code_verifier) < PKCE_VERIFIER_MIN_LENGTH:
        return False

    expected = generate_code_challenge(code_verifier)
    return secrets.compare_digest(expected, code_challenge)


def is_valid_code_verifier(code_verifier: str) -> bool:
    """Return True if the verifier has a legal length and character set."""
    if not (PKCE_VERIFIER_MIN_LENGTH <= len(code_verifier) <= PKCE_VERIFIER_MAX_LENGTH):
        return False
    return all(char in _VERIFIER_ALPHABET for char in code_verifier)


def supports_s256(methods: list[str] | None) -> bool:
    """Return True if an advertised method list includes S256.

    An absent list means the server did not advertise PKCE support.
    """
    if not isinstance(methods, list):
        return False
    return "S256" in methods


def require_s256_support(methods: list[str] | None) -> None:
    """Raise unless the authorization server advertises S256.

    Raises:
        PKCEError: With code PKCE_NOT_SUPPORTED
    """
    if not supports_s256(methods):
        raise PKCEError(
            "Authorization server does not support S256 PKCE. "
            f"Advertised methods: {methods}",
            ErrorCode.PKCE_NOT_SUPPORTED,
        )
