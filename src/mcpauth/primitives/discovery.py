"""Pure helpers for OAuth 2.1 discovery.

Builds the RFC 8414 and RFC 9728 well-known URLs and converts between
``WWW-Authenticate`` Bearer challenges and ``WWWAuthenticateChallenge``.
Nothing here performs I/O; see ``mcpauth.services.discovery`` for fetching.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from mcpauth.models.discovery import (
    ProtectedResourceMetadata,
    WWWAuthenticateChallenge,
)

OAUTH_AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"
OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"
PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"

WELL_KNOWN_PATHS = {
    "oauth_authorization_server": OAUTH_AUTHORIZATION_SERVER_PATH,
    "openid_configuration": OPENID_CONFIGURATION_PATH,
    "protected_resource": PROTECTED_RESOURCE_PATH,
}

# auth-param: key=value or key="quoted value" with backslash escapes
_AUTH_PARAM_PATTERN = re.compile(r'(\w+)=(?:"((?:[^"\\]|\\.)*)"|([^\s,]*))')
_BEARER_PREFIX = re.compile(r"^\s*bearer(?:\s+|$)", re.IGNORECASE)


def build_authorization_server_metadata_urls(issuer: str) -> list[str]:
    """Build ordered list of AS metadata URLs to try.

    OAuth metadata first, then the OpenID Connect configuration document.
    """
    base = issuer.rstrip("/")
    return [
        f"{base}{OAUTH_AUTHORIZATION_SERVER_PATH}",
        f"{base}{OPENID_CONFIGURATION_PATH}",
    ]


def protected_resource_metadata_path(resource_url: str) -> str:
    """Path at which a resource publishes its metadata (RFC 9728 Section 3.1).

    The well-known segment is inserted before the resource's own path, so
    ``https://api.example.com/mcp`` maps to
    ``/.well-known/oauth-protected-resource/mcp``.
    """
    path = urlparse(resource_url).path
    if not path or path == "/":
        return PROTECTED_RESOURCE_PATH
    return f"{PROTECTED_RESOURCE_PATH}{path}"


def build_protected_resource_metadata_url(resource_url: str) -> str:
    """Absolute metadata URL for a resource."""
    parsed = urlparse(resource_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return f"{origin}{protected_resource_metadata_path(resource_url)}"


def parse_www_authenticate(header: str | None) -> WWWAuthenticateChallenge | None:
    """Parse a Bearer challenge from a ``WWW-Authenticate`` header value.

    Returns:
        The challenge, or None when the scheme is not Bearer or when no
        non-empty ``resource_metadata`` parameter is present
    """
    if not header:
        return None

    prefix = _BEARER_PREFIX.match(header)
    if not prefix:
        return None

    params: dict[str, str] = {}
    for match in _AUTH_PARAM_PATTERN.finditer(header[prefix.end() :]):
        key = match.group(1).lower()
        if match.group(2) is not None:
            value = re.sub(r"\\(.)", r"\1", match.group(2))
        else:
            value = match.group(3)
        params[key] = value

    resource_metadata = params.get("resource_metadata")
    if not resource_metadata:
        return None

    return WWWAuthenticateChallenge(
        resource_metadata=resource_metadata,
        realm=params.get("realm"),
        error=params.get("error"),
        error_description=params.get("error_description"),
        scope=params.get("scope"),
    )


def build_www_authenticate(challenge: WWWAuthenticateChallenge) -> str:
    """Serialize a challenge into a ``WWW-Authenticate`` header value.

    ``resource_metadata`` is always emitted; unset optional fields are
    omitted.
    """
    parts = ["Bearer"]
    if challenge.realm is not None:
        parts.append(f"realm={_quote(challenge.realm)}")
    parts.append(f"resource_metadata={_quote(challenge.resource_metadata)}")
    if challenge.error is not None:
        parts.append(f"error={_quote(challenge.error)}")
    if challenge.error_description is not None:
        parts.append(f"error_description={_quote(challenge.error_description)}")
    if challenge.scope is not None:
        parts.append(f"scope={_quote(challenge.scope)}")
    return " ".join(parts)


def create_protected_resource_metadata(
    resource: str,
    authorization_servers: list[str],
    scopes_supported: list[str] | None = None,
    bearer_methods_supported: list[str] | None = None,
    jwks_uri: str | None = None,
) -> ProtectedResourceMetadata:
    """Build the metadata document a resource server publishes."""
    return ProtectedResourceMetadata(
        resource=resource,
        authorization_servers=authorization_servers,
        scopes_supported=scopes_supported,
        bearer_methods_supported=bearer_methods_supported or ["header"],
        jwks_uri=jwks_uri,
    )


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
