"""CIMD (Client ID Metadata Document) support.

CIMD is a registration-free alternative to Dynamic Client Registration:
the client hosts a JSON document at an HTTPS URL and that URL becomes its
``client_id``. The authorization server fetches and validates the document
instead of looking up a pre-registered client.

This module provides:
- create_client_id_metadata_document: build a document for publication
- validate_client_id_metadata: structural and origin-binding checks
- ClientIDMetadataFetcher: size-capped fetch with an SSRF guard
- is_safe_to_fetch: advisory SSRF check for candidate URLs
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import ParseResult, urlparse

import httpx
from pydantic import ValidationError

from mcpauth.models.cimd import ClientIDMetadataDocument
from mcpauth.models.discovery import AuthorizationServerMetadata
from mcpauth.models.errors import AuthError, CIMDError, ErrorCode
from mcpauth.primitives.security import LOCALHOST_NAMES, is_secure_url

logger = logging.getLogger(__name__)

CIMD_WELL_KNOWN_PATH = "/.well-known/mcp-client.json"
CIMD_MAX_SIZE_BYTES = 65536

ALLOWED_GRANT_TYPES = frozenset(
    {"authorization_code", "refresh_token", "client_credentials"}
)

_BLOCKED_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
)

_METADATA_HOSTNAMES = frozenset(
    {
        "metadata",
        "metadata.google",
        "metadata.google.internal",
        "169.254.169.254",
    }
)


def create_client_id_metadata_document(
    client_url: str,
    redirect_uris: list[str],
    client_name: str | None = None,
    grant_types: list[str] | None = None,
    scope: str | None = None,
    contacts: list[str] | None = None,
    logo_uri: str | None = None,
    policy_uri: str | None = None,
    tos_uri: str | None = None,
    software_id: str | None = None,
    software_version: str | None = None,
) -> ClientIDMetadataDocument:
    """Build the document a client publishes at ``client_url``.

    Args:
        client_url: HTTPS URL (or localhost) that serves as the client_id
        redirect_uris: Redirect URIs the client will use

    Raises:
        CIMDError: CIMD_INVALID_URL if ``client_url`` is not HTTPS or localhost
    """
    if not is_secure_url(client_url):
        raise CIMDError(
            f"Client ID must be an HTTPS URL (or localhost): {client_url}",
            ErrorCode.CIMD_INVALID_URL,
        )

    return ClientIDMetadataDocument(
        client_id=client_url,
        client_uri=client_url,
        client_name=client_name,
        redirect_uris=redirect_uris,
        grant_types=grant_types or ["authorization_code", "refresh_token"],
        response_types=["code"],
        scope=scope,
        contacts=contacts,
        logo_uri=logo_uri,
        policy_uri=policy_uri,
        tos_uri=tos_uri,
        software_id=software_id,
        software_version=software_version,
        code_challenge_methods_supported=["S256"],
    )


def validate_client_id_metadata(
    document: Mapping[str, Any] | ClientIDMetadataDocument,
    expected_client_id: str | None = None,
) -> ClientIDMetadataDocument:
    """Validate a CIMD and return it as a typed document.

    Args:
        document: Raw JSON object or an already typed document
        expected_client_id: The URL the document was fetched from

    Returns:
        The validated document

    Raises:
        CIMDError: CIMD_INVALID, CIMD_CLIENT_ID_MISMATCH or
            CIMD_REDIRECT_ORIGIN_MISMATCH
    """
    if isinstance(document, ClientIDMetadataDocument):
        data = document.model_dump(exclude_none=True)
    elif isinstance(document, Mapping):
        data = dict(document)
    else:
        raise CIMDError("Client metadata must be a JSON object", ErrorCode.CIMD_INVALID)

    client_id = data.get("client_id")
    if not isinstance(client_id, str) or not client_id:
        raise CIMDError("Missing client_id in metadata", ErrorCode.CIMD_INVALID)

    client = _parse_url(client_id)
    if client is None:
        raise CIMDError(
            f"client_id is not a valid URL: {client_id}", ErrorCode.CIMD_INVALID
        )

    if expected_client_id is not None and client_id != expected_client_id:
        raise CIMDError(
            f"client_id mismatch: expected {expected_client_id}, got {client_id}",
            ErrorCode.CIMD_CLIENT_ID_MISMATCH,
            details={"expected": expected_client_id, "actual": client_id},
        )

    redirect_uris = data.get("redirect_uris")
    if not isinstance(redirect_uris, list) or not redirect_uris:
        raise CIMDError(
            "redirect_uris must be a non-empty array", ErrorCode.CIMD_INVALID
        )

    for redirect_uri in redirect_uris:
        _check_redirect_uri(redirect_uri, client)

    grant_types = data.get("grant_types")
    if grant_types is not None:
        if not isinstance(grant_types, list):
            raise CIMDError("grant_types must be an array", ErrorCode.CIMD_INVALID)
        for grant_type in grant_types:
            if grant_type not in ALLOWED_GRANT_TYPES:
                raise CIMDError(
                    f"Unsupported grant_type: {grant_type}", ErrorCode.CIMD_INVALID
                )

    try:
        return ClientIDMetadataDocument.model_validate(data)
    except ValidationError as e:
        raise CIMDError(f"Invalid client metadata: {e}", ErrorCode.CIMD_INVALID) from e


def supports_cimd(as_metadata: AuthorizationServerMetadata) -> bool:
    """Return True if the authorization server accepts URL client_ids."""
    return as_metadata.client_id_metadata_document_supported is True


def get_cimd_well_known_url(base_url: str) -> str:
    """Conventional CIMD location for a client hosted at ``base_url``."""
    parsed = urlparse(base_url)
    return f"{parsed.scheme}://{parsed.netloc}{CIMD_WELL_KNOWN_PATH}"


def is_safe_to_fetch(url: str) -> bool:
    """Advisory SSRF check for a URL about to be fetched.

    Loopback names are always allowed. Private, link-local and unique-local
    address literals and cloud metadata hostnames are blocked. Hostnames are
    not resolved, so DNS rebinding is not detected here.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https") or not hostname:
        return False

    hostname = hostname.lower()
    if hostname in LOCALHOST_NAMES:
        return True
    if hostname in _METADATA_HOSTNAMES:
        return False

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        # Not an IP literal
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped

    return not any(ip in network for network in _BLOCKED_NETWORKS)


class ClientIDMetadataFetcher:
    """Fetches and validates Client ID Metadata Documents.

    Enforces HTTPS (except localhost), an SSRF guard and a response size
    cap checked against both ``Content-Length`` and the bytes actually read.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_size: int = CIMD_MAX_SIZE_BYTES,
        block_unsafe_urls: bool = True,
    ):
        """Initialize the fetcher.

        Args:
            timeout: HTTP request timeout in seconds
            max_size: Maximum document size in bytes
            block_unsafe_urls: Reject URLs that fail ``is_safe_to_fetch``
        """
        self.timeout = timeout
        self.max_size = max_size
        self.block_unsafe_urls = block_unsafe_urls
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def fetch(self, client_id: str) -> ClientIDMetadataDocument:
        """Fetch the document addressed by ``client_id`` and validate it.

        Raises:
            CIMDError: CIMD_INVALID_URL, CIMD_INSECURE_URL, CIMD_TOO_LARGE,
                CIMD_FETCH_FAILED or any validation code
        """
        if _parse_url(client_id) is None:
            raise CIMDError(
                f"Invalid client_id URL: {client_id}", ErrorCode.CIMD_INVALID_URL
            )
        if not is_secure_url(client_id):
            raise CIMDError(
                f"Client ID must use HTTPS: {client_id}", ErrorCode.CIMD_INSECURE_URL
            )
        if self.block_unsafe_urls and not is_safe_to_fetch(client_id):
            raise CIMDError(
                f"Refusing to fetch client metadata from {client_id}",
                ErrorCode.CIMD_INSECURE_URL,
            )

        logger.debug(f"Fetching client metadata document: {client_id}")

        try:
            # Bounds the whole streamed read, not each phase
            body = await asyncio.wait_for(
                self._read_capped(client_id), timeout=self.timeout
            )
        except AuthError:
            raise
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            raise CIMDError(
                f"Failed to fetch client metadata from {client_id}: {e!r}",
                ErrorCode.CIMD_FETCH_FAILED,
            ) from e

        text = body.decode("utf-8", errors="replace")
        if len(text) > self.max_size:
            raise CIMDError(
                f"Client metadata exceeds {self.max_size} bytes",
                ErrorCode.CIMD_TOO_LARGE,
            )

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CIMDError(
                f"Client metadata is not valid JSON: {e}", ErrorCode.CIMD_INVALID
            ) from e

        document = validate_client_id_metadata(data, client_id)
        logger.info(f"Validated client metadata document for {client_id}")
        return document

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _read_capped(self, url: str) -> bytes:
        async with self._http_client.stream(
            "GET", url, headers={"Accept": "application/json"}
        ) as response:
            if not response.is_success:
                raise CIMDError(
                    f"Failed to fetch client metadata: HTTP {response.status_code}",
                    ErrorCode.CIMD_FETCH_FAILED,
                    details={"status": response.status_code},
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                if int(content_length) > self.max_size:
                    raise CIMDError(
                        f"Client metadata too large: {content_length} bytes",
                        ErrorCode.CIMD_TOO_LARGE,
                    )

            chunks = bytearray()
            async for chunk in response.aiter_bytes():
                chunks.extend(chunk)
                if len(chunks) > self.max_size:
                    raise CIMDError(
                        f"Client metadata exceeds {self.max_size} bytes",
                        ErrorCode.CIMD_TOO_LARGE,
                    )
            return bytes(chunks)


def _parse_url(url: str) -> ParseResult | None:
    """Return the parsed URL if it has a scheme and host, else None."""
    try:
        parsed = urlparse(url)
        parsed.port  # raises on a malformed port
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc or not parsed.hostname:
        return None
    return parsed


def _check_redirect_uri(redirect_uri: Any, client: ParseResult) -> None:
    if not isinstance(redirect_uri, str):
        raise CIMDError(
            f"Invalid redirect_uri: {redirect_uri!r}", ErrorCode.CIMD_INVALID
        )

    redirect = _parse_url(redirect_uri)
    if redirect is None:
        raise CIMDError(f"Invalid redirect_uri: {redirect_uri}", ErrorCode.CIMD_INVALID)

    if redirect.hostname in LOCALHOST_NAMES:
        return

    same_origin = _origin(redirect) == _origin(client)
    same_host = _host(redirect) == _host(client)
    if not same_origin and not same_host:
        raise CIMDError(
            f"redirect_uri {redirect_uri} does not share the client_id origin",
            ErrorCode.CIMD_REDIRECT_ORIGIN_MISMATCH,
            details={"redirect_uri": redirect_uri},
        )


_DEFAULT_PORTS = {"http": 80, "https": 443}


def _origin(parsed: ParseResult) -> tuple[str, str | None, int | None]:
    scheme = parsed.scheme.lower()
    return scheme, parsed.hostname, parsed.port or _DEFAULT_PORTS.get(scheme)


def _host(parsed: ParseResult) -> str:
    # hostname[:port] without userinfo
    if parsed.port is None:
        return parsed.hostname or ""
    return f"{parsed.hostname}:{parsed.port}"
