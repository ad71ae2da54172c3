"""OAuth 2.1 server discovery service.

Implements RFC 9728 (Protected Resource Metadata) and RFC 8414
(Authorization Server Metadata) discovery to find the OAuth endpoints and
capabilities behind an MCP server.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from mcpauth.models.discovery import (
    AuthorizationServerMetadata,
    DiscoveryResult,
    ProtectedResourceMetadata,
)
from mcpauth.models.errors import AuthError, DiscoveryError, ErrorCode
from mcpauth.primitives.discovery import (
    build_authorization_server_metadata_urls,
    build_protected_resource_metadata_url,
    parse_www_authenticate,
)
from mcpauth.primitives.pkce import require_s256_support

logger = logging.getLogger(__name__)


class OAuth2Discovery:
    """Handles OAuth 2.1 server discovery for MCP authorization.

    Implements the two-step discovery process:
    1. Protected Resource Metadata (RFC 9728) - find authorization servers
    2. Authorization Server Metadata (RFC 8414) - find OAuth endpoints

    Each request is bounded by ``timeout``. Nothing is retried.
    """

    def __init__(self, timeout: float = 10.0):
        """Initialize OAuth discovery.

        Args:
            timeout: HTTP request timeout in seconds, per attempt
        """
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> OAuth2Discovery:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def fetch_authorization_server_metadata(
        self, issuer: str
    ) -> AuthorizationServerMetadata:
        """Fetch RFC 8414 metadata, falling back to OpenID configuration.

        The first 2xx JSON response wins and is validated immediately; an invalid
        document or an issuer mismatch is not masked by trying the next URL.
        A 2xx body that is not JSON counts as a failed attempt.

        Args:
            issuer: Authorization server issuer identifier

        Returns:
            Validated authorization server metadata

        Raises:
            DiscoveryError: DISCOVERY_INVALID_METADATA,
                DISCOVERY_ISSUER_MISMATCH or DISCOVERY_FAILED
        """
        discovery_urls = build_authorization_server_metadata_urls(issuer)
        last_error: Exception | None = None

        for url in discovery_urls:
            try:
                logger.debug(f"Trying authorization server metadata discovery: {url}")
                response = await self._get(url)

                if not response.is_success:
                    last_error = DiscoveryError(
                        f"HTTP {response.status_code} from {url}",
                        ErrorCode.DISCOVERY_FAILED,
                    )
                    continue

                try:
                    payload = response.json()
                except ValueError as e:
                    logger.debug(f"Non-JSON metadata response from {url}")
                    last_error = e
                    continue

                metadata = self._parse_authorization_server_metadata(payload, url)
                self._check_issuer(issuer, metadata)

                logger.debug(
                    f"Discovered authorization server metadata from: {url}"
                )
                return metadata

            except AuthError:
                raise
            except (httpx.HTTPError, asyncio.TimeoutError) as e:
                logger.debug(f"Network error fetching {url}: {e!r}")
                last_error = e
                continue

        raise DiscoveryError(
            f"Failed to discover authorization server metadata for {issuer}. "
            f"Tried URLs: {discovery_urls}",
            ErrorCode.DISCOVERY_FAILED,
            details={"last_error": str(last_error) if last_error else None},
        )

    async def fetch_protected_resource_metadata(
        self, resource_url: str
    ) -> ProtectedResourceMetadata:
        """Fetch RFC 9728 metadata from the resource's well-known URL.

        Raises:
            DiscoveryError: DISCOVERY_PRM_FAILED or DISCOVERY_INVALID_PRM
        """
        metadata_url = build_protected_resource_metadata_url(resource_url)
        return await self.fetch_protected_resource_metadata_from_url(metadata_url)

    async def fetch_protected_resource_metadata_from_url(
        self, metadata_url: str
    ) -> ProtectedResourceMetadata:
        """Fetch and validate PRM from an explicit URL.

        Used with the ``resource_metadata`` URL of a 401 challenge.
        """
        try:
            logger.debug(f"Fetching protected resource metadata from: {metadata_url}")
            response = await self._get(metadata_url)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            raise DiscoveryError(
                f"Failed to fetch protected resource metadata from {metadata_url}: "
                f"{e!r}",
                ErrorCode.DISCOVERY_PRM_FAILED,
            ) from e

        if not response.is_success:
            raise DiscoveryError(
                f"Failed to fetch protected resource metadata from {metadata_url}: "
                f"HTTP {response.status_code}",
                ErrorCode.DISCOVERY_PRM_FAILED,
                details={"status": response.status_code},
            )

        try:
            metadata = ProtectedResourceMetadata.model_validate_json(response.text)
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid protected resource metadata from {metadata_url}: {e}",
                ErrorCode.DISCOVERY_INVALID_PRM,
            ) from e

        logger.debug(
            f"Discovered protected resource metadata: "
            f"{len(metadata.authorization_servers)} auth servers"
        )
        return metadata

    async def discover_auth_from_mcp_server(
        self, mcp_server_url: str
    ) -> DiscoveryResult:
        """Run the full discovery chain for an MCP server URL.

        PRM, then the first listed authorization server's metadata, then a
        mandatory S256 support check.

        Raises:
            DiscoveryError: If any discovery step fails
            PKCEError: If the authorization server does not advertise S256
        """
        prm = await self.fetch_protected_resource_metadata(mcp_server_url)
        return await self._complete_discovery(prm)

    async def discover_from_401(self, response: httpx.Response) -> DiscoveryResult:
        """Discover OAuth configuration from a 401 Unauthorized response.

        Uses the ``resource_metadata`` URL of the Bearer challenge when
        present, otherwise falls back to well-known discovery on the
        request URL.
        """
        if response.status_code != 401:
            raise DiscoveryError(
                f"Expected 401 response, got {response.status_code}",
                ErrorCode.DISCOVERY_FAILED,
            )

        challenge = parse_www_authenticate(response.headers.get("WWW-Authenticate"))
        if challenge:
            logger.debug(
                "Found resource metadata URL in WWW-Authenticate: "
                f"{challenge.resource_metadata}"
            )
            prm = await self.fetch_protected_resource_metadata_from_url(
                challenge.resource_metadata
            )
        else:
            logger.debug(
                "No resource metadata URL in WWW-Authenticate, using well-known URL"
            )
            prm = await self.fetch_protected_resource_metadata(
                str(response.request.url)
            )

        return await self._complete_discovery(prm)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _complete_discovery(
        self, prm: ProtectedResourceMetadata
    ) -> DiscoveryResult:
        auth_server_url = prm.authorization_servers[0]
        if not auth_server_url:
            raise DiscoveryError(
                f"No authorization server listed for {prm.resource}",
                ErrorCode.DISCOVERY_NO_AUTH_SERVER,
            )

        asm = await self.fetch_authorization_server_metadata(auth_server_url)
        require_s256_support(asm.code_challenge_methods_supported)

        logger.info(f"Discovered authorization server {asm.issuer} for {prm.resource}")
        return DiscoveryResult(protected_resource=prm, authorization_server=asm)

    async def _get(self, url: str) -> httpx.Response:
        # The client timeout applies per phase; this bounds the whole attempt
        return await asyncio.wait_for(
            self._http_client.get(url, headers={"Accept": "application/json"}),
            timeout=self.timeout,
        )

    def _parse_authorization_server_metadata(
        self, payload: object, url: str
    ) -> AuthorizationServerMetadata:
        try:
            return AuthorizationServerMetadata.model_validate(payload)
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid authorization server metadata from {url}: {e}",
                ErrorCode.DISCOVERY_INVALID_METADATA,
            ) from e

    def _check_issuer(
        self, issuer: str, metadata: AuthorizationServerMetadata
    ) -> None:
        if metadata.issuer.rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(
                f"Issuer mismatch: expected {issuer}, got {metadata.issuer}",
                ErrorCode.DISCOVERY_ISSUER_MISMATCH,
                details={"expected": issuer, "actual": metadata.issuer},
            )
