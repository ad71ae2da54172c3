"""Client credentials grant (RFC 6749 Section 4.4) for machine-to-machine auth.

``ClientCredentialsManager`` caches the issued token and re-acquires it a
configurable number of seconds before it expires.
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx
from pydantic import ValidationError

from mcpauth.models.errors import ClientCredentialsError, ErrorCode
from mcpauth.models.security import ClientCredentials
from mcpauth.models.tokens import (
    ClientCredentialsConfig,
    TokenResponse,
    parse_error_body,
)
from mcpauth.primitives.security import create_basic_auth_header

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
DEFAULT_REFRESH_BUFFER = 60


class ClientCredentialsTokenClient:
    """Requests tokens with the client_credentials grant."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def get_client_credentials_token(
        self, config: ClientCredentialsConfig
    ) -> TokenResponse:
        """Request a token with the client_credentials grant.

        Raises:
            ClientCredentialsError: With the provider's ``error`` as code when
                it sent one, otherwise CLIENT_CREDENTIALS_FAILED
        """
        credentials = ClientCredentials(config.client_id, config.client_secret)
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "Authorization": create_basic_auth_header(credentials),
        }
        form_data = config.to_form_data()

        logger.debug(
            f"Client credentials request: client_id={config.client_id}, "
            f"scope={form_data.get('scope', 'none')}"
        )

        try:
            response = await self._http_client.post(
                config.token_endpoint, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise ClientCredentialsError(
                f"HTTP error during client credentials grant: {e}",
                ErrorCode.CLIENT_CREDENTIALS_FAILED,
            ) from e

        if not response.is_success:
            error_data = parse_error_body(response)
            message = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"Client credentials grant failed with HTTP {response.status_code}"
            )
            logger.warning(f"Client credentials grant failed: {message}")
            raise ClientCredentialsError(
                message,
                error_data.get("error") or ErrorCode.CLIENT_CREDENTIALS_FAILED,
                details=error_data,
            )

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ClientCredentialsError(
                f"Invalid token response format: {e}",
                ErrorCode.CLIENT_CREDENTIALS_FAILED,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()


class ClientCredentialsManager:
    """Caches a client_credentials token and refreshes it before expiry.

    Concurrent ``get_token`` calls share a single token request.
    """

    def __init__(
        self,
        config: ClientCredentialsConfig,
        refresh_buffer: float = DEFAULT_REFRESH_BUFFER,
        token_client: ClientCredentialsTokenClient | None = None,
    ):
        """Initialize the manager.

        Args:
            config: Token endpoint and client configuration
            refresh_buffer: Re-acquire this many seconds before expiry
            token_client: Client used for token requests
        """
        self.config = config
        self.refresh_buffer = refresh_buffer
        self._token_client = token_client or ClientCredentialsTokenClient()
        self._access_token: str | None = None
        self._expires_at: float | None = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid access token, acquiring a new one if needed."""
        if self.is_valid():
            return self._access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.is_valid():
                return self._access_token
            return await self._acquire()

    async def refresh(self) -> str:
        """Force acquisition of a new token."""
        async with self._lock:
            return await self._acquire()

    def is_valid(self) -> bool:
        """Check if the cached token is usable outside the refresh buffer."""
        if not self._access_token or self._expires_at is None:
            return False
        return time.time() < self._expires_at - self.refresh_buffer

    def clear(self) -> None:
        """Drop the cached token."""
        self._access_token = None
        self._expires_at = None

    async def close(self) -> None:
        await self._token_client.close()

    async def _acquire(self) -> str:
        token = await self._token_client.get_client_credentials_token(self.config)
        self._access_token = token.access_token
        self._expires_at = token.calculate_expires_at(DEFAULT_EXPIRES_IN)
        logger.info(f"Acquired client credentials token for {self.config.client_id}")
        return self._access_token
