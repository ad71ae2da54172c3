"""RFC 7662 token introspection client used as the middleware's validator."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcpauth.models.errors import ErrorCode, IntrospectionError
from mcpauth.models.security import ClientCredentials
from mcpauth.models.tokens import TokenIntrospectionResponse
from mcpauth.primitives.security import create_basic_auth_header

logger = logging.getLogger(__name__)


class IntrospectionValidator:
    """Validates access tokens by asking the authorization server.

    Callable with a token, returning the introspection result. Inactive
    tokens are returned, not raised; the caller decides what to do with them.
    """

    def __init__(
        self,
        introspection_endpoint: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
    ):
        self.introspection_endpoint = introspection_endpoint
        self.timeout = timeout
        self._credentials = ClientCredentials(client_id, client_secret)
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def __call__(self, token: str) -> TokenIntrospectionResponse:
        """Introspect ``token``.

        Raises:
            IntrospectionError: INTROSPECTION_FAILED on transport errors,
                non-2xx responses or malformed bodies
        """
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "Authorization": create_basic_auth_header(self._credentials),
        }

        try:
            response = await self._http_client.post(
                self.introspection_endpoint, data={"token": token}, headers=headers
            )
        except httpx.HTTPError as e:
            raise IntrospectionError(
                f"HTTP error during token introspection: {e}",
                ErrorCode.INTROSPECTION_FAILED,
            ) from e

        if not response.is_success:
            logger.warning(f"Token introspection failed with {response.status_code}")
            raise IntrospectionError(
                f"Token introspection failed: HTTP {response.status_code}",
                ErrorCode.INTROSPECTION_FAILED,
                details={"status": response.status_code},
            )

        try:
            result = TokenIntrospectionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IntrospectionError(
                f"Invalid introspection response format: {e}",
                ErrorCode.INTROSPECTION_FAILED,
            ) from e

        logger.debug(f"Introspected token: active={result.active}")
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
