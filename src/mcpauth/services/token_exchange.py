"""OAuth 2.0 Token Exchange (RFC 8693).

Lets a service trade a token it holds for one scoped to another audience,
such as a downstream MCP server, optionally recording an acting party
(delegation) or not (impersonation).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from mcpauth.models.errors import AuthError, ErrorCode, TokenExchangeError
from mcpauth.models.security import ClientCredentials
from mcpauth.models.tokens import (
    TokenExchangeOptions,
    TokenExchangeResponse,
    TokenType,
    parse_error_body,
)
from mcpauth.primitives.security import create_basic_auth_header

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """Performs RFC 8693 token exchanges against a token endpoint.

    Confidential clients authenticate with HTTP Basic; public clients send
    ``client_id`` in the form body.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def exchange_token(
        self,
        token_endpoint: str,
        options: TokenExchangeOptions,
        client_credentials: ClientCredentials | None = None,
    ) -> TokenExchangeResponse:
        """Exchange a subject token for a new token.

        Args:
            token_endpoint: Authorization server token endpoint
            options: Exchange parameters
            client_credentials: Optional client authentication

        Returns:
            TokenExchangeResponse: The issued token

        Raises:
            TokenExchangeError: With the provider's ``error`` as code when it
                sent one, otherwise TOKEN_EXCHANGE_FAILED
        """
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        form_data = options.to_form_data()

        if client_credentials:
            if client_credentials.client_secret:
                headers["Authorization"] = create_basic_auth_header(client_credentials)
            else:
                form_data["client_id"] = client_credentials.client_id

        logger.debug(
            f"Token exchange request: endpoint={token_endpoint}, "
            f"audience={form_data.get('audience', 'none')}, "
            f"resource={form_data.get('resource', 'none')}"
        )

        try:
            response = await self._http_client.post(
                token_endpoint, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(
                f"HTTP error during token exchange: {e}",
                ErrorCode.TOKEN_EXCHANGE_FAILED,
            ) from e

        if not response.is_success:
            error_data = parse_error_body(response)
            error_code = error_data.get("error") or ErrorCode.TOKEN_EXCHANGE_FAILED
            message = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"Token exchange failed with HTTP {response.status_code}"
            )
            logger.warning(
                f"Token exchange failed with {response.status_code}: {message}"
            )
            raise TokenExchangeError(message, error_code, details=error_data)

        try:
            result = TokenExchangeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenExchangeError(
                f"Invalid token exchange response format: {e}",
                ErrorCode.TOKEN_EXCHANGE_FAILED,
            ) from e

        logger.info(f"Token exchange successful, issued {result.issued_token_type}")
        return result

    async def exchange_for_mcp_server(
        self,
        token_endpoint: str,
        subject_token: str,
        mcp_server_url: str,
        scopes: list[str] | None = None,
        client_credentials: ClientCredentials | None = None,
    ) -> TokenExchangeResponse:
        """Exchange a user's access token for one bound to an MCP server."""
        options = TokenExchangeOptions(
            subject_token=subject_token,
            subject_token_type=TokenType.ACCESS_TOKEN,
            requested_token_type=TokenType.ACCESS_TOKEN,
            audience=mcp_server_url,
            scope=" ".join(scopes) if scopes else None,
        )
        return await self.exchange_token(token_endpoint, options, client_credentials)

    async def exchange_with_delegation(
        self,
        token_endpoint: str,
        user_token: str,
        service_token: str,
        target_audience: str,
        scopes: list[str] | None = None,
        client_credentials: ClientCredentials | None = None,
    ) -> TokenExchangeResponse:
        """Exchange a user token, naming the calling service as the actor."""
        options = TokenExchangeOptions(
            subject_token=user_token,
            subject_token_type=TokenType.ACCESS_TOKEN,
            requested_token_type=TokenType.ACCESS_TOKEN,
            audience=target_audience,
            scope=" ".join(scopes) if scopes else None,
            actor_token=service_token,
            actor_token_type=TokenType.ACCESS_TOKEN,
        )
        return await self.exchange_token(token_endpoint, options, client_credentials)

    async def exchange_for_impersonation(
        self,
        token_endpoint: str,
        subject_token: str,
        target_audience: str,
        scopes: list[str] | None = None,
        client_credentials: ClientCredentials | None = None,
    ) -> TokenExchangeResponse:
        """Exchange a token without recording an actor."""
        options = TokenExchangeOptions(
            subject_token=subject_token,
            subject_token_type=TokenType.ACCESS_TOKEN,
            requested_token_type=TokenType.ACCESS_TOKEN,
            audience=target_audience,
            scope=" ".join(scopes) if scopes else None,
        )
        return await self.exchange_token(token_endpoint, options, client_credentials)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()


def is_valid_token_exchange_response(response: Any) -> bool:
    """Return True if ``response`` looks like an RFC 8693 success body."""
    if not isinstance(response, Mapping):
        return False
    access_token = response.get("access_token")
    return (
        isinstance(access_token, str)
        and bool(access_token)
        and isinstance(response.get("issued_token_type"), str)
    )
