"""Authorization server provider for Ory Hydra and Ory Network.

Runs the OAuth 2.1 authorization code flow with mandatory PKCE against a
self-hosted Hydra deployment (``hydra``) or a managed Ory Network project
(``network``), plus refresh, introspection and revocation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import ValidationError

from mcpauth.models.discovery import AuthorizationServerMetadata
from mcpauth.models.errors import (
    AuthorizationCallbackError,
    ConfigError,
    ErrorCode,
    IntrospectionError,
    RevocationError,
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
)
from mcpauth.models.flow import (
    AuthorizationRequest,
    AuthorizationResponse,
    AuthorizationState,
)
from mcpauth.models.security import ClientCredentials
from mcpauth.models.tokens import (
    TokenIntrospectionResponse,
    TokenResponse,
    parse_error_body,
)
from mcpauth.primitives.pkce import generate_pkce
from mcpauth.primitives.security import (
    create_basic_auth_header,
    generate_nonce,
    generate_state,
    validate_state,
)
from mcpauth.services.discovery import OAuth2Discovery

logger = logging.getLogger(__name__)

ProviderType = Literal["hydra", "network"]

DEFAULT_SCOPES = ["openid"]
HYDRA_INTROSPECTION_PATH = "/admin/oauth2/introspect"


@dataclass(frozen=True)
class OryProviderConfig:
    """Provider configuration.

    ``network`` mode needs ``network_project_url``; ``hydra`` mode needs
    ``hydra_public_url``. Hydra does not advertise its admin introspection
    endpoint in discovery; when ``hydra_admin_url`` is set,
    ``introspect_token`` falls back to ``<hydra_admin_url>/admin/oauth2/introspect``.
    """

    provider_type: ProviderType
    client_id: str
    redirect_uris: list[str]
    client_secret: str | None = None
    scopes: list[str] | None = None

    # Ory Network
    network_project_url: str | None = None
    network_project_api_key: str | None = None

    # Ory Hydra
    hydra_public_url: str | None = None
    hydra_admin_url: str | None = None
    hydra_api_key: str | None = None

    resource: str | None = None  # RFC 8707


class OryProvider:
    """OAuth 2.1 client for an Ory authorization server.

    Authorization server metadata is discovered on first use and memoized.
    The ``AuthorizationState`` returned by ``build_authorization_url`` must be
    persisted by the caller, keyed by its ``state``, until the callback.
    """

    def __init__(
        self,
        config: OryProviderConfig,
        timeout: float = 10.0,
        discovery: OAuth2Discovery | None = None,
    ):
        self._validate_config(config)
        self.config = config
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)
        self._discovery = discovery or OAuth2Discovery(timeout=timeout)
        self._metadata: AuthorizationServerMetadata | None = None

    @property
    def issuer(self) -> str:
        if self.config.provider_type == "network":
            return self.config.network_project_url
        return self.config.hydra_public_url

    @property
    def admin_url(self) -> str:
        if self.config.provider_type == "network":
            return self.config.network_project_url
        return self.config.hydra_admin_url or self.config.hydra_public_url

    async def get_introspection_endpoint(self) -> str | None:
        metadata = await self.get_metadata()
        if metadata.introspection_endpoint:
            return metadata.introspection_endpoint
        if self.config.provider_type == "hydra" and self.config.hydra_admin_url:
            return f"{self.admin_url.rstrip('/')}{HYDRA_INTROSPECTION_PATH}"
        return None

    async def initialize(self) -> None:
        """Fetch authorization server metadata."""
        self._metadata = await self._discovery.fetch_authorization_server_metadata(
            self.issuer
        )

    async def get_metadata(self) -> AuthorizationServerMetadata:
        if self._metadata is None:
            await self.initialize()
        return self._metadata

    async def build_authorization_url(
        self, redirect_uri: str, scopes: list[str] | None = None
    ) -> tuple[str, AuthorizationState]:
        """Start an authorization code flow.

        Args:
            redirect_uri: Callback URL
            scopes: Scopes to request, defaulting to the configured scopes

        Returns:
            Tuple of (authorization_url, auth_state)
        """
        metadata = await self.get_metadata()

        auth_request = AuthorizationRequest(
            authorization_endpoint=metadata.authorization_endpoint,
            client_id=self.config.client_id,
            redirect_uri=redirect_uri,
            pkce=generate_pkce(),
            state=generate_state(),
            scopes=scopes or self.config.scopes or DEFAULT_SCOPES,
            resource=self.config.resource,
            nonce=generate_nonce(),
        )

        logger.info(f"Generated authorization URL for client {self.config.client_id}")
        return auth_request.build_authorization_url(), auth_request.to_state()

    def handle_callback(
        self, callback_url: str, auth_state: AuthorizationState
    ) -> AuthorizationResponse:
        """Parse the authorization callback and check its state.

        Returns:
            The successful response carrying the authorization code

        Raises:
            AuthorizationCallbackError: On a missing or mismatched state, an
                error response, or a response without a code
        """
        response = parse_authorization_callback(callback_url)
        validate_state(auth_state.state, response.state)

        if response.is_error():
            logger.warning(
                f"Authorization callback contained error: {response.error} - "
                f"{response.error_description}"
            )
            raise AuthorizationCallbackError(
                response.error_description or response.error,
                response.error,
                details={"error_uri": response.error_uri},
            )
        if response.code is None:
            raise AuthorizationCallbackError(
                "Missing authorization code", ErrorCode.INVALID_CALLBACK
            )

        return response

    async def exchange_code(
        self, code: str, auth_state: AuthorizationState
    ) -> TokenResponse:
        """Exchange an authorization code using the flow's PKCE verifier.

        Raises:
            TokenExchangeError: With the provider's ``error`` as code when it
                sent one, otherwise TOKEN_EXCHANGE_FAILED
        """
        metadata = await self.get_metadata()
        form_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": auth_state.redirect_uri,
            "client_id": self.config.client_id,
            "code_verifier": auth_state.pkce.code_verifier,
        }
        if self.config.resource:
            form_data["resource"] = self.config.resource

        return await self._token_request(
            metadata.token_endpoint,
            form_data,
            TokenExchangeError,
            ErrorCode.TOKEN_EXCHANGE_FAILED,
        )

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Refresh an access token.

        Raises:
            TokenRefreshError: With the provider's ``error`` as code when it
                sent one, otherwise TOKEN_REFRESH_FAILED
        """
        metadata = await self.get_metadata()
        form_data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
        }
        if self.config.resource:
            form_data["resource"] = self.config.resource

        return await self._token_request(
            metadata.token_endpoint,
            form_data,
            TokenRefreshError,
            ErrorCode.TOKEN_REFRESH_FAILED,
        )

    async def introspect_token(self, token: str) -> TokenIntrospectionResponse:
        """Introspect a token at the discovered introspection endpoint.

        Falls back to the Hydra admin endpoint when ``hydra_admin_url`` is
        configured and discovery advertises none.

        Raises:
            IntrospectionError: INTROSPECTION_NOT_SUPPORTED when no endpoint is
                known, INTROSPECTION_FAILED otherwise
        """
        endpoint = await self.get_introspection_endpoint()
        if not endpoint:
            raise IntrospectionError(
                "Token introspection endpoint not available",
                ErrorCode.INTROSPECTION_NOT_SUPPORTED,
            )

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        authorization = self._admin_authorization()
        if authorization:
            headers["Authorization"] = authorization

        try:
            response = await self._http_client.post(
                endpoint, data={"token": token}, headers=headers
            )
        except httpx.HTTPError as e:
            raise IntrospectionError(
                f"HTTP error during token introspection: {e}",
                ErrorCode.INTROSPECTION_FAILED,
            ) from e

        if not response.is_success:
            raise IntrospectionError(
                f"Token introspection failed: HTTP {response.status_code}",
                ErrorCode.INTROSPECTION_FAILED,
                details={"status": response.status_code},
            )

        try:
            return TokenIntrospectionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IntrospectionError(
                f"Invalid introspection response format: {e}",
                ErrorCode.INTROSPECTION_FAILED,
            ) from e

    async def revoke_token(
        self,
        token: str,
        token_type_hint: Literal["access_token", "refresh_token"] | None = None,
    ) -> None:
        """Revoke a token (RFC 7009).

        Raises:
            RevocationError: REVOCATION_NOT_SUPPORTED when no endpoint is
                advertised, REVOCATION_FAILED otherwise
        """
        metadata = await self.get_metadata()
        if not metadata.revocation_endpoint:
            raise RevocationError(
                "Token revocation endpoint not available",
                ErrorCode.REVOCATION_NOT_SUPPORTED,
            )

        form_data = {"token": token}
        if token_type_hint:
            form_data["token_type_hint"] = token_type_hint

        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        self._add_client_auth(headers, form_data)

        try:
            response = await self._http_client.post(
                metadata.revocation_endpoint, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise RevocationError(
                f"HTTP error during token revocation: {e}",
                ErrorCode.REVOCATION_FAILED,
            ) from e

        if not response.is_success:
            raise RevocationError(
                f"Token revocation failed: HTTP {response.status_code}",
                ErrorCode.REVOCATION_FAILED,
                details={"status": response.status_code},
            )

        logger.info(f"Revoked {token_type_hint or 'token'}")

    async def close(self) -> None:
        """Close HTTP clients."""
        await self._http_client.aclose()
        await self._discovery.close()

    async def _token_request(
        self,
        token_endpoint: str,
        form_data: dict[str, str],
        error_class: type[TokenError],
        default_code: ErrorCode,
    ) -> TokenResponse:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        self._add_client_auth(headers, form_data)

        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={self.config.client_id}"
        )

        try:
            response = await self._http_client.post(
                token_endpoint, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise error_class(
                f"HTTP error during token request: {e}", default_code
            ) from e

        if not response.is_success:
            error_data = parse_error_body(response)
            message = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"Token request failed with HTTP {response.status_code}"
            )
            logger.warning(
                f"Token request failed with {response.status_code}: {message}"
            )
            raise error_class(
                message, error_data.get("error") or default_code, details=error_data
            )

        try:
            token = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise error_class(
                f"Invalid token response format: {e}", default_code
            ) from e

        logger.info(f"Token request successful ({form_data['grant_type']})")
        return token

    def _add_client_auth(
        self, headers: dict[str, str], form_data: dict[str, str]
    ) -> None:
        if self.config.client_secret:
            headers["Authorization"] = create_basic_auth_header(
                ClientCredentials(self.config.client_id, self.config.client_secret)
            )
        else:
            form_data.setdefault("client_id", self.config.client_id)

    def _admin_authorization(self) -> str | None:
        config = self.config
        if config.provider_type == "network" and config.network_project_api_key:
            return f"Bearer {config.network_project_api_key}"
        if self.config.hydra_api_key:
            return f"Bearer {self.config.hydra_api_key}"
        if self.config.client_secret:
            return create_basic_auth_header(
                ClientCredentials(self.config.client_id, self.config.client_secret)
            )
        return None

    @staticmethod
    def _validate_config(config: OryProviderConfig) -> None:
        if config.provider_type == "network":
            if not config.network_project_url:
                raise ConfigError(
                    "network_project_url is required for Ory Network provider",
                    ErrorCode.CONFIG_INVALID,
                )
        elif config.provider_type == "hydra":
            if not config.hydra_public_url:
                raise ConfigError(
                    "hydra_public_url is required for Ory Hydra provider",
                    ErrorCode.CONFIG_INVALID,
                )
        else:
            raise ConfigError(
                f"Unknown provider type: {config.provider_type}",
                ErrorCode.CONFIG_INVALID,
            )

        if not config.client_id:
            raise ConfigError("client_id is required", ErrorCode.CONFIG_INVALID)
        if not config.redirect_uris:
            raise ConfigError(
                "At least one redirect URI is required", ErrorCode.CONFIG_INVALID
            )


def parse_authorization_callback(callback_url: str) -> AuthorizationResponse:
    """Parse OAuth callback URL into AuthorizationResponse.

    Raises:
        AuthorizationCallbackError: If URL is malformed
    """
    try:
        parsed = urlparse(callback_url)
        query_params = parse_qs(parsed.query)
    except ValueError as e:
        raise AuthorizationCallbackError(
            f"Malformed callback URL: {e}", ErrorCode.INVALID_CALLBACK
        ) from e

    # Extract single values from query parameter lists
    def get_single_param(key: str) -> str | None:
        values = query_params.get(key, [])
        return values[0] if values else None

    return AuthorizationResponse(
        code=get_single_param("code"),
        state=get_single_param("state"),
        error=get_single_param("error"),
        error_description=get_single_param("error_description"),
        error_uri=get_single_param("error_uri"),
    )


def create_ory_network_provider(
    project_url: str,
    client_id: str,
    redirect_uris: list[str],
    api_key: str | None = None,
    client_secret: str | None = None,
    scopes: list[str] | None = None,
    resource: str | None = None,
) -> OryProvider:
    return OryProvider(
        OryProviderConfig(
            provider_type="network",
            network_project_url=project_url,
            network_project_api_key=api_key,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uris=redirect_uris,
            scopes=scopes,
            resource=resource,
        )
    )


def create_ory_hydra_provider(
    public_url: str,
    client_id: str,
    redirect_uris: list[str],
    admin_url: str | None = None,
    api_key: str | None = None,
    client_secret: str | None = None,
    scopes: list[str] | None = None,
    resource: str | None = None,
) -> OryProvider:
    return OryProvider(
        OryProviderConfig(
            provider_type="hydra",
            hydra_public_url=public_url,
            hydra_admin_url=admin_url,
            hydra_api_key=api_key,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uris=redirect_uris,
            scopes=scopes,
            resource=resource,
        )
    )
