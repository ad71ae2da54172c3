"""Wiring that protects an MCP server endpoint.

``create_mcp_server_auth`` composes the resource description, metadata
document, token cache, cached introspection validator and middleware from a
single ``MCPServerAuthConfig``.
"""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse

from mcpauth.models.discovery import ProtectedResourceMetadata
from mcpauth.primitives.discovery import PROTECTED_RESOURCE_PATH
from mcpauth.server.asgi import ProtectedPathMiddleware
from mcpauth.server.cache import CachedValidator, TokenCache
from mcpauth.server.config import (
    DEFAULT_AUTH_SERVER_URL,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CLIENT_ID,
    DEFAULT_CLIENT_SECRET,
    DEFAULT_INTROSPECTION_URL,
    MCPServerAuthConfig,
    ServerAuthSettings,
)
from mcpauth.server.introspection import IntrospectionValidator
from mcpauth.server.middleware import (
    PRM_CACHE_CONTROL,
    AudiencePolicy,
    AuthenticatedRequest,
    AuthMiddleware,
    AuthRequest,
    AuthResponse,
    ResourceServerConfig,
)

logger = logging.getLogger(__name__)


class MCPServerAuth:
    """Authentication for one protected MCP resource.

    Attributes:
        config: The configuration this instance was built from
        resource: Resource description used in metadata and challenges
        protected_resource_metadata: Document served at the well-known path
        token_cache: Introspection cache, owned by this instance
        validate_token: Cache-backed introspection validator
        middleware: Framework-neutral authentication middleware
    """

    def __init__(self, config: MCPServerAuthConfig):
        self.config = config
        self.enabled = config.enabled

        self.resource = ResourceServerConfig(
            resource_identifier=config.resource_url,
            authorization_servers=[config.auth_server_url],
            scopes_supported=config.scopes_supported or config.required_scopes,
            bearer_methods_supported=["header"],
        )
        self.protected_resource_metadata: ProtectedResourceMetadata = (
            self.resource.to_metadata()
        )

        self.token_cache = TokenCache(config.cache_ttl_seconds)
        self.introspection = IntrospectionValidator(
            config.introspection_endpoint,
            config.client_id,
            config.client_secret,
            timeout=config.introspection_timeout,
        )
        self.validate_token = CachedValidator(self.introspection, self.token_cache)

        self.middleware = AuthMiddleware(
            self.resource,
            self.validate_token,
            required_scopes=config.required_scopes,
            audience_policy=AudiencePolicy(config.allowed_audiences),
        )

    async def authenticate(
        self, request: AuthRequest
    ) -> AuthenticatedRequest | AuthResponse | None:
        """Run the middleware, or return None when auth is disabled."""
        if not self.enabled:
            return None
        return await self.middleware(request)

    async def metadata_endpoint(self, request: Request) -> JSONResponse:
        return JSONResponse(
            self.protected_resource_metadata.to_json_dict(),
            headers={"Cache-Control": PRM_CACHE_CONTROL},
        )

    def setup_starlette(self, app: Starlette, mcp_path: str = "/mcp") -> None:
        """Register the metadata route and protect ``mcp_path``.

        The metadata route is always registered. The middleware is only
        installed when auth is enabled. Must be called before the app
        starts serving.
        """
        metadata_paths = [self.resource.metadata_path]
        if PROTECTED_RESOURCE_PATH not in metadata_paths:
            metadata_paths.append(PROTECTED_RESOURCE_PATH)
        for path in metadata_paths:
            app.router.add_route(path, self.metadata_endpoint, methods=["GET"])

        if self.enabled:
            app.add_middleware(
                ProtectedPathMiddleware, auth_middleware=self.middleware, path=mcp_path
            )

        logger.info(f"Protected Resource Metadata: {self.resource.metadata_url}")
        logger.info(f"Authorization Server: {self.config.auth_server_url}")
        logger.info(
            f"Auth {'enabled' if self.enabled else 'disabled'} for {mcp_path}"
        )

    async def close(self) -> None:
        await self.introspection.close()


def create_mcp_server_auth(config: MCPServerAuthConfig) -> MCPServerAuth:
    return MCPServerAuth(config)


def create_mcp_server_auth_from_env(
    resource_url: str,
    auth_server_url: str | None = None,
    introspection_endpoint: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
    required_scopes: list[str] | None = None,
    scopes_supported: list[str] | None = None,
    cache_ttl_seconds: float | None = None,
    settings: ServerAuthSettings | None = None,
) -> MCPServerAuth:
    """Build server auth from environment variables over the given defaults.

    Environment values win over arguments, which win over the built-in
    local development defaults.
    """
    settings = settings or ServerAuthSettings()

    config = MCPServerAuthConfig(
        resource_url=settings.resource_url or resource_url,
        auth_server_url=(
            settings.auth_server_url or auth_server_url or DEFAULT_AUTH_SERVER_URL
        ),
        introspection_endpoint=(
            settings.introspection_url
            or introspection_endpoint
            or DEFAULT_INTROSPECTION_URL
        ),
        client_id=settings.auth_client_id or client_id or DEFAULT_CLIENT_ID,
        client_secret=settings.client_secret or client_secret or DEFAULT_CLIENT_SECRET,
        required_scopes=settings.required_scopes or required_scopes,
        scopes_supported=scopes_supported,
        cache_ttl_seconds=(
            settings.cache_ttl_seconds or cache_ttl_seconds or DEFAULT_CACHE_TTL_SECONDS
        ),
        enabled=settings.enabled,
    )
    return create_mcp_server_auth(config)
