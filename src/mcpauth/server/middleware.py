"""Resource-server authentication middleware.

Framework-neutral core: the host framework converts its request into an
``AuthRequest`` and turns the returned ``AuthResponse`` back into its own
response type. Each request runs through a fixed sequence of checks:

1. Protected Resource Metadata request - answered directly
2. Bearer token extraction
3. Token validation (introspection, usually cache-backed)
4. Audience policy
5. Required scopes

The first failing step produces a 401 with a ``WWW-Authenticate``
challenge. Exceptions never escape ``AuthMiddleware.__call__``, including
ones raised by the ``on_error`` hook.

The challenge's ``resource_metadata`` is the RFC 9728 path-aware URL, so
``https://api.example.com/mcp`` advertises
``https://api.example.com/.well-known/oauth-protected-resource/mcp``. For a
resource at the root this is the plain well-known URL.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from mcpauth.models.discovery import (
    ProtectedResourceMetadata,
    WWWAuthenticateChallenge,
)
from mcpauth.models.errors import AuthError
from mcpauth.models.tokens import TokenIntrospectionResponse
from mcpauth.primitives.discovery import (
    build_protected_resource_metadata_url,
    build_www_authenticate,
    create_protected_resource_metadata,
    protected_resource_metadata_path,
)
from mcpauth.server.cache import TokenValidator

logger = logging.getLogger(__name__)

PRM_CACHE_CONTROL = "public, max-age=3600"


@dataclass(frozen=True)
class ResourceServerConfig:
    """How this resource describes itself to clients."""

    resource_identifier: str
    authorization_servers: list[str]
    scopes_supported: list[str] | None = None
    bearer_methods_supported: list[str] | None = None
    jwks_uri: str | None = None

    @property
    def metadata_path(self) -> str:
        return protected_resource_metadata_path(self.resource_identifier)

    @property
    def metadata_url(self) -> str:
        return build_protected_resource_metadata_url(self.resource_identifier)

    def to_metadata(self) -> ProtectedResourceMetadata:
        return create_protected_resource_metadata(
            resource=self.resource_identifier,
            authorization_servers=self.authorization_servers,
            scopes_supported=self.scopes_supported,
            bearer_methods_supported=self.bearer_methods_supported,
            jwks_uri=self.jwks_uri,
        )


@dataclass
class AuthRequest:
    """Protocol-neutral view of an inbound HTTP request."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def get_header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class AuthResponse:
    """Protocol-neutral HTTP response produced by the middleware."""

    status_code: int
    headers: dict[str, str]
    body: dict[str, Any]


@dataclass
class AuthenticatedRequest:
    """A request whose bearer token passed every check."""

    request: AuthRequest
    token_info: TokenIntrospectionResponse
    access_token: str


@dataclass(frozen=True)
class AudiencePolicy:
    """Audience (``aud``) enforcement policy.

    Without ``allowed_audiences`` the audience is only logged. With an
    allow-list, a token that carries ``aud`` must name at least one allowed
    audience. Tokens without ``aud`` always pass.
    """

    allowed_audiences: list[str] | None = None

    @property
    def enforced(self) -> bool:
        return bool(self.allowed_audiences)

    def is_satisfied_by(self, token_info: TokenIntrospectionResponse) -> bool:
        if not self.enforced:
            return True
        return any(
            has_valid_audience(token_info, audience)
            for audience in self.allowed_audiences
        )


def extract_bearer_token(request: AuthRequest) -> str | None:
    """Return the bearer token from the Authorization header, if well formed."""
    auth_header = request.get_header("Authorization")
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2:
        return None

    scheme, token = parts
    if scheme.lower() != "bearer" or not token:
        return None

    return token


def has_required_scopes(
    token_info: TokenIntrospectionResponse, required_scopes: list[str] | None
) -> bool:
    if not required_scopes:
        return True
    if not token_info.scope:
        return False
    token_scopes = set(token_info.scope.split(" "))
    return all(scope in token_scopes for scope in required_scopes)


def has_valid_audience(
    token_info: TokenIntrospectionResponse, expected_audience: str
) -> bool:
    # Tokens without an explicit audience are accepted
    if not token_info.aud:
        return True
    if isinstance(token_info.aud, list):
        return expected_audience in token_info.aud
    return token_info.aud == expected_audience


def create_unauthorized_response(
    config: ResourceServerConfig,
    error: str | None = None,
    error_description: str | None = None,
    scope: str | None = None,
) -> AuthResponse:
    """Build a 401 carrying a Bearer challenge that points at our metadata."""
    challenge = WWWAuthenticateChallenge(
        resource_metadata=config.metadata_url,
        error=error,
        error_description=error_description,
        scope=scope,
    )
    return AuthResponse(
        status_code=401,
        headers={
            "Content-Type": "application/json",
            "WWW-Authenticate": build_www_authenticate(challenge),
        },
        body={"error": "unauthorized"},
    )


def create_protected_resource_metadata_response(
    config: ResourceServerConfig,
) -> AuthResponse:
    return AuthResponse(
        status_code=200,
        headers={
            "Content-Type": "application/json",
            "Cache-Control": PRM_CACHE_CONTROL,
        },
        body=config.to_metadata().to_json_dict(),
    )


def is_protected_resource_metadata_request(
    request: AuthRequest, config: ResourceServerConfig
) -> bool:
    return request.method.upper() == "GET" and request.path == config.metadata_path


class AuthMiddleware:
    """Authenticates requests against a token validator.

    Args:
        config: Resource description used for metadata and challenges
        validate_token: Async callable returning an introspection result
        required_scopes: Scopes every token must carry
        audience_policy: Audience enforcement, informational by default
        on_error: Called with any ``AuthError`` raised during validation
    """

    def __init__(
        self,
        config: ResourceServerConfig,
        validate_token: TokenValidator,
        required_scopes: list[str] | None = None,
        audience_policy: AudiencePolicy | None = None,
        on_error: Callable[[AuthError], None] | None = None,
    ):
        self.config = config
        self.validate_token = validate_token
        self.required_scopes = required_scopes or []
        self.audience_policy = audience_policy or AudiencePolicy()
        self.on_error = on_error

    async def __call__(
        self, request: AuthRequest
    ) -> AuthenticatedRequest | AuthResponse:
        if is_protected_resource_metadata_request(request, self.config):
            return create_protected_resource_metadata_response(self.config)

        token = extract_bearer_token(request)
        if not token:
            logger.debug(f"No bearer token on {request.method} {request.path}")
            return create_unauthorized_response(self.config)

        try:
            token_info = await self._validate(token)
        except Exception as e:
            logger.warning(f"Token validation error: {e}")
            if self.on_error and isinstance(e, AuthError):
                try:
                    self.on_error(e)
                except Exception:
                    logger.exception("on_error hook raised")
            return create_unauthorized_response(
                self.config,
                error="invalid_token",
                error_description="Token validation failed",
            )

        if not token_info.active:
            logger.info("Rejected inactive token")
            return create_unauthorized_response(
                self.config,
                error="invalid_token",
                error_description="Token is not active",
            )

        if token_info.aud:
            logger.debug(
                f"Token audience: {token_info.aud}, "
                f"resource: {self.config.resource_identifier}"
            )
        if not self.audience_policy.is_satisfied_by(token_info):
            logger.info(f"Rejected token with audience {token_info.aud}")
            return create_unauthorized_response(
                self.config,
                error="invalid_token",
                error_description="Token audience does not match this resource",
            )

        if not has_required_scopes(token_info, self.required_scopes):
            required = " ".join(self.required_scopes)
            logger.info(
                f"Insufficient scopes. Required: {required}, got: {token_info.scope}"
            )
            return create_unauthorized_response(
                self.config,
                error="insufficient_scope",
                error_description=f"Required scopes: {required}",
                scope=required,
            )

        logger.debug("Token validated successfully")
        return AuthenticatedRequest(
            request=request, token_info=token_info, access_token=token
        )

    async def _validate(self, token: str) -> TokenIntrospectionResponse:
        result = await self.validate_token(token)
        if isinstance(result, TokenIntrospectionResponse):
            return result
        try:
            return TokenIntrospectionResponse.model_validate(result)
        except ValidationError as e:
            raise ValueError(f"Validator returned malformed result: {e}") from e
