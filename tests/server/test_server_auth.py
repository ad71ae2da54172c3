"""Tests for protecting a Starlette MCP endpoint end to end."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from mcpauth.primitives.discovery import parse_www_authenticate
from mcpauth.server.config import MCPServerAuthConfig, ServerAuthSettings
from mcpauth.server.middleware import AuthenticatedRequest, AuthRequest
from mcpauth.server.server_auth import (
    create_mcp_server_auth,
    create_mcp_server_auth_from_env,
)

RESOURCE = "http://testserver/mcp"
PRM_PATH = "/.well-known/oauth-protected-resource/mcp"


def introspection_response(body):
    response = MagicMock()
    response.is_success = True
    response.status_code = 200
    response.json.return_value = body
    return response


async def mcp_endpoint(request: Request) -> JSONResponse:
    auth = getattr(request.state, "auth", None)
    return JSONResponse({"sub": auth.token_info.sub if auth else None})


def make_config(**overrides) -> MCPServerAuthConfig:
    values = {
        "resource_url": RESOURCE,
        "auth_server_url": "http://localhost:4444",
        "introspection_endpoint": "http://localhost:4445/admin/oauth2/introspect",
        "client_id": "mcp-server",
        "client_secret": "secret",
        "required_scopes": ["mcp:read"],
    }
    values.update(overrides)
    return MCPServerAuthConfig(**values)


def make_app(config: MCPServerAuthConfig):
    auth = create_mcp_server_auth(config)
    auth.introspection._http_client = AsyncMock()
    auth.introspection._http_client.post.return_value = introspection_response(
        {"active": True, "scope": "mcp:read", "sub": "user-1"}
    )
    app = Starlette(
        routes=[
            Route("/mcp", mcp_endpoint, methods=["GET", "POST"]),
            Route("/health", lambda request: JSONResponse({"ok": True})),
        ]
    )
    auth.setup_starlette(app)
    return app, auth


class TestMCPServerAuth:
    def test_components_follow_config(self):
        auth = create_mcp_server_auth(make_config(cache_ttl_seconds=30))

        assert auth.enabled
        assert auth.token_cache.ttl_seconds == 30
        assert auth.resource.resource_identifier == RESOURCE
        assert auth.resource.scopes_supported == ["mcp:read"]
        assert auth.protected_resource_metadata.authorization_servers == [
            "http://localhost:4444"
        ]
        assert auth.middleware.required_scopes == ["mcp:read"]

    def test_scopes_supported_overrides_required(self):
        auth = create_mcp_server_auth(
            make_config(scopes_supported=["mcp:read", "mcp:write"])
        )

        assert auth.protected_resource_metadata.scopes_supported == [
            "mcp:read",
            "mcp:write",
        ]

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValidationError):
            make_config(cache_ttl_seconds=0)

    async def test_authenticate_is_skipped_when_disabled(self):
        auth = create_mcp_server_auth(make_config(enabled=False))

        assert await auth.authenticate(AuthRequest("POST", "/mcp")) is None

    async def test_authenticate_caches_introspection(self):
        app, auth = make_app(make_config())
        request = AuthRequest("POST", "/mcp", {"Authorization": "Bearer tok"})

        first = await auth.authenticate(request)
        second = await auth.authenticate(request)

        assert isinstance(first, AuthenticatedRequest)
        assert isinstance(second, AuthenticatedRequest)
        assert auth.introspection._http_client.post.await_count == 1


class TestStarletteIntegration:
    def setup_method(self):
        self.app, self.auth = make_app(make_config())
        self.client = TestClient(self.app)

    def test_serves_path_aware_metadata(self):
        response = self.client.get(PRM_PATH)

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.json() == {
            "resource": RESOURCE,
            "authorization_servers": ["http://localhost:4444"],
            "bearer_methods_supported": ["header"],
            "scopes_supported": ["mcp:read"],
        }

    def test_serves_root_metadata(self):
        response = self.client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 200
        assert response.json()["resource"] == RESOURCE

    def test_missing_token_is_challenged(self):
        # Act
        response = self.client.post("/mcp", json={})

        # Assert
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}
        challenge = parse_www_authenticate(response.headers["www-authenticate"])
        assert challenge.resource_metadata == f"http://testserver{PRM_PATH}"
        assert challenge.error is None

    def test_valid_token_reaches_endpoint(self):
        response = self.client.post(
            "/mcp", json={}, headers={"Authorization": "Bearer tok"}
        )

        assert response.status_code == 200
        assert response.json() == {"sub": "user-1"}

    def test_inactive_token_is_rejected(self):
        self.auth.introspection._http_client.post.return_value = (
            introspection_response({"active": False})
        )

        response = self.client.post(
            "/mcp", json={}, headers={"Authorization": "Bearer revoked"}
        )

        challenge = parse_www_authenticate(response.headers["www-authenticate"])
        assert response.status_code == 401
        assert challenge.error == "invalid_token"

    def test_subpaths_are_protected(self):
        response = self.client.get("/mcp/sessions")

        assert response.status_code == 401

    def test_other_routes_are_public(self):
        response = self.client.get("/health")

        assert response.status_code == 200
        self.auth.introspection._http_client.post.assert_not_called()

    def test_disabled_auth_passes_through(self):
        app, _ = make_app(make_config(enabled=False))
        client = TestClient(app)

        response = client.post("/mcp", json={})

        assert response.status_code == 200
        assert response.json() == {"sub": None}
        assert client.get(PRM_PATH).status_code == 200


class TestServerAuthFromEnv:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in [
            "AUTH_ENABLED",
            "RESOURCE_URL",
            "AUTH_SERVER_URL",
            "INTROSPECTION_URL",
            "AUTH_CLIENT_ID",
            "AUTH_CLIENT_SECRET",
            "AUTH_SCOPES",
            "AUTH_CACHE_TTL",
        ]:
            monkeypatch.delenv(name, raising=False)

    def settings(self) -> ServerAuthSettings:
        return ServerAuthSettings(_env_file=None)

    def test_defaults(self):
        auth = create_mcp_server_auth_from_env(RESOURCE, settings=self.settings())

        assert auth.enabled
        assert auth.config.auth_server_url == "http://localhost:4444"
        assert auth.config.introspection_endpoint == (
            "http://localhost:4445/admin/oauth2/introspect"
        )
        assert auth.config.client_id == "mcp-server"
        assert auth.config.client_secret == "secret"
        assert auth.config.cache_ttl_seconds == 60

    def test_arguments_override_defaults(self):
        auth = create_mcp_server_auth_from_env(
            RESOURCE,
            auth_server_url="https://auth.example.com",
            client_id="custom",
            required_scopes=["mcp:read"],
            settings=self.settings(),
        )

        assert auth.config.auth_server_url == "https://auth.example.com"
        assert auth.config.client_id == "custom"
        assert auth.config.required_scopes == ["mcp:read"]

    def test_environment_overrides_arguments(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("RESOURCE_URL", "https://mcp.example.com/mcp")
        monkeypatch.setenv("AUTH_SERVER_URL", "https://auth.example.com")
        monkeypatch.setenv("INTROSPECTION_URL", "https://auth.example.com/introspect")
        monkeypatch.setenv("AUTH_CLIENT_ID", "env-client")
        monkeypatch.setenv("AUTH_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("AUTH_SCOPES", "mcp:read, mcp:write")
        monkeypatch.setenv("AUTH_CACHE_TTL", "120")

        # Act
        auth = create_mcp_server_auth_from_env(
            RESOURCE,
            client_id="arg-client",
            required_scopes=["other"],
            settings=self.settings(),
        )

        # Assert
        config = auth.config
        assert config.resource_url == "https://mcp.example.com/mcp"
        assert config.auth_server_url == "https://auth.example.com"
        assert config.introspection_endpoint == "https://auth.example.com/introspect"
        assert config.client_id == "env-client"
        assert config.client_secret == "env-secret"
        assert config.required_scopes == ["mcp:read", "mcp:write"]
        assert config.cache_ttl_seconds == 120

    @pytest.mark.parametrize("value", ["false", "FALSE", " False "])
    def test_auth_enabled_false_disables(self, monkeypatch, value):
        monkeypatch.setenv("AUTH_ENABLED", value)

        auth = create_mcp_server_auth_from_env(RESOURCE, settings=self.settings())

        assert not auth.enabled

    @pytest.mark.parametrize("value", ["true", "0", "no", ""])
    def test_other_values_keep_auth_enabled(self, monkeypatch, value):
        monkeypatch.setenv("AUTH_ENABLED", value)

        assert self.settings().enabled

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_cache_ttl_falls_back(self, monkeypatch, value):
        monkeypatch.setenv("AUTH_CACHE_TTL", value)

        auth = create_mcp_server_auth_from_env(
            RESOURCE, cache_ttl_seconds=30, settings=self.settings()
        )

        assert auth.config.cache_ttl_seconds == 30

    def test_example_server_requires_token(self, monkeypatch):
        from mcpauth.examples.protected_server import build_app

        monkeypatch.setenv("PORT", "8000")
        client = TestClient(build_app())

        response = client.post("/mcp", json={})

        challenge = parse_www_authenticate(response.headers["www-authenticate"])
        assert response.status_code == 401
        assert challenge.resource_metadata == (
            "http://localhost:8000/.well-known/oauth-protected-resource/mcp"
        )
