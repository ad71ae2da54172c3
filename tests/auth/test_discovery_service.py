"""Tests for the discovery service.

High-impact tests covering the discovery chain:
- Authorization server metadata fallback from OAuth to OIDC
- Issuer and metadata validation failing fast
- Protected Resource Metadata fetch and validation
- Full MCP server discovery including S256 enforcement
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from mcpauth.models.errors import DiscoveryError, ErrorCode, PKCEError
from mcpauth.services.discovery import OAuth2Discovery

ISSUER = "https://auth.example.com"
OAUTH_URL = f"{ISSUER}/.well-known/oauth-authorization-server"
OIDC_URL = f"{ISSUER}/.well-known/openid-configuration"
PRM_URL = "https://mcp.example.com/.well-known/oauth-protected-resource/mcp"


def as_metadata(**overrides):
    metadata = {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/oauth2/auth",
        "token_endpoint": f"{ISSUER}/oauth2/token",
        "code_challenge_methods_supported": ["S256"],
    }
    metadata.update(overrides)
    return metadata


def prm(**overrides):
    metadata = {
        "resource": "https://mcp.example.com/mcp",
        "authorization_servers": [ISSUER],
    }
    metadata.update(overrides)
    return metadata


class TestAuthorizationServerMetadata:
    """Test RFC 8414 metadata fetching."""

    @respx.mock
    async def test_uses_oauth_metadata_when_available(self):
        # Arrange
        route = respx.get(OAUTH_URL).mock(
            return_value=httpx.Response(200, json=as_metadata())
        )
        discovery = OAuth2Discovery()

        # Act
        metadata = await discovery.fetch_authorization_server_metadata(ISSUER)

        # Assert
        assert route.called
        assert metadata.issuer == ISSUER
        assert metadata.token_endpoint == f"{ISSUER}/oauth2/token"
        await discovery.close()

    @respx.mock
    async def test_falls_back_to_openid_configuration(self):
        # Arrange
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(404))
        respx.get(OIDC_URL).mock(
            return_value=httpx.Response(
                200,
                json=as_metadata(
                    token_introspection_endpoint=f"{ISSUER}/admin/introspect",
                    token_revocation_endpoint=f"{ISSUER}/oauth2/revoke",
                ),
            )
        )
        discovery = OAuth2Discovery()

        # Act
        metadata = await discovery.fetch_authorization_server_metadata(f"{ISSUER}/")

        # Assert
        assert metadata.introspection_endpoint == f"{ISSUER}/admin/introspect"
        assert metadata.revocation_endpoint == f"{ISSUER}/oauth2/revoke"
        await discovery.close()

    @respx.mock
    async def test_network_error_moves_to_next_candidate(self):
        respx.get(OAUTH_URL).mock(side_effect=httpx.ConnectError("refused"))
        respx.get(OIDC_URL).mock(return_value=httpx.Response(200, json=as_metadata()))
        discovery = OAuth2Discovery()

        metadata = await discovery.fetch_authorization_server_metadata(ISSUER)

        assert metadata.issuer == ISSUER
        await discovery.close()

    @respx.mock
    async def test_invalid_metadata_is_not_masked_by_fallback(self):
        # Arrange
        respx.get(OAUTH_URL).mock(
            return_value=httpx.Response(200, json={"issuer": ISSUER})
        )
        discovery = OAuth2Discovery()

        # Act & Assert
        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_authorization_server_metadata(ISSUER)

        assert exc_info.value.code == ErrorCode.DISCOVERY_INVALID_METADATA
        await discovery.close()

    @respx.mock
    async def test_issuer_mismatch_raises(self):
        respx.get(OAUTH_URL).mock(
            return_value=httpx.Response(
                200, json=as_metadata(issuer="https://evil.example.com")
            )
        )
        discovery = OAuth2Discovery()

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_authorization_server_metadata(ISSUER)

        assert exc_info.value.code == ErrorCode.DISCOVERY_ISSUER_MISMATCH
        await discovery.close()

    @respx.mock
    async def test_all_candidates_failing_raises_discovery_failed(self):
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(404))
        respx.get(OIDC_URL).mock(side_effect=httpx.ConnectTimeout("timeout"))
        discovery = OAuth2Discovery()

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_authorization_server_metadata(ISSUER)

        assert exc_info.value.code == ErrorCode.DISCOVERY_FAILED
        assert "timeout" in exc_info.value.details["last_error"]
        await discovery.close()

    @respx.mock
    async def test_missing_pkce_methods_stay_absent(self):
        metadata = as_metadata()
        del metadata["code_challenge_methods_supported"]
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(200, json=metadata))
        discovery = OAuth2Discovery()

        result = await discovery.fetch_authorization_server_metadata(ISSUER)

        assert result.code_challenge_methods_supported is None
        await discovery.close()


class TestProtectedResourceMetadata:
    """Test RFC 9728 metadata fetching."""

    @respx.mock
    async def test_fetches_from_path_aware_well_known_url(self):
        route = respx.get(PRM_URL).mock(return_value=httpx.Response(200, json=prm()))
        discovery = OAuth2Discovery()

        metadata = await discovery.fetch_protected_resource_metadata(
            "https://mcp.example.com/mcp"
        )

        assert route.called
        assert metadata.resource == "https://mcp.example.com/mcp"
        assert metadata.authorization_servers == [ISSUER]
        assert metadata.bearer_methods_supported == ["header"]
        await discovery.close()

    @respx.mock
    async def test_http_error_raises_prm_failed(self):
        respx.get(PRM_URL).mock(return_value=httpx.Response(500))
        discovery = OAuth2Discovery()

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_protected_resource_metadata(
                "https://mcp.example.com/mcp"
            )

        assert exc_info.value.code == ErrorCode.DISCOVERY_PRM_FAILED
        await discovery.close()

    @pytest.mark.parametrize(
        "payload",
        [
            {"authorization_servers": [ISSUER]},
            {"resource": "https://mcp.example.com/mcp", "authorization_servers": []},
            {"resource": "https://mcp.example.com/mcp"},
        ],
    )
    @respx.mock
    async def test_invalid_document_raises_invalid_prm(self, payload):
        respx.get(PRM_URL).mock(return_value=httpx.Response(200, json=payload))
        discovery = OAuth2Discovery()

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_protected_resource_metadata(
                "https://mcp.example.com/mcp"
            )

        assert exc_info.value.code == ErrorCode.DISCOVERY_INVALID_PRM
        await discovery.close()


class TestDiscoverAuthFromMCPServer:
    """Test the full discovery chain."""

    @respx.mock
    async def test_discovers_resource_and_authorization_server(self):
        # Arrange
        respx.get(PRM_URL).mock(return_value=httpx.Response(200, json=prm()))
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(200, json=as_metadata()))

        # Act
        async with OAuth2Discovery() as discovery:
            result = await discovery.discover_auth_from_mcp_server(
                "https://mcp.example.com/mcp"
            )

        # Assert
        assert result.resource == "https://mcp.example.com/mcp"
        assert result.auth_server_url == ISSUER
        assert result.authorization_server.authorization_endpoint == (
            f"{ISSUER}/oauth2/auth"
        )

    @respx.mock
    async def test_requires_s256_support(self):
        respx.get(PRM_URL).mock(return_value=httpx.Response(200, json=prm()))
        respx.get(OAUTH_URL).mock(
            return_value=httpx.Response(
                200, json=as_metadata(code_challenge_methods_supported=["plain"])
            )
        )

        async with OAuth2Discovery() as discovery:
            with pytest.raises(PKCEError) as exc_info:
                await discovery.discover_auth_from_mcp_server(
                    "https://mcp.example.com/mcp"
                )

        assert exc_info.value.code == ErrorCode.PKCE_NOT_SUPPORTED

    @respx.mock
    async def test_empty_first_authorization_server_raises(self):
        respx.get(PRM_URL).mock(
            return_value=httpx.Response(200, json=prm(authorization_servers=[""]))
        )

        async with OAuth2Discovery() as discovery:
            with pytest.raises(DiscoveryError) as exc_info:
                await discovery.discover_auth_from_mcp_server(
                    "https://mcp.example.com/mcp"
                )

        assert exc_info.value.code == ErrorCode.DISCOVERY_NO_AUTH_SERVER

    @respx.mock
    async def test_discover_from_401_uses_challenge_metadata_url(self):
        # Arrange
        challenge_prm = "https://mcp.example.com/custom-prm"
        respx.get(challenge_prm).mock(return_value=httpx.Response(200, json=prm()))
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(200, json=as_metadata()))
        response = httpx.Response(
            401,
            headers={"WWW-Authenticate": f'Bearer resource_metadata="{challenge_prm}"'},
            request=httpx.Request("POST", "https://mcp.example.com/mcp"),
        )

        # Act
        async with OAuth2Discovery() as discovery:
            result = await discovery.discover_from_401(response)

        # Assert
        assert result.auth_server_url == ISSUER

    async def test_discover_from_401_rejects_other_status(self):
        response = httpx.Response(
            403, request=httpx.Request("GET", "https://mcp.example.com/mcp")
        )

        async with OAuth2Discovery() as discovery:
            with pytest.raises(DiscoveryError):
                await discovery.discover_from_401(response)


class TestAttemptHandling:
    @respx.mock
    async def test_non_json_success_falls_through_to_openid(self):
        # Arrange
        respx.get(OAUTH_URL).mock(
            return_value=httpx.Response(200, text="<html>spa</html>")
        )
        oidc_route = respx.get(OIDC_URL).mock(
            return_value=httpx.Response(200, json=as_metadata())
        )
        discovery = OAuth2Discovery()

        # Act
        metadata = await discovery.fetch_authorization_server_metadata(ISSUER)

        # Assert
        assert metadata.issuer == ISSUER
        assert oidc_route.called
        await discovery.close()

    @respx.mock
    async def test_non_json_everywhere_raises_discovery_failed(self):
        respx.get(OAUTH_URL).mock(return_value=httpx.Response(200, text="<html>"))
        respx.get(OIDC_URL).mock(return_value=httpx.Response(200, text="<html>"))
        discovery = OAuth2Discovery()

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_authorization_server_metadata(ISSUER)

        assert exc_info.value.code == ErrorCode.DISCOVERY_FAILED
        await discovery.close()

    async def test_slow_metadata_server_is_bounded_per_attempt(self):
        # Arrange
        async def never_finishes(*args, **kwargs):
            await asyncio.sleep(5)

        discovery = OAuth2Discovery(timeout=0.01)
        discovery._http_client = AsyncMock()
        discovery._http_client.get.side_effect = never_finishes

        # Act
        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_authorization_server_metadata(ISSUER)

        # Assert
        assert exc_info.value.code == ErrorCode.DISCOVERY_FAILED
        assert discovery._http_client.get.await_count == 2

    async def test_slow_resource_metadata_is_bounded(self):
        async def never_finishes(*args, **kwargs):
            await asyncio.sleep(5)

        discovery = OAuth2Discovery(timeout=0.01)
        discovery._http_client = AsyncMock()
        discovery._http_client.get.side_effect = never_finishes

        with pytest.raises(DiscoveryError) as exc_info:
            await discovery.fetch_protected_resource_metadata(
                "https://mcp.example.com/mcp"
            )

        assert exc_info.value.code == ErrorCode.DISCOVERY_PRM_FAILED
