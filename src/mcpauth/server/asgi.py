"""Starlette adapter for ``AuthMiddleware``.

Converts Starlette requests into ``AuthRequest`` and ``AuthResponse`` back
into ``JSONResponse``. On success the ``AuthenticatedRequest`` is exposed
to the endpoint as ``request.state.auth``.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from mcpauth.server.middleware import AuthMiddleware, AuthRequest, AuthResponse

logger = logging.getLogger(__name__)


def to_auth_request(request: Request) -> AuthRequest:
    return AuthRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
    )


def to_starlette_response(response: AuthResponse) -> JSONResponse:
    headers = {
        key: value
        for key, value in response.headers.items()
        if key.lower() != "content-type"
    }
    return JSONResponse(
        response.body, status_code=response.status_code, headers=headers
    )


class ProtectedPathMiddleware:
    """ASGI middleware that authenticates requests under ``path``.

    Requests outside ``path`` pass through untouched.
    """

    def __init__(
        self, app: ASGIApp, auth_middleware: AuthMiddleware, path: str = "/mcp"
    ) -> None:
        self.app = app
        self.auth_middleware = auth_middleware
        self.path = path.rstrip("/") or "/"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self._is_protected(scope["path"]):
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        result = await self.auth_middleware(to_auth_request(request))

        if isinstance(result, AuthResponse):
            response = to_starlette_response(result)
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})["auth"] = result
        await self.app(scope, receive, send)

    def _is_protected(self, path: str) -> bool:
        if self.path == "/":
            return True
        return path == self.path or path.startswith(f"{self.path}/")
