"""
MCP endpoint protected by token introspection.

Reads its settings from the environment (or a .env file):
RESOURCE_URL, AUTH_SERVER_URL, INTROSPECTION_URL, AUTH_CLIENT_ID,
AUTH_CLIENT_SECRET, AUTH_SCOPES, AUTH_CACHE_TTL and AUTH_ENABLED.

Clients that call /mcp without a token receive a 401 pointing at
/.well-known/oauth-protected-resource/mcp.
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcpauth.server.server_auth import create_mcp_server_auth_from_env


async def mcp_endpoint(request: Request) -> JSONResponse:
    auth = getattr(request.state, "auth", None)
    subject = auth.token_info.sub if auth else None
    logging.info(f"MCP request from subject: {subject}")
    return JSONResponse({"ok": True, "subject": subject})


def build_app() -> Starlette:
    port = int(os.getenv("PORT", "8000"))
    app = Starlette(
        routes=[Route("/mcp", mcp_endpoint, methods=["GET", "POST", "DELETE"])]
    )
    server_auth = create_mcp_server_auth_from_env(
        resource_url=f"http://localhost:{port}/mcp",
        required_scopes=["mcp:read"],
    )
    server_auth.setup_starlette(app, mcp_path="/mcp")
    return app


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(build_app(), host="127.0.0.1", port=int(os.getenv("PORT", "8000")))
