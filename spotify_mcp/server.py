import asyncio
import contextlib
import logging
import sys
import time
from collections.abc import AsyncIterator
from html import escape
from typing import List, Optional

import click
import mcp.server.stdio
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from .auth import new_state
from .config import SpotifySettings, load_settings
from .errors import SpotifyError
from .services import SpotifyServices
from .tools import SpotifyTools, get_tool_definitions

logger = logging.getLogger(__name__)

SERVER_NAME = "spotify-mcp-server"

OAUTH_SCOPES = [
    "user-read-private",
    "user-read-email",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-library-read",
    "user-library-modify",
]

# Pending OAuth states are dropped after this many seconds
OAUTH_STATE_TTL = 600


# -----------------------------------------------------------------------------
# MCP server
# -----------------------------------------------------------------------------

def build_server(tools: SpotifyTools) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def handle_list_tools() -> List[types.Tool]:
        return get_tool_definitions()

    # arguments are checked by SpotifyTools, not against inputSchema
    @server.call_tool(validate_input=False)
    async def handle_call_tool(name: str, arguments: Optional[dict]) -> List[types.TextContent]:
        logger.info("Tool call: %s", name)
        text = await tools.call(name, arguments or {})
        return [types.TextContent(type="text", text=text)]

    return server


async def run_stdio_server(services: SpotifyServices) -> None:
    server = build_server(services.tools)
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


# -----------------------------------------------------------------------------
# Startup validation
# -----------------------------------------------------------------------------

async def validate_spotify_setup(services: SpotifyServices) -> bool:
    """
    Check that client credentials are configured and accepted by Spotify.

    The token acquired here stays cached in ``services`` for the transport.
    """
    settings = services.settings
    if not settings.has_client_credentials:
        logger.error("Missing Spotify credentials: set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET "
                     "or pass --spotify-client-id/--spotify-client-secret")
        return False

    logger.info("Client credentials found (ID: %s...)", settings.client_id[:8])
    try:
        await services.tokens.get_client_credentials_token()
    except SpotifyError as e:
        logger.error("Client credentials authentication failed: %s", e)
        return False
    logger.info("Client credentials authentication working")
    return True


def print_available_tools() -> None:
    click.echo("=== Available Spotify MCP Tools ===", err=True)
    for tool in get_tool_definitions():
        click.echo(f"  - {tool.name}: {tool.description}", err=True)
    click.echo("=== End of Available Tools ===", err=True)


# -----------------------------------------------------------------------------
# HTTP app (streamable HTTP transport + helper routes)
# -----------------------------------------------------------------------------

async def handle_root(request: Request) -> Response:
    return PlainTextResponse(
        "Spotify MCP Server is running.\n\n"
        "Available endpoints:\n"
        "  GET  /health         - Health check\n"
        "  GET  /oauth/login    - Start the authorization-code flow\n"
        "  POST /mcp/           - MCP streamable HTTP endpoint\n"
    )


async def handle_health(request: Request) -> Response:
    services: SpotifyServices = request.app.state.services
    try:
        await services.tokens.get_client_credentials_token()
    except SpotifyError as e:
        return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)
    return JSONResponse({"status": "healthy", "timestamp": time.time(), "app_auth": True})


def _prune_states(states: dict) -> None:
    cutoff = time.time() - OAUTH_STATE_TTL
    for key in [k for k, ts in states.items() if ts < cutoff]:
        del states[key]


async def oauth_login(request: Request) -> Response:
    services: SpotifyServices = request.app.state.services
    settings = services.settings
    if not settings.client_id:
        return PlainTextResponse("Missing SPOTIFY_CLIENT_ID", status_code=500)

    states = request.app.state.oauth_states
    _prune_states(states)
    state = new_state()
    states[state] = time.time()

    url = services.tokens.build_authorization_url(settings.client_id, settings.redirect_uri, OAUTH_SCOPES, state)
    return RedirectResponse(url)


async def oauth_callback(request: Request) -> Response:
    services: SpotifyServices = request.app.state.services
    settings = services.settings
    q = request.query_params
    if q.get("error"):
        return PlainTextResponse(f"OAuth error: {q['error']}", status_code=400)

    code, state = q.get("code"), q.get("state")
    states = request.app.state.oauth_states
    _prune_states(states)
    if not code or not state or states.pop(state, None) is None:
        return PlainTextResponse("Invalid OAuth response/state", status_code=400)
    if not settings.has_client_credentials:
        return PlainTextResponse("Missing SPOTIFY_CLIENT_ID or SPOTIFY_CLIENT_SECRET", status_code=500)

    try:
        token = await services.tokens.exchange_authorization_code(
            code, settings.redirect_uri, settings.client_id, settings.client_secret
        )
    except SpotifyError as e:
        logger.error("Authorization code exchange failed: %s", e)
        return PlainTextResponse(f"Token exchange failed: {e}", status_code=502)

    refresh_hint = (
        f"<p>Refresh token: <code>{escape(token.refresh_token)}</code></p>"
        if token.refresh_token else "<p><i>(no refresh_token returned; check scopes)</i></p>"
    )
    html = f"""
    <h2>Spotify authorization complete</h2>
    <p>Pass this access token to user-scoped tools (expires in {token.expires_in}s):</p>
    <p><code>{escape(token.access_token)}</code></p>
    {refresh_hint}
    <p>Granted scopes: <code>{escape(token.scope or '')}</code></p>
    """
    return HTMLResponse(html)


def create_app(services: SpotifyServices) -> Starlette:
    session_manager = StreamableHTTPSessionManager(app=build_server(services.tools))

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            logger.info("Spotify MCP Server ready")
            yield

    async def handle_mcp(scope: Scope, receive: Receive, send: Send) -> None:
        await session_manager.handle_request(scope, receive, send)

    app = Starlette(
        routes=[
            Route("/", handle_root),
            Route("/health", handle_health),
            Route("/oauth/login", oauth_login),
            Route("/oauth/callback", oauth_callback),
            Mount("/mcp", app=handle_mcp),
        ],
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.oauth_states = {}
    return app


async def serve_stdio(settings: SpotifySettings) -> bool:
    async with SpotifyServices(settings) as services:
        if not await validate_spotify_setup(services):
            return False
        logger.info("Starting Spotify MCP Server (stdio mode)")
        await run_stdio_server(services)
    return True


async def serve_http(settings: SpotifySettings, host: str, log_level: str) -> bool:
    import uvicorn

    async with SpotifyServices(settings) as services:
        if not await validate_spotify_setup(services):
            return False
        logger.info("Spotify MCP Server starting on http://%s:%s", host, settings.port)
        logger.info("MCP endpoint: http://%s:%s/mcp/", host, settings.port)
        config = uvicorn.Config(create_app(services), host=host, port=settings.port, log_level=log_level.lower())
        await uvicorn.Server(config).serve()
    return True


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------

@click.command()
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP (default: SPOTIFY_MCP_SERVER_PORT or 5000)")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind for HTTP")
@click.option("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
@click.option("--stdio", is_flag=True, help="Run MCP server over stdio instead of HTTP")
@click.option("--config", "config_file", default=None, help="JSON settings file (default: appsettings.json if present)")
@click.option("--spotify-client-id", default=None, help="Spotify client ID (overrides SPOTIFY_CLIENT_ID)")
@click.option("--spotify-client-secret", default=None, help="Spotify client secret (overrides SPOTIFY_CLIENT_SECRET)")
def main(port: Optional[int], host: str, log_level: str, stdio: bool, config_file: Optional[str],
         spotify_client_id: Optional[str], spotify_client_secret: Optional[str]):
    """Spotify MCP Server - expose the Spotify Web API as MCP tools."""
    # stdout belongs to the stdio transport; everything else goes to stderr
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings(config_file, spotify_client_id, spotify_client_secret, port=port)
    except SpotifyError as e:
        raise click.ClickException(str(e))

    print_available_tools()

    serve = serve_stdio(settings) if stdio else serve_http(settings, host, log_level)
    if not asyncio.run(serve):
        click.echo("Setup validation failed. Please fix the issues above.", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
