"""Calendar Bridge Server - a local FastAPI endpoint for Google Calendar tools.

An AI assistant host POSTs ``{"name": ..., "arguments": {...}}`` to ``/`` and
gets back the Google Calendar API result as JSON. ``GET /`` reports health,
the tool names and whether the server is authenticated, and
``GET /auth/callback`` completes the OAuth consent redirect.

Every request-level failure is answered with HTTP 500 and
``{"error": {"message", "code"}}``, which is what existing callers expect.
"""

import html
import json
import logging
import os
import socket
import sys
from collections.abc import Mapping

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ValidationError

from . import __version__
from .exceptions import (
    CalendarBridgeError,
    InvalidArguments,
    MissingCredentials,
    PortUnavailable,
)
from .oauth import build_authorization_url
from .provider import CalendarProvider, ToolRequest
from .settings import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    MAX_PORT_ATTEMPTS,
    SERVER_NAME,
    callback_uri_for_port,
    load_credentials,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "OPTIONS, POST, GET",
    "Access-Control-Allow-Headers": "Content-Type",
}

SUCCESS_PAGE = """<html>
  <head>
    <title>Authorization Successful</title>
    <style>
      body { font-family: Arial, sans-serif; text-align: center; margin-top: 50px; }
      h1 { color: #4285F4; }
      .success { color: #0F9D58; font-weight: bold; }
      .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    </style>
  </head>
  <body>
    <div class="container">
      <h1>Google Calendar Authorization Successful!</h1>
      <p class="success">Your Google Calendar server is now authorized</p>
      <p>The server has been authenticated and is ready to use with your AI assistant.</p>
      <p>You can close this window and return to your application.</p>
    </div>
  </body>
</html>
"""

FAILURE_PAGE = """<html>
  <head>
    <title>Authorization Failed</title>
    <style>
      body {{ font-family: Arial, sans-serif; text-align: center; margin-top: 50px; }}
      h1 {{ color: #DB4437; }}
      .error {{ color: #DB4437; font-weight: bold; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <h1>Authorization Failed</h1>
      <p class="error">Error: {error}</p>
      <p>Please try again or check your Google Cloud Console settings.</p>
    </div>
  </body>
</html>
"""


# ============================================================================
# Pydantic Models - Responses
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    server: str = SERVER_NAME
    version: str = __version__
    port: int
    tools: list[str]
    authenticated: bool


def error_response(error: CalendarBridgeError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": error.to_dict()})


# ============================================================================
# FastAPI App Setup
# ============================================================================


def create_app(provider: CalendarProvider, port: int = DEFAULT_PORT) -> FastAPI:
    """Build the HTTP app around an already initialized provider."""
    app = FastAPI(
        title="Calendar Bridge",
        description="Local HTTP tool endpoint for Google Calendar",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.provider = provider
    app.state.port = port

    @app.middleware("http")
    async def cors_and_methods(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        if request.method not in ("GET", "HEAD", "POST"):
            response = PlainTextResponse("Method Not Allowed", status_code=405)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    def health() -> HealthResponse:
        return HealthResponse(
            port=app.state.port,
            tools=list(provider.get_tool_definitions()),
            authenticated=provider.is_authenticated(),
        )

    @app.get("/auth/callback", response_model=None)
    async def auth_callback(code: str | None = None) -> HTMLResponse | HealthResponse:
        """Complete the OAuth redirect by exchanging ``code``."""
        if not code:
            return health()

        logger.info("Received authorization code, exchanging for token...")
        try:
            await provider.set_auth_code(code)
        except Exception as e:
            logger.exception("Error processing authorization code")
            return HTMLResponse(
                FAILURE_PAGE.format(error=html.escape(str(e))), status_code=500
            )
        return HTMLResponse(SUCCESS_PAGE)

    @app.get("/", response_model=HealthResponse)
    @app.get("/{path:path}", response_model=HealthResponse)
    async def health_check():
        """Health check. Returns tool names and authentication state."""
        return health()

    @app.post("/")
    @app.post("/{path:path}")
    async def invoke_tool(request: Request):
        """Run the tool named in the JSON body and return its result."""
        body = await request.body()
        try:
            data = json.loads(body)
        except ValueError as e:
            logger.error("Error parsing request body: %s", e)
            return error_response(CalendarBridgeError(f"Invalid JSON body: {e}"))

        try:
            tool_request = ToolRequest.model_validate(data)
        except ValidationError as e:
            logger.error("Malformed tool request: %s", e)
            return error_response(InvalidArguments(
                "Request must be an object with a string 'name' and optional 'arguments'",
                field="name",
            ))

        logger.info("Received request for tool: %s", tool_request.name)
        try:
            result = await provider.handle_request(tool_request)
        except CalendarBridgeError as e:
            logger.error("Error processing request for %s: %s", tool_request.name, e)
            return error_response(e)
        except Exception as e:
            logger.exception("Unexpected error processing request for %s", tool_request.name)
            return error_response(CalendarBridgeError(str(e)))

        return JSONResponse(content=result)

    return app


# ============================================================================
# Port Selection
# ============================================================================


def port_is_free(port: int, host: str = DEFAULT_HOST) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        # Match uvicorn, which binds with SO_REUSEADDR; TIME_WAIT ports are usable
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(
    start_port: int = DEFAULT_PORT,
    max_attempts: int = MAX_PORT_ATTEMPTS,
    host: str = DEFAULT_HOST,
) -> int:
    """Return the first bindable port in ``start_port .. start_port + max_attempts - 1``."""
    for port in range(start_port, start_port + max_attempts):
        if port_is_free(port, host):
            return port
        logger.warning("Port %d is not available, trying next port...", port)
    raise PortUnavailable(f"Could not find an available port after {max_attempts} attempts")


def resolve_port(environ: Mapping[str, str] | None = None, host: str = DEFAULT_HOST) -> int:
    """Use PORT when set (it must be free), otherwise scan upward from the default."""
    env = os.environ if environ is None else environ
    fixed = env.get("PORT")
    if not fixed:
        return find_available_port(host=host)

    try:
        port = int(fixed)
    except ValueError:
        raise PortUnavailable(f"Invalid PORT value: {fixed!r}") from None
    if not port_is_free(port, host):
        raise PortUnavailable(f"Port {port} is not available")
    return port


# ============================================================================
# Main Entry Point
# ============================================================================


def effective_redirect_uri(configured_uri: str, port: int) -> str:
    """Redirect URI to use once the server is bound to ``port``.

    Off the default port the callback moves with the server, which only works
    if Google has that exact URI registered, so the switch is logged loudly.
    """
    if port == DEFAULT_PORT:
        return configured_uri

    redirect_uri = callback_uri_for_port(port)
    logger.warning("Updated redirect URI to: %s", redirect_uri)
    logger.warning(
        "This exact URI must be listed in your Google Cloud Console OAuth client, "
        "otherwise authorization fails with redirect_uri_mismatch"
    )
    return redirect_uri


def log_startup_banner(provider: CalendarProvider, port: int) -> None:
    logger.info("Server running at http://localhost:%d/", port)
    logger.info("Available tools:")
    for name, definition in provider.get_tool_definitions().items():
        logger.info("  - %s: %s", name, definition.description)

    if provider.is_authenticated():
        logger.info("Successfully authenticated with Google Calendar")
    else:
        logger.warning("Not authenticated with Google Calendar.")
        logger.warning(
            "Open this URL in your browser to authorize: %s",
            build_authorization_url(provider.credentials),
        )


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    host = os.environ.get("HOST", DEFAULT_HOST)
    try:
        credentials = load_credentials()
        port = resolve_port(host=host)
    except (MissingCredentials, PortUnavailable) as e:
        logger.error("Failed to start server: %s", e)
        sys.exit(1)

    credentials.redirect_uri = effective_redirect_uri(credentials.redirect_uri, port)

    provider = CalendarProvider(credentials)
    provider.initialize()
    app = create_app(provider, port)
    log_startup_banner(provider, port)

    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
