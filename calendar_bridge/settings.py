"""Configuration for the Calendar Bridge.

Credentials come from the environment (optionally populated from a ``.env``
file by the entrypoints). The refresh token is the only mutable part and is
managed by :mod:`calendar_bridge.token_store`.
"""

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel

from .exceptions import MissingCredentials

DEFAULT_PORT = 3000
MAX_PORT_ATTEMPTS = 10
DEFAULT_HOST = "127.0.0.1"
SERVER_NAME = "google-calendar-mcp"

# Token file lives next to the installed package, not in the working directory
TOKEN_FILE = Path(__file__).resolve().parent.parent / ".google_refresh_token"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]

REQUIRED_ENV_VARS = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI")


class Credentials(BaseModel):
    """OAuth client configuration plus the current refresh token."""
    client_id: str
    client_secret: str
    redirect_uri: str
    refresh_token: str | None = None


def missing_env_vars(environ: Mapping[str, str] | None = None) -> list[str]:
    """Return the names of required variables that are unset or empty."""
    env = os.environ if environ is None else environ
    return [name for name in REQUIRED_ENV_VARS if not env.get(name)]


def load_credentials(environ: Mapping[str, str] | None = None) -> Credentials:
    """Build Credentials from the environment.

    Raises:
        MissingCredentials: if any of client id, client secret or redirect URI
            is absent. The message names every missing variable.
    """
    env = os.environ if environ is None else environ
    missing = missing_env_vars(env)
    if missing:
        raise MissingCredentials(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    return Credentials(
        client_id=env["GOOGLE_CLIENT_ID"],
        client_secret=env["GOOGLE_CLIENT_SECRET"],
        redirect_uri=env["GOOGLE_REDIRECT_URI"],
        refresh_token=env.get("GOOGLE_REFRESH_TOKEN") or None,
    )


def callback_uri_for_port(port: int) -> str:
    """Redirect URI served by this process when it listens on ``port``."""
    return f"http://localhost:{port}/auth/callback"
