"""Exchange an authorization code for a refresh token.

Usage:
    calendar-bridge-auth "YOUR_AUTH_CODE"

The refresh token is printed, saved to the token file, and written to
``.env`` in the current directory as GOOGLE_REFRESH_TOKEN.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel

from .exceptions import MissingCredentials, NoRefreshTokenIssued, UpstreamApiError
from .google_client import GoogleCalendarClient
from .oauth import GoogleOAuthSession
from .settings import Credentials, load_credentials, missing_env_vars
from .token_store import ENV_TOKEN_VAR, TokenStore, set_env_value

logger = logging.getLogger(__name__)


class AuthorizationResult(BaseModel):
    """Outcome of a successful code exchange."""
    refresh_token: str
    calendar_count: int | None = None


async def complete_authorization(
    code: str,
    credentials: Credentials,
    store: TokenStore,
    verify: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthorizationResult:
    """Exchange ``code`` for tokens and persist the refresh token.

    When ``verify`` is set, the new token is tried against the calendar list.
    A failed verification is logged but the token stays saved.

    Raises:
        MissingCredentials: if client id, secret or redirect URI is empty.
        NoRefreshTokenIssued: if Google returned no refresh token.
        UpstreamApiError: if the exchange itself fails (e.g. invalid_grant).
    """
    if not (credentials.client_id and credentials.client_secret and credentials.redirect_uri):
        raise MissingCredentials(
            "GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI must all be set"
        )

    session = GoogleOAuthSession(credentials.model_copy(), transport=transport)
    tokens = await session.exchange_code(code)

    refresh_token = tokens.get("refresh_token")
    if not refresh_token:
        raise NoRefreshTokenIssued(
            "No refresh token received. Revoke this app's access at "
            "https://myaccount.google.com/permissions and authorize again."
        )

    store.save(refresh_token)

    calendar_count = None
    if verify:
        session.set_refresh_token(refresh_token)
        client = GoogleCalendarClient(session, transport=transport)
        try:
            calendars = await client.list_calendars()
            calendar_count = len(calendars.get("items", []))
        except UpstreamApiError as e:
            logger.warning("Refresh token saved but verification failed: %s", e)

    return AuthorizationResult(refresh_token=refresh_token, calendar_count=calendar_count)


# ============================================================================
# Command Line Entry Point
# ============================================================================


def _err(message: str = "") -> None:
    print(message, file=sys.stderr)


def _print_missing_env(missing: list[str]) -> None:
    _err("Error: Missing required environment variables")
    _err("Make sure GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_REDIRECT_URI "
         "are set in your .env file")
    _err("Current values:")
    for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI"):
        _err(f"- {name}: {'Missing' if name in missing else 'Set'}")


def _print_no_refresh_token_hints() -> None:
    _err("Error: No refresh token received. This typically happens when:")
    _err("1. You've previously authorized this application (tokens are only issued on first approval)")
    _err('2. The authorization didn\'t include the "prompt=consent" parameter')
    _err()
    _err("Try these steps:")
    _err("1. Go to https://myaccount.google.com/permissions")
    _err("2. Revoke access for your app")
    _err("3. Restart the server and try authentication again")


def _print_invalid_grant_hints(redirect_uri: str) -> None:
    _err()
    _err("The authorization code is invalid or expired. "
         "Auth codes typically expire after a few minutes.")
    _err()
    _err("Try these steps:")
    _err("1. Run the server again: calendar-bridge")
    _err("2. Open the authentication URL in your browser")
    _err("3. Complete the authentication flow")
    _err("4. Immediately copy the new code and use it with this helper")

    if "localhost" in redirect_uri:
        _err()
        _err("Redirect URI tips:")
        _err("- Ensure your Google Cloud OAuth credentials have EXACTLY this redirect URI:")
        _err(f"  {redirect_uri}")
        _err("- The URI is case-sensitive and must match exactly")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="calendar-bridge-auth",
        description="Exchange a Google authorization code for a refresh token",
    )
    parser.add_argument("code", nargs="?", help="authorization code from the consent redirect")
    args = parser.parse_args(argv)

    if not args.code:
        _err("Error: No authorization code provided")
        _err('Usage: calendar-bridge-auth "YOUR_AUTH_CODE"')
        return 1

    missing = missing_env_vars()
    if missing:
        _print_missing_env(missing)
        return 1
    credentials = load_credentials()

    print("Attempting to get refresh token with:")
    print(f"- Auth Code: {args.code[:5]}...")
    print(f"- Redirect URI: {credentials.redirect_uri}")
    print("Exchanging auth code for tokens...")

    try:
        result = asyncio.run(complete_authorization(args.code, credentials, TokenStore()))
    except NoRefreshTokenIssued:
        _print_no_refresh_token_hints()
        return 1
    except UpstreamApiError as e:
        _err(f"Error getting refresh token: {e}")
        if e.code == "invalid_grant" or "invalid_grant" in str(e):
            _print_invalid_grant_hints(credentials.redirect_uri)
        return 1
    except MissingCredentials as e:
        _err(f"Error: {e}")
        return 1

    print()
    print("Successfully obtained refresh token!")
    print()
    print("Refresh Token:")
    print(result.refresh_token)

    env_path = Path.cwd() / ".env"
    try:
        set_env_value(env_path, ENV_TOKEN_VAR, result.refresh_token)
        print()
        print(f"Added refresh token to {env_path}")
    except OSError as e:
        _err(f"Warning: could not update {env_path}: {e}")

    print()
    if result.calendar_count is not None:
        print(f"Connection successful! Found {result.calendar_count} calendars.")
    else:
        print("Could not verify the token against Google Calendar; it has been saved anyway.")
    print("You can now start the server with: calendar-bridge")
    return 0


if __name__ == "__main__":
    sys.exit(main())
