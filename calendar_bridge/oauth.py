"""OAuth2 authorization-code and refresh-token handling for Google."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from .exceptions import UpstreamApiError
from .settings import CALENDAR_SCOPES, GOOGLE_AUTH_URL, GOOGLE_TOKEN_URL, Credentials

logger = logging.getLogger(__name__)

# Refresh a little before Google says the access token expires
EXPIRY_MARGIN_SECONDS = 60


def build_authorization_url(credentials: Credentials) -> str:
    """Build the consent URL the user opens to authorize calendar access.

    ``prompt=consent`` forces Google to issue a refresh token even when the
    user has authorized this client before.
    """
    params = {
        "client_id": credentials.client_id,
        "redirect_uri": credentials.redirect_uri,
        "response_type": "code",
        "scope": " ".join(CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def error_from_response(response: httpx.Response, default: str) -> UpstreamApiError:
    """Turn a non-2xx Google response into an UpstreamApiError.

    Handles both error shapes Google uses: the Calendar API's
    ``{"error": {"code", "message", "status"}}`` and the OAuth endpoint's
    ``{"error": "invalid_grant", "error_description": ...}``.
    """
    message = default
    code: str | None = None
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message") or default
            code = error.get("status") or (str(error["code"]) if error.get("code") else None)
        elif isinstance(error, str):
            description = data.get("error_description")
            message = f"{error}: {description}" if description else error
            code = error
    elif response.text.strip():
        message = " ".join(response.text.split())[:200]

    return UpstreamApiError(
        message,
        code=code or str(response.status_code),
        status_code=response.status_code,
    )


class GoogleOAuthSession:
    """Holds the refresh token and hands out cached access tokens."""

    def __init__(
        self,
        credentials: Credentials,
        token_url: str = GOOGLE_TOKEN_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.token_url = token_url
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at: datetime | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def refresh_token(self) -> str | None:
        return self.credentials.refresh_token

    def set_refresh_token(self, refresh_token: str | None) -> None:
        """Swap the refresh token in place; the cached access token is dropped."""
        self.credentials.refresh_token = refresh_token
        self._access_token = None
        self._expires_at = None

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._expires_at is None:
            return False
        return datetime.now(UTC) < self._expires_at

    async def _post_token_request(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(
                    self.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamApiError(f"Google OAuth request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response, "Google OAuth token request failed")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamApiError("Google OAuth token endpoint returned invalid JSON") from e

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens (authorization-code grant)."""
        return await self._post_token_request({
            "code": code,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
            "redirect_uri": self.credentials.redirect_uri,
            "grant_type": "authorization_code",
        })

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """Return a valid access token, refreshing it from the refresh token if needed."""
        if not force_refresh and self._token_is_fresh():
            return self._access_token

        async with self._refresh_lock:
            if not force_refresh and self._token_is_fresh():
                return self._access_token

            refresh_token = self.refresh_token
            payload = await self._post_token_request({
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "refresh_token": refresh_token or "",
                "grant_type": "refresh_token",
            })

            access_token = payload.get("access_token")
            if not access_token:
                raise UpstreamApiError("Google OAuth token response is missing access_token")

            expires_in = payload.get("expires_in")
            if not isinstance(expires_in, int | float) or expires_in <= 0:
                expires_in = 3600

            # A concurrent set_refresh_token wins over this refresh
            if self.refresh_token == refresh_token:
                self._access_token = access_token
                self._expires_at = datetime.now(UTC) + timedelta(
                    seconds=max(expires_in - EXPIRY_MARGIN_SECONDS, 30)
                )
            return access_token
