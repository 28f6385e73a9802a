"""The calendar provider: tool dispatch over one authenticated backend.

One provider instance is owned by the server for the life of the process.
It starts unauthenticated when no refresh token exists and becomes
authenticated once an authorization code is exchanged, without a restart.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel

from .auth_helper import complete_authorization
from .exceptions import NotAuthenticated, UnknownTool
from .google_client import CalendarBackend, GoogleCalendarClient
from .oauth import GoogleOAuthSession
from .settings import Credentials
from .token_store import TokenStore
from .tools import TOOLS, ToolDefinition

logger = logging.getLogger(__name__)

BackendFactory = Callable[[Credentials], CalendarBackend]


class ToolRequest(BaseModel):
    """A single tool invocation."""
    name: str
    arguments: Any = None


class CalendarProvider:
    """Exposes the tool registry and forwards calls to the calendar backend."""

    def __init__(
        self,
        credentials: Credentials,
        token_store: TokenStore | None = None,
        backend_factory: BackendFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.token_store = token_store or TokenStore()
        self._transport = transport
        self._backend_factory = backend_factory or self._google_backend
        self.backend: CalendarBackend | None = None
        self._auth_lock = asyncio.Lock()

    def _google_backend(self, credentials: Credentials) -> CalendarBackend:
        session = GoogleOAuthSession(credentials, transport=self._transport)
        return GoogleCalendarClient(session, transport=self._transport)

    def initialize(self) -> bool:
        """Build the backend if a refresh token is available.

        Returns whether the provider is authenticated. A missing token is not
        an error; the callback route can complete authorization later.
        """
        token = self.token_store.load() or self.credentials.refresh_token
        if token:
            self.credentials.refresh_token = token
            self.backend = self._backend_factory(self.credentials)
        else:
            logger.warning("No refresh token available; Google Calendar is not authenticated")
        return self.is_authenticated()

    def is_authenticated(self) -> bool:
        return self.backend is not None and bool(self.credentials.refresh_token)

    def get_tool_definitions(self) -> dict[str, ToolDefinition]:
        return {name: tool.definition for name, tool in TOOLS.items()}

    async def set_auth_code(self, code: str) -> None:
        """Exchange ``code`` and switch the live backend to the new refresh token."""
        async with self._auth_lock:
            result = await complete_authorization(
                code,
                self.credentials,
                self.token_store,
                verify=False,
                transport=self._transport,
            )
            self.credentials.refresh_token = result.refresh_token
            if self.backend is None:
                self.backend = self._backend_factory(self.credentials)
            else:
                self.backend.set_refresh_token(result.refresh_token)
        logger.info("Authorization complete; refresh token updated")

    async def handle_request(self, request: ToolRequest | dict[str, Any]) -> dict[str, Any]:
        """Run one tool and return the upstream result.

        Raises:
            UnknownTool: if the tool name is not registered.
            NotAuthenticated: if no refresh token has been set.
            InvalidArguments: if the arguments fail validation.
            UpstreamApiError: if Google rejects the call.
        """
        if not isinstance(request, ToolRequest):
            request = ToolRequest.model_validate(request)

        tool = TOOLS.get(request.name)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {request.name}")
        if not self.is_authenticated():
            raise NotAuthenticated(
                "Not authenticated with Google Calendar. "
                "Complete the authorization flow via /auth/callback first."
            )

        logger.info("Running tool: %s", request.name)
        return await tool.run(self.backend, request.arguments)
