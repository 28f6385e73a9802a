"""Calendar backend interface and the Google Calendar v3 REST implementation."""

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx

from .exceptions import UpstreamApiError
from .oauth import GoogleOAuthSession, error_from_response
from .settings import GOOGLE_CALENDAR_API_URL


# ============================================================================
# Abstract Calendar Backend Interface
# ============================================================================


class CalendarBackend(ABC):
    """The calendar capabilities the tools are built on.

    ``GoogleCalendarClient`` talks to the real API; tests substitute a stub.
    Every method performs exactly one upstream call and returns the decoded
    JSON resource unchanged.
    """

    @abstractmethod
    def set_refresh_token(self, refresh_token: str | None) -> None:
        """Replace the credential used for subsequent calls."""
        pass

    @abstractmethod
    async def list_calendars(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def list_events(self, calendar_id: str, **params: Any) -> dict[str, Any]:
        pass

    @abstractmethod
    async def create_event(
        self,
        calendar_id: str,
        event_data: dict[str, Any],
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def update_event(
        self,
        calendar_id: str,
        event_id: str,
        event_data: dict[str, Any],
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        """Apply ``event_data`` to an existing event (fields not given are kept)."""
        pass

    @abstractmethod
    async def delete_event(
        self,
        calendar_id: str,
        event_id: str,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def query_free_busy(
        self,
        time_min: str,
        time_max: str,
        calendar_ids: list[str],
        time_zone: str | None = None,
    ) -> dict[str, Any]:
        pass


# ============================================================================
# Google Calendar REST Client
# ============================================================================


class GoogleCalendarClient(CalendarBackend):
    """Client for the Google Calendar v3 REST API."""

    def __init__(
        self,
        session: GoogleOAuthSession,
        base_url: str = GOOGLE_CALENDAR_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def set_refresh_token(self, refresh_token: str | None) -> None:
        self.session.set_refresh_token(refresh_token)

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self.base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            url += f"/{quote(event_id, safe='')}"
        return url

    async def _get_headers(self) -> dict[str, str]:
        access_token = await self.session.get_access_token()
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = await self._get_headers()
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.request(
                    method, url, headers=headers, params=params or None, json=json
                )
        except httpx.HTTPError as e:
            raise UpstreamApiError(f"Google Calendar request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response(response, "Google Calendar API error")
        return response

    # ========== Calendar Operations ==========

    async def list_calendars(self) -> dict[str, Any]:
        """List the calendars of the authenticated user."""
        response = await self._request("GET", f"{self.base_url}/users/me/calendarList")
        return response.json()

    # ========== Event Operations ==========

    async def list_events(self, calendar_id: str, **params: Any) -> dict[str, Any]:
        """List events; ``params`` use the API's query parameter names."""
        query = {key: value for key, value in params.items() if value is not None}
        response = await self._request("GET", self._events_url(calendar_id), params=query)
        return response.json()

    async def create_event(
        self,
        calendar_id: str,
        event_data: dict[str, Any],
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        params = {"sendUpdates": send_updates} if send_updates else None
        response = await self._request(
            "POST", self._events_url(calendar_id), params=params, json=event_data
        )
        return response.json()

    async def update_event(
        self,
        calendar_id: str,
        event_id: str,
        event_data: dict[str, Any],
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        params = {"sendUpdates": send_updates} if send_updates else None
        response = await self._request(
            "PATCH", self._events_url(calendar_id, event_id), params=params, json=event_data
        )
        return response.json()

    async def delete_event(
        self,
        calendar_id: str,
        event_id: str,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        params = {"sendUpdates": send_updates} if send_updates else None
        await self._request("DELETE", self._events_url(calendar_id, event_id), params=params)
        # DELETE returns an empty 204 body on success
        return {"success": True, "eventId": event_id}

    async def query_free_busy(
        self,
        time_min: str,
        time_max: str,
        calendar_ids: list[str],
        time_zone: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "items": [{"id": calendar_id} for calendar_id in calendar_ids],
        }
        if time_zone:
            body["timeZone"] = time_zone
        response = await self._request("POST", f"{self.base_url}/freeBusy", json=body)
        return response.json()
