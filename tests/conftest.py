"""Pytest fixtures and sample data for Calendar Bridge tests."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from calendar_bridge.google_client import CalendarBackend
from calendar_bridge.provider import CalendarProvider
from calendar_bridge.server import create_app
from calendar_bridge.settings import Credentials
from calendar_bridge.token_store import TokenStore

# ============================================================================
# Sample Calendar Data
# ============================================================================


def get_sample_event(
    event_id: str = "event_123",
    summary: str = "Team Meeting",
    start_hours_from_now: int = 1,
    duration_hours: float = 1,
    attendees: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Generate a sample event with customizable properties."""
    now = datetime.now(UTC).replace(microsecond=0)
    start = now + timedelta(hours=start_hours_from_now)
    end = start + timedelta(hours=duration_hours)

    event = {
        "kind": "calendar#event",
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"), "timeZone": "UTC"},
        "end": {"dateTime": end.strftime("%Y-%m-%dT%H:%M:%SZ"), "timeZone": "UTC"},
        "status": "confirmed",
        "htmlLink": f"https://calendar.google.com/event?eid={event_id}",
    }
    if attendees is not None:
        event["attendees"] = attendees
    return event


SAMPLE_EVENTS_LIST = {
    "kind": "calendar#events",
    "summary": "john.doe@example.com",
    "items": [
        get_sample_event("meeting_001", "Team Standup", 1, 0.5),
        get_sample_event(
            "meeting_002",
            "Design Review",
            3,
            1,
            attendees=[{"email": "alice@example.com", "responseStatus": "accepted"}],
        ),
    ],
}

SAMPLE_FREEBUSY = {
    "kind": "calendar#freeBusy",
    "timeMin": "2024-01-15T09:00:00.000Z",
    "timeMax": "2024-01-15T17:00:00.000Z",
    "calendars": {
        "primary": {
            "busy": [
                {"start": "2024-01-15T10:00:00Z", "end": "2024-01-15T11:00:00Z"},
                {"start": "2024-01-15T13:00:00Z", "end": "2024-01-15T14:30:00Z"},
            ]
        }
    },
}


# ============================================================================
# Fake Google Endpoints
# ============================================================================


class FakeGoogle:
    """Serves the OAuth token endpoint and a few Calendar API routes.

    Every request is recorded in ``requests``. Set ``token_response`` or
    ``routes`` to change what comes back.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_response: dict[str, Any] = {
            "access_token": "access-1",
            "expires_in": 3599,
            "refresh_token": "refresh-new",
            "token_type": "Bearer",
        }
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {
            ("GET", "/calendar/v3/users/me/calendarList"): (
                200, {"items": [{"id": "primary"}, {"id": "work"}]}
            ),
            ("GET", "/calendar/v3/calendars/primary/events"): (200, SAMPLE_EVENTS_LIST),
            ("POST", "/calendar/v3/freeBusy"): (200, SAMPLE_FREEBUSY),
        }

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "oauth2.googleapis.com"]

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "www.googleapis.com"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(self.token_status, json=self.token_response)

        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404, json={"error": {"code": 404, "message": "Not Found"}}
            )
        status, payload = route
        if payload is None:
            return httpx.Response(status)
        return httpx.Response(status, content=json.dumps(payload).encode(),
                              headers={"Content-Type": "application/json"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_google():
    return FakeGoogle()


# ============================================================================
# Provider / Server Fixtures
# ============================================================================


@pytest.fixture
def credentials():
    return Credentials(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://localhost:3000/auth/callback",
    )


@pytest.fixture
def token_store(tmp_path):
    """Token store backed by a temp file and an empty environment."""
    return TokenStore(tmp_path / ".google_refresh_token", environ={})


@pytest.fixture
def mock_backend():
    """Calendar backend stub with default responses."""
    backend = MagicMock(spec=CalendarBackend)
    backend.list_calendars.return_value = {"items": [{"id": "primary"}]}
    backend.list_events.return_value = SAMPLE_EVENTS_LIST
    backend.create_event.return_value = SAMPLE_EVENTS_LIST["items"][0]
    backend.update_event.return_value = SAMPLE_EVENTS_LIST["items"][0]
    backend.delete_event.return_value = {"success": True, "eventId": "meeting_001"}
    backend.query_free_busy.return_value = SAMPLE_FREEBUSY
    return backend


@pytest.fixture
def unauthenticated_provider(credentials, token_store, mock_backend, fake_google):
    provider = CalendarProvider(
        credentials,
        token_store,
        backend_factory=lambda creds: mock_backend,
        transport=fake_google.transport,
    )
    provider.initialize()
    return provider


@pytest.fixture
def provider(credentials, token_store, mock_backend, fake_google):
    token_store.save("refresh-existing")
    provider = CalendarProvider(
        credentials,
        token_store,
        backend_factory=lambda creds: mock_backend,
        transport=fake_google.transport,
    )
    provider.initialize()
    return provider


@pytest.fixture
def client(provider):
    """FastAPI test client around an authenticated provider."""
    return TestClient(create_app(provider, port=3000))


@pytest.fixture
def unauthenticated_client(unauthenticated_provider):
    return TestClient(create_app(unauthenticated_provider, port=3000))
