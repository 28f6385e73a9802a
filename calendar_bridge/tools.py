"""The fixed tool registry exposed to calling agents.

Each tool validates its arguments with a pydantic model whose field names
follow the Google Calendar API, then makes exactly one backend call.
Tool names are part of the public contract.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .calendar_utils import find_free_windows, parse_rfc3339
from .exceptions import InvalidArguments
from .google_client import CalendarBackend

# ============================================================================
# Pydantic Models - Event Resources
# ============================================================================


class EventDateTime(BaseModel):
    """Start or end of an event: ``date`` for all-day events, ``dateTime`` otherwise."""
    date: str | None = Field(None, description="YYYY-MM-DD")
    dateTime: str | None = Field(None, description="RFC3339 timestamp")
    timeZone: str | None = Field(None, description="IANA time zone name")

    @model_validator(mode="after")
    def _require_date_or_datetime(self) -> "EventDateTime":
        if not self.date and not self.dateTime:
            raise ValueError("either 'date' or 'dateTime' is required")
        return self


class Attendee(BaseModel):
    """Guest to invite. Response state is owned by Google and not settable here."""
    email: str = Field(..., min_length=3)
    displayName: str | None = None
    optional: bool | None = None
    comment: str | None = None
    additionalGuests: int | None = Field(None, ge=0)


class ReminderOverride(BaseModel):
    method: Literal["email", "popup"]
    minutes: int = Field(..., ge=0, le=40320, description="Minutes before start (max 4 weeks)")


class Reminders(BaseModel):
    useDefault: bool = True
    overrides: list[ReminderOverride] | None = Field(None, max_length=5)


# ============================================================================
# Pydantic Models - Tool Arguments
# ============================================================================


class ListEventsArgs(BaseModel):
    calendarId: str = Field("primary", description="Calendar ID ('primary' for the user's calendar)")
    timeMin: str | None = Field(None, description="Lower bound for event end time (RFC3339)")
    timeMax: str | None = Field(None, description="Upper bound for event start time (RFC3339)")
    maxResults: int | None = Field(None, ge=1, le=2500, description="Maximum events returned")
    q: str | None = Field(None, description="Free text search")
    singleEvents: bool = Field(True, description="Expand recurring events into instances")
    orderBy: str | None = Field(None, description="'startTime' or 'updated'")
    pageToken: str | None = Field(None, description="Token of the page to return")
    timeZone: str | None = Field(None, description="Time zone used in the response")


class CreateEventArgs(BaseModel):
    """Unlisted event fields are passed through to the API."""
    model_config = ConfigDict(extra="allow")

    calendarId: str = Field("primary", description="Calendar ID")
    sendUpdates: str | None = Field(None, description="'all', 'externalOnly' or 'none'")
    summary: str | None = Field(None, description="Event title")
    description: str | None = Field(None, description="Event description")
    location: str | None = Field(None, description="Event location")
    start: EventDateTime = Field(..., description="Start time")
    end: EventDateTime = Field(..., description="End time")
    attendees: list[Attendee] | None = Field(None, description="Event attendees")
    recurrence: list[str] | None = Field(None, description="Recurrence rules (RRULE)")
    reminders: Reminders | None = Field(None, description="Reminder settings")


class UpdateEventArgs(BaseModel):
    """Only the event fields given are changed."""
    model_config = ConfigDict(extra="allow")

    calendarId: str = Field("primary", description="Calendar ID")
    eventId: str = Field(..., description="ID of the event to update")
    sendUpdates: str | None = Field(None, description="'all', 'externalOnly' or 'none'")
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: EventDateTime | None = None
    end: EventDateTime | None = None
    attendees: list[Attendee] | None = None
    recurrence: list[str] | None = None
    reminders: Reminders | None = None


class DeleteEventArgs(BaseModel):
    calendarId: str = Field("primary", description="Calendar ID")
    eventId: str = Field(..., description="ID of the event to delete")
    sendUpdates: str | None = Field(None, description="'all', 'externalOnly' or 'none'")


class CheckAvailabilityArgs(BaseModel):
    timeMin: str = Field(..., description="Start of the interval (RFC3339)")
    timeMax: str = Field(..., description="End of the interval (RFC3339)")
    calendarIds: list[str] = Field(
        default_factory=lambda: ["primary"], min_length=1, description="Calendars to check"
    )
    timeZone: str | None = Field(None, description="Time zone used in the response")

    @field_validator("timeMin", "timeMax")
    @classmethod
    def _valid_timestamp(cls, value: str) -> str:
        parse_rfc3339(value)
        return value

    @model_validator(mode="after")
    def _ordered_range(self) -> "CheckAvailabilityArgs":
        if parse_rfc3339(self.timeMax) <= parse_rfc3339(self.timeMin):
            raise ValueError("timeMax must be after timeMin")
        return self


# ============================================================================
# Tool Handlers
# ============================================================================

_REQUEST_ONLY_FIELDS = {"calendarId", "eventId", "sendUpdates"}


def _event_body(args: BaseModel) -> dict[str, Any]:
    return args.model_dump(exclude_none=True, by_alias=True, exclude=_REQUEST_ONLY_FIELDS)


async def _list_events(backend: CalendarBackend, args: ListEventsArgs) -> dict[str, Any]:
    params = args.model_dump(exclude_none=True, exclude={"calendarId"})
    return await backend.list_events(args.calendarId, **params)


async def _create_event(backend: CalendarBackend, args: CreateEventArgs) -> dict[str, Any]:
    return await backend.create_event(
        calendar_id=args.calendarId,
        event_data=_event_body(args),
        send_updates=args.sendUpdates,
    )


async def _update_event(backend: CalendarBackend, args: UpdateEventArgs) -> dict[str, Any]:
    return await backend.update_event(
        calendar_id=args.calendarId,
        event_id=args.eventId,
        event_data=_event_body(args),
        send_updates=args.sendUpdates,
    )


async def _delete_event(backend: CalendarBackend, args: DeleteEventArgs) -> dict[str, Any]:
    return await backend.delete_event(
        calendar_id=args.calendarId,
        event_id=args.eventId,
        send_updates=args.sendUpdates,
    )


async def _check_availability(
    backend: CalendarBackend, args: CheckAvailabilityArgs
) -> dict[str, Any]:
    result = await backend.query_free_busy(
        time_min=args.timeMin,
        time_max=args.timeMax,
        calendar_ids=args.calendarIds,
        time_zone=args.timeZone,
    )
    # Calendars Google could not read (notFound, forbidden) get None, not an empty busy list
    free = {
        calendar_id: (
            None if calendar.get("errors")
            else find_free_windows(calendar.get("busy", []), args.timeMin, args.timeMax)
        )
        for calendar_id, calendar in result.get("calendars", {}).items()
    }
    return {**result, "free": free}


# ============================================================================
# Registry
# ============================================================================


class ToolDefinition(BaseModel):
    """Public description of a tool."""
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    arguments_model: type[BaseModel]
    handler: Callable[[CalendarBackend, Any], Awaitable[dict[str, Any]]]

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.arguments_model.model_json_schema(by_alias=True),
        )

    def parse_arguments(self, arguments: Any) -> BaseModel:
        """Validate raw arguments.

        Raises:
            InvalidArguments: naming the first missing or malformed field.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidArguments(
                f"Arguments for {self.name} must be an object", field="arguments"
            )
        try:
            return self.arguments_model.model_validate(arguments)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "arguments"
            raise InvalidArguments(
                f"Invalid argument '{field}' for {self.name}: {error['msg']}", field=field
            ) from e

    async def run(self, backend: CalendarBackend, arguments: Any) -> dict[str, Any]:
        return await self.handler(backend, self.parse_arguments(arguments))


TOOLS: dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool(
            name="list-events",
            description="List events in a calendar, optionally within a time range",
            arguments_model=ListEventsArgs,
            handler=_list_events,
        ),
        Tool(
            name="create-event",
            description="Create a new event in a calendar",
            arguments_model=CreateEventArgs,
            handler=_create_event,
        ),
        Tool(
            name="update-event",
            description="Update fields of an existing event",
            arguments_model=UpdateEventArgs,
            handler=_update_event,
        ),
        Tool(
            name="delete-event",
            description="Delete an event from a calendar",
            arguments_model=DeleteEventArgs,
            handler=_delete_event,
        ),
        Tool(
            name="check-availability",
            description="Check busy and free time across calendars in a time range",
            arguments_model=CheckAvailabilityArgs,
            handler=_check_availability,
        ),
    )
}
