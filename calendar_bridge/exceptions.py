"""Custom exceptions for the Calendar Bridge."""


class CalendarBridgeError(Exception):
    """Base exception carrying a machine-readable error code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


class MissingCredentials(CalendarBridgeError):
    """Raised when client id, client secret or redirect URI is not configured."""

    code = "MISSING_CREDENTIALS"


class NoRefreshTokenIssued(CalendarBridgeError):
    """Raised when the code exchange succeeds but Google returns no refresh token."""

    code = "NO_REFRESH_TOKEN"


class NotAuthenticated(CalendarBridgeError):
    """Raised when a tool is called before any refresh token is available."""

    code = "NOT_AUTHENTICATED"


class UnknownTool(CalendarBridgeError):
    """Raised when a request names a tool that is not in the registry."""

    code = "UNKNOWN_TOOL"


class InvalidArguments(CalendarBridgeError):
    """Raised when tool arguments are missing or malformed."""

    code = "INVALID_ARGUMENTS"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class UpstreamApiError(CalendarBridgeError):
    """Raised when Google (OAuth or Calendar API) returns an error."""

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message, code)
        self.status_code = status_code


class PortUnavailable(CalendarBridgeError):
    """Raised when no port could be bound for the server."""

    code = "PORT_UNAVAILABLE"
