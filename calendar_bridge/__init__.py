"""Calendar Bridge - a local HTTP tool endpoint for Google Calendar."""

__version__ = "1.0.0"
