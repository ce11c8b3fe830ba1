from typing import Any


class JanitorError(Exception):
    """Base exception for the job store janitor."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(JanitorError):
    """Raised when a required dependency or setting is missing."""


class MalformedTimestampError(JanitorError):
    """Raised when a job record carries a timestamp that cannot be parsed."""

    def __init__(self, value: Any, field: str | None = None):
        details = {"value": repr(value)}
        if field:
            details["field"] = field
        super().__init__(f"Invalid timestamp: {value!r}", details)


class StoreNotReadyError(JanitorError):
    """Raised when the job store cannot be reached at startup."""
