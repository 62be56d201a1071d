"""
Centralized Error Handling for Eventsmith.

Provides:
- The error taxonomy shared by extraction, creation and mutation
- Exceptions raised by the completion and calendar collaborators
- Classification of calendar store failures
- User-friendly messages for every terminal outcome
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from loguru import logger


class ErrorKind(str, Enum):
    """Outcome categories surfaced to callers."""
    EXTRACTION_UNPARSEABLE = "extraction_unparseable"
    VALIDATION_FAILURE = "validation_failure"
    DUPLICATE_DETECTED = "duplicate_detected"
    AUTHORIZATION_REQUIRED = "authorization_required"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    TIME_CONFLICT = "time_conflict"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN_TECHNICAL = "unknown_technical"
    MISSING_EVENT_ID = "missing_event_id"
    NOTHING_TO_UPDATE = "nothing_to_update"

    @property
    def retryable(self) -> bool:
        """Only transient provider failures are worth another attempt."""
        return self in (ErrorKind.PROVIDER_UNAVAILABLE, ErrorKind.UNKNOWN_TECHNICAL)

    @property
    def is_validation(self) -> bool:
        return self in (
            ErrorKind.VALIDATION_FAILURE,
            ErrorKind.MISSING_EVENT_ID,
            ErrorKind.NOTHING_TO_UPDATE,
        )


class EventsmithError(Exception):
    """Base class for Eventsmith errors."""
    pass


class ConfigurationError(EventsmithError):
    """Raised when a required configuration is missing."""
    pass


class CompletionError(EventsmithError):
    """Raised when the text-completion service fails or returns nothing."""
    pass


class ExtractionParseError(EventsmithError):
    """Raised when completion output cannot be turned into JSON."""
    pass


class CalendarStoreError(EventsmithError):
    """
    Raised by calendar store adapters.

    Carries the provider status code when one is known so the executor
    can classify the failure without parsing provider-specific payloads.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"[{self.status}] {base}"
        return base


# User-friendly messages per outcome kind
ERROR_MESSAGES: Dict[ErrorKind, Dict[str, str]] = {
    ErrorKind.EXTRACTION_UNPARSEABLE: {
        "short": "I couldn't read the event details",
        "detailed": "The event details could not be understood. Try including a title, a date and a time.",
    },
    ErrorKind.VALIDATION_FAILURE: {
        "short": "Some event details are missing or invalid",
        "detailed": "Some event details are still missing or invalid after automatic repair. Check the title, date and times.",
    },
    ErrorKind.DUPLICATE_DETECTED: {
        "short": "This event is already in your calendar",
        "detailed": "An event with the same title already exists at an overlapping time, so nothing new was created.",
    },
    ErrorKind.AUTHORIZATION_REQUIRED: {
        "short": "Calendar authorization required",
        "detailed": """Access to your calendar is not authorized.

To reconnect your calendar:
1. Delete the stored token file (calendar.token_file in settings.yaml)
2. Run Eventsmith again and complete the Google sign-in
3. Make sure GOOGLE_CALENDAR_CREDENTIALS_PATH points to your OAuth client file""",
    },
    ErrorKind.PERMISSION_DENIED: {
        "short": "Calendar permission denied",
        "detailed": "Your account does not have permission to change this calendar. Check the calendar's sharing settings.",
    },
    ErrorKind.NOT_FOUND: {
        "short": "Event not found",
        "detailed": "The event could not be found. It may have been deleted already, or the event ID is wrong.",
    },
    ErrorKind.TIME_CONFLICT: {
        "short": "Time conflict",
        "detailed": "The calendar rejected the event because of a conflict at that time. Try a different time slot.",
    },
    ErrorKind.PROVIDER_UNAVAILABLE: {
        "short": "Calendar service unavailable",
        "detailed": "The calendar service is temporarily unavailable. Try again in a few moments.",
    },
    ErrorKind.UNKNOWN_TECHNICAL: {
        "short": "Technical error",
        "detailed": "A technical error occurred while talking to the calendar. Try again, or rephrase the request.",
    },
    ErrorKind.MISSING_EVENT_ID: {
        "short": "Event ID required",
        "detailed": "I need the event ID to change or delete an event. List your events first to find it.",
    },
    ErrorKind.NOTHING_TO_UPDATE: {
        "short": "Nothing to update",
        "detailed": "No new title, date, time, description or location was given, so the event was left unchanged.",
    },
}


def get_error_message(kind: ErrorKind | str, detailed: bool = False) -> str:
    """
    Get user-friendly error message.

    Args:
        kind: The outcome kind (enum member or its value)
        detailed: Whether to return the detailed message with guidance

    Returns:
        User-friendly error message
    """
    try:
        kind = ErrorKind(kind)
    except ValueError:
        return f"An error occurred: {kind}"

    msg = ERROR_MESSAGES[kind]
    return msg["detailed"] if detailed else msg["short"]


def classify_status(status: Optional[int]) -> ErrorKind:
    """Map a provider status code onto the error taxonomy."""
    if status is None:
        return ErrorKind.UNKNOWN_TECHNICAL
    if status == 401:
        return ErrorKind.AUTHORIZATION_REQUIRED
    if status == 403:
        return ErrorKind.PERMISSION_DENIED
    if status in (404, 410):
        return ErrorKind.NOT_FOUND
    if status == 409:
        return ErrorKind.TIME_CONFLICT
    if status == 429 or status >= 500:
        return ErrorKind.PROVIDER_UNAVAILABLE
    return ErrorKind.UNKNOWN_TECHNICAL


def classify_store_error(error: Exception) -> ErrorKind:
    """
    Classify a calendar store failure.

    Uses the status code when the adapter supplied one, otherwise falls
    back to common message patterns.
    """
    status = getattr(error, "status", None)
    if status is not None:
        return classify_status(status)

    error_str = str(error).lower()

    if "401" in error_str or "unauthorized" in error_str or "invalid_grant" in error_str:
        return ErrorKind.AUTHORIZATION_REQUIRED

    if "403" in error_str or "forbidden" in error_str or "permission" in error_str:
        return ErrorKind.PERMISSION_DENIED

    if "404" in error_str or "not found" in error_str:
        return ErrorKind.NOT_FOUND

    if "409" in error_str or "conflict" in error_str:
        return ErrorKind.TIME_CONFLICT

    if (
        "429" in error_str
        or "rate limit" in error_str
        or "timeout" in error_str
        or "timed out" in error_str
        or "unavailable" in error_str
        or "connection" in error_str
    ):
        return ErrorKind.PROVIDER_UNAVAILABLE

    logger.debug(f"Unclassified calendar store error: {error}")
    return ErrorKind.UNKNOWN_TECHNICAL
