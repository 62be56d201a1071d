"""
Eventsmith calendar tools.

Provides the calendar store protocol and its adapters:
- Google Calendar API (free for personal use)
- In-memory store for dry runs and tests
"""

from .calendar import (
    CalendarEvent,
    CalendarStore,
    GoogleCalendarStore,
    InMemoryCalendarStore,
    create_calendar_store,
    resource_bounds,
)

__all__ = [
    "CalendarEvent",
    "CalendarStore",
    "GoogleCalendarStore",
    "InMemoryCalendarStore",
    "create_calendar_store",
    "resource_bounds",
]
