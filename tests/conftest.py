"""
Shared fakes for the Eventsmith tests.

No test talks to a network: completion output is scripted and calendars
live in memory.
"""

import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from eventsmith.core.errors import CalendarStoreError, CompletionError
from eventsmith.tools.calendar import InMemoryCalendarStore


class ScriptedCompletionService:
    """Returns queued replies in order. Queued exceptions are raised instead."""

    def __init__(self, replies=None, default: Optional[str] = None):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Tuple[str, str]] = []

    async def complete(self, model_hint: str, prompt: str) -> str:
        self.calls.append((model_hint, prompt))
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise CompletionError("no scripted reply left")
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def models_used(self) -> List[str]:
        return [model for model, _ in self.calls]


class FailingStore(InMemoryCalendarStore):
    """In-memory store whose first inserts fail with queued (status, message) pairs."""

    def __init__(self, failures=None, timezone: str = "UTC", list_error: Optional[Exception] = None):
        super().__init__(timezone=timezone)
        self.failures = list(failures or [])
        self.list_error = list_error
        self.attempted: List[dict] = []

    async def insert_event(self, resource):
        self.attempted.append(resource)
        if self.failures:
            self.insert_calls += 1
            status, message = self.failures.pop(0)
            raise CalendarStoreError(message, status=status)
        return await super().insert_event(resource)

    async def list_events(self, window_start, window_end):
        if self.list_error is not None:
            raise self.list_error
        return await super().list_events(window_start, window_end)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the delays it was asked for."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def memory_store():
    return InMemoryCalendarStore(timezone="UTC")


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


def timed_resource(summary: str, day: str, start: str, end: str, tz: str = "UTC", **extra) -> dict:
    """A calendar resource in the Google v3 shape."""
    resource = {
        "summary": summary,
        "start": {"dateTime": f"{day}T{start}:00", "timeZone": tz},
        "end": {"dateTime": f"{day}T{end}:00", "timeZone": tz},
    }
    resource.update(extra)
    return resource
