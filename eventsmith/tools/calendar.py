"""
Calendar stores for Eventsmith.

The scheduling pipeline talks to a calendar through the ``CalendarStore``
protocol: list a window, insert, update, delete and get single events.
Event resources use the Google Calendar v3 JSON shape throughout.

Two adapters are provided:
- GoogleCalendarStore: Google Calendar API (free for personal use)
- InMemoryCalendarStore: a dict-backed store for dry runs and tests

Google setup:
1. Go to Google Cloud Console (https://console.cloud.google.com/)
2. Create a new project or select existing
3. Enable Google Calendar API
4. Create OAuth 2.0 credentials (Desktop app)
5. Download credentials.json to config/google_credentials.json
6. Run Eventsmith - it will prompt for authorization on first use

API Documentation: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import asyncio
import copy
import pickle
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from ..core.errors import CalendarStoreError


# OAuth scopes for Calendar API
SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

EventResource = Dict[str, Any]


class CalendarStore(Protocol):
    """The calendar operations the scheduling pipeline relies on."""

    async def list_events(self, window_start: datetime, window_end: datetime) -> List[EventResource]:
        """Events overlapping ``[window_start, window_end)``."""
        ...

    async def insert_event(self, resource: EventResource) -> str:
        """Create an event and return its id."""
        ...

    async def update_event(self, event_id: str, resource: EventResource) -> EventResource:
        ...

    async def delete_event(self, event_id: str) -> None:
        ...

    async def get_event(self, event_id: str) -> EventResource:
        ...


def _parse_boundary(data: Dict[str, Any], default_tz: str) -> Tuple[datetime, bool]:
    if data.get("date"):
        tz = ZoneInfo(data.get("timeZone") or default_tz)
        return datetime.combine(date.fromisoformat(data["date"]), time.min, tzinfo=tz), True

    value = data.get("dateTime")
    if not value:
        raise ValueError("Event boundary has neither date nor dateTime")

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(data.get("timeZone") or default_tz))
    return parsed, False


def resource_bounds(resource: EventResource, default_tz: str = "UTC") -> Tuple[datetime, datetime, bool]:
    """
    Timezone-aware (start, end, is_all_day) for an event resource.

    Raises:
        ValueError: if start or end is missing or malformed.
    """
    start, all_day = _parse_boundary(resource.get("start") or {}, default_tz)
    end, _ = _parse_boundary(resource.get("end") or {}, default_tz)
    return start, end, all_day


@dataclass
class CalendarEvent:
    """Read-only view of a stored event."""
    id: str
    summary: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    is_all_day: bool = False
    status: str = "confirmed"
    html_link: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: EventResource, default_tz: str = "UTC") -> "CalendarEvent":
        """Create CalendarEvent from a Google Calendar API resource."""
        start, end, is_all_day = resource_bounds(resource, default_tz)
        return cls(
            id=resource.get("id", ""),
            summary=resource.get("summary") or "Untitled Event",
            start=start,
            end=end,
            description=resource.get("description"),
            location=resource.get("location"),
            is_all_day=is_all_day,
            status=resource.get("status", "confirmed"),
            html_link=resource.get("htmlLink"),
        )

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


class InMemoryCalendarStore:
    """
    Dict-backed calendar store.

    Used by ``run.py --dry-run`` and by the tests. Ids are sequential
    (``evt_1``, ``evt_2``...) so results are reproducible.
    """

    def __init__(self, timezone: str = "UTC", events: Optional[List[EventResource]] = None):
        self.timezone = timezone
        self.events: Dict[str, EventResource] = {}
        self.insert_calls = 0
        self._counter = 0
        for resource in events or []:
            self._store(copy.deepcopy(resource))

    def _store(self, resource: EventResource) -> str:
        event_id = resource.get("id")
        if not event_id:
            self._counter += 1
            event_id = f"evt_{self._counter}"
        resource["id"] = event_id
        resource.setdefault("status", "confirmed")
        self.events[event_id] = resource
        return event_id

    def _require(self, event_id: str) -> EventResource:
        if event_id not in self.events:
            raise CalendarStoreError(f"Event not found: {event_id}", status=404)
        return self.events[event_id]

    def _validate(self, resource: EventResource) -> None:
        try:
            start, end, _ = resource_bounds(resource, self.timezone)
        except (ValueError, KeyError) as e:
            raise CalendarStoreError(f"Invalid event times: {e}", status=400) from e
        if end <= start:
            raise CalendarStoreError("The specified time range is empty", status=400)
        if not resource.get("summary"):
            raise CalendarStoreError("Missing summary", status=400)

    async def list_events(self, window_start: datetime, window_end: datetime) -> List[EventResource]:
        found = []
        for resource in self.events.values():
            event = CalendarEvent.from_resource(resource, self.timezone)
            if event.overlaps(window_start, window_end):
                found.append((event.start, copy.deepcopy(resource)))
        found.sort(key=lambda item: item[0])
        return [resource for _, resource in found]

    async def insert_event(self, resource: EventResource) -> str:
        self.insert_calls += 1
        self._validate(resource)
        event_id = self._store(copy.deepcopy(resource))
        logger.debug(f"In-memory insert {event_id}: {resource.get('summary')}")
        return event_id

    async def update_event(self, event_id: str, resource: EventResource) -> EventResource:
        self._require(event_id)
        self._validate(resource)
        updated = copy.deepcopy(resource)
        updated["id"] = event_id
        self.events[event_id] = updated
        return copy.deepcopy(updated)

    async def delete_event(self, event_id: str) -> None:
        self._require(event_id)
        del self.events[event_id]

    async def get_event(self, event_id: str) -> EventResource:
        return copy.deepcopy(self._require(event_id))


class GoogleCalendarStore:
    """
    Google Calendar store.

    The blocking API client runs in the default executor; HTTP failures
    are re-raised as CalendarStoreError carrying the response status.
    """

    def __init__(
        self,
        credentials_file: str = "config/google_credentials.json",
        token_file: str = "config/calendar_token.pickle",
        calendar_id: str = "primary",
        timezone: str = "UTC",
    ):
        """
        Initialize the Google Calendar store.

        Args:
            credentials_file: Path to Google OAuth credentials JSON
            token_file: Path to store OAuth token
            calendar_id: Calendar ID (usually "primary")
            timezone: Zone assumed for naive timestamps
        """
        self.credentials_file = Path(credentials_file)
        self.token_file = Path(token_file)
        self.calendar_id = calendar_id
        self.timezone = timezone
        self._service = None

    def _get_credentials(self):
        """Get or refresh OAuth credentials."""
        creds = None

        # Load existing token
        if self.token_file.exists():
            try:
                with open(self.token_file, "rb") as f:
                    creds = pickle.load(f)
            except (OSError, pickle.UnpicklingError, EOFError) as e:
                logger.warning(f"Failed to load token: {e}")

        if creds and creds.valid:
            return creds

        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except GoogleAuthError as e:
                logger.warning(f"Failed to refresh token: {e}")
                creds = None
        else:
            creds = None

        if not creds:
            if not self.credentials_file.exists():
                raise CalendarStoreError(
                    f"Credentials file not found: {self.credentials_file}", status=401
                )
            flow = InstalledAppFlow.from_client_secrets_file(str(self.credentials_file), SCOPES)
            creds = flow.run_local_server(port=0)

        # Save token for future use
        try:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.token_file, "wb") as f:
                pickle.dump(creds, f)
        except OSError as e:
            logger.warning(f"Failed to save token: {e}")

        return creds

    def _get_service(self):
        """Get or create Calendar API service."""
        if self._service is None:
            creds = self._get_credentials()
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(self, action: str, build_request: Callable[[Any], Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            service = await loop.run_in_executor(None, self._get_service)
            return await loop.run_in_executor(None, lambda: build_request(service).execute())
        except HttpError as e:
            status = int(getattr(e.resp, "status", 0) or 0) or None
            logger.error(f"Calendar API error during {action}: {e}")
            raise CalendarStoreError(f"{action} failed: {e}", status=status) from e
        except GoogleAuthError as e:
            logger.error(f"Calendar authorization failed during {action}: {e}")
            raise CalendarStoreError(f"{action} failed: {e}", status=401) from e
        except (OSError, TimeoutError) as e:
            logger.error(f"Calendar connection failed during {action}: {e}")
            raise CalendarStoreError(f"{action} failed: {e}", status=503) from e

    async def list_events(self, window_start: datetime, window_end: datetime) -> List[EventResource]:
        items: List[EventResource] = []
        page_token = None
        while True:
            token = page_token
            result = await self._execute(
                "list",
                lambda service: service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=window_start.isoformat(),
                    timeMax=window_end.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=250,
                    pageToken=token,
                ),
            )
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                return items

    async def insert_event(self, resource: EventResource) -> str:
        created = await self._execute(
            "insert",
            lambda service: service.events().insert(calendarId=self.calendar_id, body=resource),
        )
        logger.info(f"Created calendar event {created.get('id')}: {resource.get('summary')}")
        return created["id"]

    async def update_event(self, event_id: str, resource: EventResource) -> EventResource:
        return await self._execute(
            "update",
            lambda service: service.events().update(
                calendarId=self.calendar_id, eventId=event_id, body=resource
            ),
        )

    async def delete_event(self, event_id: str) -> None:
        await self._execute(
            "delete",
            lambda service: service.events().delete(calendarId=self.calendar_id, eventId=event_id),
        )

    async def get_event(self, event_id: str) -> EventResource:
        return await self._execute(
            "get",
            lambda service: service.events().get(calendarId=self.calendar_id, eventId=event_id),
        )


def create_calendar_store(calendar_config, credentials_path: Optional[str] = None, dry_run: bool = False):
    """Build the store described by the calendar configuration section."""
    if dry_run:
        logger.info("Using in-memory calendar store (dry run)")
        return InMemoryCalendarStore(timezone=calendar_config.timezone)

    return GoogleCalendarStore(
        credentials_file=credentials_path or calendar_config.credentials_file,
        token_file=calendar_config.token_file,
        calendar_id=calendar_config.calendar_id,
        timezone=calendar_config.timezone,
    )
