"""
Duplicate detection.

Before a draft is inserted, the store is queried for events around the
draft's window (padded by an hour on each side) and any event with the
same normalized title and an overlapping interval is treated as the
draft itself. Creating it again is skipped and the existing id is
returned.

The check and the insert that follows are two separate store calls.
Two concurrent requests for the same event can both pass the check, so
"at most one copy" is best-effort, not guaranteed.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from ..core.errors import CalendarStoreError
from ..tools.calendar import CalendarEvent, CalendarStore
from .models import DuplicateMatch, EventDraft, MatchKind
from .temporal import is_valid_date, is_valid_time


_ARTICLES_RE = re.compile(r"\b(the|a|an)\b")


def normalize_title(title: Optional[str]) -> str:
    """Lowercase, drop the articles the/a/an, collapse whitespace."""
    if not title:
        return ""
    lowered = _ARTICLES_RE.sub(" ", title.lower())
    return " ".join(lowered.split())


def draft_interval(draft: EventDraft, tz: str) -> Optional[Tuple[datetime, datetime]]:
    """Aware (start, end) for a complete draft, or None if its fields are unusable."""
    if not (is_valid_date(draft.date) and is_valid_time(draft.start) and is_valid_time(draft.end)):
        return None
    zone = ZoneInfo(tz)
    start = datetime.strptime(f"{draft.date} {draft.start}", "%Y-%m-%d %H:%M").replace(tzinfo=zone)
    end = datetime.strptime(f"{draft.date} {draft.end}", "%Y-%m-%d %H:%M").replace(tzinfo=zone)
    if end <= start:
        end += timedelta(days=1)
    return start, end


class DuplicateDetector:
    """Finds an existing event equivalent to a draft."""

    def __init__(self, store: CalendarStore, timezone: str = "UTC", padding_minutes: int = 60):
        self.store = store
        self.timezone = timezone
        self.padding = timedelta(minutes=padding_minutes)

    async def find_duplicate(self, draft: EventDraft) -> Optional[DuplicateMatch]:
        """
        Return the matching existing event, or None.

        A failing lookup is logged and treated as "no duplicate" so that
        creation can go ahead.
        """
        interval = draft_interval(draft, self.timezone)
        if interval is None:
            return None
        start, end = interval

        try:
            existing = await self.store.list_events(start - self.padding, end + self.padding)
        except CalendarStoreError as e:
            logger.warning(f"Duplicate check failed, continuing without it: {e}")
            return None

        wanted = normalize_title(draft.title)
        for resource in existing:
            try:
                event = CalendarEvent.from_resource(resource, self.timezone)
            except ValueError as e:
                logger.debug(f"Skipping unreadable event {resource.get('id')}: {e}")
                continue

            if normalize_title(event.summary) != wanted:
                continue
            if not event.overlaps(start, end):
                continue

            kind = MatchKind.EXACT_TITLE if event.summary == draft.title else MatchKind.SIMILAR_TITLE
            logger.info(f"Duplicate of '{draft.title}' found: {event.id} ({kind.value})")
            return DuplicateMatch(
                existing_event_id=event.id,
                match_kind=kind,
                existing_title=event.summary,
            )

        return None
