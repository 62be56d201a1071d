"""
Creation and mutation of calendar events.

``ensure_creation`` is the heart of this module:

1. repair the draft so every required field is usable
2. skip the insert if the duplicate detector finds the event already
3. insert, retrying transient failures up to ``max_attempts`` times and
   applying a fix strategy chosen from the error between attempts

Permanent failures (authorization, permission, not found, conflicts)
end the loop at once. Store errors never leave this module as
exceptions; every call returns a CreationOutcome carrying a message.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from ..core.errors import CalendarStoreError, ErrorKind, classify_store_error, get_error_message
from ..tools.calendar import CalendarEvent, CalendarStore, resource_bounds
from .diagnostics import diagnose
from .duplicates import DuplicateDetector
from .formatting import format_creation, format_deleted, format_schedule, format_updated
from .models import BatchReport, CreationOutcome, EventDraft, Listing, PartialFields
from .temporal import (
    DEFAULT_DURATION_MINUTES,
    calculate_time_range,
    clean_date_string,
    clean_time_string,
    ensure_end_after,
    is_end_after_start,
    is_valid_date,
    is_valid_time,
    next_weekday,
    parse_start_end_datetime,
)


FixStrategy = Callable[[EventDraft], EventDraft]

_TIME_ERROR_RE = re.compile(r"\b(?:time|times|date|range|start|end)\b")
_TITLE_ERROR_RE = re.compile(r"\b(?:title|summary)\b")
_LOCATION_ERROR_RE = re.compile(r"\blocation\b")

CATEGORY_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("meeting", ("meeting", "call", "discussion")),
    ("education", ("workshop", "training", "course")),
    ("health", ("doctor", "appointment", "medical")),
    ("personal", ("lunch", "dinner", "coffee")),
]


def infer_category(title: Optional[str]) -> str:
    lowered = (title or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "general"


def validate_and_fix_event_details(
    draft: EventDraft,
    index: int = 1,
    reference_date: Optional[date] = None,
    fallback_start: str = "09:00",
    duration_minutes: int = DEFAULT_DURATION_MINUTES,
) -> List[str]:
    """
    Repair ``draft`` in place so it can be inserted.

    Guarantees a title, a valid date (next weekday if missing), a valid
    start (``fallback_start`` if missing), an end after the start (start
    plus ``duration_minutes`` if missing) and a category. Returns the names of the fields that were changed.
    """
    fixed: List[str] = []

    if not draft.title or not draft.title.strip():
        draft.title = f"Event {index}"
        fixed.append("title")
    else:
        draft.title = draft.title.strip()

    if draft.date and not is_valid_date(draft.date):
        cleaned = clean_date_string(draft.date, reference_date)
        if not cleaned.fallback:
            draft.date = cleaned.value
            fixed.append("date")
    if not is_valid_date(draft.date):
        draft.date = next_weekday(reference_date)
        fixed.append("date")

    if draft.start and not is_valid_time(draft.start):
        draft.start = clean_time_string(draft.start)
        fixed.append("start")
    if not is_valid_time(draft.start):
        draft.start = fallback_start
        fixed.append("start")
    if draft.start == "23:59":
        draft.start = "23:00"
        fixed.append("start")

    if draft.end and not is_valid_time(draft.end):
        draft.end = clean_time_string(draft.end)
        fixed.append("end")
    if not is_valid_time(draft.end) or not is_end_after_start(draft.start, draft.end):
        draft.start, draft.end = ensure_end_after(draft.start, None, duration_minutes)
        fixed.append("end")

    if not draft.category:
        draft.category = infer_category(draft.title)

    if fixed:
        logger.debug(f"Repaired draft {index}: {', '.join(dict.fromkeys(fixed))}")
    return list(dict.fromkeys(fixed))


def build_event_resource(
    draft: EventDraft,
    timezone: str = "UTC",
    fallback_used: bool = False,
) -> Optional[Dict[str, Any]]:
    """Calendar resource for a repaired draft, or None if its times are unusable."""
    start, end = parse_start_end_datetime(draft.date, draft.start, draft.end, tz=timezone)
    if start is None or end is None:
        return None

    resource: Dict[str, Any] = {
        "summary": draft.title,
        "description": draft.description or "",
        "start": start,
        "end": end,
        "extendedProperties": {
            "private": {
                "created_by": "eventsmith",
                "category": draft.category or "general",
                "fallback_used": "true" if fallback_used else "false",
            }
        },
    }
    if draft.location and draft.location.strip():
        resource["location"] = draft.location.strip()
    if draft.recurrence_rule:
        rule = draft.recurrence_rule.strip()
        resource["recurrence"] = [rule if rule.upper().startswith("RRULE:") else f"RRULE:{rule}"]
    return resource


# Fix strategies: each returns a new draft and leaves its input untouched

def shift_to_window(start: str, end: str) -> FixStrategy:
    def fix(draft: EventDraft) -> EventDraft:
        return draft.copy(start=start, end=end)
    return fix


def shift_to_next_weekday(draft: EventDraft) -> EventDraft:
    return draft.copy(date=next_weekday(draft.date if is_valid_date(draft.date) else None))


def truncate_title(max_length: int) -> FixStrategy:
    def fix(draft: EventDraft) -> EventDraft:
        return draft.copy(title=(draft.title or "")[:max_length].rstrip() or "Event")
    return fix


def drop_location(draft: EventDraft) -> EventDraft:
    return draft.copy(location=None)


def select_fix_strategies(
    error_message: str,
    next_attempt: int,
    retry_window: Tuple[str, str] = ("10:00", "11:00"),
    max_title_length: int = 100,
) -> List[Tuple[str, FixStrategy]]:
    """
    Pick the repairs to apply before ``next_attempt`` (2 or later).

    Time/date errors move the event to a neutral window on attempt 2 and
    to the next weekday after that. Title errors truncate the title and
    location errors drop the location. An error naming several fields
    gets every matching repair, in that order; other errors get none.
    """
    text = (error_message or "").lower()
    fixes: List[Tuple[str, FixStrategy]] = []
    if _TIME_ERROR_RE.search(text):
        if next_attempt <= 2:
            fixes.append(("neutral_window", shift_to_window(*retry_window)))
        else:
            fixes.append(("next_weekday", shift_to_next_weekday))
    if _TITLE_ERROR_RE.search(text):
        fixes.append(("truncate_title", truncate_title(max_title_length)))
    if _LOCATION_ERROR_RE.search(text):
        fixes.append(("drop_location", drop_location))
    return fixes


def _changed_fields(before: EventDraft, after: EventDraft) -> List[str]:
    old, new = before.to_dict(), after.to_dict()
    return [name for name in ("title", "date", "start", "end", "location") if old.get(name) != new.get(name)]


class CreationExecutor:
    """Creates, updates, deletes and lists events against a calendar store."""

    def __init__(
        self,
        store: CalendarStore,
        detector: Optional[DuplicateDetector] = None,
        timezone: str = "UTC",
        max_attempts: int = 3,
        max_title_length: int = 100,
        fallback_start: str = "09:00",
        retry_window: Tuple[str, str] = ("10:00", "11:00"),
        default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
    ):
        self.store = store
        self.detector = detector
        self.timezone = timezone
        self.max_attempts = max(1, max_attempts)
        self.max_title_length = max_title_length
        self.fallback_start = fallback_start
        self.retry_window = retry_window
        self.default_duration_minutes = default_duration_minutes

    @classmethod
    def from_config(cls, store: CalendarStore, cfg) -> "CreationExecutor":
        detector = DuplicateDetector(
            store,
            timezone=cfg.calendar.timezone,
            padding_minutes=cfg.calendar.duplicate_padding_minutes,
        )
        return cls(
            store,
            detector=detector,
            timezone=cfg.calendar.timezone,
            max_attempts=cfg.creation.max_attempts,
            max_title_length=cfg.creation.max_title_length,
            fallback_start=cfg.creation.fallback_start,
            retry_window=(cfg.creation.retry_window_start, cfg.creation.retry_window_end),
            default_duration_minutes=cfg.calendar.default_duration_minutes,
        )

    async def ensure_creation(
        self,
        draft: EventDraft,
        user_id: str,
        index: int = 1,
        reference_date: Optional[date] = None,
        fallback_used: bool = False,
    ) -> CreationOutcome:
        """Repair, de-duplicate and insert one draft."""
        validated = validate_and_fix_event_details(
            draft, index, reference_date, self.fallback_start, self.default_duration_minutes
        )

        if self.detector is not None:
            duplicate = await self.detector.find_duplicate(draft)
            if duplicate is not None:
                outcome = CreationOutcome(
                    success=True,
                    event_id=duplicate.existing_event_id,
                    error_kind=ErrorKind.DUPLICATE_DETECTED,
                    draft=draft,
                    validated_fields=validated,
                    duplicate=duplicate,
                )
                outcome.message = format_creation(outcome)
                return outcome

        return await self._insert_with_retries(draft, user_id, validated, fallback_used)

    async def _insert_with_retries(
        self,
        draft: EventDraft,
        user_id: str,
        validated: List[str],
        fallback_used: bool,
    ) -> CreationOutcome:
        current = draft
        kind = ErrorKind.UNKNOWN_TECHNICAL
        last_error = ""
        attempt = 0

        for attempt in range(1, self.max_attempts + 1):
            resource = build_event_resource(current, self.timezone, fallback_used)
            if resource is None:
                kind = ErrorKind.VALIDATION_FAILURE
                last_error = "date or start time is invalid"
                break

            try:
                event_id = await self.store.insert_event(resource)
            except CalendarStoreError as e:
                kind = classify_store_error(e)
                last_error = str(e)
                logger.warning(f"Create attempt {attempt}/{self.max_attempts} for '{current.title}' failed ({kind.value}): {e}")
                if not kind.retryable or attempt == self.max_attempts:
                    break

                fixes = select_fix_strategies(last_error, attempt + 1, self.retry_window, self.max_title_length)
                for name, strategy in fixes:
                    fixed = strategy(current)
                    validated.extend(f for f in _changed_fields(current, fixed) if f not in validated)
                    logger.info(f"Applying fix '{name}' before attempt {attempt + 1}")
                    current = fixed
                continue

            logger.info(f"Created '{current.title}' as {event_id} for {user_id} (attempt {attempt})")
            outcome = CreationOutcome(
                success=True,
                event_id=event_id,
                attempts_used=attempt,
                draft=current,
                validated_fields=validated,
            )
            outcome.message = format_creation(outcome)
            return outcome

        logger.error(f"Giving up on '{current.title}' after {attempt} attempt(s): {last_error}")
        return CreationOutcome.failure(
            kind,
            draft=current,
            message=(
                f"Failed to create event \"{current.title}\" after {attempt} attempt(s): "
                f"{get_error_message(kind)}"
            ),
            attempts_used=attempt,
            validated_fields=validated,
            diagnosis=diagnose(current, last_error, stage="Creation"),
        )

    async def create_batch(
        self,
        drafts: List[EventDraft],
        user_id: str,
        reference_date: Optional[date] = None,
        fallback_used: bool = False,
    ) -> BatchReport:
        """
        Create drafts one after another, in order.

        A failed draft never stops the batch. Break drafts are re-anchored
        to the end of the draft before them as it was finally created.
        """
        outcomes: List[CreationOutcome] = []
        previous: Optional[EventDraft] = None

        for index, draft in enumerate(drafts, 1):
            if draft.buffer_minutes and previous is not None and is_valid_time(previous.end):
                draft.date = previous.date
                draft.start, draft.end = ensure_end_after(previous.end, None, draft.buffer_minutes)

            outcome = await self.ensure_creation(draft, user_id, index, reference_date, fallback_used)
            outcomes.append(outcome)
            previous = outcome.draft or draft

        report = BatchReport.from_outcomes(outcomes)
        logger.info(f"Batch for {user_id}: {report.succeeded}/{report.total} created ({report.status})")
        return report

    async def _with_retries(self, action: str, call: Callable[[], Awaitable[Any]]) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call()
            except CalendarStoreError as e:
                kind = classify_store_error(e)
                if not kind.retryable or attempt == self.max_attempts:
                    raise
                logger.warning(f"{action} attempt {attempt} failed ({kind.value}), retrying: {e}")

    def _local_fields(self, resource: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        try:
            start, end, all_day = resource_bounds(resource, self.timezone)
        except ValueError:
            return None, None, None
        if all_day:
            return start.date().isoformat(), None, None
        zone = ZoneInfo(self.timezone)
        start, end = start.astimezone(zone), end.astimezone(zone)
        return start.date().isoformat(), start.strftime("%H:%M"), end.strftime("%H:%M")

    async def update_event(
        self,
        event_id: Optional[str],
        changes: PartialFields,
        reference_date: Optional[date] = None,
    ) -> CreationOutcome:
        """Merge ``changes`` into the stored event and save it."""
        if not event_id:
            return CreationOutcome.failure(ErrorKind.MISSING_EVENT_ID)
        if not changes.has_changes():
            return CreationOutcome.failure(ErrorKind.NOTHING_TO_UPDATE)

        try:
            existing = await self._with_retries("get", lambda: self.store.get_event(event_id))
        except CalendarStoreError as e:
            kind = classify_store_error(e)
            return CreationOutcome.failure(kind, message=f"Could not load event {event_id}: {get_error_message(kind)}")

        resource = dict(existing)
        if changes.title:
            resource["summary"] = changes.title.strip()
        if changes.description:
            resource["description"] = changes.description
        if changes.location:
            resource["location"] = changes.location.strip()

        old_date, old_start, old_end = self._local_fields(existing)
        draft = EventDraft(
            title=resource.get("summary"),
            date=old_date,
            start=old_start,
            end=old_end,
            event_id=event_id,
        )

        if changes.date or changes.start or changes.end or changes.duration:
            new_date = clean_date_string(changes.date, reference_date).value if changes.date else old_date
            new_start = clean_time_string(changes.start) if changes.start else (old_start or self.fallback_start)
            new_end = clean_time_string(changes.end) if changes.end else None
            duration = changes.duration
            if new_end is None and duration is None and old_start and old_end:
                if not changes.start:
                    new_end = old_end
                else:
                    kept = datetime.strptime(old_end, "%H:%M") - datetime.strptime(old_start, "%H:%M")
                    minutes = int(kept.total_seconds() // 60)
                    duration = f"{minutes if minutes > 0 else self.default_duration_minutes} minutes"
            if new_end is None and duration is None:
                duration = f"{self.default_duration_minutes} minutes"

            start, end = parse_start_end_datetime(new_date, new_start, new_end, duration, self.timezone)
            if start is None:
                draft.date, draft.start, draft.end = new_date, new_start, new_end
                return CreationOutcome.failure(
                    ErrorKind.VALIDATION_FAILURE,
                    draft=draft,
                    diagnosis=diagnose(draft, "the new date or time is invalid", stage="Update"),
                )
            resource["start"], resource["end"] = start, end
            draft.date = new_date
            draft.start = start["dateTime"][11:16]
            draft.end = end["dateTime"][11:16]

        try:
            await self._with_retries("update", lambda: self.store.update_event(event_id, resource))
        except CalendarStoreError as e:
            kind = classify_store_error(e)
            return CreationOutcome.failure(kind, draft=draft, message=f"Could not update event {event_id}: {get_error_message(kind)}")

        outcome = CreationOutcome(success=True, event_id=event_id, attempts_used=1, draft=draft)
        outcome.message = format_updated(outcome)
        logger.info(f"Updated event {event_id}")
        return outcome

    async def delete_event(self, event_id: Optional[str]) -> CreationOutcome:
        if not event_id:
            return CreationOutcome.failure(ErrorKind.MISSING_EVENT_ID)

        try:
            await self._with_retries("delete", lambda: self.store.delete_event(event_id))
        except CalendarStoreError as e:
            kind = classify_store_error(e)
            return CreationOutcome.failure(kind, message=f"Could not delete event {event_id}: {get_error_message(kind)}")

        logger.info(f"Deleted event {event_id}")
        return CreationOutcome(success=True, event_id=event_id, attempts_used=1, message=format_deleted(event_id))

    async def get_events(
        self,
        range_name: Optional[str],
        current_date: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Listing:
        """List the events in a named range, sorted by start."""
        query = calculate_time_range(range_name, current_date, self.timezone)

        try:
            resources = await self._with_retries(
                "list", lambda: self.store.list_events(query.window_start, query.window_end)
            )
        except CalendarStoreError as e:
            kind = classify_store_error(e)
            return Listing(query=query, error_kind=kind, message=get_error_message(kind, detailed=True))

        events: List[CalendarEvent] = []
        for resource in resources:
            try:
                events.append(CalendarEvent.from_resource(resource, self.timezone))
            except ValueError as e:
                logger.warning(f"Skipping unreadable event {resource.get('id')}: {e}")
        events.sort(key=lambda event: event.start)

        now = now or datetime.now(query.window_start.tzinfo)
        return Listing(query=query, events=events, message=format_schedule(events, query.description, now))
