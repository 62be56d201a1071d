"""User-facing messages for listings, creations and batches."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .models import BatchReport, CreationOutcome
from ..tools.calendar import CalendarEvent


ENDED = "✅"
ONGOING = "🔥"
UPCOMING = "☑️"


def format_event_line(event: CalendarEvent, index: int, now: datetime) -> str:
    """
    One numbered schedule line, e.g. ``2. 🔥 14:00-15:00 | Standup``.

    Events that already ended are struck through.
    """
    if event.is_all_day:
        when = event.start.strftime("%d/%m/%Y")
        if now >= event.end:
            return f"{index}. {ENDED} ~~{when}~~ | {event.summary}"
        return f"{index}. {UPCOMING} {when} | {event.summary}"

    start = event.start.astimezone(now.tzinfo) if now.tzinfo else event.start
    end = event.end.astimezone(now.tzinfo) if now.tzinfo else event.end
    when = f"{start.strftime('%H:%M')}-{end.strftime('%H:%M')}"

    if now > event.end:
        return f"{index}. {ENDED} ~~{when}~~ | {event.summary}"
    if event.start <= now <= event.end:
        return f"{index}. {ONGOING} {when} | {event.summary}"
    return f"{index}. {UPCOMING} {when} | {event.summary}"


def format_schedule(events: List[CalendarEvent], description: str, now: datetime) -> str:
    if not events:
        return f"📅 Nothing on your calendar for {description}."
    lines = [f"📅 Your schedule for {description}:"]
    lines.extend(format_event_line(event, i, now) for i, event in enumerate(events, 1))
    return "\n".join(lines)


def format_creation(outcome: CreationOutcome) -> str:
    """Message for a single create attempt."""
    draft = outcome.draft
    if outcome.is_duplicate:
        return f"📌 \"{outcome.title}\" is already in your calendar (event {outcome.event_id}), nothing new was created."
    if outcome.success and draft is not None:
        return f"✅ Created \"{draft.title}\" on {draft.date} from {draft.start} to {draft.end}."
    return outcome.message


def _created_line(outcome: CreationOutcome) -> str:
    suffix = " (already in calendar)" if outcome.is_duplicate else ""
    description = outcome.draft.describe() if outcome.draft else outcome.title
    return f"  • {description}{suffix}"


def format_population(report: BatchReport) -> str:
    """
    Summary for a multi-event request.

    Lists what was created, itemizes every failure and closes with the
    population rate.
    """
    lines: List[str] = []
    created = [o for o in report.outcomes if o.success]

    if created:
        lines.append(f"✅ Successfully created {report.succeeded} out of {report.total} events:")
        lines.extend(_created_line(o) for o in created)

    if report.failures:
        lines.append(f"❌ {report.failed} event(s) could not be created:")
        for outcome in report.failures:
            lines.append(f"  • {outcome.title}: {outcome.message}")

    if report.total and report.failed == 0:
        lines.append("🎉 All events were successfully populated!")
    elif report.succeeded == 0:
        lines.append("⚠️ No events were created.")
    else:
        lines.append(f"📊 Population rate: {round(report.population_rate * 100)}%")

    return "\n".join(lines)


def format_deleted(event_id: str, title: Optional[str] = None) -> str:
    if title:
        return f"🗑️ Deleted \"{title}\" ({event_id})."
    return f"🗑️ Deleted event {event_id}."


def format_updated(outcome: CreationOutcome) -> str:
    draft = outcome.draft
    if draft is not None and draft.date and draft.start and draft.end:
        return f"✏️ Updated \"{draft.title}\": {draft.date} {draft.start}-{draft.end}."
    return f"✏️ Updated event {outcome.event_id}."
