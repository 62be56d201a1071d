"""
Diagnostics for drafts that could not be turned into events.

The report is advisory: it lists which of title/date/start/end are
missing or malformed and how the user can phrase the request instead.
Building it never raises.
"""

from __future__ import annotations

from typing import List, Optional

from loguru import logger

from .models import Diagnosis, EventDraft
from .temporal import is_valid_date, is_valid_time


HOW_TO_FIX = [
    "Be specific about what you want to schedule",
    "Include time information (start and end times)",
    'Specify the date or use relative terms like "today" or "tomorrow"',
    "Use clear, descriptive language",
]


def diagnose(draft: Optional[EventDraft], error: object = None, stage: str = "Extraction") -> Diagnosis:
    """
    Explain what is wrong with ``draft``.

    ``stage`` names the step that failed ("Extraction", "Creation",
    "Update") and leads the issue description when an error is given.
    """
    issue = f"{stage} failed: {error}" if error else "The event could not be created"
    try:
        missing, details = _inspect(draft or EventDraft())
    except Exception as e:
        logger.error(f"Diagnosis itself failed: {e}")
        missing, details = [], []
    return Diagnosis(
        missing_fields=missing,
        issue_description=issue,
        specific_missing_details=details,
        how_to_fix=list(HOW_TO_FIX),
    )


def _inspect(draft: EventDraft):
    missing: List[str] = []
    details: List[str] = []

    if not draft.title:
        missing.append("Missing event title")
        details.append('Provide a clear title for your event (e.g., "Meeting with John", "Doctor appointment")')

    if not draft.start:
        missing.append("Missing start time")
        details.append('Specify when the event should start (e.g., "2pm", "14:00")')
    elif not is_valid_time(draft.start):
        missing.append("Invalid start time format")
        details.append('Use proper time format like "2pm", "14:00", or "2:30pm"')

    if not draft.end:
        missing.append("Missing end time")
        details.append('Specify when the event should end (e.g., "3pm", "15:00")')
    elif not is_valid_time(draft.end):
        missing.append("Invalid end time format")
        details.append('Use proper time format like "3pm", "15:00", or "3:30pm"')

    if not draft.date:
        missing.append("Missing date")
        details.append('Specify when the event should happen (e.g., "today", "tomorrow", "2025-11-20")')
    elif not is_valid_date(draft.date):
        missing.append("Invalid date")
        details.append('Use a date like "2025-11-20", "tomorrow" or "Nov 20"')

    return missing, details


def format_diagnosis(diagnosis: Diagnosis) -> str:
    """Render a diagnosis as one message: issue, missing details, tips."""
    lines = [f"Issue: {diagnosis.issue_description}"]
    if diagnosis.missing_fields:
        lines.append(f"Missing: {', '.join(diagnosis.missing_fields)}")
    for detail in diagnosis.specific_missing_details:
        lines.append(f"  - {detail}")
    if diagnosis.how_to_fix:
        lines.append(f"Try: {'; '.join(diagnosis.how_to_fix)}")
    return "\n".join(lines)
