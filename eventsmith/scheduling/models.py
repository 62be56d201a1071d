"""
Data model for the scheduling pipeline.

Drafts flow from extraction through repair and duplicate detection into
creation; every store call produces a CreationOutcome and multi-event
requests roll those up into a BatchReport.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from ..core.errors import ErrorKind, get_error_message


REQUIRED_FIELDS = ("title", "date", "start", "end")

# Keys completion models use for each draft field, most specific first
FIELD_ALIASES: Dict[str, tuple] = {
    "title": ("event_title", "title", "summary", "name"),
    "date": ("date", "event_date"),
    "start": ("start_time", "start", "startTime"),
    "end": ("end_time", "end", "endTime"),
    "description": ("description", "notes"),
    "location": ("location",),
    "recurrence_rule": ("recurrence", "recurrence_rule", "rrule"),
    "event_id": ("event_id", "id", "eventId"),
}


def _clean_value(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class EventDraft:
    """An unpersisted candidate event under extraction and repair."""
    title: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    start: Optional[str] = None  # HH:MM
    end: Optional[str] = None  # HH:MM
    description: Optional[str] = None
    location: Optional[str] = None
    recurrence_rule: Optional[str] = None
    event_id: Optional[str] = None
    category: Optional[str] = None
    # Synthesized break: re-anchored to the preceding draft's end at creation
    buffer_minutes: Optional[int] = None
    # Fields a heuristic filled in rather than the user stating them
    inferred: Set[str] = field(default_factory=set, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventDraft":
        """Build a draft from a completion payload or caller-supplied fields."""
        values: Dict[str, Optional[str]] = {}
        for name, keys in FIELD_ALIASES.items():
            for key in keys:
                if key in data:
                    cleaned = _clean_value(data[key])
                    if cleaned is not None:
                        values[name] = cleaned
                        break
        return cls(**values)

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def copy(self, **changes) -> "EventDraft":
        draft = replace(self, **changes)
        draft.inferred = set(self.inferred) - set(changes)
        return draft

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "inferred" and getattr(self, f.name) is not None
        }

    def describe(self) -> str:
        """Short human form, e.g. 'Lunch on 2025-11-16 at 12:00-13:00'."""
        title = self.title or "Untitled event"
        if self.date and self.start and self.end:
            return f"{title} on {self.date} at {self.start}-{self.end}"
        return title


@dataclass
class ExtractionResult:
    """One or more drafts produced by a single extraction strategy."""
    drafts: List[EventDraft]
    strategy: str
    fallback_used: bool = False
    multiple: bool = False
    time_range: Optional[str] = None

    def __post_init__(self):
        if not self.drafts:
            raise ValueError("ExtractionResult needs at least one draft")
        if len(self.drafts) > 1:
            self.multiple = True

    @property
    def single(self) -> EventDraft:
        return self.drafts[0]


@dataclass
class TimeRangeQuery:
    """A named range resolved to a half-open window [window_start, window_end)."""
    name: str
    window_start: datetime
    window_end: datetime
    description: str


@dataclass
class CleanedDate:
    """Result of date repair, with the rule that produced it."""
    value: str
    method: str
    fallback: bool = False


class MatchKind(str, Enum):
    EXACT_TITLE = "exact_title"
    SIMILAR_TITLE = "similar_title"


@dataclass
class DuplicateMatch:
    existing_event_id: str
    match_kind: MatchKind
    existing_title: Optional[str] = None


@dataclass
class Diagnosis:
    """Advisory explanation for a draft that could not be salvaged."""
    missing_fields: List[str]
    issue_description: str
    specific_missing_details: List[str]
    how_to_fix: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "missing_fields": list(self.missing_fields),
            "issue_description": self.issue_description,
            "specific_missing_details": list(self.specific_missing_details),
            "how_to_fix": list(self.how_to_fix),
        }


@dataclass
class CreationOutcome:
    """Result of creating, updating or deleting one draft."""
    success: bool
    event_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempts_used: int = 0
    draft: Optional[EventDraft] = None
    message: str = ""
    validated_fields: List[str] = field(default_factory=list)
    duplicate: Optional[DuplicateMatch] = None
    diagnosis: Optional[Diagnosis] = None

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate is not None

    @property
    def title(self) -> str:
        if self.draft and self.draft.title:
            return self.draft.title
        return "Untitled event"

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        draft: Optional[EventDraft] = None,
        message: Optional[str] = None,
        attempts_used: int = 0,
        **kwargs,
    ) -> "CreationOutcome":
        return cls(
            success=False,
            error_kind=kind,
            draft=draft,
            attempts_used=attempts_used,
            message=message or get_error_message(kind, detailed=True),
            **kwargs,
        )


@dataclass
class BatchReport:
    """Aggregate of a multi-event creation, in input order."""
    total: int
    succeeded: int
    failed: int
    outcomes: List[CreationOutcome]

    @classmethod
    def from_outcomes(cls, outcomes: List[CreationOutcome]) -> "BatchReport":
        succeeded = sum(1 for o in outcomes if o.success)
        return cls(
            total=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            outcomes=list(outcomes),
        )

    @property
    def population_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.succeeded / self.total

    @property
    def status(self) -> str:
        if self.total and self.failed == 0:
            return "complete"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def failures(self) -> List[CreationOutcome]:
        return [o for o in self.outcomes if not o.success]


@dataclass
class Listing:
    """Events found for a named range, or the reason none could be read."""
    query: TimeRangeQuery
    events: List[Any] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.error_kind is None


class Intent(str, Enum):
    CREATE_EVENT = "create_event"
    GET_EVENT = "get_event"
    UPDATE_EVENT = "update_event"
    DELETE_EVENT = "delete_event"


@dataclass
class RawMessage:
    """Free text exactly as the user wrote it."""
    text: str
    event_id: Optional[str] = None


@dataclass
class PartialFields:
    """Structured fields an upstream router already pulled out."""
    title: Optional[str] = None
    date: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    duration: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    recurrence_rule: Optional[str] = None
    event_id: Optional[str] = None
    time_range: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartialFields":
        draft = EventDraft.from_dict(data)
        return cls(
            title=draft.title,
            date=draft.date,
            start=draft.start,
            end=draft.end,
            duration=_clean_value(data.get("duration")),
            description=draft.description,
            location=draft.location,
            recurrence_rule=draft.recurrence_rule,
            event_id=draft.event_id,
            time_range=_clean_value(data.get("time_range")),
        )

    def to_draft(self) -> EventDraft:
        return EventDraft(
            title=self.title,
            date=self.date,
            start=self.start,
            end=self.end,
            description=self.description,
            location=self.location,
            recurrence_rule=self.recurrence_rule,
            event_id=self.event_id,
        )

    def to_text(self) -> str:
        """Render the known fields as a sentence the extractor can read."""
        parts = []
        if self.title:
            parts.append(f"event: {self.title}")
        if self.date:
            parts.append(f"date: {self.date}")
        if self.start:
            parts.append(f"start: {self.start}")
        if self.end:
            parts.append(f"end: {self.end}")
        if self.duration:
            parts.append(f"duration: {self.duration}")
        if self.location:
            parts.append(f"location: {self.location}")
        if self.description:
            parts.append(f"description: {self.description}")
        return ", ".join(parts) if parts else "create calendar event"

    def has_changes(self) -> bool:
        return any(
            (self.title, self.date, self.start, self.end, self.duration, self.description, self.location)
        )


Payload = Union[RawMessage, PartialFields]


@dataclass
class AgentRequest:
    intent: Union[Intent, str]
    payload: Payload
    user_id: str
    current_date: str
    current_time: str


@dataclass
class AgentResponse:
    message_to_user: str
    success: bool
    event_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    diagnostics: Optional[Diagnosis] = None
    batch: Optional[BatchReport] = None
    outcome: Optional[CreationOutcome] = None
