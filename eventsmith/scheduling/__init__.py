"""Scheduling pipeline: extraction, normalization, duplicate checks and creation."""

from .agent import CalendarAgent
from .duplicates import DuplicateDetector
from .executor import CreationExecutor, build_event_resource, validate_and_fix_event_details
from .extraction import ExtractionOrchestrator, rule_based_extract
from .models import (
    AgentRequest,
    AgentResponse,
    BatchReport,
    CreationOutcome,
    EventDraft,
    ExtractionResult,
    Intent,
    PartialFields,
    RawMessage,
)

__all__ = [
    "CalendarAgent",
    "DuplicateDetector",
    "CreationExecutor",
    "build_event_resource",
    "validate_and_fix_event_details",
    "ExtractionOrchestrator",
    "rule_based_extract",
    "AgentRequest",
    "AgentResponse",
    "BatchReport",
    "CreationOutcome",
    "EventDraft",
    "ExtractionResult",
    "Intent",
    "PartialFields",
    "RawMessage",
]
