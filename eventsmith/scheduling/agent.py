"""
Calendar agent - the entry point a routing layer calls.

One request runs strictly in sequence:

    received -> extracting -> validated | unrecoverable
             -> duplicate check -> duplicate | create attempts
             -> success | failed

``handle`` always answers with an AgentResponse. Completion failures
are absorbed by the extractor and store failures by the executor, so
neither escapes as an exception.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from loguru import logger

from ..core.config import EventsmithConfig, config
from ..core.errors import ErrorKind, get_error_message
from ..core.llm import CompletionService
from ..tools.calendar import CalendarStore
from .diagnostics import diagnose, format_diagnosis
from .executor import CreationExecutor
from .extraction import ExtractionOrchestrator, detect_time_range
from .formatting import format_population
from .models import (
    AgentRequest,
    AgentResponse,
    CreationOutcome,
    ExtractionResult,
    Intent,
    PartialFields,
    RawMessage,
)
from .temporal import (
    calculate_end_time_from_duration,
    clean_time_string,
    is_valid_date,
    is_valid_time,
)


class CalendarAgent:
    """Turns one AgentRequest into calendar operations and a reply."""

    def __init__(self, extractor: ExtractionOrchestrator, executor: CreationExecutor):
        self.extractor = extractor
        self.executor = executor

    @classmethod
    def from_config(
        cls,
        store: CalendarStore,
        completion: Optional[CompletionService] = None,
        cfg: Optional[EventsmithConfig] = None,
    ) -> "CalendarAgent":
        cfg = cfg or config()
        return cls(
            extractor=ExtractionOrchestrator.from_config(
                completion, cfg.llm, default_duration_minutes=cfg.calendar.default_duration_minutes
            ),
            executor=CreationExecutor.from_config(store, cfg),
        )

    async def handle(self, request: AgentRequest) -> AgentResponse:
        try:
            intent = Intent(request.intent)
        except ValueError:
            logger.warning(f"Rejecting unknown intent {request.intent!r}")
            return AgentResponse(
                message_to_user=f"Unknown request type: {request.intent}",
                success=False,
                error_kind=ErrorKind.VALIDATION_FAILURE,
            )

        if not is_valid_date(request.current_date):
            request.current_date = date.today().isoformat()
        if not is_valid_time(request.current_time):
            request.current_time = clean_time_string(request.current_time)

        logger.info(f"Handling {intent.value} for {request.user_id}")

        if intent is Intent.CREATE_EVENT:
            return await self._create(request)
        if intent is Intent.GET_EVENT:
            return await self._get(request)
        if intent is Intent.UPDATE_EVENT:
            return await self._update(request)
        return await self._delete(request)

    async def _extract(self, request: AgentRequest) -> Optional[ExtractionResult]:
        """Drafts for a create request, or None if there is nothing to work with."""
        payload = request.payload

        if isinstance(payload, PartialFields):
            draft = payload.to_draft()
            if draft.is_complete():
                return ExtractionResult(drafts=[draft], strategy="provided")

            result = await self.extractor.extract(payload.to_text(), request.current_date, request.current_time)
            if not result.multiple:
                _overlay(result.single, payload)
            return result

        text = payload.text if isinstance(payload, RawMessage) else ""
        if not text or not text.strip():
            return None
        return await self.extractor.extract(text, request.current_date, request.current_time)

    async def _create(self, request: AgentRequest) -> AgentResponse:
        result = await self._extract(request)
        if result is None:
            diagnosis = diagnose(None, "no event details were provided")
            logger.error(f"Nothing to create for {request.user_id}")
            return AgentResponse(
                message_to_user=f"{get_error_message(ErrorKind.VALIDATION_FAILURE)}\n\n{format_diagnosis(diagnosis)}",
                success=False,
                error_kind=ErrorKind.VALIDATION_FAILURE,
                diagnostics=diagnosis,
            )

        if result.multiple:
            report = await self.executor.create_batch(
                result.drafts,
                request.user_id,
                reference_date=request.current_date,
                fallback_used=result.fallback_used,
            )
            first_id = next((o.event_id for o in report.outcomes if o.success), None)
            return AgentResponse(
                message_to_user=format_population(report),
                success=report.succeeded > 0,
                event_id=first_id,
                batch=report,
            )

        outcome = await self.executor.ensure_creation(
            result.single,
            request.user_id,
            reference_date=request.current_date,
            fallback_used=result.fallback_used,
        )
        return _respond(outcome)

    async def _get(self, request: AgentRequest) -> AgentResponse:
        payload = request.payload
        if isinstance(payload, PartialFields):
            range_name = payload.time_range or "today"
        else:
            # Deterministic; listing never needs a completion call
            range_name = detect_time_range(payload.text or "") or "today"

        now = datetime.strptime(
            f"{request.current_date} {request.current_time}", "%Y-%m-%d %H:%M"
        ).replace(tzinfo=ZoneInfo(self.executor.timezone))

        listing = await self.executor.get_events(range_name, request.current_date, now)
        return AgentResponse(
            message_to_user=listing.message,
            success=listing.success,
            error_kind=listing.error_kind,
        )

    async def _update(self, request: AgentRequest) -> AgentResponse:
        payload = request.payload
        if isinstance(payload, PartialFields):
            event_id, changes = payload.event_id, payload
        else:
            event_id = payload.event_id
            changes = PartialFields()
            if event_id and payload.text and payload.text.strip():
                changes = await self.extractor.extract_changes(payload.text, request.current_date, request.current_time)

        outcome = await self.executor.update_event(event_id, changes, reference_date=request.current_date)
        return _respond(outcome)

    async def _delete(self, request: AgentRequest) -> AgentResponse:
        outcome = await self.executor.delete_event(request.payload.event_id)
        return _respond(outcome)


def _overlay(draft, payload: PartialFields) -> None:
    """Fields the caller supplied win over extracted ones."""
    for name in ("title", "date", "start", "end", "description", "location", "recurrence_rule", "event_id"):
        value = getattr(payload, name)
        if value:
            setattr(draft, name, value)
            draft.inferred.discard(name)
    if draft.start and not is_valid_time(draft.start):
        draft.start = clean_time_string(draft.start)
    if payload.duration and not payload.end and is_valid_time(draft.start):
        draft.end = calculate_end_time_from_duration(draft.start, payload.duration)
        draft.inferred.discard("end")


def _respond(outcome: CreationOutcome) -> AgentResponse:
    message = outcome.message
    if not outcome.success and outcome.diagnosis is not None:
        message = f"{message}\n\n{format_diagnosis(outcome.diagnosis)}"
    return AgentResponse(
        message_to_user=message,
        success=outcome.success,
        event_id=outcome.event_id,
        error_kind=outcome.error_kind,
        diagnostics=outcome.diagnosis,
        outcome=outcome,
    )
