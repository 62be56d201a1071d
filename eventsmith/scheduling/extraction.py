"""
Event extraction.

Raw text becomes one or more EventDrafts by walking an ordered list of
strategies. The first three ask a completion service (with a rich, a
terse and a strictly structured prompt); the last is a rule-based
extractor that always produces a result, so ``extract`` never fails.

The rule-based extractor also understands multi-event sentences such as
"3:30-6:00 study and break of 5 minutes afterwards 6:05-6:50 more study":
every time range becomes an activity and every explicit break becomes
its own draft anchored to the activity before it.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from loguru import logger

from ..core.errors import CompletionError, ExtractionParseError
from ..core.llm import CompletionService
from .models import EventDraft, ExtractionResult, PartialFields
from .parsing import parse_completion
from .prompts import PRIMARY_PROMPT, SIMPLE_PROMPT, STRUCTURED_PROMPT, UPDATE_PROMPT, build_prompt
from .temporal import (
    DEFAULT_DURATION_MINUTES,
    add_minutes_to_time,
    clean_event_details,
    clean_time_string,
    ensure_end_after,
    find_date_in_text,
    is_end_after_start,
    is_valid_date,
    is_valid_time,
)


_TIME_TOKEN = r"\d{1,2}(?::\d{2})?\s*(?:[ap]\.?m\b\.?)?"
_RANGE_RE = re.compile(
    rf"(?<![\d:/.\-])({_TIME_TOKEN})\s*(?:-|–|to|until|till)\s*({_TIME_TOKEN})(?![\d:/\-])",
    re.IGNORECASE,
)
_SINGLE_TIME_RE = re.compile(
    r"(?<![\d:/.\-])(\d{1,2}:\d{2}\s*(?:[ap]\.?m\b\.?)?|\d{1,2}\s*[ap]\.?m\b\.?)",
    re.IGNORECASE,
)
_AT_HOUR_RE = re.compile(r"\b(?:at|@)\s*(\d{1,2})\b(?![:.]\d)", re.IGNORECASE)
_PERIOD_RE = re.compile(r"([ap])\.?m", re.IGNORECASE)

_BREAK_WORDS = r"break|pause|buffer|puffer|rest"
_DURATION_UNIT = r"minutes?|mins?|hours?|hrs?"
_BREAK_RE = re.compile(
    rf"(?:\b(?:and|then|with|plus)\s+)*(?:(?:a|an)\s+)?"
    rf"(?:\b(?:{_BREAK_WORDS})\b\s*(?:of\s+|for\s+)?(\d+)\s*({_DURATION_UNIT})\b"
    rf"|(\d+)[\s-]*({_DURATION_UNIT})\s+(?:{_BREAK_WORDS})\b)"
    r"(?:\s+(?:afterwards|after that|after|in between|between))?",
    re.IGNORECASE,
)

_ACTION_RE = re.compile(
    r"^\s*(?:please\s+)?(?:create|add|schedule|plan|set up|make|book|put)\s+"
    r"(?:an?\s+|the\s+)?(?:new\s+)?(?:calendar\s+)?(?:event|entry)?\s*(?:for|called|named|:)?\s*",
    re.IGNORECASE,
)
_DATE_WORDS_RE = re.compile(
    r"\b(?:on\s+)?(?:today|tonight|tomorrow|day after tomorrow|"
    r"monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b|\b\d{4}-\d{2}-\d{2}\b",
    re.IGNORECASE,
)
_MOVE_RE = re.compile(
    rf"\b(?:move|moving|reschedule|shift|push|postpone|change|bring)\b.*?\bto\s+({_TIME_TOKEN})(?![\d:/\-])",
    re.IGNORECASE,
)
_RENAME_PATTERNS = (
    re.compile(r"\b(?:rename|retitle)\b.*?\s(?:to|as)\s+(.+)$", re.IGNORECASE),
    re.compile(r"\b(?:change|set)\s+the\s+(?:title|name)\s+to\s+(.+)$", re.IGNORECASE),
    re.compile(r"\bcall\s+it\s+(.+)$", re.IGNORECASE),
)
_LOCATION_CHANGE_RE = re.compile(r"\b(?:location|venue|place)\s*(?:to|is|:)\s*(.+)$", re.IGNORECASE)
_DURATION_CHANGE_RE = re.compile(rf"\b(\d+)\s*({_DURATION_UNIT})\b", re.IGNORECASE)
_TIME_WORDS_RE = re.compile(r"\b(?:noon|midday|midnight|o'clock|earlier|later)\b", re.IGNORECASE)
_EDGE_CONNECTIVES_RE = re.compile(
    r"^(?:\s*(?:(?:and then|and|then|afterwards|after that|continued|also|from|at|on)\b|[,;\-–]))+\s*"
    r"|\s*(?:\b(?:and then|and|then|afterwards|after that|continued|also|from|at|on|to)\b|[,;\-–])+\s*$",
    re.IGNORECASE,
)

QUERY_KEYWORDS = (
    "what", "show", "check", "list", "get", "view", "when",
    "calendar", "appointments", "meetings", "busy", "free", "agenda",
)

_NEXT_N_RE = re.compile(r"\bnext (\d+) (days?|weeks?)\b")

DEFAULT_TITLE = "New Event"


@dataclass
class ExtractionRequest:
    text: str
    current_date: str
    current_time: str


Strategy = Callable[[ExtractionRequest], Awaitable[Optional[ExtractionResult]]]


def is_valid_extraction(result: Optional[ExtractionResult]) -> bool:
    """Every draft must carry title, date, start and end."""
    if result is None or not result.drafts:
        return False
    return all(draft.is_complete() for draft in result.drafts)


def result_from_payload(payload: Any, strategy: str) -> Optional[ExtractionResult]:
    """Turn parsed completion JSON into an ExtractionResult, or None if it has no events."""
    if isinstance(payload, list):
        payload = {"multiple_events": True, "events": payload}
    if not isinstance(payload, dict):
        return None

    events = payload.get("events")
    time_range = payload.get("time_range") or None
    if not isinstance(time_range, str):
        time_range = None

    if payload.get("multiple_events") or (isinstance(events, list) and events):
        if not isinstance(events, list) or not events:
            return None
        drafts = []
        for item in events:
            if not isinstance(item, dict):
                return None
            drafts.append(EventDraft.from_dict(item))
        return ExtractionResult(drafts=drafts, strategy=strategy, multiple=True, time_range=time_range)

    return ExtractionResult(drafts=[EventDraft.from_dict(payload)], strategy=strategy, time_range=time_range)


def is_calendar_query(text: str) -> bool:
    lowered = text.lower()
    return any(re.search(rf"\b{keyword}\b", lowered) for keyword in QUERY_KEYWORDS)


def detect_time_range(text: str) -> Optional[str]:
    """The named range a listing request refers to, if any."""
    lowered = text.lower()
    match = _NEXT_N_RE.search(lowered)
    if match:
        unit = "days" if match.group(2).startswith("day") else "weeks"
        return f"next {match.group(1)} {unit}"
    if "yesterday" in lowered:
        return "yesterday"
    if "tomorrow" in lowered:
        return "tomorrow"
    if "next week" in lowered or "upcoming week" in lowered:
        return "next week"
    if "week" in lowered:
        return "this week"
    if "today" in lowered or "tonight" in lowered:
        return "today"
    return None


def capitalize_words(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.split())


def _strip_edges(text: str) -> str:
    previous = None
    text = " ".join(text.split())
    while previous != text:
        previous = text
        text = _EDGE_CONNECTIVES_RE.sub("", text).strip()
    return text


def _clean_title_text(text: str) -> str:
    text = _ACTION_RE.sub("", text)
    text = _RANGE_RE.sub(" ", text)
    text = _SINGLE_TIME_RE.sub(" ", text)
    text = _AT_HOUR_RE.sub(" ", text)
    text = _DATE_WORDS_RE.sub(" ", text)
    return _strip_edges(text)


def extract_title(text: str) -> str:
    """A readable title: action verbs, times and date words removed."""
    cleaned = _clean_title_text(text)
    if len(cleaned) < 3:
        cleaned = " ".join(text.split())[:30].strip()
    return capitalize_words(cleaned) if cleaned else DEFAULT_TITLE


def _has_period(token: str) -> Optional[str]:
    match = _PERIOD_RE.search(token)
    return match.group(1).lower() if match else None


def _token_to_time(token: str, period: Optional[str] = None) -> str:
    """
    Read a time token from a sentence.

    Without am/pm, hours 1-7 are taken as afternoon: nobody schedules
    "3:30-6:00" for the early morning.
    """
    token = token.strip()
    period = _has_period(token) or period
    if period:
        bare = _PERIOD_RE.sub("", token).strip(" .")
        return clean_time_string(f"{bare}{period}m")

    hours, _, minutes = token.partition(":")
    hour = int(hours)
    minute = int(minutes) if minutes else 0
    if 1 <= hour <= 7:
        hour += 12
    return f"{min(hour, 23):02d}:{min(minute, 59):02d}"


def _range_to_times(
    start_token: str,
    end_token: str,
    minutes: int = DEFAULT_DURATION_MINUTES,
) -> Tuple[str, str]:
    start_period = _has_period(start_token)
    end_period = _has_period(end_token)

    start = _token_to_time(start_token)
    end = _token_to_time(end_token)

    if end_period and not start_period:
        # "3-5pm": the start shares the end's period when that keeps it first
        borrowed = _token_to_time(start_token, end_period)
        if is_end_after_start(borrowed, end):
            start = borrowed

    if not is_end_after_start(start, end) and not end_period:
        later = add_minutes_to_time(end, 12 * 60)
        if is_end_after_start(start, later):
            end = later

    if not is_end_after_start(start, end) and end < start and (start_period or end_period):
        # "10pm-1am" crosses midnight; the draft keeps the rest of its day
        logger.debug(f"Range {start}-{end} crosses midnight, ending at 23:59")
        end = "23:59"

    return ensure_end_after(start, end, minutes)


@dataclass
class _Span:
    start: int
    end: int
    kind: str  # "activity" or "break"
    times: Tuple[str, str] = ("", "")
    minutes: int = 0


def _break_minutes(match: re.Match) -> int:
    amount = int(match.group(1) or match.group(3))
    unit = (match.group(2) or match.group(4)).lower()
    return amount * 60 if unit.startswith("h") else amount


def _split_activities(
    text: str,
    event_date: str,
    date_inferred: bool,
    duration_minutes: int = DEFAULT_DURATION_MINUTES,
) -> Optional[List[EventDraft]]:
    """Decompose a sentence with two or more time ranges into ordered drafts."""
    ranges = list(_RANGE_RE.finditer(text))
    if len(ranges) < 2:
        return None

    spans = [
        _Span(m.start(), m.end(), "activity", times=_range_to_times(m.group(1), m.group(2), duration_minutes))
        for m in ranges
    ]
    spans.extend(
        _Span(m.start(), m.end(), "break", minutes=_break_minutes(m))
        for m in _BREAK_RE.finditer(text)
    )
    spans.sort(key=lambda s: s.start)

    def gap_text(begin: int, finish: int) -> str:
        chunk = text[begin:finish]
        # Drop break phrases that fall inside the gap
        for span in spans:
            if span.kind == "break" and begin <= span.start and span.end <= finish:
                chunk = chunk.replace(text[span.start:span.end], " ")
        return _clean_title_text(chunk)

    activities = [s for s in spans if s.kind == "activity"]
    titles_lead = bool(gap_text(0, activities[0].start))

    titles: List[str] = []
    for index, span in enumerate(activities):
        if titles_lead:
            begin = activities[index - 1].end if index else 0
            title = gap_text(begin, span.start)
        else:
            finish = activities[index + 1].start if index + 1 < len(activities) else len(text)
            title = gap_text(span.end, finish)
        titles.append(capitalize_words(title) if title else f"Event {index + 1}")

    drafts: List[EventDraft] = []
    activity_index = 0
    previous: Optional[EventDraft] = None
    for span in spans:
        if span.kind == "activity":
            start, end = span.times
            previous = EventDraft(
                title=titles[activity_index],
                date=event_date,
                start=start,
                end=end,
                inferred={"title", "date"} if date_inferred else {"title"},
            )
            drafts.append(previous)
            activity_index += 1
        elif previous is not None and span.minutes > 0:
            start, end = ensure_end_after(previous.end, add_minutes_to_time(previous.end, span.minutes))
            drafts.append(EventDraft(
                title="Break",
                date=previous.date,
                start=start,
                end=end,
                description=f"{span.minutes} minute break",
                category="break",
                buffer_minutes=span.minutes,
                inferred={"title", "date"} if date_inferred else {"title"},
            ))

    return drafts


def rule_based_extract(
    text: Any,
    current_date: str,
    current_time: str,
    duration_minutes: int = DEFAULT_DURATION_MINUTES,
) -> ExtractionResult:
    """
    Extract drafts with regular expressions alone.

    Always returns a complete result: missing dates become
    ``current_date``, missing times start at ``current_time`` and last
    ``duration_minutes``. The end is always after the start.
    """
    text = text if isinstance(text, str) else ""
    if not is_valid_date(current_date):
        current_date = date.today().isoformat()
    if not is_valid_time(current_time):
        current_time = clean_time_string(current_time)

    found_date = find_date_in_text(text, current_date)
    event_date = found_date or current_date
    date_inferred = found_date is None

    time_range = detect_time_range(text) if is_calendar_query(text) else None

    drafts = _split_activities(text, event_date, date_inferred, duration_minutes)
    if drafts:
        logger.info(f"Rule-based extraction found {len(drafts)} events")
        return ExtractionResult(
            drafts=drafts,
            strategy="rule_based",
            fallback_used=True,
            multiple=True,
            time_range=time_range,
        )

    inferred = {"title"}
    if date_inferred:
        inferred.add("date")

    range_match = _RANGE_RE.search(text)
    single_match = _SINGLE_TIME_RE.search(text) or _AT_HOUR_RE.search(text)
    if range_match:
        start, end = _range_to_times(range_match.group(1), range_match.group(2), duration_minutes)
    elif single_match:
        start, end = ensure_end_after(_token_to_time(single_match.group(1)), None, duration_minutes)
        inferred.add("end")
    else:
        start, end = ensure_end_after(current_time, None, duration_minutes)
        inferred.update({"start", "end"})

    draft = EventDraft(
        title=extract_title(text),
        date=event_date,
        start=start,
        end=end,
        description=text.strip() or None,
        inferred=inferred,
    )
    return ExtractionResult(
        drafts=[draft],
        strategy="rule_based",
        fallback_used=True,
        time_range=time_range,
    )


def _mentions_time(text: str) -> bool:
    return bool(
        _RANGE_RE.search(text)
        or _SINGLE_TIME_RE.search(text)
        or _AT_HOUR_RE.search(text)
        or _TIME_WORDS_RE.search(text)
    )


def _trailing_value(match: re.Match) -> str:
    return match.group(1).strip(" .!?\"'")


def rule_based_changes(text: Any, current_date: str) -> PartialFields:
    """
    Read what an update request changes with regular expressions alone.

    Only fields the text names are set. "move my 2pm to 3pm" sets the
    start alone, so the stored duration carries over; a rename sets the
    title alone.
    """
    text = text if isinstance(text, str) else ""
    changes = PartialFields()

    # A new title or location may contain numbers; cut it off before reading times
    for pattern in _RENAME_PATTERNS:
        match = pattern.search(text)
        if match:
            changes.title = capitalize_words(_trailing_value(match))
            text = text[:match.start()]
            break
    location = _LOCATION_CHANGE_RE.search(text)
    if location:
        changes.location = _trailing_value(location)
        text = text[:location.start()]

    changes.date = find_date_in_text(text, current_date)

    move = _MOVE_RE.search(text)
    range_match = _RANGE_RE.search(text)
    if move:
        changes.start = _token_to_time(move.group(1))
    elif range_match:
        changes.start, changes.end = _range_to_times(range_match.group(1), range_match.group(2))
    else:
        single = _SINGLE_TIME_RE.search(text) or _AT_HOUR_RE.search(text)
        if single:
            changes.start = _token_to_time(single.group(1))

    duration = _DURATION_CHANGE_RE.search(text)
    if duration and changes.end is None:
        changes.duration = f"{duration.group(1)} {duration.group(2)}"

    return changes


def _mentioned_only(changes: PartialFields, text: str, current_date: str) -> PartialFields:
    """Drop completion fields the message never mentions."""
    if changes.date and find_date_in_text(text, current_date) is None:
        logger.debug(f"Dropping date {changes.date}: the message names none")
        changes.date = None

    if not _mentions_time(text):
        if changes.start or changes.end:
            logger.debug(f"Dropping times {changes.start}-{changes.end}: the message names none")
        changes.start = changes.end = None
    if changes.duration and not _DURATION_CHANGE_RE.search(text):
        changes.duration = None

    if changes.start and not is_valid_time(changes.start):
        changes.start = clean_time_string(changes.start)
    if changes.end and not is_valid_time(changes.end):
        changes.end = clean_time_string(changes.end)

    # Free text never carries a router's identifiers
    changes.event_id = changes.recurrence_rule = changes.time_range = None
    return changes


class ExtractionOrchestrator:
    """
    Runs the extraction strategies in order and returns the first valid result.

    Strategies are tried one at a time; the rule-based strategy at the end
    of the list always succeeds.
    """

    def __init__(
        self,
        completion: Optional[CompletionService] = None,
        models: Optional[List[str]] = None,
        simple_model: Optional[str] = None,
        structured_model: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
    ):
        self.completion = completion
        self.models = list(models or ["llama-3.3-70b-versatile"])
        self.simple_model = simple_model or self.models[0]
        self.structured_model = structured_model or self.models[-1]
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.default_duration_minutes = default_duration_minutes

        self.strategies: List[Tuple[str, Strategy]] = [
            ("primary", self._primary),
            ("simplified", self._simplified),
            ("structured", self._structured),
            ("rule_based", self._rule_based),
        ]

    @classmethod
    def from_config(
        cls,
        completion: Optional[CompletionService],
        llm_config,
        default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
    ) -> "ExtractionOrchestrator":
        return cls(
            completion=completion,
            models=llm_config.models,
            simple_model=llm_config.simple_model,
            structured_model=llm_config.structured_model,
            max_retries=llm_config.max_retries,
            retry_delay=llm_config.retry_delay,
            default_duration_minutes=default_duration_minutes,
        )

    async def extract(self, text: Any, current_date: str, current_time: str) -> ExtractionResult:
        """Extract drafts from ``text``. Never raises."""
        request = ExtractionRequest(
            text=text if isinstance(text, str) else "",
            current_date=current_date,
            current_time=current_time,
        )

        for name, strategy in self.strategies:
            try:
                result = await strategy(request)
            except (CompletionError, ExtractionParseError) as e:
                logger.warning(f"Extraction strategy '{name}' failed: {e}")
                continue
            except Exception as e:
                logger.error(f"Extraction strategy '{name}' raised unexpectedly: {e}")
                continue

            if is_valid_extraction(result):
                logger.info(f"Extraction succeeded with strategy '{name}' ({len(result.drafts)} draft(s))")
                return self._finalize(result, request)

            logger.info(f"Strategy '{name}' produced no valid result, trying next")

        # Only reached if the rule-based strategy was removed from the list
        fallback = rule_based_extract(
            request.text, request.current_date, request.current_time, self.default_duration_minutes
        )
        return self._finalize(fallback, request)

    async def extract_changes(self, text: Any, current_date: str, current_time: str) -> PartialFields:
        """
        Read what an update request changes. Never raises.

        Fields the message does not mention stay unset so they cannot
        overwrite the stored event. A completion reply is trusted only for
        fields the text actually names; the rule-based reader is used when
        no completion service answers.
        """
        request = ExtractionRequest(
            text=text if isinstance(text, str) else "",
            current_date=current_date,
            current_time=current_time,
        )
        if not request.text.strip():
            return PartialFields()

        if self.completion is not None:
            for attempt in range(self.max_retries):
                model = self.models[attempt % len(self.models)]
                try:
                    prompt = build_prompt(UPDATE_PROMPT, request.text, request.current_date, request.current_time)
                    payload = parse_completion(await self.completion.complete(model, prompt))
                    if isinstance(payload, dict):
                        changes = _mentioned_only(PartialFields.from_dict(payload), request.text, request.current_date)
                        if changes.has_changes():
                            logger.info(f"Update fields read with {model}")
                            return changes
                        break
                    logger.warning(f"Update extraction with {model} returned no object")
                except (CompletionError, ExtractionParseError) as e:
                    logger.warning(f"Update extraction with {model} failed: {e}")
                except Exception as e:
                    logger.error(f"Update extraction with {model} raised unexpectedly: {e}")
                    break

                if attempt < self.max_retries - 1:
                    await self._sleep(self.retry_delay * (2 ** attempt))

        return rule_based_changes(request.text, request.current_date)

    def _finalize(self, result: ExtractionResult, request: ExtractionRequest) -> ExtractionResult:
        reference = request.current_date if is_valid_date(request.current_date) else None
        for draft in result.drafts:
            clean_event_details(draft, reference)
            if is_valid_time(draft.start):
                draft.start, draft.end = ensure_end_after(draft.start, draft.end, self.default_duration_minutes)
        if result.time_range is None and request.text and is_calendar_query(request.text):
            result.time_range = detect_time_range(request.text)
        return result

    async def _ask(self, model: str, template: str, request: ExtractionRequest, strategy: str) -> Optional[ExtractionResult]:
        prompt = build_prompt(template, request.text, request.current_date, request.current_time)
        text = await self.completion.complete(model, prompt)
        return result_from_payload(parse_completion(text), strategy)

    async def _primary(self, request: ExtractionRequest) -> Optional[ExtractionResult]:
        if self.completion is None or not request.text.strip():
            return None

        for attempt in range(self.max_retries):
            model = self.models[attempt % len(self.models)]
            try:
                logger.debug(f"Primary extraction with {model} (attempt {attempt + 1})")
                result = await self._ask(model, PRIMARY_PROMPT, request, "primary")
                if result is not None:
                    return result
                logger.warning(f"Primary extraction with {model} returned no events")
            except (CompletionError, ExtractionParseError) as e:
                logger.warning(f"Primary extraction with {model} failed: {e}")

            if attempt < self.max_retries - 1:
                await self._sleep(self.retry_delay * (2 ** attempt))

        return None

    async def _simplified(self, request: ExtractionRequest) -> Optional[ExtractionResult]:
        if self.completion is None or not request.text.strip():
            return None
        return await self._ask(self.simple_model, SIMPLE_PROMPT, request, "simplified")

    async def _structured(self, request: ExtractionRequest) -> Optional[ExtractionResult]:
        if self.completion is None or not request.text.strip():
            return None
        return await self._ask(self.structured_model, STRUCTURED_PROMPT, request, "structured")

    async def _rule_based(self, request: ExtractionRequest) -> Optional[ExtractionResult]:
        return rule_based_extract(
            request.text, request.current_date, request.current_time, self.default_duration_minutes
        )
