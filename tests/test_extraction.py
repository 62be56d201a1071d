"""
Unit tests for event extraction.

Tests:
- Rule-based extraction of single and multi-event sentences
- The strategy cascade and its guaranteed fallback
- Primary strategy retries with model rotation and backoff
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import RecordingSleep, ScriptedCompletionService

from eventsmith.core.errors import CompletionError
from eventsmith.scheduling.extraction import (
    ExtractionOrchestrator,
    detect_time_range,
    extract_title,
    is_calendar_query,
    result_from_payload,
    rule_based_changes,
    rule_based_extract,
)
from eventsmith.scheduling.temporal import is_end_after_start

MULTI = (
    "3:30-6:00 grinding programming for uni and break of 5 minutes "
    "afterwards 6:05-6:50 let's grind even more"
)


def make_orchestrator(completion=None, **kwargs):
    kwargs.setdefault("models", ["model-a", "model-b", "model-c"])
    kwargs.setdefault("simple_model", "model-simple")
    kwargs.setdefault("structured_model", "model-structured")
    kwargs.setdefault("sleep", RecordingSleep())
    return ExtractionOrchestrator(completion=completion, **kwargs)


class TestRuleBasedExtraction:
    """Tests for rule_based_extract."""

    def test_multi_event_with_break(self):
        """Test two activities and an explicit break become three ordered drafts."""
        result = rule_based_extract(MULTI, "2025-11-16", "10:00")

        assert result.multiple
        assert result.fallback_used
        assert [(d.start, d.end) for d in result.drafts] == [
            ("15:30", "18:00"),
            ("18:00", "18:05"),
            ("18:05", "18:50"),
        ]
        first, pause, second = result.drafts
        assert first.title.endswith("Uni")
        assert "break" in pause.title.lower()
        assert pause.buffer_minutes == 5
        assert second.title.endswith("More")
        assert all(d.date == "2025-11-16" for d in result.drafts)

    def test_single_range(self):
        """Test a single time range with a date word."""
        result = rule_based_extract("dentist tomorrow 2-3pm", "2025-11-16", "10:00")
        draft = result.single
        assert not result.multiple
        assert draft.date == "2025-11-17"
        assert (draft.start, draft.end) == ("14:00", "15:00")
        assert draft.title == "Dentist"

    def test_single_time_gets_an_hour(self):
        """Test a lone time lasts 60 minutes."""
        draft = rule_based_extract("call mom at 3pm", "2025-11-16", "10:00").single
        assert (draft.start, draft.end) == ("15:00", "16:00")
        assert "end" in draft.inferred

    def test_no_time_uses_current_time(self):
        """Test a sentence without times starts at the current time."""
        draft = rule_based_extract("water the plants", "2025-11-16", "10:15").single
        assert (draft.start, draft.end) == ("10:15", "11:15")
        assert {"start", "end", "date"} <= draft.inferred

    @pytest.mark.parametrize("text", ["", "   ", "会议明天下午", "¿reunión mañana?", None, 42])
    def test_always_complete(self, text):
        """Test any input yields a complete draft."""
        result = rule_based_extract(text, "2025-11-16", "10:00")
        assert all(draft.is_complete() for draft in result.drafts)
        assert all(is_end_after_start(d.start, d.end) for d in result.drafts)

    @pytest.mark.parametrize("text,times", [
        ("12-12", ("12:00", "13:00")),
        ("meeting 10pm-1am", ("22:00", "23:59")),
        ("99:99-88:88 x", ("23:00", "23:59")),
        ("from 25 to 30", ("23:00", "23:59")),
    ])
    def test_degenerate_ranges_end_after_start(self, text, times):
        """Test empty, reversed and overnight ranges still end after they start."""
        draft = rule_based_extract(text, "2025-11-16", "10:00").single
        assert (draft.start, draft.end) == times

    def test_title_strips_action_and_times(self):
        """Test action verbs, times and date words are removed from the title."""
        assert extract_title("please schedule an event for team sync tomorrow at 4pm") == "Team Sync"
        assert extract_title("at 5") == "At 5"


class TestQueryDetection:
    """Tests for listing helpers."""

    def test_is_calendar_query(self):
        """Test listing keywords are recognized."""
        assert is_calendar_query("what's on my calendar today")
        assert is_calendar_query("Show my meetings")
        assert not is_calendar_query("lunch with John at noon")

    @pytest.mark.parametrize("text,expected", [
        ("what do I have today", "today"),
        ("show tomorrow", "tomorrow"),
        ("meetings this week", "this week"),
        ("anything next week?", "next week"),
        ("events in the next 3 days", "next 3 days"),
        ("what's up", None),
    ])
    def test_detect_time_range(self, text, expected):
        """Test range names are picked out of listing requests."""
        assert detect_time_range(text) == expected


class TestResultFromPayload:
    """Tests for result_from_payload."""

    def test_single_payload(self):
        """Test a single-event object."""
        result = result_from_payload(
            {"event_title": "Lunch", "date": "2025-11-16", "start_time": "12:00", "end_time": "13:00"},
            "primary",
        )
        assert result.single.title == "Lunch"
        assert not result.multiple

    def test_multi_payload(self):
        """Test a multi-event object."""
        result = result_from_payload(
            {"multiple_events": True, "events": [{"event_title": "A"}, {"event_title": "B"}]},
            "primary",
        )
        assert result.multiple
        assert [d.title for d in result.drafts] == ["A", "B"]

    def test_empty_events_rejected(self):
        """Test a multi-event object with no events is rejected."""
        assert result_from_payload({"multiple_events": True, "events": []}, "primary") is None
        assert result_from_payload("nope", "primary") is None


class TestOrchestrator:
    """Tests for ExtractionOrchestrator."""

    @pytest.mark.asyncio
    async def test_primary_success(self):
        """Test a valid first completion wins."""
        reply = json.dumps({
            "event_title": "Team Sync",
            "date": "2025-11-17",
            "start_time": "16:00",
            "end_time": "16:30",
        })
        completion = ScriptedCompletionService([reply])
        orchestrator = make_orchestrator(completion)

        result = await orchestrator.extract("team sync tomorrow 4pm for 30 min", "2025-11-16", "10:00")

        assert result.strategy == "primary"
        assert not result.fallback_used
        assert result.single.start == "16:00"
        assert completion.models_used == ["model-a"]

    @pytest.mark.asyncio
    async def test_rotation_and_backoff(self):
        """Test failed primary attempts rotate models and back off exponentially."""
        good = json.dumps({"event_title": "X", "date": "2025-11-16", "start_time": "09:00", "end_time": "10:00"})
        completion = ScriptedCompletionService([
            CompletionError("down"),
            "not json",
            good,
        ])
        sleep = RecordingSleep()
        orchestrator = make_orchestrator(completion, sleep=sleep, retry_delay=0.5)

        result = await orchestrator.extract("x at 9", "2025-11-16", "08:00")

        assert result.strategy == "primary"
        assert completion.models_used == ["model-a", "model-b", "model-c"]
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_incomplete_primary_falls_through(self):
        """Test an incomplete primary result moves on to the simplified strategy."""
        incomplete = json.dumps({"event_title": "Gym"})
        complete = json.dumps({"event_title": "Gym", "date": "2025-11-16", "start_time": "18:00", "end_time": "19:00"})
        completion = ScriptedCompletionService([incomplete, complete])
        orchestrator = make_orchestrator(completion, max_retries=1)

        result = await orchestrator.extract("gym at 6pm", "2025-11-16", "10:00")

        assert result.strategy == "simplified"
        assert completion.models_used == ["model-a", "model-simple"]

    @pytest.mark.asyncio
    async def test_structured_strategy(self):
        """Test the structured strategy runs after the simplified one fails."""
        complete = json.dumps({"event_title": "Gym", "date": "2025-11-16", "start_time": "18:00", "end_time": "19:00"})
        completion = ScriptedCompletionService([CompletionError("a"), CompletionError("b"), complete])
        orchestrator = make_orchestrator(completion, max_retries=1)

        result = await orchestrator.extract("gym at 6pm", "2025-11-16", "10:00")

        assert result.strategy == "structured"
        assert completion.models_used[-1] == "model-structured"

    @pytest.mark.asyncio
    async def test_unavailable_service_uses_rule_based(self):
        """Test a dead completion service still yields the multi-event result."""
        completion = ScriptedCompletionService(default=None)
        orchestrator = make_orchestrator(completion)

        result = await orchestrator.extract(MULTI, "2025-11-16", "10:00")

        assert result.strategy == "rule_based"
        assert result.fallback_used
        assert len(result.drafts) == 3

    @pytest.mark.asyncio
    async def test_no_completion_service(self):
        """Test extraction works with no completion service at all."""
        orchestrator = make_orchestrator(None)
        result = await orchestrator.extract("lunch at 12:30", "2025-11-16", "10:00")
        assert result.strategy == "rule_based"
        assert result.single.start == "12:30"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "明天下午三点开会", "😀😀😀", None])
    async def test_extract_never_raises(self, text):
        """Test extract always returns a structured result."""
        completion = ScriptedCompletionService(default="garbage {{{")
        orchestrator = make_orchestrator(completion)

        result = await orchestrator.extract(text, "2025-11-16", "10:00")

        assert result.drafts
        assert all(draft.is_complete() for draft in result.drafts)
        assert all(is_end_after_start(d.start, d.end) for d in result.drafts)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_absorbed(self):
        """Test an unexpected exception from the service does not escape."""
        completion = ScriptedCompletionService(default=None, replies=[RuntimeError("boom")] * 5)
        orchestrator = make_orchestrator(completion)

        result = await orchestrator.extract("yoga at 7am", "2025-11-16", "06:00")

        assert result.strategy == "rule_based"
        assert result.single.start == "07:00"

    @pytest.mark.asyncio
    async def test_model_output_is_normalized(self):
        """Test malformed dates and times from the model are repaired."""
        reply = json.dumps({"event_title": "Call", "date": "20-17", "start_time": "00025", "end_time": "21:00"})
        orchestrator = make_orchestrator(ScriptedCompletionService([reply]))

        result = await orchestrator.extract("call tonight", "2025-11-17", "10:00")

        assert result.single.date == "2025-11-17"
        assert result.single.start == "20:00"

class TestUpdateChanges:
    """Tests for reading what an update request changes."""

    def test_move_sets_only_the_new_start(self):
        """Test "move my 2pm to 3pm" is a move, not a 14:00-15:00 range."""
        changes = rule_based_changes("move my 2pm to 3pm", "2025-11-16")
        assert changes.start == "15:00"
        assert changes.end is None
        assert changes.date is None
        assert changes.title is None

    def test_reschedule_with_date(self):
        """Test a reschedule names both the new day and time."""
        changes = rule_based_changes("reschedule it to 4pm tomorrow", "2025-11-16")
        assert (changes.date, changes.start) == ("2025-11-17", "16:00")

    def test_rename_leaves_times_alone(self):
        """Test a rename changes the title only."""
        changes = rule_based_changes("rename it to doctor visit 2", "2025-11-16")
        assert changes.title == "Doctor Visit 2"
        assert (changes.date, changes.start, changes.end) == (None, None, None)

    def test_location_and_duration(self):
        """Test location and length changes are read separately."""
        changes = rule_based_changes("make it 2 hours, location is Room 4", "2025-11-16")
        assert changes.location == "Room 4"
        assert changes.duration == "2 hours"
        assert changes.start is None

    def test_explicit_range(self):
        """Test a new range sets both ends."""
        changes = rule_based_changes("change it to 3-5pm", "2025-11-16")
        assert changes.start == "15:00"

    @pytest.mark.asyncio
    async def test_completion_defaults_are_dropped(self):
        """Test date and times the message never names are discarded."""
        reply = json.dumps({
            "event_title": "Doctor",
            "date": "2025-11-16",
            "start_time": "10:00",
            "end_time": "11:00",
        })
        orchestrator = make_orchestrator(ScriptedCompletionService([reply]))

        changes = await orchestrator.extract_changes("rename it to Doctor", "2025-11-16", "10:00")

        assert changes.title == "Doctor"
        assert (changes.date, changes.start, changes.end) == (None, None, None)

    @pytest.mark.asyncio
    async def test_completion_times_kept_when_named(self):
        """Test times the message does name survive."""
        reply = json.dumps({"event_title": None, "date": None, "start_time": "3pm", "end_time": None})
        completion = ScriptedCompletionService([reply])
        orchestrator = make_orchestrator(completion)

        changes = await orchestrator.extract_changes("push it to 3pm", "2025-11-16", "10:00")

        assert changes.start == "15:00"
        assert "null" in completion.calls[0][1]

    @pytest.mark.asyncio
    async def test_failing_service_falls_back(self):
        """Test the rule-based reader answers when every completion fails."""
        completion = ScriptedCompletionService(default="garbage {{{")
        sleep = RecordingSleep()
        orchestrator = make_orchestrator(completion, sleep=sleep, max_retries=2)

        changes = await orchestrator.extract_changes("move my 2pm to 3pm", "2025-11-16", "10:00")

        assert changes.start == "15:00"
        assert len(completion.calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", None, 42])
    async def test_empty_text_changes_nothing(self, text):
        """Test unusable text yields no changes."""
        changes = await make_orchestrator(None).extract_changes(text, "2025-11-16", "10:00")
        assert not changes.has_changes()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
