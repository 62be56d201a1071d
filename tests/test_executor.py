"""
Unit tests for the creation/mutation executor.

Tests:
- Draft repair and event resource construction
- Fix strategy selection
- ensure_creation: duplicates, retries, permanent failures
- Batch creation with partial failure and break re-anchoring
- Update, delete and listing
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FailingStore, timed_resource

from eventsmith.core.config import EventsmithConfig
from eventsmith.core.errors import CalendarStoreError, ErrorKind
from eventsmith.scheduling.duplicates import DuplicateDetector
from eventsmith.scheduling.executor import (
    CreationExecutor,
    build_event_resource,
    infer_category,
    select_fix_strategies,
    validate_and_fix_event_details,
)
from eventsmith.scheduling.models import EventDraft, PartialFields
from eventsmith.tools.calendar import InMemoryCalendarStore


class RejectingStore(InMemoryCalendarStore):
    """Refuses every event whose title starts with 'Bad'."""

    async def insert_event(self, resource):
        if resource["summary"].startswith("Bad"):
            self.insert_calls += 1
            raise CalendarStoreError("Forbidden", status=403)
        return await super().insert_event(resource)


def make_executor(store, **kwargs):
    return CreationExecutor(store, detector=DuplicateDetector(store), timezone="UTC", **kwargs)


class TestValidateAndFix:
    """Tests for validate_and_fix_event_details."""

    def test_empty_draft(self):
        """Test an empty draft gets a title, next weekday, 09:00-10:00 and a category."""
        draft = EventDraft()
        fixed = validate_and_fix_event_details(draft, index=2, reference_date="2025-11-21")

        assert draft.title == "Event 2"
        assert draft.date == "2025-11-24"
        assert (draft.start, draft.end) == ("09:00", "10:00")
        assert draft.category == "general"
        assert fixed == ["title", "date", "start", "end"]

    def test_complete_draft_untouched(self):
        """Test a valid draft reports no fixed fields."""
        draft = EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00")
        assert validate_and_fix_event_details(draft) == []
        assert (draft.start, draft.end) == ("18:00", "19:00")

    def test_end_before_start(self):
        """Test an end not after the start becomes start plus an hour."""
        draft = EventDraft(title="Gym", date="2025-11-20", start="18:00", end="17:00")
        validate_and_fix_event_details(draft)
        assert draft.end == "19:00"

    def test_default_duration(self):
        """Test a missing end uses the configured duration."""
        draft = EventDraft(title="Standup", date="2025-11-20", start="09:00")
        validate_and_fix_event_details(draft, duration_minutes=15)
        assert draft.end == "09:15"

    def test_late_start_clamps_end(self):
        """Test an end that would wrap past midnight is clamped to 23:59."""
        draft = EventDraft(title="Stargazing", date="2025-11-20", start="23:30")
        validate_and_fix_event_details(draft)
        assert draft.end == "23:59"

    def test_malformed_values_repaired(self):
        """Test malformed dates and times are cleaned rather than replaced."""
        draft = EventDraft(title="Call", date="tomorrow", start="2pm", end="1530")
        validate_and_fix_event_details(draft, reference_date="2025-11-20")
        assert draft.date == "2025-11-21"
        assert (draft.start, draft.end) == ("14:00", "15:30")

    @pytest.mark.parametrize("title,category", [
        ("Team meeting", "meeting"),
        ("Call with Sam", "meeting"),
        ("Python workshop", "education"),
        ("Doctor visit", "health"),
        ("Coffee with Ana", "personal"),
        ("Gym", "general"),
    ])
    def test_category_inference(self, title, category):
        """Test categories are inferred from title keywords."""
        assert infer_category(title) == category


class TestBuildEventResource:
    """Tests for build_event_resource."""

    def test_full_resource(self):
        """Test every optional field is carried into the resource."""
        draft = EventDraft(
            title="Standup",
            date="2025-11-20",
            start="09:00",
            end="09:15",
            location="  Room 4 ",
            recurrence_rule="FREQ=WEEKLY;BYDAY=MO",
            category="meeting",
        )
        resource = build_event_resource(draft, "Europe/Berlin", fallback_used=True)

        assert resource["summary"] == "Standup"
        assert resource["start"] == {"dateTime": "2025-11-20T09:00:00", "timeZone": "Europe/Berlin"}
        assert resource["location"] == "Room 4"
        assert resource["recurrence"] == ["RRULE:FREQ=WEEKLY;BYDAY=MO"]
        assert resource["extendedProperties"]["private"] == {
            "created_by": "eventsmith",
            "category": "meeting",
            "fallback_used": "true",
        }

    def test_invalid_times(self):
        """Test unusable times give no resource."""
        assert build_event_resource(EventDraft(title="X", date="nope", start="09:00")) is None


class TestFixStrategies:
    """Tests for select_fix_strategies."""

    def test_time_errors_by_attempt(self):
        """Test time errors move to the neutral window, then to the next weekday."""
        [(name, fix)] = select_fix_strategies("[400] The specified time range is empty", 2)
        assert name == "neutral_window"
        draft = EventDraft(title="X", date="2025-11-20", start="18:00", end="19:00")
        moved = fix(draft)
        assert (moved.start, moved.end) == ("10:00", "11:00")
        assert (draft.start, draft.end) == ("18:00", "19:00")

        [(name, fix)] = select_fix_strategies("[400] The specified time range is empty", 3)
        assert name == "next_weekday"
        assert fix(draft).date == "2025-11-21"

    def test_title_and_location(self):
        """Test title errors truncate and location errors drop the location."""
        [(name, fix)] = select_fix_strategies("Title too long", 2, max_title_length=5)
        assert name == "truncate_title"
        assert fix(EventDraft(title="Quarterly review")).title == "Quart"

        [(name, fix)] = select_fix_strategies("Invalid location", 2)
        assert name == "drop_location"
        assert fix(EventDraft(title="X", location="Mars")).location is None

    def test_error_naming_several_fields(self):
        """Test every matching fix is returned, time first."""
        fixes = select_fix_strategies("Invalid start time, title and location", 2)
        assert [name for name, _ in fixes] == ["neutral_window", "truncate_title", "drop_location"]

    def test_unrelated_error(self):
        """Test errors without a known cause get no fix."""
        assert select_fix_strategies("[503] Backend Error", 2) == []


class TestEnsureCreation:
    """Tests for CreationExecutor.ensure_creation."""

    @pytest.mark.asyncio
    async def test_draft_without_times_or_date(self, memory_store):
        """Test an empty-ish draft is repaired and created without further input."""
        executor = make_executor(memory_store)
        # 2025-11-16 is a Sunday
        outcome = await executor.ensure_creation(EventDraft(title="Plan sprint"), "user-1", reference_date="2025-11-16")

        assert outcome.success
        assert outcome.event_id == "evt_1"
        assert outcome.draft.date == "2025-11-17"
        assert (outcome.draft.start, outcome.draft.end) == ("09:00", "10:00")
        assert set(outcome.validated_fields) == {"date", "start", "end"}

    @pytest.mark.asyncio
    async def test_second_overlapping_request_is_duplicate(self, memory_store):
        """Test the second of two overlapping same-title requests reuses the first id."""
        executor = make_executor(memory_store)

        first = await executor.ensure_creation(
            EventDraft(title="Lunch with John", date="2025-11-20", start="12:00", end="13:00"), "user-1"
        )
        second = await executor.ensure_creation(
            EventDraft(title="Lunch with John", date="2025-11-20", start="12:15", end="13:15"), "user-1"
        )

        assert first.success and second.success
        assert second.event_id == first.event_id
        assert second.is_duplicate
        assert second.error_kind == ErrorKind.DUPLICATE_DETECTED
        assert memory_store.insert_calls == 1
        assert len(memory_store.events) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        """Test an unavailable provider is retried without changing the draft."""
        store = FailingStore([(503, "Backend Error")])
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert outcome.success
        assert outcome.attempts_used == 2
        assert outcome.draft.start == "18:00"

    @pytest.mark.asyncio
    async def test_time_error_moves_to_neutral_window(self):
        """Test a time error on attempt 1 retries in the 10:00-11:00 window."""
        store = FailingStore([(400, "The specified time range is empty")])
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert outcome.success
        assert outcome.attempts_used == 2
        assert (outcome.draft.start, outcome.draft.end) == ("10:00", "11:00")
        assert {"start", "end"} <= set(outcome.validated_fields)

    @pytest.mark.asyncio
    async def test_second_time_error_moves_to_next_weekday(self):
        """Test a second time error moves the event to the next weekday."""
        store = FailingStore([(400, "Invalid start time"), (400, "Invalid start time")])
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert outcome.success
        assert outcome.attempts_used == 3
        assert outcome.draft.date == "2025-11-21"
        assert "date" in outcome.validated_fields

    @pytest.mark.asyncio
    async def test_title_error_truncates(self):
        """Test a title error truncates the title before retrying."""
        store = FailingStore([(400, "Title too long")])
        executor = make_executor(store, max_title_length=10)
        outcome = await executor.ensure_creation(
            EventDraft(title="A very long title indeed", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert outcome.success
        assert store.events[outcome.event_id]["summary"] == "A very lon"

    @pytest.mark.asyncio
    async def test_location_error_drops_location(self):
        """Test a location error removes the location before retrying."""
        store = FailingStore([(400, "Invalid location")])
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00", location="???"), "user-1"
        )

        assert outcome.success
        assert "location" not in store.events[outcome.event_id]
        assert "location" in store.attempted[0]

    @pytest.mark.asyncio
    async def test_combined_error_applies_every_fix(self):
        """Test an error naming title and location fixes both before the retry."""
        store = FailingStore([(400, "Invalid title and location")])
        executor = make_executor(store, max_title_length=8)
        outcome = await executor.ensure_creation(
            EventDraft(title="Quarterly planning", date="2025-11-20", start="18:00", end="19:00", location="???"),
            "user-1",
        )

        assert outcome.success
        stored = store.events[outcome.event_id]
        assert stored["summary"] == "Quarterl"
        assert "location" not in stored
        assert {"title", "location"} <= set(outcome.validated_fields)

    @pytest.mark.asyncio
    async def test_configured_duration(self, memory_store):
        """Test the executor built from config fills missing ends with its duration."""
        cfg = EventsmithConfig(calendar={"timezone": "UTC", "default_duration_minutes": 45})
        executor = CreationExecutor.from_config(memory_store, cfg)
        outcome = await executor.ensure_creation(
            EventDraft(title="Review", date="2025-11-20", start="10:00"), "user-1"
        )

        assert executor.default_duration_minutes == 45
        assert outcome.draft.end == "10:45"

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        """Test three transient failures end in a failure with a diagnosis."""
        store = FailingStore([(503, "Backend Error")] * 3)
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert not outcome.success
        assert outcome.attempts_used == 3
        assert outcome.error_kind == ErrorKind.PROVIDER_UNAVAILABLE
        assert outcome.message.startswith('Failed to create event "Gym" after 3 attempt(s)')
        assert outcome.diagnosis is not None
        assert outcome.diagnosis.issue_description.startswith("Creation failed: ")
        assert store.insert_calls == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [
        (401, ErrorKind.AUTHORIZATION_REQUIRED),
        (403, ErrorKind.PERMISSION_DENIED),
        (404, ErrorKind.NOT_FOUND),
        (409, ErrorKind.TIME_CONFLICT),
    ])
    async def test_permanent_failures_not_retried(self, status, kind):
        """Test permanent failures stop after the first attempt."""
        store = FailingStore([(status, "nope")] * 3)
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )

        assert not outcome.success
        assert outcome.error_kind == kind
        assert outcome.attempts_used == 1
        assert store.insert_calls == 1

    @pytest.mark.asyncio
    async def test_duplicate_check_failure_does_not_block(self):
        """Test creation goes ahead when the duplicate lookup fails."""
        store = FailingStore(list_error=CalendarStoreError("down", status=503))
        outcome = await make_executor(store).ensure_creation(
            EventDraft(title="Gym", date="2025-11-20", start="18:00", end="19:00"), "user-1"
        )
        assert outcome.success


class TestBatch:
    """Tests for CreationExecutor.create_batch."""

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        """Test valid drafts are created while invalid ones are itemized."""
        from eventsmith.scheduling.formatting import format_population

        store = RejectingStore()
        drafts = [
            EventDraft(title="Good one", date="2025-11-20", start="08:00", end="09:00"),
            EventDraft(title="Bad one", date="2025-11-20", start="09:00", end="10:00"),
            EventDraft(title="Good two", date="2025-11-20", start="10:00", end="11:00"),
            EventDraft(title="Bad two", date="2025-11-20", start="11:00", end="12:00"),
            EventDraft(title="Good three", date="2025-11-20", start="12:00", end="13:00"),
        ]

        report = await make_executor(store).create_batch(drafts, "user-1")

        assert report.total == 5
        assert report.succeeded == 3
        assert report.failed == 2
        assert report.succeeded + report.failed == report.total
        assert [o.title for o in report.failures] == ["Bad one", "Bad two"]
        assert report.status == "partial"
        assert report.population_rate == pytest.approx(0.6)
        assert len(store.events) == 3

        message = format_population(report)
        assert "Successfully created 3 out of 5 events" in message
        assert "2 event(s) could not be created" in message
        assert "Bad two" in message
        assert "60%" in message

    @pytest.mark.asyncio
    async def test_all_created(self, memory_store):
        """Test a fully successful batch."""
        drafts = [
            EventDraft(title="A", date="2025-11-20", start="08:00", end="09:00"),
            EventDraft(title="B", date="2025-11-20", start="09:00", end="10:00"),
        ]
        report = await make_executor(memory_store).create_batch(drafts, "user-1")
        assert report.status == "complete"
        assert report.population_rate == 1.0

    @pytest.mark.asyncio
    async def test_break_follows_moved_predecessor(self):
        """Test a break is re-anchored to where its predecessor was actually created."""
        store = FailingStore([(400, "The specified time range is empty")])
        drafts = [
            EventDraft(title="Study", date="2025-11-20", start="15:30", end="18:00"),
            EventDraft(title="Break", date="2025-11-20", start="18:00", end="18:05", buffer_minutes=5, category="break"),
            EventDraft(title="More study", date="2025-11-20", start="18:05", end="18:50"),
        ]

        report = await make_executor(store).create_batch(drafts, "user-1")

        assert report.succeeded == 3
        times = [(o.draft.start, o.draft.end) for o in report.outcomes]
        assert times == [("10:00", "11:00"), ("11:00", "11:05"), ("18:05", "18:50")]


class TestUpdateDeleteList:
    """Tests for update, delete and listing."""

    @pytest.mark.asyncio
    async def test_update_requires_event_id(self, memory_store):
        """Test an update without an id is rejected before touching the store."""
        outcome = await make_executor(memory_store).update_event(None, PartialFields(title="X"))
        assert outcome.error_kind == ErrorKind.MISSING_EVENT_ID
        assert not outcome.success

    @pytest.mark.asyncio
    async def test_update_needs_changes(self):
        """Test an update with nothing to change is rejected."""
        store = InMemoryCalendarStore(events=[timed_resource("Gym", "2025-11-20", "18:00", "19:00")])
        outcome = await make_executor(store).update_event("evt_1", PartialFields())
        assert outcome.error_kind == ErrorKind.NOTHING_TO_UPDATE

    @pytest.mark.asyncio
    async def test_move_start_keeps_duration(self):
        """Test moving the start keeps the original length."""
        store = InMemoryCalendarStore(events=[timed_resource("Review", "2025-11-20", "12:00", "13:30")])
        outcome = await make_executor(store).update_event("evt_1", PartialFields(start="3pm"))

        assert outcome.success
        assert (outcome.draft.start, outcome.draft.end) == ("15:00", "16:30")
        assert store.events["evt_1"]["start"]["dateTime"] == "2025-11-20T15:00:00"
        assert store.events["evt_1"]["end"]["dateTime"] == "2025-11-20T16:30:00"

    @pytest.mark.asyncio
    async def test_update_title_keeps_times(self):
        """Test a title-only update leaves the times alone."""
        store = InMemoryCalendarStore(events=[timed_resource("Review", "2025-11-20", "12:00", "13:30")])
        outcome = await make_executor(store).update_event("evt_1", PartialFields(title="Design review"))

        assert outcome.success
        assert store.events["evt_1"]["summary"] == "Design review"
        assert store.events["evt_1"]["start"]["dateTime"] == "2025-11-20T12:00:00"

    @pytest.mark.asyncio
    async def test_update_with_duration(self):
        """Test a new duration moves only the end."""
        store = InMemoryCalendarStore(events=[timed_resource("Review", "2025-11-20", "12:00", "13:00")])
        outcome = await make_executor(store).update_event("evt_1", PartialFields(duration="2 hours"))
        assert (outcome.draft.start, outcome.draft.end) == ("12:00", "14:00")

    @pytest.mark.asyncio
    async def test_update_unknown_event(self, memory_store):
        """Test updating a missing event reports not found."""
        outcome = await make_executor(memory_store).update_event("evt_404", PartialFields(title="X"))
        assert outcome.error_kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test delete removes the event."""
        store = InMemoryCalendarStore(events=[timed_resource("Gym", "2025-11-20", "18:00", "19:00")])
        outcome = await make_executor(store).delete_event("evt_1")
        assert outcome.success
        assert store.events == {}

    @pytest.mark.asyncio
    async def test_delete_errors(self, memory_store):
        """Test delete without an id or with an unknown id."""
        executor = make_executor(memory_store)
        assert (await executor.delete_event("")).error_kind == ErrorKind.MISSING_EVENT_ID
        assert (await executor.delete_event("evt_9")).error_kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_listing(self):
        """Test today's events are listed in order with status markers."""
        store = InMemoryCalendarStore(events=[
            timed_resource("Lunch", "2025-11-20", "14:00", "15:00"),
            timed_resource("Breakfast", "2025-11-20", "08:00", "09:00"),
            timed_resource("Standup", "2025-11-20", "10:00", "11:00"),
            timed_resource("Tomorrow thing", "2025-11-21", "10:00", "11:00"),
        ])
        now = datetime(2025, 11, 20, 10, 30, tzinfo=timezone.utc)

        listing = await make_executor(store).get_events("today", "2025-11-20", now)

        assert listing.success
        assert [e.summary for e in listing.events] == ["Breakfast", "Standup", "Lunch"]
        lines = listing.message.splitlines()
        assert lines[1] == "1. ✅ ~~08:00-09:00~~ | Breakfast"
        assert lines[2] == "2. 🔥 10:00-11:00 | Standup"
        assert lines[3] == "3. ☑️ 14:00-15:00 | Lunch"

    @pytest.mark.asyncio
    async def test_listing_store_failure(self):
        """Test a failing store yields an error listing, not an exception."""
        store = FailingStore(list_error=CalendarStoreError("down", status=503))
        listing = await make_executor(store).get_events("today", "2025-11-20")
        assert not listing.success
        assert listing.error_kind == ErrorKind.PROVIDER_UNAVAILABLE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
