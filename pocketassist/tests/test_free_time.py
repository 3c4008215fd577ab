"""
Tests for pocketassist.free_time module.
"""

import datetime
import json

import pytest

from pocketassist.errors import PermissionDenied
from pocketassist.free_time import (
    CalendarEvent,
    FindFreeTimeArguments,
    FindFreeTimeTool,
    FreeSlot,
    InMemoryCalendarStore,
    JsonCalendarStore,
    find_free_slots,
    iso8601,
)

UTC = datetime.timezone.utc


def at(hour: int, minute: int = 0) -> datetime.datetime:
    return datetime.datetime(2024, 5, 6, hour, minute, tzinfo=UTC)


class TestFindFreeSlots:
    """Gap scanning over a fixed morning layout: 09:00-09:30 and 10:00-11:00."""

    @pytest.fixture
    def events(self, morning_calendar):
        return morning_calendar.events

    def test_first_slot_starts_at_window_start(self, events):
        slots = find_free_slots(
            events, start=at(8, 30), duration=datetime.timedelta(minutes=25), window_end=at(10, 30)
        )
        assert slots[0] == FreeSlot(start=at(8, 30), end=at(9))
        assert [s.start for s in slots] == [at(8, 30), at(9, 30)]

    def test_gaps_shorter_than_duration_are_skipped(self, events):
        slots = find_free_slots(
            events, start=at(8, 30), duration=datetime.timedelta(minutes=45), window_end=at(10, 30)
        )
        assert slots == []

    def test_trailing_gap_counts_when_window_extends(self, events):
        slots = find_free_slots(
            events, start=at(8, 30), duration=datetime.timedelta(minutes=45), window_end=at(13)
        )
        assert slots == [FreeSlot(start=at(11), end=at(13))]

    def test_overlapping_events_push_cursor_to_latest_end(self):
        events = [
            CalendarEvent(start=at(9), end=at(12)),
            CalendarEvent(start=at(10), end=at(11)),
        ]
        slots = find_free_slots(
            events, start=at(9), duration=datetime.timedelta(minutes=30), window_end=at(13)
        )
        assert slots == [FreeSlot(start=at(12), end=at(13))]

    def test_at_most_max_slots(self):
        events = [CalendarEvent(start=at(h), end=at(h, 30)) for h in range(9, 17)]
        slots = find_free_slots(
            events, start=at(8), duration=datetime.timedelta(minutes=15), window_end=at(18)
        )
        assert len(slots) == 3

    def test_empty_calendar_gives_whole_window(self):
        slots = find_free_slots(
            [], start=at(8), duration=datetime.timedelta(minutes=15), window_end=at(9)
        )
        assert slots == [FreeSlot(start=at(8), end=at(9))]


class TestFindFreeTimeTool:
    @pytest.mark.asyncio
    async def test_returns_iso_start_times(self, morning_calendar, fixed_now):
        tool = FindFreeTimeTool(morning_calendar, clock=lambda: fixed_now)

        output = await tool.call({"durationMinutes": 25, "windowHours": 2})

        assert output == "2024-05-06T08:30:00Z\n2024-05-06T09:30:00Z"

    @pytest.mark.asyncio
    async def test_no_slot_gives_empty_output(self, morning_calendar, fixed_now):
        tool = FindFreeTimeTool(morning_calendar, clock=lambda: fixed_now)

        output = await tool.call(FindFreeTimeArguments(durationMinutes=45, windowHours=2))

        assert output == ""

    @pytest.mark.asyncio
    async def test_arguments_are_clamped(self, fixed_now):
        """Duration is clamped to 15..240 minutes and the window to 1..720 hours."""
        tool = FindFreeTimeTool(InMemoryCalendarStore(), clock=lambda: fixed_now)

        # 1 minute becomes 15, 0 hours becomes 1: the whole hour is one slot.
        assert await tool.call({"durationMinutes": 1, "windowHours": 0}) == iso8601(fixed_now)
        # 1000 minutes becomes 240, which does not fit in the 1-hour minimum window.
        assert await tool.call({"durationMinutes": 1000, "windowHours": 0}) == ""
        # 10000 hours is capped at 720 and still fits 240 minutes.
        assert await tool.call({"durationMinutes": 1000, "windowHours": 10000}) == iso8601(fixed_now)

    @pytest.mark.asyncio
    async def test_denied_access_raises(self, fixed_now):
        tool = FindFreeTimeTool(InMemoryCalendarStore(access_granted=False), clock=lambda: fixed_now)

        with pytest.raises(PermissionDenied, match="was not granted"):
            await tool.call({"durationMinutes": 30, "windowHours": 2})

    def test_schema_declares_arguments(self):
        schema = FindFreeTimeTool(InMemoryCalendarStore()).schema()

        assert schema["function"]["name"] == "find_free_time"
        props = schema["function"]["parameters"]["properties"]
        assert set(props) == {"durationMinutes", "windowHours"}


class TestJsonCalendarStore:
    @pytest.mark.asyncio
    async def test_reads_events_in_range(self, tmp_path):
        path = tmp_path / "calendar.json"
        path.write_text(
            json.dumps(
                [
                    {"title": "Early", "start": "2024-05-06T07:00:00Z", "end": "2024-05-06T07:30:00Z"},
                    {"title": "Standup", "start": "2024-05-06T09:00:00+00:00", "end": "2024-05-06T09:30:00+00:00"},
                ]
            )
        )
        store = JsonCalendarStore(path)

        events = await store.events_between(at(8), at(12))

        assert [e.title for e in events] == ["Standup"]
        assert events[0].start == at(9)

    @pytest.mark.asyncio
    async def test_missing_file_is_permission_denied(self, tmp_path):
        store = JsonCalendarStore(tmp_path / "nope.json")

        with pytest.raises(PermissionDenied):
            await store.request_access()


def test_naive_datetimes_are_treated_as_utc():
    event = CalendarEvent(start=datetime.datetime(2024, 5, 6, 9), end=datetime.datetime(2024, 5, 6, 10))
    assert event.start == at(9)
    assert iso8601(event.end) == "2024-05-06T10:00:00Z"
