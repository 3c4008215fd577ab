"""
Calendar free-time lookup, exposed to the language model as a tool.
"""

import datetime
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from pocketassist.errors import PermissionDenied

logger = logging.getLogger(__name__)

MAX_TIME_SLOTS = 3
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 240
MIN_WINDOW_HOURS = 1
MAX_WINDOW_HOURS = 720


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def iso8601(value: datetime.datetime) -> str:
    return _as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


class CalendarEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    start: datetime.datetime
    end: datetime.datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, v: datetime.datetime) -> datetime.datetime:
        return _as_utc(v)


class FreeSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime.datetime
    end: datetime.datetime


def find_free_slots(
    events: Iterable[CalendarEvent],
    start: datetime.datetime,
    duration: datetime.timedelta,
    window_end: datetime.datetime,
    max_slots: int = MAX_TIME_SLOTS,
) -> list[FreeSlot]:
    """
    Scan events in start order and report gaps of at least ``duration``.

    Overlapping events push the cursor to the latest end seen so far. The
    trailing gap up to ``window_end`` counts too, if room is left.
    """
    cursor = start
    slots: list[FreeSlot] = []

    for event in sorted(events, key=lambda e: e.start):
        if event.start - cursor >= duration:
            slots.append(FreeSlot(start=cursor, end=event.start))
        cursor = max(cursor, event.end)
        if len(slots) == max_slots:
            break

    if len(slots) < max_slots and window_end - cursor >= duration:
        slots.append(FreeSlot(start=cursor, end=window_end))
    return slots


class CalendarStore(ABC):
    @abstractmethod
    async def request_access(self) -> None:
        """Raise PermissionDenied if events cannot be read."""
        pass

    @abstractmethod
    async def events_between(
        self, start: datetime.datetime, end: datetime.datetime
    ) -> list[CalendarEvent]:
        pass


def _overlapping(
    events: Iterable[CalendarEvent], start: datetime.datetime, end: datetime.datetime
) -> list[CalendarEvent]:
    return [e for e in events if e.end > start and e.start < end]


class InMemoryCalendarStore(CalendarStore):
    def __init__(
        self, events: Iterable[CalendarEvent] = (), access_granted: bool = True
    ) -> None:
        self.events = list(events)
        self.access_granted = access_granted

    async def request_access(self) -> None:
        if not self.access_granted:
            raise PermissionDenied("calendar events")

    async def events_between(self, start, end):
        return _overlapping(self.events, _as_utc(start), _as_utc(end))


_events_adapter = TypeAdapter(list[CalendarEvent])


class JsonCalendarStore(CalendarStore):
    """Events read from a JSON array of ``{"title", "start", "end"}`` objects."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def request_access(self) -> None:
        if not self.path.is_file() or not os.access(self.path, os.R_OK):
            raise PermissionDenied(f"calendar file {self.path}")

    async def events_between(self, start, end):
        await self.request_access()
        try:
            events = _events_adapter.validate_json(self.path.read_bytes())
        except ValidationError as e:
            logger.warning(f"Calendar file {self.path} is malformed: {e}")
            raise
        return _overlapping(events, _as_utc(start), _as_utc(end))


class FindFreeTimeArguments(BaseModel):
    durationMinutes: int = Field(
        description="Desired meeting length, in minutes, between 15 and 240."
    )
    windowHours: int = Field(
        description="How far ahead to search, in hours, up to 720 (30 days)."
    )


class FindFreeTimeTool:
    name = "find_free_time"
    description = (
        "Search the user's primary calendar for the next open windows that are at "
        "least `durationMinutes` long, within the next `windowHours`. Returns up "
        "to three ISO-8601 start times, one per line."
    )

    def __init__(
        self,
        store: CalendarStore,
        clock: Callable[[], datetime.datetime] | None = None,
        max_slots: int = MAX_TIME_SLOTS,
    ) -> None:
        self.store = store
        self.max_slots = max_slots
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    def schema(self) -> dict[str, Any]:
        """OpenAI-style function declaration."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": FindFreeTimeArguments.model_json_schema(),
            },
        }

    async def call(self, arguments: FindFreeTimeArguments | dict[str, Any]) -> str:
        if isinstance(arguments, dict):
            arguments = FindFreeTimeArguments.model_validate(arguments)

        await self.store.request_access()

        duration = max(MIN_DURATION_MINUTES, min(arguments.durationMinutes, MAX_DURATION_MINUTES))
        window_hours = max(MIN_WINDOW_HOURS, min(arguments.windowHours, MAX_WINDOW_HOURS))
        now = _as_utc(self._clock())
        window_end = now + datetime.timedelta(hours=window_hours)

        events = await self.store.events_between(now, window_end)
        slots = find_free_slots(
            events,
            start=now,
            duration=datetime.timedelta(minutes=duration),
            window_end=window_end,
            max_slots=self.max_slots,
        )
        logger.debug(
            f"find_free_time: {len(events)} events, {len(slots)} slots "
            f"(duration={duration}m, window={window_hours}h)"
        )
        return "\n".join(iso8601(s.start) for s in slots)
