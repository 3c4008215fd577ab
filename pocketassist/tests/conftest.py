"""
Pytest configuration and shared fixtures for pocketassist tests.
"""

import asyncio
import datetime
from collections.abc import AsyncIterator, Sequence

import httpx
import pytest

from pocketassist.credentials import StaticTokenProvider
from pocketassist.free_time import CalendarEvent, InMemoryCalendarStore
from pocketassist.gmail import DEFAULT_BASE_URL, GmailClient
from pocketassist.retry import RetryPolicy


class FakeLanguageModel:
    """Replays fixed accumulated texts; optionally fails after them."""

    def __init__(
        self,
        texts: Sequence[str] = ("Hel", "Hello", "Hello!"),
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.texts = list(texts)
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for text in self.texts:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield text
        if self.error is not None:
            raise self.error


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def message_payload(message_id: str, subject: str | None = None, sender: str | None = None, snippet: str = ""):
    headers = []
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    if sender is not None:
        headers.append({"name": "From", "value": sender})
    return {"id": message_id, "snippet": snippet, "payload": {"headers": headers}}


class FakeGmail:
    """In-memory Gmail REST endpoint served through ``httpx.MockTransport``.

    ``pages`` is a list of id lists; each page after the first is reached via
    a ``pageToken`` equal to its index. ``failures`` maps a message id to a
    list of status codes returned (in order) before the message succeeds.
    """

    def __init__(self, pages: list[list[str]] | None = None, messages: dict | None = None):
        self.pages = pages or []
        self.messages = messages or {}
        self.failures: dict[str, list[int]] = {}
        self.list_failures: list[int] = []
        self.requests: list[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.load_delay = 0.0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.rsplit("/users/me/", 1)[-1]
        if path == "messages":
            if self.list_failures:
                return httpx.Response(self.list_failures.pop(0))
            index = int(request.url.params.get("pageToken", "0"))
            body: dict = {"messages": [{"id": i} for i in self.pages[index]]} if self.pages else {}
            if index + 1 < len(self.pages):
                body["nextPageToken"] = str(index + 1)
            return httpx.Response(200, json=body)

        message_id = path.split("/", 1)[1]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.load_delay:
                await asyncio.sleep(self.load_delay)
            pending = self.failures.get(message_id)
            if pending:
                return httpx.Response(pending.pop(0))
            if message_id not in self.messages:
                return httpx.Response(404)
            return httpx.Response(200, json=self.messages[message_id])
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_model():
    return FakeLanguageModel()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_gmail():
    return FakeGmail()


@pytest.fixture
async def make_gmail_client(fake_gmail, recording_sleep):
    """Build a GmailClient wired to ``fake_gmail``; closes the http clients afterwards."""
    clients: list[httpx.AsyncClient] = []

    def factory(token: str = "token-1", **kwargs) -> GmailClient:
        http_client = httpx.AsyncClient(transport=fake_gmail.transport())
        clients.append(http_client)
        kwargs.setdefault("retry_policy", RetryPolicy(max_retries=3))
        kwargs.setdefault("sleep", recording_sleep)
        return GmailClient(token, http_client=http_client, base_url=DEFAULT_BASE_URL, **kwargs)

    yield factory
    for client in clients:
        await client.aclose()


@pytest.fixture
def static_credentials():
    return StaticTokenProvider("token-1")


@pytest.fixture
def fixed_now():
    return datetime.datetime(2024, 5, 6, 8, 30, tzinfo=datetime.timezone.utc)


@pytest.fixture
def morning_calendar(fixed_now):
    """09:00-09:30 and 10:00-11:00 on the morning of ``fixed_now``."""
    day = fixed_now.replace(hour=0, minute=0)
    return InMemoryCalendarStore(
        [
            CalendarEvent(
                title="Standup",
                start=day + datetime.timedelta(hours=9),
                end=day + datetime.timedelta(hours=9, minutes=30),
            ),
            CalendarEvent(
                title="Review",
                start=day + datetime.timedelta(hours=10),
                end=day + datetime.timedelta(hours=11),
            ),
        ]
    )
