"""Gmail REST client: paginated id listing and metadata resolution.

Every request goes through :func:`pocketassist.retry.retry_with_backoff`, so
throttled calls (429, and 403 unless configured otherwise) are retried with
exponential backoff while any other failure surfaces at once.

Example::

    async with GmailClient(token) as gmail:
        ids = await gmail.list_all_messages("after:1700000000", limit=300)
        emails = await gmail.load_messages(ids)
"""

import asyncio
import datetime
import logging
import uuid
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ValidationError

from pocketassist.errors import (
    AuthenticationRequired,
    DecodingError,
    HttpError,
    RateLimited,
)
from pocketassist.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
NO_SUBJECT = "(No Subject)"
UNKNOWN_SENDER = "(Unknown)"


@dataclass(frozen=True)
class Email:
    """A resolved mail record. Equality ignores ``id``."""

    subject: str
    sender: str
    snippet: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)


class _MessageRef(BaseModel):
    id: str


class _MessageListResponse(BaseModel):
    messages: list[_MessageRef] | None = None
    nextPageToken: str | None = None


class _Header(BaseModel):
    name: str
    value: str


class _Payload(BaseModel):
    headers: list[_Header] = []


class _MessageResponse(BaseModel):
    id: str | None = None
    snippet: str
    payload: _Payload


def _header(payload: _Payload, name: str) -> str | None:
    for h in payload.headers:
        if h.name == name:
            return h.value
    return None


class GmailClient:
    def __init__(
        self,
        token: str,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = DEFAULT_BASE_URL,
        retry_policy: RetryPolicy | None = None,
        page_size: int = 100,
        max_concurrency: int = 10,
        timeout_secs: float = 15.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size
        self.max_concurrency = max_concurrency
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_secs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GmailClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def _get_json(self, path: str, params: Any = None) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            resp = await self._client.get(url, params=params, headers=self.headers)
        except httpx.TransportError as e:
            raise HttpError(-1, url) from e

        if resp.status_code == 401:
            raise AuthenticationRequired("Mail provider rejected the access token")
        if resp.status_code == 429:
            raise RateLimited(resp.status_code, url)
        if not resp.is_success:
            raise HttpError(resp.status_code, url)
        try:
            return resp.json()
        except ValueError as e:
            raise DecodingError(f"Response from {url} is not valid JSON") from e

    async def list_messages_page(
        self,
        query: str,
        page_size: int | None = None,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        """Fetch one page of message ids and the continuation token, if any."""
        params: list[tuple[str, str]] = [
            ("q", query),
            ("maxResults", str(page_size or self.page_size)),
        ]
        if page_token:
            params.append(("pageToken", page_token))

        async def op() -> tuple[list[str], str | None]:
            data = await self._get_json("messages", params=params)
            try:
                decoded = _MessageListResponse.model_validate(data)
            except ValidationError as e:
                raise DecodingError(f"Unexpected message list payload: {e}") from e
            return [m.id for m in decoded.messages or []], decoded.nextPageToken

        return await retry_with_backoff(
            op, self.retry_policy, sleep=self._sleep, description="list messages page"
        )

    async def list_all_messages(self, query: str, limit: int = 300) -> list[str]:
        """
        Follow continuation tokens until the provider stops returning one or
        ``limit`` ids have been collected. At most ``limit`` ids are returned.
        """
        ids: list[str] = []
        page_token: str | None = None
        while True:
            try:
                page, page_token = await self.list_messages_page(
                    query, self.page_size, page_token
                )
            except Exception as e:
                logger.warning(f"Listing messages for {query!r} failed: {e}")
                raise
            ids.extend(page)
            if page_token is None or len(ids) >= limit:
                break
        return ids[:limit]

    async def load_message(self, message_id: str) -> Email:
        params = [
            ("format", "metadata"),
            ("metadataHeaders", "Subject"),
            ("metadataHeaders", "From"),
        ]

        async def op() -> Email:
            data = await self._get_json(f"messages/{message_id}", params=params)
            try:
                decoded = _MessageResponse.model_validate(data)
            except ValidationError as e:
                raise DecodingError(f"Unexpected message payload: {e}") from e
            return Email(
                id=message_id,
                subject=_header(decoded.payload, "Subject") or NO_SUBJECT,
                sender=_header(decoded.payload, "From") or UNKNOWN_SENDER,
                snippet=decoded.snippet,
            )

        return await retry_with_backoff(
            op,
            self.retry_policy,
            sleep=self._sleep,
            description=f"load message {message_id}",
        )

    async def load_messages(self, message_ids: list[str]) -> list[Email]:
        """
        Resolve ids concurrently, at most ``max_concurrency`` at a time.

        All-or-nothing: the first failure cancels the remaining loads and
        propagates. Results keep the order of ``message_ids``.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def load_bounded(message_id: str) -> Email:
            async with semaphore:
                return await self.load_message(message_id)

        tasks = [
            asyncio.create_task(load_bounded(mid), name=f"gmail-load-{mid}")
            for mid in message_ids
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for t in tasks:
                t.cancel()
            raise

    async def fetch_recent(
        self,
        hours: int = 24,
        limit: int = 300,
        now: datetime.datetime | None = None,
    ) -> list[Email]:
        """List and resolve everything received in the last ``hours`` hours."""
        now = now or datetime.datetime.now(datetime.timezone.utc)
        after = int((now - datetime.timedelta(hours=hours)).timestamp())
        ids = await self.list_all_messages(f"after:{after}", limit=limit)
        logger.info(f"Resolving {len(ids)} messages received after {after}")
        return await self.load_messages(ids)
