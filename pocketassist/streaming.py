"""Republishing of incremental model output as tagged results."""

import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield the full accumulated response after each increment.

        Finite, not restartable, may raise mid-sequence.
        """
        ...


class _StreamResultBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str


class StreamPartial(_StreamResultBase):
    kind: Literal["partial"] = "partial"
    text: str


class StreamFinished(_StreamResultBase):
    kind: Literal["finished"] = "finished"
    text: str


class StreamFailed(_StreamResultBase):
    kind: Literal["failed"] = "failed"
    error: str
    last_text: str | None = None


StreamResult = Union[StreamPartial, StreamFinished, StreamFailed]


async def consume_stream(
    request_id: str, stream: AsyncIterable[str]
) -> AsyncIterator[StreamResult]:
    """
    Tag every increment of ``stream`` with ``request_id``.

    Yields a ``StreamPartial`` per increment and then one ``StreamFinished``
    carrying the last increment. If the stream raises, a single
    ``StreamFailed`` is yielded instead and nothing follows it. Its error
    falls back to the exception class name when the exception has no message.
    """
    last: str | None = None
    iterator = aiter(stream)
    while True:
        try:
            text = await anext(iterator)
        except StopAsyncIteration:
            break
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(f"Stream for {request_id} failed: {message}")
            yield StreamFailed(request_id=request_id, error=message, last_text=last)
            return
        last = text
        yield StreamPartial(request_id=request_id, text=text)
    yield StreamFinished(request_id=request_id, text=last or "")


async def accumulate(deltas: AsyncIterable[str]) -> AsyncIterator[str]:
    """Turn a stream of deltas into a stream of accumulated text."""
    text = ""
    async for delta in deltas:
        if not delta:
            continue
        text += delta
        yield text
