"""Turning the raw upstream byte stream into a stream of KiroEvents."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Optional, Union

from kirogate.events import KiroEvent, StreamError, ToolCallAccumulator
from kirogate.sse import SseParser, parse_kiro_event
from kirogate.thinking import ThinkingParser

logger = logging.getLogger(__name__)

ByteChunks = Union[AsyncIterable[bytes], Iterable[bytes]]


class FirstTokenTimeoutError(StreamError):
    """Raised when the upstream sends nothing before the first-token timeout."""


async def _from_sync(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def _as_async_iterator(chunks: ByteChunks) -> AsyncIterator[bytes]:
    if isinstance(chunks, AsyncIterable):
        return chunks.__aiter__()
    return _from_sync(chunks).__aiter__()


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes:
    return await iterator.__anext__()


async def _no_events() -> AsyncIterator[KiroEvent]:
    return
    yield  # pragma: no cover


class _EventPipeline:
    """Carries the parsing state shared by all chunks of one stream."""

    def __init__(self, enable_thinking_parser: bool) -> None:
        self._sse = SseParser()
        self._tools = ToolCallAccumulator()
        self._thinking: Optional[ThinkingParser] = (
            ThinkingParser() if enable_thinking_parser else None
        )

    def process(self, chunk: bytes) -> list[KiroEvent]:
        logger.debug("Raw chunk: %r", chunk)
        events: list[KiroEvent] = []
        for raw in self._sse.feed(chunk):
            event = parse_kiro_event(raw, self._tools)
            if event is None:
                continue
            if event.event_type != "content":
                events.append(event)
            elif event.content is not None:
                events.extend(self._split_content(event))
        return events

    def _split_content(self, event: KiroEvent) -> list[KiroEvent]:
        parser = self._thinking
        if parser is None:
            return [event]

        assert event.content is not None
        result = parser.feed(event.content)
        events: list[KiroEvent] = []
        if result.thinking_content is not None:
            processed = parser.process_for_output(
                result.thinking_content,
                result.is_first_thinking_chunk,
                result.is_last_thinking_chunk,
            )
            if processed is not None:
                events.append(
                    KiroEvent(
                        event_type="thinking",
                        thinking_content=processed,
                        is_first_thinking_chunk=result.is_first_thinking_chunk,
                        is_last_thinking_chunk=result.is_last_thinking_chunk,
                    )
                )
        if result.regular_content is not None:
            events.append(KiroEvent(event_type="content", content=result.regular_content))
        return events

    def finish(self) -> Optional[KiroEvent]:
        tool = self._tools.finalize()
        if tool is None:
            return None
        logger.debug("Finalized remaining tool at stream end: %s", tool.name)
        return KiroEvent(event_type="tool_use", tool_use=tool)


async def _events(
    pipeline: _EventPipeline, first_chunk: bytes, iterator: AsyncIterator[bytes]
) -> AsyncIterator[KiroEvent]:
    for event in pipeline.process(first_chunk):
        yield event

    while True:
        try:
            chunk = await iterator.__anext__()
        except StopAsyncIteration:
            break
        except StreamError:
            raise
        except Exception as exc:
            raise StreamError(f"Stream error: {exc}") from exc
        for event in pipeline.process(chunk):
            yield event

    final = pipeline.finish()
    if final is not None:
        yield final


async def parse_kiro_stream(
    chunks: ByteChunks,
    first_token_timeout: float,
    enable_thinking_parser: bool = True,
) -> AsyncIterator[KiroEvent]:
    """Wait for the first chunk, then return an async iterator of parsed events.

    Raises FirstTokenTimeoutError if no chunk arrives within
    ``first_token_timeout`` seconds, and StreamError if reading fails.
    Content is split into thinking and regular content unless
    ``enable_thinking_parser`` is false. A tool still open when the stream
    ends is emitted last.
    """
    iterator = _as_async_iterator(chunks)
    try:
        first_chunk = await asyncio.wait_for(_next_chunk(iterator), first_token_timeout)
    except StopAsyncIteration:
        return _no_events()
    except asyncio.TimeoutError as exc:
        logger.warning(
            "[FirstTokenTimeout] Model did not respond within %ss", first_token_timeout
        )
        raise FirstTokenTimeoutError("First token timeout") from exc
    except StreamError:
        raise
    except Exception as exc:
        raise StreamError(f"Stream error: {exc}") from exc

    return _events(_EventPipeline(enable_thinking_parser), first_chunk, iterator)