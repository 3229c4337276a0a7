"""Conversion of the upstream event stream into Anthropic Messages API responses."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional

from kirogate.events import KiroEvent, StreamError, ToolUse, Usage, deduplicate_tool_calls
from kirogate.stream import ByteChunks, parse_kiro_stream

logger = logging.getLogger(__name__)


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def format_anthropic_sse_event(event_type: str, data: Any) -> str:
    """Format one Anthropic SSE event: an ``event:`` line, a ``data:`` line and a blank line."""
    return f"event: {event_type}\ndata: {_to_json(data)}\n\n"


def generate_anthropic_message_id() -> str:
    """Return a fresh message id in the Anthropic style."""
    return "msg_" + uuid.uuid4().hex[:24]


@dataclass
class _BlockState:
    """Tracks the content blocks opened so far in a streamed message."""

    text_index: Optional[int] = None
    thinking_index: Optional[int] = None
    next_index: int = 0
    tool_calls: list[ToolUse] = field(default_factory=list)
    usage: Optional[Usage] = None

    def open_block(self) -> int:
        index = self.next_index
        self.next_index += 1
        return index


def _block_start(index: int, content_block: dict[str, Any]) -> str:
    return format_anthropic_sse_event(
        "content_block_start",
        {"type": "content_block_start", "index": index, "content_block": content_block},
    )


def _block_delta(index: int, delta: dict[str, Any]) -> str:
    return format_anthropic_sse_event(
        "content_block_delta",
        {"type": "content_block_delta", "index": index, "delta": delta},
    )


def _block_stop(index: int) -> str:
    return format_anthropic_sse_event(
        "content_block_stop", {"type": "content_block_stop", "index": index}
    )


def _text_event(state: _BlockState, text: str) -> str:
    prefix = ""
    if state.text_index is None:
        state.text_index = state.open_block()
        prefix = _block_start(state.text_index, {"type": "text", "text": ""})
    return prefix + _block_delta(state.text_index, {"type": "text_delta", "text": text})


def _thinking_event(state: _BlockState, thinking: str) -> str:
    prefix = ""
    if state.thinking_index is None:
        state.thinking_index = state.open_block()
        prefix = _block_start(state.thinking_index, {"type": "thinking", "thinking": ""})
    return prefix + _block_delta(
        state.thinking_index, {"type": "thinking_delta", "thinking": thinking}
    )


def _closing_events(state: _BlockState) -> list[str]:
    events: list[str] = []
    if state.thinking_index is not None:
        events.append(_block_stop(state.thinking_index))
    if state.text_index is not None:
        events.append(_block_stop(state.text_index))

    unique = deduplicate_tool_calls(state.tool_calls)
    if unique:
        logger.info(
            "Emitting %d tool calls (before dedup: %d): %s",
            len(unique),
            len(state.tool_calls),
            [f"{tool.name}:{tool.tool_use_id}" for tool in unique],
        )

    for index, tool in enumerate(unique, start=state.next_index):
        events.append(
            _block_start(
                index,
                {"type": "tool_use", "id": tool.tool_use_id, "name": tool.name, "input": {}},
            )
        )
        events.append(
            _block_delta(index, {"type": "input_json_delta", "partial_json": _to_json(tool.input)})
        )
        events.append(_block_stop(index))

    output_tokens = state.usage.output_tokens if state.usage is not None else 0
    events.append(
        format_anthropic_sse_event(
            "message_delta",
            {
                "type": "message_delta",
                "delta": {
                    "stop_reason": "tool_use" if unique else "end_turn",
                    "stop_sequence": None,
                },
                "usage": {"output_tokens": output_tokens},
            },
        )
    )
    events.append(format_anthropic_sse_event("message_stop", {"type": "message_stop"}))
    return events


async def stream_kiro_to_anthropic(
    chunks: ByteChunks,
    model: str,
    first_token_timeout: float,
    input_tokens: int,
) -> AsyncIterator[str]:
    """Return an async iterator of Anthropic Messages API SSE events.

    Waits for the first upstream chunk before returning, so a first-token
    timeout is raised here. The message starts with ``message_start``; open
    blocks are closed, tool calls sent and the message stopped at the end.
    """
    message_id = generate_anthropic_message_id()
    events = await parse_kiro_stream(chunks, first_token_timeout)

    message_start = {
        "type": "message_start",
        "message": {
            "id": message_id,
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": model,
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": input_tokens, "output_tokens": 0},
        },
    }

    async def generate() -> AsyncIterator[str]:
        yield format_anthropic_sse_event("message_start", message_start)
        state = _BlockState()

        async for event in events:
            if event.event_type == "content" and event.content is not None:
                yield _text_event(state, event.content)
            elif event.event_type == "thinking" and event.thinking_content is not None:
                yield _thinking_event(state, event.thinking_content)
            elif event.event_type == "tool_use" and event.tool_use is not None:
                logger.info(
                    "Received tool_use event: name=%s, id=%s, total_collected=%d",
                    event.tool_use.name,
                    event.tool_use.tool_use_id,
                    len(state.tool_calls) + 1,
                )
                state.tool_calls.append(event.tool_use)
            elif event.event_type == "usage" and event.usage is not None:
                state.usage = event.usage

        for closing in _closing_events(state):
            yield closing

    return generate()


async def collect_anthropic_response(
    chunks: ByteChunks,
    model: str,
    first_token_timeout: float,
    input_tokens: int,
) -> dict[str, Any]:
    """Read the whole upstream stream and build one Anthropic ``message`` response.

    A failure in the middle of the stream is logged and what was received up
    to that point is returned.
    """
    message_id = generate_anthropic_message_id()
    events = await parse_kiro_stream(chunks, first_token_timeout)

    text_parts: list[str] = []
    thinking_parts: list[str] = []
    tool_calls: list[ToolUse] = []
    usage: Optional[Usage] = None

    try:
        async for event in events:
            usage = _collect(event, text_parts, thinking_parts, tool_calls, usage)
    except StreamError as exc:
        logger.warning("Error in stream: %s", exc)

    unique = deduplicate_tool_calls(tool_calls)

    content_blocks: list[dict[str, Any]] = []
    thinking = "".join(thinking_parts)
    if thinking:
        content_blocks.append({"type": "thinking", "thinking": thinking})
    text = "".join(text_parts)
    if text:
        content_blocks.append({"type": "text", "text": text})
    content_blocks.extend(
        {"type": "tool_use", "id": tool.tool_use_id, "name": tool.name, "input": tool.input}
        for tool in unique
    )

    return {
        "id": message_id,
        "type": "message",
        "role": "assistant",
        "content": content_blocks,
        "model": model,
        "stop_reason": "tool_use" if unique else "end_turn",
        "stop_sequence": None,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": usage.output_tokens if usage is not None else 0,
        },
    }


def _collect(
    event: KiroEvent,
    text_parts: list[str],
    thinking_parts: list[str],
    tool_calls: list[ToolUse],
    usage: Optional[Usage],
) -> Optional[Usage]:
    if event.event_type == "content" and event.content is not None:
        text_parts.append(event.content)
    elif event.event_type == "thinking" and event.thinking_content is not None:
        thinking_parts.append(event.thinking_content)
    elif event.event_type == "tool_use" and event.tool_use is not None:
        tool_calls.append(event.tool_use)
    elif event.event_type == "usage" and event.usage is not None:
        return event.usage
    return usage