"""Conversion of the upstream event stream into OpenAI chat completion responses."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any, Optional

from kirogate.events import KiroEvent, StreamError, ToolUse, Usage, deduplicate_tool_calls
from kirogate.stream import ByteChunks, parse_kiro_stream

logger = logging.getLogger(__name__)

_CHUNK_OBJECT = "chat.completion.chunk"
_DONE_MARKER = "data: [DONE]\n\n"


def generate_completion_id() -> str:
    """Return a fresh completion id in the OpenAI style."""
    return "chatcmpl-" + uuid.uuid4().hex[:24]


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def _arguments(tool: ToolUse) -> str:
    return _to_json(tool.input)


def _sse(payload: dict[str, Any]) -> str:
    return "data: " + json.dumps(payload, separators=(",", ":"), ensure_ascii=False) + "\n\n"


def _chunk(
    completion_id: str,
    created: int,
    model: str,
    delta: dict[str, Any],
    finish_reason: Optional[str] = None,
    usage: Optional[dict[str, int]] = None,
) -> str:
    payload: dict[str, Any] = {
        "id": completion_id,
        "object": _CHUNK_OBJECT,
        "created": created,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage is not None:
        payload["usage"] = usage
    return _sse(payload)


def _usage_json(input_tokens: int, usage: Optional[Usage]) -> Optional[dict[str, int]]:
    if usage is None:
        return None
    return {
        "prompt_tokens": input_tokens,
        "completion_tokens": usage.output_tokens,
        "total_tokens": input_tokens + usage.output_tokens,
    }


async def stream_kiro_to_openai(
    chunks: ByteChunks,
    model: str,
    first_token_timeout: float,
    input_tokens: int,
) -> AsyncIterator[str]:
    """Return an async iterator of OpenAI ``chat.completion.chunk`` SSE lines.

    Waits for the first upstream chunk before returning, so a first-token
    timeout is raised here. Tool calls and usage are sent at the end, followed
    by the ``[DONE]`` marker.
    """
    completion_id = generate_completion_id()
    created = int(time.time())
    events = await parse_kiro_stream(chunks, first_token_timeout)

    async def generate() -> AsyncIterator[str]:
        first = True
        tool_calls: list[ToolUse] = []
        usage: Optional[Usage] = None

        async for event in events:
            if event.event_type == "content" and event.content is not None:
                delta: dict[str, Any] = {"role": "assistant"} if first else {}
                delta["content"] = event.content
                first = False
                yield _chunk(completion_id, created, model, delta)
            elif event.event_type == "thinking" and event.thinking_content is not None:
                delta = {"role": "assistant"} if first else {}
                delta["reasoning_content"] = event.thinking_content
                first = False
                yield _chunk(completion_id, created, model, delta)
            elif event.event_type == "tool_use" and event.tool_use is not None:
                tool_calls.append(event.tool_use)
            elif event.event_type == "usage" and event.usage is not None:
                usage = event.usage

        unique = deduplicate_tool_calls(tool_calls)
        if unique:
            deltas = [
                {
                    "index": index,
                    "id": tool.tool_use_id,
                    "type": "function",
                    "function": {"name": tool.name, "arguments": _arguments(tool)},
                }
                for index, tool in enumerate(unique)
            ]
            yield _chunk(completion_id, created, model, {"tool_calls": deltas})

        finish_reason = "tool_calls" if unique else "stop"
        yield _chunk(
            completion_id,
            created,
            model,
            {},
            finish_reason=finish_reason,
            usage=_usage_json(input_tokens, usage),
        )
        yield _DONE_MARKER

    return generate()


async def collect_openai_response(
    chunks: ByteChunks,
    model: str,
    first_token_timeout: float,
    input_tokens: int,
) -> dict[str, Any]:
    """Read the whole upstream stream and build one ``chat.completion`` response.

    A failure in the middle of the stream is logged and what was received up
    to that point is returned.
    """
    completion_id = generate_completion_id()
    created = int(time.time())
    events = await parse_kiro_stream(chunks, first_token_timeout)

    content_parts: list[str] = []
    reasoning_parts: list[str] = []
    tool_calls: list[ToolUse] = []
    usage: Optional[Usage] = None

    try:
        async for event in events:
            usage = _collect(event, content_parts, reasoning_parts, tool_calls, usage)
    except StreamError as exc:
        logger.warning("Error in stream: %s", exc)

    unique = deduplicate_tool_calls(tool_calls)

    message: dict[str, Any] = {"role": "assistant", "content": "".join(content_parts)}
    reasoning = "".join(reasoning_parts)
    if reasoning:
        message["reasoning_content"] = reasoning
    if unique:
        message["tool_calls"] = [
            {
                "id": tool.tool_use_id,
                "type": "function",
                "function": {"name": tool.name, "arguments": _arguments(tool)},
            }
            for tool in unique
        ]

    usage_json = _usage_json(input_tokens, usage) or {
        "prompt_tokens": input_tokens,
        "completion_tokens": 0,
        "total_tokens": input_tokens,
    }

    return {
        "id": completion_id,
        "object": "chat.completion",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": "tool_calls" if unique else "stop",
            }
        ],
        "usage": usage_json,
    }


def _collect(
    event: KiroEvent,
    content_parts: list[str],
    reasoning_parts: list[str],
    tool_calls: list[ToolUse],
    usage: Optional[Usage],
) -> Optional[Usage]:
    if event.event_type == "content" and event.content is not None:
        content_parts.append(event.content)
    elif event.event_type == "thinking" and event.thinking_content is not None:
        reasoning_parts.append(event.thinking_content)
    elif event.event_type == "tool_use" and event.tool_use is not None:
        tool_calls.append(event.tool_use)
    elif event.event_type == "usage" and event.usage is not None:
        return event.usage
    return usage