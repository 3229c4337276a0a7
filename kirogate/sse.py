"""Extraction of JSON events from the upstream event stream and their conversion."""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional

from kirogate.events import KiroEvent, ToolCallAccumulator, ToolUse, Usage

logger = logging.getLogger(__name__)

# Prefixes that mark the start of a JSON payload inside the binary framing.
EVENT_PATTERNS = (
    '{"content":',
    '{"name":',
    '{"input":',
    '{"stop":',
    '{"followupPrompt":',
    '{"usage":',
    '{"contextUsagePercentage":',
)

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1
_ERROR_PREVIEW = 100


def find_matching_brace(text: str, start_pos: int) -> Optional[int]:
    """Return the index of the brace closing the object that opens at ``start_pos``.

    Braces inside quoted strings are ignored and escapes are honoured. Returns
    None when ``start_pos`` is not an opening brace or the object is unfinished.
    """
    if start_pos < 0 or start_pos >= len(text) or text[start_pos] != "{":
        return None

    depth = 0
    in_string = False
    escape_next = False

    for index, ch in enumerate(text[start_pos:], start=start_pos):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return index

    return None


class SseParser:
    """Pulls JSON event objects out of the raw upstream byte stream.

    The upstream framing is binary with JSON payloads embedded in it; payloads
    are located by known prefixes and cut out by brace matching.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.tool_accumulator = ToolCallAccumulator()

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Add bytes to the buffer and return every complete event found."""
        self._buffer += chunk.decode("utf-8", errors="replace")
        events: list[dict[str, Any]] = []

        while True:
            positions = [pos for pos in map(self._buffer.find, EVENT_PATTERNS) if pos >= 0]
            if not positions:
                break
            start = min(positions)

            end = find_matching_brace(self._buffer, start)
            if end is None:
                break

            json_text = self._buffer[start : end + 1]
            try:
                events.append(json.loads(json_text))
            except ValueError as exc:
                logger.warning("Failed to parse JSON: %s - %s", exc, json_text[:_ERROR_PREVIEW])

            self._buffer = self._buffer[end + 1 :]

        return events

    def finalize(self) -> list[dict[str, Any]]:
        """Extract whatever events remain in the buffer at the end of the stream."""
        if not self._buffer.strip():
            return []
        return self.feed(b"")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _float_to_i32(value: float) -> int:
    if math.isnan(value):
        return 0
    if math.isinf(value):
        return _I32_MAX if value > 0 else _I32_MIN
    return max(_I32_MIN, min(_I32_MAX, int(value)))


def _int_field(mapping: Any, key: str) -> int:
    if not isinstance(mapping, dict):
        return 0
    value = mapping.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _usage_from_tokens(source: Any) -> KiroEvent:
    return KiroEvent(
        event_type="usage",
        usage=Usage(
            input_tokens=_int_field(source, "inputTokens"),
            output_tokens=_int_field(source, "outputTokens"),
        ),
    )


def parse_kiro_event(
    event: Any, accumulator: Optional[ToolCallAccumulator] = None
) -> Optional[KiroEvent]:
    """Convert one upstream JSON event into a KiroEvent, or None if nothing to emit.

    Tool fragments go through ``accumulator`` and yield an event only once a
    tool call is complete. Without an accumulator a fresh one is used.
    """
    if accumulator is None:
        accumulator = ToolCallAccumulator()
    if not isinstance(event, dict):
        return None

    if "followupPrompt" in event:
        return None

    content = event.get("content")
    if isinstance(content, str):
        return KiroEvent(event_type="content", content=content)

    if "name" in event or "input" in event or "stop" in event:
        raw_input = event.get("input")
        logger.info(
            "Tool event detected: name=%r, input=%s, stop=%r",
            event.get("name"),
            f"string({len(raw_input)} chars)" if isinstance(raw_input, str) else repr(raw_input),
            event.get("stop"),
        )
        completed = accumulator.process_event(event)
        if completed is not None:
            return KiroEvent(event_type="tool_use", tool_use=completed)
        return None

    if "usage" in event:
        usage = event["usage"]
        if _is_number(usage):
            return KiroEvent(
                event_type="usage",
                usage=Usage(input_tokens=0, output_tokens=_float_to_i32(float(usage) * 1000.0)),
            )
        if isinstance(usage, dict):
            return _usage_from_tokens(usage)

    percentage = event.get("contextUsagePercentage")
    if _is_number(percentage):
        return KiroEvent(event_type="context_usage", context_usage_percentage=float(percentage))

    block_delta = event.get("contentBlockDelta")
    if isinstance(block_delta, dict):
        delta = block_delta.get("delta")
        if isinstance(delta, dict):
            text = delta.get("text")
            if isinstance(text, str):
                return KiroEvent(event_type="content", content=text)

            tool = delta.get("toolUse")
            if isinstance(tool, dict):
                tool_id = tool.get("toolUseId")
                name = tool.get("name")
                return KiroEvent(
                    event_type="tool_use",
                    tool_use=ToolUse(
                        tool_use_id=tool_id if isinstance(tool_id, str) else "",
                        name=name if isinstance(name, str) else "",
                        input=tool["input"] if "input" in tool else {},
                    ),
                )

    metadata = event.get("metadata")
    if isinstance(metadata, dict) and "usage" in metadata:
        return _usage_from_tokens(metadata["usage"])

    return None