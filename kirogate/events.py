"""Event types for the upstream stream and assembly of streamed tool calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

_PREVIEW_LIMIT = 200


class StreamError(Exception):
    """Raised when the upstream stream fails or cannot be read."""


def _to_json(value: Any) -> str:
    """Serialize compactly with sorted keys, the canonical form used for comparisons."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def _preview(text: str) -> str:
    return text if len(text) <= _PREVIEW_LIMIT else text[:_PREVIEW_LIMIT] + "..."


@dataclass
class ToolUse:
    """A complete tool call reported by the upstream API."""

    tool_use_id: str
    name: str
    input: Any

    def to_dict(self) -> dict[str, Any]:
        """Return the tool call as a plain mapping."""
        return {"tool_use_id": self.tool_use_id, "name": self.name, "input": self.input}


@dataclass
class Usage:
    """Token usage reported by the upstream API."""

    input_tokens: int
    output_tokens: int

    def to_dict(self) -> dict[str, int]:
        """Return the usage as a plain mapping."""
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Usage":
        """Build usage from a mapping; both token counts must be integers."""
        values = {}
        for key in ("input_tokens", "output_tokens"):
            if key not in data:
                raise ValueError(f"missing field {key!r}")
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"field {key!r} must be an integer, got {value!r}")
            values[key] = value
        return cls(**values)


@dataclass
class KiroEvent:
    """A single event from the upstream stream, independent of the client API format.

    ``event_type`` is one of content, thinking, tool_use, usage, context_usage or error.
    """

    event_type: str
    content: Optional[str] = None
    thinking_content: Optional[str] = None
    tool_use: Optional[ToolUse] = None
    usage: Optional[Usage] = None
    context_usage_percentage: Optional[float] = None
    is_first_thinking_chunk: bool = False
    is_last_thinking_chunk: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the event as a mapping, leaving out fields that are unset."""
        data: dict[str, Any] = {"type": self.event_type}
        if self.content is not None:
            data["content"] = self.content
        if self.thinking_content is not None:
            data["thinking_content"] = self.thinking_content
        if self.tool_use is not None:
            data["tool_use"] = self.tool_use.to_dict()
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.context_usage_percentage is not None:
            data["context_usage_percentage"] = self.context_usage_percentage
        data["is_first_thinking_chunk"] = self.is_first_thinking_chunk
        data["is_last_thinking_chunk"] = self.is_last_thinking_chunk
        return data


@dataclass
class StreamResult:
    """Everything collected from a complete stream."""

    content: str = ""
    thinking_content: str = ""
    tool_calls: list[ToolUse] = field(default_factory=list)
    usage: Optional[Usage] = None
    context_usage_percentage: Optional[float] = None


def deduplicate_tool_calls(tool_calls: list[ToolUse]) -> list[ToolUse]:
    """Remove duplicate tool calls.

    Calls sharing an id collapse to the one with the richer arguments; then
    calls with the same name and arguments collapse to the first. Calls that
    have an id come before those without one.
    """
    if not tool_calls:
        return []

    by_id: dict[str, ToolUse] = {}
    without_id: list[ToolUse] = []

    for call in tool_calls:
        if not call.tool_use_id:
            without_id.append(call)
            continue

        existing = by_id.get(call.tool_use_id)
        if existing is None:
            by_id[call.tool_use_id] = call
            continue

        existing_args = _to_json(existing.input)
        current_args = _to_json(call.input)
        if current_args != "{}" and (
            existing_args == "{}"
            or len(current_args.encode("utf-8")) > len(existing_args.encode("utf-8"))
        ):
            logger.debug(
                "Replacing tool call %s with better arguments: %d -> %d",
                call.tool_use_id,
                len(existing_args),
                len(current_args),
            )
            by_id[call.tool_use_id] = call

    seen: set[str] = set()
    unique: list[ToolUse] = []
    for call in [*by_id.values(), *without_id]:
        key = f"{call.name}-{_to_json(call.input)}"
        if key not in seen:
            seen.add(key)
            unique.append(call)

    if len(unique) != len(tool_calls):
        logger.debug("Deduplicated tool calls: %d -> %d", len(tool_calls), len(unique))

    return unique


@dataclass
class _PendingTool:
    tool_use_id: str
    name: str
    input_text: str = ""

    def append(self, raw_input: Any) -> None:
        self.input_text += raw_input if isinstance(raw_input, str) else _to_json(raw_input)


def _input_text(raw_input: Any) -> str:
    return raw_input if isinstance(raw_input, str) else _to_json(raw_input)


def _has_stop(event: dict[str, Any]) -> bool:
    return event.get("stop") is True


class ToolCallAccumulator:
    """Combines tool call fragments spread over several stream events.

    A tool starts with an event carrying ``name`` and ``toolUseId``; input
    arrives in pieces, each possibly repeating the name and id; ``stop``
    ends the tool.
    """

    def __init__(self) -> None:
        self._current: Optional[_PendingTool] = None
        self.completed_tools: list[ToolUse] = []

    def process_event(self, event: dict[str, Any]) -> Optional[ToolUse]:
        """Feed one tool-related event; return a tool call once one is complete."""
        logger.debug("Tool accumulator event: %s", event)

        raw_id = event.get("toolUseId")
        event_id = raw_id if isinstance(raw_id, str) else None

        current = self._current
        is_same_tool = (
            current is not None
            and event_id is not None
            and current.tool_use_id != ""
            and current.tool_use_id == event_id
        )

        name = event.get("name")
        if isinstance(name, str):
            if is_same_tool:
                assert current is not None
                if "input" in event:
                    current.append(event["input"])
                if _has_stop(event):
                    return self._finalize_current()
                return None

            logger.debug("Tool start detected: name=%s, toolUseId=%s", name, event_id)
            completed = self._finalize_current()
            initial = _input_text(event["input"]) if "input" in event else ""
            self._current = _PendingTool(event_id or "", name, initial)
            if _has_stop(event):
                return self._finalize_current()
            return completed

        if "input" in event:
            if self._current is not None:
                self._current.append(event["input"])
            else:
                logger.warning("Got tool input event but no tool is in progress")
            if _has_stop(event):
                return self._finalize_current()

        if _has_stop(event):
            return self._finalize_current()

        return None

    def _finalize_current(self) -> Optional[ToolUse]:
        pending = self._current
        if pending is None:
            return None
        self._current = None

        logger.debug(
            "Finalizing tool %r with raw arguments: %s", pending.name, _preview(pending.input_text)
        )

        arguments: Any
        if not pending.input_text:
            arguments = {}
        else:
            try:
                arguments = json.loads(pending.input_text)
            except ValueError as exc:
                logger.warning(
                    "Failed to parse tool %r arguments: %s. Raw: %s",
                    pending.name,
                    exc,
                    _preview(pending.input_text),
                )
                arguments = {}

        completed = ToolUse(tool_use_id=pending.tool_use_id, name=pending.name, input=arguments)
        self.completed_tools.append(completed)
        return completed

    def finalize(self) -> Optional[ToolUse]:
        """Complete any tool still in progress at the end of the stream."""
        return self._finalize_current()