"""Streaming detection and extraction of leading thinking blocks."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

DEFAULT_OPEN_TAGS = ("<thinking>", "<think>", "<reasoning>", "<thought>")
DEFAULT_HANDLING_MODE = "as_reasoning_content"
DEFAULT_INITIAL_BUFFER_SIZE = 20


class ParserState(enum.Enum):
    """States of the thinking block parser."""

    PRE_CONTENT = "pre_content"
    """Buffering the start of the response to detect an opening tag."""
    IN_THINKING = "in_thinking"
    """Inside a thinking block, buffering until the closing tag."""
    STREAMING = "streaming"
    """Plain streaming; no further thinking detection."""


@dataclass
class ThinkingParseResult:
    """Outcome of feeding one chunk of content to the parser."""

    thinking_content: Optional[str] = None
    regular_content: Optional[str] = None
    is_first_thinking_chunk: bool = False
    is_last_thinking_chunk: bool = False
    state_changed: bool = False


class ThinkingParser:
    """Finite state machine that splits a leading thinking block from a stream."""

    def __init__(
        self,
        handling_mode: str = DEFAULT_HANDLING_MODE,
        initial_buffer_size: int = DEFAULT_INITIAL_BUFFER_SIZE,
    ) -> None:
        self.handling_mode = handling_mode
        self.open_tags = list(DEFAULT_OPEN_TAGS)
        self.initial_buffer_size = initial_buffer_size
        self.max_tag_length = max((len(tag) for tag in self.open_tags), default=10) * 2

        self.state = ParserState.PRE_CONTENT
        self.initial_buffer = ""
        self.thinking_buffer = ""
        self.open_tag: Optional[str] = None
        self.close_tag: Optional[str] = None
        self.is_first_thinking_chunk = True
        self.thinking_block_found = False

    def feed(self, content: str) -> ThinkingParseResult:
        """Process a chunk of content and return what can be emitted now."""
        if not content:
            return ThinkingParseResult()

        if self.state is ParserState.STREAMING:
            return ThinkingParseResult(regular_content=content)

        if self.state is ParserState.IN_THINKING:
            self.thinking_buffer += content
            return self._process_thinking_buffer()

        result = self._handle_pre_content(content)
        if self.state is ParserState.IN_THINKING and result.state_changed:
            inner = self._process_thinking_buffer()
            if inner.thinking_content is not None:
                result.thinking_content = inner.thinking_content
                result.is_first_thinking_chunk = inner.is_first_thinking_chunk
            if inner.is_last_thinking_chunk:
                result.is_last_thinking_chunk = True
            if inner.regular_content is not None:
                result.regular_content = inner.regular_content
        return result

    def _handle_pre_content(self, content: str) -> ThinkingParseResult:
        result = ThinkingParseResult()
        self.initial_buffer += content
        stripped = self.initial_buffer.lstrip()

        for tag in self.open_tags:
            if stripped.startswith(tag):
                self.state = ParserState.IN_THINKING
                self.open_tag = tag
                self.close_tag = "</" + tag[1:]
                self.thinking_block_found = True
                result.state_changed = True
                self.thinking_buffer = stripped[len(tag):]
                self.initial_buffer = ""
                return result

        if any(tag.startswith(stripped) and len(stripped) < len(tag) for tag in self.open_tags):
            return result

        if len(self.initial_buffer) > self.initial_buffer_size or not self._could_be_tag_prefix(
            stripped
        ):
            self.state = ParserState.STREAMING
            result.state_changed = True
            result.regular_content = self.initial_buffer
            self.initial_buffer = ""

        return result

    def _could_be_tag_prefix(self, text: str) -> bool:
        if not text:
            return True
        return any(tag.startswith(text) for tag in self.open_tags)

    def _process_thinking_buffer(self) -> ThinkingParseResult:
        result = ThinkingParseResult()
        close_tag = self.close_tag
        if close_tag is None:
            return result

        idx = self.thinking_buffer.find(close_tag)
        if idx >= 0:
            thinking = self.thinking_buffer[:idx]
            after_tag = self.thinking_buffer[idx + len(close_tag):]

            if thinking:
                result.thinking_content = thinking
                result.is_first_thinking_chunk = self.is_first_thinking_chunk
                self.is_first_thinking_chunk = False

            result.is_last_thinking_chunk = True
            self.state = ParserState.STREAMING
            result.state_changed = True
            self.thinking_buffer = ""

            remainder = after_tag.lstrip()
            if remainder:
                result.regular_content = remainder
            return result

        # Hold back enough characters that a split closing tag is never emitted.
        if len(self.thinking_buffer) > self.max_tag_length:
            split = len(self.thinking_buffer) - self.max_tag_length
            result.thinking_content = self.thinking_buffer[:split]
            self.thinking_buffer = self.thinking_buffer[split:]
            result.is_first_thinking_chunk = self.is_first_thinking_chunk
            self.is_first_thinking_chunk = False

        return result

    def finalize(self) -> ThinkingParseResult:
        """Flush whatever is still buffered when the stream ends."""
        result = ThinkingParseResult()

        if self.thinking_buffer:
            if self.state is ParserState.IN_THINKING:
                result.thinking_content = self.thinking_buffer
                result.is_first_thinking_chunk = self.is_first_thinking_chunk
                result.is_last_thinking_chunk = True
            else:
                result.regular_content = self.thinking_buffer
            self.thinking_buffer = ""

        if self.initial_buffer:
            result.regular_content = (result.regular_content or "") + self.initial_buffer
            self.initial_buffer = ""

        return result

    def reset(self) -> None:
        """Return the parser to its initial state."""
        self.state = ParserState.PRE_CONTENT
        self.initial_buffer = ""
        self.thinking_buffer = ""
        self.open_tag = None
        self.close_tag = None
        self.is_first_thinking_chunk = True
        self.thinking_block_found = False

    def process_for_output(
        self, thinking_content: str, is_first: bool, is_last: bool
    ) -> Optional[str]:
        """Shape thinking content according to the handling mode."""
        if not thinking_content:
            return None
        if self.handling_mode == "remove":
            return None
        if self.handling_mode == "pass":
            prefix = (self.open_tag or "") if is_first else ""
            suffix = (self.close_tag or "") if is_last else ""
            return f"{prefix}{thinking_content}{suffix}"
        return thinking_content