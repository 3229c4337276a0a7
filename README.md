# kirogate

Building blocks for a gateway that puts Kiro API responses behind OpenAI- and
Anthropic-compatible interfaces. The package turns the raw Kiro event stream
into typed events, pulls leading `<thinking>` blocks out of model output, and
produces OpenAI `chat.completion.chunk` and Anthropic Messages streaming
events. It can also collect a whole stream into a single non-streaming
response.

It has no runtime dependencies beyond the standard library.

## Installation

From a checkout of the project:

```
pip install .
```

## Modules

- `kirogate.thinking`: `ThinkingParser`, a state machine that detects a
  `<thinking>`, `<think>`, `<reasoning>` or `<thought>` block at the start of
  streamed text (leading whitespace is ignored) and separates it from the
  regular content. `ParserState` and `ThinkingParseResult` go with it.
  `process_for_output` shapes thinking text by handling mode: `remove` drops
  it, `pass` puts the tags back, anything else returns it unchanged.
- `kirogate.events`: `KiroEvent`, `ToolUse`, `Usage`, `StreamResult`,
  `StreamError`, `ToolCallAccumulator` (joins tool call fragments into
  complete calls) and `deduplicate_tool_calls`.
- `kirogate.sse`: `SseParser`, which cuts JSON events out of the Kiro byte
  stream by known prefixes and brace matching. Also `find_matching_brace` and
  `parse_kiro_event`, which turns one JSON event into a `KiroEvent`.
- `kirogate.stream`: `parse_kiro_stream` waits for the first byte chunk and
  returns an async iterator of `KiroEvent` objects. It raises
  `FirstTokenTimeoutError` when the first chunk does not arrive in time, and
  `StreamError` when reading the chunks fails.
- `kirogate.openai_stream`: `stream_kiro_to_openai`,
  `collect_openai_response` and `generate_completion_id`.
- `kirogate.anthropic_stream`: `stream_kiro_to_anthropic`,
  `collect_anthropic_response`, `format_anthropic_sse_event` and
  `generate_anthropic_message_id`.

## Usage

Separating thinking from regular content:

```python
from kirogate.thinking import ThinkingParser

parser = ThinkingParser()
result = parser.feed("<thinking>Let me see</thinking>\n\nThe answer is 4.")
result.thinking_content   # "Let me see"
result.regular_content    # "The answer is 4."
```

Converting a Kiro byte stream into OpenAI server-sent events. The streaming
functions are coroutines: awaiting them waits for the first chunk (so a
first-token timeout is raised there) and gives back an async iterator of
strings.

```python
from kirogate.openai_stream import stream_kiro_to_openai

async def relay(chunks):
    lines = await stream_kiro_to_openai(chunks, "claude-sonnet-4", 30, 120)
    async for sse_line in lines:
        yield sse_line
```

`chunks` is an iterable or async iterable of `bytes`, for example the body of
an HTTP response. The output is a sequence of `data: {...}\n\n` strings; tool
calls and usage come at the end, followed by `data: [DONE]\n\n`.
`stream_kiro_to_anthropic` works the same way and yields
`event: ...\ndata: ...\n\n` strings, starting with `message_start` and ending
with `message_delta` and `message_stop`.

For a non-streaming request, collect the whole response instead:

```python
from kirogate.anthropic_stream import collect_anthropic_response

message = await collect_anthropic_response(chunks, "claude-sonnet-4", 30, 120)
message["stop_reason"]   # "end_turn" or "tool_use"
```

`collect_openai_response` returns a `chat.completion` mapping in the same way.
An error in the middle of the stream is logged and the response holds what was
received up to that point.

## What it does not do

The package only converts streams. It has no HTTP server, no client for the
Kiro API, no authentication or credential handling, no configuration and no
token counting: the caller supplies the byte chunks, the model name and the
input token count.

## Development

```
pip install -e ".[test]"
pytest
```