import json

import pytest

from kirogate.events import (
    KiroEvent,
    StreamResult,
    ToolCallAccumulator,
    ToolUse,
    Usage,
    deduplicate_tool_calls,
)


# ---------------------------------------------------------------- accumulator


def test_tool_call_accumulator_simple():
    acc = ToolCallAccumulator()
    assert acc.process_event({"name": "get_weather", "toolUseId": "call_123"}) is None
    assert acc.process_event({"input": '{"location": "SF"}'}) is None
    tool = acc.process_event({"stop": True})
    assert tool is not None
    assert tool.name == "get_weather"
    assert tool.tool_use_id == "call_123"
    assert tool.input == {"location": "SF"}


def test_tool_call_accumulator_with_input_in_start():
    acc = ToolCallAccumulator()
    start = {"name": "bash", "toolUseId": "call_456", "input": '{"command": "ls"}'}
    assert acc.process_event(start) is None
    tool = acc.process_event({"stop": True})
    assert tool is not None
    assert tool.name == "bash"
    assert tool.input["command"] == "ls"


def test_tool_call_accumulator_continuation_same_id():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "bash", "toolUseId": "call_789", "input": '{"comm'})
    acc.process_event({"name": "bash", "toolUseId": "call_789", "input": 'and": "ls -la"}'})
    tool = acc.process_event({"stop": True})
    assert tool is not None
    assert tool.name == "bash"
    assert tool.input["command"] == "ls -la"


def test_tool_call_accumulator_finalize():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "test_tool", "toolUseId": "call_999", "input": '{"key": "value"}'})
    tool = acc.finalize()
    assert tool is not None
    assert tool.name == "test_tool"
    assert tool.input == {"key": "value"}


def test_finalize_without_tool_returns_none():
    acc = ToolCallAccumulator()
    assert acc.finalize() is None
    assert acc.completed_tools == []


def test_stop_without_tool_returns_none():
    acc = ToolCallAccumulator()
    assert acc.process_event({"stop": True}) is None


def test_new_tool_start_completes_previous():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "first", "toolUseId": "call_1", "input": '{"a": 1}'})
    previous = acc.process_event({"name": "second", "toolUseId": "call_2"})
    assert previous is not None
    assert previous.name == "first"
    assert previous.input == {"a": 1}
    last = acc.finalize()
    assert last is not None
    assert last.name == "second"
    assert [t.name for t in acc.completed_tools] == ["first", "second"]


def test_start_with_stop_completes_immediately():
    acc = ToolCallAccumulator()
    tool = acc.process_event(
        {"name": "quick", "toolUseId": "call_5", "input": '{"x": true}', "stop": True}
    )
    assert tool is not None
    assert tool.input == {"x": True}
    assert acc.finalize() is None


def test_input_event_with_stop_completes():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "tool", "toolUseId": "call_6"})
    tool = acc.process_event({"input": '{"q": "v"}', "stop": True})
    assert tool is not None
    assert tool.input == {"q": "v"}


def test_non_string_input_is_serialized_and_parsed():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "tool", "toolUseId": "call_7", "input": {"path": "/tmp"}})
    tool = acc.finalize()
    assert tool is not None
    assert tool.input == {"path": "/tmp"}


def test_empty_input_gives_empty_object():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "noargs", "toolUseId": "call_8"})
    tool = acc.finalize()
    assert tool is not None
    assert tool.input == {}


def test_invalid_input_gives_empty_object():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "broken", "toolUseId": "call_9", "input": '{"unterminated'})
    tool = acc.process_event({"stop": True})
    assert tool is not None
    assert tool.name == "broken"
    assert tool.input == {}


def test_same_name_without_id_starts_new_tool():
    acc = ToolCallAccumulator()
    acc.process_event({"name": "bash", "input": '{"a": 1}'})
    previous = acc.process_event({"name": "bash", "input": '{"b": 2}'})
    assert previous is not None
    assert previous.tool_use_id == ""
    assert previous.input == {"a": 1}


def test_input_without_tool_is_ignored():
    acc = ToolCallAccumulator()
    assert acc.process_event({"input": '{"a": 1}'}) is None
    assert acc.finalize() is None


# ---------------------------------------------------------------- deduplication


def test_deduplicate_tool_calls_empty():
    assert deduplicate_tool_calls([]) == []


def test_deduplicate_tool_calls_by_id():
    tools = [
        ToolUse("call_1", "test", {}),
        ToolUse("call_1", "test", {"key": "value"}),
    ]
    result = deduplicate_tool_calls(tools)
    assert len(result) == 1
    assert result[0].input["key"] == "value"


def test_deduplicate_keeps_non_empty_over_later_empty():
    tools = [
        ToolUse("call_1", "test", {"key": "value"}),
        ToolUse("call_1", "test", {}),
    ]
    result = deduplicate_tool_calls(tools)
    assert result == [ToolUse("call_1", "test", {"key": "value"})]


def test_deduplicate_prefers_longer_arguments():
    tools = [
        ToolUse("call_1", "test", {"k": "v"}),
        ToolUse("call_1", "test", {"k": "longer value"}),
    ]
    result = deduplicate_tool_calls(tools)
    assert result == [ToolUse("call_1", "test", {"k": "longer value"})]


def test_deduplicate_tool_calls_by_name_args():
    tools = [
        ToolUse("call_1", "test", {"key": "value"}),
        ToolUse("call_2", "test", {"key": "value"}),
    ]
    assert len(deduplicate_tool_calls(tools)) == 1


def test_deduplicate_tool_calls_different_tools():
    tools = [
        ToolUse("call_1", "tool_a", {"key": "value1"}),
        ToolUse("call_2", "tool_b", {"key": "value2"}),
    ]
    assert len(deduplicate_tool_calls(tools)) == 2


def test_deduplicate_places_calls_with_id_first():
    tools = [
        ToolUse("", "anon", {"a": 1}),
        ToolUse("call_1", "named", {"b": 2}),
    ]
    result = deduplicate_tool_calls(tools)
    assert [t.name for t in result] == ["named", "anon"]


def test_deduplicate_ignores_key_order():
    tools = [
        ToolUse("", "t", {"a": 1, "b": 2}),
        ToolUse("", "t", {"b": 2, "a": 1}),
    ]
    assert len(deduplicate_tool_calls(tools)) == 1


# ---------------------------------------------------------------- data types


def test_kiro_event_default():
    event = KiroEvent(event_type="content", content="test")
    assert event.event_type == "content"
    assert event.is_first_thinking_chunk is False
    assert event.is_last_thinking_chunk is False


def test_kiro_event_to_dict_omits_unset_fields():
    event = KiroEvent(event_type="content", content="hi")
    assert event.to_dict() == {
        "type": "content",
        "content": "hi",
        "is_first_thinking_chunk": False,
        "is_last_thinking_chunk": False,
    }


def test_kiro_event_to_dict_nested():
    event = KiroEvent(
        event_type="tool_use",
        tool_use=ToolUse("call_1", "t", {"k": "v"}),
        usage=Usage(3, 4),
    )
    data = event.to_dict()
    assert data["tool_use"] == {"tool_use_id": "call_1", "name": "t", "input": {"k": "v"}}
    assert data["usage"] == {"input_tokens": 3, "output_tokens": 4}
    assert "content" not in data


def test_tool_use_serialization():
    tool = ToolUse("call_123", "test_tool", {"key": "value"})
    text = json.dumps(tool.to_dict())
    assert "call_123" in text
    assert "test_tool" in text


def test_usage_serialization_round_trip():
    usage = Usage(input_tokens=100, output_tokens=50)
    parsed = Usage.from_dict(json.loads(json.dumps(usage.to_dict())))
    assert parsed.input_tokens == 100
    assert parsed.output_tokens == 50


def test_usage_from_dict_missing_field():
    with pytest.raises(ValueError):
        Usage.from_dict({"input_tokens": 1})


def test_usage_from_dict_wrong_type():
    with pytest.raises(ValueError):
        Usage.from_dict({"input_tokens": 1, "output_tokens": "2"})


def test_stream_result_defaults():
    result = StreamResult()
    assert result.content == ""
    assert result.thinking_content == ""
    assert result.tool_calls == []
    assert result.usage is None
    assert result.context_usage_percentage is None