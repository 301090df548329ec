"""Tests for transcript turns: ingestion, sanitization and message conversion."""

from __future__ import annotations

import json

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from booking_agent.conversation import (
    ModelTurn,
    ToolCall,
    ToolResultTurn,
    UserTurn,
    dump_turns,
    from_messages,
    parse_turns,
    sanitize,
    to_messages,
)


def _call(call_id: str = "c1", name: str = "get_available_slots") -> ToolCall:
    return ToolCall(id=call_id, name=name, args={"date": "2030-01-07"})


def _result(call_id: str = "c1", name: str = "get_available_slots") -> ToolResultTurn:
    return ToolResultTurn(tool_call_id=call_id, name=name, result={"success": True, "slots": ["09:00"]})


class TestSanitize:
    def test_trailing_unfinished_call_is_stripped(self):
        turns = [UserTurn(text="hi"), ModelTurn(tool_calls=[_call()])]
        assert sanitize(turns) == [UserTurn(text="hi")]

    def test_leading_non_user_turns_are_dropped(self):
        turns = [ModelTurn(text="Welcome!"), _result(), UserTurn(text="hi"), ModelTurn(text="Hello")]
        clean = sanitize(turns)
        assert isinstance(clean[0], UserTurn)
        assert len(clean) == 2

    def test_no_user_turn_means_fresh_start(self):
        assert sanitize([ModelTurn(text="Welcome!")]) == []
        assert sanitize([]) == []

    def test_answered_call_is_kept(self):
        turns = [UserTurn(text="hi"), ModelTurn(tool_calls=[_call()]), _result(), ModelTurn(text="09:00 is open")]
        assert sanitize(turns) == turns

    def test_partially_answered_call_is_dropped_with_its_results(self):
        turns = [
            UserTurn(text="hi"),
            ModelTurn(tool_calls=[_call("c1"), _call("c2")]),
            _result("c1"),
            UserTurn(text="hello?"),
        ]
        assert sanitize(turns) == [UserTurn(text="hi"), UserTurn(text="hello?")]

    def test_orphan_tool_result_is_dropped(self):
        turns = [UserTurn(text="hi"), _result("zzz"), ModelTurn(text="Hello")]
        assert sanitize(turns) == [UserTurn(text="hi"), ModelTurn(text="Hello")]

    def test_result_for_other_call_is_dropped(self):
        turns = [UserTurn(text="hi"), ModelTurn(tool_calls=[_call("c1")]), _result("c1"), _result("c9")]
        assert sanitize(turns) == turns[:3]

    def test_never_ends_with_unfinished_call(self):
        turns = [
            ModelTurn(text="x"),
            UserTurn(text="a"),
            ModelTurn(tool_calls=[_call("c1")]),
            _result("c1"),
            ModelTurn(text="b", tool_calls=[_call("c2")]),
        ]
        clean = sanitize(turns)
        assert isinstance(clean[0], UserTurn)
        last = clean[-1]
        assert not (isinstance(last, ModelTurn) and last.tool_calls)


class TestParseTurns:
    def test_legacy_roles_are_mapped(self):
        rows = [
            {"role": "user", "text": "hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "function", "tool_call_id": "c1", "name": "get_business_info", "result": {"success": True}},
        ]
        turns = parse_turns(rows)
        assert [type(t) for t in turns] == [UserTurn, ModelTurn, ToolResultTurn]
        assert turns[1].text == "Hello!"

    def test_unknown_role_is_dropped(self):
        assert parse_turns([{"role": "system", "text": "x"}, {"role": "user", "text": "hi"}]) == [UserTurn(text="hi")]

    def test_tool_result_without_name_is_dropped(self):
        assert parse_turns([{"role": "tool_result", "tool_call_id": "c1", "result": {}}]) == []

    def test_dump_then_parse_keeps_turns(self):
        turns = [UserTurn(text="hi"), ModelTurn(tool_calls=[_call()]), _result()]
        assert parse_turns(dump_turns(turns)) == turns


class TestMessageConversion:
    def test_to_messages(self):
        messages = to_messages([UserTurn(text="hi"), ModelTurn(tool_calls=[_call()]), _result()])
        assert isinstance(messages[0], HumanMessage)
        assert messages[1].tool_calls[0]["name"] == "get_available_slots"
        assert isinstance(messages[2], ToolMessage)
        assert messages[2].name == "get_available_slots"
        assert json.loads(messages[2].content)["slots"] == ["09:00"]

    def test_from_messages_keeps_tool_name(self):
        turns = from_messages(
            [
                AIMessage(content="", tool_calls=[{"id": "c1", "name": "list_appointments", "args": {}}]),
                ToolMessage(content='{"success": true, "appointments": []}', tool_call_id="c1", name="list_appointments"),
                AIMessage(content=[{"type": "text", "text": "You have none."}]),
            ]
        )
        assert turns[1].name == "list_appointments"
        assert turns[1].result == {"success": True, "appointments": []}
        assert turns[2].text == "You have none."

    def test_non_json_tool_content(self):
        turns = from_messages([ToolMessage(content="boom", tool_call_id="c1", name="x", status="error")])
        assert turns[0].result == {"success": False, "content": "boom"}
