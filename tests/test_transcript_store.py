"""Tests for the transcript store."""

from __future__ import annotations

from booking_agent.conversation import ModelTurn, ToolCall, ToolResultTurn, UserTurn
from booking_agent.services.database import Conversation, create_session_factory
from booking_agent.services.transcript_store import TranscriptStore


def _count_rows(engine) -> int:
    with create_session_factory(engine)() as db:
        return db.query(Conversation).count()


class TestTranscriptStore:
    def test_load_unknown_conversation_is_empty(self, engine):
        assert TranscriptStore(engine).load("tenant-a", "+55") == []

    def test_save_twice_keeps_one_identical_row(self, engine):
        store = TranscriptStore(engine)
        turns = [UserTurn(text="hi"), ModelTurn(text="Hello!")]
        store.save("tenant-a", "+55", turns)
        store.save("tenant-a", "+55", turns)
        assert _count_rows(engine) == 1
        assert store.load("tenant-a", "+55") == turns

    def test_conversations_are_keyed_by_tenant_and_client(self, engine):
        store = TranscriptStore(engine)
        store.save("tenant-a", "+55", [UserTurn(text="a")])
        store.save("tenant-b", "+55", [UserTurn(text="b")])
        assert _count_rows(engine) == 2
        assert store.load("tenant-b", "+55") == [UserTurn(text="b")]

    def test_save_truncates_to_window(self, engine):
        store = TranscriptStore(engine, window=3)
        turns = [UserTurn(text=str(i)) for i in range(10)]
        store.save("tenant-a", "+55", turns)
        assert [t.text for t in store.load("tenant-a", "+55")] == ["7", "8", "9"]

    def test_tool_results_keep_their_name(self, engine):
        store = TranscriptStore(engine)
        turns = [
            UserTurn(text="hours?"),
            ModelTurn(tool_calls=[ToolCall(id="c1", name="get_business_info")]),
            ToolResultTurn(tool_call_id="c1", name="get_business_info", result={"success": True}),
        ]
        store.save("tenant-a", "+55", turns)
        assert store.load("tenant-a", "+55")[2].name == "get_business_info"

    def test_save_replaces_previous_window(self, engine):
        store = TranscriptStore(engine)
        store.save("tenant-a", "+55", [UserTurn(text="old")])
        store.save("tenant-a", "+55", [UserTurn(text="new")])
        assert store.load("tenant-a", "+55") == [UserTurn(text="new")]
