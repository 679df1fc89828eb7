# SPDX-License-Identifier: Apache-2.0
"""Tests for session state: BlockList, Conversation, SanitizedRequest."""

import pytest

from chat_relay.session import (
    BLOCKLIST_CAPACITY,
    SEED_GREETING,
    BlockList,
    ChatSession,
    Conversation,
    Message,
    TurnState,
    coerce_messages,
    coerce_strings,
)


# ============================================================================
# BlockList
# ============================================================================


class TestBlockList:
    def test_add_and_contains(self) -> None:
        bl = BlockList()
        assert bl.add("bad") is True
        assert "bad" in bl
        assert "other" not in bl
        assert len(bl) == 1

    def test_duplicates_ignored(self) -> None:
        bl = BlockList()
        bl.add("a")
        bl.add("b")
        assert bl.add("a") is False
        assert bl.to_list() == ["a", "b"]

    def test_empty_text_ignored(self) -> None:
        bl = BlockList()
        assert bl.add("") is False
        assert len(bl) == 0

    def test_bound_evicts_oldest_first(self) -> None:
        bl = BlockList()
        for i in range(25):
            bl.add(f"blocked-{i}")
        assert len(bl) == BLOCKLIST_CAPACITY == 20
        assert bl.to_list() == [f"blocked-{i}" for i in range(5, 25)]
        assert "blocked-4" not in bl

    def test_duplicate_does_not_refresh_position(self) -> None:
        bl = BlockList(capacity=2)
        bl.add("a")
        bl.add("b")
        bl.add("a")
        bl.add("c")
        assert bl.to_list() == ["b", "c"]

    def test_initial_items(self) -> None:
        bl = BlockList(capacity=3, items=["a", "b", "a", "c", "d"])
        assert list(bl) == ["b", "c", "d"]

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            BlockList(capacity=0)


# ============================================================================
# Conversation
# ============================================================================


class TestConversation:
    def test_seeded_with_greeting(self) -> None:
        conv = Conversation()
        assert conv.messages == [Message(role="assistant", content=SEED_GREETING)]

    def test_no_greeting(self) -> None:
        assert len(Conversation(greeting=None)) == 0

    def test_retract_last_user_removes_exactly_one(self) -> None:
        conv = Conversation()
        conv.append_user("one")
        conv.append_assistant("reply")
        conv.append_user("two")
        removed = conv.retract_last_user()
        assert removed == Message(role="user", content="two")
        assert [m.content for m in conv.messages] == [SEED_GREETING, "one", "reply"]

    def test_retract_searches_backwards_past_assistant(self) -> None:
        conv = Conversation()
        conv.append_user("one")
        conv.append_assistant("reply")
        assert conv.retract_last_user().content == "one"
        assert not conv.contains_user_text("one")

    def test_retract_with_no_user_returns_none(self) -> None:
        conv = Conversation()
        assert conv.retract_last_user() is None
        assert len(conv) == 1

    def test_messages_is_a_copy(self) -> None:
        conv = Conversation()
        conv.messages.clear()
        assert len(conv) == 1


# ============================================================================
# ChatSession.build_request
# ============================================================================


class TestBuildRequest:
    def test_filters_blocked_user_messages(self) -> None:
        session = ChatSession()
        session.conversation.append_user("bad")
        session.conversation.append_user("fine")
        session.blocklist.add("bad")
        req = session.build_request()
        assert [m.content for m in req.messages] == [SEED_GREETING, "fine"]
        assert req.blocked_user_contents == ["bad"]

    def test_blocked_assistant_text_kept(self) -> None:
        session = ChatSession(conversation=Conversation(greeting="bad"))
        session.blocklist.add("bad")
        assert [m.content for m in session.build_request().messages] == ["bad"]

    def test_payload_uses_wire_field_names(self) -> None:
        session = ChatSession()
        session.blocklist.add("x")
        payload = session.build_request().to_payload()
        assert payload == {
            "messages": [{"role": "assistant", "content": SEED_GREETING}],
            "blockedUserContents": ["x"],
        }

    def test_new_session_is_idle(self) -> None:
        assert ChatSession().state is TurnState.idle


# ============================================================================
# Coercion of posted JSON
# ============================================================================


class TestCoercion:
    def test_non_list_messages(self) -> None:
        assert coerce_messages(None) == []
        assert coerce_messages({"role": "user"}) == []

    def test_invalid_entries_skipped(self) -> None:
        raw = [
            {"role": "user", "content": "ok"},
            {"role": "tool", "content": "nope"},
            {"role": "user", "content": 3},
            {"role": "assistant"},
            "text",
            {"role": "assistant", "content": "fine", "extra": True},
        ]
        assert coerce_messages(raw) == [
            Message(role="user", content="ok"),
            Message(role="assistant", content="fine"),
        ]

    def test_strings(self) -> None:
        assert coerce_strings(["a", 1, None, "b"]) == ["a", "b"]
        assert coerce_strings("a") == []
