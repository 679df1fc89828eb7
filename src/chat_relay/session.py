# SPDX-License-Identifier: Apache-2.0
"""
Client-held conversation state: messages, the block list, and the per-turn
request built from them.

A ChatSession is owned by exactly one ConversationController. It is only
mutated through the turn transitions (append user, append assistant, retract
last user), so there is no hidden global state and no locking.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Iterator, Literal

from pydantic import BaseModel, Field, ValidationError


BLOCKLIST_CAPACITY = 20

SEED_GREETING = (
    "Hello! I'm an LLM chat app powered by Cloudflare Workers AI. "
    "How can I help you today?"
)


# ============================================================================
# Message
# ============================================================================


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


def coerce_messages(raw: Any) -> list[Message]:
    """Best-effort conversion of a JSON value into Messages.

    A non-list yields []. Entries that are not objects with a known role and
    a string content are skipped.
    """
    if not isinstance(raw, list):
        return []
    out: list[Message] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            out.append(Message(role=item.get("role"), content=item.get("content")))
        except ValidationError:
            continue
    return out


def coerce_strings(raw: Any) -> list[str]:
    """Keep only the string entries of a JSON list; anything else yields []."""
    if not isinstance(raw, list):
        return []
    return [s for s in raw if isinstance(s, str)]


# ============================================================================
# BlockList
# ============================================================================


class BlockList:
    """Bounded, deduplicated memory of user utterances never to be resent.

    Insertion order is kept. When an insert pushes the size past capacity the
    oldest entry is evicted. Re-inserting an existing entry is a no-op (it
    does not refresh its position).
    """

    def __init__(self, capacity: int = BLOCKLIST_CAPACITY,
                 items: Iterable[str] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._items: list[str] = []
        for text in items:
            self.add(text)

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, text: str) -> bool:
        """Remember text. Returns True if it was newly added."""
        if not text or text in self._items:
            return False
        self._items.append(text)
        if len(self._items) > self._capacity:
            self._items.pop(0)
        return True

    def __contains__(self, text: object) -> bool:
        return text in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list[str]:
        return list(self._items)


# ============================================================================
# Conversation
# ============================================================================


class Conversation:
    """Ordered message history, seeded with one assistant greeting."""

    def __init__(self, greeting: str | None = SEED_GREETING) -> None:
        self._messages: list[Message] = []
        if greeting:
            self._messages.append(Message(role="assistant", content=greeting))

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append_user(self, content: str) -> Message:
        msg = Message(role="user", content=content)
        self._messages.append(msg)
        return msg

    def append_assistant(self, content: str) -> Message:
        msg = Message(role="assistant", content=content)
        self._messages.append(msg)
        return msg

    def retract_last_user(self) -> Message | None:
        """Remove the most recent user message (exactly one) and return it."""
        for i in range(len(self._messages) - 1, -1, -1):
            if self._messages[i].role == "user":
                return self._messages.pop(i)
        return None

    def contains_user_text(self, text: str) -> bool:
        return any(m.role == "user" and m.content == text for m in self._messages)


# ============================================================================
# SanitizedRequest
# ============================================================================


class SanitizedRequest(BaseModel):
    """Body of one POST /api/chat. Built fresh per turn, never persisted."""

    messages: list[Message] = Field(default_factory=list)
    blocked_user_contents: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": [m.model_dump() for m in self.messages],
            "blockedUserContents": list(self.blocked_user_contents),
        }


# ============================================================================
# Session
# ============================================================================


class TurnState(str, Enum):
    idle = "idle"
    sending = "sending"
    streaming = "streaming"
    blocked = "blocked"


class ChatSession:
    """Conversation + BlockList + turn state for a single client session."""

    def __init__(
        self,
        conversation: Conversation | None = None,
        blocklist: BlockList | None = None,
    ) -> None:
        self.conversation = conversation if conversation is not None else Conversation()
        self.blocklist = blocklist if blocklist is not None else BlockList()
        self.state = TurnState.idle

    @property
    def is_idle(self) -> bool:
        return self.state is TurnState.idle

    def build_request(self) -> SanitizedRequest:
        """Filter the conversation against the local block list.

        The server re-filters independently; this copy keeps blocked text
        off the wire in the first place.
        """
        blocked = self.blocklist
        kept = [
            m for m in self.conversation.messages
            if not (m.role == "user" and m.content in blocked)
        ]
        return SanitizedRequest(
            messages=kept,
            blocked_user_contents=blocked.to_list(),
        )
