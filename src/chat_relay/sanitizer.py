# SPDX-License-Identifier: Apache-2.0
"""
History sanitization — pure module, no I/O.

Builds the exact message list sent to the model from client-supplied
history and a set of blocked user utterances:

1. One server-controlled system message (base prompt + safety shim).
2. Client system messages dropped.
3. Blocked user messages dropped (exact string match).
4. Stale guardrail notices dropped together with the user turn right before them.
5. Trailing window of HISTORY_WINDOW messages kept.
"""

from __future__ import annotations

import re
from typing import Collection, Iterable, Pattern

from chat_relay.session import Message


SYSTEM_PROMPT = (
    "You are a helpful, friendly assistant. Provide concise and accurate responses."
)
SAFETY_SHIM = (
    "If a user asks for illegal, violent, or harmful instructions, refuse briefly "
    "and suggest safer, educational alternatives."
)

HISTORY_WINDOW = 16

_GUARDRAIL_NOTICE: Pattern[str] = re.compile(r"blocked by guardrails", re.IGNORECASE)


def system_message() -> Message:
    """The single system message every model request starts with."""
    return Message(role="system", content=f"{SYSTEM_PROMPT}\n\nSafety: {SAFETY_SHIM}")


def looks_like_guardrail_notice(message: Message) -> bool:
    """True if an assistant message is a leftover rejection notice."""
    return message.role == "assistant" and bool(_GUARDRAIL_NOTICE.search(message.content))


def clean_history(raw: Iterable[Message], blocked: Collection[str]) -> list[Message]:
    """Apply steps 2-4 in a single ordered pass."""
    cleaned: list[Message] = []
    for m in raw:
        if m.role == "system":
            continue
        if m.role == "user" and m.content in blocked:
            continue
        if looks_like_guardrail_notice(m):
            # Only the nearest retained message, and only if it is a user turn
            if cleaned and cleaned[-1].role == "user":
                cleaned.pop()
            continue
        cleaned.append(m)
    return cleaned


def build_model_messages(
    raw: Iterable[Message],
    blocked: Collection[str],
    window: int = HISTORY_WINDOW,
) -> list[Message]:
    """Return [system] + the last `window` cleaned history messages."""
    cleaned = clean_history(raw, blocked)
    if len(cleaned) > window:
        cleaned = cleaned[len(cleaned) - window:]
    return [system_message(), *cleaned]
