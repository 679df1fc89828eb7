# SPDX-License-Identifier: Apache-2.0
"""Client-side turn driver for the chat relay.

ConversationController runs one turn at a time against POST /api/chat:

    idle -> sending -> streaming -> idle     (answer streamed)
    idle -> sending -> blocked   -> idle     (prompt rejected by guardrails)

On a prompt block the offending user message is taken back out of the
conversation and remembered in the session's BlockList, so it is never
sent again for the rest of the session.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator

import httpx

from chat_relay.guardrails import PROMPT_BLOCKED_NOTICE, ErrorOutcome, map_error_text
from chat_relay.session import ChatSession, SanitizedRequest, TurnState

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
EMPTY_ANSWER = "…"
NETWORK_ERROR_TEXT = "⚠️ Network or server error. Please try again."


class TurnOutcome(str, Enum):
    completed = "completed"
    prompt_blocked = "prompt_blocked"
    response_blocked = "response_blocked"
    error = "error"


@dataclass(frozen=True, slots=True)
class TurnResult:
    outcome: TurnOutcome
    text: str


class TurnObserver:
    """Receives UI-facing events from a controller. Override what you need."""

    def on_user_message(self, text: str) -> None:
        pass

    def on_fragment(self, text_so_far: str) -> None:
        pass

    def on_assistant_message(self, text: str) -> None:
        pass

    def on_error(self, text: str) -> None:
        pass

    def on_notice(self, text: str) -> None:
        """A muted, informational line (e.g. a retracted prompt)."""


# =============================================================================
# Transport
# =============================================================================


class RelayClient:
    """Posts SanitizedRequests to a relay and hands back the open response."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @asynccontextmanager
    async def post_chat(self, request: SanitizedRequest) -> AsyncIterator[httpx.Response]:
        async with self._http.stream("POST", CHAT_PATH, json=request.to_payload()) as response:
            yield response

    async def close(self) -> None:
        await self._http.aclose()


# =============================================================================
# Event stream parsing
# =============================================================================


def parse_sse_fragment(line: str) -> str | None:
    """Return the `response` text carried by one event-stream line, if any.

    The relay frames upstream chunks opaquely, and upstream chunks may be
    SSE-framed themselves, so repeated `data:` prefixes are stripped.
    """
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    while payload.startswith("data:"):
        payload = payload[5:].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
    except ValueError:
        # Partial JSON split across chunk boundaries
        logger.debug("Stream parse skip: %.60s", payload)
        return None
    if isinstance(data, dict) and isinstance(data.get("response"), str):
        return data["response"]
    return None


# =============================================================================
# ConversationController
# =============================================================================


class ConversationController:
    """Drives turns for one ChatSession. At most one turn is in flight."""

    def __init__(
        self,
        client: RelayClient,
        session: ChatSession | None = None,
        observer: TurnObserver | None = None,
    ) -> None:
        self._client = client
        self.session = session if session is not None else ChatSession()
        self._observer = observer or TurnObserver()

    @property
    def state(self) -> TurnState:
        return self.session.state

    async def send(self, text: str) -> TurnResult | None:
        """Run one turn. Returns None if ignored (blank text or a turn in flight)."""
        message = text.strip()
        if not message or not self.session.is_idle:
            return None

        self.session.state = TurnState.sending
        self.session.conversation.append_user(message)
        self._observer.on_user_message(message)

        try:
            request = self.session.build_request()
            async with self._client.post_chat(request) as response:
                if not response.is_success:
                    return await self._handle_failure(response, message)
                self.session.state = TurnState.streaming
                return await self._consume_stream(response)
        except httpx.HTTPError as e:
            logger.warning("Chat request failed: %s", e)
            self._observer.on_error(NETWORK_ERROR_TEXT)
            return TurnResult(TurnOutcome.error, NETWORK_ERROR_TEXT)
        finally:
            self.session.state = TurnState.idle

    async def _handle_failure(self, response: httpx.Response, message: str) -> TurnResult:
        raw = await response.aread()
        body: Any
        try:
            body = json.loads(raw)
        except ValueError:
            body = None
        outcome: ErrorOutcome = map_error_text(body)
        self._observer.on_error(outcome.text)

        if outcome.prompt_blocked:
            self.session.state = TurnState.blocked
            retracted = self.session.conversation.retract_last_user()
            self.session.blocklist.add(retracted.content if retracted else message)
            self._observer.on_notice(PROMPT_BLOCKED_NOTICE)
            logger.info("Prompt blocked; %d utterance(s) now withheld", len(self.session.blocklist))
            return TurnResult(TurnOutcome.prompt_blocked, outcome.text)
        if outcome.response_blocked:
            return TurnResult(TurnOutcome.response_blocked, outcome.text)
        return TurnResult(TurnOutcome.error, outcome.text)

    async def _consume_stream(self, response: httpx.Response) -> TurnResult:
        acc = ""
        async for line in response.aiter_lines():
            fragment = parse_sse_fragment(line)
            if fragment is None:
                continue
            acc += fragment
            self._observer.on_fragment(acc)

        answer = acc or EMPTY_ANSWER
        self.session.conversation.append_assistant(answer)
        self._observer.on_assistant_message(answer)
        return TurnResult(TurnOutcome.completed, answer)
