# SPDX-License-Identifier: Apache-2.0
"""
Guardrail rejection handling for both ends of the relay.

Server side: parse_gateway_error() pulls a (code, message) pair out of an
upstream failure body, and user_message_for() turns it into the single
sentence the client sees.

Client side: map_error_text() reads the relay's {"error": ...} body and
decides whether the turn was a prompt block, a response block, or a
plain error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


PROMPT_BLOCKED_CODE = 2016
RESPONSE_BLOCKED_CODE = 2017

PROMPT_BLOCKED_MESSAGE = "Prompt was blocked by guardrails."
RESPONSE_BLOCKED_MESSAGE = "Response was blocked by guardrails."
GENERIC_ERROR_MESSAGE = "An error occurred while processing your request."
INTERNAL_ERROR_MESSAGE = "Failed to process request"

# Client-facing display text
CLIENT_FALLBACK_TEXT = "Sorry, there was an error processing your request."
PROMPT_BLOCKED_TEXT = "⚠️ Prompt was blocked by guardrails due to security policy."
RESPONSE_BLOCKED_TEXT = "⚠️ Response was blocked by guardrails."
PROMPT_BLOCKED_NOTICE = "That message wasn’t sent due to safety policy."

_PROMPT_BLOCKED_RE = re.compile(r"Prompt was blocked by guardrails", re.IGNORECASE)
_RESPONSE_BLOCKED_RE = re.compile(r"Response was blocked by guardrails", re.IGNORECASE)


# ============================================================================
# Server side
# ============================================================================


@dataclass(frozen=True, slots=True)
class GatewayError:
    code: int | None = None
    message: str | None = None


def _first_entry(value: Any) -> GatewayError | None:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        entry = value[0]
        return GatewayError(code=entry.get("code"), message=entry.get("message"))
    return None


def parse_gateway_error(body: Any) -> GatewayError:
    """Extract code/message from the known upstream failure shapes.

    Tried in order: {error: [{code, message}]}, {errors: [{code, message}]},
    {error: str}, {message: str}, {detail: str}. Never raises; anything
    unrecognised gives an empty GatewayError.
    """
    if not isinstance(body, dict):
        return GatewayError()
    for key in ("error", "errors"):
        found = _first_entry(body.get(key))
        if found is not None:
            return found
    for key in ("error", "message", "detail"):
        if isinstance(body.get(key), str):
            return GatewayError(message=body[key])
    return GatewayError()


def user_message_for(error: GatewayError) -> str:
    """Map a classified upstream failure to the sentence sent to the client."""
    if error.code == PROMPT_BLOCKED_CODE:
        return PROMPT_BLOCKED_MESSAGE
    if error.code == RESPONSE_BLOCKED_CODE:
        return RESPONSE_BLOCKED_MESSAGE
    if isinstance(error.message, str) and error.message:
        return error.message
    return GENERIC_ERROR_MESSAGE


# ============================================================================
# Client side
# ============================================================================


@dataclass(frozen=True, slots=True)
class ErrorOutcome:
    text: str
    prompt_blocked: bool = False
    response_blocked: bool = False


def is_prompt_blocked(message: str) -> bool:
    return bool(_PROMPT_BLOCKED_RE.search(message))


def is_response_blocked(message: str) -> bool:
    return bool(_RESPONSE_BLOCKED_RE.search(message))


def map_error_text(body: Any) -> ErrorOutcome:
    """Turn a relay error body into display text plus block flags."""
    msg = ""
    if isinstance(body, dict):
        for key in ("error", "message", "msg"):
            value = body.get(key)
            if isinstance(value, str) and value:
                msg = value
                break

    if is_prompt_blocked(msg):
        return ErrorOutcome(text=PROMPT_BLOCKED_TEXT, prompt_blocked=True)
    if is_response_blocked(msg):
        return ErrorOutcome(text=RESPONSE_BLOCKED_TEXT, response_blocked=True)
    return ErrorOutcome(text=msg or CLIENT_FALLBACK_TEXT)
