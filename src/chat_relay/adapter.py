# SPDX-License-Identifier: Apache-2.0
"""
Chat relay HTTP surface.

Serves the bundled chat UI for every non-API path and exposes one API
route, POST /api/chat, which sanitizes the posted history, calls Workers AI
and relays the model's token stream back as Server-Sent Events.

Run with: uvicorn chat_relay.adapter:app --host 127.0.0.1 --port 8787

Configuration via environment variables:
    CF_ACCOUNT_ID         - Cloudflare account id (required for model calls)
    CF_API_TOKEN          - Workers AI API token (required for model calls)
    AI_GATEWAY_ID         - AI Gateway id (default: "chatbot-gateway", "" = no gateway)
    AI_GATEWAY_SKIP_CACHE - Bypass the gateway cache (default: "false")
    AI_GATEWAY_CACHE_TTL  - Gateway cache TTL in seconds (default: 3600)
    MODEL_ID              - Workers AI model (default: @cf/meta/llama-3.3-70b-instruct-fp8-fast)
    RELAY_BIND_HOST       - Host to bind to (default: "127.0.0.1")
    RELAY_PORT            - Port to bind to (default: 8787)
    RELAY_LOG_LEVEL       - Logging level for main() (default: "INFO")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles

from chat_relay import __version__
from chat_relay.guardrails import (
    INTERNAL_ERROR_MESSAGE,
    parse_gateway_error,
    user_message_for,
)
from chat_relay.sanitizer import build_model_messages
from chat_relay.session import Message, coerce_messages, coerce_strings
from chat_relay.stream_relay import SSE_HEADERS, relay_sse
from chat_relay.workers_ai_client import GatewayOptions, WorkersAIClient

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration from environment
# ============================================================================

CF_ACCOUNT_ID = os.environ.get("CF_ACCOUNT_ID", "")
CF_API_TOKEN = os.environ.get("CF_API_TOKEN", "")
AI_GATEWAY_ID = os.environ.get("AI_GATEWAY_ID", "chatbot-gateway")
AI_GATEWAY_SKIP_CACHE = os.environ.get("AI_GATEWAY_SKIP_CACHE", "false").lower() in ("true", "1", "yes")
AI_GATEWAY_CACHE_TTL = int(os.environ.get("AI_GATEWAY_CACHE_TTL", "3600"))
MODEL_ID = os.environ.get("MODEL_ID", "@cf/meta/llama-3.3-70b-instruct-fp8-fast")

RELAY_BIND_HOST = os.environ.get("RELAY_BIND_HOST", "127.0.0.1")
RELAY_PORT = int(os.environ.get("RELAY_PORT", "8787"))
RELAY_LOG_LEVEL = os.environ.get("RELAY_LOG_LEVEL", "INFO")

# Conservative decoding reduces borderline content volatility
MAX_TOKENS = 2048
TEMPERATURE = 0.2
TOP_P = 0.9

GATEWAY = GatewayOptions(
    id=AI_GATEWAY_ID,
    skip_cache=AI_GATEWAY_SKIP_CACHE,
    cache_ttl=AI_GATEWAY_CACHE_TTL,
)

_STATIC_DIR = Path(__file__).resolve().parent / "static"

# ============================================================================
# Application setup
# ============================================================================

app = FastAPI(
    title="Chat Relay",
    description="Guardrail-aware chat relay in front of Workers AI",
    version=__version__,
)

_model_client: WorkersAIClient | None = None


def _get_model_client() -> WorkersAIClient:
    global _model_client
    if _model_client is None:
        _model_client = WorkersAIClient(CF_ACCOUNT_ID, CF_API_TOKEN)
    return _model_client


def _parse_chat_body(raw: Any) -> tuple[list[Message], set[str]]:
    """Pull history and block list out of the posted JSON, defaulting to empty."""
    if not isinstance(raw, dict):
        return [], set()
    return coerce_messages(raw.get("messages")), set(coerce_strings(raw.get("blockedUserContents")))


# ============================================================================
# Chat endpoint
# ============================================================================


@app.post("/api/chat", response_model=None)
async def chat(request: Request) -> Response:
    """Sanitize history, call the model, relay its stream.

    Upstream failures keep their HTTP status; the body is replaced by
    {"error": <user-facing message>}. Anything unexpected is a 500.
    """
    try:
        messages, blocked = _parse_chat_body(await request.json())
        model_messages = build_model_messages(messages, blocked)
        logger.info(
            "Chat request: history=%d blocked=%d forwarded=%d",
            len(messages), len(blocked), len(model_messages),
        )

        upstream = await _get_model_client().run(
            MODEL_ID,
            {
                "messages": [m.model_dump() for m in model_messages],
                "max_tokens": MAX_TOKENS,
                "temperature": TEMPERATURE,
                "top_p": TOP_P,
            },
            GATEWAY,
        )

        if not upstream.ok:
            try:
                failure_body = await upstream.read_json()
            except httpx.HTTPError:
                failure_body = None
            finally:
                await upstream.aclose()
            error = parse_gateway_error(failure_body)
            logger.warning(
                "Model call failed: status=%d code=%s", upstream.status_code, error.code
            )
            return JSONResponse(
                {"error": user_message_for(error)},
                status_code=upstream.status_code,
            )

        return StreamingResponse(
            relay_sse(upstream.aiter_bytes(), upstream.aclose),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
    except Exception:
        logger.exception("Error processing chat request")
        return JSONResponse({"error": INTERNAL_ERROR_MESSAGE}, status_code=500)


@app.api_route("/api/chat", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def chat_method_not_allowed() -> PlainTextResponse:
    return PlainTextResponse("Method not allowed", status_code=405)


@app.api_route(
    "/api/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def api_not_found(path: str) -> PlainTextResponse:
    return PlainTextResponse("Not found", status_code=404)


# ============================================================================
# Health / static UI
# ============================================================================


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "model": MODEL_ID,
        "configured": _get_model_client().configured,
    }


# Registered last so every route above wins over the static catch-all
app.mount("/", StaticFiles(directory=_STATIC_DIR, html=True), name="static")


def main() -> None:
    """Run the relay with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=RELAY_LOG_LEVEL.upper(),
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
    )
    uvicorn.run(
        "chat_relay.adapter:app",
        host=RELAY_BIND_HOST,
        port=RELAY_PORT,
    )


if __name__ == "__main__":
    main()
