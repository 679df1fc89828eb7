# SPDX-License-Identifier: Apache-2.0
"""Tests for the Workers AI client (httpx MockTransport, no network)."""

import asyncio
import json

import httpx
import pytest

from chat_relay.workers_ai_client import (
    GatewayOptions,
    ModelNotConfiguredError,
    WorkersAIClient,
)

MODEL = "@cf/meta/llama-3.3-70b-instruct-fp8-fast"


def _client(handler) -> WorkersAIClient:
    return WorkersAIClient("acct", "token", transport=httpx.MockTransport(handler))


class TestRun:
    def test_gateway_url_headers_and_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b'data: {"response":"hi"}\n\n')

        client = _client(handler)
        gateway = GatewayOptions(id="chatbot-gateway", skip_cache=False, cache_ttl=3600)

        async def run():
            upstream = await client.run(MODEL, {"messages": [], "max_tokens": 5}, gateway)
            chunks = [c async for c in upstream.aiter_bytes()]
            await upstream.aclose()
            await client.close()
            return upstream, chunks

        upstream, chunks = asyncio.run(run())
        assert upstream.ok
        assert upstream.status_code == 200
        assert b"".join(chunks) == b'data: {"response":"hi"}\n\n'

        request = seen[0]
        assert str(request.url) == (
            "https://gateway.ai.cloudflare.com/v1/acct/chatbot-gateway/workers-ai/" + MODEL
        )
        assert request.headers["authorization"] == "Bearer token"
        assert request.headers["cf-aig-skip-cache"] == "false"
        assert request.headers["cf-aig-cache-ttl"] == "3600"
        assert json.loads(request.content) == {"messages": [], "max_tokens": 5, "stream": True}

    def test_direct_url_without_gateway(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"")

        client = _client(handler)

        async def run():
            upstream = await client.run(MODEL, {"messages": []})
            await upstream.aclose()

        asyncio.run(run())
        assert str(seen[0].url) == (
            "https://api.cloudflare.com/client/v4/accounts/acct/ai/run/" + MODEL
        )
        assert "cf-aig-skip-cache" not in seen[0].headers

    def test_failure_body_is_returned_not_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(424, json={"error": [{"code": 2016, "message": "blocked"}]})

        client = _client(handler)

        async def run():
            upstream = await client.run(MODEL, {"messages": []})
            body = await upstream.read_json()
            await upstream.aclose()
            return upstream, body

        upstream, body = asyncio.run(run())
        assert not upstream.ok
        assert upstream.status_code == 424
        assert body == {"error": [{"code": 2016, "message": "blocked"}]}

    def test_non_json_failure_body_reads_as_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, content=b"<html>bad gateway</html>")

        client = _client(handler)

        async def run():
            upstream = await client.run(MODEL, {"messages": []})
            return await upstream.read_json()

        assert asyncio.run(run()) is None

    def test_not_configured(self) -> None:
        client = WorkersAIClient("", "")
        assert not client.configured
        with pytest.raises(ModelNotConfiguredError):
            asyncio.run(client.run(MODEL, {"messages": []}))


def test_gateway_headers_empty_without_id() -> None:
    assert GatewayOptions().headers() == {}
    assert GatewayOptions(id="g", skip_cache=True).headers() == {"cf-aig-skip-cache": "true"}
