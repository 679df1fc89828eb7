# SPDX-License-Identifier: Apache-2.0
"""Thin async client for Cloudflare Workers AI text generation.

Provides only what the relay needs: one streaming model call that hands
back the raw upstream response (status + byte stream, or a failure body),
optionally routed through an AI Gateway.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"
GATEWAY_BASE = "https://gateway.ai.cloudflare.com/v1"


class ModelNotConfiguredError(RuntimeError):
    """Raised when no account id or API token is configured."""


@dataclass(frozen=True, slots=True)
class GatewayOptions:
    id: str = ""
    skip_cache: bool = False
    cache_ttl: int | None = None

    def headers(self) -> dict[str, str]:
        if not self.id:
            return {}
        out = {"cf-aig-skip-cache": "true" if self.skip_cache else "false"}
        if self.cache_ttl is not None:
            out["cf-aig-cache-ttl"] = str(self.cache_ttl)
        return out


# =============================================================================
# Upstream response
# =============================================================================


class UpstreamResponse:
    """An open upstream response. Must be closed by whoever consumes it."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return self._response.is_success

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def read_json(self) -> Any:
        """Read the whole (failure) body as JSON. Returns None if it is not JSON."""
        raw = await self._response.aread()
        try:
            return json.loads(raw)
        except ValueError:
            logger.debug("Upstream failure body is not JSON (%d bytes)", len(raw))
            return None

    async def aclose(self) -> None:
        await self._response.aclose()


# =============================================================================
# WorkersAIClient
# =============================================================================


class WorkersAIClient:
    """Async HTTP client for Workers AI `run` calls.

    With a gateway id the call goes through
    gateway.ai.cloudflare.com/v1/<account>/<gateway>/workers-ai/<model>,
    otherwise straight to the Workers AI REST endpoint.
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_id = account_id
        self._api_token = api_token
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self._account_id and self._api_token)

    def url_for(self, model_id: str, gateway: GatewayOptions) -> str:
        if gateway.id:
            return f"{GATEWAY_BASE}/{self._account_id}/{gateway.id}/workers-ai/{model_id}"
        return f"{API_BASE}/accounts/{self._account_id}/ai/run/{model_id}"

    async def run(
        self,
        model_id: str,
        inputs: dict[str, Any],
        gateway: GatewayOptions | None = None,
    ) -> UpstreamResponse:
        """Start a streaming model call and return the raw response.

        The response is returned whatever its status; callers branch on
        `ok`. Transport failures raise httpx.HTTPError.
        """
        if not self.configured:
            raise ModelNotConfiguredError(
                "Workers AI not configured. Set CF_ACCOUNT_ID and CF_API_TOKEN."
            )
        gateway = gateway or GatewayOptions()
        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            **gateway.headers(),
        }
        request = self._http.build_request(
            "POST",
            self.url_for(model_id, gateway),
            headers=headers,
            json={**inputs, "stream": True},
        )
        response = await self._http.send(request, stream=True)
        logger.debug("Workers AI %s -> %d", model_id, response.status_code)
        return UpstreamResponse(response)

    async def close(self) -> None:
        await self._http.aclose()
