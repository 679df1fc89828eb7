# SPDX-License-Identifier: Apache-2.0
"""Transparent SSE framing of an upstream byte stream.

Each chunk read from upstream is decoded and re-emitted as exactly one
`data: <chunk>\\n\\n` record, in order. Chunk contents are never parsed.
The next chunk is not read until the previous record has been consumed,
so a slow client slows the upstream read instead of growing a buffer.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable

import anyio

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(text: str) -> str:
    return f"data: {text}\n\n"


async def relay_sse(
    chunks: AsyncIterator[bytes],
    close: Callable[[], Awaitable[None]] | None = None,
) -> AsyncGenerator[str, None]:
    """Yield one SSE record per upstream chunk.

    An upstream error ends the stream after logging it; the records already
    yielded are complete frames. If the consumer goes away (the generator is
    closed or cancelled) reading stops. In every case `close` is awaited to
    release the upstream source.
    """
    # Incremental so a multi-byte character split across chunks survives
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    relayed = 0
    try:
        async for chunk in chunks:
            text = decoder.decode(chunk)
            if not text:
                continue
            relayed += 1
            yield format_sse(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            relayed += 1
            yield format_sse(tail)
    except (GeneratorExit, asyncio.CancelledError):
        logger.info("Client went away after %d chunks; closing upstream", relayed)
        raise
    except Exception:
        logger.exception("Streaming error after %d chunks", relayed)
    finally:
        if close is not None:
            with anyio.CancelScope(shield=True):
                await close()
