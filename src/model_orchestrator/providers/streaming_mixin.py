"""
Streaming mixin for adapters whose backends deliver server-sent events.
"""

import logging
from typing import Any, AsyncIterator, Dict

import httpx
import orjson

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE_MARKER = "[DONE]"


class StreamingMixin:
    """Parses `data:` lines into JSON payloads until the end-of-stream marker."""

    def __init__(self):
        self.streaming_stats = {
            "total_streams": 0,
            "completed_streams": 0,
            "total_chunks": 0,
            "malformed_chunks": 0,
        }

    async def _iter_sse_payloads(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded event payloads from a streaming HTTP response.

        Args:
            response: An httpx response opened with stream()

        Yields:
            Parsed JSON object for every data line before [DONE]
        """
        self.streaming_stats["total_streams"] += 1
        async for line in response.aiter_lines():
            line = line.strip()
            if not line.startswith(SSE_DATA_PREFIX):
                continue

            data = line[len(SSE_DATA_PREFIX):].strip()
            if data == SSE_DONE_MARKER:
                self.streaming_stats["completed_streams"] += 1
                return

            try:
                payload = orjson.loads(data)
            except orjson.JSONDecodeError:
                self.streaming_stats["malformed_chunks"] += 1
                logger.warning(f"Skipping malformed stream chunk: {data[:80]}")
                continue

            self.streaming_stats["total_chunks"] += 1
            yield payload
