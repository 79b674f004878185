# FILE: converter/client/stream.py
"""
Streaming HTTP client for /api/convert-stream.

ConversionClient posts a Solidity source, parses the SSE response as it
arrives and feeds each event into a ConversionStore. Starting a new
conversion cancels the previous one: its task is cancelled (closing the HTTP
connection, which the server sees as a disconnect) and any event it still
delivers carries a stale generation and is ignored by the store.

Non-2xx responses raise ConversionRequestError carrying the server's
error / message / retryAfter fields.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from converter.client.sse import SSEParserState, parse_sse_chunk
from converter.client.store import ConversionStore

logger = logging.getLogger(__name__)

CONVERT_PATH = "/api/convert-stream"


class ConversionRequestError(Exception):
    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message or error)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.retry_after = retry_after


def _request_error(response: httpx.Response, body: bytes) -> ConversionRequestError:
    payload: Dict[str, Any] = {}
    try:
        payload = json.loads(body.decode("utf-8", errors="replace"))
    except ValueError:
        pass
    if not isinstance(payload, dict):
        payload = {}

    retry_after = payload.get("retryAfter")
    if retry_after is None and response.headers.get("retry-after", "").isdigit():
        retry_after = int(response.headers["retry-after"])

    error = payload.get("error") or f"HTTP {response.status_code}"
    message = payload.get("message") or payload.get("detail") or error
    return ConversionRequestError(response.status_code, error, message, retry_after)


class ConversionClient:
    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        store: Optional[ConversionStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 900.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.store = store or ConversionStore()
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout
        self._task: Optional[asyncio.Task] = None

    async def aclose(self) -> None:
        self.cancel()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10.0))
        return self._http

    def cancel(self) -> None:
        """Cancel the in-flight conversion (if any) and return the store to idle."""
        self.store.reset()

    def start(self, source: str) -> asyncio.Task:
        """Begin a conversion in the background, superseding any previous one."""
        generation = self.store.start_conversion()
        task = asyncio.get_running_loop().create_task(self._consume(source, generation))
        self.store.set_cancel(task.cancel, generation)
        self._task = task
        return task

    async def convert(self, source: str) -> ConversionStore:
        """Run a conversion to its terminal event (or failure) and return the store."""
        task = self.start(source)
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return self.store

    async def _consume(self, source: str, generation: int) -> None:
        state = SSEParserState()
        url = self.base_url + CONVERT_PATH
        try:
            async with self._client().stream("POST", url, json={"contract": source}) as response:
                if response.status_code >= 400:
                    raise _request_error(response, await response.aread())

                async for chunk in response.aiter_text():
                    for event in parse_sse_chunk(chunk, state):
                        self.store.apply(event, generation)

            if generation == self.store.generation and self.store.loading:
                self.store.fail("Connection closed before the conversion finished", generation)

        except ConversionRequestError as exc:
            logger.warning("[client] Conversion rejected (%s): %s", exc.status_code, exc.message)
            self.store.fail(exc.message, generation)
            raise
        except httpx.HTTPError as exc:
            logger.warning("[client] Stream failed: %s", exc)
            self.store.fail(f"Connection error: {exc}", generation)
            raise
