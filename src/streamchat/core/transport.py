"""Network client: the fetch contract and its httpx implementation."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from streamchat.core.abort import AbortSignal
from streamchat.core.errors import AbortError, EmptyStreamError, TransportError
from streamchat.protocol.parts import DATA_STREAM_HEADER
from streamchat.types.config import Credentials, StreamProtocol

logger = logging.getLogger(__name__)


@runtime_checkable
class FetchResponse(Protocol):
    """A response whose body has not been consumed yet."""

    @property
    def status(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def ok(self) -> bool: ...

    async def aread_text(self) -> str: ...

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class Fetcher(Protocol):
    """Sends one request and returns the streamed response."""

    async def fetch(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
        credentials: Credentials = Credentials.SAME_ORIGIN,
        signal: AbortSignal | None = None,
    ) -> FetchResponse: ...


class HttpxResponse:
    """``FetchResponse`` over a streamed ``httpx.Response``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return self._response.headers

    @property
    def ok(self) -> bool:
        return self._response.is_success

    async def aread_text(self) -> str:
        try:
            await self._response.aread()
        except httpx.HTTPError as e:
            raise TransportError(str(e), status_code=self.status) from e
        return self._response.text

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            # A broken read ends the exchange as aborted, not failed
            logger.warning("Stream read failed: %s", e)
            raise AbortError(f"Stream read failed: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxFetcher:
    """Default ``Fetcher`` backed by a shared ``httpx.AsyncClient``.

    Use as an async context manager to reuse a single connection pool::

        async with HttpxFetcher() as fetcher:
            session = ChatSession(config, fetcher=fetcher)

    Without the context manager a client is created lazily and closed by
    ``aclose()``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = httpx.Timeout(timeout)

    async def __aenter__(self) -> HttpxFetcher:
        self._get_client()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
        credentials: Credentials = Credentials.SAME_ORIGIN,
        signal: AbortSignal | None = None,
    ) -> HttpxResponse:
        client = self._get_client()
        request = client.build_request(method, url, headers=dict(headers or {}), content=body)
        # Only omit changes anything; same-origin and include both keep cookies
        if credentials is Credentials.OMIT:
            request.headers.pop("cookie", None)
        if signal is not None and signal.aborted:
            raise AbortError(signal.reason or "aborted before send")
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        if signal is not None and signal.aborted:
            await response.aclose()
            raise AbortError(signal.reason or "aborted during send")
        return HttpxResponse(response)


def resume_url(api: str, chat_id: str) -> str:
    """``<api>?chatId=<id>``, keeping any query the endpoint already has."""
    return str(httpx.URL(api).copy_merge_params({"chatId": chat_id}))


async def _next_chunk(iterator: AsyncIterator[bytes], signal: AbortSignal | None) -> bytes | None:
    """Next chunk, or None at end of stream or once *signal* is aborted."""
    if signal is None:
        return await anext(iterator, None)
    if signal.aborted:
        return None
    read = asyncio.ensure_future(anext(iterator, None))
    stop = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not read.done():
            # The pending read must settle before the iterator can be closed
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
    if read.cancelled():
        return None
    return read.result()


@dataclass(slots=True)
class OpenedStream:
    """A successful response, ready for the decoder."""

    protocol: StreamProtocol
    chunks: AsyncIterator[bytes]
    response: FetchResponse


ResponseCallback = Callable[[FetchResponse], "Awaitable[None] | None"]


async def open_stream(
    fetcher: Fetcher,
    url: str,
    *,
    method: str = "POST",
    headers: Mapping[str, str] | None = None,
    body: dict[str, Any] | Any = None,
    credentials: Credentials = Credentials.SAME_ORIGIN,
    protocol: StreamProtocol = StreamProtocol.DATA,
    signal: AbortSignal | None = None,
    on_response: ResponseCallback | None = None,
) -> OpenedStream:
    """Send the request and validate the response.

    Raises:
        TransportError: non-2xx status (message is the body text when there is one).
        EmptyStreamError: a 2xx response with nothing to stream.
    """
    payload = None if body is None else json.dumps(body)
    merged = dict(headers or {})
    if payload is not None:
        merged = {"content-type": "application/json", **merged}
    logger.debug("%s %s", method, url)
    response = await fetcher.fetch(
        url,
        method=method,
        headers=merged,
        body=payload,
        credentials=credentials,
        signal=signal,
    )

    if on_response is not None:
        try:
            outcome = on_response(response)
            if inspect.isawaitable(outcome):
                await outcome
        except BaseException:
            await response.aclose()
            raise

    if not response.ok:
        try:
            text = await response.aread_text()
        finally:
            await response.aclose()
        raise TransportError(text or None, status_code=response.status, body=text)

    iterator = response.aiter_bytes()
    first = b""
    while (chunk := await _next_chunk(iterator, signal)) is not None:
        if chunk:
            first = chunk
            break
    if not first:
        await response.aclose()
        if signal is not None and signal.aborted:
            raise AbortError(signal.reason or "aborted")
        raise EmptyStreamError()

    resolved = protocol
    if DATA_STREAM_HEADER in response.headers:
        resolved = StreamProtocol.DATA

    async def replay() -> AsyncIterator[bytes]:
        try:
            yield first
            while (chunk := await _next_chunk(iterator, signal)) is not None:
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            await response.aclose()

    return OpenedStream(protocol=resolved, chunks=replay(), response=response)
