"""Test fixtures including ScriptedFetcher for deterministic exchanges."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from streamchat.core.abort import AbortSignal
from streamchat.core.transport import HttpxFetcher
from streamchat.protocol.encoder import format_stream_part
from streamchat.protocol.parts import DATA_STREAM_HEADER
from streamchat.types.config import Credentials

_END = object()


class ControlledStream:
    """A response body fed by the test while the session consumes it.

    Usage:
        stream = ControlledStream()
        task = asyncio.create_task(session.append("hi"))
        stream.push('0:"Hello"\\n')
        stream.close()
        await task
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, chunk: str | bytes) -> None:
        self._queue.put_nowait(chunk.encode() if isinstance(chunk, str) else chunk)

    def close(self) -> None:
        self._queue.put_nowait(_END)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while (chunk := await self._queue.get()) is not _END:
            yield chunk


@dataclass
class ScriptedResponse:
    """One scripted reply. Give either fixed ``chunks`` or a live ``stream``."""

    chunks: list[str | bytes] = field(default_factory=list)
    status: int = 200
    headers: dict[str, str] = field(default_factory=lambda: {DATA_STREAM_HEADER: "v1"})
    stream: ControlledStream | None = None
    body_text: str | None = None


class FakeResponse:
    def __init__(self, scripted: ScriptedResponse) -> None:
        self._scripted = scripted
        self.closed = False

    @property
    def status(self) -> int:
        return self._scripted.status

    @property
    def headers(self) -> Mapping[str, str]:
        return self._scripted.headers

    @property
    def ok(self) -> bool:
        return 200 <= self._scripted.status < 300

    async def aread_text(self) -> str:
        if self._scripted.body_text is not None:
            return self._scripted.body_text
        return "".join(c.decode() if isinstance(c, bytes) else c for c in self._scripted.chunks)

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        if self._scripted.stream is not None:
            async for chunk in self._scripted.stream:
                yield chunk
            return
        for chunk in self._scripted.chunks:
            yield chunk.encode() if isinstance(chunk, str) else chunk

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class RecordedRequest:
    url: str
    method: str
    headers: dict[str, str]
    body: Any
    credentials: Credentials


class ScriptedFetcher:
    """A deterministic fetcher for testing.

    Usage:
        fetcher = ScriptedFetcher([
            ScriptedResponse(chunks=['0:"Hello"\\n', 'd:{"finishReason":"stop"}\\n']),
            ScriptedResponse(status=404, body_text="Not found"),
        ])
    """

    def __init__(self, responses: list[ScriptedResponse] | None = None) -> None:
        self._responses = list(responses or [])
        self.requests: list[RecordedRequest] = []
        self.responses: list[FakeResponse] = []

    def add(self, response: ScriptedResponse) -> None:
        self._responses.append(response)

    async def fetch(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
        credentials: Credentials = Credentials.SAME_ORIGIN,
        signal: AbortSignal | None = None,
    ) -> FakeResponse:
        self.requests.append(
            RecordedRequest(
                url=url,
                method=method,
                headers=dict(headers or {}),
                body=json.loads(body) if body else None,
                credentials=credentials,
            )
        )
        if not self._responses:
            raise AssertionError(f"No scripted response left for {method} {url}")
        response = FakeResponse(self._responses.pop(0))
        self.responses.append(response)
        return response


def line(kind: str, value: Any) -> str:
    """One encoded stream record, e.g. ``line("text", "Hi")`` -> ``0:"Hi"\\n``."""
    return format_stream_part(kind, value)


def finish(reason: str = "stop", prompt: int = 1, completion: int = 2) -> str:
    return line(
        "finish_message",
        {"finishReason": reason, "usage": {"promptTokens": prompt, "completionTokens": completion}},
    )


def tool_call(call_id: str, name: str, args: dict[str, Any]) -> str:
    return line("tool_call", {"toolCallId": call_id, "toolName": name, "args": args})


def tool_result(call_id: str, result: Any) -> str:
    return line("tool_result", {"toolCallId": call_id, "result": result})


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fetcher() -> ScriptedFetcher:
    return ScriptedFetcher()


@pytest.fixture
def http_clients(monkeypatch) -> list[httpx.AsyncClient]:
    """Make sessions that build their own fetcher talk to a mock transport.

    Every client created is recorded so tests can check it was closed. The
    mock endpoint always answers ``Hello`` followed by a finish record.
    """
    clients: list[httpx.AsyncClient] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = (line("text", "Hello") + finish()).encode()
        return httpx.Response(200, headers={DATA_STREAM_HEADER: "v1"}, content=body)

    class _MockHttpxFetcher(HttpxFetcher):
        def _get_client(self) -> httpx.AsyncClient:
            if self._client is None:
                self._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
                clients.append(self._client)
            return self._client

    monkeypatch.setattr("streamchat.core.session.HttpxFetcher", _MockHttpxFetcher)
    return clients
