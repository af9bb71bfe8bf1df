"""Protocol decoder: raw response chunks to typed stream events."""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from streamchat.core.abort import AbortSignal
from streamchat.core.errors import DecodeError
from streamchat.protocol.parts import PARTS_BY_CODE, PayloadError
from streamchat.types.config import StreamProtocol
from streamchat.types.events import MalformedLine, StreamPart, TextDelta

logger = logging.getLogger(__name__)


class LineBuffer:
    """Accumulates decoded text and hands out complete lines.

    A line split across reads is held back until its newline arrives.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> list[str]:
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str | None:
        """Return the trailing unterminated line, if any."""
        rest, self._pending = self._pending.rstrip("\r"), ""
        return rest or None


def parse_stream_part(line: str) -> StreamPart:
    """Decode one ``<code>:<json>`` line. Never raises: failures become ``MalformedLine``."""
    code, sep, payload = line.partition(":")
    if not sep:
        return MalformedLine(line, DecodeError("missing ':' separator", line=line))
    part_type = PARTS_BY_CODE.get(code)
    if part_type is None:
        return MalformedLine(line, DecodeError(f"unknown stream part code {code!r}", line=line))
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as e:
        return MalformedLine(line, DecodeError(f"invalid JSON ({e.msg})", line=line))
    try:
        return part_type.build(value)
    except PayloadError as e:
        return MalformedLine(line, DecodeError(f"invalid {part_type.name} payload: {e}", line=line))


async def decode_stream(
    chunks: AsyncIterable[bytes],
    protocol: StreamProtocol = StreamProtocol.DATA,
    signal: AbortSignal | None = None,
) -> AsyncIterator[StreamPart]:
    """Decode a response body into events, in arrival order.

    Stops quietly once *signal* is aborted. The chunk source is closed on
    exit either way.
    """
    utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
    lines = LineBuffer()
    aborted = False
    try:
        async for chunk in chunks:
            if signal is not None and signal.aborted:
                aborted = True
                logger.debug("Decoder stopped by abort signal")
                break
            text = utf8.decode(chunk)
            if protocol is StreamProtocol.TEXT:
                if text:
                    yield TextDelta(text)
                continue
            for line in lines.feed(text):
                if signal is not None and signal.aborted:
                    aborted = True
                    break
                if line:
                    yield parse_stream_part(line)
            if aborted:
                break

        if aborted or (signal is not None and signal.aborted):
            return
        tail = utf8.decode(b"", final=True)
        if protocol is StreamProtocol.TEXT:
            if tail:
                yield TextDelta(tail)
            return
        for line in lines.feed(tail):
            if line:
                yield parse_stream_part(line)
        if (last := lines.flush()) is not None:
            yield parse_stream_part(last)
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
