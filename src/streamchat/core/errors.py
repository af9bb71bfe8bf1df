"""Exception hierarchy for chat exchanges.

One exception per failure mode. ``AbortError`` deliberately sits outside
``ChatError``: cancellation is not a failure.
"""

from __future__ import annotations

DEFAULT_TRANSPORT_MESSAGE = "Failed to fetch the chat response."


class ChatError(Exception):
    """Base exception for everything an exchange can fail with."""

    @property
    def message(self) -> str:
        return str(self)


class TransportError(ChatError):
    """Non-2xx status or network failure while talking to the chat API."""

    def __init__(
        self,
        message: str = DEFAULT_TRANSPORT_MESSAGE,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message or DEFAULT_TRANSPORT_MESSAGE)


class EmptyStreamError(ChatError):
    """The response succeeded but carried no body to stream."""

    def __init__(self, message: str = "The response body is empty."):
        super().__init__(message)


class DecodeError(ChatError):
    """A single stream line could not be decoded. Logged, never raised mid-stream."""

    def __init__(self, reason: str, *, line: str = ""):
        self.reason = reason
        self.line = line
        super().__init__(f"{reason}: {line[:200]!r}" if line else reason)


class StreamError(ChatError):
    """The server reported an error inside the stream."""


class ToolExecutionError(ChatError):
    """A client-side tool handler raised."""

    def __init__(self, tool_call_id: str, tool_name: str, reason: str):
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Tool '{tool_name}' ({tool_call_id}) failed: {reason}")


class AbortError(Exception):
    """The exchange was cancelled cooperatively."""

    def __init__(self, reason: str = "The exchange was aborted."):
        super().__init__(reason)
