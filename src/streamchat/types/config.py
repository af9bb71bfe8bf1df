"""Configuration types for a chat session."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from streamchat.types.messages import Attachment, Message


class StreamProtocol(Enum):
    """How the response body is interpreted."""

    DATA = "data"  # Newline-delimited tagged records
    TEXT = "text"  # Raw text, every chunk is a text delta


class Credentials(Enum):
    """Cookie policy for outgoing requests.

    httpx has no page origin, so ``SAME_ORIGIN`` and ``INCLUDE`` both send
    cookies (the caller's headers plus the client's domain-scoped jar).
    Both values are accepted so browser-style configs load unchanged.
    """

    SAME_ORIGIN = "same-origin"
    INCLUDE = "include"
    OMIT = "omit"  # Strip cookies


class ResubmitPolicy(Enum):
    """Which transcript a deferred tool result is resubmitted with."""

    POST_COMPLETION = "post-completion"  # Transcript as it stands after the exchange
    ORIGINATING_SNAPSHOT = "originating-snapshot"  # Transcript at add_tool_result time


class ChatStatus(Enum):
    """Lifecycle of the session's single exchange slot."""

    READY = "ready"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    ERROR = "error"

    @property
    def is_loading(self) -> bool:
        return self in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)


def generate_id() -> str:
    """Default id generator: 16 hex characters."""
    return uuid.uuid4().hex[:16]


PrepareRequestBody = Callable[["ChatRequest"], Any]


@dataclass(slots=True)
class ChatConfig:
    """Per-session configuration. Fixed for the session's lifetime."""

    api: str = "/api/chat"
    chat_id: str | None = None
    stream_protocol: StreamProtocol = StreamProtocol.DATA
    credentials: Credentials = Credentials.SAME_ORIGIN
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    max_steps: int = 1
    send_extra_message_fields: bool = False
    keep_last_message_on_error: bool = True
    resubmit_policy: ResubmitPolicy = ResubmitPolicy.POST_COMPLETION
    prepare_request_body: PrepareRequestBody | None = None
    generate_id: Callable[[], str] = generate_id
    timeout: float | None = None  # Seconds; None waits forever

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")
        if isinstance(self.stream_protocol, str):
            self.stream_protocol = StreamProtocol(self.stream_protocol)
        if isinstance(self.credentials, str):
            self.credentials = Credentials(self.credentials)
        if isinstance(self.resubmit_policy, str):
            self.resubmit_policy = ResubmitPolicy(self.resubmit_policy)


@dataclass(slots=True)
class ChatRequestOptions:
    """Per-call overrides for append, reload and resume."""

    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    data: Any = None
    attachments: list[Attachment] | None = None
    allow_empty_submit: bool = False


@dataclass(slots=True)
class ChatRequest:
    """Everything one exchange sends. Also what ``prepare_request_body`` receives."""

    chat_id: str
    messages: list[Message]
    request_data: Any = None
    request_body: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
