"""Typed wire events produced by the protocol decoder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from streamchat.core.errors import DecodeError


@dataclass(frozen=True, slots=True)
class Usage:
    """Token usage reported by the completion service."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Usage:
        if not data:
            return cls()
        return cls(
            prompt_tokens=int(data.get("promptTokens") or 0),
            completion_tokens=int(data.get("completionTokens") or 0),
        )


@dataclass(frozen=True, slots=True)
class FinishInfo:
    """Passed to the finish handler alongside the finalized message."""

    finish_reason: str = "unknown"
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True, slots=True)
class RedactedReasoning:
    data: str


@dataclass(frozen=True, slots=True)
class ReasoningSignature:
    signature: str


@dataclass(frozen=True, slots=True)
class SourceEvent:
    source: dict[str, Any]


@dataclass(frozen=True, slots=True)
class FileEvent:
    mime_type: str
    data: str


@dataclass(frozen=True, slots=True)
class DataDelta:
    """Auxiliary values for the session's streaming-data channel."""

    values: list[Any]


@dataclass(frozen=True, slots=True)
class AnnotationsDelta:
    values: list[Any]


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """The server reported a failure in-band."""

    message: str


@dataclass(frozen=True, slots=True)
class ToolCallStreamStart:
    tool_call_id: str
    tool_name: str


@dataclass(frozen=True, slots=True)
class ToolCallArgDelta:
    tool_call_id: str
    args_text_delta: str


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A completed tool call. Also what client-side tool handlers receive."""

    tool_call_id: str
    tool_name: str
    args: Any = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    result: Any = None


@dataclass(frozen=True, slots=True)
class StepStart:
    message_id: str | None = None


@dataclass(frozen=True, slots=True)
class StepFinish:
    finish_reason: str = "unknown"
    usage: Usage = field(default_factory=Usage)
    is_continued: bool = False


@dataclass(frozen=True, slots=True)
class MessageFinish:
    finish_reason: str = "unknown"
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True, slots=True)
class MalformedLine:
    """A line that could not be decoded. Non-fatal: the stream continues."""

    line: str
    error: DecodeError


StreamPart = (
    TextDelta
    | ReasoningDelta
    | RedactedReasoning
    | ReasoningSignature
    | SourceEvent
    | FileEvent
    | DataDelta
    | AnnotationsDelta
    | ErrorEvent
    | ToolCallStreamStart
    | ToolCallArgDelta
    | ToolCall
    | ToolResult
    | StepStart
    | StepFinish
    | MessageFinish
    | MalformedLine
)
