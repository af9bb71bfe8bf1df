"""The tagged-record vocabulary of the data stream protocol.

Each record is one line, ``<code>:<json>``. A ``StreamPartType`` pairs a
one-character code with a part name, a payload validator and the builder
that turns a valid payload into a typed event.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from streamchat.types.events import (
    AnnotationsDelta,
    DataDelta,
    ErrorEvent,
    FileEvent,
    MessageFinish,
    ReasoningDelta,
    ReasoningSignature,
    RedactedReasoning,
    SourceEvent,
    StepFinish,
    StepStart,
    StreamPart,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallStreamStart,
    ToolResult,
    Usage,
)


class PayloadError(ValueError):
    """A record's JSON payload has the wrong shape for its code."""


def _require_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise PayloadError(f"{what} must be a string")
    return value


def _require_object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise PayloadError(f"{what} must be an object")
    return value


def _require_list(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise PayloadError(f"{what} must be an array")
    return value


def _field(obj: dict[str, Any], key: str, name: str) -> str:
    if key not in obj:
        raise PayloadError(f"{name} is missing '{key}'")
    return _require_str(obj[key], f"{name}.{key}")


def _usage(obj: dict[str, Any]) -> Usage:
    usage = obj.get("usage")
    if usage is None:
        return Usage()
    return Usage.from_dict(_require_object(usage, "usage"))


def _tool_call(value: Any) -> ToolCall:
    obj = _require_object(value, "tool_call")
    args = obj.get("args")
    if "args" not in obj or not isinstance(args, dict):
        raise PayloadError("tool_call.args must be an object")
    return ToolCall(
        tool_call_id=_field(obj, "toolCallId", "tool_call"),
        tool_name=_field(obj, "toolName", "tool_call"),
        args=args,
    )


def _tool_result(value: Any) -> ToolResult:
    obj = _require_object(value, "tool_result")
    if "result" not in obj:
        raise PayloadError("tool_result is missing 'result'")
    return ToolResult(tool_call_id=_field(obj, "toolCallId", "tool_result"), result=obj["result"])


def _finish_message(value: Any) -> MessageFinish:
    obj = _require_object(value, "finish_message")
    return MessageFinish(
        finish_reason=_field(obj, "finishReason", "finish_message"),
        usage=_usage(obj),
    )


def _finish_step(value: Any) -> StepFinish:
    obj = _require_object(value, "finish_step")
    continued = obj.get("isContinued", False)
    if not isinstance(continued, bool):
        raise PayloadError("finish_step.isContinued must be a boolean")
    return StepFinish(
        finish_reason=_field(obj, "finishReason", "finish_step"),
        usage=_usage(obj),
        is_continued=continued,
    )


def _file(value: Any) -> FileEvent:
    obj = _require_object(value, "file")
    return FileEvent(mime_type=_field(obj, "mimeType", "file"), data=_field(obj, "data", "file"))


@dataclass(frozen=True, slots=True)
class StreamPartType:
    code: str
    name: str
    build: Callable[[Any], StreamPart]


STREAM_PARTS: tuple[StreamPartType, ...] = (
    StreamPartType("0", "text", lambda v: TextDelta(_require_str(v, "text"))),
    StreamPartType("g", "reasoning", lambda v: ReasoningDelta(_require_str(v, "reasoning"))),
    StreamPartType(
        "i",
        "redacted_reasoning",
        lambda v: RedactedReasoning(_field(_require_object(v, "redacted_reasoning"), "data", "redacted_reasoning")),
    ),
    StreamPartType(
        "j",
        "reasoning_signature",
        lambda v: ReasoningSignature(
            _field(_require_object(v, "reasoning_signature"), "signature", "reasoning_signature")
        ),
    ),
    StreamPartType("h", "source", lambda v: SourceEvent(_require_object(v, "source"))),
    StreamPartType("k", "file", _file),
    StreamPartType("2", "data", lambda v: DataDelta(_require_list(v, "data"))),
    StreamPartType(
        "8", "message_annotations", lambda v: AnnotationsDelta(_require_list(v, "message_annotations"))
    ),
    StreamPartType("3", "error", lambda v: ErrorEvent(_require_str(v, "error"))),
    StreamPartType("9", "tool_call", _tool_call),
    StreamPartType("a", "tool_result", _tool_result),
    StreamPartType(
        "b",
        "tool_call_streaming_start",
        lambda v: ToolCallStreamStart(
            tool_call_id=_field(_require_object(v, "tool_call_streaming_start"), "toolCallId", "tool_call_streaming_start"),
            tool_name=_field(v, "toolName", "tool_call_streaming_start"),
        ),
    ),
    StreamPartType(
        "c",
        "tool_call_delta",
        lambda v: ToolCallArgDelta(
            tool_call_id=_field(_require_object(v, "tool_call_delta"), "toolCallId", "tool_call_delta"),
            args_text_delta=_field(v, "argsTextDelta", "tool_call_delta"),
        ),
    ),
    StreamPartType("d", "finish_message", _finish_message),
    StreamPartType("e", "finish_step", _finish_step),
    StreamPartType(
        "f",
        "start_step",
        lambda v: StepStart(_field(_require_object(v, "start_step"), "messageId", "start_step")),
    ),
)

PARTS_BY_CODE: dict[str, StreamPartType] = {p.code: p for p in STREAM_PARTS}
PARTS_BY_NAME: dict[str, StreamPartType] = {p.name: p for p in STREAM_PARTS}

DATA_STREAM_HEADER = "x-vercel-ai-data-stream"
