"""Protocol encoder: the inverse of the decoder, for test servers and tooling."""

from __future__ import annotations

import json
from typing import Any

from streamchat.protocol.parts import PARTS_BY_NAME
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


def format_stream_part(kind: str, value: Any) -> str:
    """Render one ``<code>:<json>\\n`` line for the part named *kind*."""
    part_type = PARTS_BY_NAME.get(kind)
    if part_type is None:
        raise ValueError(f"Unknown stream part kind: {kind!r}")
    return f"{part_type.code}:{json.dumps(value, separators=(',', ':'))}\n"


def _usage(usage: Usage) -> dict[str, int]:
    return {"promptTokens": usage.prompt_tokens, "completionTokens": usage.completion_tokens}


def encode_event(event: StreamPart) -> str:
    """Render a typed event back to its wire line."""
    match event:
        case TextDelta(text=t):
            return format_stream_part("text", t)
        case ReasoningDelta(text=t):
            return format_stream_part("reasoning", t)
        case RedactedReasoning(data=d):
            return format_stream_part("redacted_reasoning", {"data": d})
        case ReasoningSignature(signature=s):
            return format_stream_part("reasoning_signature", {"signature": s})
        case SourceEvent(source=s):
            return format_stream_part("source", s)
        case FileEvent(mime_type=m, data=d):
            return format_stream_part("file", {"mimeType": m, "data": d})
        case DataDelta(values=v):
            return format_stream_part("data", v)
        case AnnotationsDelta(values=v):
            return format_stream_part("message_annotations", v)
        case ErrorEvent(message=m):
            return format_stream_part("error", m)
        case ToolCallStreamStart(tool_call_id=i, tool_name=n):
            return format_stream_part("tool_call_streaming_start", {"toolCallId": i, "toolName": n})
        case ToolCallArgDelta(tool_call_id=i, args_text_delta=d):
            return format_stream_part("tool_call_delta", {"toolCallId": i, "argsTextDelta": d})
        case ToolCall(tool_call_id=i, tool_name=n, args=a):
            return format_stream_part("tool_call", {"toolCallId": i, "toolName": n, "args": a})
        case ToolResult(tool_call_id=i, result=r):
            return format_stream_part("tool_result", {"toolCallId": i, "result": r})
        case StepStart(message_id=m):
            return format_stream_part("start_step", {"messageId": m})
        case StepFinish(finish_reason=r, usage=u, is_continued=c):
            return format_stream_part(
                "finish_step", {"finishReason": r, "usage": _usage(u), "isContinued": c}
            )
        case MessageFinish(finish_reason=r, usage=u):
            return format_stream_part("finish_message", {"finishReason": r, "usage": _usage(u)})
    raise ValueError(f"Cannot encode {type(event).__name__}")
