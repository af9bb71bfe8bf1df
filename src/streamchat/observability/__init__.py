"""OpenTelemetry-based observability for streamchat."""

from streamchat.observability.metrics import (
    Stopwatch,
    record_exchange,
    record_first_event,
    record_tokens,
    record_tool_call,
)
from streamchat.observability.tracing import extract_context, get_tracer, inject_context, span

__all__ = [
    "Stopwatch",
    "extract_context",
    "get_tracer",
    "inject_context",
    "record_exchange",
    "record_first_event",
    "record_tokens",
    "record_tool_call",
    "span",
]
