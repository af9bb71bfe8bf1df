"""Metrics recording: counters and histograms for chat exchanges."""

from __future__ import annotations

import time
from typing import Any

from opentelemetry import metrics

# Lazily-created instruments
_meter: Any = None
_exchange_counter: Any = None
_token_counter: Any = None
_tool_call_counter: Any = None
_first_event_histogram: Any = None


def _ensure_instruments() -> None:
    """Create meter and instruments on first use."""
    global _meter, _exchange_counter, _token_counter, _tool_call_counter
    global _first_event_histogram

    if _meter is not None:
        return

    _meter = metrics.get_meter("streamchat")
    _exchange_counter = _meter.create_counter(
        "streamchat.exchanges",
        description="Chat exchanges by outcome",
    )
    _token_counter = _meter.create_counter(
        "streamchat.tokens",
        description="Tokens reported by finish events",
        unit="tokens",
    )
    _tool_call_counter = _meter.create_counter(
        "streamchat.tool_calls",
        description="Tool calls received from the stream",
    )
    _first_event_histogram = _meter.create_histogram(
        "streamchat.time_to_first_event",
        description="Latency from request to first decoded event",
        unit="ms",
    )


def record_exchange(outcome: str, *, method: str = "POST") -> None:
    """Record a finished exchange; outcome is ok, error or aborted."""
    _ensure_instruments()
    _exchange_counter.add(1, {"outcome": outcome, "method": method})


def record_tokens(prompt_tokens: int = 0, completion_tokens: int = 0) -> None:
    _ensure_instruments()
    _token_counter.add(prompt_tokens, {"direction": "prompt"})
    _token_counter.add(completion_tokens, {"direction": "completion"})


def record_tool_call(tool_name: str, *, client_side: bool = False) -> None:
    _ensure_instruments()
    _tool_call_counter.add(1, {"tool": tool_name, "client_side": str(client_side).lower()})


def record_first_event(latency_ms: float, *, protocol: str = "") -> None:
    _ensure_instruments()
    _first_event_histogram.record(latency_ms, {"protocol": protocol})


class Stopwatch:
    """Wall-clock timer started on creation."""

    def __init__(self) -> None:
        self._start = time.monotonic()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._start) * 1000


def reset_instruments() -> None:
    """Reset module-level instruments between tests."""
    global _meter, _exchange_counter, _token_counter, _tool_call_counter
    global _first_event_histogram
    _meter = None
    _exchange_counter = None
    _token_counter = None
    _tool_call_counter = None
    _first_event_histogram = None
