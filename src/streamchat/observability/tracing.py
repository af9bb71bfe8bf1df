"""Tracer access and the span context manager."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.propagate import extract, inject

TRACER_NAME = "streamchat"


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """Return the tracer for *name*. A no-op tracer until an SDK is configured."""
    return trace.get_tracer(name)


@contextmanager
def span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """Run the block inside a span. Exceptions are recorded on the span."""
    with get_tracer().start_as_current_span(name, attributes=attributes) as s:
        yield s


def inject_context(carrier: dict[str, str] | None = None) -> dict[str, str]:
    """Inject the current trace context into outgoing request headers."""
    carrier = carrier if carrier is not None else {}
    inject(carrier)
    return carrier


def extract_context(carrier: dict[str, str]) -> Any:
    return extract(carrier)
