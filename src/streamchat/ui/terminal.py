"""Rich-powered terminal output."""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from streamchat.types.config import ChatStatus
from streamchat.types.events import FinishInfo, MalformedLine, StreamPart
from streamchat.types.handlers import ChatStateChange, ChatStateKind
from streamchat.types.messages import Message, ToolInvocationState

# ── Palette ──────────────────────────────────────────────────────────────────

STYLE_TOOL_NAME = "bold #a78bfa"      # violet, primary accent
STYLE_TOOL_DETAIL = "#7c7c8a"         # muted grey
STYLE_ERROR_LABEL = "bold #f87171"    # red
STYLE_ERROR_BODY = "#f87171"
STYLE_RESULT_DIM = "dim #7c7c8a"
STYLE_RESULT_LABEL = "bold #94a3b8"   # slate
STYLE_RESULT_VALUE = "#e2e8f0"        # light
STYLE_TOKENS_VALUE = "#34d399"        # green

TOOL_ICON = "▸"
RESULT_ICON = "└"


def _short(value: Any, limit: int = 80) -> str:
    text = json.dumps(value, default=str) if not isinstance(value, str) else value
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


class RichPrinter:
    """Renders session state changes as a live transcript.

    Assistant text goes to stdout as it streams; tool activity, status and
    errors go to stderr.
    """

    def __init__(self, console: Console | None = None, stdout: Console | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._stdout = stdout or Console()
        self._message_id: str | None = None
        self._printed = 0
        self._tools_seen: dict[str, ToolInvocationState] = {}

    def handle(self, change: ChatStateChange) -> None:
        """Subscriber entry point."""
        match change.kind:
            case ChatStateKind.MESSAGES:
                if change.value:
                    self._print_message(change.value[-1])
            case ChatStateKind.ERROR if change.value is not None:
                self.print_error(change.value)
            case ChatStateKind.STATUS if change.value is ChatStatus.READY:
                self._end_line()

    def _print_message(self, message: Message) -> None:
        if message.role != "assistant":
            return
        if message.id != self._message_id:
            self._end_line()
            self._message_id = message.id
            self._printed = 0

        text = message.content
        if len(text) > self._printed:
            self._stdout.print(text[self._printed :], end="", highlight=False, markup=False)
            self._printed = len(text)

        for invocation in message.tool_invocations:
            seen = self._tools_seen.get(invocation.tool_call_id)
            if seen is invocation.state or invocation.state is ToolInvocationState.PARTIAL_CALL:
                continue
            self._tools_seen[invocation.tool_call_id] = invocation.state
            self._end_line()
            if invocation.state is ToolInvocationState.CALL:
                line = Text()
                line.append(f"  {TOOL_ICON} ", style=STYLE_TOOL_NAME)
                line.append(invocation.tool_name, style=STYLE_TOOL_NAME)
                line.append(f"  {_short(invocation.args)}", style=STYLE_TOOL_DETAIL)
                self._console.print(line)
            else:
                self._console.print(
                    Text(f"    {RESULT_ICON} {_short(invocation.result)}", style=STYLE_RESULT_DIM)
                )

    def _end_line(self) -> None:
        if self._printed:
            self._stdout.print()
            self._printed = 0

    def print_finish(self, info: FinishInfo) -> None:
        self._end_line()
        line = Text()
        line.append("  finish ", style=STYLE_RESULT_LABEL)
        line.append(info.finish_reason, style=STYLE_RESULT_VALUE)
        line.append("  tokens ", style=STYLE_RESULT_LABEL)
        line.append(
            f"{info.usage.prompt_tokens:,} + {info.usage.completion_tokens:,} = {info.usage.total_tokens:,}",
            style=STYLE_TOKENS_VALUE,
        )
        self._console.print(line)

    def print_error(self, error: BaseException) -> None:
        self._end_line()
        line = Text()
        line.append("  Error: ", style=STYLE_ERROR_LABEL)
        line.append(str(error), style=STYLE_ERROR_BODY)
        self._console.print(line)


def _event_payload(event: StreamPart) -> str:
    if isinstance(event, MalformedLine):
        return f"{event.error.reason}: {_short(event.line, 60)}"
    if not is_dataclass(event):
        return repr(event)
    values = {f.name: getattr(event, f.name) for f in fields(event)}
    return ", ".join(f"{k}={_short(v, 60)}" for k, v in values.items())


def events_table(events: list[StreamPart]) -> Table:
    """Table of decoded events, one row per event, in arrival order."""
    table = Table(title="Decoded stream", show_lines=False)
    table.add_column("#", justify="right", style=STYLE_RESULT_DIM)
    table.add_column("Event", style=STYLE_TOOL_NAME)
    table.add_column("Payload", style=STYLE_RESULT_VALUE, overflow="fold")
    for index, event in enumerate(events, 1):
        name = type(event).__name__
        style = STYLE_ERROR_LABEL if isinstance(event, MalformedLine) else None
        table.add_row(str(index), Text(name, style=style or STYLE_TOOL_NAME), _event_payload(event))
    return table
