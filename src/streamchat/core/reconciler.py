"""Transcript reconciler: folds decoded events into the message list.

One reconciler serves one exchange. It owns the assistant message being
built and hands out snapshots (``baseline + [message]``) after every
event. Snapshots carry copies, so a snapshot already published is never
mutated by later events.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from streamchat.core.errors import StreamError
from streamchat.types.config import generate_id as default_generate_id
from streamchat.types.events import (
    AnnotationsDelta,
    DataDelta,
    ErrorEvent,
    FileEvent,
    FinishInfo,
    MalformedLine,
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
)
from streamchat.types.messages import (
    DataPart,
    FilePart,
    Message,
    ReasoningPart,
    SourcePart,
    StepStartPart,
    TextPart,
    ToolInvocation,
    ToolInvocationPart,
    ToolInvocationState,
    last_tool_step,
    tool_invocations_of,
)

logger = logging.getLogger(__name__)

FinishCallback = Callable[[Message, FinishInfo], None]
ToolCallCallback = Callable[[ToolCall], None]
DataCallback = Callable[[list[Any]], None]


def _find_invocation(message: Message, tool_call_id: str) -> ToolInvocation | None:
    for invocation in reversed(tool_invocations_of(message)):
        if invocation.tool_call_id == tool_call_id:
            return invocation
    return None


def _resolve(invocation: ToolInvocation, result: Any) -> bool:
    if invocation.state is ToolInvocationState.RESULT:
        return False
    invocation.result = result
    invocation.advance(ToolInvocationState.RESULT)
    return True


class TranscriptReconciler:
    """Applies stream events to a transcript in arrival order.

    Parameters
    ----------
    baseline:
        The transcript before this exchange.
    replace_last:
        Continue the baseline's last message instead of appending a new one.
        Used when resuming into an existing assistant message.
    on_finish:
        Called once, with a copy of the finalized message.
    on_tool_call:
        Called when an invocation reaches ``call``.
    on_data:
        Receives the values of each streaming-data record.
    """

    def __init__(
        self,
        baseline: list[Message],
        *,
        replace_last: bool = False,
        generate_id: Callable[[], str] = default_generate_id,
        on_finish: FinishCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_data: DataCallback | None = None,
    ) -> None:
        self._generate_id = generate_id
        self._on_finish = on_finish
        self._on_tool_call = on_tool_call
        self._on_data = on_data
        self.replace_last = replace_last and bool(baseline)

        self._baseline = list(baseline)
        self._message: Message | None = None
        self._step = 0
        if self.replace_last:
            self._message = self._baseline.pop().copy()
            self._step = 1 + (last_tool_step(self._message) or 0)

        self._text: TextPart | None = None
        self._reasoning: ReasoningPart | None = None
        self.finish_info: FinishInfo | None = None
        self.received_content = False
        self._closed = False

    @property
    def finished(self) -> bool:
        return self.finish_info is not None

    @property
    def message(self) -> Message | None:
        """The assistant message being built, if any content has arrived."""
        return self._message

    def snapshot(self) -> list[Message]:
        messages = list(self._baseline)
        if self._message is not None:
            messages.append(self._message.copy())
        return messages

    # -- Event application ------------------------------------------------

    def apply(self, event: StreamPart) -> list[Message]:
        """Fold one event into the transcript and return the new snapshot.

        Raises:
            StreamError: the server reported an error in-band.
        """
        match event:
            case MalformedLine(error=error):
                logger.warning("Skipping malformed stream line: %s", error)
                return self.snapshot()
            case ErrorEvent(message=msg):
                raise StreamError(msg)
            case DataDelta(values=values):
                if self._on_data is not None:
                    self._on_data(list(values))
                return self.snapshot()

        if self.finished:
            logger.warning("Ignoring %s received after message finish", type(event).__name__)
            return self.snapshot()

        self.received_content = True
        match event:
            case TextDelta(text=text):
                self._append_text(text)
            case ReasoningDelta(text=text):
                self._append_reasoning(text)
            case RedactedReasoning(data=data):
                self._reasoning_part().details.append({"type": "redacted", "data": data})
            case ReasoningSignature(signature=signature):
                self._sign_reasoning(signature)
            case SourceEvent(source=source):
                self._add_part(SourcePart(source=dict(source)))
            case FileEvent(mime_type=mime_type, data=data):
                self._add_part(FilePart(mime_type=mime_type, data=data))
            case AnnotationsDelta(values=values):
                message = self._ensure_message()
                message.parts.extend(DataPart(data=v) for v in values)
            case ToolCallStreamStart(tool_call_id=call_id, tool_name=name):
                self._start_tool_call(call_id, name)
            case ToolCallArgDelta(tool_call_id=call_id, args_text_delta=delta):
                self._append_tool_args(call_id, delta)
            case ToolCall():
                self._complete_tool_call(event)
            case ToolResult(tool_call_id=call_id, result=result):
                if not self._apply_result(call_id, result):
                    logger.warning("Tool result for unknown or resolved call %s ignored", call_id)
            case StepStart(message_id=message_id):
                self._start_step(message_id)
            case StepFinish(is_continued=continued):
                self._step += 1
                self._reasoning = None
                if not continued:
                    self._text = None
            case MessageFinish(finish_reason=reason, usage=usage):
                self.finish_info = FinishInfo(finish_reason=reason, usage=usage)
            case _:
                logger.warning("Unhandled stream event %r", event)
        return self.snapshot()

    def close(self) -> list[Message]:
        """End of stream: fire the finish callback exactly once.

        Without a finish record the reason is reported as ``unknown``.
        """
        if self._closed:
            return self.snapshot()
        self._closed = True
        if self.finish_info is None:
            self.finish_info = FinishInfo()
        self._notify_finish(self.finish_info)
        return self.snapshot()

    def commit_tool_result(self, tool_call_id: str, result: Any) -> list[Message] | None:
        """Resolve an invocation after the fact, even once finished.

        Returns None when nothing changed (unknown id or already resolved).
        """
        if not self._apply_result(tool_call_id, result):
            return None
        return self.snapshot()

    # -- Helpers ----------------------------------------------------------

    def _new_message(self) -> Message:
        return Message(
            id=self._generate_id(),
            role="assistant",
            created_at=datetime.now(UTC),
        )

    def _ensure_message(self) -> Message:
        if self._message is None:
            self._message = self._new_message()
        return self._message

    def _add_part(self, part: Any) -> None:
        self._ensure_message().parts.append(part)

    def _trailing(self, part: Any) -> bool:
        """True when only step boundaries and annotations follow *part*."""
        if part is None or self._message is None:
            return False
        for candidate in reversed(self._message.parts):
            if candidate is part:
                return True
            if not isinstance(candidate, (StepStartPart, DataPart)):
                return False
        return False

    def _append_text(self, text: str) -> None:
        if self._trailing(self._text):
            self._text.text += text
            return
        self._text = TextPart(text=text)
        self._add_part(self._text)

    def _reasoning_part(self) -> ReasoningPart:
        if not self._trailing(self._reasoning):
            self._reasoning = ReasoningPart()
            self._add_part(self._reasoning)
        return self._reasoning

    def _append_reasoning(self, text: str) -> None:
        part = self._reasoning_part()
        part.reasoning += text
        if part.details and part.details[-1].get("type") == "text":
            part.details[-1]["text"] += text
        else:
            part.details.append({"type": "text", "text": text})

    def _sign_reasoning(self, signature: str) -> None:
        part = self._reasoning_part()
        if part.details and part.details[-1].get("type") == "text":
            part.details[-1]["signature"] = signature
        else:
            logger.warning("Reasoning signature without reasoning text ignored")

    def _start_step(self, message_id: str | None) -> None:
        message = self._ensure_message()
        first_step = not any(isinstance(p, StepStartPart) for p in message.parts)
        if message_id and not self.replace_last and first_step:
            message.id = message_id
        message.parts.append(StepStartPart())

    def _start_tool_call(self, call_id: str, name: str) -> None:
        if self._message is not None and _find_invocation(self._message, call_id) is not None:
            logger.warning("Duplicate tool call stream start %s ignored", call_id)
            return
        invocation = ToolInvocation(
            tool_call_id=call_id,
            tool_name=name,
            state=ToolInvocationState.PARTIAL_CALL,
            step=self._step,
        )
        self._add_part(ToolInvocationPart(invocation))

    def _append_tool_args(self, call_id: str, delta: str) -> None:
        invocation = _find_invocation(self._message, call_id) if self._message else None
        if invocation is None or invocation.state is not ToolInvocationState.PARTIAL_CALL:
            logger.warning("Argument delta for unknown or completed call %s ignored", call_id)
            return
        invocation.args_text += delta

    def _complete_tool_call(self, call: ToolCall) -> None:
        invocation = _find_invocation(self._message, call.tool_call_id) if self._message else None
        if invocation is None:
            invocation = ToolInvocation(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                state=ToolInvocationState.CALL,
                args=call.args,
                step=self._step,
            )
            self._add_part(ToolInvocationPart(invocation))
        elif invocation.state is ToolInvocationState.PARTIAL_CALL:
            invocation.advance(ToolInvocationState.CALL)
            invocation.tool_name = call.tool_name
            invocation.args = call.args
        else:
            logger.warning("Duplicate tool call %s ignored", call.tool_call_id)
            return
        if self._on_tool_call is not None:
            self._on_tool_call(call)

    def _apply_result(self, call_id: str, result: Any) -> bool:
        if self._message is not None:
            invocation = _find_invocation(self._message, call_id)
            if invocation is not None:
                return _resolve(invocation, result)
        for index in range(len(self._baseline) - 1, -1, -1):
            if _find_invocation(self._baseline[index], call_id) is None:
                continue
            updated = self._baseline[index].copy()
            if not _resolve(_find_invocation(updated, call_id), result):
                return False
            self._baseline[index] = updated
            return True
        return False

    def _notify_finish(self, info: FinishInfo) -> None:
        if self._on_finish is not None:
            message = self._message if self._message is not None else self._new_message()
            self._on_finish(message.copy(), info)
