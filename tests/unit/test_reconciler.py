"""Tests for streamchat.core.reconciler: folding events into the transcript."""

from __future__ import annotations

import itertools

import pytest

from streamchat.core.errors import DecodeError, StreamError
from streamchat.core.reconciler import TranscriptReconciler
from streamchat.types.events import (
    AnnotationsDelta,
    DataDelta,
    ErrorEvent,
    MalformedLine,
    MessageFinish,
    ReasoningDelta,
    ReasoningSignature,
    RedactedReasoning,
    SourceEvent,
    StepFinish,
    StepStart,
    TextDelta,
    ToolCall,
    ToolCallArgDelta,
    ToolCallStreamStart,
    ToolResult,
    Usage,
)
from streamchat.types.messages import (
    DataPart,
    Message,
    ReasoningPart,
    SourcePart,
    StepStartPart,
    TextPart,
    ToolInvocation,
    ToolInvocationPart,
    ToolInvocationState,
    is_assistant_message_with_completed_tool_calls,
)


def _ids():
    counter = itertools.count(1)
    return lambda: f"gen-{next(counter)}"


def _user(text: str = "hi") -> Message:
    return Message(id="u1", role="user", parts=[TextPart(text)])


def _reconciler(baseline=None, **kwargs) -> TranscriptReconciler:
    return TranscriptReconciler(baseline if baseline is not None else [_user()], generate_id=_ids(), **kwargs)


class TestTextAndParts:
    def test_message_created_lazily(self):
        rec = _reconciler()
        assert rec.snapshot() == [_user()]
        assert rec.message is None
        rec.apply(TextDelta("Hello"))
        assert rec.message is not None
        assert rec.message.role == "assistant"

    def test_adjacent_text_coalesces(self):
        rec = _reconciler()
        for piece in ("Hello", ",", " world", "."):
            snapshot = rec.apply(TextDelta(piece))
        assert len(snapshot) == 2
        assert snapshot[-1].parts == [TextPart("Hello, world.")]

    def test_text_after_tool_call_opens_new_part(self):
        rec = _reconciler()
        rec.apply(TextDelta("a"))
        rec.apply(ToolCall("t1", "w", {}))
        snapshot = rec.apply(TextDelta("b"))
        kinds = [type(p).__name__ for p in snapshot[-1].parts]
        assert kinds == ["TextPart", "ToolInvocationPart", "TextPart"]

    def test_step_finish_closes_text_part(self):
        rec = _reconciler()
        rec.apply(TextDelta("a"))
        rec.apply(StepFinish("stop"))
        rec.apply(StepStart("m"))
        snapshot = rec.apply(TextDelta("b"))
        assert [p for p in snapshot[-1].parts if isinstance(p, TextPart)] == [TextPart("a"), TextPart("b")]

    def test_continued_step_keeps_text_part(self):
        rec = _reconciler()
        rec.apply(TextDelta("a"))
        rec.apply(StepFinish("length", is_continued=True))
        rec.apply(StepStart("m"))
        snapshot = rec.apply(TextDelta("b"))
        assert [p for p in snapshot[-1].parts if isinstance(p, TextPart)] == [TextPart("ab")]

    def test_reasoning_details(self):
        rec = _reconciler()
        rec.apply(ReasoningDelta("think"))
        rec.apply(ReasoningDelta("ing"))
        rec.apply(ReasoningSignature("sig"))
        snapshot = rec.apply(RedactedReasoning("xxx"))
        part = snapshot[-1].parts[0]
        assert isinstance(part, ReasoningPart)
        assert part.reasoning == "thinking"
        assert part.details == [
            {"type": "text", "text": "thinking", "signature": "sig"},
            {"type": "redacted", "data": "xxx"},
        ]

    def test_sources_and_annotations(self):
        rec = _reconciler()
        rec.apply(SourceEvent({"url": "https://example.com"}))
        snapshot = rec.apply(AnnotationsDelta([{"k": 1}, {"k": 2}]))
        parts = snapshot[-1].parts
        assert isinstance(parts[0], SourcePart)
        assert snapshot[-1].annotations == [{"k": 1}, {"k": 2}]
        assert all(isinstance(p, DataPart) for p in parts[1:])

    def test_annotation_does_not_split_text(self):
        rec = _reconciler()
        rec.apply(TextDelta("Hello, "))
        rec.apply(AnnotationsDelta([{"k": 1}]))
        snapshot = rec.apply(TextDelta("world."))
        kinds = [type(p).__name__ for p in snapshot[-1].parts]
        assert kinds == ["TextPart", "DataPart"]
        assert snapshot[-1].parts[0] == TextPart("Hello, world.")
        assert snapshot[-1].annotations == [{"k": 1}]

    def test_snapshots_are_isolated(self):
        rec = _reconciler()
        first = rec.apply(TextDelta("a"))
        rec.apply(TextDelta("b"))
        assert first[-1].content == "a"


class TestSteps:
    def test_first_step_adopts_server_id(self):
        rec = _reconciler()
        snapshot = rec.apply(StepStart("msg-server"))
        assert snapshot[-1].id == "msg-server"
        assert snapshot[-1].parts == [StepStartPart()]

    def test_later_steps_keep_id(self):
        rec = _reconciler()
        rec.apply(StepStart("msg-1"))
        rec.apply(StepFinish("tool-calls"))
        snapshot = rec.apply(StepStart("msg-2"))
        assert snapshot[-1].id == "msg-1"

    def test_step_counter_tags_invocations(self):
        rec = _reconciler()
        rec.apply(ToolCall("t1", "w", {}))
        rec.apply(StepFinish("tool-calls"))
        snapshot = rec.apply(ToolCall("t2", "w", {}))
        assert [inv.step for inv in snapshot[-1].tool_invocations] == [0, 1]


class TestToolInvocations:
    def test_streaming_call_lifecycle(self):
        calls = []
        rec = _reconciler(on_tool_call=calls.append)
        rec.apply(ToolCallStreamStart("t1", "weather"))
        rec.apply(ToolCallArgDelta("t1", '{"city":'))
        snapshot = rec.apply(ToolCallArgDelta("t1", '"Oslo"}'))
        inv = snapshot[-1].tool_invocations[0]
        assert inv.state is ToolInvocationState.PARTIAL_CALL
        assert inv.partial_args == {"city": "Oslo"}
        assert calls == []

        snapshot = rec.apply(ToolCall("t1", "weather", {"city": "Oslo"}))
        inv = snapshot[-1].tool_invocations[0]
        assert inv.state is ToolInvocationState.CALL
        assert inv.args == {"city": "Oslo"}
        assert calls == [ToolCall("t1", "weather", {"city": "Oslo"})]

        snapshot = rec.apply(ToolResult("t1", {"temp": 3}))
        inv = snapshot[-1].tool_invocations[0]
        assert inv.state is ToolInvocationState.RESULT
        assert inv.result == {"temp": 3}

    def test_repeated_stream_start_ignored(self, caplog):
        rec = _reconciler()
        rec.apply(ToolCallStreamStart("t1", "weather"))
        rec.apply(ToolCallArgDelta("t1", '{"city":"Oslo"}'))
        rec.apply(ToolCallStreamStart("t1", "weather"))
        rec.apply(ToolCall("t1", "weather", {"city": "Oslo"}))
        snapshot = rec.apply(ToolResult("t1", {"temp": 3}))
        assert len(snapshot[-1].tool_invocations) == 1
        assert is_assistant_message_with_completed_tool_calls(snapshot[-1])
        assert "Duplicate tool call stream start t1" in caplog.text

    def test_result_never_regresses(self):
        rec = _reconciler()
        rec.apply(ToolCall("t1", "w", {}))
        rec.apply(ToolResult("t1", 1))
        snapshot = rec.apply(ToolCall("t1", "w", {"again": True}))
        inv = snapshot[-1].tool_invocations[0]
        assert inv.state is ToolInvocationState.RESULT
        assert inv.args == {}

    def test_result_for_baseline_message(self):
        earlier = Message(
            id="a0",
            role="assistant",
            parts=[ToolInvocationPart(ToolInvocation("t0", "w", ToolInvocationState.CALL, args={}))],
        )
        baseline = [_user(), earlier]
        rec = _reconciler(baseline)
        snapshot = rec.apply(ToolResult("t0", "ok"))
        assert snapshot[1].tool_invocations[0].state is ToolInvocationState.RESULT
        # The caller's message object is untouched
        assert earlier.tool_invocations[0].state is ToolInvocationState.CALL

    def test_unknown_result_ignored(self, caplog):
        rec = _reconciler()
        snapshot = rec.apply(ToolResult("nope", 1))
        assert snapshot == [_user()]
        assert "nope" in caplog.text

    def test_commit_tool_result_is_idempotent(self):
        rec = _reconciler()
        rec.apply(ToolCall("t1", "w", {}))
        assert rec.commit_tool_result("t1", "first") is not None
        assert rec.commit_tool_result("t1", "second") is None
        assert rec.message.tool_invocations[0].result == "first"


class TestFinishAndErrors:
    def test_finish_callback_fires_on_close(self):
        finished = []
        rec = _reconciler(on_finish=lambda msg, info: finished.append((msg, info)))
        rec.apply(TextDelta("hi"))
        rec.apply(MessageFinish("stop", Usage(2, 3)))
        assert finished == []
        rec.close()
        rec.close()
        assert len(finished) == 1
        message, info = finished[0]
        assert message.content == "hi"
        assert info.finish_reason == "stop"
        assert info.usage.total_tokens == 5

    def test_close_without_finish_reports_unknown(self):
        finished = []
        rec = _reconciler(on_finish=lambda msg, info: finished.append(info))
        rec.apply(TextDelta("hi"))
        rec.close()
        assert finished[0].finish_reason == "unknown"

    def test_content_after_finish_ignored(self, caplog):
        rec = _reconciler()
        rec.apply(TextDelta("a"))
        rec.apply(MessageFinish("stop"))
        snapshot = rec.apply(TextDelta("late"))
        assert snapshot[-1].content == "a"
        assert "after message finish" in caplog.text

    def test_error_event_raises(self):
        rec = _reconciler()
        with pytest.raises(StreamError, match="custom error message"):
            rec.apply(ErrorEvent("custom error message"))

    def test_malformed_line_logged(self, caplog):
        rec = _reconciler()
        snapshot = rec.apply(MalformedLine("x", DecodeError("missing ':' separator", line="x")))
        assert snapshot == [_user()]
        assert "malformed" in caplog.text

    def test_data_goes_to_channel(self):
        received = []
        rec = _reconciler(on_data=received.append)
        snapshot = rec.apply(DataDelta([1, 2]))
        assert received == [[1, 2]]
        assert snapshot == [_user()]


class TestReplaceLast:
    def test_continues_existing_message(self):
        partial = Message(id="a1", role="assistant", parts=[TextPart("Hel")])
        rec = _reconciler([_user(), partial], replace_last=True)
        snapshot = rec.apply(TextDelta("lo"))
        assert len(snapshot) == 2
        assert snapshot[-1].id == "a1"
        assert snapshot[-1].content == "Hello"

    def test_step_seeded_from_last_tool_step(self):
        partial = Message(
            id="a1",
            role="assistant",
            parts=[ToolInvocationPart(ToolInvocation("t1", "w", ToolInvocationState.RESULT, step=2))],
        )
        rec = _reconciler([_user(), partial], replace_last=True)
        snapshot = rec.apply(ToolCall("t2", "w", {}))
        assert snapshot[-1].tool_invocations[-1].step == 3

    def test_does_not_adopt_server_id(self):
        partial = Message(id="a1", role="assistant", parts=[TextPart("x")])
        rec = _reconciler([_user(), partial], replace_last=True)
        snapshot = rec.apply(StepStart("other"))
        assert snapshot[-1].id == "a1"
