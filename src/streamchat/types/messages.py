"""Transcript types: messages, their ordered parts, and attachments."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar


class ToolInvocationState(Enum):
    """Lifecycle of a tool invocation. Only ever moves forward."""

    PARTIAL_CALL = "partial-call"
    CALL = "call"
    RESULT = "result"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = (
    ToolInvocationState.PARTIAL_CALL,
    ToolInvocationState.CALL,
    ToolInvocationState.RESULT,
)


@dataclass(slots=True)
class ToolInvocation:
    """A tool call requested by the assistant, possibly with its result."""

    tool_call_id: str
    tool_name: str
    state: ToolInvocationState = ToolInvocationState.PARTIAL_CALL
    args: Any = None
    result: Any = None
    step: int = 0
    args_text: str = ""  # raw argument text streamed during partial-call

    def advance(self, state: ToolInvocationState) -> bool:
        """Move to *state*; returns False (and changes nothing) on regression."""
        if state.rank < self.state.rank:
            return False
        self.state = state
        return True

    @property
    def partial_args(self) -> Any:
        """Best-effort parse of the streamed argument text, or None."""
        if not self.args_text:
            return None
        try:
            return json.loads(self.args_text)
        except json.JSONDecodeError:
            return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state": self.state.value,
            "step": self.step,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
        }
        args = self.args if self.state is not ToolInvocationState.PARTIAL_CALL else self.partial_args
        if args is not None:
            data["args"] = args
        if self.state is ToolInvocationState.RESULT:
            data["result"] = self.result
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolInvocation:
        return cls(
            tool_call_id=data["toolCallId"],
            tool_name=data.get("toolName", ""),
            state=ToolInvocationState(data.get("state", "call")),
            args=data.get("args"),
            result=data.get("result"),
            step=data.get("step", 0),
        )


@dataclass(slots=True)
class TextPart:
    text: str = ""

    type: ClassVar[str] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ReasoningPart:
    """Model reasoning; ``details`` keeps text and redacted segments in order."""

    reasoning: str = ""
    details: list[dict[str, Any]] = field(default_factory=list)

    type: ClassVar[str] = "reasoning"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "reasoning": self.reasoning,
            "details": copy.deepcopy(self.details),
        }


@dataclass(slots=True)
class ToolInvocationPart:
    tool_invocation: ToolInvocation

    type: ClassVar[str] = "tool-invocation"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolInvocation": self.tool_invocation.to_dict()}


@dataclass(slots=True)
class DataPart:
    """An arbitrary JSON payload attached to a message (message annotation)."""

    data: Any = None

    type: ClassVar[str] = "data"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(slots=True)
class StepStartPart:
    type: ClassVar[str] = "step-start"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(slots=True)
class SourcePart:
    source: dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "source"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "source": dict(self.source)}


@dataclass(slots=True)
class FilePart:
    mime_type: str
    data: str  # base64

    type: ClassVar[str] = "file"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "mimeType": self.mime_type, "data": self.data}


Part = (
    TextPart
    | ReasoningPart
    | ToolInvocationPart
    | DataPart
    | StepStartPart
    | SourcePart
    | FilePart
)


def part_from_dict(data: dict[str, Any]) -> Part:
    """Rebuild a part from its wire representation."""
    kind = data.get("type")
    match kind:
        case "text":
            return TextPart(text=data.get("text", ""))
        case "reasoning":
            return ReasoningPart(
                reasoning=data.get("reasoning", ""),
                details=list(data.get("details", [])),
            )
        case "tool-invocation":
            return ToolInvocationPart(ToolInvocation.from_dict(data["toolInvocation"]))
        case "data":
            return DataPart(data=data.get("data"))
        case "step-start":
            return StepStartPart()
        case "source":
            return SourcePart(source=dict(data.get("source", {})))
        case "file":
            return FilePart(mime_type=data["mimeType"], data=data["data"])
    raise ValueError(f"Unknown message part type: {kind!r}")


@dataclass(frozen=True, slots=True)
class Attachment:
    """A file sent along with a user message, referenced by URL (often a data: URL)."""

    url: str
    name: str | None = None
    content_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.name is not None:
            data["name"] = self.name
        if self.content_type is not None:
            data["contentType"] = self.content_type
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(url=data["url"], name=data.get("name"), content_type=data.get("contentType"))


@dataclass(slots=True)
class Message:
    """One transcript entry."""

    id: str
    role: str  # "user", "assistant", "system", "data", "tool"
    parts: list[Part] = field(default_factory=list)
    created_at: datetime | None = None
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def content(self) -> str:
        return text_of(self)

    @property
    def annotations(self) -> list[Any]:
        return [p.data for p in self.parts if isinstance(p, DataPart)]

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        return tool_invocations_of(self)

    def copy(self) -> Message:
        return copy.deepcopy(self)

    def to_dict(self, *, extra_fields: bool = True) -> dict[str, Any]:
        """Serialize for a request body.

        Without *extra_fields* only what the server needs is kept: role,
        content, parts, and attachments/annotations/tool invocations when
        present.
        """
        data: dict[str, Any] = {}
        if extra_fields:
            data["id"] = self.id
            if self.created_at is not None:
                data["createdAt"] = self.created_at.isoformat()
        data["role"] = self.role
        data["content"] = self.content
        data["parts"] = [p.to_dict() for p in self.parts]
        if self.attachments:
            data["experimental_attachments"] = [a.to_dict() for a in self.attachments]
        if annotations := self.annotations:
            data["annotations"] = annotations
        if invocations := self.tool_invocations:
            data["toolInvocations"] = [inv.to_dict() for inv in invocations]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        parts = [part_from_dict(p) for p in data.get("parts", [])]
        if not parts and data.get("content"):
            parts = [TextPart(text=data["content"])]
        if not any(isinstance(p, DataPart) for p in parts):
            parts.extend(DataPart(data=a) for a in data.get("annotations", []))
        created = data.get("createdAt")
        return cls(
            id=data.get("id", ""),
            role=data["role"],
            parts=parts,
            created_at=datetime.fromisoformat(created) if created else None,
            attachments=[
                Attachment.from_dict(a) for a in data.get("experimental_attachments", [])
            ],
        )


@dataclass(slots=True)
class CreateMessage:
    """A message as submitted by the caller; id and timestamp are optional."""

    content: str
    role: str = "user"
    id: str | None = None
    created_at: datetime | None = None
    attachments: list[Attachment] = field(default_factory=list)
    annotations: list[Any] = field(default_factory=list)

    def to_message(self, message_id: str) -> Message:
        parts: list[Part] = [TextPart(text=self.content)] if self.content else []
        parts.extend(DataPart(data=a) for a in self.annotations)
        return Message(
            id=self.id or message_id,
            role=self.role,
            parts=parts,
            created_at=self.created_at or datetime.now(UTC),
            attachments=list(self.attachments),
        )


def text_of(message: Message) -> str:
    """Concatenate the message's text parts in order."""
    return "".join(p.text for p in message.parts if isinstance(p, TextPart))


def tool_invocations_of(message: Message) -> list[ToolInvocation]:
    return [p.tool_invocation for p in message.parts if isinstance(p, ToolInvocationPart)]


def max_tool_step(message: Message) -> int:
    """Number of tool invocations in the message."""
    return len(tool_invocations_of(message))


def last_tool_step(message: Message) -> int | None:
    """Highest ``step`` recorded on the message's tool invocations."""
    steps = [inv.step for inv in tool_invocations_of(message)]
    return max(steps) if steps else None


def is_assistant_message_with_completed_tool_calls(message: Message) -> bool:
    """True when an assistant message has tool calls and every one has a result."""
    if message.role != "assistant":
        return False
    invocations = tool_invocations_of(message)
    return bool(invocations) and all(
        inv.state is ToolInvocationState.RESULT for inv in invocations
    )


def count_trailing_assistant_messages(messages: list[Message]) -> int:
    count = 0
    for message in reversed(messages):
        if message.role != "assistant":
            break
        count += 1
    return count
