"""Type definitions for streamchat."""

from streamchat.types.config import (
    ChatConfig,
    ChatRequest,
    ChatRequestOptions,
    ChatStatus,
    Credentials,
    ResubmitPolicy,
    StreamProtocol,
)
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
    Usage,
)
from streamchat.types.handlers import UNSET, ChatHandlers, ChatStateChange, ChatStateKind
from streamchat.types.messages import (
    Attachment,
    CreateMessage,
    DataPart,
    FilePart,
    Message,
    Part,
    ReasoningPart,
    SourcePart,
    StepStartPart,
    TextPart,
    ToolInvocation,
    ToolInvocationPart,
    ToolInvocationState,
)

__all__ = [
    "UNSET",
    "AnnotationsDelta",
    "Attachment",
    "ChatConfig",
    "ChatHandlers",
    "ChatRequest",
    "ChatRequestOptions",
    "ChatStateChange",
    "ChatStateKind",
    "ChatStatus",
    "CreateMessage",
    "Credentials",
    "DataDelta",
    "DataPart",
    "ErrorEvent",
    "FileEvent",
    "FilePart",
    "FinishInfo",
    "MalformedLine",
    "Message",
    "MessageFinish",
    "Part",
    "ReasoningDelta",
    "ReasoningPart",
    "ReasoningSignature",
    "RedactedReasoning",
    "ResubmitPolicy",
    "SourceEvent",
    "SourcePart",
    "StepFinish",
    "StepStart",
    "StepStartPart",
    "StreamPart",
    "StreamProtocol",
    "TextDelta",
    "TextPart",
    "ToolCall",
    "ToolCallArgDelta",
    "ToolCallStreamStart",
    "ToolInvocation",
    "ToolInvocationPart",
    "ToolInvocationState",
    "ToolResult",
    "Usage",
]
