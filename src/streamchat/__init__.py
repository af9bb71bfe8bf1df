"""streamchat: streaming chat sessions over HTTP.

Usage:
    import streamchat

    session = streamchat.create_session(api="http://localhost:3000/api/chat")
    await session.append("Hello")
    print(session.messages[-1].content)

    async for change in streamchat.run("Hello", api="http://localhost:3000/api/chat"):
        match change:
            case streamchat.ChatStateChange(kind=streamchat.ChatStateKind.STATUS, value=s):
                print(s.value)
"""

from streamchat.core.engine import create_session, prepare_attachments, run
from streamchat.core.errors import (
    AbortError,
    ChatError,
    DecodeError,
    EmptyStreamError,
    StreamError,
    ToolExecutionError,
    TransportError,
)
from streamchat.core.session import ChatSession
from streamchat.core.transport import Fetcher, FetchResponse, HttpxFetcher
from streamchat.types.config import (
    ChatConfig,
    ChatRequestOptions,
    ChatStatus,
    Credentials,
    ResubmitPolicy,
    StreamProtocol,
)
from streamchat.types.events import FinishInfo, ToolCall, Usage
from streamchat.types.handlers import UNSET, ChatHandlers, ChatStateChange, ChatStateKind
from streamchat.types.messages import (
    Attachment,
    CreateMessage,
    Message,
    ToolInvocation,
    ToolInvocationState,
)

__version__ = "0.1.0"

__all__ = [
    # Core API
    "ChatSession",
    "create_session",
    "prepare_attachments",
    "run",
    # Configuration
    "ChatConfig",
    "ChatRequestOptions",
    "ChatStatus",
    "Credentials",
    "ResubmitPolicy",
    "StreamProtocol",
    # Handlers
    "UNSET",
    "ChatHandlers",
    "ChatStateChange",
    "ChatStateKind",
    "FinishInfo",
    "ToolCall",
    "Usage",
    # Messages
    "Attachment",
    "CreateMessage",
    "Message",
    "ToolInvocation",
    "ToolInvocationState",
    # Transport
    "FetchResponse",
    "Fetcher",
    "HttpxFetcher",
    # Errors
    "AbortError",
    "ChatError",
    "DecodeError",
    "EmptyStreamError",
    "StreamError",
    "ToolExecutionError",
    "TransportError",
]
