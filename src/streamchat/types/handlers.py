"""Handler and observer types for a chat session."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from streamchat.core.transport import FetchResponse
    from streamchat.types.events import FinishInfo, ToolCall
    from streamchat.types.messages import Message


class _Unset:
    """Sentinel type for "revert to the construction-time handler"."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

FinishHandler = Callable[["Message", "FinishInfo"], None]
ErrorHandler = Callable[[BaseException], None]
ResponseHandler = Callable[["FetchResponse"], "Awaitable[None] | None"]
ToolCallHandler = Callable[["ToolCall"], Any]


@dataclass(slots=True)
class ChatHandlers:
    """Caller-supplied callbacks. Every one is optional.

    ``on_response`` and ``on_tool_call`` may be coroutine functions;
    ``on_finish`` and ``on_error`` are called synchronously.
    """

    on_response: ResponseHandler | None = None
    on_finish: FinishHandler | None = None
    on_error: ErrorHandler | None = None
    on_tool_call: ToolCallHandler | None = None

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))


class ChatStateKind(Enum):
    """Which observable piece of session state changed."""

    MESSAGES = "messages"
    STATUS = "status"
    ERROR = "error"
    DATA = "data"
    INPUT = "input"


@dataclass(frozen=True, slots=True)
class ChatStateChange:
    """Notification delivered to session observers."""

    kind: ChatStateKind
    value: Any


StateListener = Callable[[ChatStateChange], None]
