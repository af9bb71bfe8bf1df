"""Handler registry and observer fan-out for a chat session."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from streamchat.types.events import FinishInfo, ToolCall
from streamchat.types.handlers import (
    UNSET,
    ChatHandlers,
    ChatStateChange,
    ChatStateKind,
    StateListener,
)
from streamchat.types.messages import Message

logger = logging.getLogger(__name__)


class HandlerManager:
    """Holds the session's callbacks and its state listeners.

    Handlers are replaced wholesale by ``update``; the latest value wins.
    Passing ``UNSET`` for a handler reverts it to the construction value.
    """

    def __init__(self, handlers: ChatHandlers | None = None) -> None:
        self._defaults = handlers or ChatHandlers()
        self._current = replace(self._defaults)
        self._listeners: list[StateListener] = []

    @property
    def handlers(self) -> ChatHandlers:
        return self._current

    def update(self, **changes: Any) -> None:
        """Replace individual handlers by name."""
        known = ChatHandlers.names()
        for name, value in changes.items():
            if name not in known:
                raise TypeError(f"Unknown handler: {name!r}")
            if value is UNSET:
                value = getattr(self._defaults, name)
            setattr(self._current, name, value)

    # -- Callbacks --------------------------------------------------------

    async def response(self, response: Any) -> None:
        handler = self._current.on_response
        if handler is None:
            return
        outcome = handler(response)
        if inspect.isawaitable(outcome):
            await outcome

    def finish(self, message: Message, info: FinishInfo) -> None:
        if self._current.on_finish is not None:
            self._current.on_finish(message, info)

    def error(self, exc: BaseException) -> bool:
        """Deliver *exc* to ``on_error``. Returns False when none is registered."""
        if self._current.on_error is None:
            return False
        self._current.on_error(exc)
        return True

    @property
    def has_tool_handler(self) -> bool:
        return self._current.on_tool_call is not None

    async def tool_call(self, call: ToolCall) -> Any:
        """Run ``on_tool_call``; None means the call stays unresolved."""
        handler = self._current.on_tool_call
        if handler is None:
            return None
        outcome = handler(call)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    # -- Observers --------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, kind: ChatStateKind, value: Any) -> None:
        change = ChatStateChange(kind=kind, value=value)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("State listener failed on %s change", kind.value)
