"""Tool-call orchestration: client-side handlers and automatic continuation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from streamchat.core.errors import ToolExecutionError
from streamchat.hooks.manager import HandlerManager
from streamchat.observability import record_tool_call
from streamchat.types.config import ResubmitPolicy
from streamchat.types.events import ToolCall
from streamchat.types.messages import (
    Message,
    ToolInvocationState,
    count_trailing_assistant_messages,
    is_assistant_message_with_completed_tool_calls,
    tool_invocations_of,
)

logger = logging.getLogger(__name__)


def apply_tool_result(
    messages: list[Message], tool_call_id: str, result: Any
) -> list[Message] | None:
    """Return a copy of *messages* with the invocation resolved.

    The newest matching invocation wins. Returns None when nothing changed:
    the id is unknown or the invocation already has a result.
    """
    for index in range(len(messages) - 1, -1, -1):
        match = next(
            (
                inv
                for inv in reversed(tool_invocations_of(messages[index]))
                if inv.tool_call_id == tool_call_id
            ),
            None,
        )
        if match is None:
            continue
        if match.state is ToolInvocationState.RESULT:
            return None
        updated = messages[index].copy()
        for inv in reversed(tool_invocations_of(updated)):
            if inv.tool_call_id == tool_call_id:
                inv.result = result
                inv.advance(ToolInvocationState.RESULT)
                break
        return [*messages[:index], updated, *messages[index + 1 :]]
    return None


class ToolCallOrchestrator:
    """Runs client-side tool handlers and decides on automatic continuation.

    Handler tasks start as soon as a call is complete; their results are
    collected by ``drain()`` once the stream has ended.
    """

    def __init__(
        self,
        max_steps: int = 1,
        handler_manager: HandlerManager | None = None,
        *,
        resubmit_policy: ResubmitPolicy = ResubmitPolicy.POST_COMPLETION,
    ) -> None:
        self.max_steps = max_steps
        self.resubmit_policy = resubmit_policy
        self._handlers = handler_manager or HandlerManager()
        self._pending: list[tuple[ToolCall, asyncio.Task[Any]]] = []
        self._deferred: list[Message] | None = None

    # -- Continuation -----------------------------------------------------

    def should_continue(self, messages: list[Message], original_count: int) -> bool:
        """Whether another exchange should be issued without user input."""
        if len(messages) <= original_count or self.max_steps <= 1:
            return False
        last = messages[-1]
        return (
            is_assistant_message_with_completed_tool_calls(last)
            and count_trailing_assistant_messages(messages) < self.max_steps
        )

    # -- Client-side handlers ---------------------------------------------

    def schedule(self, call: ToolCall) -> None:
        """Start the ``on_tool_call`` handler for *call*, if one is registered."""
        record_tool_call(call.tool_name, client_side=self._handlers.has_tool_handler)
        if not self._handlers.has_tool_handler:
            return
        logger.debug("Scheduling tool handler for %s (%s)", call.tool_name, call.tool_call_id)
        task = asyncio.ensure_future(self._handlers.tool_call(call))
        self._pending.append((call, task))

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    async def drain(self) -> list[tuple[str, Any]]:
        """Await pending handlers in call order.

        Returns ``(tool_call_id, result)`` for every handler that produced a
        value.

        Raises:
            ToolExecutionError: the first handler that raised.
        """
        pending = list(self._pending)
        results: list[tuple[str, Any]] = []
        try:
            for call, task in pending:
                await asyncio.wait([task])
                if task.cancelled():
                    continue
                if (error := task.exception()) is not None:
                    raise ToolExecutionError(call.tool_call_id, call.tool_name, str(error)) from error
                value = task.result()
                if value is not None:
                    results.append((call.tool_call_id, value))
        finally:
            for _, task in pending:
                if not task.done():
                    task.cancel()
            self._pending = [entry for entry in self._pending if entry not in pending]
        return results

    def cancel(self) -> None:
        """Cancel every handler still running."""
        pending, self._pending = self._pending, []
        for call, task in pending:
            if not task.done():
                logger.debug("Cancelling tool handler for %s", call.tool_call_id)
                task.cancel()

    # -- Deferred resubmission --------------------------------------------

    def defer(self, snapshot: list[Message]) -> None:
        """Remember a tool result submitted while an exchange was in flight."""
        self._deferred = list(snapshot)

    @property
    def has_deferred(self) -> bool:
        return self._deferred is not None

    def take_deferred(self, current: list[Message]) -> list[Message] | None:
        """The transcript to resubmit after the exchange, or None.

        Only resubmits when the chosen transcript ends in a fully resolved
        assistant message.
        """
        snapshot, self._deferred = self._deferred, None
        if snapshot is None:
            return None
        if self.resubmit_policy is ResubmitPolicy.ORIGINATING_SNAPSHOT:
            candidate = snapshot
        else:
            candidate = current
        if candidate and is_assistant_message_with_completed_tool_calls(candidate[-1]):
            return candidate
        return None

    def clear_deferred(self) -> None:
        self._deferred = None
