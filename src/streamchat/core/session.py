"""Chat session controller: the state machine around one exchange slot."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from streamchat.core.abort import AbortController
from streamchat.core.errors import AbortError
from streamchat.core.orchestrator import ToolCallOrchestrator, apply_tool_result
from streamchat.core.reconciler import TranscriptReconciler
from streamchat.core.transport import Fetcher, HttpxFetcher, open_stream, resume_url
from streamchat.hooks.manager import HandlerManager
from streamchat.observability import (
    Stopwatch,
    inject_context,
    record_exchange,
    record_first_event,
    record_tokens,
    span,
)
from streamchat.protocol.decoder import decode_stream
from streamchat.types.config import ChatConfig, ChatRequest, ChatRequestOptions, ChatStatus
from streamchat.types.events import DataDelta, FinishInfo, MalformedLine
from streamchat.types.handlers import ChatHandlers, ChatStateKind, StateListener
from streamchat.types.messages import (
    CreateMessage,
    Message,
    is_assistant_message_with_completed_tool_calls,
)

logger = logging.getLogger(__name__)


class ChatSession:
    """One conversation with a streaming chat endpoint.

    At most one exchange is in flight. Starting another (append, reload,
    resume, or a tool result that completes the last message) aborts the
    current one first. State changes are published to subscribers as
    ``ChatStateChange`` notifications.

    Usage::

        async with ChatSession(ChatConfig(api="https://example.com/api/chat")) as session:
            await session.append("Hello")
            print(session.messages[-1].content)

    A session that built its own fetcher closes it in ``aclose()``; a
    fetcher passed in stays open for its owner.
    """

    def __init__(
        self,
        config: ChatConfig | None = None,
        *,
        handlers: ChatHandlers | None = None,
        fetcher: Fetcher | None = None,
        initial_messages: list[Message] | None = None,
        initial_input: str = "",
    ) -> None:
        self.config = config or ChatConfig()
        self.id = self.config.chat_id or self.config.generate_id()
        self._handlers = HandlerManager(handlers)
        self._owned_fetcher: HttpxFetcher | None = None
        if fetcher is None:
            fetcher = self._owned_fetcher = HttpxFetcher(timeout=self.config.timeout)
        self._fetcher: Fetcher = fetcher
        self._orchestrator = ToolCallOrchestrator(
            self.config.max_steps,
            self._handlers,
            resubmit_policy=self.config.resubmit_policy,
        )

        self._initial_messages = [m.copy() for m in initial_messages or []]
        self._initial_input = initial_input
        self._messages: list[Message] = [m.copy() for m in self._initial_messages]
        self._input = initial_input
        self._status = ChatStatus.READY
        self._error: BaseException | None = None
        self._data: list[Any] | None = None

        self._abort: AbortController | None = None
        self._reconciler: TranscriptReconciler | None = None

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop any exchange and release the connection pool the session owns."""
        self.stop()
        if self._owned_fetcher is not None:
            await self._owned_fetcher.aclose()

    # -- Read side --------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def status(self) -> ChatStatus:
        return self._status

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def data(self) -> list[Any] | None:
        return None if self._data is None else list(self._data)

    @property
    def input(self) -> str:
        return self._input

    @property
    def is_loading(self) -> bool:
        return self._status.is_loading

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Observe state changes. Returns a callable that unsubscribes."""
        return self._handlers.subscribe(listener)

    def update_handlers(self, **handlers: Any) -> None:
        """Replace handlers by name; ``UNSET`` restores the original one."""
        self._handlers.update(**handlers)

    # -- Local state edits ------------------------------------------------

    def set_messages(self, messages: list[Message] | Callable[[list[Message]], list[Message]]) -> None:
        if callable(messages):
            messages = messages(self.messages)
        self._set_messages(list(messages))

    def set_data(self, data: list[Any] | None) -> None:
        """Replace the streaming data; None clears it."""
        self._set_data(None if data is None else list(data))

    def set_input(self, value: str) -> None:
        self._set_input(value)

    def _set_messages(self, messages: list[Message]) -> None:
        self._messages = messages
        self._handlers.notify(ChatStateKind.MESSAGES, list(messages))

    def _set_status(self, status: ChatStatus) -> None:
        if status is self._status:
            return
        logger.debug("Session %s: %s -> %s", self.id, self._status.value, status.value)
        self._status = status
        self._handlers.notify(ChatStateKind.STATUS, status)

    def _set_error(self, error: BaseException | None) -> None:
        if error is self._error:
            return
        self._error = error
        self._handlers.notify(ChatStateKind.ERROR, error)

    def _set_data(self, data: list[Any] | None) -> None:
        self._data = data
        self._handlers.notify(ChatStateKind.DATA, self.data)

    def _set_input(self, value: str) -> None:
        self._input = value
        self._handlers.notify(ChatStateKind.INPUT, value)

    # -- Actions ----------------------------------------------------------

    async def append(
        self,
        message: Message | CreateMessage | str,
        options: ChatRequestOptions | None = None,
    ) -> None:
        """Add a message to the transcript and run an exchange for it."""
        options = options or ChatRequestOptions()
        if isinstance(message, str):
            message = CreateMessage(content=message)
        extra = list(options.attachments or [])

        if isinstance(message, Message):
            outgoing = message.copy()
            outgoing.id = outgoing.id or self.config.generate_id()
            outgoing.created_at = outgoing.created_at or datetime.now(UTC)
        else:
            if not message.content and not message.attachments and not extra and options.allow_empty_submit:
                await self._run(list(self._messages), options)
                return
            outgoing = message.to_message(self.config.generate_id())
        outgoing.attachments = [*outgoing.attachments, *extra]
        await self._run([*self._messages, outgoing], options)

    async def handle_submit(self, options: ChatRequestOptions | None = None) -> None:
        """Send the current input as a user message and clear it."""
        options = options or ChatRequestOptions()
        text = self._input
        if not text and not options.attachments and not options.allow_empty_submit:
            return
        self._set_input("")
        await self.append(CreateMessage(content=text), options)

    async def reload(self, options: ChatRequestOptions | None = None) -> None:
        """Regenerate the last assistant answer."""
        if not self._messages:
            return
        messages = list(self._messages)
        if messages[-1].role == "assistant":
            messages.pop()
        await self._run(messages, options or ChatRequestOptions())

    async def resume(self, options: ChatRequestOptions | None = None) -> None:
        """Reattach to a stream that is still being produced for this chat."""
        await self._run(list(self._messages), options or ChatRequestOptions(), resume=True)

    def stop(self) -> None:
        """Abort the in-flight exchange. Already-streamed parts are kept."""
        if self._abort is not None:
            self._abort.abort("stopped")
            self._abort = None
        self._reconciler = None
        self._orchestrator.cancel()
        self._orchestrator.clear_deferred()
        self._set_status(ChatStatus.READY)

    async def add_tool_result(self, tool_call_id: str, result: Any) -> None:
        """Resolve a tool invocation. A second result for the same id is ignored.

        Once the last message has every invocation resolved the transcript is
        resubmitted; if an exchange is in flight that waits until it ends.
        """
        if self._abort is not None and self._reconciler is not None:
            snapshot = self._reconciler.commit_tool_result(tool_call_id, result)
            if snapshot is None:
                return
            self._set_messages(snapshot)
            self._orchestrator.defer(snapshot)
            return

        updated = apply_tool_result(self._messages, tool_call_id, result)
        if updated is None:
            logger.debug("Tool result for %s changed nothing", tool_call_id)
            return
        self._set_messages(updated)
        if is_assistant_message_with_completed_tool_calls(updated[-1]):
            await self._run(updated, ChatRequestOptions())

    def reset(self) -> None:
        """Back to the initial transcript and input; data and error cleared."""
        self.stop()
        self._set_messages([m.copy() for m in self._initial_messages])
        self._set_input(self._initial_input)
        self._set_data(None)
        self._set_error(None)

    # -- Exchange ---------------------------------------------------------

    async def _run(
        self,
        messages: list[Message],
        options: ChatRequestOptions,
        *,
        resume: bool = False,
    ) -> None:
        """Run exchanges until no automatic follow-up is due."""
        next_messages: list[Message] | None = messages
        while next_messages is not None:
            next_messages = await self._exchange(next_messages, options, resume=resume)
            resume = False

    def _request_body(self, request: ChatRequest) -> Any:
        if self.config.prepare_request_body is not None:
            return self.config.prepare_request_body(request)
        extra = self.config.send_extra_message_fields
        body: dict[str, Any] = {
            "id": request.chat_id,
            "messages": [m.to_dict(extra_fields=extra) for m in request.messages],
        }
        if request.request_data is not None:
            body["data"] = request.request_data
        body.update(request.request_body)
        return body

    async def _exchange(
        self,
        messages: list[Message],
        options: ChatRequestOptions,
        *,
        resume: bool = False,
    ) -> list[Message] | None:
        """One request/stream cycle. Returns the transcript to resubmit, if any."""
        if self._abort is not None:
            self._abort.abort("superseded")
        self._orchestrator.cancel()
        controller = AbortController()
        self._abort = controller

        previous = self._messages
        original_count = len(previous)
        if not resume:
            self._set_messages(messages)
        self._set_error(None)
        self._set_status(ChatStatus.SUBMITTED)

        def current() -> bool:
            return self._abort is controller

        def on_data(values: list[Any]) -> None:
            if current():
                self._set_data([*(self._data or []), *values])

        def on_finish(message: Message, info: FinishInfo) -> None:
            record_tokens(info.usage.prompt_tokens, info.usage.completion_tokens)
            self._handlers.finish(message, info)

        reconciler = TranscriptReconciler(
            messages,
            replace_last=resume and bool(messages) and messages[-1].role == "assistant",
            generate_id=self.config.generate_id,
            on_finish=on_finish,
            on_tool_call=self._orchestrator.schedule,
            on_data=on_data,
        )
        self._reconciler = reconciler

        request = ChatRequest(
            chat_id=self.id,
            messages=messages,
            request_data=options.data,
            request_body={**self.config.body, **options.body},
            headers={**self.config.headers, **options.headers},
        )
        method = "GET" if resume else "POST"
        attributes = {
            "chat.id": self.id,
            "http.method": method,
            "chat.protocol": self.config.stream_protocol.value,
        }

        with span("streamchat.exchange", attributes) as exchange_span:
            try:
                stream = await open_stream(
                    self._fetcher,
                    resume_url(self.config.api, self.id) if resume else self.config.api,
                    method=method,
                    headers=inject_context(dict(request.headers)),
                    body=None if resume else self._request_body(request),
                    credentials=self.config.credentials,
                    protocol=self.config.stream_protocol,
                    signal=controller.signal,
                    on_response=self._handlers.response,
                )
                stopwatch = Stopwatch()
                first_event = True
                events = decode_stream(stream.chunks, stream.protocol, controller.signal)
                async with aclosing(events):
                    async for event in events:
                        if not current():
                            break
                        if first_event:
                            first_event = False
                            record_first_event(stopwatch.elapsed_ms, protocol=stream.protocol.value)
                            self._set_status(ChatStatus.STREAMING)
                        snapshot = reconciler.apply(event)
                        if not isinstance(event, (DataDelta, MalformedLine)):
                            self._set_messages(snapshot)

                if not current():
                    raise AbortError(controller.signal.reason or "superseded")

                for tool_call_id, result in await self._orchestrator.drain():
                    snapshot = reconciler.commit_tool_result(tool_call_id, result)
                    if snapshot is not None and current():
                        self._set_messages(snapshot)
                if not current():
                    raise AbortError(controller.signal.reason or "superseded")
                self._set_messages(reconciler.close())
            except AbortError as e:
                logger.debug("Exchange aborted: %s", e)
                exchange_span.set_attribute("chat.outcome", "aborted")
                record_exchange("aborted", method=method)
                if current():
                    self._finish_exchange(ChatStatus.READY)
                return None
            except asyncio.CancelledError:
                if current():
                    controller.abort("cancelled")
                    self._finish_exchange(ChatStatus.READY)
                raise
            except Exception as e:
                exchange_span.set_attribute("chat.outcome", "error")
                exchange_span.record_exception(e)
                record_exchange("error", method=method)
                if not current():
                    logger.debug("Dropping error from superseded exchange: %s", e)
                    return None
                logger.debug("Exchange failed: %s", e)
                self._finish_exchange(ChatStatus.ERROR)
                if not self.config.keep_last_message_on_error:
                    self._set_messages(previous)
                self._set_error(e)
                if not self._handlers.error(e):
                    raise
                return None

            exchange_span.set_attribute("chat.outcome", "ok")
            record_exchange("ok", method=method)

        self._finish_exchange(ChatStatus.READY, keep_deferred=True)
        latest = self._messages
        if self._orchestrator.should_continue(latest, original_count):
            self._orchestrator.clear_deferred()
            logger.debug("Continuing automatically after resolved tool calls")
            return latest
        return self._orchestrator.take_deferred(latest)

    def _finish_exchange(self, status: ChatStatus, *, keep_deferred: bool = False) -> None:
        self._abort = None
        self._reconciler = None
        self._orchestrator.cancel()
        if not keep_deferred:
            self._orchestrator.clear_deferred()
        self._set_status(status)
