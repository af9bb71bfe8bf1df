"""Engine: wires config, transport and handlers into a running chat session."""

from __future__ import annotations

import asyncio
import base64
import mimetypes
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from streamchat.core.config import load_chat_config
from streamchat.core.session import ChatSession
from streamchat.core.transport import Fetcher
from streamchat.types.config import ChatConfig, ChatRequestOptions
from streamchat.types.handlers import ChatHandlers, ChatStateChange
from streamchat.types.messages import Attachment, Message


def create_session(
    config: ChatConfig | None = None,
    *,
    cwd: str | None = None,
    handlers: ChatHandlers | None = None,
    fetcher: Fetcher | None = None,
    initial_messages: list[Message] | None = None,
    initial_input: str = "",
    **overrides: Any,
) -> ChatSession:
    """Build a session. Without *config* it is loaded from file and environment.

    Keyword overrides (``api=...``, ``max_steps=...``) take precedence over
    every configuration source.
    """
    if config is None:
        config = load_chat_config(cwd, **overrides)
    elif overrides:
        raise TypeError("Pass either a ChatConfig or keyword overrides, not both")
    return ChatSession(
        config,
        handlers=handlers,
        fetcher=fetcher,
        initial_messages=initial_messages,
        initial_input=initial_input,
    )


def prepare_attachments(items: list[str | Path | Attachment] | None) -> list[Attachment]:
    """Turn local files into ``data:`` URL attachments; attachments pass through."""
    attachments: list[Attachment] = []
    for item in items or []:
        if isinstance(item, Attachment):
            attachments.append(item)
            continue
        path = Path(item)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        attachments.append(
            Attachment(
                url=f"data:{content_type};base64,{encoded}",
                name=path.name,
                content_type=content_type,
            )
        )
    return attachments


async def run(
    prompt: str,
    *,
    session: ChatSession | None = None,
    attachments: list[str | Path | Attachment] | None = None,
    options: ChatRequestOptions | None = None,
    **overrides: Any,
) -> AsyncIterator[ChatStateChange]:
    """Send *prompt* and yield every state change until the exchange settles.

    Usage::

        async for change in run("Hello", api="http://localhost:3000/api/chat"):
            if change.kind is ChatStateKind.MESSAGES:
                print(change.value[-1].content)

    Errors are re-raised after the last change has been yielded. A session
    built here from *overrides* is closed before returning.
    """
    options = options or ChatRequestOptions()
    if attachments:
        options.attachments = [*(options.attachments or []), *prepare_attachments(attachments)]
    owned = session is None
    if session is None:
        session = create_session(**overrides)

    queue: asyncio.Queue[ChatStateChange] = asyncio.Queue()
    unsubscribe = session.subscribe(queue.put_nowait)
    task = asyncio.ensure_future(session.append(prompt, options))
    try:
        while not (task.done() and queue.empty()):
            getter = asyncio.ensure_future(queue.get())
            await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter.done():
                yield getter.result()
            else:
                getter.cancel()
        task.result()
    finally:
        unsubscribe()
        if not task.done():
            session.stop()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if owned:
            await session.aclose()
