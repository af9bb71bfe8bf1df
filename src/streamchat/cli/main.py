"""CLI entry point for streamchat."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from streamchat.core.errors import ChatError
from streamchat.types.config import StreamProtocol


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME:VALUE, got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _overrides(
    api: str | None,
    chat_id: str | None,
    protocol: str | None,
    max_steps: int | None,
    headers: tuple[str, ...],
) -> dict[str, object]:
    overrides: dict[str, object] = {
        "api": api,
        "chat_id": chat_id,
        "stream_protocol": protocol,
        "max_steps": max_steps,
    }
    if headers:
        overrides["headers"] = _parse_headers(headers)
    return overrides


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging to stderr")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """streamchat -- talk to a streaming chat endpoint.

    \b
    Usage:
      streamchat chat "Hello" --api http://localhost:3000/api/chat
      streamchat resume --api http://localhost:3000/api/chat --id abc123
      streamchat decode recorded-stream.txt
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)


_protocol_option = click.option(
    "--protocol",
    type=click.Choice([p.value for p in StreamProtocol]),
    default=None,
    help="Stream protocol when the server does not announce one",
)


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--api", default=None, help="Chat endpoint URL (or STREAMCHAT_API)")
@click.option("--id", "chat_id", default=None, help="Chat id to use")
@_protocol_option
@click.option("--max-steps", type=click.IntRange(min=1), default=None, help="Automatic tool steps")
@click.option("--header", "-H", "headers", multiple=True, help="Extra header, NAME:VALUE")
@click.option("--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False))
def chat(
    prompt: tuple[str, ...],
    api: str | None,
    chat_id: str | None,
    protocol: str | None,
    max_steps: int | None,
    headers: tuple[str, ...],
    attachments: tuple[str, ...],
) -> None:
    """Send PROMPT and stream the reply."""
    text = " ".join(prompt).strip()
    if not text:
        click.echo("Error: empty prompt", err=True)
        sys.exit(1)
    overrides = _overrides(api, chat_id, protocol, max_steps, headers)
    sys.exit(asyncio.run(_chat(text, [Path(a) for a in attachments], overrides)))


@cli.command()
@click.option("--api", default=None, help="Chat endpoint URL (or STREAMCHAT_API)")
@click.option("--id", "chat_id", required=True, help="Chat id whose stream to resume")
@_protocol_option
@click.option("--header", "-H", "headers", multiple=True, help="Extra header, NAME:VALUE")
def resume(api: str | None, chat_id: str, protocol: str | None, headers: tuple[str, ...]) -> None:
    """Reattach to a stream that is still in progress."""
    overrides = _overrides(api, chat_id, protocol, None, headers)
    sys.exit(asyncio.run(_resume(overrides)))


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_protocol_option
def decode(file: Path, protocol: str | None) -> None:
    """Print the decoded events of a recorded response body."""
    events = asyncio.run(_decode(file, StreamProtocol(protocol or "data")))
    from streamchat.ui.terminal import events_table

    Console().print(events_table(events))


async def _chat(text: str, attachments: list[Path], overrides: dict[str, object]) -> int:
    from streamchat.core.engine import create_session, run
    from streamchat.core.transport import HttpxFetcher
    from streamchat.types.handlers import ChatHandlers
    from streamchat.ui.terminal import RichPrinter

    printer = RichPrinter()
    async with HttpxFetcher() as fetcher:
        session = create_session(
            fetcher=fetcher,
            handlers=ChatHandlers(on_finish=lambda _msg, info: printer.print_finish(info)),
            **overrides,
        )
        try:
            async for change in run(text, session=session, attachments=list(attachments)):
                printer.handle(change)
        except ChatError:
            # Already rendered from the error state change
            return 1
    return 0


async def _resume(overrides: dict[str, object]) -> int:
    from streamchat.core.engine import create_session
    from streamchat.core.transport import HttpxFetcher
    from streamchat.types.handlers import ChatHandlers
    from streamchat.ui.terminal import RichPrinter

    printer = RichPrinter()
    async with HttpxFetcher() as fetcher:
        session = create_session(
            fetcher=fetcher,
            handlers=ChatHandlers(on_finish=lambda _msg, info: printer.print_finish(info)),
            **overrides,
        )
        unsubscribe = session.subscribe(printer.handle)
        try:
            await session.resume()
        except ChatError:
            return 1
        finally:
            unsubscribe()
    return 0


async def _decode(file: Path, protocol: StreamProtocol) -> list:
    from streamchat.protocol.decoder import decode_stream

    async def chunks():
        with open(file, "rb") as f:
            while chunk := f.read(4096):
                yield chunk

    return [event async for event in decode_stream(chunks(), protocol)]


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
