from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click
from loguru import logger

from console_relay.ipc.client import ConsoleClient
from console_relay.ipc.constants import DEFAULT_BUFFER_SIZE, Framing
from console_relay.ipc.errors import ConsoleSendError
from console_relay.ipc.paths import get_relay_paths
from console_relay.ipc.server import ConsoleServer


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _resolve_address(name: str, socket_path: str | None) -> str:
    if socket_path:
        return socket_path
    return get_relay_paths(name).address


_name_option = click.option(
    "--name", default="console-relay", show_default=True, help="Application name."
)
_socket_option = click.option(
    "--socket",
    "socket_path",
    default=None,
    help="Explicit socket address (overrides --name; '@name' for abstract).",
)
_framing_option = click.option(
    "--framing",
    type=click.Choice([f.value for f in Framing], case_sensitive=False),
    default=Framing.LINE.value,
    show_default=True,
)


@click.group(name="console-relay", help="Relay command lines to a running instance.")
def relay_cli() -> None:
    pass


@relay_cli.command(name="serve", help="Listen for forwarded command lines.")
@_name_option
@_socket_option
@_framing_option
@click.option("--buffer-size", type=int, default=DEFAULT_BUFFER_SIZE, show_default=True)
@click.option("--max-message-bytes", type=int, default=None)
@click.option("--read-timeout", "read_timeout_s", type=float, default=None)
@click.option(
    "--reply-ack/--no-reply-ack",
    default=True,
    show_default=True,
    help="Reply 'ok' to each received message.",
)
@click.option(
    "--exit-command",
    default=None,
    help="Subcommand that makes the server reply 'bye' and stop.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def serve_cmd(
    name: str,
    socket_path: str | None,
    framing: str,
    buffer_size: int,
    max_message_bytes: int | None,
    read_timeout_s: float | None,
    reply_ack: bool,
    exit_command: str | None,
    log_level: str,
) -> None:
    address = _resolve_address(name, socket_path)
    if ConsoleClient(address=address).is_running():
        click.echo(f"Relay already running at {address}.")
        return

    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())

    try:
        asyncio.run(
            _serve(
                address,
                framing=Framing(framing.lower()),
                buffer_size=buffer_size,
                max_message_bytes=max_message_bytes,
                read_timeout_s=read_timeout_s,
                reply_ack=reply_ack,
                exit_command=exit_command,
            )
        )
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


async def _serve(
    address: str,
    *,
    framing: Framing,
    buffer_size: int,
    max_message_bytes: int | None,
    read_timeout_s: float | None,
    reply_ack: bool,
    exit_command: str | None,
) -> None:
    server: ConsoleServer[None] = ConsoleServer.bind(
        address,
        framing=framing,
        buffer_size=buffer_size,
        max_message_bytes=max_message_bytes,
        read_timeout_s=read_timeout_s,
    )
    logger.info(f"Console relay listening on {address}")
    async with server:
        async for event in server:
            async with event:
                message = event.take_message()
                click.echo(message)
                words = message.split(" ")
                if exit_command and len(words) > 1 and words[1] == exit_command:
                    await event.reply("bye")
                    return
                if reply_ack:
                    try:
                        await event.reply("ok")
                    except ConsoleSendError as exc:
                        logger.debug(f"Could not acknowledge message: {exc}")


@relay_cli.command(name="send", help="Forward ARGS to the running instance.")
@_name_option
@_socket_option
@_framing_option
@click.option("--reply/--no-reply", default=True, show_default=True)
@click.option("--timeout", "timeout_s", type=float, default=5.0, show_default=True)
@click.argument("args", nargs=-1, required=True)
def send_cmd(
    name: str,
    socket_path: str | None,
    framing: str,
    reply: bool,
    timeout_s: float,
    args: tuple[str, ...],
) -> None:
    address = _resolve_address(name, socket_path)
    client = ConsoleClient(
        address=address, framing=Framing(framing.lower()), timeout_s=timeout_s
    )
    try:
        text = client.send(" ".join(args), expect_reply=reply)
    except ConsoleSendError as exc:
        _echo_json(
            {"ok": False, "error": str(exc.kind), "message": str(exc), "address": address}
        )
        raise SystemExit(1) from exc
    if text:
        click.echo(text)


@relay_cli.command(name="status", help="Report whether an instance is listening.")
@_name_option
@_socket_option
def status_cmd(name: str, socket_path: str | None) -> None:
    address = _resolve_address(name, socket_path)
    running = ConsoleClient(address=address).is_running()
    _echo_json({"ok": True, "result": {"running": running, "address": address}})
