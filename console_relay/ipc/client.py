from __future__ import annotations

import asyncio
import os

from loguru import logger

from console_relay.ipc.constants import DEFAULT_CLIENT_TIMEOUT_S, Framing
from console_relay.ipc.errors import (
    ConsoleSendError,
    NotFound,
    OtherSocketClosed,
    classify,
)
from console_relay.ipc.framing import encode_message
from console_relay.ipc.paths import to_socket_address
from console_relay.ipc.transport import RelayTransport, UnixSocketTransport


async def send_message(
    address: str | os.PathLike[str],
    message: str,
    *,
    framing: Framing = Framing.LINE,
    expect_reply: bool = True,
    timeout_s: float | None = DEFAULT_CLIENT_TIMEOUT_S,
) -> str:
    """Send one message to the server at ``address`` and return its reply.

    With ``expect_reply`` the write side is half-closed after the message and
    the rest of the stream is read as the reply. A peer that hangs up without
    writing yields ``""``. Failures raise a ``ConsoleSendError`` subclass.
    """
    address = os.fspath(address)
    payload = encode_message(message, framing=framing)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(to_socket_address(address)), timeout=timeout_s
        )
    except OSError as exc:
        raise classify(exc) from exc

    try:
        try:
            writer.write(payload)
            await writer.drain()
            if expect_reply and writer.can_write_eof():
                writer.write_eof()
        except OSError as exc:
            raise classify(exc) from exc

        if not expect_reply:
            return ""

        try:
            raw = await asyncio.wait_for(reader.read(), timeout=timeout_s)
        except OSError as exc:
            err = classify(exc)
            if isinstance(err, OtherSocketClosed):
                logger.debug(f"Peer at {address} closed without replying")
                return ""
            raise err from exc
        return raw.decode("utf-8", errors="replace")
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug(f"Error closing connection to {address}: {exc}")


class ConsoleClient:
    """Blocking client for short-lived invocations that forward to a server."""

    def __init__(
        self,
        *,
        address: str | os.PathLike[str],
        framing: Framing = Framing.LINE,
        timeout_s: float | None = DEFAULT_CLIENT_TIMEOUT_S,
        transport: RelayTransport | None = None,
    ) -> None:
        self._address = os.fspath(address)
        self._framing = Framing(framing)
        self._transport = transport or UnixSocketTransport(
            self._address, timeout_s=timeout_s
        )

    @property
    def address(self) -> str:
        return self._address

    def send(self, message: str, *, expect_reply: bool = True) -> str:
        payload = encode_message(message, framing=self._framing)
        try:
            raw = self._transport.roundtrip(payload, expect_reply=expect_reply)
        except ConsoleSendError:
            raise
        except OSError as exc:
            raise classify(exc) from exc
        return raw.decode("utf-8", errors="replace")

    def is_running(self) -> bool:
        """Check the endpoint; only a ``NotFound`` classification means no server.

        The check is an empty connection, which never produces an event.
        """
        try:
            self._transport.roundtrip(b"", expect_reply=False)
        except NotFound:
            return False
        except ConsoleSendError as exc:
            logger.debug(f"Liveness check of {self._transport.describe()} failed: {exc}")
        return True
