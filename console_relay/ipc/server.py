from __future__ import annotations

import asyncio
import errno
import functools
import os
import socket
import stat
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

from loguru import logger

from console_relay.ipc.constants import DEFAULT_BUFFER_SIZE, Framing
from console_relay.ipc.errors import (
    ReplyAlreadySentError,
    SendErrorKind,
    ServerClosedError,
    classify,
    classify_kind,
)
from console_relay.ipc.framing import FrameStatus, frame
from console_relay.ipc.paths import is_abstract_address, to_socket_address

LISTEN_BACKLOG = 128
ACCEPT_ERROR_BACKOFF_S = 0.05
STALE_CHECK_TIMEOUT_S = 0.5

S = TypeVar("S")

_CLOSED = object()


class ReceiveEvent(Generic[S]):
    """One framed message plus the write half of the connection it came on.

    The write half may be used for at most one reply. Use the event as an
    async context manager (or call :meth:`close`) so connections that are not
    replied to are released promptly.
    """

    def __init__(self, message: str, writer: asyncio.StreamWriter, state: S) -> None:
        self._message = message
        self._writer = writer
        self._state = state
        self._replied = False

    def take_message(self) -> str:
        message, self._message = self._message, ""
        return message

    @property
    def writer(self) -> asyncio.StreamWriter:
        return self._writer

    @property
    def state(self) -> S:
        return self._state

    @property
    def replied(self) -> bool:
        return self._replied

    async def reply(self, text: str) -> None:
        if self._replied:
            raise ReplyAlreadySentError("a reply was already sent on this connection")
        self._replied = True
        try:
            self._writer.write(text.encode("utf-8"))
            await self._writer.drain()
        except OSError as exc:
            raise classify(exc) from exc
        finally:
            await self.close()

    async def close(self) -> None:
        self._replied = True
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            logger.debug(f"Connection closed with error: {exc}")

    async def __aenter__(self) -> ReceiveEvent[S]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class ConsoleServer(Generic[S]):
    """Local endpoint that turns incoming connections into ``ReceiveEvent``s.

    Exactly one background accept loop runs per server. Each accepted
    connection is framed by its own task, so events are delivered in the
    order framing *finishes*, not the order connections arrived.

    Once :meth:`close` runs, the accept loop and all in-flight framing tasks
    are cancelled, undelivered events are discarded, and every current or
    later :meth:`accept` call raises :class:`ServerClosedError`.

    A connection that closes without sending any bytes never produces an
    event, under either framing. This is what lets `ConsoleClient.is_running`
    check for a live server without disturbing its consumer.
    """

    def __init__(
        self,
        *,
        address: str,
        sock: socket.socket,
        framing: Framing,
        buffer_size: int,
        surface_errors: bool,
        state_factory: Callable[[], S] | None,
        max_message_bytes: int | None,
        read_timeout_s: float | None,
    ) -> None:
        self._address = address
        self._sock = sock
        self._framing = Framing(framing)
        self._buffer_size = int(buffer_size)
        self._surface_errors = bool(surface_errors)
        self._state_factory = state_factory
        self._max_message_bytes = max_message_bytes
        self._read_timeout_s = read_timeout_s

        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._connections: set[asyncio.Task[None]] = set()
        self._closed = False
        self._sock_ino = self._socket_inode()
        self._accept_task = asyncio.get_running_loop().create_task(
            self._accept_loop(), name=f"console-relay-accept:{address}"
        )

    @classmethod
    def bind(
        cls,
        address: str | os.PathLike[str],
        *,
        framing: Framing = Framing.LINE,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        surface_errors: bool = False,
        state_factory: Callable[[], S] | None = None,
        max_message_bytes: int | None = None,
        read_timeout_s: float | None = None,
    ) -> ConsoleServer[S]:
        """Listen on ``address`` and start the accept loop.

        Must be called with a running event loop. A stale socket file left at
        ``address`` by a crashed instance is removed first. If another server
        is still accepting there, ``OSError(EADDRINUSE)`` is raised instead.
        Anything at ``address`` that is not a socket is left in place, so the
        bind fails. Bind failures are raised as ``OSError``.
        """
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        address = os.fspath(address)
        asyncio.get_running_loop()  # raises outside a running event loop

        if not is_abstract_address(address):
            try:
                _clear_stale_socket(Path(address))
            except OSError as exc:
                logger.error(f"Failed to bind console relay socket at {address}: {exc}")
                raise

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(to_socket_address(address))
            sock.listen(LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            logger.error(f"Failed to bind console relay socket at {address}: {exc}")
            logger.error(
                "Hint: AF_UNIX paths are limited to ~100 bytes and the parent directory "
                "must be writable. Try setting CONSOLE_RELAY_DIR to a shorter path."
            )
            raise

        if not is_abstract_address(address):
            try:
                os.chmod(address, 0o600)
            except OSError as exc:
                logger.debug(f"Failed to chmod relay socket {address}: {exc}")

        server: ConsoleServer[S] = cls(
            address=address,
            sock=sock,
            framing=framing,
            buffer_size=buffer_size,
            surface_errors=surface_errors,
            state_factory=state_factory,
            max_message_bytes=max_message_bytes,
            read_timeout_s=read_timeout_s,
        )
        logger.debug(f"Console relay listening on {address} (framing={server._framing})")
        return server

    @property
    def address(self) -> str:
        return self._address

    @property
    def framing(self) -> Framing:
        return self._framing

    @property
    def is_serving(self) -> bool:
        return not self._closed and not self._accept_task.done()

    async def accept(self) -> ReceiveEvent[S]:
        if self._closed:
            raise ServerClosedError(f"console server at {self._address} is closed")
        item = await self._queue.get()
        if item is _CLOSED:
            # Wake any other waiter too.
            self._queue.put_nowait(_CLOSED)
            raise ServerClosedError(f"console server at {self._address} is closed")
        if isinstance(item, BaseException):
            raise item
        return item

    def __aiter__(self) -> ConsoleServer[S]:
        return self

    async def __anext__(self) -> ReceiveEvent[S]:
        try:
            return await self.accept()
        except ServerClosedError:
            raise StopAsyncIteration from None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._accept_task.cancel()
        pending = [self._accept_task, *self._connections]
        for task in pending[1:]:
            task.cancel()

        abandoned: list[ReceiveEvent[S]] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, ReceiveEvent):
                abandoned.append(item)
        self._queue.put_nowait(_CLOSED)

        await asyncio.gather(*pending, return_exceptions=True)
        self._sock.close()
        for event in abandoned:
            await event.close()

        self._unlink_socket()
        logger.debug(
            f"Console relay at {self._address} closed "
            f"({len(abandoned)} undelivered event(s) discarded)"
        )

    async def __aenter__(self) -> ConsoleServer[S]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _accept_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                conn, _ = await loop.sock_accept(self._sock)
            except OSError as exc:
                logger.debug(f"Accept failed on {self._address}: {exc}")
                if self._surface_errors:
                    self._queue.put_nowait(exc)
                await asyncio.sleep(ACCEPT_ERROR_BACKOFF_S)
                continue

            task = loop.create_task(self._serve_connection(conn))
            self._connections.add(task)
            task.add_done_callback(functools.partial(self._connection_done, conn))

    def _connection_done(self, conn: socket.socket, task: asyncio.Task[None]) -> None:
        self._connections.discard(task)
        # A task cancelled before its first step never reaches its own cleanup.
        if task.cancelled():
            conn.close()

    async def _serve_connection(self, conn: socket.socket) -> None:
        try:
            reader, writer = await asyncio.open_unix_connection(sock=conn)
        except asyncio.CancelledError:
            conn.close()
            raise
        except OSError as exc:
            conn.close()
            logger.debug(f"Failed to wrap accepted connection: {exc}")
            if self._surface_errors:
                self._queue.put_nowait(exc)
            return

        try:
            if self._read_timeout_s is None:
                message = await self._read_message(reader)
            else:
                message = await asyncio.wait_for(
                    self._read_message(reader), timeout=self._read_timeout_s
                )
        except TimeoutError:
            logger.debug(f"Dropping connection: no message within {self._read_timeout_s}s")
            message = None
        except OSError as exc:
            logger.debug(f"Dropping connection after read error: {exc}")
            if self._surface_errors:
                self._queue.put_nowait(exc)
            message = None
        except asyncio.CancelledError:
            writer.close()
            raise

        if message is None or self._closed:
            writer.close()
            return

        state = self._state_factory() if self._state_factory is not None else None
        self._queue.put_nowait(ReceiveEvent(message, writer, state))

    async def _read_message(self, reader: asyncio.StreamReader) -> str | None:
        buffer = bytearray()
        while True:
            chunk = await reader.read(self._buffer_size)
            scanned = len(buffer)
            buffer.extend(chunk)
            result = frame(
                buffer,
                start=scanned,
                framing=self._framing,
                eof=not chunk,
                max_bytes=self._max_message_bytes,
            )
            if result.status is FrameStatus.COMPLETE:
                return result.message
            if result.done:
                logger.debug(
                    f"Dropping connection on {self._address}: {result.status} "
                    f"after {len(buffer)} byte(s)"
                )
                return None

    def _socket_inode(self) -> int | None:
        if is_abstract_address(self._address):
            return None
        try:
            return os.stat(self._address).st_ino
        except OSError:
            return None

    def _unlink_socket(self) -> None:
        # Only remove the file this server created; a newer instance may own the path.
        if self._sock_ino is None or self._socket_inode() != self._sock_ino:
            return
        try:
            os.unlink(self._address)
        except OSError as exc:
            logger.debug(f"Failed to remove relay socket {self._address}: {exc}")


def _clear_stale_socket(path: Path) -> None:
    """Remove a socket file left behind by a crashed instance.

    Only sockets nobody is accepting on are removed. A live listener raises
    ``EADDRINUSE``; non-socket files are left for ``bind`` to reject.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        st = path.lstat()
    except FileNotFoundError:
        return
    if not stat.S_ISSOCK(st.st_mode):
        logger.warning(f"Refusing to remove non-socket file at {path}")
        return

    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as check:
        check.settimeout(STALE_CHECK_TIMEOUT_S)
        try:
            check.connect(str(path))
        except OSError as exc:
            if classify_kind(exc) != SendErrorKind.NOT_FOUND:
                logger.warning(f"Could not check existing relay socket at {path}: {exc}")
                return
        else:
            raise OSError(
                errno.EADDRINUSE, f"another server is listening at {path}", str(path)
            )

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"Failed to remove stale relay socket at {path}: {exc}")
