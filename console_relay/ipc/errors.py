"""Error taxonomy for the relay and the classifier for local-socket failures.

Raw platform codes are consulted first, then the coarse exception kind.
POSIX codes are taken from the ``errno`` module by name because their integer
values differ between Linux, macOS and the BSDs. Windows named-pipe failures
carry their code on ``OSError.winerror``:

    ERROR_FILE_NOT_FOUND (2)       no pipe with that name
    ERROR_BROKEN_PIPE (109)        peer closed the pipe
    ERROR_NO_DATA (232)            pipe is being closed
    ERROR_PIPE_NOT_CONNECTED (233) no process on the other end
"""

from __future__ import annotations

import errno
import sys
from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar


class SendErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    OTHER_SOCKET_CLOSED = "other_socket_closed"
    GENERIC = "generic"


POSIX_CODES: Mapping[int, SendErrorKind] = {
    errno.EPIPE: SendErrorKind.OTHER_SOCKET_CLOSED,
    errno.ECONNRESET: SendErrorKind.OTHER_SOCKET_CLOSED,
    errno.ECONNABORTED: SendErrorKind.OTHER_SOCKET_CLOSED,
    errno.ECONNREFUSED: SendErrorKind.NOT_FOUND,
    errno.ENOENT: SendErrorKind.NOT_FOUND,
}

WINDOWS_CODES: Mapping[int, SendErrorKind] = {
    109: SendErrorKind.OTHER_SOCKET_CLOSED,
    232: SendErrorKind.OTHER_SOCKET_CLOSED,
    233: SendErrorKind.OTHER_SOCKET_CLOSED,
    2: SendErrorKind.NOT_FOUND,
}

PLATFORM_CODES: Mapping[int, SendErrorKind] = (
    WINDOWS_CODES if sys.platform == "win32" else POSIX_CODES
)

# Order matters: subclasses before their bases.
KIND_TABLE: tuple[tuple[type[OSError], SendErrorKind], ...] = (
    (PermissionError, SendErrorKind.PERMISSION_DENIED),
    (FileNotFoundError, SendErrorKind.NOT_FOUND),
    (ConnectionRefusedError, SendErrorKind.NOT_FOUND),
    (BrokenPipeError, SendErrorKind.OTHER_SOCKET_CLOSED),
    (ConnectionResetError, SendErrorKind.OTHER_SOCKET_CLOSED),
    (ConnectionAbortedError, SendErrorKind.OTHER_SOCKET_CLOSED),
)


class ConsoleRelayError(Exception):
    """Base exception for the package."""


class ServerClosedError(ConsoleRelayError):
    """Raised by ``ConsoleServer.accept`` once the server has been closed."""


class ReplyAlreadySentError(ConsoleRelayError):
    """Raised when a second reply is attempted on the same connection."""


class ConsoleSendError(ConsoleRelayError):
    kind: ClassVar[SendErrorKind] = SendErrorKind.GENERIC

    def __init__(self, message: str, *, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.original = original


class NotFound(ConsoleSendError):
    kind = SendErrorKind.NOT_FOUND


class PermissionDenied(ConsoleSendError):
    kind = SendErrorKind.PERMISSION_DENIED


class OtherSocketClosed(ConsoleSendError):
    kind = SendErrorKind.OTHER_SOCKET_CLOSED


class GenericError(ConsoleSendError):
    kind = SendErrorKind.GENERIC


_ERROR_TYPES: dict[SendErrorKind, type[ConsoleSendError]] = {
    SendErrorKind.NOT_FOUND: NotFound,
    SendErrorKind.PERMISSION_DENIED: PermissionDenied,
    SendErrorKind.OTHER_SOCKET_CLOSED: OtherSocketClosed,
    SendErrorKind.GENERIC: GenericError,
}


def _raw_code(exc: OSError) -> int | None:
    winerror = getattr(exc, "winerror", None)
    if winerror is not None:
        return int(winerror)
    if exc.errno is not None:
        return int(exc.errno)
    return None


def classify_kind(
    exc: BaseException, *, codes: Mapping[int, SendErrorKind] | None = None
) -> SendErrorKind:
    if not isinstance(exc, OSError):
        return SendErrorKind.GENERIC

    table = PLATFORM_CODES if codes is None else codes
    code = _raw_code(exc)
    if code is not None and code in table:
        return table[code]

    for exc_type, kind in KIND_TABLE:
        if isinstance(exc, exc_type):
            return kind
    return SendErrorKind.GENERIC


def classify(
    exc: BaseException, *, codes: Mapping[int, SendErrorKind] | None = None
) -> ConsoleSendError:
    if isinstance(exc, ConsoleSendError):
        return exc
    kind = classify_kind(exc, codes=codes)
    err = _ERROR_TYPES[kind](str(exc) or type(exc).__name__, original=exc)
    err.__cause__ = exc
    return err
