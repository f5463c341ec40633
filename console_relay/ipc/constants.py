from __future__ import annotations

from enum import StrEnum
from typing import Final


class Framing(StrEnum):
    LINE = "line"
    STREAM = "stream"


LINE_TERMINATOR: Final[bytes] = b"\n"
DEFAULT_BUFFER_SIZE: Final[int] = 1024
DEFAULT_CLIENT_TIMEOUT_S: Final[float] = 5.0

# Linux abstract-namespace sockets are spelled "@name" by callers.
ABSTRACT_PREFIX: Final[str] = "@"

SOCKET_ENV_KEY: Final[str] = "CONSOLE_RELAY_SOCKET"
SOCKET_DIR_ENV_KEY: Final[str] = "CONSOLE_RELAY_DIR"
