from __future__ import annotations

import errno
import socket
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from console_relay.ipc.constants import DEFAULT_CLIENT_TIMEOUT_S
from console_relay.ipc.errors import OtherSocketClosed, classify
from console_relay.ipc.paths import to_socket_address


class RelayTransport(Protocol):
    def roundtrip(self, payload: bytes, *, expect_reply: bool = True) -> bytes: ...

    def describe(self) -> str: ...


@dataclass(frozen=True)
class UnixSocketTransport:
    """Blocking ``AF_UNIX`` transport; every failure is raised classified."""

    address: str
    timeout_s: float | None = DEFAULT_CLIENT_TIMEOUT_S

    def _connect(self) -> socket.socket:
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        if self.timeout_s is not None:
            s.settimeout(float(self.timeout_s))
        try:
            s.connect(to_socket_address(self.address))
        except OSError as exc:
            s.close()
            raise classify(exc) from exc
        return s

    def roundtrip(self, payload: bytes, *, expect_reply: bool = True) -> bytes:
        with self._connect() as s:
            try:
                s.sendall(payload)
                if expect_reply:
                    s.shutdown(socket.SHUT_WR)
            except OSError as exc:
                # ENOTCONN here means the peer already hung up after reading.
                if exc.errno not in {errno.ENOTCONN, errno.EINVAL}:
                    raise classify(exc) from exc
            if not expect_reply:
                return b""

            buf = b""
            try:
                while True:
                    chunk = s.recv(64 * 1024)
                    if not chunk:
                        break
                    buf += chunk
            except OSError as exc:
                err = classify(exc)
                if isinstance(err, OtherSocketClosed):
                    logger.debug(f"Peer at {self.address} closed without replying")
                    return b""
                raise err from exc
            return buf

    def describe(self) -> str:
        return f"unix:{self.address}"
