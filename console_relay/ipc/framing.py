from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from console_relay.ipc.constants import LINE_TERMINATOR, Framing


class FrameStatus(StrEnum):
    NEED_MORE = "need_more"
    COMPLETE = "complete"
    ENDED = "ended"
    INVALID = "invalid"
    OVERSIZED = "oversized"


@dataclass(frozen=True)
class Frame:
    status: FrameStatus
    message: str | None = None

    @property
    def done(self) -> bool:
        return self.status is not FrameStatus.NEED_MORE


NEED_MORE = Frame(FrameStatus.NEED_MORE)
ENDED = Frame(FrameStatus.ENDED)
INVALID = Frame(FrameStatus.INVALID)
OVERSIZED = Frame(FrameStatus.OVERSIZED)


def _decode(raw: bytes | bytearray) -> Frame:
    try:
        return Frame(FrameStatus.COMPLETE, raw.decode("utf-8"))
    except UnicodeDecodeError:
        return INVALID


def frame_line(
    buffer: bytes | bytearray,
    *,
    eof: bool = False,
    max_bytes: int | None = None,
    start: int = 0,
) -> Frame:
    """Frame the first newline-terminated message in ``buffer``.

    Bytes after the first terminator are not part of the message and are
    ignored; only one message is taken per connection. ``start`` skips a
    prefix already known to hold no terminator, so callers that grow the
    buffer chunk by chunk only scan the new bytes.
    """
    idx = buffer.find(LINE_TERMINATOR, start)
    if idx < 0:
        if max_bytes is not None and len(buffer) > max_bytes:
            return OVERSIZED
        return ENDED if eof else NEED_MORE
    if max_bytes is not None and idx > max_bytes:
        return OVERSIZED
    return _decode(buffer[:idx])


def frame_stream(
    buffer: bytes | bytearray, *, eof: bool = False, max_bytes: int | None = None
) -> Frame:
    """Frame the whole stream; the message is complete only at end-of-input.

    A connection that closes without sending anything carries no message.
    """
    if max_bytes is not None and len(buffer) > max_bytes:
        return OVERSIZED
    if not eof:
        return NEED_MORE
    if not buffer:
        return ENDED
    return _decode(buffer)


def frame(
    buffer: bytes | bytearray,
    *,
    framing: Framing,
    eof: bool = False,
    max_bytes: int | None = None,
    start: int = 0,
) -> Frame:
    if framing == Framing.LINE:
        return frame_line(buffer, eof=eof, max_bytes=max_bytes, start=start)
    return frame_stream(buffer, eof=eof, max_bytes=max_bytes)


def encode_message(message: str, *, framing: Framing) -> bytes:
    if framing == Framing.LINE:
        if "\n" in message:
            raise ValueError("line-framed messages cannot contain a newline")
        return message.encode("utf-8") + LINE_TERMINATOR
    return message.encode("utf-8")
