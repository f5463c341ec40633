from console_relay.ipc.client import ConsoleClient, send_message
from console_relay.ipc.constants import Framing
from console_relay.ipc.errors import (
    ConsoleSendError,
    GenericError,
    NotFound,
    OtherSocketClosed,
    PermissionDenied,
    ReplyAlreadySentError,
    SendErrorKind,
    ServerClosedError,
    classify,
)
from console_relay.ipc.server import ConsoleServer, ReceiveEvent

__all__ = [
    "ConsoleClient",
    "ConsoleSendError",
    "ConsoleServer",
    "Framing",
    "GenericError",
    "NotFound",
    "OtherSocketClosed",
    "PermissionDenied",
    "ReceiveEvent",
    "ReplyAlreadySentError",
    "SendErrorKind",
    "ServerClosedError",
    "classify",
    "send_message",
]
