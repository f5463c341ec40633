__version__ = "0.1.0"

from console_relay.forward import Forward, RunLocally, decide, intercept_args
from console_relay.ipc import (
    ConsoleClient,
    ConsoleSendError,
    ConsoleServer,
    Framing,
    ReceiveEvent,
    send_message,
)

__all__ = [
    "__version__",
    "ConsoleClient",
    "ConsoleSendError",
    "ConsoleServer",
    "Forward",
    "Framing",
    "ReceiveEvent",
    "RunLocally",
    "decide",
    "intercept_args",
    "send_message",
]
