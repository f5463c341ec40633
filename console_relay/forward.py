"""Forward a CLI invocation to an already-running instance.

Typical entry point:

    result = intercept_args(address, {"open", "reload"})
    if isinstance(result, NoMatch):
        run_locally(result.args)
    elif not result.ok:
        sys.exit(str(result.error))
"""

from __future__ import annotations

import os
import sys
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import TypeAlias

from loguru import logger

from console_relay.ipc.client import ConsoleClient
from console_relay.ipc.constants import DEFAULT_CLIENT_TIMEOUT_S, Framing
from console_relay.ipc.errors import ConsoleSendError


@dataclass(frozen=True)
class Forward:
    message: str


@dataclass(frozen=True)
class RunLocally:
    args: list[str]


Decision: TypeAlias = Forward | RunLocally


def decide(
    current_args: Sequence[str], commands_to_intercept: Collection[str]
) -> Decision:
    """Pick between forwarding and local execution; performs no I/O.

    ``current_args`` is a full argument vector, program name first, so the
    subcommand is ``current_args[1]``.
    """
    args = [str(a) for a in current_args]
    if len(args) > 1 and args[1] in commands_to_intercept:
        return Forward(" ".join(args))
    return RunLocally(args)


@dataclass(frozen=True)
class Matched:
    reply: str = ""
    error: ConsoleSendError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class NoMatch:
    args: list[str]


def intercept_args(
    address: str | os.PathLike[str],
    commands_to_intercept: Collection[str],
    *,
    argv: Sequence[str] | None = None,
    framing: Framing = Framing.LINE,
    expect_reply: bool = True,
    timeout_s: float | None = DEFAULT_CLIENT_TIMEOUT_S,
) -> Matched | NoMatch:
    decision = decide(sys.argv if argv is None else argv, commands_to_intercept)
    if isinstance(decision, RunLocally):
        return NoMatch(decision.args)

    client = ConsoleClient(address=address, framing=framing, timeout_s=timeout_s)
    try:
        reply = client.send(decision.message, expect_reply=expect_reply)
    except ConsoleSendError as exc:
        logger.debug(f"Forwarding to {client.address} failed ({exc.kind}): {exc}")
        return Matched(error=exc)
    return Matched(reply=reply)
