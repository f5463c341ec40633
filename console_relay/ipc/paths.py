from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from console_relay.ipc.constants import (
    ABSTRACT_PREFIX,
    SOCKET_DIR_ENV_KEY,
    SOCKET_ENV_KEY,
)


def find_project_root(*, start: Path | None = None) -> Path:
    cur = (start or Path.cwd()).resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return cur


def _safe_app_name(name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in name)
    return cleaned.strip("_.") or "app"


def is_abstract_address(address: str) -> bool:
    return address.startswith(ABSTRACT_PREFIX)


def to_socket_address(address: str) -> str:
    """Translate a user-facing address into what ``AF_UNIX`` bind/connect take."""
    if is_abstract_address(address):
        return "\0" + address[len(ABSTRACT_PREFIX) :]
    return address


def _default_relay_dir() -> Path:
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR", "").strip()
    if runtime_dir:
        return Path(runtime_dir) / "console-relay"
    uid = os.getuid() if hasattr(os, "getuid") else 0
    return Path(tempfile.gettempdir()) / f"console-relay-{uid}"


@dataclass(frozen=True)
class RelayPaths:
    app_name: str
    relay_dir: Path
    sock_path: Path

    @property
    def address(self) -> str:
        return str(self.sock_path)


def get_relay_paths(app_name: str, *, project_root: Path | None = None) -> RelayPaths:
    name = _safe_app_name(app_name)

    sock_override = os.environ.get(SOCKET_ENV_KEY, "").strip()
    if sock_override:
        sock_path = Path(sock_override).expanduser()
        return RelayPaths(app_name=name, relay_dir=sock_path.parent, sock_path=sock_path)

    dir_override = os.environ.get(SOCKET_DIR_ENV_KEY, "").strip()
    if dir_override:
        rd = Path(dir_override).expanduser()
        if not rd.is_absolute():
            rd = (project_root or find_project_root()).resolve() / rd
        relay_dir = rd.resolve()
    else:
        relay_dir = _default_relay_dir()
    return RelayPaths(app_name=name, relay_dir=relay_dir, sock_path=relay_dir / f"{name}.sock")
