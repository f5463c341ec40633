from __future__ import annotations

import asyncio
import json
import sys
import threading
import time

import pytest
from click.testing import CliRunner
from loguru import logger

from console_relay.cli import relay_cli
from console_relay.ipc.client import ConsoleClient
from console_relay.ipc.server import ConsoleServer


def test_status_without_server(sock_address: str) -> None:
    result = CliRunner().invoke(relay_cli, ["status", "--socket", sock_address])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data == {"ok": True, "result": {"running": False, "address": sock_address}}


def test_status_uses_name_and_env(tmp_path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("CONSOLE_RELAY_SOCKET", raising=False)
    monkeypatch.setenv("CONSOLE_RELAY_DIR", str(tmp_path))
    result = CliRunner().invoke(relay_cli, ["status", "--name", "mytool"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["result"]["address"] == str(tmp_path / "mytool.sock")


def test_send_without_server_fails_with_not_found(sock_address: str) -> None:
    result = CliRunner().invoke(
        relay_cli, ["send", "--socket", sock_address, "mytool", "start"]
    )
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["ok"] is False
    assert data["error"] == "not_found"


@pytest.mark.asyncio
async def test_send_prints_reply(sock_address: str) -> None:
    async with ConsoleServer.bind(sock_address) as server:
        invoke = asyncio.create_task(
            asyncio.to_thread(
                CliRunner().invoke,
                relay_cli,
                ["send", "--socket", sock_address, "mytool", "start", "x"],
            )
        )
        event = await asyncio.wait_for(server.accept(), timeout=5.0)
        assert event.take_message() == "mytool start x"
        await event.reply("ok")
        result = await invoke

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "ok"


@pytest.mark.asyncio
async def test_status_with_running_server(sock_address: str) -> None:
    async with ConsoleServer.bind(sock_address):
        result = await asyncio.to_thread(
            CliRunner().invoke, relay_cli, ["status", "--socket", sock_address]
        )
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["result"]["running"] is True


def test_serve_exits_on_exit_command(sock_address: str) -> None:
    replies: list[str] = []

    def _client() -> None:
        client = ConsoleClient(address=sock_address)
        deadline = time.time() + 5.0
        while not client.is_running() and time.time() < deadline:
            time.sleep(0.02)
        replies.append(client.send("mytool open a.txt"))
        replies.append(client.send("mytool quit"))

    thread = threading.Thread(target=_client)
    thread.start()
    result = CliRunner().invoke(
        relay_cli,
        [
            "serve",
            "--socket",
            sock_address,
            "--exit-command",
            "quit",
            "--log-level",
            "ERROR",
        ],
    )
    thread.join(timeout=10)
    # serve swaps loguru onto the runner's stderr; put the default sink back.
    logger.remove()
    logger.add(sys.stderr)

    assert result.exit_code == 0, result.output
    assert "mytool open a.txt" in result.output
    assert replies == ["ok", "bye"]
