"""Tests for tool registration and the server lifespan."""

from __future__ import annotations

import json

import pytest

from mysql_tunnel_mcp import app as app_module
from mysql_tunnel_mcp.app import lifespan, mcp
from mysql_tunnel_mcp.tools import database


class _DispatcherStub:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def read_query(self, sql: str) -> str:
        self.calls.append(("read_query", sql))
        return "[]"

    async def list_tables(self) -> str:
        self.calls.append(("list_tables",))
        return "[]"

    async def describe_table(self, table: str) -> str:
        self.calls.append(("describe_table", table))
        return "[]"

    async def connect_db(self) -> str:
        self.calls.append(("connect_db",))
        return json.dumps({"connected": True})


class _OrchestratorStub:
    def __init__(self) -> None:
        self.shutdowns = 0

    async def shutdown(self) -> None:
        self.shutdowns += 1


@pytest.mark.anyio
async def test_four_tools_are_registered() -> None:
    tools = await mcp.list_tools()

    names = {tool.name for tool in tools}
    assert names == {"read_query", "list_tables", "describe_table", "connect_db"}
    by_name = {tool.name: tool for tool in tools}
    assert by_name["read_query"].inputSchema["required"] == ["sql"]
    assert by_name["describe_table"].inputSchema["required"] == ["table"]


@pytest.mark.anyio
async def test_tools_delegate_to_dispatcher(monkeypatch: pytest.MonkeyPatch) -> None:
    stub = _DispatcherStub()
    monkeypatch.setattr(app_module, "_dispatcher", stub)

    await database.read_query("SELECT 1")
    await database.list_tables()
    await database.describe_table("users")
    assert json.loads(await database.connect_db()) == {"connected": True}

    assert stub.calls == [
        ("read_query", "SELECT 1"),
        ("list_tables",),
        ("describe_table", "users"),
        ("connect_db",),
    ]


@pytest.mark.anyio
async def test_lifespan_exit_shuts_down_orchestrator(monkeypatch: pytest.MonkeyPatch) -> None:
    orchestrator = _OrchestratorStub()
    monkeypatch.setattr(app_module, "_orchestrator", orchestrator)
    monkeypatch.setattr(app_module, "_dispatcher", _DispatcherStub())

    async with lifespan(mcp):
        pass

    assert orchestrator.shutdowns == 1
    assert app_module._orchestrator is None
    assert app_module._dispatcher is None


@pytest.mark.anyio
async def test_lifespan_without_activity_is_a_no_op(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_module, "_orchestrator", None)
    monkeypatch.setattr(app_module, "_dispatcher", None)

    async with lifespan(mcp):
        pass

    assert app_module._orchestrator is None
