"""Shared fakes: an asyncssh-like connection/connector and a scripted session."""

from __future__ import annotations

import asyncio

import pytest

from mysql_tunnel_mcp.config import TunnelConfig
from mysql_tunnel_mcp.orchestrator import ConnectionOrchestrator
from mysql_tunnel_mcp.tunnel.manager import TunnelManager


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeListener:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSSHConnection:
    def __init__(self, *, forward_error: BaseException | None = None) -> None:
        self._closed = asyncio.Event()
        self.closed_by_client = False
        self.forward_error = forward_error
        self.forward_args: tuple | None = None
        self.listeners: list[FakeListener] = []

    async def forward_local_port(self, listen_host, listen_port, dest_host, dest_port):  # type: ignore[no-untyped-def]
        if self.forward_error is not None:
            raise self.forward_error
        self.forward_args = (listen_host, listen_port, dest_host, dest_port)
        listener = FakeListener()
        self.listeners.append(listener)
        return listener

    def close(self) -> None:
        self.closed_by_client = True
        self._closed.set()

    def drop(self) -> None:
        """Simulate the remote side going away."""
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class FakeConnector:
    def __init__(self, *, delay: float = 0.0) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.connections: list[FakeSSHConnection] = []
        self.error: BaseException | None = None
        self.forward_error: BaseException | None = None
        self.delay = delay

    async def __call__(self, host, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append((host, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        conn = FakeSSHConnection(forward_error=self.forward_error)
        self.connections.append(conn)
        return conn


class FakeSession:
    """Stands in for DatabaseSession; ``responses`` are rows or exceptions, consumed in order."""

    def __init__(self, responses=None) -> None:  # type: ignore[no-untyped-def]
        self.responses = list(responses or [])
        self.queries: list[str] = []
        self.params: list[object] = []
        self.closes = 0
        self.has_pool = False
        self.close_error: BaseException | None = None
        self.close_delay = 0.0
        self.hook = None

    async def query(self, sql, params=None):  # type: ignore[no-untyped-def]
        self.has_pool = True
        self.queries.append(sql)
        self.params.append(params)
        if self.hook is not None:
            await self.hook(len(self.queries))
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return [{"ok": 1}]

    async def test_connection(self) -> bool:
        try:
            await self.query("SELECT 1")
        except Exception:
            return False
        return True

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if self.has_pool:
            self.closes += 1
        self.has_pool = False
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def tunnel_config() -> TunnelConfig:
    return TunnelConfig(
        ssh_host="bastion.example.com",
        ssh_user="deploy",
        ssh_key_path="/keys/id_ed25519",
        local_port=33061,
        remote_host="db.internal",
        remote_port=3306,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_orchestrator(tunnel_config, connector, session):  # type: ignore[no-untyped-def]
    def _make(idle_timeout: float = 60.0) -> ConnectionOrchestrator:
        tunnel = TunnelManager(tunnel_config, connector=connector)
        return ConnectionOrchestrator(tunnel, session, idle_timeout=idle_timeout)  # type: ignore[arg-type]

    return _make
