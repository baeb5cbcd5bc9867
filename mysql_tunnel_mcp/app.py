"""
Singleton FastMCP instance and the process-wide dispatcher.

Imported by tool modules (which register @mcp.tool() decorators)
and by server.py (which runs it). Settings are read on first use of
get_dispatcher(), not at import time.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
import structlog
from mcp.server.fastmcp import FastMCP

from mysql_tunnel_mcp.config import Settings, get_settings
from mysql_tunnel_mcp.db.session import DatabaseSession
from mysql_tunnel_mcp.dispatch import OperationDispatcher
from mysql_tunnel_mcp.orchestrator import ConnectionOrchestrator
from mysql_tunnel_mcp.tunnel.manager import TunnelManager

log = structlog.get_logger()

_dispatcher: OperationDispatcher | None = None
_orchestrator: ConnectionOrchestrator | None = None


def build_orchestrator(settings: Settings) -> ConnectionOrchestrator:
    return ConnectionOrchestrator(
        TunnelManager(settings.tunnel_config),
        DatabaseSession(settings.database_config),
        idle_timeout=settings.idle_timeout_seconds,
    )


def get_dispatcher() -> OperationDispatcher:
    global _dispatcher, _orchestrator
    if _dispatcher is None:
        settings = get_settings()
        _orchestrator = build_orchestrator(settings)
        _dispatcher = OperationDispatcher(
            _orchestrator,
            db_host=settings.db_host,
            db_name=settings.db_name,
        )
    return _dispatcher


async def shutdown() -> None:
    global _dispatcher, _orchestrator
    orchestrator, _orchestrator, _dispatcher = _orchestrator, None, None
    if orchestrator is not None:
        log.info("server.shutdown")
        await orchestrator.shutdown()


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
    try:
        yield
    finally:
        # Cleanup must finish even when the run is being cancelled.
        with anyio.CancelScope(shield=True):
            await shutdown()


mcp = FastMCP(
    name="mysql-tunnel-mcp",
    instructions=(
        "Read-only access to a MySQL database reached through an on-demand SSH tunnel. "
        "Use list_tables and describe_table to explore the schema, read_query for "
        "SELECT/SHOW/DESCRIBE statements, and connect_db to check connectivity."
    ),
    lifespan=lifespan,
)
