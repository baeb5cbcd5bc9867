"""
Maps the named tool operations onto validated SQL run through the orchestrator.

Every method returns text and never raises: results are JSON, failures are
``{"error": "..."}`` JSON.
"""

import json
from collections.abc import Awaitable
from typing import Any

import structlog

from mysql_tunnel_mcp.orchestrator import ConnectionOrchestrator
from mysql_tunnel_mcp.validation import require_identifier, require_read_only

log = structlog.get_logger()


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


def error_payload(exc: BaseException) -> str:
    return json.dumps({"error": str(exc) or type(exc).__name__})


class OperationDispatcher:
    def __init__(
        self,
        orchestrator: ConnectionOrchestrator,
        *,
        db_host: str,
        db_name: str,
    ) -> None:
        self._orchestrator = orchestrator
        self._db_host = db_host
        self._db_name = db_name

    async def read_query(self, sql: str) -> str:
        async def _op() -> Any:
            statement = require_read_only(sql)
            return await self._orchestrator.run(lambda session: session.query(statement))

        return await self._guard("read_query", _op())

    async def list_tables(self) -> str:
        async def _op() -> Any:
            return await self._orchestrator.run(lambda session: session.query("SHOW TABLES"))

        return await self._guard("list_tables", _op())

    async def describe_table(self, table: str) -> str:
        async def _op() -> Any:
            name = require_identifier(table)
            return await self._orchestrator.run(lambda session: session.query(f"DESCRIBE `{name}`"))

        return await self._guard("describe_table", _op())

    async def connect_db(self) -> str:
        async def _op() -> Any:
            opened = await self._orchestrator.ensure_connection()
            connected = await self._orchestrator.session.test_connection()
            self._orchestrator.touch()
            handle = self._orchestrator.tunnel.handle
            return {
                "connected": connected,
                "host": self._db_host,
                "database": self._db_name,
                "tunnel": "open" if handle is not None else "closed",
                "tunnel_reused": not opened,
                "local_port": handle.local_port if handle is not None else None,
            }

        return await self._guard("connect_db", _op())

    async def _guard(self, tool: str, op: Awaitable[Any]) -> str:
        try:
            result = await op
        except Exception as exc:
            log.warning("dispatch.tool_error", tool=tool, error_type=type(exc).__name__, error=str(exc))
            return error_payload(exc)
        return to_json(result)
