"""
Lazily created aiomysql pool bound to the local end of the SSH tunnel.

The orchestrator owns the single instance and only calls into it once a
tunnel is confirmed open. Driver errors leave this module already mapped
onto the taxonomy in errors.py.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

import aiomysql
import structlog

from mysql_tunnel_mcp.config import DatabaseConfig
from mysql_tunnel_mcp.errors import classify_error

log = structlog.get_logger()


class DatabaseSession:
    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._pool: aiomysql.Pool | None = None
        self._lock = asyncio.Lock()

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def has_pool(self) -> bool:
        return self._pool is not None

    async def ensure_pool(self) -> aiomysql.Pool:
        if self._pool is not None:
            return self._pool
        async with self._lock:
            if self._pool is None:
                cfg = self._config
                # minsize=0: no connection is made until the first acquire.
                # acquire() waits for a free slot once maxsize is reached.
                self._pool = await aiomysql.create_pool(
                    host=cfg.host,
                    port=cfg.port,
                    user=cfg.user,
                    password=cfg.password,
                    db=cfg.database,
                    minsize=0,
                    maxsize=cfg.pool_size,
                    connect_timeout=cfg.connect_timeout,
                    autocommit=True,
                    cursorclass=aiomysql.DictCursor,
                )
                log.debug("db.pool_created", host=cfg.host, port=cfg.port, maxsize=cfg.pool_size)
        return self._pool

    async def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run one statement; values in ``params`` are bound by the driver, never spliced."""
        try:
            pool = await self.ensure_pool()
            async with pool.acquire() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, tuple(params) if params is not None else None)
                    rows = await cur.fetchall()
        except Exception as exc:
            raise classify_error(exc) from exc
        return list(rows or [])

    async def test_connection(self) -> bool:
        try:
            await self.query("SELECT 1")
        except Exception as exc:
            log.warning("db.test_connection_failed", error=str(exc))
            return False
        return True

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        # terminate() also drops connections still checked out; they point
        # at a tunnel port that is about to disappear.
        pool.terminate()
        await pool.wait_closed()
        log.debug("db.pool_closed")
