"""
SSH tunnel lifecycle: one asyncssh connection forwarding a local port to the
database host, opened on demand and dropped on idle, error or shutdown.

At most one TunnelHandle exists per manager. A watcher task follows each
connection; if the SSH side goes away on its own the handle is marked dead
and the ``on_lost`` callback is awaited so the owner can tear down whatever
depended on it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import asyncssh
import structlog

from mysql_tunnel_mcp.config import TunnelConfig

log = structlog.get_logger()
UTC = timezone.utc

Connector = Callable[..., Awaitable[Any]]
LostCallback = Callable[["TunnelHandle"], Awaitable[None]]


@dataclass(eq=False)
class TunnelHandle:
    local_port: int
    remote_host: str
    remote_port: int
    connection: Any
    listener: Any
    alive: bool = True
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    watcher: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def remote(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"


class TunnelManager:
    def __init__(
        self,
        config: TunnelConfig,
        *,
        connector: Connector | None = None,
        on_lost: LostCallback | None = None,
    ) -> None:
        self._config = config
        self._connect = connector or asyncssh.connect
        self._on_lost = on_lost
        self._handle: TunnelHandle | None = None
        self._open_lock = asyncio.Lock()

    @property
    def config(self) -> TunnelConfig:
        return self._config

    @property
    def handle(self) -> TunnelHandle | None:
        """The live handle, or None. A handle whose SSH connection died is never returned."""
        if self._handle is not None and self._handle.alive:
            return self._handle
        return None

    @property
    def is_open(self) -> bool:
        return self.handle is not None

    def set_on_lost(self, callback: LostCallback | None) -> None:
        self._on_lost = callback

    async def open(self) -> bool:
        if self.is_open:
            return True
        # A second caller waits here and then sees the first caller's handle.
        async with self._open_lock:
            if self.is_open:
                return True
            if self._handle is not None:
                # Dead handle left behind by an unsolicited close; release it
                # so the local port is free again.
                await self._release(self._handle)
                self._handle = None
            try:
                self._handle = await self._establish()
            except Exception as exc:
                log.error(
                    "tunnel.open_failed",
                    ssh_host=self._config.ssh_host,
                    local_port=self._config.local_port,
                    error=str(exc) or type(exc).__name__,
                )
                return False
            log.info(
                "tunnel.opened",
                ssh_host=self._config.ssh_host,
                local_port=self._handle.local_port,
                remote=self._handle.remote,
            )
            return True

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.alive = False
        await self._release(handle)
        log.info("tunnel.closed", local_port=handle.local_port)

    async def _establish(self) -> TunnelHandle:
        cfg = self._config
        conn = await asyncio.wait_for(
            self._connect(
                cfg.ssh_host,
                port=cfg.ssh_port,
                username=cfg.ssh_user,
                client_keys=[cfg.ssh_key_path],
                known_hosts=cfg.known_hosts,
                keepalive_interval=cfg.keepalive_interval,
            ),
            timeout=cfg.connect_timeout,
        )
        try:
            listener = await conn.forward_local_port(
                "127.0.0.1", cfg.local_port, cfg.remote_host, cfg.remote_port
            )
        except BaseException:
            # Bind failed (port in use, forwarding refused): don't keep the
            # SSH connection around without a listener.
            conn.close()
            raise
        handle = TunnelHandle(
            local_port=cfg.local_port,
            remote_host=cfg.remote_host,
            remote_port=cfg.remote_port,
            connection=conn,
            listener=listener,
        )
        handle.watcher = asyncio.create_task(self._watch(handle))
        return handle

    async def _watch(self, handle: TunnelHandle) -> None:
        try:
            await handle.connection.wait_closed()
        except Exception as exc:
            log.warning("tunnel.connection_error", local_port=handle.local_port, error=str(exc))
        if not handle.alive:
            # Closed deliberately through close().
            return
        handle.alive = False
        log.warning("tunnel.connection_lost", local_port=handle.local_port, remote=handle.remote)
        if self._on_lost is not None:
            await self._on_lost(handle)

    async def _release(self, handle: TunnelHandle) -> None:
        try:
            handle.listener.close()
        except Exception as exc:
            log.warning("tunnel.cleanup_failed", step="listener", error=str(exc))
        try:
            handle.connection.close()
            await handle.connection.wait_closed()
        except Exception as exc:
            log.warning("tunnel.cleanup_failed", step="connection", error=str(exc))
        watcher = handle.watcher
        if watcher is not None and not watcher.done() and watcher is not asyncio.current_task():
            watcher.cancel()
