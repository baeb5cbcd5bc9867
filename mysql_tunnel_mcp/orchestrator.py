"""
Connection orchestrator: the state machine tying the tunnel to the session.

States:
  IDLE        no tunnel, no pool
  CONNECTING  tunnel open in progress
  READY       tunnel + session usable, idle timer armed
  RECOVERING  a transient failure was seen; tearing down and reopening

Rules:
  - Every tunnel open, teardown and recovery runs under one asyncio.Lock, so
    concurrent callers never race a duplicate bind and no query is started
    while a teardown is in progress.
  - run() is an explicit two-attempt loop: a TransientConnectionError on the
    first attempt costs one teardown + reopen, the second is surfaced.
    Any other error is surfaced immediately and the tunnel stays warm.
  - The idle timer is a single loop.call_later handle; reset = cancel then
    reschedule. It is always cancelled before a deliberate teardown.
"""

import asyncio
import enum
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

import structlog

from mysql_tunnel_mcp.db.session import DatabaseSession
from mysql_tunnel_mcp.errors import CleanupError, TransientConnectionError, TunnelEstablishError
from mysql_tunnel_mcp.tunnel.manager import TunnelHandle, TunnelManager

log = structlog.get_logger()

T = TypeVar("T")

IDLE_TIMEOUT_SECONDS = 5 * 60
MAX_ATTEMPTS = 2


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    RECOVERING = "recovering"


class ConnectionOrchestrator:
    def __init__(
        self,
        tunnel: TunnelManager,
        session: DatabaseSession,
        *,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
    ) -> None:
        self._tunnel = tunnel
        self._session = session
        self._idle_timeout = idle_timeout
        self._lock = asyncio.Lock()
        self._state = ConnectionState.IDLE
        self._active: TunnelHandle | None = None
        self._idle_timer: asyncio.TimerHandle | None = None
        self._in_flight = 0
        self._background: set[asyncio.Task] = set()  # type: ignore[type-arg]
        tunnel.set_on_lost(self._on_tunnel_lost)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> DatabaseSession:
        return self._session

    @property
    def tunnel(self) -> TunnelManager:
        return self._tunnel

    @property
    def tunnel_open(self) -> bool:
        return self._tunnel.is_open

    @property
    def idle_timer_armed(self) -> bool:
        return self._idle_timer is not None

    # ── Public operations ────────────────────────────────────────────────────

    async def ensure_connection(self) -> bool:
        """
        Make sure a tunnel is up. Returns True when this call opened it.
        Raises TunnelEstablishError when it cannot be opened.
        """
        if self._ready():
            return False
        async with self._lock:
            return await self._ensure_locked()

    async def run(self, query_fn: Callable[[DatabaseSession], Awaitable[T]]) -> T:
        """Run ``query_fn`` against the session with one reconnect on transient failure."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            await self.ensure_connection()
            handle = self._active
            self._in_flight += 1
            try:
                result = await query_fn(self._session)
            except TransientConnectionError as exc:
                if attempt == MAX_ATTEMPTS:
                    log.error("orchestrator.retry_failed", error=str(exc))
                    raise
                log.warning("orchestrator.connection_lost", error=str(exc), attempt=attempt)
                await self._recover(handle)
                continue
            finally:
                self._in_flight -= 1
            self.touch()
            return result
        raise AssertionError("unreachable")

    def touch(self) -> None:
        """Record activity: cancel the pending idle close and schedule a new one."""
        if not self._tunnel.is_open:
            return
        self._cancel_idle_timer()
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self._idle_timeout, self._on_idle_timeout)

    async def close(self, reason: str = "requested") -> None:
        async with self._lock:
            await self._teardown(reason)

    async def shutdown(self) -> None:
        """Cancel the timer and release everything; never raises."""
        self._cancel_idle_timer()
        try:
            await self.close("shutdown")
        except Exception as exc:
            log.warning("orchestrator.shutdown_cleanup_failed", error=str(exc))
        for task in list(self._background):
            task.cancel()

    # ── State transitions (all called with self._lock held) ──────────────────

    async def _ensure_locked(self) -> bool:
        if self._ready():
            return False
        if self._active is not None or self._session.has_pool:
            # The tunnel went away underneath us; the pool's sockets went with it.
            await self._teardown("tunnel no longer live")
        if self._state is not ConnectionState.RECOVERING:
            self._state = ConnectionState.CONNECTING
        ok = await self._tunnel.open()
        if not ok:
            self._state = ConnectionState.IDLE
            raise TunnelEstablishError("Could not establish SSH tunnel to database server")
        self._active = self._tunnel.handle
        self._state = ConnectionState.READY
        self.touch()
        return True

    async def _recover(self, failed: TunnelHandle | None) -> None:
        async with self._lock:
            if failed is not None and failed is not self._active:
                # Another caller already replaced that tunnel.
                return
            self._state = ConnectionState.RECOVERING
            await self._teardown("connection lost", final_state=ConnectionState.RECOVERING)
            await self._ensure_locked()

    async def _teardown(self, reason: str, final_state: ConnectionState = ConnectionState.IDLE) -> None:
        self._cancel_idle_timer()
        had_resources = self._active is not None or self._session.has_pool or self._tunnel.handle is not None
        # Nothing may pass the ready check once teardown has started.
        self._active = None
        self._state = final_state
        try:
            await self._session.close()
        except Exception as exc:
            self._log_cleanup(CleanupError(f"session close failed: {exc}"))
        try:
            await self._tunnel.close()
        except Exception as exc:
            self._log_cleanup(CleanupError(f"tunnel close failed: {exc}"))
        if had_resources:
            log.info("orchestrator.teardown", reason=reason)

    # ── Background events ────────────────────────────────────────────────────

    def _on_idle_timeout(self) -> None:
        self._idle_timer = None
        self._spawn(self._close_idle())

    async def _close_idle(self) -> None:
        async with self._lock:
            if self._idle_timer is not None:
                # Rearmed by activity since the timer fired.
                return
            if self._in_flight:
                self.touch()
                return
            if self._active is None:
                return
            await self._teardown("idle timeout")

    async def _on_tunnel_lost(self, handle: TunnelHandle) -> None:
        async with self._lock:
            if handle is not self._active:
                return
            await self._teardown("ssh connection closed")

    def _ready(self) -> bool:
        return (
            self._state is ConnectionState.READY
            and self._active is not None
            and self._active is self._tunnel.handle
        )

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    def _log_cleanup(exc: CleanupError) -> None:
        log.warning("orchestrator.cleanup_failed", error=str(exc))

