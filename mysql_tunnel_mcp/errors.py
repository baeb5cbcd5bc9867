"""
Error taxonomy shared by the session, tunnel and orchestrator layers.

Only TransientConnectionError triggers the orchestrator's reconnect-and-retry
path; every other class is surfaced to the caller as-is.
"""

import asyncio

import asyncssh
from pymysql import err as mysql_err

# MySQL client error codes that mean the transport broke, not the statement:
# 2003 can't connect, 2006 server has gone away, 2013 lost connection during
# query, 2055 lost connection.
TRANSIENT_MYSQL_CODES = frozenset({2003, 2006, 2013, 2055})

_TRANSIENT_OS_ERRORS = (
    ConnectionRefusedError,
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
    asyncio.IncompleteReadError,
    asyncssh.DisconnectError,
    asyncssh.ChannelOpenError,
)

_TRANSIENT_MARKERS = ("connection lost", "lost connection")


class TunnelDBError(Exception):
    """Base class for everything this server raises on purpose."""


class ValidationError(TunnelDBError):
    """Input rejected before any I/O (not read-only, bad identifier)."""


class TunnelEstablishError(TunnelDBError):
    """SSH auth, network or local bind failure while opening the tunnel."""


class TransientConnectionError(TunnelDBError):
    """The path to the database broke mid-operation; worth one reconnect."""


class QueryExecutionError(TunnelDBError):
    """The database rejected the statement (syntax, permissions, ...)."""


class CleanupError(TunnelDBError):
    """Raised internally during teardown; always logged and suppressed."""


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientConnectionError):
        return True
    if isinstance(exc, _TRANSIENT_OS_ERRORS):
        return True
    if isinstance(exc, mysql_err.OperationalError) and exc.args:
        if exc.args[0] in TRANSIENT_MYSQL_CODES:
            return True
    if isinstance(exc, mysql_err.InterfaceError):
        # pymysql raises InterfaceError(0, "") once the socket is gone.
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_error(exc: BaseException) -> TunnelDBError:
    """Wrap a driver/transport exception in the matching taxonomy class."""
    if isinstance(exc, TunnelDBError):
        return exc
    if is_transient(exc):
        return TransientConnectionError(str(exc) or type(exc).__name__)
    return QueryExecutionError(str(exc) or type(exc).__name__)
