"""
MCP server entrypoint.

Imports the tool modules to trigger @mcp.tool() registration, then
runs the server on the configured transport. The SSH tunnel is not
opened here; the first tool call opens it.
"""

import signal

import structlog

from mysql_tunnel_mcp.app import mcp
from mysql_tunnel_mcp.config import get_settings
from mysql_tunnel_mcp.logs import configure_logging

# Side-effect imports: registers @mcp.tool() decorators
from mysql_tunnel_mcp.tools import database  # noqa: F401

log = structlog.get_logger()

TRANSPORTS = ("stdio", "sse", "streamable-http")


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    if settings.mcp_transport not in TRANSPORTS:
        raise SystemExit(f"MCP_TRANSPORT must be one of {', '.join(TRANSPORTS)}")
    mcp.settings.host = settings.mcp_host
    mcp.settings.port = settings.mcp_port

    # SIGTERM takes the same path as Ctrl-C so the lifespan cleanup runs.
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    log.info(
        "server.start",
        transport=settings.mcp_transport,
        ssh_host=settings.ssh_host,
        database=settings.db_name,
        note="tunnel connects on demand",
    )
    try:
        mcp.run(transport=settings.mcp_transport)  # type: ignore[arg-type]
    except KeyboardInterrupt:
        log.info("server.interrupted")


if __name__ == "__main__":
    main()
