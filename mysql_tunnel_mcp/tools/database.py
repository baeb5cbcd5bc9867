"""Database tools exposed to the agent."""

from mysql_tunnel_mcp.app import get_dispatcher, mcp


@mcp.tool()
async def read_query(sql: str) -> str:
    """
    Execute a read-only query on the database and return the rows as JSON.
    Only SELECT, SHOW and DESCRIBE statements are accepted; anything else is
    rejected before the database is contacted.
    """
    return await get_dispatcher().read_query(sql)


@mcp.tool()
async def list_tables() -> str:
    """List all tables in the database."""
    return await get_dispatcher().list_tables()


@mcp.tool()
async def describe_table(table: str) -> str:
    """
    Show the structure of a table: columns, types, nullability, keys, defaults.
    Characters outside letters, digits and underscore are stripped from the name.
    """
    return await get_dispatcher().describe_table(table)


@mcp.tool()
async def connect_db() -> str:
    """
    Check database connectivity, opening the SSH tunnel if it is closed.
    Returns connected, host, database and tunnel status.
    """
    return await get_dispatcher().connect_db()
