"""
Maestro Test Manager - MCP Server
Entry point for the MCP server.
"""
import atexit
import logging
import sys

from mcp.server.fastmcp import FastMCP

from core.config import LOG_LEVEL

# Create MCP server instance
mcp = FastMCP("MaestroTestManager")

# Register tools - the session is created on first use
from tools import register_tools, get_session, close_session
register_tools(mcp)


def main():
    """Main entry point for script execution."""
    # stdout carries the MCP stdio transport
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    atexit.register(close_session)
    get_session()
    mcp.run()


if __name__ == "__main__":
    main()
