"""
MCP tools for Maestro Test Manager.
"""
from .handlers import register_tools, get_session, close_session

__all__ = ["register_tools", "get_session", "close_session"]
