from vwork.mcp.client import ToolServerClient, ToolServerManager
from vwork.mcp.registry import HttpServerEntry, StdioServerEntry, get_enabled_servers

__all__ = [
    "ToolServerClient",
    "ToolServerManager",
    "HttpServerEntry",
    "StdioServerEntry",
    "get_enabled_servers",
]
