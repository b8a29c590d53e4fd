"""MCP (Model Context Protocol) server for gitatlas.

This module provides an MCP server that exposes the snapshot store's
read-only queries as tools.
"""

from .server import main
from .logging_utils import setup_mcp_logging, get_mcp_logger, tool_call
from .tools import (
    list_repositories,
    latest_snapshots,
    snapshot_history,
    classify_repository,
)

__all__ = [
    "main",
    "setup_mcp_logging",
    "get_mcp_logger",
    "tool_call",
    "list_repositories",
    "latest_snapshots",
    "snapshot_history",
    "classify_repository",
]
