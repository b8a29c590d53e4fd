"""MCP server for gitatlas using FastMCP.

Exposes the read-only snapshot store queries as tools. Each tool runs its
synchronous query in a worker thread so concurrent requests do not block
the event loop.
"""

import asyncio
from typing import Annotated, Optional

from fastmcp import FastMCP

from .tools import (
    list_repositories,
    latest_snapshots,
    snapshot_history,
    classify_repository,
)
from .logging_utils import setup_mcp_logging, tool_call

mcp = FastMCP("gitatlas")


@mcp.tool()
async def atlas_repositories() -> dict:
    """List every repository in the snapshot store.

Repositories are identified by the digest of their root commits, so clones
of the same project on different machines share one key."""
    with tool_call("atlas_repositories") as call:
        result = await asyncio.to_thread(list_repositories)
        call['total'] = len(result)
    return {"count": len(result), "repositories": result}


@mcp.tool()
async def atlas_latest(
    repository: Annotated[str, "Repository key (a unique prefix is enough)"]
) -> dict:
    """Latest snapshot of a repository on every machine holding it.

Snapshots list branch heads, remote-tracking refs with their freshness, and
the outcome of the last fetch of each remote."""
    with tool_call("atlas_latest", repository=repository) as call:
        result = await asyncio.to_thread(latest_snapshots, repository)
        call['total'] = len(result["snapshots"])
    return result


@mcp.tool()
async def atlas_history(
    machine: Annotated[str, "Machine key prefix or hostname"],
    repository: Annotated[str, "Repository key (a unique prefix is enough)"],
    limit: Annotated[Optional[int], "Maximum number of snapshots (default: all)"] = None
) -> dict:
    """Snapshot history of a repository on one machine, newest first."""
    with tool_call("atlas_history", machine=machine, repository=repository, limit=limit) as call:
        result = await asyncio.to_thread(snapshot_history, machine, repository, limit)
        call['total'] = len(result["snapshots"])
    return result


@mcp.tool()
async def atlas_classify(
    repository: Annotated[str, "Repository key (a unique prefix is enough)"]
) -> dict:
    """Classify how the copies of a repository relate across machines.

Every pair of machines gets one of:
- InSync: same primary head commit
- Ahead / Behind: one head is an ancestor of the other
- Diverged: both have unique commits since a common ancestor
- Unknown: history is missing or not shared

A repository held by a single machine with no reachable remote and no peer
clone is reported as Orphaned."""
    with tool_call("atlas_classify", repository=repository) as call:
        result = await asyncio.to_thread(classify_repository, repository)
        call['total'] = len(result["comparisons"])
        call['counts'] = result["distribution"]
    return result


def main():
    """Run the MCP server."""
    logger = setup_mcp_logging()
    logger.info("Starting gitatlas MCP server (FastMCP)")
    mcp.run()


if __name__ == "__main__":
    main()
