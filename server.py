"""FastMCP entry point for the pull-request analyst."""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from pr_analyst.config import SERVER_HOST, SERVER_NAME, SERVER_PORT, SERVER_VERSION
from pr_analyst.mcp_tools import register_tools

# ── Logging ──────────────────────────────────────────────────────────────────
# Every pr_analyst.* module logs through the root handler; token usage also
# goes to the TSV usage log.

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
# Keep client library noise at WARNING
for _name in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)


def create_server() -> FastMCP:
    """Create and configure the FastMCP server instance."""
    mcp = FastMCP(
        name=SERVER_NAME,
        version=SERVER_VERSION,
    )
    register_tools(mcp)
    return mcp


mcp = create_server()


def main() -> None:
    """Run as a streamable HTTP MCP server."""
    log = logging.getLogger(__name__)
    log.info("Starting %s v%s on %s:%d", SERVER_NAME, SERVER_VERSION, SERVER_HOST, SERVER_PORT)
    try:
        mcp.run(transport="streamable-http", host=SERVER_HOST, port=SERVER_PORT)
    except OSError as e:
        log.error("Server failed to start: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
