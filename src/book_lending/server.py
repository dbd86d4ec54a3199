"""Book Lending MCP Server

Exposes the lending workflow (request a book, resolve a request) as MCP tools
over stdio, or over Streamable HTTP on ``http_host``:``http_port`` when
``transport`` is ``http``. The REST API is a separate ASGI application built by
``book_lending.api.create_app``; both share the same database and engine.
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from .config import get_config
from .database.session import get_db_manager
from .observability import initialize_observability
from .tools import all_tools

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    # stdout belongs to the stdio transport
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

config = get_config()

mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Book Lending MCP Server - members share books with each other, either for free "
        "or in exchange for one of their own. Use request_book to ask an owner for a book "
        "and resolve_request (as the owner) to approve or reject it."
    ),
)

for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    try:
        mcp.tool(
            name=tool["name"],
            description=tool["description"],
        )(tool["handler"])
    except Exception:
        logger.exception("Failed to register tool %s", tool["name"])
        raise

logger.info("Registered %d tools", len(all_tools))


def run_server() -> None:
    """Run the MCP server on the configured transport until it is stopped."""
    logger.info(
        "Starting %s v%s on %s transport", config.server_name, config.server_version, config.transport
    )

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        get_db_manager().close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if config.transport == "http":
            mcp.run(transport="http", host=config.http_host, port=config.http_port)
        else:
            mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Entry point of the ``book-lending-mcp`` console script."""
    try:
        logger.info("Book Lending MCP Server: %s", config.server_info)

        initialize_observability(config)
        get_db_manager().init_database()
        run_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
