# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Console entry point: ``mcpbridge`` / ``python -m mcpbridge``.

Quick start::

    $ export ADO_ORGANIZATION="contoso"
    $ mcpbridge
    $ curl -N http://localhost:8000/mcp \\
        -H 'Accept: application/json, text/event-stream' \\
        -d '{"jsonrpc":"2.0","id":1,"method":"ping"}'
"""

from __future__ import annotations

import sys

import anyio
from dotenv import load_dotenv

from .bridge import Bridge
from .config import BridgeConfig, ConfigurationError
from .server import HTTPTransport
from .utils import get_logger, setup_logger


def main() -> None:
    load_dotenv()
    setup_logger()
    logger = get_logger("mcpbridge")

    try:
        config = BridgeConfig.from_env()
    except ConfigurationError as exc:
        logger.error("ERROR: %s", exc)
        sys.exit(1)

    setup_logger(level=config.log_level, force=True)
    logger.info("Azure DevOps MCP bridge for organization: %s (auth type: %s)", config.organization, config.auth_type)
    logger.info("Health check: http://localhost:%d/health", config.port)
    logger.info("MCP endpoint: http://localhost:%d%s", config.port, HTTPTransport.DEFAULT_PATH)
    logger.info("SSE endpoint: http://localhost:%d/sse", config.port)

    transport = HTTPTransport(Bridge(config))
    try:
        anyio.run(transport.run)
    except KeyboardInterrupt:
        logger.info("Bridge interrupted")
    logger.info("Server closed")


if __name__ == "__main__":
    main()
