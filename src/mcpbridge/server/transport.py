# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Serve a :class:`~mcpbridge.bridge.Bridge` over HTTP with uvicorn.

uvicorn owns signal handling: on SIGINT/SIGTERM it stops accepting
connections and runs the application's lifespan shutdown, which kills the
child process before the interpreter exits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from uvicorn import Config, Server

from .app import DEFAULT_PING_INTERVAL, create_app


if TYPE_CHECKING:
    from starlette.applications import Starlette

    from ..bridge import Bridge


class HTTPTransport:
    """Bind a bridge's ASGI app to a uvicorn server."""

    DEFAULT_PATH: str = "/mcp"
    DEFAULT_LOG_LEVEL: str = "info"
    DEFAULT_GRACEFUL_SHUTDOWN: int = 5

    def __init__(self, bridge: Bridge, *, ping_interval: int = DEFAULT_PING_INTERVAL) -> None:
        self._bridge = bridge
        self._ping_interval = ping_interval

    @property
    def bridge(self) -> Bridge:
        return self._bridge

    def build_app(self, *, path: str | None = None) -> Starlette:
        return create_app(self._bridge, path=path or self.DEFAULT_PATH, ping_interval=self._ping_interval)

    async def run(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        log_level: str | None = None,
        **uvicorn_options: Any,
    ) -> None:
        config = self._bridge.config
        host = host or config.host
        port = port or config.port
        log_level = log_level or config.log_level or self.DEFAULT_LOG_LEVEL
        uvicorn_options.setdefault("timeout_graceful_shutdown", self.DEFAULT_GRACEFUL_SHUTDOWN)

        app = self.build_app(path=path)
        server_config = Config(app=app, host=host, port=port, log_level=log_level, **uvicorn_options)
        server = Server(server_config)
        await server.serve()


__all__ = ["HTTPTransport"]
