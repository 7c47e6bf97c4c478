# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""HTTP/SSE surface of the bridge.

Routes:

* ``GET /health``: supervisor liveness plus static configuration.
* ``POST /mcp``: one JSON-RPC message per request.  Calls (messages with an
  ``id``) are answered with exactly one ``event: message`` SSE frame carrying
  the child's reply; notifications are forwarded and the stream closes with
  no events.  Clients must accept ``text/event-stream``.
* ``GET /sse`` and ``POST /message``: broadcast transport relaying every child
  message to all connected streams, with fire-and-forget posting.
* ``OPTIONS`` anywhere: empty ``200``.  Anything else: ``404`` JSON.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
import time
from typing import TYPE_CHECKING, Any, Final

import anyio
import orjson
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ._cors import PermissiveCORSMiddleware
from ..types import (
    INVALID_REQUEST,
    PARSE_ERROR,
    TRANSPORT_ERROR,
    BusEvent,
    RpcMessage,
    error_message,
    error_payload,
    is_valid_id,
)
from ..utils import get_logger


if TYPE_CHECKING:
    from starlette.exceptions import HTTPException

    from ..bridge import Bridge


SSE_MEDIA_TYPE: Final[str] = "text/event-stream"
DEFAULT_PING_INTERVAL: Final[int] = 30
DEFAULT_BROADCAST_BUFFER: Final[int] = 1024

SSEEvent = dict[str, Any]


def accepts_event_stream(request: Request) -> bool:
    """Return ``True`` when the ``Accept`` header lists ``text/event-stream``."""
    accept = request.headers.get("accept", "")
    media_types = (part.split(";", 1)[0].strip().lower() for part in accept.split(","))
    return SSE_MEDIA_TYPE in media_types


def _message_event(message: RpcMessage) -> SSEEvent:
    return {"event": "message", "data": message.to_json()}


async def _no_events() -> AsyncIterator[SSEEvent]:
    return
    yield  # pragma: no cover - makes this an async generator


class BridgeEndpoint:
    """Request handlers bound to one :class:`~mcpbridge.bridge.Bridge`."""

    def __init__(
        self,
        bridge: Bridge,
        *,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        broadcast_buffer: int = DEFAULT_BROADCAST_BUFFER,
    ) -> None:
        self.bridge = bridge
        self._ping_interval = ping_interval
        self._broadcast_buffer = broadcast_buffer
        self._logger = get_logger("mcpbridge.http")

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def health(self, request: Request) -> Response:
        return JSONResponse(self.bridge.health())

    async def handle_rpc(self, request: Request) -> Response:
        if not accepts_event_stream(request):
            self._logger.warning("Rejecting request without %s in Accept header", SSE_MEDIA_TYPE)
            payload = error_payload(None, TRANSPORT_ERROR, f"Not Acceptable: Client must accept {SSE_MEDIA_TYPE}")
            return JSONResponse(payload, status_code=406)

        body = await request.body()
        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError as exc:
            self._logger.warning("Invalid JSON-RPC body: %s", exc)
            return self._stream(self._single(error_message(None, PARSE_ERROR, "Parse error")))

        if not isinstance(payload, dict) or ("id" in payload and not is_valid_id(payload["id"])):
            self._logger.warning("Rejecting malformed JSON-RPC message: %r", payload)
            return self._stream(self._single(error_message(None, INVALID_REQUEST, "Invalid Request")))

        message = RpcMessage(payload)
        if not message.has_id:
            self._logger.debug("Forwarding notification %s", message.method)
            await self.bridge.supervisor.send(message.payload)
            return self._stream(_no_events())

        return self._stream(self._relay_call(request, message))

    async def broadcast(self, request: Request) -> Response:
        return self._stream(self._relay_all(request))

    async def post_message(self, request: Request) -> Response:
        try:
            payload = orjson.loads(await request.body())
        except orjson.JSONDecodeError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        if not await self.bridge.supervisor.send(payload):
            return JSONResponse({"error": "MCP process is not running"}, status_code=503)
        return JSONResponse({"status": "sent"})

    async def not_found(self, request: Request, exc: HTTPException) -> Response:
        return JSONResponse({"error": "Not found"}, status_code=404)

    # ------------------------------------------------------------------
    # Event streams
    # ------------------------------------------------------------------

    def _stream(self, events: AsyncIterator[SSEEvent]) -> EventSourceResponse:
        return EventSourceResponse(events, ping=self._ping_interval, sep="\n")

    async def _single(self, message: RpcMessage) -> AsyncIterator[SSEEvent]:
        yield _message_event(message)

    async def _relay_call(self, request: Request, message: RpcMessage) -> AsyncIterator[SSEEvent]:
        # Registered before the write so a fast reply cannot slip past us.
        waiter = self.bridge.correlator.register(message.id)
        started = time.perf_counter()
        try:
            if await self.bridge.supervisor.send(message.payload):
                reply = await waiter.wait()
            else:
                reply = error_message(message.id, TRANSPORT_ERROR, "MCP process is not running")

            if await request.is_disconnected():
                self._logger.info("Client disconnected before reply to id=%r; discarding", message.id)
                return

            self._logger.debug(
                "Relayed reply to %s (id=%r)",
                message.method,
                message.id,
                extra={"duration_ms": (time.perf_counter() - started) * 1000},
            )
            yield _message_event(reply)
        finally:
            waiter.cancel()

    async def _relay_all(self, request: Request) -> AsyncIterator[SSEEvent]:
        send_stream, receive_stream = anyio.create_memory_object_stream[RpcMessage](self._broadcast_buffer)

        def forward(event: BusEvent) -> None:
            if not isinstance(event, RpcMessage):
                return
            try:
                send_stream.send_nowait(event)
            except anyio.WouldBlock:
                self._logger.warning("Broadcast client fell behind; closing its stream")
                subscription.cancel()
                send_stream.close()
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                subscription.cancel()

        subscription = self.bridge.bus.subscribe(forward)
        self._logger.info("Broadcast client connected (%d subscriber(s))", len(self.bridge.bus))
        try:
            async with receive_stream:
                async for message in receive_stream:
                    yield _message_event(message)
        finally:
            subscription.cancel()
            send_stream.close()
            self._logger.info("Broadcast client disconnected")

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def routes(self, *, path: str = "/mcp") -> list[Route]:
        return [
            Route("/health", self.health, methods=["GET"]),
            Route(path, self.handle_rpc, methods=["POST"]),
            Route("/sse", self.broadcast, methods=["GET"]),
            Route("/message", self.post_message, methods=["POST"]),
        ]

    def lifespan(self) -> Callable[[Starlette], AbstractAsyncContextManager[None]]:
        """Return a Starlette lifespan hook that runs the bridge."""

        @asynccontextmanager
        async def _lifespan(_app: Starlette) -> AsyncIterator[None]:
            async with self.bridge.lifespan():
                yield

        return _lifespan


def create_app(
    bridge: Bridge,
    *,
    path: str = "/mcp",
    ping_interval: int = DEFAULT_PING_INTERVAL,
    broadcast_buffer: int = DEFAULT_BROADCAST_BUFFER,
    manage_lifespan: bool = True,
) -> Starlette:
    """Build the ASGI application for *bridge*.

    With ``manage_lifespan`` the app starts the child on startup and kills it on
    shutdown; tests that drive a fake supervisor turn it off.  Each ``GET /sse``
    client is dropped once it falls ``broadcast_buffer`` messages behind.
    """
    endpoint = BridgeEndpoint(bridge, ping_interval=ping_interval, broadcast_buffer=broadcast_buffer)
    return Starlette(
        routes=endpoint.routes(path=path),
        middleware=[Middleware(PermissiveCORSMiddleware)],
        lifespan=endpoint.lifespan() if manage_lifespan else None,
        exception_handlers={404: endpoint.not_found, 405: endpoint.not_found},
    )


__all__ = ["BridgeEndpoint", "accepts_event_stream", "create_app"]
