# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Match replies from the child to the HTTP calls waiting on them.

Many HTTP calls share one pipe to the child, and the child may answer them in
any order.  Each call registers a :class:`PendingWaiter` keyed by its JSON-RPC
identifier *before* the request is written, then suspends in
:meth:`PendingWaiter.wait`.  The :class:`Correlator` listens on the bus while
at least one waiter is pending and resolves exactly one waiter per matching
message; waiters sharing an identifier are served oldest first.

When the child exits, every pending waiter is resolved with a transport error
reply carrying its own identifier, so no caller is left waiting on a process
that no longer exists.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

import anyio

from .types import TRANSPORT_ERROR, BusEvent, ProcessExited, RequestId, RpcMessage, error_message, id_key
from .utils import get_logger


if TYPE_CHECKING:
    from .bus import MessageBus, Subscription


class PendingWaiter:
    """One HTTP call blocked on its reply."""

    def __init__(self, correlator: Correlator, request_id: RequestId) -> None:
        self._correlator = correlator
        self._event = anyio.Event()
        self.request_id = request_id
        self.reply: RpcMessage | None = None
        self.resolved = False
        self.cancelled = False

    def resolve(self, reply: RpcMessage) -> bool:
        """Complete the waiter; returns ``False`` if it was already settled."""
        if self.resolved or self.cancelled:
            return False
        self.resolved = True
        self.reply = reply
        self._event.set()
        return True

    async def wait(self) -> RpcMessage:
        await self._event.wait()
        if self.reply is None:
            raise RuntimeError(f"waiter for id={self.request_id!r} woke without a reply")
        return self.reply

    def cancel(self) -> None:
        """Withdraw an unresolved waiter, e.g. after the client disconnected."""
        if self.resolved or self.cancelled:
            return
        self.cancelled = True
        self._correlator.discard(self)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        state = "resolved" if self.resolved else "cancelled" if self.cancelled else "pending"
        return f"<PendingWaiter id={self.request_id!r} {state}>"


class Correlator:
    """Registry of pending waiters fed by the message bus."""

    def __init__(self, bus: MessageBus) -> None:
        self._bus = bus
        self._waiters: dict[tuple[type, RequestId], deque[PendingWaiter]] = {}
        self._subscription: Subscription | None = None
        self._logger = get_logger("mcpbridge.correlation")

    @property
    def pending_count(self) -> int:
        return sum(len(queue) for queue in self._waiters.values())

    def register(self, request_id: RequestId) -> PendingWaiter:
        waiter = PendingWaiter(self, request_id)
        self._waiters.setdefault(id_key(request_id), deque()).append(waiter)
        if self._subscription is None:
            self._subscription = self._bus.subscribe(self._on_event)
        return waiter

    def discard(self, waiter: PendingWaiter) -> None:
        key = id_key(waiter.request_id)
        queue = self._waiters.get(key)
        if queue is None:
            return
        try:
            queue.remove(waiter)
        except ValueError:
            return
        if not queue:
            del self._waiters[key]
        self._release_subscription()

    async def await_reply(self, request_id: RequestId) -> RpcMessage:
        """Register a waiter for *request_id* and suspend until it resolves."""
        waiter = self.register(request_id)
        try:
            return await waiter.wait()
        finally:
            waiter.cancel()

    def _on_event(self, event: BusEvent) -> None:
        if isinstance(event, ProcessExited):
            self._fail_all(event)
        elif event.has_id:
            self._resolve_one(event)

    def _resolve_one(self, message: RpcMessage) -> None:
        try:
            key = id_key(message.id)
            queue = self._waiters.get(key)
        except TypeError:
            # Unhashable id (array/object) cannot match any registered call.
            queue = None

        if not queue:
            self._logger.debug("No pending call for reply id=%r; dropping", message.id)
            return

        waiter = queue.popleft()
        if not queue:
            del self._waiters[key]
        waiter.resolve(message)
        self._release_subscription()

    def _fail_all(self, event: ProcessExited) -> None:
        waiters = [waiter for queue in self._waiters.values() for waiter in queue]
        self._waiters.clear()
        self._release_subscription()
        if not waiters:
            return

        self._logger.warning(
            "MCP process exited with code %s; failing %d pending call(s)", event.returncode, len(waiters)
        )
        reason = f"MCP process exited with code {event.returncode} before replying"
        for waiter in waiters:
            waiter.resolve(error_message(waiter.request_id, TRANSPORT_ERROR, reason))

    def _release_subscription(self) -> None:
        if self._waiters or self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None


__all__ = ["Correlator", "PendingWaiter"]
