# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Composition root tying the bridge components together.

One :class:`Bridge` owns exactly one message bus, one process supervisor and
one correlator.  There is no module-level state: tests and embedders can build
as many independent bridges as they like.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from .bus import MessageBus
from .correlation import Correlator
from .supervisor import ProcessSupervisor


if TYPE_CHECKING:
    from .config import BridgeConfig
    from .supervisor import ProcessSpawner


class Bridge:
    """Stdio MCP server exposed through a bus and a correlator."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        bus: MessageBus | None = None,
        supervisor: ProcessSupervisor | None = None,
        spawner: ProcessSpawner | None = None,
    ) -> None:
        self.config = config
        self.bus = bus if bus is not None else MessageBus()
        self.supervisor = supervisor if supervisor is not None else ProcessSupervisor(
            config.child_command(),
            self.bus,
            env=config.child_environment(),
            restart_delay=config.restart_delay,
            restart_on_clean_exit=config.restart_on_clean_exit,
            log_output=config.debug,
            spawner=spawner,
        )
        self.correlator = Correlator(self.bus)

    def health(self) -> dict[str, str]:
        return {
            "status": "healthy" if self.supervisor.ready else "starting",
            "organization": self.config.organization,
            "authType": self.config.auth_type,
        }

    @asynccontextmanager
    async def lifespan(self) -> AsyncIterator[Bridge]:
        """Run the supervisor and start the child; kill it on exit."""
        async with self.supervisor.running_context():
            await self.supervisor.start()
            yield self


__all__ = ["Bridge"]
