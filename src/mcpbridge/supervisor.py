# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Child process supervision.

:class:`ProcessSupervisor` owns the stdio MCP server process: it spawns it with
piped standard streams, decodes its stdout into messages for the bus, logs its
stderr, and restarts it after a fixed delay when it crashes.

Lifecycle::

    Starting -> Running -> Exited(code) -> Starting (after delay, code != 0)
    Starting -> Running -> Stopped      (stop() requested)

Restarts are uncapped.  A spawn failure leaves the supervisor idle without
retrying.  Every exit publishes :class:`~mcpbridge.types.ProcessExited` so
pending calls can be failed instead of hanging.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import anyio
from anyio.streams.text import TextReceiveStream
import orjson

from .framing import FrameDecoder
from .types import ProcessExited
from .utils import get_logger


if TYPE_CHECKING:
    from anyio.abc import Process, TaskGroup

    from .bus import MessageBus


ProcessSpawner = Callable[[Sequence[str], Mapping[str, str] | None], Awaitable["Process"]]


async def open_child_process(command: Sequence[str], env: Mapping[str, str] | None) -> Process:
    """Spawn *command* with all three standard streams piped.

    Kept as a module-level helper so tests can substitute in-memory processes.
    """
    return await anyio.open_process(list(command), env=dict(env) if env is not None else None)


class ChildProcessHandle:
    """The running child plus the state the supervisor tracks for it."""

    def __init__(self, process: Process, decoder: FrameDecoder) -> None:
        self.process = process
        self.decoder = decoder
        self.ready = False
        self.stop_requested = False

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def writable(self) -> bool:
        return self.process.stdin is not None and self.process.returncode is None


class ProcessSupervisor:
    """Spawn, watch and restart the stdio MCP server."""

    def __init__(
        self,
        command: Sequence[str],
        bus: MessageBus,
        *,
        env: Mapping[str, str] | None = None,
        restart_delay: float = 5.0,
        restart_on_clean_exit: bool = False,
        log_output: bool = False,
        spawner: ProcessSpawner | None = None,
    ) -> None:
        self._command = list(command)
        self._bus = bus
        self._env = env
        self._restart_delay = restart_delay
        self._restart_on_clean_exit = restart_on_clean_exit
        self._log_output = log_output
        self._spawner = spawner or open_child_process
        self._handle: ChildProcessHandle | None = None
        self._starting = False
        self._task_group: TaskGroup | None = None
        self._restart_scope: anyio.CancelScope | None = None
        self._logger = get_logger("mcpbridge.supervisor")
        self.spawn_count = 0

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def ready(self) -> bool:
        """``True`` once the current child has written to stdout."""
        return self._handle is not None and self._handle.ready

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @asynccontextmanager
    async def running_context(self) -> AsyncIterator[ProcessSupervisor]:
        """Provide the task group that pumps and restarts run in.

        The child is killed when the context exits.
        """
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield self
            finally:
                await self.stop()
                self._task_group = None
                tg.cancel_scope.cancel()

    async def start(self) -> None:
        if self._task_group is None:
            raise RuntimeError("ProcessSupervisor.start() requires an active running_context()")
        if self._handle is not None or self._starting:
            return

        self._starting = True
        try:
            self._logger.info("Starting MCP server: %s", " ".join(self._command))
            try:
                process = await self._spawner(self._command, self._env)
            except OSError as exc:
                self._logger.error("Failed to start MCP process: %s", exc)
                return
        finally:
            self._starting = False

        self.spawn_count += 1
        handle = ChildProcessHandle(process, FrameDecoder())
        self._handle = handle
        self._logger.info("MCP process started (pid=%s)", handle.pid)
        self._task_group.start_soon(self._supervise, handle)

    async def send(self, message: Mapping[str, Any]) -> bool:
        """Write *message* to the child's stdin as one line.

        Returns ``False`` (after logging) when the write had to be dropped.
        """
        handle = self._handle
        if handle is None or not handle.writable:
            self._logger.error("Dropping message; MCP process is not running")
            return False

        line = orjson.dumps(message) + b"\n"
        try:
            await handle.process.stdin.send(line)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as exc:
            self._logger.error("Dropping message; MCP stdin is not writable: %s", exc)
            return False
        return True

    async def stop(self) -> None:
        """Kill the child and stay idle until :meth:`start` is called again."""
        if self._restart_scope is not None:
            self._restart_scope.cancel()
            self._restart_scope = None

        handle, self._handle = self._handle, None
        if handle is None:
            return

        handle.stop_requested = True
        self._logger.info("Stopping MCP process (pid=%s)", handle.pid)
        try:
            handle.process.kill()
        except ProcessLookupError:
            pass

    async def _supervise(self, handle: ChildProcessHandle) -> None:
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._pump_stdout, handle)
                tg.start_soon(self._pump_stderr, handle)
            returncode = await handle.process.wait()
        finally:
            # Kills the child if we are being cancelled mid-wait.
            await handle.process.aclose()
        await self._on_exit(handle, returncode)

    async def _pump_stdout(self, handle: ChildProcessHandle) -> None:
        stdout = handle.process.stdout
        if stdout is None:
            return
        try:
            async for chunk in stdout:
                handle.ready = True
                if self._log_output:
                    self._logger.debug("[MCP STDOUT]: %s", chunk.decode(errors="replace"))
                for message in handle.decoder.feed(chunk):
                    self._bus.publish(message)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            pass

    async def _pump_stderr(self, handle: ChildProcessHandle) -> None:
        stderr = handle.process.stderr
        if stderr is None:
            return
        partial = ""
        try:
            async for text in TextReceiveStream(stderr, errors="replace"):
                *lines, partial = (partial + text).split("\n")
                for line in lines:
                    self._log_stderr(line)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            pass
        self._log_stderr(partial)

    def _log_stderr(self, line: str) -> None:
        line = line.rstrip("\r")
        if line.strip():
            self._logger.warning("[MCP STDERR]: %s", line)

    async def _on_exit(self, handle: ChildProcessHandle, returncode: int | None) -> None:
        self._logger.info("MCP process exited with code %s", returncode)
        if self._handle is handle:
            self._handle = None

        leftover = handle.decoder.reset()
        if leftover:
            self._logger.debug("Discarding partial output line from exited process: %r", leftover)

        self._bus.publish(ProcessExited(returncode))

        if handle.stop_requested:
            return
        if returncode == 0 and not self._restart_on_clean_exit:
            return

        self._logger.info("Restarting MCP process in %s seconds...", self._restart_delay)
        with anyio.CancelScope() as scope:
            self._restart_scope = scope
            await anyio.sleep(self._restart_delay)
            self._restart_scope = None
            await self.start()
        if self._restart_scope is scope:
            self._restart_scope = None


__all__ = ["ChildProcessHandle", "ProcessSpawner", "ProcessSupervisor", "open_child_process"]
