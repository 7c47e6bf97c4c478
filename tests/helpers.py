# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Shared test helpers: in-memory child processes and polling utilities."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
import json
from typing import Any

import anyio

from mcpbridge import Bridge, BridgeConfig


class _FakeStdin:
    def __init__(self, process: FakeProcess) -> None:
        self._process = process

    async def send(self, data: bytes) -> None:
        await anyio.lowlevel.checkpoint()
        if self._process.returncode is not None:
            raise anyio.BrokenResourceError
        self._process.written.append(data)


class FakeProcess:
    """Stand-in for :class:`anyio.abc.Process` driven by the test."""

    _next_pid = 1000

    def __init__(self) -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode: int | None = None
        self.written: list[bytes] = []
        self.stdin = _FakeStdin(self)
        self._stdout_send, self.stdout = anyio.create_memory_object_stream[bytes](100)
        self._stderr_send, self.stderr = anyio.create_memory_object_stream[bytes](100)
        self._exited = anyio.Event()

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.written]

    def emit(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode()
        self._stdout_send.send_nowait(data)

    def emit_stderr(self, data: bytes) -> None:
        self._stderr_send.send_nowait(data)

    def reply(self, payload: dict[str, Any]) -> None:
        self.emit(json.dumps(payload, separators=(",", ":")) + "\n")

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self._stdout_send.close()
        self._stderr_send.close()
        self._exited.set()

    def kill(self) -> None:
        if self.returncode is not None:
            raise ProcessLookupError
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    async def aclose(self) -> None:
        if self.returncode is None:
            self.exit(-9)


class FakeSpawner:
    """Records spawn requests and hands out :class:`FakeProcess` instances."""

    def __init__(self, error: OSError | None = None) -> None:
        self.error = error
        self.commands: list[list[str]] = []
        self.envs: list[Mapping[str, str] | None] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, command: Sequence[str], env: Mapping[str, str] | None) -> FakeProcess:
        await anyio.lowlevel.checkpoint()
        self.commands.append(list(command))
        self.envs.append(env)
        if self.error is not None:
            raise self.error
        process = FakeProcess()
        self.processes.append(process)
        return process

    @property
    def current(self) -> FakeProcess:
        return self.processes[-1]


async def wait_for(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or *timeout* expires."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.005)


def make_bridge(spawner: FakeSpawner | None = None, **config: Any) -> tuple[Bridge, FakeSpawner]:
    spawner = spawner or FakeSpawner()
    settings = {"organization": "contoso", "restart_delay": 0.05, **config}
    return Bridge(BridgeConfig(**settings), spawner=spawner), spawner
