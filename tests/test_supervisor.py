# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Child process lifecycle: spawn, write, crash, restart, stop."""

from __future__ import annotations

import json
import sys

import anyio
import pytest

from mcpbridge.bus import MessageBus
from mcpbridge.correlation import Correlator
from mcpbridge.supervisor import ProcessSupervisor
from mcpbridge.types import BusEvent, ProcessExited, RpcMessage
from tests.helpers import FakeSpawner, wait_for


COMMAND = ["node", "/app/azure-devops-mcp/dist/index.js", "contoso", "-a", "env"]


def _supervisor(bus: MessageBus, spawner: FakeSpawner, **kwargs: object) -> ProcessSupervisor:
    kwargs.setdefault("restart_delay", 0.05)
    return ProcessSupervisor(COMMAND, bus, spawner=spawner, **kwargs)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_start_requires_running_context() -> None:
    supervisor = _supervisor(MessageBus(), FakeSpawner())

    with pytest.raises(RuntimeError):
        await supervisor.start()


@pytest.mark.anyio
async def test_start_spawns_once_with_fixed_command() -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner, env={"NODE_ENV": "production"})

    async with supervisor.running_context():
        await supervisor.start()
        await supervisor.start()

        assert spawner.commands == [COMMAND]
        assert spawner.envs == [{"NODE_ENV": "production"}]
        assert supervisor.running
        assert supervisor.pid == spawner.current.pid

    assert spawner.current.returncode == -9
    assert not supervisor.running


@pytest.mark.anyio
async def test_concurrent_starts_do_not_double_spawn() -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner)

    async with supervisor.running_context():
        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.start)
            tg.start_soon(supervisor.start)

        assert len(spawner.processes) == 1


@pytest.mark.anyio
async def test_send_writes_exactly_one_line() -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner)

    async with supervisor.running_context():
        await supervisor.start()
        ok = await supervisor.send({"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {"text": "a\nb"}})

        assert ok
        [line] = spawner.current.written
        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1
        assert json.loads(line) == {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {"text": "a\nb"}}


@pytest.mark.anyio
async def test_send_without_child_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    supervisor = _supervisor(MessageBus(), FakeSpawner())

    with caplog.at_level("ERROR", logger="mcpbridge.supervisor"):
        assert await supervisor.send({"jsonrpc": "2.0", "method": "ping"}) is False

    assert "not running" in caplog.text


@pytest.mark.anyio
async def test_stdout_is_decoded_onto_the_bus_and_marks_ready() -> None:
    bus = MessageBus()
    seen: list[BusEvent] = []
    bus.subscribe(seen.append)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner)

    async with supervisor.running_context():
        await supervisor.start()
        assert not supervisor.ready

        spawner.current.emit('{"jsonrpc":"2.0","id":1,')
        spawner.current.emit('"result":"ok"}\nnot json\n{"jsonrpc":"2.0","method":"notifications/x"}\n')
        await wait_for(lambda: len(seen) == 2)

        assert supervisor.ready
        assert seen == [
            RpcMessage({"jsonrpc": "2.0", "id": 1, "result": "ok"}),
            RpcMessage({"jsonrpc": "2.0", "method": "notifications/x"}),
        ]


@pytest.mark.anyio
async def test_stderr_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner)

    with caplog.at_level("WARNING", logger="mcpbridge.supervisor"):
        async with supervisor.running_context():
            await supervisor.start()
            spawner.current.emit_stderr(b"Azure DevOps MCP Server running on stdio\n")
            await wait_for(lambda: "running on stdio" in caplog.text)

    assert "[MCP STDERR]" in caplog.text


@pytest.mark.anyio
async def test_stderr_line_split_across_reads_is_logged_once(caplog: pytest.LogCaptureFixture) -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner)

    with caplog.at_level("WARNING", logger="mcpbridge.supervisor"):
        async with supervisor.running_context():
            await supervisor.start()
            spawner.current.emit_stderr(b"Azure DevOps MCP ")
            spawner.current.emit_stderr(b"Server running on stdio\r\nlast words")
            spawner.current.exit(0)
            await wait_for(lambda: not supervisor.running)

    stderr_lines = [r.getMessage() for r in caplog.records if "[MCP STDERR]" in r.getMessage()]
    assert stderr_lines == [
        "[MCP STDERR]: Azure DevOps MCP Server running on stdio",
        "[MCP STDERR]: last words",
    ]


@pytest.mark.anyio
async def test_crash_restarts_exactly_once_after_delay() -> None:
    bus = MessageBus()
    seen: list[BusEvent] = []
    bus.subscribe(seen.append)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner, restart_delay=0.2)

    async with supervisor.running_context():
        await supervisor.start()
        spawner.current.exit(1)

        await wait_for(lambda: ProcessExited(1) in seen)
        assert not supervisor.running
        await anyio.sleep(0.05)
        assert len(spawner.processes) == 1

        await wait_for(lambda: len(spawner.processes) == 2)
        await anyio.sleep(0.3)

        assert len(spawner.processes) == 2
        assert supervisor.running
        assert supervisor.pid == spawner.processes[1].pid


@pytest.mark.anyio
async def test_clean_exit_does_not_restart() -> None:
    bus = MessageBus()
    seen: list[BusEvent] = []
    bus.subscribe(seen.append)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner)

    async with supervisor.running_context():
        await supervisor.start()
        spawner.current.exit(0)

        await wait_for(lambda: ProcessExited(0) in seen)
        await anyio.sleep(0.2)

        assert len(spawner.processes) == 1
        assert not supervisor.running


@pytest.mark.anyio
async def test_clean_exit_restarts_when_configured() -> None:
    spawner = FakeSpawner()
    supervisor = _supervisor(MessageBus(), spawner, restart_on_clean_exit=True)

    async with supervisor.running_context():
        await supervisor.start()
        spawner.current.exit(0)

        await wait_for(lambda: len(spawner.processes) == 2)


@pytest.mark.anyio
async def test_spawn_failure_leaves_supervisor_idle(caplog: pytest.LogCaptureFixture) -> None:
    spawner = FakeSpawner(error=FileNotFoundError(2, "No such file or directory", "node"))
    supervisor = _supervisor(MessageBus(), spawner)

    with caplog.at_level("ERROR", logger="mcpbridge.supervisor"):
        async with supervisor.running_context():
            await supervisor.start()
            await anyio.sleep(0.2)

            assert not supervisor.running
            assert len(spawner.commands) == 1

    assert "Failed to start MCP process" in caplog.text


@pytest.mark.anyio
async def test_stop_kills_child_without_restart() -> None:
    bus = MessageBus()
    seen: list[BusEvent] = []
    bus.subscribe(seen.append)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner)

    async with supervisor.running_context():
        await supervisor.start()
        process = spawner.current

        await supervisor.stop()
        await wait_for(lambda: ProcessExited(-9) in seen)
        await anyio.sleep(0.2)

        assert process.returncode == -9
        assert len(spawner.processes) == 1
        assert not supervisor.running

        await supervisor.start()
        assert len(spawner.processes) == 2


@pytest.mark.anyio
async def test_stop_cancels_a_scheduled_restart() -> None:
    bus = MessageBus()
    seen: list[BusEvent] = []
    bus.subscribe(seen.append)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner, restart_delay=0.1)

    async with supervisor.running_context():
        await supervisor.start()
        spawner.current.exit(3)
        await wait_for(lambda: ProcessExited(3) in seen)

        await supervisor.stop()
        await anyio.sleep(0.25)

        assert len(spawner.processes) == 1


@pytest.mark.anyio
async def test_partial_frame_does_not_survive_restart() -> None:
    bus = MessageBus()
    messages: list[RpcMessage] = []
    bus.subscribe(lambda event: messages.append(event) if isinstance(event, RpcMessage) else None)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner)

    async with supervisor.running_context():
        await supervisor.start()
        spawner.current.emit('{"jsonrpc":"2.0","id":1,')
        spawner.current.exit(1)

        await wait_for(lambda: len(spawner.processes) == 2)
        spawner.current.emit('"result":1}\n{"jsonrpc":"2.0","id":2,"result":2}\n')
        await wait_for(lambda: len(messages) == 1)

    assert messages == [RpcMessage({"jsonrpc": "2.0", "id": 2, "result": 2})]


@pytest.mark.anyio
async def test_crash_fails_pending_calls() -> None:
    bus = MessageBus()
    correlator = Correlator(bus)
    spawner = FakeSpawner()
    supervisor = _supervisor(bus, spawner)

    async with supervisor.running_context():
        await supervisor.start()
        waiter = correlator.register("req-1")
        await supervisor.send({"jsonrpc": "2.0", "id": "req-1", "method": "tools/call"})
        spawner.current.exit(1)

        with anyio.fail_after(2):
            reply = await waiter.wait()

    assert reply.id == "req-1"
    assert reply.payload["error"]["code"] == -32000


ECHO_SERVER = """
import json, sys
for line in sys.stdin:
    request = json.loads(line)
    if "id" in request:
        print(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": request["method"]}), flush=True)
"""


@pytest.mark.anyio
async def test_real_child_round_trip() -> None:
    bus = MessageBus()
    correlator = Correlator(bus)
    supervisor = ProcessSupervisor([sys.executable, "-u", "-c", ECHO_SERVER], bus)

    async with supervisor.running_context():
        await supervisor.start()
        second = correlator.register(2)
        first = correlator.register("one")
        assert await supervisor.send({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert await supervisor.send({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        assert await supervisor.send({"jsonrpc": "2.0", "id": "one", "method": "ping"})

        with anyio.fail_after(10):
            assert (await second.wait()).payload["result"] == "tools/list"
            assert (await first.wait()).payload["result"] == "ping"

        assert supervisor.ready

    assert not supervisor.running
