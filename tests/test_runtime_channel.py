"""
Tests for StreamLink via the runtime socket channel.

Covers:
  - Concurrent calls never cross-deliver (responses out of order)
  - Timeout discard: a late response does not disturb the next call
  - Link failure fails pending calls and reports the loss once
  - Ping/pong keepalive and the godot_ready event
"""

from __future__ import annotations

import asyncio
import random

import pytest

from fakes import FakeBackend, wait_until
from godot_bridge.godot.config import EndpointConfig, HeartbeatConfig, ReconnectConfig
from godot_bridge.godot.errors import BackendUnavailableError, ToolExecutionError, ToolTimeoutError
from godot_bridge.godot.heartbeat import HeartbeatMonitor
from godot_bridge.godot.runtime_channel import RuntimeChannel
from godot_bridge.godot.supervisor import ConnectionSupervisor
from godot_bridge.godot.types import BackendKind, ConnectionState, Deadline


async def runtime_addon(backend: FakeBackend, writer, message: dict) -> None:
    """Echo addon: replies after args.delay seconds; fails when args.fail is set."""
    if message.get("type") == "ping":
        if getattr(backend, "answer_pings", True):
            await backend.send(writer, {"type": "pong"})
        return
    if message.get("type") != "tool_invoke":
        return

    args = message["args"]
    if args.get("fail"):
        reply = {"type": "tool_result", "id": message["id"], "success": False, "error": "Node not found"}
    else:
        reply = {"type": "tool_result", "id": message["id"], "success": True, "result": {"marker": args.get("marker")}}
    backend.later(args.get("delay", 0), writer, reply)


def _channel(port: int) -> RuntimeChannel:
    return RuntimeChannel(EndpointConfig(runtime_port=port, connect_timeout=1.0))


class TestRuntimeCalls:
    @pytest.mark.asyncio
    async def test_concurrent_calls_get_their_own_marker(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            try:
                rng = random.Random(7)
                results = await asyncio.gather(*(
                    channel.call("echo", {"marker": i, "delay": rng.uniform(0, 0.1)}, Deadline.after(2.0))
                    for i in range(25)
                ))
                assert [r["marker"] for r in results] == list(range(25))
                assert len(channel.pending) == 0
            finally:
                await channel.close()

    @pytest.mark.asyncio
    async def test_timeout_then_unrelated_call_unaffected(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            try:
                with pytest.raises(ToolTimeoutError):
                    await channel.call("echo", {"marker": "slow", "delay": 0.3}, Deadline.after(0.05))

                result = await channel.call("echo", {"marker": "fast"}, Deadline.after(1.0))
                assert result == {"marker": "fast"}

                await wait_until(lambda: channel.pending.late_responses == 1)
                assert len(channel.pending) == 0

                again = await channel.call("echo", {"marker": "after"}, Deadline.after(1.0))
                assert again == {"marker": "after"}
            finally:
                await channel.close()

    @pytest.mark.asyncio
    async def test_failed_result_is_execution_error(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            try:
                with pytest.raises(ToolExecutionError, match="Node not found"):
                    await channel.call("get_property", {"fail": True}, Deadline.after(1.0))
            finally:
                await channel.close()

    @pytest.mark.asyncio
    async def test_request_shape_on_the_wire(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            try:
                await channel.call("get_scene_tree", {"marker": 1, "root_path": "/root"}, Deadline.after(1.0))
                invoke = backend.messages("type", "tool_invoke")[0]
                assert invoke["tool"] == "get_scene_tree"
                assert invoke["args"] == {"marker": 1, "root_path": "/root"}
                assert isinstance(invoke["id"], str)
            finally:
                await channel.close()


class TestRuntimeFailures:
    @pytest.mark.asyncio
    async def test_connect_refused(self) -> None:
        async with FakeBackend("newline") as backend:
            port = backend.port
        channel = _channel(port)
        with pytest.raises(BackendUnavailableError) as info:
            await channel.open()
        assert info.value.backend == "runtime"

    @pytest.mark.asyncio
    async def test_lost_connection_fails_pending_and_reports(self) -> None:
        lost = []
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            channel.bind(_noop_event, lambda kind, error: lost.append(kind))
            await channel.open()

            call = asyncio.create_task(
                channel.call("echo", {"marker": 1, "delay": 5}, Deadline.after(3.0))
            )
            await wait_until(lambda: bool(backend.messages("type", "tool_invoke")))
            backend.drop()

            with pytest.raises(BackendUnavailableError, match="connection lost"):
                await call
            assert lost == [BackendKind.RUNTIME]
            assert not channel.link.is_open

            with pytest.raises(BackendUnavailableError):
                await channel.call("echo", {}, Deadline.after(1.0))
            await channel.close()

    @pytest.mark.asyncio
    async def test_close_fails_pending(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            call = asyncio.create_task(channel.call("echo", {"delay": 5}, Deadline.after(3.0)))
            await wait_until(lambda: len(channel.pending) == 1)
            await channel.close()
            with pytest.raises(BackendUnavailableError, match="connection closed"):
                await call


class TestKeepalive:
    @pytest.mark.asyncio
    async def test_ping_pong(self) -> None:
        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            await channel.open()
            try:
                assert await channel.ping(1.0) is True
                backend.answer_pings = False
                assert await channel.ping(0.1) is False
            finally:
                await channel.close()

    @pytest.mark.asyncio
    async def test_ping_when_closed(self) -> None:
        channel = _channel(1)
        assert await channel.ping(0.1) is False

    @pytest.mark.asyncio
    async def test_godot_ready_records_project_and_forwards(self) -> None:
        events = []

        async def on_event(kind, event):
            events.append((kind, event.name))

        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            channel.bind(on_event, lambda kind, error: None)
            await channel.open()
            try:
                await wait_until(lambda: bool(backend.writers))
                await backend.broadcast({"type": "godot_ready", "project_path": "/games/demo"})
                await wait_until(lambda: channel.project_path == "/games/demo")
                assert events == [(BackendKind.RUNTIME, "godot_ready")]
                assert channel.describe()["project_path"] == "/games/demo"
            finally:
                await channel.close()


    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_hold_responses(self) -> None:
        release = asyncio.Event()
        seen = []

        async def stuck(kind, event):
            seen.append(event.name)
            await release.wait()

        async with FakeBackend("newline", runtime_addon) as backend:
            channel = _channel(backend.port)
            channel.bind(stuck, lambda kind, error: None)
            await channel.open()
            try:
                await wait_until(lambda: bool(backend.writers))
                await backend.broadcast({"type": "scene_changed", "scene": "res://a.tscn"})
                await backend.broadcast({"type": "scene_changed", "scene": "res://b.tscn"})
                await wait_until(lambda: seen == ["scene_changed"])

                result = await channel.call("echo", {"marker": "through"}, Deadline.after(1.0))
                assert result == {"marker": "through"}

                release.set()
                await wait_until(lambda: seen == ["scene_changed", "scene_changed"])
            finally:
                release.set()
                await channel.close()

async def _noop_event(kind, event) -> None:
    return None


# ---------------------------------------------------------------------------
# Supervision
# ---------------------------------------------------------------------------


async def unresponsive_addon(backend: FakeBackend, writer, message: dict) -> None:
    """Accepts everything, answers nothing."""
    return None


class TestSupervisedRuntime:
    @pytest.mark.asyncio
    async def test_missed_pongs_fail_calls_in_flight(self) -> None:
        async with FakeBackend("newline", unresponsive_addon) as backend:
            channel = _channel(backend.port)
            supervisor = ConnectionSupervisor([channel], ReconnectConfig(initial_delay=10, max_attempts=1))
            monitor = HeartbeatMonitor(supervisor, HeartbeatConfig(pong_timeout_ms=50, max_missed_pongs=1))
            await supervisor.start()
            try:
                call = asyncio.create_task(channel.call("get_scene_tree", {}, Deadline.after(5.0)))
                await wait_until(lambda: len(channel.pending) == 1)

                await monitor.sweep()

                assert supervisor.state(BackendKind.RUNTIME) is ConnectionState.DEGRADED
                assert len(channel.pending) == 0
                with pytest.raises(BackendUnavailableError, match="degraded"):
                    await asyncio.wait_for(call, timeout=1.0)
            finally:
                await supervisor.shutdown()
