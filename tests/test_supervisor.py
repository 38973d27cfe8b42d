"""
Tests for ConnectionSupervisor and HeartbeatMonitor.

Covers:
  - Startup states, fail-fast acquire
  - Degraded -> Ready recovery with bounded backoff
  - Giving up after the configured attempts (never an unbounded wait)
  - Shutdown is terminal
  - Event fan-out
  - Heartbeat missed-pong detection and retry of disconnected channels
"""

from __future__ import annotations

import pytest

from fakes import FakeChannel
from godot_bridge.godot.config import HeartbeatConfig, ReconnectConfig
from godot_bridge.godot.errors import BackendUnavailableError
from godot_bridge.godot.heartbeat import HeartbeatMonitor
from godot_bridge.godot.supervisor import ConnectionSupervisor
from godot_bridge.godot.types import BackendKind, ConnectionState, Event


FAST = ReconnectConfig(initial_delay=0.01, max_delay=0.02, multiplier=2.0, max_attempts=3)

RUNTIME = BackendKind.RUNTIME
PROCESS = BackendKind.PROCESS


def _supervisor(*channels: FakeChannel) -> ConnectionSupervisor:
    return ConnectionSupervisor(channels, FAST, now=lambda: 1234.0)


class TestStartup:
    @pytest.mark.asyncio
    async def test_ready_and_disconnected(self) -> None:
        runtime = FakeChannel(RUNTIME, fail_opens=-1)
        supervisor = _supervisor(FakeChannel(PROCESS), runtime)
        await supervisor.start()

        assert supervisor.state(PROCESS) is ConnectionState.READY
        assert supervisor.snapshot(PROCESS).connected_at == 1234.0
        assert supervisor.state(RUNTIME) is ConnectionState.DISCONNECTED
        assert "connection refused" in supervisor.snapshot(RUNTIME).last_error
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_acquire_fails_fast_when_not_ready(self) -> None:
        supervisor = _supervisor(FakeChannel(RUNTIME, fail_opens=-1))
        await supervisor.start()
        with pytest.raises(BackendUnavailableError) as info:
            supervisor.acquire(RUNTIME)
        assert info.value.backend == "runtime"
        assert "disconnected" in info.value.message
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_acquire_unconfigured_kind(self) -> None:
        supervisor = _supervisor(FakeChannel(PROCESS))
        await supervisor.start()
        with pytest.raises(BackendUnavailableError, match="no channel configured"):
            supervisor.acquire(BackendKind.DAP)
        await supervisor.shutdown()

    def test_duplicate_kind_rejected(self) -> None:
        with pytest.raises(ValueError):
            _supervisor(FakeChannel(RUNTIME), FakeChannel(RUNTIME))

    @pytest.mark.asyncio
    async def test_status_merges_describe(self) -> None:
        supervisor = _supervisor(FakeChannel(PROCESS))
        await supervisor.start()
        status = supervisor.status()["process"]
        assert status["state"] == "ready"
        assert status["fake"] is True
        assert status["pending_requests"] == 0
        await supervisor.shutdown()


class TestRecovery:
    @pytest.mark.asyncio
    async def test_lost_connection_degrades_then_recovers(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = _supervisor(runtime)
        await supervisor.start()

        runtime.fail_opens = 2  # the first reconnect attempt (open #2) fails, the next succeeds
        runtime.on_lost(RUNTIME, ConnectionResetError("reset by peer"))
        assert supervisor.state(RUNTIME) is ConnectionState.DEGRADED
        assert supervisor.snapshot(RUNTIME).last_error == "reset by peer"
        with pytest.raises(BackendUnavailableError, match="degraded"):
            supervisor.acquire(RUNTIME)

        await supervisor.wait_idle(RUNTIME)
        assert supervisor.state(RUNTIME) is ConnectionState.READY
        assert supervisor.snapshot(RUNTIME).reconnect_attempts == 0
        assert runtime.opens == 3
        assert supervisor.acquire(RUNTIME) is runtime
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_gives_up_after_bound(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = _supervisor(runtime)
        await supervisor.start()

        runtime.fail_opens = -1
        supervisor.report_lost(RUNTIME, ConnectionResetError("gone"))
        await supervisor.wait_idle(RUNTIME)

        assert supervisor.state(RUNTIME) is ConnectionState.DISCONNECTED
        assert runtime.opens == 1 + FAST.max_attempts
        assert not supervisor.is_reconnecting(RUNTIME)
        with pytest.raises(BackendUnavailableError):
            supervisor.acquire(RUNTIME)
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_report_lost_ignored_unless_ready(self) -> None:
        runtime = FakeChannel(RUNTIME, fail_opens=-1)
        supervisor = _supervisor(runtime)
        await supervisor.start()
        supervisor.report_lost(RUNTIME, ConnectionResetError("x"))
        assert supervisor.state(RUNTIME) is ConnectionState.DISCONNECTED
        assert not supervisor.is_reconnecting(RUNTIME)
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_single_reconnect_loop(self) -> None:
        runtime = FakeChannel(RUNTIME, fail_opens=1)
        supervisor = _supervisor(runtime)
        await supervisor.start()
        assert supervisor.schedule_reconnect(RUNTIME) is True
        assert supervisor.schedule_reconnect(RUNTIME) is False
        await supervisor.wait_idle(RUNTIME)
        assert supervisor.state(RUNTIME) is ConnectionState.READY
        assert supervisor.schedule_reconnect(RUNTIME) is False
        await supervisor.shutdown()

    def test_backoff_is_bounded(self) -> None:
        config = ReconnectConfig()
        delays = [config.delay(n) for n in range(1, config.max_attempts + 1)]
        assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_is_terminal(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = _supervisor(runtime, FakeChannel(PROCESS))
        await supervisor.start()
        await supervisor.shutdown()

        assert runtime.closed
        assert all(s.state is ConnectionState.CLOSED for s in supervisor.snapshots().values())
        supervisor.report_lost(RUNTIME, ConnectionResetError("late"))
        assert supervisor.state(RUNTIME) is ConnectionState.CLOSED
        assert supervisor.schedule_reconnect(RUNTIME) is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_reconnect(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = ConnectionSupervisor([runtime], ReconnectConfig(initial_delay=10, max_attempts=1))
        await supervisor.start()
        supervisor.report_lost(RUNTIME, ConnectionResetError("x"))
        assert supervisor.is_reconnecting(RUNTIME)
        await supervisor.shutdown()
        assert not supervisor.is_reconnecting(RUNTIME)
        assert runtime.opens == 1


class TestEvents:
    @pytest.mark.asyncio
    async def test_fan_out_survives_failing_subscriber(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = _supervisor(runtime)
        seen = []

        async def broken(kind, event):
            raise RuntimeError("subscriber bug")

        async def recorder(kind, event):
            seen.append((kind, event.name))

        supervisor.subscribe(broken)
        supervisor.subscribe(recorder)
        await runtime.on_event(RUNTIME, Event("scene_changed", {"scene": "res://main.tscn"}))
        assert seen == [(RUNTIME, "scene_changed")]


# ---------------------------------------------------------------------------
# Heartbeat
# ---------------------------------------------------------------------------


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_missed_pongs_degrade(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = ConnectionSupervisor([runtime], ReconnectConfig(initial_delay=10, max_attempts=1))
        monitor = HeartbeatMonitor(supervisor, HeartbeatConfig(pong_timeout_ms=10, max_missed_pongs=2))
        await supervisor.start()

        runtime.alive = False
        await monitor.sweep()
        assert monitor.missed_pongs(RUNTIME) == 1
        assert supervisor.state(RUNTIME) is ConnectionState.READY

        await monitor.sweep()
        assert supervisor.state(RUNTIME) is ConnectionState.DEGRADED
        assert "no pong" in supervisor.snapshot(RUNTIME).last_error
        assert supervisor.is_reconnecting(RUNTIME)
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_pong_resets_counter(self) -> None:
        runtime = FakeChannel(RUNTIME)
        supervisor = _supervisor(runtime)
        monitor = HeartbeatMonitor(supervisor, HeartbeatConfig(max_missed_pongs=3))
        await supervisor.start()

        runtime.alive = False
        await monitor.sweep()
        runtime.alive = True
        await monitor.sweep()
        assert monitor.missed_pongs(RUNTIME) == 0
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_sweep_retries_disconnected(self) -> None:
        runtime = FakeChannel(RUNTIME, fail_opens=1)
        supervisor = _supervisor(runtime)
        monitor = HeartbeatMonitor(supervisor)
        await supervisor.start()
        assert supervisor.state(RUNTIME) is ConnectionState.DISCONNECTED

        await monitor.sweep()
        assert supervisor.is_reconnecting(RUNTIME)
        await supervisor.wait_idle(RUNTIME)
        assert supervisor.state(RUNTIME) is ConnectionState.READY
        await supervisor.shutdown()

    def test_suspend_only_extends(self) -> None:
        clock = [100.0]
        monitor = HeartbeatMonitor(_supervisor(), now=lambda: clock[0])
        monitor.suspend(5000)
        monitor.suspend(1000)
        clock[0] = 104.0
        assert monitor.is_suspended()
        clock[0] = 105.5
        assert not monitor.is_suspended()

    @pytest.mark.asyncio
    async def test_start_stop(self) -> None:
        monitor = HeartbeatMonitor(_supervisor(FakeChannel(PROCESS)))
        monitor.start()
        monitor.start()
        monitor.stop()
        assert monitor._task is None
