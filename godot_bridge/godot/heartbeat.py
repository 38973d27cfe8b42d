"""
Heartbeat monitor for backend health.

Implements:
- Periodic sweeps over every backend connection
- Ping/pong on Ready channels to catch sockets that died without a FIN
- Restarting recovery for channels that gave up reconnecting

A socket that stops answering pings looks healthy to the reader loop
until the OS notices, which can take minutes. The sweep turns that into a
Degraded transition within `max_missed_pongs` sweeps.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .config import HeartbeatConfig
from .errors import BackendUnavailableError
from .supervisor import ConnectionSupervisor
from .types import BackendKind, ConnectionState


logger = logging.getLogger("godot_bridge.heartbeat")


class HeartbeatMonitor:
    """
    Background health sweep driven by the ConnectionSupervisor.

    The monitor never changes a connection's state itself; it reports to
    the supervisor, which owns every transition.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        config: Optional[HeartbeatConfig] = None,
        now: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            supervisor: Owner of the connections being checked
            config: Heartbeat configuration
            now: Time function (defaults to time.monotonic, injectable for testing)
        """
        self.supervisor = supervisor
        self.config = config or HeartbeatConfig()
        self._now = now or time.monotonic

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._suspend_until: float = 0
        self._missed: dict[BackendKind, int] = {}

    def start(self) -> None:
        """Start the heartbeat background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop())

    def stop(self) -> None:
        """Stop the heartbeat background task."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    def suspend(self, duration_ms: int) -> None:
        """
        Suspend sweeps for a duration, e.g. while the editor reimports.

        Args:
            duration_ms: How long to suspend in milliseconds
        """
        suspend_until = self._now() + (duration_ms / 1000)

        # Only extend, never shorten
        if suspend_until > self._suspend_until:
            self._suspend_until = suspend_until

    def is_suspended(self) -> bool:
        return self._now() < self._suspend_until

    def missed_pongs(self, kind: BackendKind) -> int:
        return self._missed.get(kind, 0)

    async def sweep(self) -> None:
        """Perform one pass over all connections."""
        for kind, snapshot in self.supervisor.snapshots().items():
            try:
                if snapshot.state is ConnectionState.READY:
                    await self._check(kind)
                elif snapshot.state is ConnectionState.DISCONNECTED:
                    self._missed.pop(kind, None)
                    if self.supervisor.schedule_reconnect(kind):
                        logger.debug(f"Retrying {kind.value}")
            except Exception as e:
                logger.error(f"Error checking {kind.value}: {e}", exc_info=True)

    async def _heartbeat_loop(self) -> None:
        sweep_interval = self.config.sweep_interval_ms / 1000

        while self._running:
            try:
                await asyncio.sleep(sweep_interval)

                if not self._running:
                    break
                if self.is_suspended():
                    continue

                await self.sweep()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _check(self, kind: BackendKind) -> None:
        channel = self.supervisor.acquire(kind)
        alive = await channel.ping(self.config.pong_timeout_ms / 1000)
        if alive:
            self._missed[kind] = 0
            return

        missed = self._missed.get(kind, 0) + 1
        self._missed[kind] = missed
        logger.warning(f"{kind.value} missed pong ({missed}/{self.config.max_missed_pongs})")

        if missed >= self.config.max_missed_pongs:
            self._missed[kind] = 0
            self.supervisor.report_lost(
                kind, BackendUnavailableError(kind, f"no pong after {missed} heartbeat(s)")
            )
