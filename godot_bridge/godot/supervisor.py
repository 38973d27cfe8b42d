"""
Connection Supervisor - lifecycle owner for every backend channel.

The supervisor is the only writer of `BackendConnection.state`. It:
- Opens all channels at startup, concurrently
- Hands a channel to the router only while it is Ready
- Moves a channel to Degraded when its link fails, and reconnects it with
  bounded exponential backoff (Degraded -> Ready, or Disconnected once the
  attempts are used up)
- Fans backend events out to subscribers
- Closes everything at shutdown

Requests in flight when a link fails are failed by the link itself; the
supervisor never replays them.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional

from .config import ReconnectConfig
from .errors import BackendUnavailableError, BridgeError
from .link import BackendChannel
from .types import (
    BackendConnection,
    BackendKind,
    ConnectionSnapshot,
    ConnectionState,
    Event,
    OnEvent,
)


logger = logging.getLogger("godot_bridge.supervisor")


class ConnectionSupervisor:
    """Owns one BackendConnection per backend kind."""

    def __init__(
        self,
        channels: Iterable[BackendChannel],
        reconnect: Optional[ReconnectConfig] = None,
        now: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            channels: At most one channel per BackendKind
            reconnect: Backoff bounds for persistent channel recovery
            now: Wall clock used for `connected_at` (injectable for testing)
        """
        self.reconnect = reconnect or ReconnectConfig()
        self._now = now or time.time

        self._channels: dict[BackendKind, BackendChannel] = {}
        self._connections: dict[BackendKind, BackendConnection] = {}
        for channel in channels:
            if channel.kind in self._channels:
                raise ValueError(f"Duplicate channel for backend '{channel.kind.value}'")
            self._channels[channel.kind] = channel
            self._connections[channel.kind] = BackendConnection(kind=channel.kind, pending=channel.pending)
            channel.bind(self._dispatch_event, self.report_lost)

        self._reconnect_tasks: dict[BackendKind, asyncio.Task] = {}
        self._subscribers: list[OnEvent] = []
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open every channel concurrently. Failures leave that kind Disconnected."""
        results = await asyncio.gather(*(self._open(kind) for kind in self._channels))
        ready = [kind.value for kind, ok in zip(self._channels, results) if ok]
        logger.info(f"Supervisor started: {len(ready)}/{len(results)} backend(s) ready {ready}")

    async def shutdown(self) -> None:
        """Cancel reconnects and close every channel. Terminal."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._reconnect_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._reconnect_tasks.clear()

        results = await asyncio.gather(
            *(channel.close() for channel in self._channels.values()),
            return_exceptions=True
        )
        for kind, result in zip(self._channels, results):
            if isinstance(result, Exception):
                logger.error(f"Error closing {kind.value}: {result}")
            self._connections[kind].state = ConnectionState.CLOSED
        logger.info("Supervisor shut down")

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Access
    # =========================================================================

    def acquire(self, kind: BackendKind) -> BackendChannel:
        """
        Hand out the channel for `kind` if it is Ready.

        Raises:
            BackendUnavailableError: Channel missing or not Ready
        """
        connection = self._connections.get(kind)
        if connection is None:
            raise BackendUnavailableError(kind, "no channel configured")
        if connection.state is not ConnectionState.READY:
            reason = f"connection is {connection.state.value}"
            if connection.last_error:
                reason += f" ({connection.last_error})"
            raise BackendUnavailableError(kind, reason)
        return self._channels[kind]

    def state(self, kind: BackendKind) -> ConnectionState:
        return self._connections[kind].state

    def snapshot(self, kind: BackendKind) -> ConnectionSnapshot:
        return self._connections[kind].snapshot()

    def snapshots(self) -> dict[BackendKind, ConnectionSnapshot]:
        return {kind: conn.snapshot() for kind, conn in self._connections.items()}

    def status(self) -> dict:
        """Snapshot plus channel-specific detail, keyed by kind name."""
        return {
            kind.value: {**conn.snapshot().to_dict(), **self._channels[kind].describe()}
            for kind, conn in self._connections.items()
        }

    def is_reconnecting(self, kind: BackendKind) -> bool:
        task = self._reconnect_tasks.get(kind)
        return task is not None and not task.done()

    def subscribe(self, callback: OnEvent) -> None:
        """Register an async callback for backend events."""
        self._subscribers.append(callback)

    # =========================================================================
    # Failure handling
    # =========================================================================

    def report_lost(self, kind: BackendKind, error: Exception) -> None:
        """
        Called by a channel when its link fails, and by the heartbeat when a
        channel stops answering. Moves a Ready connection to Degraded and
        starts recovery.
        """
        connection = self._connections.get(kind)
        if connection is None or self._closed:
            return
        if connection.state is not ConnectionState.READY:
            return

        connection.state = ConnectionState.DEGRADED
        connection.last_error = str(error) or type(error).__name__
        connection.connected_at = None
        logger.warning(f"{kind.value} degraded: {connection.last_error}")
        # Callers waiting on the old link are not carried over to the new one
        if connection.pending is not None:
            connection.pending.fail_all(
                BackendUnavailableError(kind, f"connection degraded: {connection.last_error}")
            )
        self.schedule_reconnect(kind)

    def schedule_reconnect(self, kind: BackendKind) -> bool:
        """Start a reconnect loop unless one is running. Returns True if started."""
        if self._closed or kind not in self._channels:
            return False
        if self.is_reconnecting(kind):
            return False
        if self._connections[kind].state in (ConnectionState.READY, ConnectionState.CLOSED):
            return False

        self._reconnect_tasks[kind] = asyncio.create_task(
            self._reconnect_loop(kind), name=f"godot-bridge-reconnect-{kind.value}"
        )
        return True

    async def wait_idle(self, kind: BackendKind) -> None:
        """Wait for a running reconnect loop (if any) to finish."""
        task = self._reconnect_tasks.get(kind)
        if task is not None:
            await asyncio.shield(task)

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _open(self, kind: BackendKind) -> bool:
        connection = self._connections[kind]
        connection.state = ConnectionState.CONNECTING
        if await self._try_open(kind):
            return True
        if connection.state is ConnectionState.CONNECTING:
            connection.state = ConnectionState.DISCONNECTED
        return False

    async def _try_open(self, kind: BackendKind) -> bool:
        channel = self._channels[kind]
        connection = self._connections[kind]
        try:
            await channel.open()
        except BridgeError as e:
            connection.last_error = e.message
            logger.info(f"{kind.value} not available: {e.message}")
            return False
        except Exception as e:
            connection.last_error = str(e) or type(e).__name__
            logger.error(f"Unexpected error opening {kind.value}: {e}", exc_info=True)
            return False

        if self._closed:
            await channel.close()
            return False

        connection.state = ConnectionState.READY
        connection.last_error = None
        connection.connected_at = self._now()
        connection.reconnect_attempts = 0
        logger.info(f"{kind.value} ready")
        return True

    async def _reconnect_loop(self, kind: BackendKind) -> None:
        connection = self._connections[kind]
        max_attempts = self.reconnect.max_attempts
        try:
            for attempt in range(1, max_attempts + 1):
                connection.reconnect_attempts = attempt
                delay = self.reconnect.delay(attempt)
                logger.debug(f"Reconnecting {kind.value} in {delay:g}s (attempt {attempt}/{max_attempts})")
                await asyncio.sleep(delay)
                if self._closed:
                    return
                if await self._try_open(kind):
                    logger.info(f"{kind.value} reconnected after {attempt} attempt(s)")
                    return

            connection.state = ConnectionState.DISCONNECTED
            logger.warning(
                f"{kind.value} still unavailable after {max_attempts} attempt(s): {connection.last_error}"
            )
        finally:
            if self._reconnect_tasks.get(kind) is asyncio.current_task():
                del self._reconnect_tasks[kind]

    async def _dispatch_event(self, kind: BackendKind, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(kind, event)
            except Exception as e:
                logger.error(f"Error in event subscriber for {kind.value}/{event.name}: {e}", exc_info=True)
