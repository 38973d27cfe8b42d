"""
Runtime event/command socket channel.

Talks to the engine-side addon over newline-delimited JSON. Commands go
out as `tool_invoke` and come back as `tool_result`; everything else the
addon sends (`pong`, `godot_ready`, scene notifications, ...) is an event.
"""

import asyncio
import logging
from typing import Any, Optional

from .config import EndpointConfig
from .errors import BridgeError
from .link import StreamLink
from .transport import RuntimeCodec
from .types import BackendKind, Deadline, Event, OnConnectionLost, OnEvent


logger = logging.getLogger("godot_bridge.runtime")


class RuntimeChannel:
    """Persistent command socket to a running engine instance."""

    kind = BackendKind.RUNTIME

    def __init__(self, endpoints: EndpointConfig):
        self.link = StreamLink(
            self.kind,
            RuntimeCodec,
            endpoints.host,
            endpoints.runtime_port,
            connect_timeout=endpoints.connect_timeout,
            on_event=self._handle_event,
            on_lost=self._handle_lost,
        )
        self.pending = self.link.pending
        self.project_path: Optional[str] = None

        self._pong_waiters: list[asyncio.Future] = []
        self._on_event: Optional[OnEvent] = None
        self._on_lost: Optional[OnConnectionLost] = None

    def bind(self, on_event: OnEvent, on_lost: OnConnectionLost) -> None:
        self._on_event = on_event
        self._on_lost = on_lost

    async def open(self) -> None:
        await self.link.connect()
        logger.info(f"Runtime socket connected at {self.link.address}")

    async def close(self) -> None:
        self._release_pong_waiters(False)
        await self.link.close()

    async def call(self, operation: str, params: dict, deadline: Deadline) -> Any:
        return await self.link.request(operation, params, deadline)

    async def ping(self, timeout: float) -> bool:
        """Send a keepalive ping and wait for the matching pong."""
        waiter = asyncio.get_running_loop().create_future()
        self._pong_waiters.append(waiter)
        try:
            await self.link.notify("ping")
            return await asyncio.wait_for(waiter, timeout=timeout)
        except (asyncio.TimeoutError, BridgeError):
            return False
        finally:
            if waiter in self._pong_waiters:
                self._pong_waiters.remove(waiter)

    def describe(self) -> dict:
        return {"address": self.link.address, "project_path": self.project_path}

    # =========================================================================
    # Event Handling
    # =========================================================================

    async def _handle_event(self, event: Event) -> None:
        if event.name == "pong":
            self._release_pong_waiters(True)
            return

        if event.name == "godot_ready":
            project_path = event.body.get("project_path")
            if isinstance(project_path, str):
                self.project_path = project_path
            logger.info(f"Godot ready (project: {self.project_path or 'unknown'})")

        if self._on_event:
            await self._on_event(self.kind, event)

    def _handle_lost(self, error: Exception) -> None:
        self._release_pong_waiters(False)
        if self._on_lost:
            self._on_lost(self.kind, error)

    def _release_pong_waiters(self, value: bool) -> None:
        waiters, self._pong_waiters = self._pong_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(value)
