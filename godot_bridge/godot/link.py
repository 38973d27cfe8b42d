"""
Shared machinery for persistent socket channels.

`StreamLink` owns one TCP connection: it serializes writes, runs the
reader loop, routes responses through the PendingRequestTable and hands
events to its owner from a separate task, in arrival order. The runtime, LSP and DAP channels each hold a link
and add their own handshake and operations on top.

`BackendChannel` is the one contract the supervisor and router depend on.
"""

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Protocol

from .errors import BackendUnavailableError
from .pending import PendingRequestTable
from .transport import FrameTooLarge, encode_json
from .types import BackendKind, Deadline, Event, OnConnectionLost, OnEvent, Response
from ..utils import truncate_output


logger = logging.getLogger("godot_bridge.link")

READ_CHUNK = 64 * 1024


class BackendChannel(Protocol):
    """Common contract for every backend variant."""

    kind: BackendKind
    pending: Optional[PendingRequestTable]

    def bind(self, on_event: OnEvent, on_lost: OnConnectionLost) -> None: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self, timeout: float) -> bool: ...

    async def call(self, operation: str, params: dict, deadline: Deadline) -> Any: ...

    def describe(self) -> dict: ...


class StreamLink:
    """
    One persistent, framed, bidirectional connection.

    Writes are serialized through a lock so frames never interleave;
    responses are matched to callers by correlation id, so replies may
    arrive in any order.
    """

    def __init__(
        self,
        kind: BackendKind,
        codec: Any,
        host: str,
        port: int,
        connect_timeout: float = 3.0,
        on_event: Optional[Callable[[Event], Awaitable[None]]] = None,
        on_lost: Optional[Callable[[Exception], None]] = None,
    ):
        self.kind = kind
        self.codec = codec
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.pending = PendingRequestTable(kind, id_factory=codec.new_id)

        self._on_event = on_event
        self._on_lost = on_lost
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._event_task: Optional[asyncio.Task] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._framer = codec.framer()
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self) -> None:
        """Open the TCP connection and start the reader loop."""
        await self.close()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            raise BackendUnavailableError(
                self.kind, f"connect to {self.address} timed out after {self.connect_timeout:g}s"
            ) from None
        except OSError as e:
            raise BackendUnavailableError(self.kind, f"cannot connect to {self.address}: {e}") from e

        self._reader = reader
        self._writer = writer
        self._framer = self.codec.framer()
        self._events = asyncio.Queue()
        self._event_task = asyncio.create_task(
            self._event_loop(self._events), name=f"godot-bridge-{self.kind.value}-events"
        )
        self._reader_task = asyncio.create_task(
            self._read_loop(reader), name=f"godot-bridge-{self.kind.value}-reader"
        )
        logger.debug(f"Connected {self.kind.value} link to {self.address}")

    async def request(self, operation: str, params: Any, deadline: Deadline) -> Any:
        """Send a request and suspend until its response, deadline, or link failure."""
        if not self.is_open:
            raise BackendUnavailableError(self.kind, "not connected")

        request = self.pending.open(operation, deadline)
        message = self.codec.encode_request(request.correlation_id, operation, params)
        try:
            await self._write(message)
        except BaseException:
            self.pending.discard(request)
            raise
        return await self.pending.wait(request)

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a message that expects no response."""
        await self._write(self.codec.encode_notification(method, params))

    async def close(self) -> None:
        """Tear down the connection and fail anything still pending."""
        task, self._reader_task = self._reader_task, None
        event_task, self._event_task = self._event_task, None
        writer, self._writer = self._writer, None
        self._reader = None

        for running in (task, event_task):
            if running is not None and running is not asyncio.current_task():
                running.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await running

        if writer is not None:
            writer.close()
            with suppress(Exception):
                await asyncio.wait_for(writer.wait_closed(), timeout=1.0)

        self.pending.fail_all(BackendUnavailableError(self.kind, "connection closed"))

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _write(self, message: dict) -> None:
        data = self._framer.frame(encode_json(message))
        async with self._write_lock:
            writer = self._writer
            if writer is None or writer.is_closing():
                raise BackendUnavailableError(self.kind, "not connected")
            try:
                writer.write(data)
                await writer.drain()
            except (ConnectionError, OSError) as e:
                self._lost(e)
                raise BackendUnavailableError(self.kind, f"send failed: {e}") from e

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await reader.read(READ_CHUNK)
                if not chunk:
                    raise ConnectionResetError("connection closed by backend")
                for body in self._framer.feed(chunk):
                    self._dispatch(body)
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError, FrameTooLarge) as e:
            self._lost(e)

    def _dispatch(self, body: bytes) -> None:
        try:
            message = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"ProtocolError [{self.kind.value}]: invalid JSON ({e}): {truncate_output(body, 500)}")
            return

        inbound = self.codec.decode(message) if isinstance(message, dict) else None
        if inbound is None:
            logger.warning(f"ProtocolError [{self.kind.value}]: unrecognized frame: {truncate_output(message, 500)}")
            return

        if isinstance(inbound, Response):
            if inbound.malformed:
                logger.warning(
                    f"ProtocolError [{self.kind.value}]: {inbound.error}: {truncate_output(inbound.result, 500)}"
                )
            self.pending.resolve(inbound)
            return

        if self._on_event:
            self._events.put_nowait(inbound)

    async def _event_loop(self, events: asyncio.Queue) -> None:
        """Deliver events one at a time so a slow handler never holds up responses."""
        while True:
            event = await events.get()
            try:
                await self._on_event(event)
            except Exception as e:
                logger.error(f"Error in {self.kind.value} event handler: {e}", exc_info=True)

    def _lost(self, error: Exception) -> None:
        """Handle a send/receive failure exactly once per connection."""
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.close()
        logger.warning(f"{self.kind.value} link to {self.address} lost: {error}")
        self.pending.fail_all(BackendUnavailableError(self.kind, f"connection lost: {error}"))
        if self._on_lost:
            self._on_lost(error)
