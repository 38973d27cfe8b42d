"""
Pending request table for persistent channels.

Correlates outgoing requests with their responses so that many calls can
be in flight over one connection. Each entry ends in exactly one outcome:
resolved by a response, expired by its deadline, cancelled by its caller,
or failed because the connection went away. Late responses for entries
that already ended are logged and dropped.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import ProtocolError, ToolExecutionError, ToolTimeoutError
from .types import BackendKind, Deadline, Response


logger = logging.getLogger("godot_bridge.pending")


@dataclass
class PendingRequest:
    """One in-flight request awaiting its response."""
    correlation_id: Any
    operation: str
    issued_at: float
    deadline: Deadline
    future: asyncio.Future

    @property
    def age(self) -> float:
        return time.monotonic() - self.issued_at


class PendingRequestTable:
    """
    Correlation id -> waiter map for a single connection.

    Ids come from a per-table counter, so an id is never handed out while
    an earlier request holding it is still open.
    """

    def __init__(
        self,
        backend: BackendKind,
        id_factory: Optional[Callable[[int], Any]] = None
    ):
        """
        Args:
            backend: Kind of the owning connection (used in errors)
            id_factory: Maps a sequence number to the wire id (default: the int)
        """
        self._backend = backend
        self._seq = itertools.count(1)
        self._id_factory = id_factory or (lambda n: n)
        self._pending: dict[Any, PendingRequest] = {}
        self.late_responses = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, correlation_id: Any) -> bool:
        return correlation_id in self._pending

    def open(self, operation: str, deadline: Deadline) -> PendingRequest:
        """Allocate a fresh correlation id and register a waiter for it."""
        correlation_id = self._id_factory(next(self._seq))
        while correlation_id in self._pending:
            correlation_id = self._id_factory(next(self._seq))

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        request = PendingRequest(
            correlation_id=correlation_id,
            operation=operation,
            issued_at=time.monotonic(),
            deadline=deadline,
            future=future,
        )
        self._pending[correlation_id] = request
        return request

    def resolve(self, response: Response) -> bool:
        """
        Deliver a response to its waiter.

        Returns:
            True if a live waiter received it, False if it was discarded
        """
        request = self._pending.pop(response.correlation_id, None)
        if request is None or request.future.done():
            self.late_responses += 1
            logger.debug(
                f"Discarding response for unknown or finished id={response.correlation_id!r} "
                f"[{self._backend.value}]"
            )
            return False

        if response.malformed:
            request.future.set_exception(
                ProtocolError(self._backend, response.error or "malformed response", raw=response.result)
            )
        elif response.ok:
            request.future.set_result(response.result)
        else:
            request.future.set_exception(
                ToolExecutionError(
                    self._backend,
                    response.error or f"{request.operation} failed",
                    data=response.error_data,
                )
            )
        return True

    def reject(self, correlation_id: Any, error: Exception) -> bool:
        """Fail one waiter with an error."""
        request = self._pending.pop(correlation_id, None)
        if request is None or request.future.done():
            return False
        request.future.set_exception(error)
        return True

    def discard(self, request: PendingRequest) -> None:
        """Drop an entry without resolving it (timeout / cancellation)."""
        if self._pending.get(request.correlation_id) is request:
            del self._pending[request.correlation_id]

    def fail_all(self, error: Exception) -> int:
        """Fail every open waiter. Returns the count failed."""
        pending = list(self._pending.values())
        self._pending.clear()
        failed = 0
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error)
                failed += 1
        if failed:
            logger.info(f"Failed {failed} pending request(s) [{self._backend.value}]: {error}")
        return failed

    async def wait(self, request: PendingRequest) -> Any:
        """
        Suspend until the request resolves, its deadline passes, or the
        caller is cancelled. The entry is removed on every exit path.

        Raises:
            ToolTimeoutError: If the deadline passes first
        """
        try:
            return await asyncio.wait_for(request.future, timeout=request.deadline.remaining())
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.operation} [{self._backend.value}] id={request.correlation_id!r} "
                f"timed out after {request.deadline.budget:g}s"
            )
            raise ToolTimeoutError(self._backend, request.operation, request.deadline.budget) from None
        finally:
            self.discard(request)
