"""
Type definitions for the Godot bridge.

Enums, connection records and the normalized call result shared by the
channels, the supervisor and the router.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Callable, Awaitable
from enum import Enum
import time


class Profile(str, Enum):
    """Exposure profile controlling which tool names are advertised."""
    COMPACT = "compact"
    FULL = "full"
    LEGACY = "legacy"

    @classmethod
    def parse(cls, value: str) -> "Profile":
        """Parse a profile name, case-insensitive. Raises ValueError."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown profile '{value}' (expected one of: {allowed})") from None


class BackendKind(str, Enum):
    """The closed set of backend connection kinds."""
    PROCESS = "process"
    RUNTIME = "runtime"
    LSP = "lsp"
    DAP = "dap"

    @property
    def persistent(self) -> bool:
        return self is not BackendKind.PROCESS


class ConnectionState(str, Enum):
    """Lifecycle state of a backend connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass(frozen=True)
class Deadline:
    """
    Absolute point in monotonic time by which a call must resolve.

    Every dispatch carries one; channels derive their waits from it.
    """
    at: float
    budget: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(at=time.monotonic() + seconds, budget=seconds)

    def remaining(self) -> float:
        return max(0.0, self.at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.at


@dataclass
class Response:
    """A decoded response frame carrying a correlation id."""
    correlation_id: Any
    ok: bool
    result: Any = None
    error: Optional[str] = None
    error_data: Any = None
    malformed: bool = False  # id was readable but the rest of the frame was not


@dataclass
class Event:
    """A decoded unsolicited frame. Never resolves a pending request."""
    name: str
    body: dict = field(default_factory=dict)


@dataclass
class BackendConnection:
    """
    Supervisor-owned record for one backend kind.

    Only the ConnectionSupervisor assigns `state`; everything else reads a
    snapshot.
    """
    kind: BackendKind
    state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: Optional[str] = None
    pending: Any = None  # PendingRequestTable of the bound channel
    connected_at: Optional[float] = None
    reconnect_attempts: int = 0

    def snapshot(self) -> "ConnectionSnapshot":
        return ConnectionSnapshot(
            kind=self.kind,
            state=self.state,
            last_error=self.last_error,
            pending_requests=len(self.pending) if self.pending is not None else 0,
            connected_at=self.connected_at,
            reconnect_attempts=self.reconnect_attempts,
        )


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Read-only view of a BackendConnection."""
    kind: BackendKind
    state: ConnectionState
    last_error: Optional[str]
    pending_requests: int
    connected_at: Optional[float]
    reconnect_attempts: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "state": self.state.value,
            "last_error": self.last_error,
            "pending_requests": self.pending_requests,
            "connected_at": self.connected_at,
            "reconnect_attempts": self.reconnect_attempts,
        }


@dataclass(frozen=True)
class ToolResult:
    """
    Normalized outcome of one dispatch.

    Exactly one of a success payload or a structured error: `is_error`
    selects which one `content` holds.
    """
    content: Any
    is_error: bool = False
    error_code: Optional[str] = None

    @classmethod
    def success(cls, content: Any) -> "ToolResult":
        return cls(content=content, is_error=False)

    @classmethod
    def failure(cls, error: Exception) -> "ToolResult":
        to_content = getattr(error, "to_content", None)
        if to_content is not None:
            return cls(content=to_content(), is_error=True, error_code=error.code)
        return cls(
            content={"error": "InternalError", "message": str(error) or type(error).__name__},
            is_error=True,
            error_code="InternalError",
        )

    def to_dict(self) -> dict:
        return {"content": self.content, "isError": self.is_error}


# Callback type definitions
OnEvent = Callable[[BackendKind, Event], Awaitable[None]]
OnConnectionLost = Callable[[BackendKind, Exception], None]
