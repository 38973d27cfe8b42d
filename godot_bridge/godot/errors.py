"""
Error taxonomy for the bridge.

Backend-specific failures are translated into these types at the channel
boundary; nothing else crosses into the router. Each error carries a
stable `code` and renders to a structured dict for callers.
"""

from typing import Any, Optional, Sequence


class BridgeError(Exception):
    """Base class for every error the bridge surfaces to a caller."""

    code = "BridgeError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict:
        return {}

    def to_content(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details()}


class ToolValidationError(BridgeError):
    """Arguments failed the tool's input schema. Never retried."""

    code = "ValidationError"

    def __init__(self, tool: str, fields: Sequence[str], problems: Optional[Sequence[str]] = None):
        self.tool = tool
        self.fields = sorted(set(fields))
        self.problems = list(problems or [])
        super().__init__(f"Invalid arguments for {tool}: {', '.join(self.fields) or '(root)'}")

    def details(self) -> dict:
        return {"tool": self.tool, "fields": self.fields, "problems": self.problems}


class UnknownToolError(BridgeError):
    """Name resolves to nothing in canonical or alias space."""

    code = "UnknownTool"

    def __init__(self, name: str, suggestion: Optional[str] = None):
        self.name = name
        self.suggestion = suggestion
        hint = f" Did you mean '{suggestion}'?" if suggestion else ""
        super().__init__(f"Unknown tool '{name}'.{hint}")

    def details(self) -> dict:
        return {"tool": self.name, "suggestion": self.suggestion}


class BackendUnavailableError(BridgeError):
    """The bound channel is not Ready (down, reconnecting, or pool exhausted)."""

    code = "BackendUnavailable"

    def __init__(self, backend: Any, reason: str):
        self.backend = getattr(backend, "value", backend)
        self.reason = reason
        super().__init__(f"Backend '{self.backend}' unavailable: {reason}")

    def details(self) -> dict:
        return {"backend": self.backend}


class ToolTimeoutError(BridgeError):
    """Deadline exceeded before the backend resolved the call."""

    code = "TimeoutError"

    def __init__(self, backend: Any, operation: str, seconds: float):
        self.backend = getattr(backend, "value", backend)
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} on '{self.backend}' timed out after {seconds:g}s")

    def details(self) -> dict:
        return {"backend": self.backend, "timeout": self.seconds}


class ProtocolError(BridgeError):
    """Malformed or absent payload from a backend.

    The raw payload is kept for logging only; callers see a generic message.
    """

    code = "ProtocolError"

    def __init__(self, backend: Any, reason: str, raw: Any = None):
        self.backend = getattr(backend, "value", backend)
        self.reason = reason
        self.raw = raw
        super().__init__(f"Malformed response from '{self.backend}'")

    def details(self) -> dict:
        return {"backend": self.backend}


class ToolExecutionError(BridgeError):
    """The engine answered well-formed, but reported the tool as failed."""

    code = "ToolError"

    def __init__(self, backend: Any, message: str, data: Any = None):
        self.backend = getattr(backend, "value", backend)
        self.data = data
        super().__init__(message)

    def details(self) -> dict:
        extra = {"backend": self.backend}
        if self.data is not None:
            extra["data"] = self.data
        return extra


class PartialFailure(BridgeError):
    """Bulk operation where some items failed; carries a per-item status list."""

    code = "PartialFailure"

    def __init__(self, items: list[dict]):
        self.items = items
        failed = sum(1 for item in items if item.get("status") != "ok")
        super().__init__(f"{failed} of {len(items)} items failed")

    def details(self) -> dict:
        return {"items": self.items}


class RegistryError(ValueError):
    """The static tool table violates a uniqueness invariant."""
