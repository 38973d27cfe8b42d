"""
Debug-adapter channel.

Attaches to the editor's debug adapter (initialize -> attach ->
configurationDone) and keeps a little session state between calls: a ring
buffer of program output, the thread that last stopped, and the
breakpoint set per file (DAP `setBreakpoints` always replaces the whole
set for a source).
"""

import logging
from collections import deque
from pathlib import Path
from typing import Any, Optional

from .config import EndpointConfig
from .errors import BackendUnavailableError, BridgeError, ToolExecutionError
from .link import StreamLink
from .lsp_channel import resolve_script_path
from .transport import DapCodec
from .types import BackendKind, Deadline, Event, OnConnectionLost, OnEvent


logger = logging.getLogger("godot_bridge.dap")

MAX_OUTPUT_LINES = 1000


class DapChannel:
    """Persistent debug-adapter session."""

    kind = BackendKind.DAP

    def __init__(self, endpoints: EndpointConfig, project_path: Optional[str] = None):
        self.link = StreamLink(
            self.kind,
            DapCodec,
            endpoints.host,
            endpoints.dap_port,
            connect_timeout=endpoints.connect_timeout,
            on_event=self._handle_event,
            on_lost=self._handle_lost,
        )
        self.pending = self.link.pending
        self.project_path = project_path

        self.output: deque[str] = deque(maxlen=MAX_OUTPUT_LINES)
        self.last_thread_id: Optional[int] = None
        self.breakpoints: dict[str, set[int]] = {}
        self.target_running = False

        self._handshake_timeout = endpoints.connect_timeout
        self._on_event: Optional[OnEvent] = None
        self._on_lost: Optional[OnConnectionLost] = None

        self._operations = {
            "get_output": self._get_output,
            "set_breakpoint": self._set_breakpoint,
            "remove_breakpoint": self._remove_breakpoint,
            "continue": self._continue,
            "pause": self._pause,
            "step_over": self._step_over,
            "stack_trace": self._stack_trace,
            "variables": self._variables,
        }

    def bind(self, on_event: OnEvent, on_lost: OnConnectionLost) -> None:
        self._on_event = on_event
        self._on_lost = on_lost

    async def open(self) -> None:
        """Connect and attach to the debug target."""
        await self.link.connect()
        try:
            await self._handshake()
        except BridgeError as e:
            await self.link.close()
            raise BackendUnavailableError(self.kind, f"handshake failed: {e.message}") from e
        logger.info(f"Debug adapter attached at {self.link.address}")

    async def close(self) -> None:
        await self.link.close()
        self.target_running = False

    async def ping(self, timeout: float) -> bool:
        return self.link.is_open

    def describe(self) -> dict:
        return {
            "address": self.link.address,
            "attached": self.target_running,
            "last_thread_id": self.last_thread_id,
            "buffered_output_lines": len(self.output),
            "breakpoints": {path: sorted(lines) for path, lines in self.breakpoints.items()},
        }

    async def call(self, operation: str, params: dict, deadline: Deadline) -> Any:
        handler = self._operations.get(operation)
        if handler is None:
            raise ToolExecutionError(self.kind, f"Unknown DAP operation: {operation}")
        return await handler(params, deadline)

    # =========================================================================
    # Operations
    # =========================================================================

    async def _get_output(self, params: dict, deadline: Deadline) -> dict:
        lines = list(self.output)
        if params.get("clear"):
            self.output.clear()
        return {"lines": lines}

    async def _set_breakpoint(self, params: dict, deadline: Deadline) -> dict:
        path = self._source_path(params)
        lines = self.breakpoints.get(path, set()) | {params["line"]}
        return await self._send_breakpoints(path, lines, deadline)

    async def _remove_breakpoint(self, params: dict, deadline: Deadline) -> dict:
        path = self._source_path(params)
        lines = self.breakpoints.get(path, set()) - {params["line"]}
        return await self._send_breakpoints(path, lines, deadline)

    async def _continue(self, params: dict, deadline: Deadline) -> dict:
        thread_id = await self._thread_id(params, deadline)
        await self.link.request("continue", {"threadId": thread_id}, deadline)
        return {"threadId": thread_id, "state": "running"}

    async def _pause(self, params: dict, deadline: Deadline) -> dict:
        thread_id = await self._thread_id(params, deadline)
        await self.link.request("pause", {"threadId": thread_id}, deadline)
        return {"threadId": thread_id, "state": "paused"}

    async def _step_over(self, params: dict, deadline: Deadline) -> dict:
        thread_id = await self._thread_id(params, deadline)
        await self.link.request("next", {"threadId": thread_id}, deadline)
        return {"threadId": thread_id, "state": "stepped"}

    async def _stack_trace(self, params: dict, deadline: Deadline) -> dict:
        thread_id = await self._thread_id(params, deadline)
        body = await self.link.request(
            "stackTrace", {"threadId": thread_id, "startFrame": 0, "levels": 100}, deadline
        )
        frames = body.get("stackFrames") if isinstance(body, dict) else None
        return {"threadId": thread_id, "stackFrames": frames if isinstance(frames, list) else []}

    async def _variables(self, params: dict, deadline: Deadline) -> dict:
        body = await self.link.request(
            "variables", {"variablesReference": params["variables_reference"]}, deadline
        )
        variables = body.get("variables") if isinstance(body, dict) else None
        return {"variables": variables if isinstance(variables, list) else []}

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _handshake(self) -> None:
        deadline = Deadline.after(self._handshake_timeout)
        await self.link.request("initialize", {
            "adapterID": "godot",
            "clientID": "godot-bridge",
            "clientName": "godot-bridge",
            "locale": "en",
            "linesStartAt1": True,
            "columnsStartAt1": True,
            "pathFormat": "path",
            "supportsVariableType": True,
            "supportsRunInTerminalRequest": False,
        }, deadline)
        await self.link.request("attach", {}, deadline)
        await self.link.request("configurationDone", {}, deadline)
        self.target_running = True

    def _source_path(self, params: dict) -> str:
        project_path = params.get("project_path") or self.project_path
        script_path = params["script_path"]
        if project_path or Path(script_path).is_absolute():
            return str(resolve_script_path(project_path, script_path))
        return script_path

    async def _send_breakpoints(self, path: str, lines: set[int], deadline: Deadline) -> dict:
        """Send the full line set for `path`, recording it once the adapter accepts."""
        ordered = sorted(lines)
        body = await self.link.request(
            "setBreakpoints",
            {"source": {"path": path}, "breakpoints": [{"line": line} for line in ordered]},
            deadline,
        )
        if lines:
            self.breakpoints[path] = set(lines)
        else:
            self.breakpoints.pop(path, None)
        return {"source": path, "lines": ordered, "breakpoints": (body or {}).get("breakpoints", [])}

    async def _thread_id(self, params: dict, deadline: Deadline) -> int:
        thread_id = params.get("thread_id")
        if isinstance(thread_id, int) and thread_id > 0:
            self.last_thread_id = thread_id
            return thread_id
        if self.last_thread_id:
            return self.last_thread_id

        body = await self.link.request("threads", None, deadline)
        threads = body.get("threads") if isinstance(body, dict) else None
        if threads and isinstance(threads[0], dict) and isinstance(threads[0].get("id"), int):
            self.last_thread_id = threads[0]["id"]
            return self.last_thread_id
        return 1

    async def _handle_event(self, event: Event) -> None:
        if event.name == "output":
            text = event.body.get("output")
            if isinstance(text, str):
                self.output.extend(line for line in text.splitlines() if line)
        elif event.name == "stopped":
            thread_id = event.body.get("threadId")
            if isinstance(thread_id, int):
                self.last_thread_id = thread_id
            logger.info(f"Target stopped ({event.body.get('reason', 'unknown')}), thread {thread_id}")
        elif event.name in ("terminated", "exited"):
            self.target_running = False

        if self._on_event:
            await self._on_event(self.kind, event)

    def _handle_lost(self, error: Exception) -> None:
        self.target_running = False
        if self._on_lost:
            self._on_lost(self.kind, error)
