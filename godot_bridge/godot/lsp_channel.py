"""
Language-server channel.

JSON-RPC over Content-Length framing against the editor's GDScript
language server. The `initialize` / `initialized` handshake runs once per
connection, before the channel is reported Ready. Documents are synced
lazily: `didOpen` on first use of a URI, `didChange` with a bumped
version afterwards.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from .config import EndpointConfig
from .errors import BackendUnavailableError, BridgeError, ToolExecutionError, ToolValidationError
from .link import StreamLink
from .transport import LspCodec
from .types import BackendKind, Deadline, Event, OnConnectionLost, OnEvent


logger = logging.getLogger("godot_bridge.lsp")

DIAGNOSTICS_WAIT = 5.0


def resolve_script_path(project_path: Optional[str], script_path: str, operation: str = "script") -> Path:
    """Resolve a `res://`, project-relative or absolute script path."""
    if script_path.startswith("res://"):
        script_path = script_path[len("res://"):]
    path = Path(script_path)
    if not path.is_absolute():
        if not project_path:
            raise ToolValidationError(
                operation, ["projectPath"], ["projectPath is required for a relative scriptPath"]
            )
        path = Path(project_path) / path
    return path.resolve()


class LspChannel:
    """Persistent connection to the GDScript language server."""

    kind = BackendKind.LSP

    def __init__(self, endpoints: EndpointConfig, project_path: Optional[str] = None):
        self.link = StreamLink(
            self.kind,
            LspCodec,
            endpoints.host,
            endpoints.lsp_port,
            connect_timeout=endpoints.connect_timeout,
            on_event=self._handle_event,
            on_lost=self._handle_lost,
        )
        self.pending = self.link.pending
        self.project_path = project_path
        self.server_capabilities: dict = {}

        self._versions: dict[str, int] = {}
        self._diagnostics_waiters: dict[str, asyncio.Future] = {}
        self._handshake_timeout = endpoints.connect_timeout
        self._on_event: Optional[OnEvent] = None
        self._on_lost: Optional[OnConnectionLost] = None

        self._operations = {
            "diagnostics": self._diagnostics,
            "completions": self._completions,
            "hover": self._hover,
            "symbols": self._symbols,
        }

    def bind(self, on_event: OnEvent, on_lost: OnConnectionLost) -> None:
        self._on_event = on_event
        self._on_lost = on_lost

    async def open(self) -> None:
        """Connect and negotiate capabilities."""
        await self.link.connect()
        self._versions.clear()
        try:
            await self._handshake()
        except BridgeError as e:
            await self.link.close()
            raise BackendUnavailableError(self.kind, f"handshake failed: {e.message}") from e
        logger.info(f"Language server ready at {self.link.address}")

    async def close(self) -> None:
        self._release_diagnostics()
        await self.link.close()

    async def ping(self, timeout: float) -> bool:
        return self.link.is_open

    def describe(self) -> dict:
        return {
            "address": self.link.address,
            "root": self.project_path,
            "open_documents": len(self._versions),
        }

    async def call(self, operation: str, params: dict, deadline: Deadline) -> Any:
        handler = self._operations.get(operation)
        if handler is None:
            raise ToolExecutionError(self.kind, f"Unknown LSP operation: {operation}")

        path = resolve_script_path(
            params.get("project_path") or self.project_path, params["script_path"], operation
        )
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(self.kind, f"Cannot read script {path}: {e.strerror or e}") from e

        return await handler(path.as_uri(), content, params, deadline)

    # =========================================================================
    # Operations
    # =========================================================================

    async def _diagnostics(self, uri: str, content: str, params: dict, deadline: Deadline) -> dict:
        loop = asyncio.get_running_loop()
        previous = self._diagnostics_waiters.pop(uri, None)
        if previous is not None and not previous.done():
            previous.set_result([])

        waiter = loop.create_future()
        self._diagnostics_waiters[uri] = waiter
        try:
            await self._sync(uri, content)
            try:
                diagnostics = await asyncio.wait_for(
                    waiter, timeout=min(DIAGNOSTICS_WAIT, deadline.remaining())
                )
            except asyncio.TimeoutError:
                diagnostics = []
        finally:
            if self._diagnostics_waiters.get(uri) is waiter:
                del self._diagnostics_waiters[uri]
        return {"diagnostics": diagnostics}

    async def _completions(self, uri: str, content: str, params: dict, deadline: Deadline) -> dict:
        await self._sync(uri, content)
        result = await self.link.request(
            "textDocument/completion",
            {"textDocument": {"uri": uri}, "position": self._position(params)},
            deadline,
        )
        if isinstance(result, dict):
            result = result.get("items")
        return {"completions": result if isinstance(result, list) else []}

    async def _hover(self, uri: str, content: str, params: dict, deadline: Deadline) -> dict:
        await self._sync(uri, content)
        hover = await self.link.request(
            "textDocument/hover",
            {"textDocument": {"uri": uri}, "position": self._position(params)},
            deadline,
        )
        return {"hover": hover}

    async def _symbols(self, uri: str, content: str, params: dict, deadline: Deadline) -> dict:
        await self._sync(uri, content)
        result = await self.link.request(
            "textDocument/documentSymbol", {"textDocument": {"uri": uri}}, deadline
        )
        return {"symbols": result if isinstance(result, list) else []}

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _handshake(self) -> None:
        root = str(Path(self.project_path).resolve()) if self.project_path else None
        root_uri = Path(root).as_uri() if root else None
        result = await self.link.request(
            "initialize",
            {
                "processId": None,
                "rootPath": root,
                "rootUri": root_uri,
                "capabilities": {
                    "textDocument": {
                        "publishDiagnostics": {},
                        "completion": {"completionItem": {"snippetSupport": True}},
                        "hover": {"contentFormat": ["markdown", "plaintext"]},
                        "documentSymbol": {},
                    },
                },
                "workspaceFolders": [{"uri": root_uri, "name": root}] if root_uri else None,
            },
            Deadline.after(self._handshake_timeout),
        )
        if isinstance(result, dict):
            self.server_capabilities = result.get("capabilities") or {}
        await self.link.notify("initialized", {})

    async def _sync(self, uri: str, content: str) -> None:
        version = self._versions.get(uri, 0) + 1
        self._versions[uri] = version
        try:
            if version == 1:
                await self.link.notify("textDocument/didOpen", {
                    "textDocument": {"uri": uri, "languageId": "gdscript", "version": version, "text": content},
                })
            else:
                await self.link.notify("textDocument/didChange", {
                    "textDocument": {"uri": uri, "version": version},
                    "contentChanges": [{"text": content}],
                })
        except BaseException:
            # Unsent: the server never saw this version
            if self._versions.get(uri) == version:
                if version == 1:
                    del self._versions[uri]
                else:
                    self._versions[uri] = version - 1
            raise

    @staticmethod
    def _position(params: dict) -> dict:
        return {"line": params["line"], "character": params["character"]}

    async def _handle_event(self, event: Event) -> None:
        if event.name == "textDocument/publishDiagnostics":
            uri = event.body.get("uri")
            diagnostics = event.body.get("diagnostics")
            waiter = self._diagnostics_waiters.pop(uri, None) if isinstance(uri, str) else None
            if waiter is not None and not waiter.done():
                waiter.set_result(diagnostics if isinstance(diagnostics, list) else [])

        if self._on_event:
            await self._on_event(self.kind, event)

    def _handle_lost(self, error: Exception) -> None:
        self._release_diagnostics()
        if self._on_lost:
            self._on_lost(self.kind, error)

    def _release_diagnostics(self) -> None:
        waiters, self._diagnostics_waiters = self._diagnostics_waiters, {}
        for waiter in waiters.values():
            if not waiter.done():
                waiter.set_result([])
