"""
Profile Router - the single dispatch path for tool calls.

dispatch(tool_name, arguments) runs:
1. resolve the name (canonical, then alias) or fail with UnknownTool
2. note whether the tool is advertised under the profile (it is
   dispatchable either way)
3. validate arguments against the tool's schema
4. acquire the bound channel from the supervisor (Ready or fail fast)
5. execute under a deadline, serialized per scene/resource where needed
6. normalize to exactly one of success or error

Errors never escape `dispatch`; every outcome is a ToolResult.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .config import BridgeConfig
from .errors import BridgeError, PartialFailure, ToolTimeoutError, ToolValidationError, UnknownToolError
from .supervisor import ConnectionSupervisor
from .types import BackendKind, Deadline, Profile, ToolResult
from ..utils import safe_serialize

if TYPE_CHECKING:
    from ..godot_tools.catalog import CatalogIndex
    from ..godot_tools.registry import ToolDefinition, ToolRegistry


logger = logging.getLogger("godot_bridge.router")

# Outer backstop on top of the channel's own deadline handling
BACKSTOP_GRACE = 1.0

SERIALIZED_BACKENDS = frozenset({BackendKind.PROCESS, BackendKind.RUNTIME})


def resource_key(params: dict) -> Optional[str]:
    """Serialization key for calls that touch one scene or resource file."""
    scene = params.get("scene_path") or params.get("scenePath")
    if isinstance(scene, str) and scene:
        return f"scene:{scene}"
    resource = params.get("resource_path") or params.get("resourcePath")
    if isinstance(resource, str) and resource:
        return f"resource:{resource}"
    return None


@dataclass
class _KeyLock:
    lock: asyncio.Lock
    users: int = 0


class ResourceLocks:
    """
    FIFO lock per resource key. An entry exists only while some call holds
    or waits for it.
    """

    def __init__(self):
        self._locks: dict[str, _KeyLock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Optional[str]):
        if key is None:
            yield
            return

        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock(asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]


class ProfileRouter:
    """Resolves, validates and dispatches tool calls."""

    def __init__(
        self,
        registry: "ToolRegistry",
        catalog: "CatalogIndex",
        supervisor: ConnectionSupervisor,
        bridge: Optional[BridgeConfig] = None
    ):
        self.registry = registry
        self.catalog = catalog
        self.supervisor = supervisor
        self.bridge = bridge or BridgeConfig()
        self.resource_locks = ResourceLocks()

    @property
    def profile(self) -> Profile:
        return self.bridge.profile

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(
        self,
        tool_name: str,
        arguments: Any = None,
        profile: Optional[Profile] = None
    ) -> ToolResult:
        """
        Execute one tool call.

        Args:
            tool_name: Canonical name or any alias (exact, case-sensitive)
            arguments: Argument object; camelCase or snake_case keys
            profile: Profile to annotate against (defaults to the active one)

        Returns:
            ToolResult holding either the backend payload or a structured error
        """
        profile = profile or self.profile
        started = time.monotonic()

        try:
            content = await self._dispatch(tool_name, arguments, profile)
            result = ToolResult.success(safe_serialize(content))
        except BridgeError as e:
            result = ToolResult.failure(e)
        except Exception as e:
            logger.error(f"Unexpected error dispatching '{tool_name}': {e}", exc_info=True)
            result = ToolResult.failure(e)

        elapsed_ms = (time.monotonic() - started) * 1000
        if result.is_error:
            logger.info(f"{tool_name} -> {result.error_code} ({elapsed_ms:.0f}ms)")
        else:
            logger.debug(f"{tool_name} -> ok ({elapsed_ms:.0f}ms)")
        return result

    async def dispatch_batch(self, calls: Any, profile: Optional[Profile] = None) -> ToolResult:
        """
        Execute several calls concurrently.

        Returns:
            Success with per-item results when all succeed, otherwise a
            PartialFailure carrying the per-item status list
        """
        if not isinstance(calls, list) or not calls:
            return ToolResult.failure(
                ToolValidationError("tool_batch", ["calls"], ["calls must be a non-empty list"])
            )

        async def run(index: int, call: Any) -> dict:
            name = (call.get("toolName") or call.get("name")) if isinstance(call, dict) else None
            if not isinstance(name, str):
                error = ToolValidationError("tool_batch", [f"calls.{index}.toolName"], ["toolName is required"])
                result = ToolResult.failure(error)
            else:
                result = await self.dispatch(name, call.get("arguments"), profile)
            return {
                "index": index,
                "toolName": name,
                "status": "error" if result.is_error else "ok",
                "content": result.content,
            }

        items = list(await asyncio.gather(*(run(i, call) for i, call in enumerate(calls))))
        if any(item["status"] != "ok" for item in items):
            return ToolResult.failure(PartialFailure(items))
        return ToolResult.success({"items": items})

    # =========================================================================
    # Discovery
    # =========================================================================

    def list_tools(self, profile: Optional[Profile] = None) -> list[dict]:
        """The advertised surface for a profile."""
        profile = profile or self.profile
        return [
            {
                "name": name,
                "canonicalName": definition.canonical_name,
                "description": definition.description,
                "backendKind": definition.backend.value,
                "inputSchema": definition.input_schema(),
            }
            for name, definition in self.registry.advertised(profile)
        ]

    def search_catalog(self, query: str, profile: Optional[Profile] = None, limit: Optional[int] = None) -> list[dict]:
        profile = profile or self.profile
        return [match.to_dict() for match in self.catalog.search(query, profile, limit)]

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _dispatch(self, tool_name: str, arguments: Any, profile: Profile) -> Any:
        definition = self._resolve(tool_name)
        if not definition.is_visible(profile):
            logger.debug(f"{tool_name} is not advertised under '{profile.value}'; dispatching anyway")

        params = definition.validate(arguments)
        channel = self.supervisor.acquire(definition.backend)

        timeout = definition.timeout or self.bridge.default_timeout(definition.backend)
        deadline = Deadline.after(timeout)
        try:
            return await asyncio.wait_for(
                self._execute(definition, channel, params, deadline),
                timeout=timeout + BACKSTOP_GRACE,
            )
        except asyncio.TimeoutError:
            raise ToolTimeoutError(definition.backend, definition.operation, timeout) from None

    async def _execute(self, definition: "ToolDefinition", channel: Any, params: dict, deadline: Deadline) -> Any:
        key = resource_key(params) if definition.backend in SERIALIZED_BACKENDS else None
        async with self.resource_locks.hold(key):
            if deadline.expired:
                raise ToolTimeoutError(definition.backend, definition.operation, deadline.budget)
            try:
                return await channel.call(definition.operation, params, deadline)
            except ToolValidationError as e:
                # Channels only know the operation name
                raise ToolValidationError(definition.canonical_name, e.fields, e.problems) from None

    def _resolve(self, tool_name: str) -> "ToolDefinition":
        if not isinstance(tool_name, str):
            raise UnknownToolError(repr(tool_name))
        try:
            return self.registry.lookup(tool_name)
        except UnknownToolError:
            raise UnknownToolError(tool_name, self.catalog.suggest(tool_name)) from None
