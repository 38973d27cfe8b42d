"""
Process-spawn channel.

Every call runs one headless engine process with an explicit argument
vector and no shared state between calls. The operations script reports
its outcome as exactly one marker line on stdout:

    GODOT_BRIDGE_RESULT {"...": ...}
    GODOT_BRIDGE_ERROR {"message": "..."}

Anything else is a ProtocolError. A bounded pool caps how many engine
processes run at once.
"""

import asyncio
import json
import logging
import os
from contextlib import suppress
from pathlib import Path
from typing import Any, Optional

from .config import ProcessConfig
from .errors import (
    BackendUnavailableError,
    ProtocolError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
)
from .types import BackendKind, Deadline, OnConnectionLost, OnEvent
from ..utils import truncate_output


logger = logging.getLogger("godot_bridge.process")

RESULT_MARKER = "GODOT_BRIDGE_RESULT "
ERROR_MARKER = "GODOT_BRIDGE_ERROR "


def parse_result(operation: str, stdout: str, stderr: str = "") -> Any:
    """
    Extract the single result payload from captured engine output.

    Raises:
        ToolExecutionError: The script emitted an error marker
        ProtocolError: Zero or several markers, or an unparseable payload
    """
    markers = [
        line.strip() for line in stdout.splitlines()
        if line.startswith(RESULT_MARKER) or line.startswith(ERROR_MARKER)
    ]

    if len(markers) != 1:
        reason = "no result line" if not markers else f"{len(markers)} result lines"
        logger.warning(
            f"ProtocolError [{operation}]: {reason}; stdout={truncate_output(stdout, 500)!r} "
            f"stderr={truncate_output(stderr, 500)!r}"
        )
        raise ProtocolError(BackendKind.PROCESS, reason, raw=stdout)

    line = markers[0]
    is_error = line.startswith(ERROR_MARKER)
    payload_text = line[len(ERROR_MARKER if is_error else RESULT_MARKER):]
    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as e:
        logger.warning(f"ProtocolError [{operation}]: invalid JSON ({e}): {truncate_output(line, 500)!r}")
        raise ProtocolError(BackendKind.PROCESS, f"invalid JSON: {e}", raw=line) from None

    if is_error:
        if isinstance(payload, dict):
            message = str(payload.get("message") or f"{operation} failed")
            data = {k: v for k, v in payload.items() if k != "message"} or None
        else:
            message, data = str(payload), None
        raise ToolExecutionError(BackendKind.PROCESS, message, data=data)

    return payload


class ProcessChannel:
    """Runs one engine invocation per call under a bounded pool."""

    kind = BackendKind.PROCESS
    pending = None

    def __init__(self, config: ProcessConfig):
        self.config = config
        self._slots = asyncio.Semaphore(config.max_processes)
        self._busy = 0
        self._children: set[asyncio.subprocess.Process] = set()

    def bind(self, on_event: OnEvent, on_lost: OnConnectionLost) -> None:
        # Stateless between calls: there is no connection to lose.
        pass

    @property
    def busy(self) -> int:
        return self._busy

    async def open(self) -> None:
        """The channel is usable once the engine binary resolves."""
        if not self._binary_ok():
            raise BackendUnavailableError(
                self.kind,
                "Godot executable not found. Set GODOT_PATH to the engine binary."
            )
        if not Path(self.config.operations_script).is_file():
            logger.warning(f"Operations script not found: {self.config.operations_script}")
        logger.info(f"Using Godot executable: {self.config.godot_path}")

    async def close(self) -> None:
        for proc in list(self._children):
            await self._terminate(proc)

    async def ping(self, timeout: float) -> bool:
        return self._binary_ok()

    def describe(self) -> dict:
        return {
            "godot_path": self.config.godot_path,
            "pool_size": self.config.max_processes,
            "pool_busy": self._busy,
        }

    def build_argv(self, operation: str, params: dict, project_path: str) -> list[str]:
        """Deterministic argument vector: params are serialized with sorted keys."""
        argv = [
            self.config.godot_path,
            "--headless",
            "--path", project_path,
            "--script", self.config.operations_script,
            operation,
            json.dumps(params, sort_keys=True, separators=(",", ":")),
        ]
        if self.config.debug:
            argv.append("--debug-godot")
        return argv

    async def call(self, operation: str, params: dict, deadline: Deadline) -> Any:
        """
        Run `operation` in a fresh engine process.

        Args:
            operation: Operation name understood by the operations script
            params: snake_case parameters; `project_path` selects the project
            deadline: Bounds both the wait for a pool slot and the run

        Raises:
            BackendUnavailableError: No pool slot freed before the deadline
            ToolTimeoutError: The process outlived the deadline (it is killed)
        """
        params = dict(params)
        project_path = params.pop("project_path", None) or self.config.project_path
        if not project_path:
            raise ToolValidationError(operation, ["projectPath"], ["projectPath is required"])
        if not (Path(project_path) / "project.godot").is_file():
            raise ToolExecutionError(self.kind, f"Not a valid Godot project: {project_path}")

        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=deadline.remaining())
        except asyncio.TimeoutError:
            raise BackendUnavailableError(
                self.kind,
                f"process pool exhausted ({self.config.max_processes} busy)"
            ) from None

        self._busy += 1
        try:
            return await self._run(operation, self.build_argv(operation, params, project_path), deadline)
        finally:
            self._busy -= 1
            self._slots.release()

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _run(self, operation: str, argv: list[str], deadline: Deadline) -> Any:
        logger.debug(f"Spawning: {argv}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BackendUnavailableError(self.kind, f"failed to start Godot: {e}") from e

        self._children.add(proc)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=deadline.remaining())
        except asyncio.TimeoutError:
            logger.warning(f"{operation} exceeded {deadline.budget:g}s; killing pid {proc.pid}")
            await self._terminate(proc)
            raise ToolTimeoutError(self.kind, operation, deadline.budget) from None
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        finally:
            self._children.discard(proc)

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode:
            logger.debug(f"{operation} exited with code {proc.returncode}")
        return parse_result(operation, out, err)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with suppress(ProcessLookupError):
            proc.kill()
        with suppress(Exception):
            await asyncio.wait_for(proc.wait(), timeout=2.0)

    def _binary_ok(self) -> bool:
        path: Optional[str] = self.config.godot_path
        return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)
