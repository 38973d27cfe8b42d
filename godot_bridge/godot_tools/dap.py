"""
Debugger tools, backed by the editor's debug adapter.
"""

from typing import Optional

from pydantic import Field

from ..godot.types import BackendKind
from .registry import NOT_COMPACT, ToolDefinition
from .schemas import ScriptArgs, ToolArgs


class OutputArgs(ToolArgs):
    clear: bool = Field(False, description="Clear the buffer after reading.")


class BreakpointArgs(ScriptArgs):
    line: int = Field(..., ge=1, description="1-based line number.")


class ThreadArgs(ToolArgs):
    thread_id: Optional[int] = Field(None, ge=1, description="Thread to act on (default: last stopped thread).")


class VariablesArgs(ToolArgs):
    variables_reference: int = Field(..., ge=1, description="variablesReference from a scope or variable.")


def _dap_tool(canonical: str, legacy: str, operation: str, model, description: str, keywords: set) -> ToolDefinition:
    return ToolDefinition(
        canonical_name=canonical,
        description=description,
        backend=BackendKind.DAP,
        operation=operation,
        input_model=model,
        legacy_name=legacy,
        visible_in=NOT_COMPACT,
        keywords=frozenset({"dap", "debug", "debugger"} | keywords),
    )


TOOLS = [
    _dap_tool("dap.get_output", "dap_get_output", "get_output", OutputArgs,
              "Read the captured output of the debug target.", {"output", "print", "log", "console"}),
    _dap_tool("dap.set_breakpoint", "dap_set_breakpoint", "set_breakpoint", BreakpointArgs,
              "Set a breakpoint in a script at a line.", {"breakpoint", "break", "line"}),
    _dap_tool("dap.remove_breakpoint", "dap_remove_breakpoint", "remove_breakpoint", BreakpointArgs,
              "Remove a breakpoint from a script line.", {"breakpoint", "clear", "line"}),
    _dap_tool("dap.continue", "dap_continue", "continue", ThreadArgs,
              "Continue execution after a breakpoint or pause.", {"resume", "run"}),
    _dap_tool("dap.pause", "dap_pause", "pause", ThreadArgs,
              "Pause the running debug target.", {"pause", "break", "halt"}),
    _dap_tool("dap.step_over", "dap_step_over", "step_over", ThreadArgs,
              "Step over the current line.", {"step", "next", "line"}),
    _dap_tool("dap.stack_trace", "dap_get_stack_trace", "stack_trace", ThreadArgs,
              "Get the current stack trace of the stopped thread.", {"stack", "trace", "frames", "callstack"}),
    _dap_tool("dap.variables", "dap_get_variables", "variables", VariablesArgs,
              "List the variables behind a variablesReference.", {"variables", "locals", "inspect", "scope"}),
]
