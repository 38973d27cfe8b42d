"""
Language-server tools (GDScript diagnostics, completion, hover, symbols).
"""

from ..godot.types import BackendKind
from .registry import NOT_COMPACT, ToolDefinition
from .schemas import PositionArgs, ScriptArgs


TOOLS = [
    ToolDefinition(
        canonical_name="lsp.diagnostics",
        description="Get GDScript diagnostics (errors and warnings) for a script file.",
        backend=BackendKind.LSP,
        operation="diagnostics",
        input_model=ScriptArgs,
        legacy_name="lsp_get_diagnostics",
        compact_name="lsp_diagnostics",
        keywords=frozenset({"lsp", "lint", "errors", "warnings", "check", "gdscript"}),
    ),
    ToolDefinition(
        canonical_name="lsp.completions",
        description="Get code completions at a position in a GDScript file.",
        backend=BackendKind.LSP,
        operation="completions",
        input_model=PositionArgs,
        legacy_name="lsp_get_completions",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"lsp", "autocomplete", "completion", "suggest", "gdscript"}),
    ),
    ToolDefinition(
        canonical_name="lsp.hover",
        description="Get hover documentation at a position in a GDScript file.",
        backend=BackendKind.LSP,
        operation="hover",
        input_model=PositionArgs,
        legacy_name="lsp_get_hover",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"lsp", "hover", "docs", "documentation", "type"}),
    ),
    ToolDefinition(
        canonical_name="lsp.symbols",
        description="List the document symbols (classes, functions, variables) of a GDScript file.",
        backend=BackendKind.LSP,
        operation="symbols",
        input_model=ScriptArgs,
        legacy_name="lsp_get_symbols",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"lsp", "symbols", "outline", "functions", "gdscript"}),
    ),
]
