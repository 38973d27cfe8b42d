"""
Godot Tools Package - the static tool table behind the bridge.

Tool families:
- scene.*     scene files, via headless engine processes
- project.*   resource UIDs
- script.*    GDScript files
- tilemap.*   tilesets and tile painting (hidden under the compact profile)
- runtime.*   the running game, via the addon socket
- lsp.*       the editor's GDScript language server
- dap.*       the editor's debug adapter
"""

from .registry import ToolDefinition, ToolRegistry
from .catalog import CatalogIndex, CatalogMatch, tokenize
from .schemas import ToolArgs
from . import scene, project, tilemap, runtime, lsp, dap

# Every tool definition, in registration order
ALL_TOOLS: list[ToolDefinition] = [
    *scene.TOOLS,
    *project.TOOLS,
    *tilemap.TOOLS,
    *runtime.TOOLS,
    *lsp.TOOLS,
    *dap.TOOLS,
]


def build_registry() -> ToolRegistry:
    """Build the registry from ALL_TOOLS. Raises RegistryError on a name clash."""
    return ToolRegistry(ALL_TOOLS)


__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "CatalogIndex",
    "CatalogMatch",
    "ToolArgs",
    "tokenize",
    "ALL_TOOLS",
    "build_registry",
]
