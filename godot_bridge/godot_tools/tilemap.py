"""
TileMap tools. Not part of the compact surface; found through the catalog.
"""

from pydantic import Field

from ..godot.types import BackendKind
from .registry import NOT_COMPACT, ToolDefinition
from .schemas import ProjectArgs, SafePath, SceneArgs, ToolArgs


class CreateTilesetArgs(ProjectArgs):
    resource_path: SafePath = Field(..., description="Where the TileSet (.tres) is saved.")
    texture_path: SafePath = Field(..., description="Atlas texture (relative to project).")
    tile_size: list[int] = Field([16, 16], min_length=2, max_length=2, description="[width, height] in pixels.")


class TileCell(ToolArgs):
    x: int
    y: int
    source_id: int = 0
    atlas_x: int = 0
    atlas_y: int = 0


class SetCellsArgs(SceneArgs):
    node_path: str = Field(..., description="Path to the TileMapLayer node.")
    cells: list[TileCell] = Field(..., min_length=1)


class UsedCellsArgs(SceneArgs):
    node_path: str = Field(..., description="Path to the TileMapLayer node.")


TOOLS = [
    ToolDefinition(
        canonical_name="tilemap.create_tileset",
        description="Create a TileSet resource from an atlas texture.",
        backend=BackendKind.PROCESS,
        operation="create_tileset",
        input_model=CreateTilesetArgs,
        legacy_name="create_tileset",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"tilemap", "tileset", "atlas", "tiles", "2d"}),
    ),
    ToolDefinition(
        canonical_name="tilemap.set_cells",
        description="Paint cells on a TileMapLayer node in a scene.",
        backend=BackendKind.PROCESS,
        operation="set_tilemap_cells",
        input_model=SetCellsArgs,
        legacy_name="set_tilemap_cells",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"tilemap", "tiles", "paint", "cells", "level"}),
    ),
    ToolDefinition(
        canonical_name="tilemap.get_used_cells",
        description="List the painted cells of a TileMapLayer node.",
        backend=BackendKind.PROCESS,
        operation="get_tilemap_used_cells",
        input_model=UsedCellsArgs,
        legacy_name="get_tilemap_used_cells",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"tilemap", "tiles", "cells", "read", "inspect"}),
    ),
]
