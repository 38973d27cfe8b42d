"""
Scene tools - edit .tscn files through a headless engine process.

Tools:
- scene.create: new scene with a root node
- scene.add_node: add a child node to an existing scene
- scene.load_sprite: assign a texture to a Sprite2D node
- scene.save: save a scene, optionally as a variant at a new path
- scene.export_mesh_library: export a scene as a MeshLibrary resource
"""

from typing import Any, Optional

from pydantic import Field

from ..godot.types import BackendKind
from .registry import ToolDefinition
from .schemas import SafePath, SceneArgs


class CreateSceneArgs(SceneArgs):
    root_node_type: str = Field("Node2D", description="Type of the root node (e.g. Node2D, Node3D, Control).")


class AddNodeArgs(SceneArgs):
    parent_node_path: str = Field("root", description='Parent node path (e.g. "root" or "root/Player").')
    node_type: str = Field(..., description="Type of node to add (e.g. Sprite2D, CollisionShape2D).")
    node_name: str = Field(..., min_length=1, description="Name for the new node.")
    properties: Optional[dict[str, Any]] = Field(None, description="Properties to set on the new node.")


class LoadSpriteArgs(SceneArgs):
    node_path: str = Field(..., description='Path to the Sprite2D node (e.g. "root/Player/Sprite2D").')
    texture_path: SafePath = Field(..., description="Texture file path (relative to project).")


class SaveSceneArgs(SceneArgs):
    new_path: Optional[SafePath] = Field(None, description="Save to this path instead (creates a variant).")


class ExportMeshLibraryArgs(SceneArgs):
    output_path: SafePath = Field(..., description="Where the MeshLibrary (.res) is written.")
    mesh_item_names: Optional[list[str]] = Field(None, description="Only include these mesh items (default: all).")


TOOLS = [
    ToolDefinition(
        canonical_name="scene.create",
        description="Create a new Godot scene file with a root node.",
        backend=BackendKind.PROCESS,
        operation="create_scene",
        input_model=CreateSceneArgs,
        legacy_name="create_scene",
        compact_name="scene_create",
        keywords=frozenset({"scene", "tscn", "new", "root", "node"}),
    ),
    ToolDefinition(
        canonical_name="scene.add_node",
        description="Add a node to an existing scene.",
        backend=BackendKind.PROCESS,
        operation="add_node",
        input_model=AddNodeArgs,
        legacy_name="add_node",
        compact_name="scene_add_node",
        keywords=frozenset({"scene", "node", "child", "hierarchy", "create"}),
    ),
    ToolDefinition(
        canonical_name="scene.load_sprite",
        description="Load a texture into a Sprite2D node.",
        backend=BackendKind.PROCESS,
        operation="load_sprite",
        input_model=LoadSpriteArgs,
        legacy_name="load_sprite",
        keywords=frozenset({"sprite", "texture", "image", "2d"}),
    ),
    ToolDefinition(
        canonical_name="scene.save",
        description="Save changes to a scene file, optionally to a new path.",
        backend=BackendKind.PROCESS,
        operation="save_scene",
        input_model=SaveSceneArgs,
        legacy_name="save_scene",
        compact_name="scene_save",
        keywords=frozenset({"scene", "save", "variant", "write"}),
    ),
    ToolDefinition(
        canonical_name="scene.export_mesh_library",
        description="Export a scene as a MeshLibrary resource for GridMap.",
        backend=BackendKind.PROCESS,
        operation="export_mesh_library",
        input_model=ExportMeshLibraryArgs,
        legacy_name="export_mesh_library",
        keywords=frozenset({"mesh", "library", "gridmap", "export", "3d"}),
        timeout=120.0,
    ),
]
