"""
Project-level tools: resource UIDs and scripts.
"""

from typing import Literal, Optional

from pydantic import Field

from ..godot.types import BackendKind
from .registry import NOT_COMPACT, ToolDefinition
from .schemas import ProjectArgs, SafePath, ScriptArgs, ToolArgs


class GetUidArgs(ProjectArgs):
    file_path: SafePath = Field(..., description="File (relative to project) whose UID to read.")


class CreateScriptArgs(ScriptArgs):
    class_name: Optional[str] = Field(None, description="class_name for global registration.")
    extends: str = Field("Node", description="Base class to extend.")
    content: Optional[str] = Field(None, description="Initial script body.")
    template: Optional[str] = Field(None, description="Template name.")


class ScriptModification(ToolArgs):
    type: Literal["add_function", "add_variable", "add_signal"]
    name: str = Field(..., min_length=1)
    params: Optional[dict] = Field(None, description="Type-specific details (arguments, default value, ...).")


class ModifyScriptArgs(ScriptArgs):
    modifications: list[ScriptModification] = Field(..., min_length=1)


TOOLS = [
    ToolDefinition(
        canonical_name="project.get_uid",
        description="Get the UID of a file in a Godot 4.4+ project.",
        backend=BackendKind.PROCESS,
        operation="get_uid",
        input_model=GetUidArgs,
        legacy_name="get_uid",
        keywords=frozenset({"uid", "resource", "reference", "id"}),
    ),
    ToolDefinition(
        canonical_name="project.update_uids",
        description="Update UID references in a Godot 4.4+ project by resaving resources.",
        backend=BackendKind.PROCESS,
        operation="resave_resources",
        input_model=ProjectArgs,
        legacy_name="update_project_uids",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"uid", "resave", "upgrade", "migrate", "resources"}),
        timeout=300.0,
    ),
    ToolDefinition(
        canonical_name="script.create",
        description="Create a GDScript file with class_name and inheritance.",
        backend=BackendKind.PROCESS,
        operation="create_script",
        input_model=CreateScriptArgs,
        legacy_name="create_script",
        compact_name="script_create",
        keywords=frozenset({"script", "gdscript", "gd", "class", "code"}),
    ),
    ToolDefinition(
        canonical_name="script.modify",
        description="Add functions, variables or signals to an existing GDScript file.",
        backend=BackendKind.PROCESS,
        operation="modify_script",
        input_model=ModifyScriptArgs,
        legacy_name="modify_script",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"script", "gdscript", "function", "variable", "signal", "edit"}),
    ),
]
