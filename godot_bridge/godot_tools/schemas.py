"""
Shared pydantic building blocks for tool argument schemas.

Every tool's arguments derive from `ToolArgs`: camelCase on the wire
(`scenePath`), snake_case in Python and on the way to the backends
(`scene_path`). Either spelling is accepted on input.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _safe_path(value: str) -> str:
    if not value.strip():
        raise ValueError("path must not be empty")
    if ".." in value.replace("\\", "/").split("/"):
        raise ValueError("path must not contain '..' segments")
    return value


SafePath = Annotated[str, AfterValidator(_safe_path)]


class ToolArgs(BaseModel):
    """Base model for tool arguments."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class ProjectArgs(ToolArgs):
    """Arguments for tools that act on a project on disk."""

    project_path: Optional[SafePath] = Field(
        None, description="Path to the Godot project directory (defaults to GODOT_PROJECT_PATH)."
    )


class SceneArgs(ProjectArgs):
    scene_path: SafePath = Field(..., description="Path to the scene file (relative to project).")


class ScriptArgs(ProjectArgs):
    script_path: SafePath = Field(
        ..., description="Script path: absolute, project-relative, or res://."
    )


class PositionArgs(ScriptArgs):
    line: int = Field(..., ge=0, description="0-based line number.")
    character: int = Field(..., ge=0, description="0-based character offset.")


class EmptyArgs(ToolArgs):
    """For tools that take no arguments."""
