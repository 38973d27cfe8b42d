"""
Runtime tools - talk to a running game through the engine-side addon.
"""

from typing import Any

from pydantic import Field

from ..godot.types import BackendKind
from .registry import NOT_COMPACT, ToolDefinition
from .schemas import ToolArgs


class InspectTreeArgs(ToolArgs):
    root_path: str = Field("/root", description="Node path to start from.")
    max_depth: int = Field(5, ge=1, le=50, description="How deep to descend.")


class NodeArgs(ToolArgs):
    node_path: str = Field(..., min_length=1, description='Absolute node path, e.g. "/root/Main/Player".')


class GetPropertyArgs(NodeArgs):
    property: str = Field(..., min_length=1)


class SetPropertyArgs(GetPropertyArgs):
    value: Any = Field(..., description="New value (JSON).")


class CallMethodArgs(NodeArgs):
    method: str = Field(..., min_length=1)
    args: list[Any] = Field(default_factory=list)


TOOLS = [
    ToolDefinition(
        canonical_name="runtime.inspect_tree",
        description="Inspect the live scene tree of the running game.",
        backend=BackendKind.RUNTIME,
        operation="get_scene_tree",
        input_model=InspectTreeArgs,
        legacy_name="inspect_runtime_tree",
        compact_name="runtime_tree",
        keywords=frozenset({"runtime", "live", "tree", "nodes", "inspect", "debug"}),
    ),
    ToolDefinition(
        canonical_name="runtime.get_property",
        description="Read a property of a node in the running game.",
        backend=BackendKind.RUNTIME,
        operation="get_property",
        input_model=GetPropertyArgs,
        legacy_name="get_runtime_property",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"runtime", "live", "property", "read", "value"}),
    ),
    ToolDefinition(
        canonical_name="runtime.set_property",
        description="Change a property of a node in the running game.",
        backend=BackendKind.RUNTIME,
        operation="set_property",
        input_model=SetPropertyArgs,
        legacy_name="set_runtime_property",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"runtime", "live", "property", "write", "tweak"}),
    ),
    ToolDefinition(
        canonical_name="runtime.call_method",
        description="Call a method on a node in the running game.",
        backend=BackendKind.RUNTIME,
        operation="call_method",
        input_model=CallMethodArgs,
        legacy_name="call_runtime_method",
        visible_in=NOT_COMPACT,
        keywords=frozenset({"runtime", "live", "method", "call", "invoke"}),
    ),
]
