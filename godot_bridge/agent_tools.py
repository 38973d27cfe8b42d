"""
LangChain adapter for the advertised tool surface.

Exposes each tool of a profile as a langchain-core `StructuredTool` whose
coroutine dispatches through the ProfileRouter, so an agent framework
gets the same validation, deadlines and error taxonomy as MCP callers.

Usage:
    tools = build_agent_tools(bridge.router)
    agent = create_agent(model, tools=tools)
"""

import json
import re
from typing import Optional

from langchain_core.tools import StructuredTool

from .godot.router import ProfileRouter
from .godot.types import Profile
from .godot_tools.registry import ToolDefinition


_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def agent_tool_name(advertised_name: str) -> str:
    """Function-calling APIs only accept [a-zA-Z0-9_-] in tool names."""
    return _INVALID_NAME_CHARS.sub("_", advertised_name)


def make_agent_tool(router: ProfileRouter, advertised_name: str, definition: ToolDefinition) -> StructuredTool:
    canonical = definition.canonical_name

    async def invoke(**arguments) -> str:
        result = await router.dispatch(canonical, arguments)
        return json.dumps(result.to_dict(), ensure_ascii=False)

    # A JSON-schema dict (not the pydantic model) keeps the caller's
    # camelCase keys intact; the router does the validation.
    return StructuredTool.from_function(
        coroutine=invoke,
        name=agent_tool_name(advertised_name),
        description=definition.description,
        args_schema=definition.input_schema(),
        infer_schema=False,
    )


def build_agent_tools(router: ProfileRouter, profile: Optional[Profile] = None) -> list[StructuredTool]:
    """
    Build StructuredTools for the surface advertised under `profile`.

    Args:
        router: Dispatch path the tools call into
        profile: Defaults to the router's active profile

    Returns:
        One tool per advertised name, ordered by name
    """
    return [
        make_agent_tool(router, name, definition)
        for name, definition in router.registry.advertised(profile or router.profile)
    ]
