"""
MCP surface over the ProfileRouter.

Lists the advertised surface of the active profile plus two meta tools
that are always present:
- tool_catalog: keyword search over every tool, hidden ones included
- tool_batch:   several calls at once, with a per-item status list
"""

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .godot.errors import ToolValidationError
from .godot.router import ProfileRouter
from .godot.types import ToolResult


logger = logging.getLogger("godot_bridge.mcp")

CATALOG_TOOL = "tool_catalog"
BATCH_TOOL = "tool_batch"

CATALOG_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "Keywords, e.g. 'tilemap paint cells'"},
        "limit": {"type": "integer", "minimum": 1, "maximum": 100, "description": "Maximum matches"},
    },
    "required": ["query"],
}

BATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "calls": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "toolName": {"type": "string"},
                    "arguments": {"type": "object"},
                },
                "required": ["toolName"],
            },
        },
    },
    "required": ["calls"],
}


class ToolCallFailed(Exception):
    """Raised from the call handler so the SDK marks the result `isError`."""


def meta_tools() -> list[Tool]:
    return [
        Tool(
            name=CATALOG_TOOL,
            description=(
                "Search every available tool by keyword, including tools not listed "
                "under the current profile. Hidden tools can still be called by name."
            ),
            inputSchema=CATALOG_SCHEMA,
        ),
        Tool(
            name=BATCH_TOOL,
            description="Run several tool calls concurrently and get a per-item status list.",
            inputSchema=BATCH_SCHEMA,
        ),
    ]


def render(result: ToolResult) -> list[TextContent]:
    """
    Convert a ToolResult into MCP content.

    Raises:
        ToolCallFailed: For error results, carrying the structured error as JSON
    """
    text = json.dumps(result.content, indent=2, ensure_ascii=False)
    if result.is_error:
        raise ToolCallFailed(text)
    return [TextContent(type="text", text=text)]


async def handle_call(router: ProfileRouter, name: str, arguments: Any) -> ToolResult:
    """Route a call to a meta tool or to the ProfileRouter."""
    arguments = arguments or {}

    if name == CATALOG_TOOL:
        query = arguments.get("query") if isinstance(arguments, dict) else None
        if not isinstance(query, str) or not query.strip():
            return ToolResult.failure(ToolValidationError(CATALOG_TOOL, ["query"], ["query is required"]))
        limit = arguments.get("limit")
        matches = router.search_catalog(query, limit=limit if isinstance(limit, int) and limit > 0 else None)
        return ToolResult.success({"query": query, "profile": router.profile.value, "matches": matches})

    if name == BATCH_TOOL:
        calls = arguments.get("calls") if isinstance(arguments, dict) else None
        return await router.dispatch_batch(calls)

    return await router.dispatch(name, arguments)


def create_server(router: ProfileRouter) -> Server:
    """Create and configure the MCP server."""
    server = Server("godot-bridge")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return the advertised surface of the active profile."""
        tools = [
            Tool(name=entry["name"], description=entry["description"], inputSchema=entry["inputSchema"])
            for entry in router.list_tools()
        ]
        return tools + meta_tools()

    # Arguments are validated by the router, not the SDK.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        logger.debug(f"call_tool {name}")
        result = await handle_call(router, name, arguments)
        return render(result)

    return server


async def run_stdio(router: ProfileRouter) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    server = create_server(router)
    async with stdio_server() as (read_stream, write_stream):
        logger.info(f"MCP server running on stdio (profile: {router.profile.value})")
        await server.run(read_stream, write_stream, server.create_initialization_options())
