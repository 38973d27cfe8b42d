"""
Tests for the MCP surface: meta tools, call routing and result rendering.
"""

from __future__ import annotations

import json

import pytest
from mcp.types import CallToolRequest, CallToolRequestParams, ListToolsRequest

from fakes import fake_channels
from godot_bridge.godot.config import BridgeConfig, ReconnectConfig
from godot_bridge.godot.errors import UnknownToolError
from godot_bridge.godot.router import ProfileRouter
from godot_bridge.godot.supervisor import ConnectionSupervisor
from godot_bridge.godot.types import Profile, ToolResult
from godot_bridge.mcp_server import (
    BATCH_TOOL,
    CATALOG_TOOL,
    ToolCallFailed,
    create_server,
    handle_call,
    meta_tools,
    render,
)


async def _router(registry, catalog, profile: Profile = Profile.COMPACT) -> ProfileRouter:
    supervisor = ConnectionSupervisor(fake_channels(), ReconnectConfig(initial_delay=10, max_attempts=1))
    await supervisor.start()
    return ProfileRouter(registry, catalog, supervisor, BridgeConfig(profile=profile))


class TestRender:
    def test_success_is_text_content(self) -> None:
        content = render(ToolResult.success({"path": "res://a.tscn"}))
        assert len(content) == 1
        assert content[0].type == "text"
        assert json.loads(content[0].text) == {"path": "res://a.tscn"}

    def test_error_raises_with_structured_body(self) -> None:
        with pytest.raises(ToolCallFailed) as info:
            render(ToolResult.failure(UnknownToolError("x", "scene.create")))
        body = json.loads(str(info.value))
        assert body["error"] == "UnknownTool"
        assert body["suggestion"] == "scene.create"


class TestHandleCall:
    @pytest.mark.asyncio
    async def test_catalog_meta_tool(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        result = await handle_call(router, CATALOG_TOOL, {"query": "tilemap paint", "limit": 1})
        assert not result.is_error
        assert result.content["profile"] == "compact"
        assert [m["canonicalName"] for m in result.content["matches"]] == ["tilemap.set_cells"]
        await router.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_catalog_requires_query(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        result = await handle_call(router, CATALOG_TOOL, {})
        assert result.error_code == "ValidationError"
        assert result.content["fields"] == ["query"]
        await router.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_batch_meta_tool(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        result = await handle_call(router, BATCH_TOOL, {"calls": [
            {"toolName": "scene_create", "arguments": {"scenePath": "a.tscn"}},
        ]})
        assert not result.is_error
        assert result.content["items"][0]["status"] == "ok"
        await router.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_hidden_tool_by_name(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        result = await handle_call(router, "tilemap.get_used_cells", {"scenePath": "a.tscn", "nodePath": "root/Map"})
        assert not result.is_error
        await router.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_missing_arguments_treated_as_empty(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        result = await handle_call(router, "scene_create", None)
        assert result.error_code == "ValidationError"
        await router.supervisor.shutdown()


class TestServer:
    def test_meta_tools_always_listed(self) -> None:
        assert [tool.name for tool in meta_tools()] == [CATALOG_TOOL, BATCH_TOOL]
        assert meta_tools()[0].inputSchema["required"] == ["query"]

    @pytest.mark.asyncio
    async def test_create_server(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        server = create_server(router)
        assert server.name == "godot-bridge"
        await router.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_sdk_handlers_registered(self, registry, catalog) -> None:
        router = await _router(registry, catalog)
        server = create_server(router)
        assert ListToolsRequest in server.request_handlers
        assert CallToolRequest in server.request_handlers

        listed = await server.request_handlers[ListToolsRequest](ListToolsRequest(method="tools/list"))
        names = {tool.name for tool in listed.root.tools}
        assert {"scene_create", CATALOG_TOOL, BATCH_TOOL} <= names
        assert "tilemap.get_used_cells" not in names

        request = CallToolRequest(
            method="tools/call",
            params=CallToolRequestParams(
                name="tilemap.get_used_cells", arguments={"scenePath": "a.tscn", "nodePath": "root/Map"}
            ),
        )
        called = await server.request_handlers[CallToolRequest](request)
        assert called.root.isError is False
        await router.supervisor.shutdown()
