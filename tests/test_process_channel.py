"""
Tests for the process-spawn channel.

Uses a fake engine: a shell script that understands the same argument
vector as the real binary ($6 is the operation, $7 the JSON params).
"""

from __future__ import annotations

import asyncio
import json
import sys
import time

import pytest

from godot_bridge.godot.config import ProcessConfig
from godot_bridge.godot.errors import (
    BackendUnavailableError,
    ProtocolError,
    ToolExecutionError,
    ToolTimeoutError,
    ToolValidationError,
)
from godot_bridge.godot.process_channel import ProcessChannel, parse_result
from godot_bridge.godot.types import Deadline


FAKE_GODOT = """#!/bin/sh
case "$6" in
  echo)
    echo "Godot Engine v4.3.stable - https://godotengine.org"
    printf 'GODOT_BRIDGE_RESULT %s\\n' "$7"
    ;;
  fail)
    echo 'GODOT_BRIDGE_ERROR {"message":"Scene not found","path":"levels/a.tscn"}'
    exit 1
    ;;
  silent)
    echo "nothing to report"
    ;;
  twice)
    echo 'GODOT_BRIDGE_RESULT {"n":1}'
    echo 'GODOT_BRIDGE_RESULT {"n":2}'
    ;;
  badjson)
    echo 'GODOT_BRIDGE_RESULT {not json'
    ;;
  slow)
    exec sleep 5
    ;;
esac
"""


pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake engine is a POSIX shell script")


@pytest.fixture
def fake_godot(tmp_path):
    path = tmp_path / "godot"
    path.write_text(FAKE_GODOT)
    path.chmod(0o755)
    return path


@pytest.fixture
def config(fake_godot, project_dir, tmp_path):
    script = tmp_path / "godot_operations.gd"
    script.write_text("extends SceneTree\n")
    return ProcessConfig(
        godot_path=str(fake_godot),
        project_path=str(project_dir),
        operations_script=str(script),
        max_processes=2,
    )


# ---------------------------------------------------------------------------
# Result parsing
# ---------------------------------------------------------------------------


class TestParseResult:
    def test_single_result_line_among_noise(self) -> None:
        stdout = "Godot Engine v4.3\nGODOT_BRIDGE_RESULT {\"path\": \"res://a.tscn\"}\nbye\n"
        assert parse_result("create_scene", stdout) == {"path": "res://a.tscn"}

    def test_error_marker(self) -> None:
        with pytest.raises(ToolExecutionError) as info:
            parse_result("add_node", 'GODOT_BRIDGE_ERROR {"message": "Parent not found", "parent": "root/X"}\n')
        assert info.value.message == "Parent not found"
        assert info.value.data == {"parent": "root/X"}

    @pytest.mark.parametrize("stdout", [
        "",
        "no markers at all\n",
        'GODOT_BRIDGE_RESULT {"a":1}\nGODOT_BRIDGE_ERROR {"message":"x"}\n',
        "GODOT_BRIDGE_RESULT [1, 2\n",
    ])
    def test_protocol_errors(self, stdout) -> None:
        with pytest.raises(ProtocolError) as info:
            parse_result("op", stdout)
        assert info.value.to_content() == {"error": "ProtocolError", "message": "Malformed response from 'process'",
                                           "backend": "process"}


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


class TestProcessChannel:
    def test_argv_is_deterministic(self, config) -> None:
        channel = ProcessChannel(config)
        argv = channel.build_argv("create_scene", {"scene_path": "a.tscn", "root_node_type": "Node2D"}, "/p")
        assert argv == [
            config.godot_path, "--headless", "--path", "/p", "--script", config.operations_script,
            "create_scene", '{"root_node_type":"Node2D","scene_path":"a.tscn"}',
        ]

    @pytest.mark.asyncio
    async def test_open_checks_binary(self, config, tmp_path) -> None:
        await ProcessChannel(config).open()

        missing = ProcessConfig(godot_path=str(tmp_path / "nope"), operations_script=config.operations_script)
        with pytest.raises(BackendUnavailableError, match="GODOT_PATH"):
            await ProcessChannel(missing).open()

    @pytest.mark.asyncio
    async def test_result_round_trip(self, config, project_dir) -> None:
        channel = ProcessChannel(config)
        params = {"project_path": str(project_dir), "scene_path": "a.tscn", "root_node_type": "Node3D"}
        result = await channel.call("echo", params, Deadline.after(10.0))
        assert result == {"scene_path": "a.tscn", "root_node_type": "Node3D"}
        assert channel.busy == 0

    @pytest.mark.asyncio
    async def test_error_marker_becomes_execution_error(self, config) -> None:
        with pytest.raises(ToolExecutionError) as info:
            await ProcessChannel(config).call("fail", {}, Deadline.after(10.0))
        assert info.value.data == {"path": "levels/a.tscn"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["silent", "twice", "badjson"])
    async def test_bad_output_is_protocol_error(self, config, operation) -> None:
        with pytest.raises(ProtocolError):
            await ProcessChannel(config).call(operation, {}, Deadline.after(10.0))

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, config) -> None:
        channel = ProcessChannel(config)
        started = time.monotonic()
        with pytest.raises(ToolTimeoutError):
            await channel.call("slow", {}, Deadline.after(0.3))
        assert time.monotonic() - started < 3.0
        assert channel.describe()["pool_busy"] == 0
        assert not channel._children

    @pytest.mark.asyncio
    async def test_cancel_kills_child(self, config) -> None:
        channel = ProcessChannel(config)
        task = asyncio.create_task(channel.call("slow", {}, Deadline.after(10.0)))
        for _ in range(200):
            if channel._children:
                break
            await asyncio.sleep(0.01)
        child = next(iter(channel._children))

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert child.returncode is not None
        assert channel.busy == 0
        assert not channel._children

    @pytest.mark.asyncio
    async def test_pool_exhaustion_is_unavailable(self, config) -> None:
        channel = ProcessChannel(ProcessConfig(
            godot_path=config.godot_path,
            project_path=config.project_path,
            operations_script=config.operations_script,
            max_processes=1,
        ))
        holder = asyncio.create_task(channel.call("slow", {}, Deadline.after(5.0)))
        for _ in range(100):
            if channel.busy:
                break
            await asyncio.sleep(0.01)

        with pytest.raises(BackendUnavailableError, match="pool exhausted"):
            await channel.call("echo", {}, Deadline.after(0.2))

        holder.cancel()
        with pytest.raises(asyncio.CancelledError):
            await holder
        assert channel.busy == 0

    @pytest.mark.asyncio
    async def test_project_required(self, config) -> None:
        channel = ProcessChannel(ProcessConfig(godot_path=config.godot_path))
        with pytest.raises(ToolValidationError) as info:
            await channel.call("echo", {}, Deadline.after(1.0))
        assert info.value.fields == ["projectPath"]

    @pytest.mark.asyncio
    async def test_not_a_project(self, config, tmp_path) -> None:
        with pytest.raises(ToolExecutionError, match="Not a valid Godot project"):
            await ProcessChannel(config).call("echo", {"project_path": str(tmp_path)}, Deadline.after(1.0))

    @pytest.mark.asyncio
    async def test_debug_flag_appended(self, config) -> None:
        channel = ProcessChannel(ProcessConfig(
            godot_path=config.godot_path, operations_script=config.operations_script, debug=True
        ))
        assert channel.build_argv("op", {}, "/p")[-1] == "--debug-godot"
        assert json.loads(channel.build_argv("op", {"b": 1, "a": 2}, "/p")[-2]) == {"a": 2, "b": 1}
