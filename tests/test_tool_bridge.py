"""Tests for the tool execution bridge, argument validation and the tool log."""

import json
import sys
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from conftest import FIXTURES_DIR
from plugin_runtime.errors import ToolNotFound
from plugin_runtime.tools.bridge import ToolCallRequest, ToolExecutionBridge, split_qualified_name
from plugin_runtime.tools.tool_log import InMemoryToolLog, JsonlToolLog, ToolLogEntry
from plugin_runtime.tools.validation import validate_tool_arguments

RESET_PASSWORD = {
    "name": "reset_password",
    "description": "Send a password reset email",
    "inputSchema": {
        "type": "object",
        "properties": {"email": {"type": "string"}},
        "required": ["email"],
    },
}

ECHO_SERVER = {"id": "echo", "command": sys.executable, "args": [str(FIXTURES_DIR / "mcp_echo_server.py")]}


def _request(name, arguments=None, **extra):
    return ToolCallRequest(
        qualified_name=name,
        arguments=arguments if arguments is not None else {},
        org_id="org-1",
        conversation_id="conv-1",
        **extra,
    )


@pytest_asyncio.fixture
async def echo_bridge(make_host):
    """A bridge over one enabled plugin whose declared server is the echo fixture."""
    host = make_host(mcpServers=[ECHO_SERVER])
    await host.initialize()
    await host.enable_org("org-1")
    log = InMemoryToolLog()
    yield ToolExecutionBridge({host.id: host}, log), host, log
    await host.shutdown()


class TestSplitQualifiedName:
    def test_simple(self):
        assert split_qualified_name("judo-in-cloud:reset_password") == ("judo-in-cloud", "reset_password")

    def test_splits_on_last_colon(self):
        assert split_qualified_name("acme:crm:lookup") == ("acme:crm", "lookup")

    @pytest.mark.parametrize("name", ["no_colon", ":tool", "plugin:"])
    def test_invalid(self, name):
        with pytest.raises(ToolNotFound, match="Invalid tool name format"):
            split_qualified_name(name)


class TestValidateToolArguments:
    def test_missing_required(self):
        assert validate_tool_arguments({}, RESET_PASSWORD["inputSchema"]) == ["Missing required field: email"]

    def test_wrong_types(self):
        schema = {
            "type": "object",
            "properties": {
                "email": {"type": "string"},
                "count": {"type": "number"},
                "tags": {"type": "array"},
                "mode": {"type": "string", "enum": ["fast", "slow"]},
            },
        }
        errors = validate_tool_arguments({"email": 1, "count": True, "tags": "x", "mode": "medium"}, schema)
        assert errors == [
            "Field 'email' must be a string",
            "Field 'count' must be a number",
            "Field 'tags' must be an array",
            "Field 'mode' must be one of: fast, slow",
        ]

    def test_not_an_object(self):
        assert validate_tool_arguments(["x"], {}) == ["Arguments must be an object"]

    def test_valid(self):
        assert validate_tool_arguments({"email": "a@b.c"}, RESET_PASSWORD["inputSchema"]) == []


class TestToolExecutionBridge:
    @pytest.mark.asyncio
    async def test_validation_fails_before_any_process(self, make_host):
        """Missing required arguments are rejected without touching the plugin's processes."""
        host = make_host(name="judo-in-cloud", tools=[RESET_PASSWORD], mcpServers=[ECHO_SERVER])
        await host.initialize()
        host.store.set_enabled(host.id, "org-1", True)
        log = InMemoryToolLog()
        bridge = ToolExecutionBridge({host.id: host}, log)

        with patch.object(host, "ensure_tool_server", AsyncMock()) as ensure:
            result = await bridge.execute(_request("judo-in-cloud:reset_password", {}))

        assert not result.ok
        assert result.error_class == "ToolValidationError"
        assert "Missing required field: email" in result.message
        ensure.assert_not_called()
        assert host.registry.get("org-1") is None

        entries = log.read("conv-1")
        assert len(entries) == 1
        assert entries[0].ok is False
        assert entries[0].error_class == "ToolValidationError"
        assert entries[0].name == "judo-in-cloud:reset_password"

    @pytest.mark.asyncio
    async def test_successful_call_is_logged(self, echo_bridge):
        bridge, host, log = echo_bridge
        result = await bridge.execute(_request("demo:echo", {"text": "hello"}, idempotency_key="k-1", turn=7))

        assert result.ok
        assert result.result["content"][0]["text"] == "hello"
        entry = log.read("conv-1")[0]
        assert entry.ok
        assert entry.turn == 7
        assert entry.input == {"text": "hello"}
        assert entry.idempotency_key == "k-1"
        assert entry.org_id == "org-1"
        assert entry.latency_ms >= 0
        assert entry.correlation_id == result.correlation_id

    @pytest.mark.asyncio
    async def test_turns_increment_when_not_given(self, echo_bridge):
        bridge, host, log = echo_bridge
        await bridge.execute(_request("demo:echo", {"text": "a"}))
        await bridge.execute(_request("demo:unknown"))
        assert [e.turn for e in log.read("conv-1")] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_plugin_lists_available_tools(self, echo_bridge):
        bridge, host, log = echo_bridge
        result = await bridge.execute(_request("nope:echo"))
        assert result.error_class == "ToolNotFound"
        assert "demo:echo" in result.message
        assert log.read("conv-1")[0].error_class == "ToolNotFound"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, echo_bridge):
        bridge, host, log = echo_bridge
        result = await bridge.execute(_request("demo:teleport"))
        assert result.error_class == "ToolNotFound"
        assert "Tool 'teleport' not found in plugin 'demo'" in result.message

    @pytest.mark.asyncio
    async def test_tool_reported_error(self, echo_bridge):
        bridge, host, log = echo_bridge
        result = await bridge.execute(_request("demo:fail"))
        assert result.error_class == "ToolExecutionError"
        assert "something broke" in result.message

    @pytest.mark.asyncio
    async def test_timeout(self, echo_bridge):
        bridge, host, log = echo_bridge
        result = await bridge.execute(_request("demo:slow", {"seconds": 2}, timeout=0.2))
        assert result.error_class == "ToolTimeout"
        assert log.read("conv-1")[0].ok is False

    @pytest.mark.asyncio
    async def test_not_enabled_is_unavailable(self, make_host):
        host = make_host(tools=[RESET_PASSWORD], mcpServers=[ECHO_SERVER])
        await host.initialize()
        bridge = ToolExecutionBridge({host.id: host}, InMemoryToolLog())
        result = await bridge.execute(_request("demo:reset_password", {"email": "a@b.c"}))
        assert result.error_class == "ToolUnavailable"

    @pytest.mark.asyncio
    async def test_enabled_org_started_on_demand(self, make_host):
        host = make_host(mcpServers=[ECHO_SERVER], tools=[{"name": "echo"}])
        await host.initialize()
        host.store.set_enabled(host.id, "org-1", True)
        bridge = ToolExecutionBridge({host.id: host}, InMemoryToolLog())
        try:
            result = await bridge.execute(_request("demo:echo", {"text": "lazy"}))
            assert result.ok
            assert host.registry.get("org-1") is not None
        finally:
            await host.shutdown()

    @pytest.mark.asyncio
    async def test_stopped_server_restarted_on_demand(self, make_host):
        host = make_host(mcpServers=[ECHO_SERVER], tools=[{"name": "echo"}])
        await host.initialize()
        await host.enable_org("org-1")
        bridge = ToolExecutionBridge({host.id: host}, InMemoryToolLog())
        try:
            await host.registry.get("org-1").mcp.stop("echo")
            result = await bridge.execute(_request("demo:echo", {"text": "again"}))
            assert result.ok
        finally:
            await host.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_is_a_logged_result(self, make_host):
        source = """
        from plugin_runtime.plugins.loader import PluginDefinition


        def boom(name, arguments):
            raise RuntimeError("adapter blew up")


        async def on_start(ctx):
            await ctx.mcp.start_local("local", lambda c: {
                "list_tools": lambda: [{"name": "explode"}],
                "call_tool": boom,
            })


        plugin = PluginDefinition(name="demo", on_start=on_start)
        """
        host = make_host(entry_source=source)
        await host.initialize()
        await host.enable_org("org-1")
        log = InMemoryToolLog()
        bridge = ToolExecutionBridge({host.id: host}, log)
        try:
            result = await bridge.execute(_request("demo:explode"))
            assert result.ok is False
            assert result.error_class == "ToolExecutionError"
            assert "adapter blew up" in result.message
            entries = log.read("conv-1")
            assert len(entries) == 1
            assert entries[0].error_class == "ToolExecutionError"
        finally:
            await host.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_manager_error_is_a_logged_result(self, echo_bridge):
        bridge, host, log = echo_bridge
        manager = host.registry.get("org-1").mcp
        with patch.object(manager, "call_tool", AsyncMock(side_effect=ConnectionResetError("peer went away"))):
            result = await bridge.execute(_request("demo:echo", {"text": "hi"}))
        assert result.error_class == "ToolExecutionError"
        assert "peer went away" in result.message
        assert log.read("conv-1")[0].ok is False

    @pytest.mark.asyncio
    async def test_available_tools(self, echo_bridge):
        bridge, host, log = echo_bridge
        assert bridge.available_tools("org-1") == ["demo:echo", "demo:env", "demo:fail", "demo:slow"]


class TestJsonlToolLog:
    def _entry(self, turn=1, ok=True):
        return ToolLogEntry(
            turn=turn, name="demo:echo", input={"text": "x"}, ok=ok, latency_ms=3,
            idempotency_key="k", correlation_id="c",
        )

    def test_append_and_read(self, tmp_path):
        log = JsonlToolLog(tmp_path)
        log.append("conv-1", self._entry(1))
        log.append("conv-1", self._entry(2, ok=False))
        entries = log.read("conv-1")
        assert [(e.turn, e.ok) for e in entries] == [(1, True), (2, False)]
        assert log.next_turn("conv-1") == 3
        lines = (tmp_path / "conv-1.jsonl").read_text().splitlines()
        assert json.loads(lines[0])["name"] == "demo:echo"

    def test_empty_conversation(self, tmp_path):
        assert JsonlToolLog(tmp_path).read("never") == []

    def test_rejects_path_like_ids(self, tmp_path):
        with pytest.raises(ValueError):
            JsonlToolLog(tmp_path).append("../escape", self._entry())

    def test_corrupt_line_skipped(self, tmp_path):
        log = JsonlToolLog(tmp_path)
        log.append("conv-1", self._entry())
        with open(tmp_path / "conv-1.jsonl", "a") as f:
            f.write("{broken\n")
        assert len(log.read("conv-1")) == 1

    @pytest.mark.asyncio
    async def test_append_failure_propagates(self, echo_bridge):
        bridge, host, log = echo_bridge
        with patch.object(log, "append", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await bridge.execute(_request("demo:echo", {"text": "x"}))
