"""Tests for the remote MCP client and the outbound platform API (aiohttp mocked)."""

from unittest.mock import patch

import aiohttp
import pytest

from plugin_runtime.errors import CapabilityError, McpStartError, PlatformApiError, RpcError
from plugin_runtime.mcp.remote import RemoteMcpClient
from plugin_runtime.mcp.types import ExternalServerOptions
from plugin_runtime.plugins.api import PlatformAPI, granted_capabilities


class FakeResponse:
    def __init__(self, status=200, payload=None, text="", content_type="application/json"):
        self.status = status
        self._payload = payload
        self._text = text
        self.headers = {"Content-Type": content_type}

    async def json(self, content_type="application/json"):
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; ``handler(method, url, kwargs)`` builds responses."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)

    def request(self, method, url, **kwargs):
        return self._respond(method, url, **kwargs)


def _remote(**extra):
    return RemoteMcpClient(ExternalServerOptions(id="remote", url="https://mcp.example.com/rpc", **extra))


def _jsonrpc_handler(result=None, error=None, id_override=None):
    def handler(method, url, kwargs):
        if method == "GET":
            return FakeResponse(200)
        payload = kwargs["json"]
        body = {"jsonrpc": "2.0", "id": id_override or payload["id"]}
        if error is not None:
            body["error"] = error
        else:
            body["result"] = result
        return FakeResponse(200, body)

    return handler


class TestRemoteMcpClient:
    @pytest.mark.asyncio
    async def test_probe_sends_auth_headers(self):
        session = FakeSession(lambda m, u, k: FakeResponse(204))
        client = _remote(authHeaders={"Authorization": "Bearer t"})
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            assert await client.probe() is True
        assert session.calls[0][2]["headers"] == {"Authorization": "Bearer t"}

    @pytest.mark.asyncio
    async def test_probe_failure_status(self):
        session = FakeSession(lambda m, u, k: FakeResponse(503))
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            assert await _remote().probe() is False

    @pytest.mark.asyncio
    async def test_probe_connection_error(self):
        def handler(method, url, kwargs):
            raise aiohttp.ClientConnectionError("refused")

        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", FakeSession(handler)):
            assert await _remote().probe() is False

    @pytest.mark.asyncio
    async def test_connect_requires_reachable(self):
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", FakeSession(lambda m, u, k: FakeResponse(500))):
            with pytest.raises(McpStartError, match="not reachable"):
                await _remote().connect()

    @pytest.mark.asyncio
    async def test_list_and_call_tools(self):
        tools = {"tools": [{"name": "search", "description": "Search", "inputSchema": {"type": "object"}}]}
        session = FakeSession(_jsonrpc_handler(result=tools))
        client = _remote(authHeaders={"X-Key": "k"})
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            listed = await client.list_tools()
        assert [t.name for t in listed] == ["search"]
        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert kwargs["json"]["method"] == "tools/list"
        assert kwargs["headers"]["X-Key"] == "k"

    @pytest.mark.asyncio
    async def test_error_object(self):
        session = FakeSession(_jsonrpc_handler(error={"code": -32000, "message": "quota exceeded"}))
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            with pytest.raises(RpcError, match="quota exceeded") as exc_info:
                await _remote().call_tool("search", {"q": "x"})
        assert exc_info.value.code == -32000

    @pytest.mark.asyncio
    async def test_id_mismatch(self):
        session = FakeSession(_jsonrpc_handler(result={}, id_override="someone-else"))
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            with pytest.raises(RpcError, match="ID mismatch"):
                await _remote().request("tools/list")

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = FakeSession(lambda m, u, k: FakeResponse(502, text="bad gateway"))
        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", session):
            with pytest.raises(RpcError, match="HTTP 502"):
                await _remote().request("tools/list")

    @pytest.mark.asyncio
    async def test_connection_error_becomes_rpc_error(self):
        def handler(method, url, kwargs):
            raise aiohttp.ClientConnectionError("connection reset")

        with patch("plugin_runtime.mcp.remote.aiohttp.ClientSession", FakeSession(handler)):
            with pytest.raises(RpcError, match="connection reset"):
                await _remote().call_tool("search", {"q": "x"})

    def test_url_must_be_http(self):
        with pytest.raises(ValueError):
            ExternalServerOptions(id="x", url="ftp://example.com")


class TestPlatformAPI:
    def test_channel_category_grants(self):
        assert granted_capabilities(["routes"], "channel") == ["customers", "messages", "routes", "sources"]
        assert granted_capabilities(["routes"], "tool") == ["routes"]

    def test_ungranted_group_raises(self):
        api = PlatformAPI("demo", ["mcp"])
        with pytest.raises(CapabilityError, match="'messages'"):
            api.messages
        with pytest.raises(CapabilityError):
            api.customers

    @pytest.mark.asyncio
    async def test_ungranted_sources(self):
        with pytest.raises(CapabilityError):
            await PlatformAPI("demo", []).register_source({"name": "x"})

    @pytest.mark.asyncio
    async def test_send_message(self):
        session = FakeSession(lambda m, u, k: FakeResponse(200, {"id": "msg-1"}))
        api = PlatformAPI("wa", ["messages"], org_id="org-1", api_url="https://platform.example.com/", api_token="tok")
        with patch("plugin_runtime.plugins.api.aiohttp.ClientSession", session):
            result = await api.messages.send({"conversationId": "c1", "text": "hi"})
        assert result == {"id": "msg-1"}
        method, url, kwargs = session.calls[0]
        assert (method, url) == ("POST", "https://platform.example.com/plugin-api/messages/send")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["X-Organization-Id"] == "org-1"

    @pytest.mark.asyncio
    async def test_error_status(self):
        session = FakeSession(lambda m, u, k: FakeResponse(404, text="not found", content_type="text/plain"))
        api = PlatformAPI("wa", ["customers"])
        with patch("plugin_runtime.plugins.api.aiohttp.ClientSession", session):
            with pytest.raises(PlatformApiError) as exc_info:
                await api.customers.get("cust-1")
        assert exc_info.value.status == 404
