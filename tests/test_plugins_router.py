"""API tests for /api/plugins against a PluginManager over temporary directories."""

import pytest
from fastapi.testclient import TestClient

from app import app
from conftest import FAST_MCP_OPTIONS, write_plugin
from plugin_runtime.dependencies import reset_services, set_services
from plugin_runtime.plugins.manager import PluginManager
from plugin_runtime.tools.tool_log import InMemoryToolLog

DEMO_ENTRY = """
from plugin_runtime.plugins.loader import PluginDefinition


def on_initialize(ctx):
    ctx.register.config({
        "apiKey": {"type": "string", "sensitive": True},
        "region": {"type": "string", "default": "eu"},
    })
    ctx.register.auth.api_key(id="key", label="API key", config_field=ctx.config.field("apiKey"))


def on_validate_auth(ctx):
    return ctx.auth.secret == "good"


plugin = PluginDefinition(name="demo", on_initialize=on_initialize, on_validate_auth=on_validate_auth)
"""


@pytest.fixture
def plugin_dirs(tmp_path):
    write_plugin(tmp_path / "bundled", "demo", DEMO_ENTRY)
    return tmp_path


@pytest.fixture
def client(plugin_dirs):
    manager = PluginManager(
        plugin_dirs / "bundled",
        plugin_dirs / "installed",
        plugin_dirs / "state.json",
        mcp_options=FAST_MCP_OPTIONS,
    )
    set_services(manager, InMemoryToolLog())
    with TestClient(app) as test_client:
        yield test_client
    reset_services()


class TestPluginQueries:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "plugins": 1}

    def test_list_plugins(self, client):
        plugins = client.get("/api/plugins/").json()["plugins"]
        assert [p["id"] for p in plugins] == ["demo"]
        assert plugins[0]["initialized"] is True
        assert plugins[0]["source"] == "bundled"

    def test_get_plugin(self, client):
        info = client.get("/api/plugins/demo").json()
        assert info["metadata"]["authMethods"] == [
            {"type": "api_key", "id": "key", "label": "API key", "configField": "apiKey"}
        ]

    def test_unknown_plugin(self, client):
        assert client.get("/api/plugins/nope").status_code == 404
        assert client.get("/api/plugins/nope/metadata").status_code == 404

    def test_metadata_masks_secrets(self, client):
        client.put("/api/plugins/demo/orgs/org-1/config", json={"config": {"apiKey": "sk-live"}})
        metadata = client.get("/api/plugins/demo/metadata", params={"org_id": "org-1"}).json()
        assert metadata["config"]["values"] == {"apiKey": "********", "region": "eu"}


class TestOrganizationEndpoints:
    def test_enable_and_disable(self, client):
        response = client.post("/api/plugins/demo/orgs/org-1/enable", json={"name": "Acme"})
        assert response.status_code == 200
        assert response.json()["org"]["status"] == "running"
        assert response.json()["org"]["org_name"] == "Acme"

        assert client.get("/api/plugins/demo/orgs/org-1").json()["status"] == "running"

        disabled = client.post("/api/plugins/demo/orgs/org-1/disable")
        assert disabled.json()["status"] == "disabled"
        assert client.post("/api/plugins/demo/orgs/org-1/disable").status_code == 404
        assert client.get("/api/plugins/demo/orgs/org-1").status_code == 404

    def test_config_update(self, client):
        client.post("/api/plugins/demo/orgs/org-1/enable")
        response = client.put("/api/plugins/demo/orgs/org-1/config", json={"config": {"region": "us"}})
        assert response.status_code == 200
        assert response.json()["org"]["config"]["region"] == "us"

    def test_config_update_unknown_field(self, client):
        response = client.put("/api/plugins/demo/orgs/org-1/config", json={"config": {"bogus": 1}})
        assert response.status_code == 400
        assert "bogus" in response.json()["detail"]

    def test_auth(self, client):
        client.post("/api/plugins/demo/orgs/org-1/enable")

        bad = client.put(
            "/api/plugins/demo/orgs/org-1/auth", json={"methodId": "key", "credentials": {"apiKey": "bad"}}
        ).json()
        assert bad["valid"] is False
        assert bad["org"]["reason"] == "auth failed"

        good = client.put(
            "/api/plugins/demo/orgs/org-1/auth", json={"methodId": "key", "credentials": {"apiKey": "good"}}
        ).json()
        assert good["valid"] is True
        assert good["org"]["status"] == "running"
        assert good["org"]["auth"]["credentials"] == {"apiKey": "********"}


class TestToolEndpoints:
    def test_failed_call_is_a_result_and_logged(self, client):
        response = client.post(
            "/api/plugins/tools/call",
            json={"qualifiedName": "demo:missing", "orgId": "org-1", "conversationId": "conv-1"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is False
        assert body["error_class"] == "ToolNotFound"

        entries = client.get("/api/plugins/tools/log/conv-1").json()["entries"]
        assert len(entries) == 1
        assert entries[0]["name"] == "demo:missing"
        assert entries[0]["ok"] is False

    def test_call_rejects_malformed_request(self, client):
        response = client.post("/api/plugins/tools/call", json={"qualifiedName": "demo:x"})
        assert response.status_code == 422

    def test_empty_log(self, client):
        assert client.get("/api/plugins/tools/log/conv-9").json()["entries"] == []


class TestInstall:
    def test_install(self, client, tmp_path):
        source = write_plugin(tmp_path / "incoming", "extra")
        response = client.post("/api/plugins/install", json={"path": str(source)})
        assert response.status_code == 200
        assert response.json()["plugin"]["initialized"] is True
        assert "extra" in [p["id"] for p in client.get("/api/plugins/").json()["plugins"]]

        duplicate = client.post("/api/plugins/install", json={"path": str(source)})
        assert duplicate.status_code == 400

    def test_install_bad_paths(self, client, tmp_path):
        assert client.post("/api/plugins/install", json={"path": str(tmp_path / "nope")}).status_code == 400
        (tmp_path / "empty").mkdir()
        assert client.post("/api/plugins/install", json={"path": str(tmp_path / "empty")}).status_code == 400
