"""Tests for manifest loading and validation."""

import json

import pytest

from plugin_runtime.errors import ManifestError
from plugin_runtime.plugins.manifest import load_manifest, resolve_within


def _write_descriptor(plugin_dir, descriptor):
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / "plugin.json").write_text(json.dumps(descriptor), encoding="utf-8")


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_valid_manifest(self, tmp_path):
        """A complete descriptor loads into a frozen manifest."""
        plugin_dir = tmp_path / "stripe"
        _write_descriptor(plugin_dir, {
            "name": "stripe",
            "version": "2.1.0",
            "plugin": {
                "entry": "./dist/index.py",
                "displayName": "Stripe",
                "category": "integration",
                "capabilities": ["mcp", "config"],
                "env": ["STRIPE_API_KEY"],
            },
        })
        (plugin_dir / "dist").mkdir()
        (plugin_dir / "dist" / "index.py").write_text("plugin = None\n")

        manifest = load_manifest(plugin_dir)

        assert manifest.id == "stripe"
        assert manifest.version == "2.1.0"
        assert manifest.display_name == "Stripe"
        assert manifest.category == "integration"
        assert manifest.capabilities == frozenset({"mcp", "config"})
        assert manifest.allows_env("STRIPE_API_KEY")
        assert not manifest.allows_env("STRIPE_SECRET")
        assert manifest.entry_path == (plugin_dir / "dist" / "index.py").resolve()

    def test_env_defaults_to_empty_allow_list(self, make_plugin):
        manifest = load_manifest(make_plugin())
        assert manifest.env_allow_list == frozenset()

    @pytest.mark.parametrize("missing", ["entry", "displayName", "category", "capabilities"])
    def test_missing_required_field(self, make_plugin, missing):
        """Every required field of the plugin block is enforced."""
        plugin_dir = make_plugin()
        descriptor = json.loads((plugin_dir / "plugin.json").read_text())
        del descriptor["plugin"][missing]
        (plugin_dir / "plugin.json").write_text(json.dumps(descriptor))

        with pytest.raises(ManifestError):
            load_manifest(plugin_dir)

    def test_missing_plugin_block(self, tmp_path):
        _write_descriptor(tmp_path / "p", {"name": "p"})
        with pytest.raises(ManifestError, match="Missing 'plugin' block"):
            load_manifest(tmp_path / "p")

    def test_missing_name(self, tmp_path):
        _write_descriptor(tmp_path / "p", {"plugin": {}})
        with pytest.raises(ManifestError, match="'name'"):
            load_manifest(tmp_path / "p")

    def test_unknown_category(self, make_plugin):
        with pytest.raises(ManifestError, match="category"):
            load_manifest(make_plugin(category="payments"))

    def test_unknown_capability(self, make_plugin):
        with pytest.raises(ManifestError, match="capabilities"):
            load_manifest(make_plugin(capabilities=["mcp", "filesystem"]))

    def test_empty_display_name(self, make_plugin):
        with pytest.raises(ManifestError):
            load_manifest(make_plugin(displayName="   "))

    def test_env_must_be_strings(self, make_plugin):
        with pytest.raises(ManifestError):
            load_manifest(make_plugin(env=["OK", 42]))

    def test_no_descriptor_file(self, tmp_path):
        with pytest.raises(ManifestError, match="No plugin.json"):
            load_manifest(tmp_path)

    def test_invalid_json(self, tmp_path):
        (tmp_path / "plugin.json").write_text("{not json")
        with pytest.raises(ManifestError, match="Invalid JSON"):
            load_manifest(tmp_path)

    def test_entry_file_must_exist(self, make_plugin):
        with pytest.raises(ManifestError, match="Entry file not found"):
            load_manifest(make_plugin(entry="missing.py"))

    def test_entry_cannot_escape_root(self, make_plugin):
        with pytest.raises(ManifestError, match="escapes the plugin root"):
            load_manifest(make_plugin(entry="../outside.py"))

    def test_name_with_colon_rejected(self, make_plugin):
        """Qualified tool names split on the last colon, so ids cannot contain one."""
        with pytest.raises(ManifestError, match="must not contain ':'"):
            load_manifest(make_plugin(name="acme:crm"))

    def test_tools_and_servers(self, make_plugin):
        manifest = load_manifest(make_plugin(
            tools=[{"name": "reset_password", "inputSchema": {"type": "object", "required": ["email"]}}],
            mcpServers=[{"id": "main", "command": "python3", "args": ["server.py"], "workingDir": "."}],
        ))
        assert manifest.get_tool("reset_password").input_schema["required"] == ["email"]
        assert manifest.mcp_servers[0].id == "main"
        assert manifest.to_dict()["mcp_servers"] == ["main"]

    def test_duplicate_tool_names(self, make_plugin):
        with pytest.raises(ManifestError, match="Duplicate tool names"):
            load_manifest(make_plugin(tools=[{"name": "a"}, {"name": "a"}]))

    def test_server_working_dir_cannot_escape(self, make_plugin):
        with pytest.raises(ManifestError, match="escapes the plugin root"):
            load_manifest(make_plugin(mcpServers=[{"id": "x", "command": "node", "workingDir": "../.."}]))

    def test_manifest_is_immutable(self, make_plugin):
        manifest = load_manifest(make_plugin())
        with pytest.raises(Exception):
            manifest.category = "channel"


class TestResolveWithin:
    def test_inside(self, tmp_path):
        assert resolve_within(tmp_path, "mcp") == (tmp_path / "mcp").resolve()

    def test_root_itself(self, tmp_path):
        assert resolve_within(tmp_path, ".") == tmp_path.resolve()

    def test_outside(self, tmp_path):
        with pytest.raises(ManifestError):
            resolve_within(tmp_path / "a", "../b")
