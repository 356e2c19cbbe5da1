"""Tests for descriptor-phase registrations."""

import logging
from unittest.mock import MagicMock

import pytest

from plugin_runtime.errors import CapabilityError, RegistrationError
from plugin_runtime.plugins.manifest import load_manifest
from plugin_runtime.plugins.registrations import (
    ConfigDescriptorAPI,
    ConfigFieldRef,
    RegisterAPI,
    RegistrationStore,
)


@pytest.fixture
def register_for(make_plugin):
    def _make(**block):
        manifest = load_manifest(make_plugin(**block))
        store = RegistrationStore()
        return RegisterAPI(store, manifest, logging.getLogger("test")), store

    return _make


class TestConfigRegistration:
    def test_register_schema(self, register_for):
        register, store = register_for(env=["API_URL"])
        register.config({
            "apiUrl": {"type": "string", "env": "API_URL", "default": "https://example.com"},
            "retries": {"type": "number", "default": 3},
            "token": {"type": "string", "sensitive": True, "required": True},
        })
        assert set(store.get_config_schema()) == {"apiUrl", "retries", "token"}
        assert store.get_config_field("token").sensitive

    def test_invalid_type(self, register_for):
        register, _ = register_for()
        with pytest.raises(RegistrationError, match="invalid type"):
            register.config({"x": {"type": "date"}})

    def test_default_type_mismatch(self, register_for):
        register, _ = register_for()
        with pytest.raises(RegistrationError, match="wrong type"):
            register.config({"retries": {"type": "number", "default": "3"}})

    def test_boolean_is_not_a_number_default(self, register_for):
        register, _ = register_for()
        with pytest.raises(RegistrationError):
            register.config({"retries": {"type": "number", "default": True}})

    def test_env_outside_allow_list_is_accepted_with_warning(self, register_for, caplog):
        """Declaring is allowed; resolution is what fails closed."""
        register, store = register_for(env=["STRIPE_API_KEY"])
        with caplog.at_level(logging.WARNING):
            register.config({"secret": {"type": "string", "env": "STRIPE_SECRET"}})
        assert store.has_config_field("secret")
        assert "STRIPE_SECRET" in caplog.text

    def test_requires_config_capability(self, register_for):
        register, _ = register_for(capabilities=["mcp"])
        with pytest.raises(CapabilityError, match="'config'"):
            register.config({"x": {"type": "string"}})

    def test_sensitive_default_masked_in_metadata(self, register_for):
        register, store = register_for()
        register.config({"token": {"type": "string", "sensitive": True, "default": "abc"}})
        assert store.to_metadata()["configSchema"]["token"]["default"] == "********"


class TestAuthRegistration:
    def test_api_key_references_field(self, register_for):
        register, store = register_for()
        register.config({"apiKey": {"type": "string", "sensitive": True}})
        register.auth.api_key(id="key", label="API key", config_field=ConfigDescriptorAPI(store).field("apiKey"))
        assert store.get_auth_method("key").config_field == ConfigFieldRef("apiKey")
        assert store.to_metadata()["authMethods"][0]["configField"] == "apiKey"

    def test_api_key_unknown_field(self, register_for):
        register, _ = register_for()
        with pytest.raises(RegistrationError, match="hasn't been registered"):
            register.auth.api_key(id="key", label="API key", config_field="apiKey")

    def test_field_reference_requires_registration(self):
        with pytest.raises(RegistrationError):
            ConfigDescriptorAPI(RegistrationStore()).field("nope")

    def test_oauth2(self, register_for):
        register, store = register_for()
        register.config({"clientId": {"type": "string"}, "clientSecret": {"type": "string", "sensitive": True}})
        config = ConfigDescriptorAPI(store)
        register.auth.oauth2(
            id="google",
            label="Google",
            authorization_url="https://accounts.example.com/auth",
            token_url="https://accounts.example.com/token",
            client_id=config.field("clientId"),
            client_secret=config.field("clientSecret"),
            scopes=["email"],
        )
        described = store.to_metadata()["authMethods"][0]
        assert described["type"] == "oauth2"
        assert described["clientSecret"] == "clientSecret"

    def test_oauth2_requires_urls(self, register_for):
        register, store = register_for()
        register.config({"clientId": {"type": "string"}, "clientSecret": {"type": "string"}})
        config = ConfigDescriptorAPI(store)
        with pytest.raises(RegistrationError, match="token_url"):
            register.auth.oauth2(
                id="g", label="G", authorization_url="https://a", token_url="",
                client_id=config.field("clientId"), client_secret=config.field("clientSecret"),
            )

    def test_duplicate_method_id(self, register_for):
        register, _ = register_for()
        register.config({"apiKey": {"type": "string"}})
        register.auth.api_key(id="key", label="A", config_field="apiKey")
        with pytest.raises(RegistrationError, match="already registered"):
            register.auth.api_key(id="key", label="B", config_field="apiKey")

    def test_requires_auth_capability(self, register_for):
        register, _ = register_for(capabilities=["config"])
        register.config({"apiKey": {"type": "string"}})
        with pytest.raises(CapabilityError):
            register.auth.api_key(id="key", label="A", config_field="apiKey")


class TestRoutesAndUi:
    def test_route(self, register_for):
        register, store = register_for(capabilities=["routes"])
        register.route("get", "/webhook", MagicMock())
        assert store.to_metadata()["routes"] == [{"method": "GET", "path": "/webhook"}]

    def test_route_validation(self, register_for):
        register, _ = register_for(capabilities=["routes"])
        with pytest.raises(RegistrationError, match="Invalid HTTP method"):
            register.route("TRACE", "/x", MagicMock())
        with pytest.raises(RegistrationError, match="must start with '/'"):
            register.route("GET", "x", MagicMock())

    def test_duplicate_route(self, register_for):
        register, _ = register_for(capabilities=["routes"])
        register.route("POST", "/x", MagicMock())
        with pytest.raises(RegistrationError):
            register.route("POST", "/x", MagicMock())

    def test_route_requires_capability(self, register_for):
        register, _ = register_for(capabilities=["config"])
        with pytest.raises(CapabilityError):
            register.route("GET", "/x", MagicMock())

    def test_ui(self, register_for):
        register, store = register_for(capabilities=["ui"])
        register.ui("settings", "StripeSettings", title="Stripe")
        register.ui_page({"id": "dashboard", "title": "Dashboard"})
        metadata = store.to_metadata()
        assert metadata["uiExtensions"] == [{"slot": "settings", "component": "StripeSettings", "title": "Stripe"}]
        assert metadata["uiPages"][0]["id"] == "dashboard"


class TestFreeze:
    def test_frozen_store_rejects_registrations(self, register_for):
        register, store = register_for()
        store.freeze()
        with pytest.raises(RegistrationError, match="closed"):
            register.config({"x": {"type": "string"}})
