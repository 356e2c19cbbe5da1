"""Descriptor-phase registrations: config schema, auth methods, routes and UI.

Everything a plugin declares from ``on_initialize`` lands in a
:class:`RegistrationStore`. The store is tenant-agnostic: it only holds
descriptors and opaque field references, never resolved values. It is frozen
once ``on_initialize`` returns.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from plugin_runtime.constants import SECRET_MASK
from plugin_runtime.errors import CapabilityError, RegistrationError
from plugin_runtime.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)

CONFIG_FIELD_TYPES = ("string", "number", "boolean", "array", "object")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True)
class ConfigFieldRef:
    """Opaque reference to a registered config field."""

    name: str


@dataclass
class ConfigFieldDescriptor:
    name: str
    type: str
    label: Optional[str] = None
    description: Optional[str] = None
    sensitive: bool = False
    env: Optional[str] = None
    default: Any = None
    required: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> dict:
        default = self.default
        if self.sensitive and default is not None:
            default = SECRET_MASK
        return {
            "type": self.type,
            "label": self.label,
            "description": self.description,
            "sensitive": self.sensitive,
            "env": self.env,
            "default": default,
            "required": self.required,
        }


@dataclass
class ApiKeyAuthMethod:
    id: str
    label: str
    config_field: ConfigFieldRef
    kind: str = "api_key"

    def to_dict(self) -> dict:
        return {"type": self.kind, "id": self.id, "label": self.label, "configField": self.config_field.name}


@dataclass
class OAuth2AuthMethod:
    id: str
    label: str
    authorization_url: str
    token_url: str
    client_id: ConfigFieldRef
    client_secret: ConfigFieldRef
    scopes: List[str] = field(default_factory=list)
    kind: str = "oauth2"

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "id": self.id,
            "label": self.label,
            "authorizationUrl": self.authorization_url,
            "tokenUrl": self.token_url,
            "scopes": list(self.scopes),
            "clientId": self.client_id.name,
            "clientSecret": self.client_secret.name,
        }


AuthMethodDescriptor = Union[ApiKeyAuthMethod, OAuth2AuthMethod]


@dataclass
class RegisteredRoute:
    method: str
    path: str
    handler: Callable = field(repr=False)


class RegistrationStore:
    """Holds everything a plugin registers during the descriptor phase."""

    def __init__(self):
        self._config_schema: Dict[str, ConfigFieldDescriptor] = {}
        self._auth_methods: List[AuthMethodDescriptor] = []
        self._routes: List[RegisteredRoute] = []
        self._ui_extensions: List[Dict[str, Any]] = []
        self._ui_pages: List[Dict[str, Any]] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_open(self) -> None:
        if self._frozen:
            raise RegistrationError("Registrations are closed once on_initialize has returned")

    def add_config_fields(self, fields: Dict[str, ConfigFieldDescriptor]) -> None:
        self._check_open()
        self._config_schema.update(fields)

    def add_auth_method(self, method: AuthMethodDescriptor) -> None:
        self._check_open()
        if any(m.id == method.id for m in self._auth_methods):
            raise RegistrationError(f"Auth method with id '{method.id}' is already registered")
        self._auth_methods.append(method)

    def add_route(self, route: RegisteredRoute) -> None:
        self._check_open()
        if any(r.method == route.method and r.path == route.path for r in self._routes):
            raise RegistrationError(f"Route {route.method} {route.path} is already registered")
        self._routes.append(route)

    def add_ui_extension(self, extension: Dict[str, Any]) -> None:
        self._check_open()
        self._ui_extensions.append(dict(extension))

    def add_ui_page(self, page: Dict[str, Any]) -> None:
        self._check_open()
        if any(p["id"] == page["id"] for p in self._ui_pages):
            raise RegistrationError(f"UI page with id '{page['id']}' is already registered")
        self._ui_pages.append(dict(page))

    def has_config_field(self, name: str) -> bool:
        return name in self._config_schema

    def get_config_field(self, name: str) -> Optional[ConfigFieldDescriptor]:
        return self._config_schema.get(name)

    def get_config_schema(self) -> Dict[str, ConfigFieldDescriptor]:
        return dict(self._config_schema)

    def get_auth_method(self, method_id: str) -> Optional[AuthMethodDescriptor]:
        return next((m for m in self._auth_methods if m.id == method_id), None)

    def get_auth_methods(self) -> List[AuthMethodDescriptor]:
        return list(self._auth_methods)

    def get_routes(self) -> List[RegisteredRoute]:
        return list(self._routes)

    def get_ui_extensions(self) -> List[Dict[str, Any]]:
        return [dict(e) for e in self._ui_extensions]

    def get_ui_pages(self) -> List[Dict[str, Any]]:
        return [dict(p) for p in self._ui_pages]

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "configSchema": {name: d.to_dict() for name, d in self._config_schema.items()},
            "authMethods": [m.to_dict() for m in self._auth_methods],
            "routes": [{"method": r.method, "path": r.path} for r in self._routes],
            "uiExtensions": self.get_ui_extensions(),
            "uiPages": self.get_ui_pages(),
        }


def _field_name(ref: Union[ConfigFieldRef, str], what: str) -> str:
    if isinstance(ref, ConfigFieldRef):
        return ref.name
    if isinstance(ref, str) and ref:
        return ref
    raise RegistrationError(f"{what} must be a config field reference")


def _check_default(name: str, field_type: str, default: Any) -> None:
    if field_type == "string":
        valid = isinstance(default, str)
    elif field_type == "number":
        valid = isinstance(default, (int, float)) and not isinstance(default, bool)
    elif field_type == "boolean":
        valid = isinstance(default, bool)
    elif field_type == "array":
        valid = isinstance(default, list)
    else:
        valid = isinstance(default, dict)
    if not valid:
        raise RegistrationError(
            f"Config field '{name}' default value has wrong type. "
            f"Expected {field_type}, got {type(default).__name__}"
        )


class ConfigDescriptorAPI:
    """Descriptor-phase config API: hands out opaque references to registered fields."""

    def __init__(self, store: RegistrationStore):
        self._store = store

    def field(self, name: str) -> ConfigFieldRef:
        if not self._store.has_config_field(name):
            raise RegistrationError(
                f"Config field '{name}' hasn't been registered. "
                f"Register the config schema before referencing its fields."
            )
        return ConfigFieldRef(name)


class RegisterAuthAPI:
    def __init__(self, owner: "RegisterAPI"):
        self._owner = owner

    def api_key(self, id: str, label: str, config_field: Union[ConfigFieldRef, str]) -> None:
        self._owner._require("auth")
        store = self._owner.store
        if not id or not isinstance(id, str):
            raise RegistrationError("API key auth id must be a non-empty string")
        if not label or not isinstance(label, str):
            raise RegistrationError("API key auth label must be a non-empty string")
        name = _field_name(config_field, "API key auth config_field")
        if not store.has_config_field(name):
            raise RegistrationError(
                f"API key auth references config field '{name}' which hasn't been registered. "
                f"Register config schema before registering auth methods."
            )
        store.add_auth_method(ApiKeyAuthMethod(id=id, label=label, config_field=ConfigFieldRef(name)))
        self._owner.logger.debug(f"Registered API key auth method: {id}")

    def oauth2(
        self,
        id: str,
        label: str,
        authorization_url: str,
        token_url: str,
        client_id: ConfigFieldRef,
        client_secret: ConfigFieldRef,
        scopes: Optional[List[str]] = None,
    ) -> None:
        self._owner._require("auth")
        store = self._owner.store
        for value, what in ((id, "id"), (label, "label"), (authorization_url, "authorization_url"), (token_url, "token_url")):
            if not value or not isinstance(value, str):
                raise RegistrationError(f"OAuth2 auth {what} must be a non-empty string")
        for ref, what in ((client_id, "client_id"), (client_secret, "client_secret")):
            if not isinstance(ref, ConfigFieldRef):
                raise RegistrationError(f"OAuth2 auth {what} must be a config field reference")
            if not store.has_config_field(ref.name):
                raise RegistrationError(
                    f"OAuth2 auth {what} references config field '{ref.name}' which hasn't been registered"
                )
        scopes = list(scopes or [])
        if not all(isinstance(s, str) for s in scopes):
            raise RegistrationError("OAuth2 auth scopes must be a list of strings")
        store.add_auth_method(
            OAuth2AuthMethod(
                id=id,
                label=label,
                authorization_url=authorization_url,
                token_url=token_url,
                client_id=client_id,
                client_secret=client_secret,
                scopes=scopes,
            )
        )
        self._owner.logger.debug(f"Registered OAuth2 auth method: {id}")


class RegisterAPI:
    """Registration API handed to ``on_initialize`` through the global context."""

    def __init__(self, store: RegistrationStore, manifest: PluginManifest, logger: logging.Logger):
        self.store = store
        self.manifest = manifest
        self.logger = logger
        self.auth = RegisterAuthAPI(self)

    def _require(self, capability: str) -> None:
        if not self.manifest.has_capability(capability):
            raise CapabilityError(capability, self.manifest.package_id)

    def config(self, schema: Dict[str, Dict[str, Any]]) -> None:
        """Register config field descriptors.

        Args:
            schema: Mapping of field name to descriptor dict with keys
                type, label, description, sensitive, env, default, required
        """
        self._require("config")
        if not isinstance(schema, dict):
            raise RegistrationError("Config schema must be a dict")

        fields: Dict[str, ConfigFieldDescriptor] = {}
        for name, spec in schema.items():
            if not name or not isinstance(name, str):
                raise RegistrationError("Config field name must be a non-empty string")
            if not isinstance(spec, dict):
                raise RegistrationError(f"Config field '{name}' descriptor must be a dict")
            field_type = spec.get("type")
            if field_type not in CONFIG_FIELD_TYPES:
                raise RegistrationError(
                    f"Config field '{name}' has invalid type: {field_type}. "
                    f"Must be one of: {', '.join(CONFIG_FIELD_TYPES)}"
                )
            env = spec.get("env")
            if env is not None:
                if not isinstance(env, str) or not env:
                    raise RegistrationError(f"Config field '{name}' env must be a non-empty string")
                if not self.manifest.allows_env(env):
                    # Resolution of this field will fail closed.
                    self.logger.warning(
                        f"Config field '{name}' references env var '{env}' which is not in the manifest allow-list"
                    )
            default = spec.get("default")
            if default is not None:
                _check_default(name, field_type, default)
            fields[name] = ConfigFieldDescriptor(
                name=name,
                type=field_type,
                label=spec.get("label"),
                description=spec.get("description"),
                sensitive=bool(spec.get("sensitive", False)),
                env=env,
                default=default,
                required=bool(spec.get("required", False)),
            )

        self.store.add_config_fields(fields)
        self.logger.debug(f"Registered config schema with {len(fields)} field(s)")

    def route(self, method: str, path: str, handler: Callable) -> None:
        self._require("routes")
        method = (method or "").upper()
        if method not in HTTP_METHODS:
            raise RegistrationError(f"Invalid HTTP method: {method}. Must be one of: {', '.join(HTTP_METHODS)}")
        if not path or not isinstance(path, str) or not path.startswith("/"):
            raise RegistrationError(f"Route path must start with '/': {path}")
        if not callable(handler):
            raise RegistrationError("Route handler must be callable")
        self.store.add_route(RegisteredRoute(method=method, path=path, handler=handler))
        self.logger.debug(f"Registered route: {method} {path}")

    def ui(self, slot: str, component: str, **props: Any) -> None:
        self._require("ui")
        if not slot or not isinstance(slot, str):
            raise RegistrationError("UI extension slot must be a non-empty string")
        if not component or not isinstance(component, str):
            raise RegistrationError("UI extension component must be a non-empty string")
        self.store.add_ui_extension({"slot": slot, "component": component, **props})
        self.logger.debug(f"Registered UI extension for slot '{slot}'")

    def ui_page(self, page: Dict[str, Any]) -> None:
        self._require("ui")
        if not isinstance(page, dict) or not page.get("id"):
            raise RegistrationError("UI page must be a dict with a non-empty 'id'")
        self.store.add_ui_page(page)
        self.logger.debug(f"Registered UI page '{page['id']}'")
