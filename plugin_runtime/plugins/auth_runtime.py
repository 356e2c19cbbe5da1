"""Runtime auth API - exposes the resolved auth state of one organization."""

import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from plugin_runtime.plugins.registrations import ApiKeyAuthMethod, OAuth2AuthMethod, RegistrationStore

logger = logging.getLogger(__name__)

_OAUTH_KEYS = {
    "accessToken": "access_token",
    "refreshToken": "refresh_token",
    "expiresAt": "expires_at",
}


@dataclass
class AuthState:
    """Active auth method and its credentials for an organization."""

    method_id: str
    credentials: Dict[str, Any] = field(default_factory=dict)
    kind: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthState":
        return cls(
            method_id=data.get("methodId") or data.get("method_id"),
            credentials=data.get("credentials"),
        )

    def to_dict(self, mask: bool = False) -> Dict[str, Any]:
        credentials = {k: "********" for k in self.credentials} if mask else dict(self.credentials)
        return {"methodId": self.method_id, "kind": self.kind, "credentials": credentials}

    @property
    def secret(self) -> Optional[str]:
        """The single secret of an API-key credential."""
        if self.kind != "api_key" or len(self.credentials) != 1:
            return None
        return next(iter(self.credentials.values()))

    @property
    def access_token(self) -> Optional[str]:
        return self.credentials.get("access_token")

    @property
    def refresh_token(self) -> Optional[str]:
        return self.credentials.get("refresh_token")

    @property
    def expires_at(self) -> Optional[float]:
        return self.credentials.get("expires_at")

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.kind != "oauth2" or self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


def _normalize_expiry(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    raise ValueError(f"unsupported expires_at value {value!r}")


class AuthRuntime:
    """Auth API available to runtime-phase hooks of one organization."""

    def __init__(
        self,
        auth_state: Optional[Any],
        store: RegistrationStore,
        logger: Optional[logging.Logger] = None,
    ):
        self._raw = auth_state
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    def get(self) -> Optional[AuthState]:
        """Return a copy of the auth state, or None when nothing usable is configured."""
        if self._raw is None:
            self._logger.debug("No auth state configured for this organization")
            return None

        state = self._raw if isinstance(self._raw, AuthState) else None
        if state is None and isinstance(self._raw, dict):
            state = AuthState.from_dict(self._raw)
        if state is None:
            self._logger.warning("Invalid auth state: expected a mapping")
            return None

        if not state.method_id or not isinstance(state.method_id, str):
            self._logger.warning("Invalid auth state: methodId is missing or not a string")
            return None
        if not isinstance(state.credentials, dict):
            self._logger.warning("Invalid auth state: credentials is missing or not an object")
            return None

        credentials = copy.deepcopy(state.credentials)
        method = self._store.get_auth_method(state.method_id)
        kind = None

        if isinstance(method, ApiKeyAuthMethod):
            kind = "api_key"
            key = method.config_field.name
            secret = credentials.get(key, credentials.get("api_key"))
            if not isinstance(secret, str) or not secret:
                self._logger.warning(f"Invalid auth state: API key credential '{key}' is missing")
                return None
            credentials = {key: secret}
        elif isinstance(method, OAuth2AuthMethod):
            kind = "oauth2"
            for camel, snake in _OAUTH_KEYS.items():
                if camel in credentials and snake not in credentials:
                    credentials[snake] = credentials.pop(camel)
            if not isinstance(credentials.get("access_token"), str) or not credentials["access_token"]:
                self._logger.warning("Invalid auth state: OAuth2 access_token is missing")
                return None
            try:
                credentials["expires_at"] = _normalize_expiry(credentials.get("expires_at"))
            except ValueError as e:
                self._logger.warning(f"Invalid auth state: {e}")
                return None
            credentials = {
                "access_token": credentials["access_token"],
                "refresh_token": credentials.get("refresh_token"),
                "expires_at": credentials["expires_at"],
            }
        else:
            self._logger.warning(f"Auth state references unregistered method '{state.method_id}'")

        self._logger.debug(f"Retrieved auth state for method '{state.method_id}'")
        return AuthState(method_id=state.method_id, credentials=credentials, kind=kind)
