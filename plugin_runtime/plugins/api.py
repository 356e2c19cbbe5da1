"""PlatformAPI - outbound client plugin code uses to call back into the platform."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from plugin_runtime.constants import PLATFORM_API_TOKEN, PLATFORM_API_URL
from plugin_runtime.errors import CapabilityError, PlatformApiError

logger = logging.getLogger(__name__)

# Categories that are granted the conversation-facing API groups
CHANNEL_CAPABILITIES = ("messages", "customers", "sources")


def granted_capabilities(manifest_capabilities: Iterable[str], category: str) -> List[str]:
    granted = set(manifest_capabilities)
    if category == "channel":
        granted.update(CHANNEL_CAPABILITIES)
    return sorted(granted)


class _Group:
    def __init__(self, api: "PlatformAPI"):
        self._api = api


class MessagesAPI(_Group):
    async def receive(self, data: Dict[str, Any]) -> Any:
        """Ingest an incoming customer message (creates customer/conversation as needed)."""
        return await self._api.request("POST", "/plugin-api/messages/receive", data)

    async def send(self, data: Dict[str, Any]) -> Any:
        return await self._api.request("POST", "/plugin-api/messages/send", data)

    async def get_by_conversation(self, conversation_id: str) -> Any:
        return await self._api.request("GET", f"/plugin-api/messages/conversation/{conversation_id}")


class CustomersAPI(_Group):
    async def get(self, customer_id: str) -> Any:
        return await self._api.request("GET", f"/plugin-api/customers/{customer_id}")

    async def find_by_external_id(self, external_id: str, channel: str) -> Any:
        return await self._api.request(
            "POST",
            "/plugin-api/customers/find-by-external-id",
            {"externalId": external_id, "channel": channel},
        )

    async def upsert(self, data: Dict[str, Any]) -> Any:
        return await self._api.request("POST", "/plugin-api/customers/upsert", data)


class McpRegistrationAPI(_Group):
    async def register_local(self, config: Dict[str, Any]) -> Any:
        return await self._api.request("POST", "/v1/plugin-api/mcp/register-local", config)

    async def register_remote(self, config: Dict[str, Any]) -> Any:
        return await self._api.request("POST", "/v1/plugin-api/mcp/register-remote", config)


class PlatformAPI:
    """HTTP client grouped by capability.

    Accessing a group the plugin was not granted raises CapabilityError
    before any request is made.
    """

    def __init__(
        self,
        plugin_id: str,
        capabilities: Iterable[str],
        org_id: Optional[str] = None,
        api_url: str = PLATFORM_API_URL,
        api_token: str = PLATFORM_API_TOKEN,
    ):
        self.plugin_id = plugin_id
        self.org_id = org_id
        self.capabilities = frozenset(capabilities)
        self.api_url = api_url.rstrip("/")
        self._api_token = api_token

    def _require(self, capability: str) -> None:
        if capability not in self.capabilities:
            raise CapabilityError(capability, self.plugin_id)

    @property
    def messages(self) -> MessagesAPI:
        self._require("messages")
        return MessagesAPI(self)

    @property
    def customers(self) -> CustomersAPI:
        self._require("customers")
        return CustomersAPI(self)

    @property
    def mcp(self) -> McpRegistrationAPI:
        self._require("mcp")
        return McpRegistrationAPI(self)

    async def register_source(self, source: Dict[str, Any]) -> Any:
        self._require("sources")
        return await self.request("POST", "/plugin-api/sources/register", source)

    async def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_url}{path}"
        headers = {"Authorization": f"Bearer {self._api_token}", "Content-Type": "application/json"}
        if self.org_id:
            headers["X-Organization-Id"] = self.org_id
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(method, url, json=data, headers=headers) as response:
                    if response.status >= 400:
                        text = await response.text()
                        raise PlatformApiError(f"Plugin API error ({response.status}): {text}", response.status)
                    if "application/json" in response.headers.get("Content-Type", ""):
                        return await response.json()
                    return await response.text()
        except aiohttp.ClientError as e:
            logger.error(f"[{self.plugin_id}] Request failed: {method} {path}: {e}")
            raise PlatformApiError(f"Plugin API request failed: {e}") from e
