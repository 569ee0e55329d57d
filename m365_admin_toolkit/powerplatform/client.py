"""
Power Platform admin API client.

Three admin surfaces, each with its own token audience:
    bap        https://api.bap.microsoft.com   (environments)
    flow       https://api.flow.microsoft.com  (Power Automate flows)
    powerapps  https://api.powerapps.com       (canvas / model-driven apps)
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import (
    BAP_BASE_URL,
    FLOW_BASE_URL,
    POWERAPPS_BASE_URL,
    POWER_PLATFORM_API_VERSION,
    BAP_SCOPE,
    FLOW_SCOPE,
    POWERAPPS_SCOPE,
)
from ..graph.client import ApiClient
from ..safety.guardian import ChangeGuard

logger = logging.getLogger("m365_admin_toolkit.powerplatform")

API_BASES = {
    "bap": BAP_BASE_URL,
    "flow": FLOW_BASE_URL,
    "powerapps": POWERAPPS_BASE_URL,
}

API_SCOPES = {
    "bap": BAP_SCOPE,
    "flow": FLOW_SCOPE,
    "powerapps": POWERAPPS_SCOPE,
}

ENVIRONMENTS_ENDPOINT = "providers/Microsoft.BusinessAppPlatform/scopes/admin/environments"
FLOWS_ENDPOINT = "providers/Microsoft.ProcessSimple/scopes/admin/environments/{env}/v2/flows"
APPS_ENDPOINT = "providers/Microsoft.PowerApps/scopes/admin/environments/{env}/apps"


class PowerPlatformClient(ApiClient):
    """
    Client for one Power Platform admin surface. The Power Platform APIs
    page with `nextLink`, require `api-version` and don't accept $top.
    """

    supports_top = False

    def __init__(
        self,
        api: str,
        access_token: str,
        guardian: ChangeGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if api not in API_BASES:
            raise ValueError(f"Unknown Power Platform API: {api}")
        super().__init__(access_token, guardian, transport=transport)
        self.api = api

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{API_BASES[self.api]}/{endpoint.lstrip('/')}"

    def _default_params(self) -> dict:
        return {"api-version": POWER_PLATFORM_API_VERSION}

    async def list_environments(self) -> list[dict]:
        return await self.get_all_pages(ENVIRONMENTS_ENDPOINT, params={"$expand": "properties"})

    async def list_flows(self, environment: str) -> list[dict]:
        return await self.get_all_pages(FLOWS_ENDPOINT.format(env=environment))

    async def list_apps(self, environment: str) -> list[dict]:
        return await self.get_all_pages(APPS_ENDPOINT.format(env=environment))
