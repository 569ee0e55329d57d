"""
Power Platform Collector
Enumerates: environments, and per environment the Power Automate flows
and Power Apps.
"""

from __future__ import annotations

import logging

from ..config import CheckConfig
from ..powerplatform.client import (
    APPS_ENDPOINT,
    ENVIRONMENTS_ENDPOINT,
    FLOWS_ENDPOINT,
    PowerPlatformClient,
)
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.power_platform")


def summarize_environment(env: dict) -> dict:
    props = env.get("properties", {}) or {}
    return {
        "name": env.get("name"),
        "displayName": props.get("displayName"),
        "environmentSku": props.get("environmentSku"),
        "isDefault": bool(props.get("isDefault")),
        "location": env.get("location"),
        "createdTime": props.get("createdTime"),
        "createdBy": (props.get("createdBy", {}) or {}).get("displayName"),
    }


def summarize_flow(flow: dict, environment: str) -> dict:
    props = flow.get("properties", {}) or {}
    creator = props.get("creator", {}) or {}
    return {
        "name": flow.get("name"),
        "environment": environment,
        "displayName": props.get("displayName"),
        "state": props.get("state"),  # Started, Stopped, Suspended
        "createdTime": props.get("createdTime"),
        "lastModifiedTime": props.get("lastModifiedTime"),
        "creatorObjectId": creator.get("objectId") or creator.get("userId"),
    }


def summarize_app(app: dict, environment: str) -> dict:
    props = app.get("properties", {}) or {}
    owner = props.get("owner", {}) or {}
    return {
        "name": app.get("name"),
        "environment": environment,
        "displayName": props.get("displayName"),
        "appType": props.get("appType"),
        "owner": owner.get("displayName"),
        "ownerEmail": owner.get("email"),
        "createdTime": props.get("createdTime"),
        "lastModifiedTime": props.get("lastModifiedTime"),
    }


class PowerPlatformCollector(BaseCollector):
    name = "power_platform"
    description = "Power Platform environments, flows and apps"

    def __init__(self, clients: dict[str, PowerPlatformClient], config: CheckConfig):
        super().__init__(graph=clients["bap"], config=config)
        self.clients = clients

    async def collect(self, result: CollectorResult):
        environments = await self.safe_get_all(
            ENVIRONMENTS_ENDPOINT,
            result,
            params={"$expand": "properties"},
        )
        envs = [summarize_environment(e) for e in environments]
        result.add_data("environments", envs)

        flows: list[dict] = []
        apps: list[dict] = []
        # Sequential per environment; each environment is one or two pages
        for env in envs:
            env_name = env["name"]
            if not env_name:
                continue
            if "flow" in self.clients:
                raw_flows = await self.safe_get_all(
                    FLOWS_ENDPOINT.format(env=env_name),
                    result,
                    client=self.clients["flow"],
                )
                flows.extend(summarize_flow(f, env_name) for f in raw_flows)
            if "powerapps" in self.clients:
                raw_apps = await self.safe_get_all(
                    APPS_ENDPOINT.format(env=env_name),
                    result,
                    client=self.clients["powerapps"],
                )
                apps.extend(summarize_app(a, env_name) for a in raw_apps)

        result.add_data("flows", flows)
        result.add_data("apps", apps)
