"""
App Credential Collector
Enumerates: app registrations with their client secrets and certificates.
"""

from __future__ import annotations

import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.applications")


class AppCredentialCollector(BaseCollector):
    name = "app_credentials"
    description = "App registration secrets and certificates"

    async def collect(self, result: CollectorResult):
        apps = await self.safe_get_all(
            "applications",
            result,
            params={"$select": "id,appId,displayName,passwordCredentials,keyCredentials"},
        )

        credentials = []
        for app in apps:
            for cred in app.get("passwordCredentials", []) or []:
                credentials.append(self._credential(app, cred, "secret"))
            for cred in app.get("keyCredentials", []) or []:
                credentials.append(self._credential(app, cred, "certificate"))

        result.add_data("applications", [
            {"id": a.get("id"), "appId": a.get("appId"), "displayName": a.get("displayName")}
            for a in apps
        ])
        result.add_data("credentials", credentials)

    @staticmethod
    def _credential(app: dict, cred: dict, kind: str) -> dict:
        return {
            "appObjectId": app.get("id"),
            "appId": app.get("appId"),
            "appDisplayName": app.get("displayName"),
            "type": kind,
            "keyId": cred.get("keyId"),
            "displayName": cred.get("displayName"),
            "startDateTime": cred.get("startDateTime"),
            "endDateTime": cred.get("endDateTime"),
        }
