"""
Apple Token Collector
Enumerates: APNs certificate, DEP (Automated Device Enrollment) tokens, VPP tokens.
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.apple")


class AppleTokenCollector(BaseCollector):
    name = "apple_tokens"
    description = "Apple push certificate, DEP enrollment tokens, VPP tokens"

    async def collect(self, result: CollectorResult):
        gather_results = await asyncio.gather(
            self._collect_apns_certificate(result),
            self._collect_dep_tokens(result),
            self._collect_vpp_tokens(result),
            return_exceptions=True,
        )
        for name, res in zip(("apns_certificate", "dep_tokens", "vpp_tokens"), gather_results):
            if isinstance(res, Exception):
                result.add_warning(f"Sub-collection {name} failed: {type(res).__name__}: {res}")

    async def _collect_apns_certificate(self, result: CollectorResult):
        """The tenant has at most one APNs certificate."""
        data = await self.safe_get("deviceManagement/applePushNotificationCertificate", result)
        if data.get("_not_found") or data.get("_forbidden") or not data.get("expirationDateTime"):
            result.add_data("apns_certificate", {})
            return
        result.add_data("apns_certificate", {
            "id": data.get("id"),
            "appleIdentifier": data.get("appleIdentifier"),
            "topicIdentifier": data.get("topicIdentifier"),
            "expirationDateTime": data.get("expirationDateTime"),
            "lastModifiedDateTime": data.get("lastModifiedDateTime"),
            "certificateSerialNumber": data.get("certificateSerialNumber"),
        })

    async def _collect_dep_tokens(self, result: CollectorResult):
        # depOnboardingSettings is only exposed on beta
        if not self.config.enable_beta_endpoints:
            result.add_data("dep_tokens", [])
            return
        tokens = await self.safe_get_all(
            "deviceManagement/depOnboardingSettings",
            result,
            beta=True,
            skip_top=True,
        )
        result.add_data("dep_tokens", [
            {
                "id": t.get("id"),
                "tokenName": t.get("tokenName"),
                "appleIdentifier": t.get("appleIdentifier"),
                "tokenType": t.get("tokenType"),
                "tokenExpirationDateTime": t.get("tokenExpirationDateTime"),
                "lastSuccessfulSyncDateTime": t.get("lastSuccessfulSyncDateTime"),
                "lastSyncErrorCode": t.get("lastSyncErrorCode"),
                "syncedDeviceCount": t.get("syncedDeviceCount"),
            }
            for t in tokens
        ])

    async def _collect_vpp_tokens(self, result: CollectorResult):
        tokens = await self.safe_get_all(
            "deviceAppManagement/vppTokens",
            result,
            skip_top=True,
        )
        result.add_data("vpp_tokens", [
            {
                "id": t.get("id"),
                "organizationName": t.get("organizationName"),
                "appleId": t.get("appleId"),
                "displayName": t.get("displayName"),
                "expirationDateTime": t.get("expirationDateTime"),
                "state": t.get("state"),
                "lastSyncStatus": t.get("lastSyncStatus"),
                "lastSyncDateTime": t.get("lastSyncDateTime"),
            }
            for t in tokens
        ])
