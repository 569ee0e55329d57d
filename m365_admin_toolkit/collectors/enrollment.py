"""
Enrollment Token Collector
Enumerates: Android Enterprise dedicated / fully managed enrollment profiles
and their token expirations.
"""

from __future__ import annotations

import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.enrollment")


class EnrollmentCollector(BaseCollector):
    name = "enrollment"
    description = "Android Enterprise enrollment profile tokens"

    async def collect(self, result: CollectorResult):
        if not self.config.enable_beta_endpoints:
            result.add_data("android_enrollment_profiles", [])
            return

        profiles = await self.safe_get_all(
            "deviceManagement/androidDeviceOwnerEnrollmentProfiles",
            result,
            beta=True,
        )
        result.add_data("android_enrollment_profiles", [
            {
                "id": p.get("id"),
                "displayName": p.get("displayName"),
                "enrollmentMode": p.get("enrollmentMode"),
                "enrollmentTokenType": p.get("enrollmentTokenType"),
                "tokenExpirationDateTime": p.get("tokenExpirationDateTime"),
                "hasToken": bool(p.get("tokenValue")),
                "enrolledDeviceCount": p.get("enrolledDeviceCount"),
                "lastModifiedDateTime": p.get("lastModifiedDateTime"),
            }
            for p in profiles
        ])
