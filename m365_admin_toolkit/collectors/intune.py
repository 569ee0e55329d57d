"""
Intune / Endpoint Management Collector
Enumerates: managed devices, compliance policies, configuration profiles,
mobile apps with their assignments.
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.intune")

DEVICE_SELECT = (
    "id,deviceName,managedDeviceOwnerType,operatingSystem,osVersion,"
    "complianceState,isEncrypted,lastSyncDateTime,enrolledDateTime,"
    "model,manufacturer,serialNumber,userDisplayName,userPrincipalName,"
    "managementState"
)


def summarize_device(device: dict) -> dict:
    return {
        "id": device.get("id"),
        "deviceName": device.get("deviceName"),
        "ownerType": device.get("managedDeviceOwnerType"),
        "os": device.get("operatingSystem"),
        "osVersion": device.get("osVersion"),
        "complianceState": device.get("complianceState"),
        "isEncrypted": device.get("isEncrypted"),
        "lastSyncDateTime": device.get("lastSyncDateTime"),
        "enrolledDateTime": device.get("enrolledDateTime"),
        "model": device.get("model"),
        "manufacturer": device.get("manufacturer"),
        "serialNumber": device.get("serialNumber"),
        "userDisplayName": device.get("userDisplayName"),
        "userPrincipalName": device.get("userPrincipalName"),
        "managementState": device.get("managementState"),
    }


def summarize_assignment(a: dict) -> dict:
    target = a.get("target", {}) or {}
    return {
        "id": a.get("id"),
        "intent": a.get("intent"),
        "targetType": target.get("@odata.type", "").split(".")[-1],
        "groupId": target.get("groupId"),
    }


def summarize_mobile_app(a: dict) -> dict:
    return {
        "id": a.get("id"),
        "displayName": a.get("displayName"),
        "type": a.get("@odata.type", "").split(".")[-1],
        "publisher": a.get("publisher"),
        "createdDateTime": a.get("createdDateTime"),
        "lastModifiedDateTime": a.get("lastModifiedDateTime"),
        "isAssigned": a.get("isAssigned", bool(a.get("assignments"))),
        "assignments": [summarize_assignment(x) for x in a.get("assignments", []) or []],
    }


class IntuneCollector(BaseCollector):
    name = "intune"
    description = "Intune devices, compliance policies, configuration profiles, apps"

    async def collect(self, result: CollectorResult):
        sections = ("managed_devices", "compliance_policies", "configuration_profiles", "mobile_apps")
        gather_results = await asyncio.gather(
            self._collect_managed_devices(result),
            self._collect_compliance_policies(result),
            self._collect_configuration_profiles(result),
            self._collect_mobile_apps(result),
            return_exceptions=True,
        )
        for name, res in zip(sections, gather_results):
            if isinstance(res, Exception):
                result.add_warning(f"Sub-collection {name} failed: {type(res).__name__}: {res}")

    async def _collect_managed_devices(self, result: CollectorResult):
        devices = await self.safe_get_all(
            "deviceManagement/managedDevices",
            result,
            params={"$select": DEVICE_SELECT},
        )
        result.add_data("managed_devices", [summarize_device(d) for d in devices])

    async def _collect_compliance_policies(self, result: CollectorResult):
        policies = await self.safe_get_all(
            "deviceManagement/deviceCompliancePolicies",
            result,
            params={"$expand": "assignments"},
        )
        result.add_data("compliance_policies", [
            {
                "id": p.get("id"),
                "displayName": p.get("displayName"),
                "type": p.get("@odata.type", "").split(".")[-1],
                "lastModifiedDateTime": p.get("lastModifiedDateTime"),
                "assignmentCount": len(p.get("assignments", []) or []),
                "isAssigned": bool(p.get("assignments")),
            }
            for p in policies
        ])

    async def _collect_configuration_profiles(self, result: CollectorResult):
        profiles = await self.safe_get_all(
            "deviceManagement/deviceConfigurations",
            result,
            params={"$expand": "assignments"},
        )
        result.add_data("configuration_profiles", [
            {
                "id": p.get("id"),
                "displayName": p.get("displayName"),
                "type": p.get("@odata.type", "").split(".")[-1],
                "assignmentCount": len(p.get("assignments", []) or []),
            }
            for p in profiles
        ])

    async def _collect_mobile_apps(self, result: CollectorResult):
        apps = await self.safe_get_all(
            "deviceAppManagement/mobileApps",
            result,
            params={"$expand": "assignments"},
        )
        result.add_data("mobile_apps", [summarize_mobile_app(a) for a in apps])
