"""
Intune / Device Analyzer
Checks: compliance policy coverage, non-compliant device ratio, stale
devices, disk encryption, unassigned apps.
"""

from __future__ import annotations

import logging
from typing import Any

from ..expiration import days_left, parse_graph_datetime
from ..reporting.models import Status
from .base import BaseAnalyzer

logger = logging.getLogger("m365_admin_toolkit.analyzers.intune")

SAMPLE_SIZE = 25


class IntuneAnalyzer(BaseAnalyzer):
    name = "intune_analyzer"
    category = "Intune"
    description = "Intune device and app management best practices"

    def _analyze(self, data: dict[str, Any]):
        intune = data.get("intune")
        if intune is None:
            return
        devices = intune.get("managed_devices", []) or []

        self._check_compliance_policies(intune.get("compliance_policies", []) or [])
        if "managed_devices" not in intune:
            self.add_result(
                "Managed devices",
                Status.WARNING,
                "Managed devices could not be collected; see collector warnings",
            )
        elif not devices:
            self.add_result(
                "Managed devices",
                Status.WARNING,
                "No managed devices returned (Intune may not be licensed or readable)",
            )
        else:
            self._check_compliance_ratio(devices)
            self._check_stale_devices(devices)
            self._check_encryption(devices)
        self._check_unassigned_apps(intune.get("mobile_apps", []) or [])

    def _check_compliance_policies(self, policies: list):
        if not policies:
            self.add_result(
                "Compliance policies defined",
                Status.FAIL,
                "No device compliance policies; device health is never evaluated",
            )
            return
        unassigned = [p.get("displayName") for p in policies if not p.get("isAssigned")]
        if unassigned:
            self.add_result(
                "Compliance policies defined",
                Status.WARNING,
                f"{len(unassigned)} of {len(policies)} compliance policies are not assigned",
                data={"unassigned": unassigned},
            )
        else:
            self.add_result(
                "Compliance policies defined",
                Status.PASS,
                f"{len(policies)} compliance policies, all assigned",
            )

    def _check_compliance_ratio(self, devices: list):
        total = len(devices)
        non_compliant = [d for d in devices if d.get("complianceState") == "noncompliant"]
        ratio = len(non_compliant) / total
        details = f"{len(non_compliant)} of {total} devices non-compliant ({ratio:.0%})"
        sample = [d.get("deviceName") for d in non_compliant[:SAMPLE_SIZE]]

        if ratio >= self.config.noncompliant_fail_ratio:
            status = Status.FAIL
        elif ratio >= self.config.noncompliant_warning_ratio:
            status = Status.WARNING
        else:
            status = Status.PASS
        self.add_result("Device compliance", status, details, data={"sample": sample} if sample else None)

    def _check_stale_devices(self, devices: list):
        limit = self.config.stale_device_days
        stale = []
        for d in devices:
            last_sync = parse_graph_datetime(d.get("lastSyncDateTime"))
            if last_sync is None:
                continue
            if -days_left(last_sync, self.now) > limit:
                stale.append(d.get("deviceName"))
        if stale:
            self.add_result(
                "Stale devices",
                Status.WARNING,
                f"{len(stale)} devices have not synced in over {limit} days",
                data={"sample": stale[:SAMPLE_SIZE]},
            )
        else:
            self.add_result("Stale devices", Status.PASS, f"All devices synced within {limit} days")

    def _check_encryption(self, devices: list):
        not_encrypted = [d.get("deviceName") for d in devices if d.get("isEncrypted") is False]
        if not_encrypted:
            self.add_result(
                "Disk encryption",
                Status.WARNING,
                f"{len(not_encrypted)} of {len(devices)} devices report no disk encryption",
                data={"sample": not_encrypted[:SAMPLE_SIZE]},
            )
        else:
            self.add_result("Disk encryption", Status.PASS, "No unencrypted devices reported")

    def _check_unassigned_apps(self, apps: list):
        if not apps:
            return
        unassigned = [a.get("displayName") for a in apps if not a.get("isAssigned")]
        if unassigned:
            self.add_result(
                "App assignments",
                Status.WARNING,
                f"{len(unassigned)} of {len(apps)} apps have no assignments (cleanup candidates)",
                data={"sample": unassigned[:SAMPLE_SIZE]},
            )
        else:
            self.add_result("App assignments", Status.PASS, f"All {len(apps)} apps are assigned")
