"""
Power Platform Analyzer
Checks: environments readable, default-environment flow sprawl,
suspended and stopped flows.
"""

from __future__ import annotations

import logging
from typing import Any

from ..reporting.models import Status
from .base import BaseAnalyzer

logger = logging.getLogger("m365_admin_toolkit.analyzers.power_platform")


class PowerPlatformAnalyzer(BaseAnalyzer):
    name = "power_platform_analyzer"
    category = "Power Platform"
    description = "Power Platform environment and flow hygiene"

    def _analyze(self, data: dict[str, Any]):
        pp = data.get("power_platform")
        if pp is None:
            return
        environments = pp.get("environments", []) or []
        flows = pp.get("flows", []) or []

        if not environments:
            self.add_result(
                "Environments",
                Status.WARNING,
                "No environments returned; the account may lack Power Platform admin rights",
            )
            return

        self.add_result(
            "Environments",
            Status.PASS,
            f"{len(environments)} environments",
            data={"environments": [e.get("displayName") for e in environments]},
        )

        default_env = next((e for e in environments if e.get("isDefault")), None)
        if default_env:
            default_flows = [f for f in flows if f.get("environment") == default_env.get("name")]
            limit = self.config.flow_sprawl_threshold
            if len(default_flows) > limit:
                self.add_result(
                    "Default environment flow sprawl",
                    Status.WARNING,
                    f"{len(default_flows)} flows in the default environment (threshold {limit})",
                )
            else:
                self.add_result(
                    "Default environment flow sprawl",
                    Status.PASS,
                    f"{len(default_flows)} flows in the default environment",
                )

        for state in ("suspended", "stopped"):
            label = f"{state.capitalize()} flows"
            matched = [f for f in flows if (f.get("state") or "").lower() == state]
            if matched:
                self.add_result(
                    label,
                    Status.WARNING,
                    f"{len(matched)} flows are {state}",
                    data={"flows": [f"{f.get('displayName')} ({f.get('environment')})" for f in matched]},
                )
            else:
                self.add_result(label, Status.PASS, f"No {state} flows")
