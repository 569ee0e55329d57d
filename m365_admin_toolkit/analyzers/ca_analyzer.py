"""
Conditional Access Analyzer
Checks: security defaults vs CA, MFA coverage for users and admins,
legacy authentication blocking, risk-based policies, unenforced policies.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..reporting.models import Status
from .base import BaseAnalyzer

logger = logging.getLogger("m365_admin_toolkit.analyzers.ca")

GLOBAL_ADMIN_ROLE_ID = "62e90394-69f5-4237-9190-012177145e10"

ENABLED = "enabled"
REPORT_ONLY = "enabledForReportingButNotEnforced"


class ConditionalAccessAnalyzer(BaseAnalyzer):
    name = "ca_analyzer"
    category = "Conditional Access"
    description = "Conditional Access best practices"

    def _analyze(self, data: dict[str, Any]):
        ca_data = data.get("conditional_access")
        if ca_data is None:
            return
        policies = ca_data.get("ca_policies", []) or []
        security_defaults = ca_data.get("security_defaults", {}) or {}

        if not policies and self.permission_gap(ca_data, "conditionalAccess/policies"):
            # A data gap, not a real "no policies" result
            self.add_result(
                "Conditional Access policies readable",
                Status.WARNING,
                "Graph returned 403 for CA policies; grant Policy.Read.All and re-run",
            )
            return

        sd_enabled = security_defaults.get("isEnabled")
        enforced = [p for p in policies if p.get("state") == ENABLED]

        if not enforced:
            if sd_enabled:
                self.add_result(
                    "Baseline protection",
                    Status.PASS,
                    "Security defaults are enabled and no CA policies are enforced",
                )
            else:
                self.add_result(
                    "Baseline protection",
                    Status.FAIL,
                    "No enforced Conditional Access policies and security defaults are disabled",
                    data={"policy_count": len(policies)},
                )
            if not policies:
                return
        elif sd_enabled:
            self.add_result(
                "Baseline protection",
                Status.WARNING,
                "Security defaults are enabled alongside Conditional Access policies",
                data={"enforced_policies": len(enforced)},
            )
        else:
            self.add_result(
                "Baseline protection",
                Status.PASS,
                f"{len(enforced)} Conditional Access policies enforced",
            )

        self._check_mfa_all_users(policies)
        self._check_mfa_admins(policies)
        self._check_coverage(
            policies,
            "Legacy authentication blocked",
            lambda p: p.get("hasLegacyClientBlock"),
            missing_status=Status.FAIL,
            missing_details="No policy blocks Exchange ActiveSync / other legacy clients",
        )
        self._check_coverage(
            policies,
            "Sign-in risk policy",
            lambda p: p.get("usesSignInRisk") and (p.get("requiresMFA") or p.get("blocksAccess")),
            missing_status=Status.WARNING,
            missing_details="No policy acts on sign-in risk (requires Entra ID P2)",
        )
        self._check_coverage(
            policies,
            "User risk policy",
            lambda p: p.get("usesUserRisk"),
            missing_status=Status.WARNING,
            missing_details="No policy acts on user risk (requires Entra ID P2)",
        )
        self._check_unenforced(policies)

    # --- helpers ---

    @staticmethod
    def _best_state(policies: list, predicate: Callable[[dict], Any]) -> tuple[Optional[str], list[str]]:
        """Strongest state among matching policies, plus their names."""
        matching = [p for p in policies if predicate(p)]
        names = [p.get("displayName") for p in matching]
        states = {p.get("state") for p in matching}
        if ENABLED in states:
            return ENABLED, names
        if REPORT_ONLY in states:
            return REPORT_ONLY, names
        return None, names

    def _check_coverage(
        self,
        policies: list,
        test_name: str,
        predicate: Callable[[dict], Any],
        missing_status: Status,
        missing_details: str,
    ):
        state, names = self._best_state(policies, predicate)
        if state == ENABLED:
            self.add_result(test_name, Status.PASS, f"Enforced by: {', '.join(names)}")
        elif state == REPORT_ONLY:
            self.add_result(
                test_name,
                Status.WARNING,
                f"Only in report-only mode: {', '.join(names)}",
            )
        else:
            self.add_result(test_name, missing_status, missing_details)

    def _check_mfa_all_users(self, policies: list):
        self._check_coverage(
            policies,
            "MFA required for all users",
            lambda p: p.get("targetsAllUsers") and p.get("targetsAllApps") and p.get("requiresMFA"),
            missing_status=Status.FAIL,
            missing_details="No policy requires MFA for all users on all cloud apps",
        )

    def _check_mfa_admins(self, policies: list):
        def covers_admins(p: dict) -> bool:
            if not p.get("requiresMFA"):
                return False
            if p.get("targetsAllUsers"):
                return True
            return GLOBAL_ADMIN_ROLE_ID in (p.get("includeRoles") or [])

        self._check_coverage(
            policies,
            "MFA required for administrators",
            covers_admins,
            missing_status=Status.FAIL,
            missing_details="No policy requires MFA for the Global Administrator role",
        )

    def _check_unenforced(self, policies: list):
        disabled = [p.get("displayName") for p in policies if p.get("state") == "disabled"]
        report_only = [p.get("displayName") for p in policies if p.get("state") == REPORT_ONLY]
        if disabled or report_only:
            self.add_result(
                "Unenforced policies",
                Status.WARNING,
                f"{len(report_only)} report-only, {len(disabled)} disabled",
                data={"report_only": report_only, "disabled": disabled},
            )
        else:
            self.add_result("Unenforced policies", Status.PASS, "All policies are enforced")
