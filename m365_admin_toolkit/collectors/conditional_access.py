"""
Conditional Access Policy Collector
Enumerates: CA policies, named locations, security defaults.
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.conditional_access")

CA_POLICIES_ENDPOINT = "identity/conditionalAccess/policies"


def summarize_policy(p: dict) -> dict:
    """Project a raw CA policy onto the fields and flags the checks use."""
    # `or {}` handles JSON nulls (key present but None)
    conditions = p.get("conditions", {}) or {}
    grant_controls = p.get("grantControls", {}) or {}
    users_cond = conditions.get("users", {}) or {}
    apps_cond = conditions.get("applications", {}) or {}

    include_users = users_cond.get("includeUsers", []) or []
    include_roles = users_cond.get("includeRoles", []) or []
    include_apps = apps_cond.get("includeApplications", []) or []
    client_app_types = conditions.get("clientAppTypes", []) or []
    built_in = grant_controls.get("builtInControls", []) or []
    sign_in_risk = conditions.get("signInRiskLevels", []) or []
    user_risk = conditions.get("userRiskLevels", []) or []

    return {
        "id": p.get("id"),
        "displayName": p.get("displayName"),
        "state": p.get("state"),  # enabled, disabled, enabledForReportingButNotEnforced
        "createdDateTime": p.get("createdDateTime"),
        "modifiedDateTime": p.get("modifiedDateTime"),
        "includeUsers": include_users,
        "excludeUsers": users_cond.get("excludeUsers", []) or [],
        "includeGroups": users_cond.get("includeGroups", []) or [],
        "excludeGroups": users_cond.get("excludeGroups", []) or [],
        "includeRoles": include_roles,
        "includeApplications": include_apps,
        "clientAppTypes": client_app_types,
        "signInRiskLevels": sign_in_risk,
        "userRiskLevels": user_risk,
        "grantBuiltInControls": built_in,
        "authenticationStrength": grant_controls.get("authenticationStrength", {}) or {},

        "targetsAllUsers": "All" in include_users,
        "targetsRoles": bool(include_roles),
        "targetsAllApps": "All" in include_apps,
        "requiresMFA": "mfa" in built_in or bool(grant_controls.get("authenticationStrength")),
        "blocksAccess": "block" in built_in,
        "requiresCompliantDevice": "compliantDevice" in built_in,
        "requiresPasswordChange": "passwordChange" in built_in,
        "hasLegacyClientBlock": "block" in built_in and (
            "exchangeActiveSync" in client_app_types or "other" in client_app_types
        ),
        "usesSignInRisk": bool(sign_in_risk),
        "usesUserRisk": bool(user_risk),
    }


class ConditionalAccessCollector(BaseCollector):
    name = "conditional_access"
    description = "Conditional Access policies, named locations, security defaults"

    async def collect(self, result: CollectorResult):
        gather_results = await asyncio.gather(
            self._collect_ca_policies(result),
            self._collect_named_locations(result),
            self._collect_security_defaults(result),
            return_exceptions=True,
        )
        for name, res in zip(("ca_policies", "named_locations", "security_defaults"), gather_results):
            if isinstance(res, Exception):
                result.add_warning(f"Sub-collection {name} failed: {type(res).__name__}: {res}")

    async def _collect_ca_policies(self, result: CollectorResult):
        policies = await self.safe_get_all(CA_POLICIES_ENDPOINT, result, skip_top=True)
        result.add_data("ca_policies", [summarize_policy(p) for p in policies])

    async def _collect_named_locations(self, result: CollectorResult):
        locations = await self.safe_get_all(
            "identity/conditionalAccess/namedLocations",
            result,
            skip_top=True,
        )
        result.add_data("named_locations", [
            {
                "id": loc.get("id"),
                "displayName": loc.get("displayName"),
                "type": loc.get("@odata.type", "").split(".")[-1],
                "isTrusted": loc.get("isTrusted", False),
            }
            for loc in locations
        ])

    async def _collect_security_defaults(self, result: CollectorResult):
        data = await self.safe_get(
            "policies/identitySecurityDefaultsEnforcementPolicy",
            result,
        )
        if data.get("_forbidden"):
            result.add_data("security_defaults", {"_inaccessible": True})
        else:
            result.add_data("security_defaults", {"isEnabled": data.get("isEnabled", False)})
