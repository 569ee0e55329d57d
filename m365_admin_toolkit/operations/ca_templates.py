"""
Conditional Access templates — built-in baseline policies and their
provisioning. Policies are created in report-only mode unless another
state is requested, and templates whose display name already exists are
skipped.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..graph.client import ApiClient, GraphAPIError
from ..config import OperationsConfig
from .base import FAILED, SKIPPED, OperationSummary, WriteThrottle, outcome_for

logger = logging.getLogger("m365_admin_toolkit.operations.ca_templates")

CA_POLICIES_ENDPOINT = "identity/conditionalAccess/policies"

POLICY_STATES = ("enabledForReportingButNotEnforced", "enabled", "disabled")
DEFAULT_STATE = "enabledForReportingButNotEnforced"

AZURE_MANAGEMENT_APP_ID = "797f4846-ba00-4fd7-ba43-dac1f8f63013"

# Directory role template IDs
ADMIN_ROLE_IDS = [
    "62e90394-69f5-4237-9190-012177145e10",  # Global Administrator
    "e8611ab8-c189-46e8-94e1-60213ab1f814",  # Privileged Role Administrator
    "7be44c8a-adaf-4e2a-84d6-ab2649e08a13",  # Privileged Authentication Administrator
    "194ae4cb-b126-40b2-bd5b-6091b380977d",  # Security Administrator
    "b1be1c3e-b65d-4f19-8427-f6fa0d97feb9",  # Conditional Access Administrator
    "29232cdf-9323-42fd-ade2-1d097af3e4de",  # Exchange Administrator
    "f28a1f50-f6e7-4571-818b-6a12f2af6b6c",  # SharePoint Administrator
    "3a2c62db-5318-420d-8d74-23affee5d9d5",  # Intune Administrator
    "fe930be7-5e62-47db-91af-98c3a49a38b1",  # User Administrator
    "729827e3-9c14-49f7-bb1b-9608f156bbb8",  # Helpdesk Administrator
    "966707d0-3269-4727-9be2-8c3a10f19b9d",  # Password Administrator
    "c4e39bd9-1100-46d3-8c65-fb160da0071f",  # Authentication Administrator
    "9b895d92-2cd3-44c7-9d02-a6ac2d5ea5c3",  # Application Administrator
    "158c047a-c907-4556-b7ef-446551a6b5f7",  # Cloud Application Administrator
    "b0f54661-2d74-4c50-afa3-1ec803f12efe",  # Billing Administrator
]


@dataclass(frozen=True)
class PolicyTemplate:
    key: str
    display_name: str
    description: str
    conditions: dict
    grant_controls: dict
    session_controls: Optional[dict] = None


def _users(include_users=None, include_roles=None) -> dict:
    return {
        "includeUsers": include_users or [],
        "excludeUsers": [],
        "includeGroups": [],
        "excludeGroups": [],
        "includeRoles": include_roles or [],
        "excludeRoles": [],
    }


def _grant(*controls: str, operator: str = "OR") -> dict:
    return {"operator": operator, "builtInControls": list(controls)}


TEMPLATES: dict[str, PolicyTemplate] = {t.key: t for t in [
    PolicyTemplate(
        key="mfa-admins",
        display_name="Require MFA for administrators",
        description="Administrative roles must complete MFA for every cloud app.",
        conditions={
            "users": _users(include_roles=ADMIN_ROLE_IDS),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["all"],
        },
        grant_controls=_grant("mfa"),
    ),
    PolicyTemplate(
        key="mfa-all-users",
        display_name="Require MFA for all users",
        description="Every user must complete MFA for every cloud app.",
        conditions={
            "users": _users(include_users=["All"]),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["all"],
        },
        grant_controls=_grant("mfa"),
    ),
    PolicyTemplate(
        key="block-legacy-auth",
        display_name="Block legacy authentication",
        description="Blocks Exchange ActiveSync and other legacy protocols that cannot do MFA.",
        conditions={
            "users": _users(include_users=["All"]),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["exchangeActiveSync", "other"],
        },
        grant_controls=_grant("block"),
    ),
    PolicyTemplate(
        key="mfa-azure-management",
        display_name="Require MFA for Azure management",
        description="MFA for the Azure portal, CLI and PowerShell.",
        conditions={
            "users": _users(include_users=["All"]),
            "applications": {"includeApplications": [AZURE_MANAGEMENT_APP_ID]},
            "clientAppTypes": ["all"],
        },
        grant_controls=_grant("mfa"),
    ),
    PolicyTemplate(
        key="block-high-sign-in-risk",
        display_name="Block high sign-in risk",
        description="Sign-ins Identity Protection rates high risk are blocked. Requires Entra ID P2.",
        conditions={
            "users": _users(include_users=["All"]),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["all"],
            "signInRiskLevels": ["high"],
        },
        grant_controls=_grant("block"),
    ),
    PolicyTemplate(
        key="password-change-high-risk",
        display_name="Require password change for high-risk users",
        description="High user risk requires MFA plus a secure password change. Requires Entra ID P2.",
        conditions={
            "users": _users(include_users=["All"]),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["all"],
            "userRiskLevels": ["high"],
        },
        grant_controls=_grant("mfa", "passwordChange", operator="AND"),
        session_controls={"signInFrequency": {"isEnabled": True, "frequencyInterval": "everyTime"}},
    ),
    PolicyTemplate(
        key="compliant-device-admins",
        display_name="Require compliant or hybrid joined device for administrators",
        description="Administrative roles may only sign in from managed devices.",
        conditions={
            "users": _users(include_roles=ADMIN_ROLE_IDS),
            "applications": {"includeApplications": ["All"]},
            "clientAppTypes": ["all"],
        },
        grant_controls=_grant("compliantDevice", "domainJoinedDevice"),
    ),
]}


def get_templates(keys: Optional[Iterable[str]] = None) -> list[PolicyTemplate]:
    """Return templates by key (all when keys is empty). Unknown keys raise KeyError."""
    if not keys:
        return list(TEMPLATES.values())
    unknown = [k for k in keys if k not in TEMPLATES]
    if unknown:
        raise KeyError(f"Unknown template(s): {', '.join(unknown)}")
    return [TEMPLATES[k] for k in keys]


def build_policy_body(
    template: PolicyTemplate,
    state: str = DEFAULT_STATE,
    exclude_users: Iterable[str] = (),
    exclude_groups: Iterable[str] = (),
    name_prefix: str = "",
) -> dict:
    """Build the Graph conditionalAccessPolicy body for a template."""
    if state not in POLICY_STATES:
        raise ValueError(f"Invalid policy state: {state}")

    conditions = copy.deepcopy(template.conditions)
    users = conditions["users"]
    users["excludeUsers"] = sorted(set(users.get("excludeUsers", [])) | set(exclude_users))
    users["excludeGroups"] = sorted(set(users.get("excludeGroups", [])) | set(exclude_groups))

    body = {
        "displayName": f"{name_prefix}{template.display_name}",
        "state": state,
        "conditions": conditions,
        "grantControls": copy.deepcopy(template.grant_controls),
    }
    if template.session_controls:
        body["sessionControls"] = copy.deepcopy(template.session_controls)
    return body


async def deploy_templates(
    graph: ApiClient,
    templates: list[PolicyTemplate],
    config: OperationsConfig,
    state: str = DEFAULT_STATE,
    exclude_users: Iterable[str] = (),
    exclude_groups: Iterable[str] = (),
    name_prefix: str = "",
) -> OperationSummary:
    """Create a policy for each template not already present by display name."""
    summary = OperationSummary("ca-deploy")
    throttle = WriteThrottle(config)

    existing = await graph.get_all_pages(CA_POLICIES_ENDPOINT, skip_top=True)
    existing_names = {(p.get("displayName") or "").strip().lower() for p in existing}

    for template in templates:
        body = build_policy_body(template, state, exclude_users, exclude_groups, name_prefix)
        name = body["displayName"]
        if name.strip().lower() in existing_names:
            summary.record(SKIPPED, name, "A policy with this name already exists")
            continue
        try:
            response = await graph.post(CA_POLICIES_ENDPOINT, body)
        except GraphAPIError as e:
            summary.record(FAILED, name, str(e))
            continue
        outcome = outcome_for(response)
        summary.record(outcome, name, f"state={state}", id=response.get("id", ""))
        existing_names.add(name.strip().lower())
        await throttle.tick(outcome)

    return summary
