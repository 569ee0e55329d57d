"""
Intune app assignment cleanup.
Removes every assignment that targets a given group, or reports apps
that have no assignments at all. Apps themselves are never deleted.
"""

from __future__ import annotations

import logging

from ..config import OperationsConfig
from ..graph.client import ApiClient, GraphAPIError
from .base import FAILED, SKIPPED, OperationSummary, WriteThrottle, outcome_for

logger = logging.getLogger("m365_admin_toolkit.operations.app_cleanup")

MOBILE_APPS_ENDPOINT = "deviceAppManagement/mobileApps"


async def _apps_with_assignments(graph: ApiClient) -> list[dict]:
    return await graph.get_all_pages(MOBILE_APPS_ENDPOINT, params={"$expand": "assignments"})


async def remove_group_assignments(
    graph: ApiClient,
    group_id: str,
    config: OperationsConfig,
) -> OperationSummary:
    """Delete every app assignment whose target is group_id."""
    summary = OperationSummary("app-cleanup")
    throttle = WriteThrottle(config)

    for app in await _apps_with_assignments(graph):
        for assignment in app.get("assignments", []) or []:
            target = assignment.get("target", {}) or {}
            if (target.get("groupId") or "").lower() != group_id.lower():
                continue
            label = f"{app.get('displayName')} [{assignment.get('intent', '')}]"
            try:
                response = await graph.delete(
                    f"{MOBILE_APPS_ENDPOINT}/{app['id']}/assignments/{assignment['id']}"
                )
            except GraphAPIError as e:
                summary.record(FAILED, label, str(e))
                continue
            outcome = outcome_for(response)
            summary.record(outcome, label, f"group {group_id}", app_id=app["id"])
            await throttle.tick(outcome)

    if not summary.items:
        summary.record(SKIPPED, group_id, "No app assignments target this group")
    return summary


async def find_unassigned_apps(graph: ApiClient) -> OperationSummary:
    """Report apps with no assignments. Read-only."""
    summary = OperationSummary("app-unassigned")
    for app in await _apps_with_assignments(graph):
        if app.get("assignments"):
            continue
        summary.record(
            SKIPPED,
            app.get("displayName") or app.get("id", ""),
            "No assignments",
            app_id=app.get("id", ""),
            type=(app.get("@odata.type") or "").split(".")[-1],
            publisher=app.get("publisher") or "",
        )
    return summary
