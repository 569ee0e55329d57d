"""
Inventory exports — enumerate one kind of tenant object, flatten it to
export rows and write CSV (optionally .xlsx).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .collectors.conditional_access import CA_POLICIES_ENDPOINT, summarize_policy
from .collectors.intune import DEVICE_SELECT, summarize_device, summarize_mobile_app
from .collectors.power_platform import summarize_app, summarize_environment, summarize_flow
from .graph.client import ApiClient
from .powerplatform.client import PowerPlatformClient
from .reporting.csv_export import write_rows
from .reporting.excel_export import csv_to_excel
from .reporting.rows import flatten_record

logger = logging.getLogger("m365_admin_toolkit.inventory")

# Kind -> API surfaces that need a token
INVENTORY_KINDS: dict[str, tuple[str, ...]] = {
    "devices": ("graph",),
    "apps": ("graph",),
    "ca-policies": ("graph",),
    "environments": ("bap",),
    "flows": ("bap", "flow"),
    "powerapps": ("bap", "powerapps"),
}

# Columns dropped from CA policy rows (raw lists already summarised as flags)
_CA_SKIP = {"authenticationStrength"}


def _app_record(raw: dict) -> dict:
    app = summarize_mobile_app(raw)
    assignments = app.pop("assignments")
    app["assignmentCount"] = len(assignments)
    app["assignedGroups"] = [a["groupId"] for a in assignments if a.get("groupId")]
    return app


def _policy_record(raw: dict) -> dict:
    return {k: v for k, v in summarize_policy(raw).items() if k not in _CA_SKIP}


async def _environments(bap: PowerPlatformClient) -> list[dict]:
    return [summarize_environment(e) for e in await bap.list_environments()]


def inventory_columns(kind: str) -> list[str]:
    """Header for a kind, written even when the tenant has no objects of it."""
    record = {
        "devices": lambda: summarize_device({}),
        "apps": lambda: _app_record({}),
        "ca-policies": lambda: _policy_record({}),
        "environments": lambda: summarize_environment({}),
        "flows": lambda: summarize_flow({}, ""),
        "powerapps": lambda: summarize_app({}, ""),
    }[kind]()
    return list(flatten_record(record))


async def collect_inventory(
    kind: str,
    graph: Optional[ApiClient] = None,
    pp_clients: Optional[dict[str, PowerPlatformClient]] = None,
) -> list[dict]:
    """Return flattened export rows for one inventory kind."""
    if kind not in INVENTORY_KINDS:
        raise ValueError(f"Unknown inventory kind: {kind}")
    pp_clients = pp_clients or {}

    if kind == "devices":
        raw = await graph.get_all_pages(
            "deviceManagement/managedDevices", params={"$select": DEVICE_SELECT}
        )
        records = [summarize_device(d) for d in raw]
    elif kind == "apps":
        raw = await graph.get_all_pages(
            "deviceAppManagement/mobileApps", params={"$expand": "assignments"}
        )
        records = [_app_record(a) for a in raw]
    elif kind == "ca-policies":
        raw = await graph.get_all_pages(CA_POLICIES_ENDPOINT, skip_top=True)
        records = [_policy_record(p) for p in raw]
    elif kind == "environments":
        records = await _environments(pp_clients["bap"])
    else:
        client = pp_clients["flow" if kind == "flows" else "powerapps"]
        records = []
        for env in await _environments(pp_clients["bap"]):
            name = env["name"]
            if not name:
                continue
            if kind == "flows":
                records.extend(summarize_flow(f, name) for f in await client.list_flows(name))
            else:
                records.extend(summarize_app(a, name) for a in await client.list_apps(name))

    logger.info(f"Inventory {kind}: {len(records)} records")
    return [flatten_record(r) for r in records]


def export_inventory(
    kind: str,
    rows: list[dict],
    output_dir: Path,
    run_id: str,
    excel: bool = False,
) -> list[Path]:
    """Write rows to `<kind>_<run>.csv` and, with excel, a matching .xlsx."""
    csv_path = write_rows(
        rows,
        output_dir / f"{kind.replace('-', '_')}_{run_id}.csv",
        fieldnames=inventory_columns(kind),
    )
    paths = [csv_path]
    if excel:
        paths.append(csv_to_excel(csv_path, sheet_name=kind))
    return paths
