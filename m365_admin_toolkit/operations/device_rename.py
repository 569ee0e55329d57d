"""
Bulk device rename from a naming template.

Template placeholders: {prefix} {serial} {user} {os} {index}. Generated
names are reduced to letters, digits and hyphens and cut to the
15-character NetBIOS limit.
"""

from __future__ import annotations

import logging
import re
import string
from typing import Optional

from ..collectors.intune import DEVICE_SELECT
from ..config import OperationsConfig
from ..graph.client import ApiClient, GraphAPIError
from .base import FAILED, SKIPPED, OperationSummary, WriteThrottle, outcome_for

logger = logging.getLogger("m365_admin_toolkit.operations.device_rename")

MAX_NAME_LENGTH = 15
PLACEHOLDERS = {"prefix", "serial", "user", "os", "index"}
_INVALID_CHARS = re.compile(r"[^A-Za-z0-9-]")


def validate_template(template: str):
    """Raise ValueError when the template references unknown placeholders."""
    fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    if any(not name or name.isdigit() for name in fields):
        raise ValueError(
            f"Positional fields are not allowed in template '{template}'. "
            f"Use named placeholders: {', '.join(sorted(PLACEHOLDERS))}"
        )
    unknown = fields - PLACEHOLDERS
    if unknown:
        raise ValueError(
            f"Unknown placeholder(s) in template: {', '.join(sorted(unknown))}. "
            f"Allowed: {', '.join(sorted(PLACEHOLDERS))}"
        )


def format_device_name(template: str, device: dict, index: int, prefix: str = "") -> Optional[str]:
    """
    Render a device name. Returns None if the result is empty or purely
    numeric, both of which Windows rejects.
    """
    upn = device.get("userPrincipalName") or ""
    values = {
        "prefix": prefix,
        "serial": device.get("serialNumber") or "",
        "user": upn.split("@")[0],
        "os": (device.get("operatingSystem") or "")[:3].upper(),
        "index": f"{index:03d}",
    }
    name = _INVALID_CHARS.sub("", template.format(**values))[:MAX_NAME_LENGTH].strip("-")
    if not name or name.isdigit():
        return None
    return name


async def rename_devices(
    graph: ApiClient,
    template: str,
    config: OperationsConfig,
    prefix: str = "",
    os_filter: Optional[str] = None,
) -> OperationSummary:
    """Rename every managed device (optionally filtered by OS) from the template."""
    validate_template(template)
    summary = OperationSummary("device-rename")
    throttle = WriteThrottle(config)

    devices = await graph.get_all_pages(
        "deviceManagement/managedDevices", params={"$select": DEVICE_SELECT}
    )
    if os_filter:
        devices = [
            d for d in devices
            if (d.get("operatingSystem") or "").lower() == os_filter.lower()
        ]
    devices.sort(key=lambda d: (d.get("enrolledDateTime") or "", d.get("id") or ""))

    for index, device in enumerate(devices, start=1):
        current = device.get("deviceName") or device.get("id", "")
        new_name = format_device_name(template, device, index, prefix)
        if new_name is None:
            summary.record(SKIPPED, current, "Template produced an invalid name")
            continue
        if new_name.lower() == current.lower():
            summary.record(SKIPPED, current, "Already named")
            continue
        try:
            response = await graph.post(
                f"deviceManagement/managedDevices/{device['id']}/setDeviceName",
                {"deviceName": new_name},
                beta=True,
            )
        except GraphAPIError as e:
            summary.record(FAILED, current, str(e), new_name=new_name)
            continue
        outcome = outcome_for(response)
        summary.record(outcome, current, f"-> {new_name}", new_name=new_name)
        await throttle.tick(outcome)

    return summary
