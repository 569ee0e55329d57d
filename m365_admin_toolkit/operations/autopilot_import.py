"""
Windows Autopilot hardware-hash import.
Reads the CSV produced by Get-WindowsAutopilotInfo (Device Serial Number,
Windows Product ID, Hardware Hash, optional Group Tag / Assigned User) and
posts each row as an imported device identity.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import OperationsConfig
from ..graph.client import ApiClient, GraphAPIError
from .base import FAILED, SKIPPED, OperationSummary, WriteThrottle, outcome_for

logger = logging.getLogger("m365_admin_toolkit.operations.autopilot")

IMPORT_ENDPOINT = "deviceManagement/importedWindowsAutopilotDeviceIdentities"

SERIAL_COLUMN = "Device Serial Number"
PRODUCT_ID_COLUMN = "Windows Product ID"
HASH_COLUMN = "Hardware Hash"
GROUP_TAG_COLUMN = "Group Tag"
USER_COLUMN = "Assigned User"
REQUIRED_COLUMNS = [SERIAL_COLUMN, HASH_COLUMN]


@dataclass
class AutopilotDevice:
    serial_number: str
    hardware_hash: str
    product_key: str = ""
    group_tag: str = ""
    assigned_user: str = ""

    def to_body(self) -> dict:
        return {
            "@odata.type": "#microsoft.graph.importedWindowsAutopilotDeviceIdentity",
            "serialNumber": self.serial_number,
            "productKey": self.product_key,
            "hardwareIdentifier": self.hardware_hash,
            "groupTag": self.group_tag,
            "assignedUserPrincipalName": self.assigned_user,
        }


def read_hash_csv(path: Path, group_tag: Optional[str] = None) -> list[AutopilotDevice]:
    """
    Parse a hardware-hash CSV. A group_tag argument overrides the
    per-row Group Tag column. Raises ValueError on missing columns.
    """
    with open(path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        columns = [c.strip() for c in reader.fieldnames or []]
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            raise ValueError(f"{path}: missing column(s): {', '.join(missing)}")

        devices = []
        for row in reader:
            row = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
            if not row.get(SERIAL_COLUMN) and not row.get(HASH_COLUMN):
                continue
            devices.append(AutopilotDevice(
                serial_number=row.get(SERIAL_COLUMN, ""),
                hardware_hash=row.get(HASH_COLUMN, ""),
                product_key=row.get(PRODUCT_ID_COLUMN, ""),
                group_tag=group_tag if group_tag is not None else row.get(GROUP_TAG_COLUMN, ""),
                assigned_user=row.get(USER_COLUMN, ""),
            ))
    logger.info(f"Read {len(devices)} devices from {path}")
    return devices


async def import_devices(
    graph: ApiClient,
    devices: list[AutopilotDevice],
    config: OperationsConfig,
) -> OperationSummary:
    """Post each device; rows without a hash or serial, or duplicate serials, are skipped."""
    summary = OperationSummary("autopilot-import")
    throttle = WriteThrottle(config)
    seen: set[str] = set()

    for device in devices:
        serial = device.serial_number
        if not serial or not device.hardware_hash:
            summary.record(SKIPPED, serial or "(no serial)", "Missing serial number or hardware hash")
            continue
        if serial.lower() in seen:
            summary.record(SKIPPED, serial, "Duplicate serial number in input")
            continue
        seen.add(serial.lower())

        try:
            response = await graph.post(IMPORT_ENDPOINT, device.to_body())
        except GraphAPIError as e:
            summary.record(FAILED, serial, str(e))
            continue
        outcome = outcome_for(response)
        summary.record(
            outcome,
            serial,
            f"groupTag={device.group_tag}" if device.group_tag else "",
            id=response.get("id", ""),
        )
        await throttle.tick(outcome)

    return summary
