"""
Change Guard — gates every tenant-modifying request.
Runs in dry-run mode by default: writes are recorded as planned changes
and never sent. Destructive device actions are always blocked.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("m365_admin_toolkit.safety")

# ─── HTTP Methods ────────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Read-only POST endpoints (Graph uses POST for some queries)
SAFE_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),
    re.compile(r"/microsoft\.graph\.getByIds$"),
    re.compile(r"/getByIds$"),
]

# Destructive device actions this toolkit never issues
BLOCKED_URL_PATTERNS = [
    re.compile(r"/wipe$", re.IGNORECASE),
    re.compile(r"/retire$", re.IGNORECASE),
    re.compile(r"/cleanWindowsDevice$", re.IGNORECASE),
    re.compile(r"/remoteLock$", re.IGNORECASE),
    re.compile(r"/resetPasscode$", re.IGNORECASE),
    re.compile(r"/shutDown$", re.IGNORECASE),
    re.compile(r"/deleteUserFromSharedAppleDevice$", re.IGNORECASE),
]

# Records this toolkit never deletes
BLOCKED_DELETE_PATTERNS = [
    re.compile(r"/managedDevices/[^/]+$", re.IGNORECASE),
    re.compile(r"/windowsAutopilotDeviceIdentities/[^/]+$", re.IGNORECASE),
]


class SafetyViolation(Exception):
    """Raised when a blocked operation is attempted."""
    pass


class ChangeGuard:
    """
    Validates every outbound request.
    Returns True when a request may be sent, False when it must only be
    recorded (dry-run), and raises SafetyViolation for blocked actions.
    """

    def __init__(self, dry_run: bool = True):
        self.dry_run = dry_run
        self.changes: list[dict] = []
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = _utc_now()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in READ_METHODS:
            return True

        if method_upper == "POST":
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(url):
                    return True

        path = url.split("?", 1)[0]
        blocked = list(BLOCKED_URL_PATTERNS)
        if method_upper == "DELETE":
            blocked.extend(BLOCKED_DELETE_PATTERNS)
        for pattern in blocked:
            if pattern.search(path):
                self._record_violation(method_upper, url, "Blocked destructive action")
                raise SafetyViolation(f"Blocked destructive action: {method_upper} {url}")

        if method_upper not in WRITE_METHODS:
            self._record_violation(method_upper, url, "Unsupported HTTP method")
            raise SafetyViolation(f"Unsupported HTTP method: {method_upper} {url}")

        status = "planned" if self.dry_run else "applied"
        self.changes.append({
            "timestamp": _utc_now(),
            "method": method_upper,
            "url": url,
            "body": body,
            "status": status,
        })
        if self.dry_run:
            logger.info(f"[dry-run] {method_upper} {url}")
            return False
        logger.info(f"{method_upper} {url}")
        return True

    def mark_failed(self, url: str, error: str):
        """Flag the most recent change for url as failed."""
        for change in reversed(self.changes):
            if change["url"] == url:
                change["status"] = "failed"
                change["error"] = error
                return

    def _record_violation(self, method: str, url: str, reason: str):
        self.violations.append({
            "timestamp": _utc_now(),
            "method": method,
            "url": url,
            "reason": reason,
        })
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full change audit record."""
        counts: dict[str, int] = {}
        for change in self.changes:
            counts[change["status"]] = counts.get(change["status"], 0) + 1
        return {
            "change_guard": {
                "mode": "DRY-RUN" if self.dry_run else "APPLY",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "change_counts": counts,
                "changes": self.changes,
                "violations": self.violations,
            }
        }

    def print_banner(self):
        """Print the run-mode banner."""
        print("=" * 75)
        if self.dry_run:
            print("  DRY-RUN -- changes are recorded but NOT sent to the tenant")
            print("  * Re-run with --apply to make the changes")
        else:
            print("  APPLY MODE -- changes WILL be made to the tenant")
            print("  * Every change is recorded in the change audit file")
        print("  * Wipe/retire/delete device actions are always blocked")
        print("=" * 75)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
