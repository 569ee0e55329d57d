"""
Configuration module for the M365 Admin Toolkit.
Defines authentication settings, API endpoints, thresholds and operational settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class SecretAuth:
    """Client-secret app-only authentication configuration."""
    tenant_id: str
    client_id: str
    client_secret: str = ""        # Will be prompted if empty

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/.default"
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — certificate, secret or delegated."""
    mode: str = "certificate"  # "certificate", "secret" or "delegated"
    certificate: Optional[CertificateAuth] = None
    secret: Optional[SecretAuth] = None
    delegated: Optional[DelegatedAuth] = None

    @property
    def tenant_id(self) -> str:
        active = {
            "certificate": self.certificate,
            "secret": self.secret,
            "delegated": self.delegated,
        }.get(self.mode)
        return active.tenant_id if active else ""


AUTH_MODES = ("certificate", "secret", "delegated")


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


# ─── Power Platform Admin API Settings ──────────────────────────────────────

BAP_BASE_URL = "https://api.bap.microsoft.com"
FLOW_BASE_URL = "https://api.flow.microsoft.com"
POWERAPPS_BASE_URL = "https://api.powerapps.com"
POWER_PLATFORM_API_VERSION = "2016-11-01"

BAP_SCOPE = "https://api.bap.microsoft.com/.default"
FLOW_SCOPE = "https://service.flow.microsoft.com/.default"
POWERAPPS_SCOPE = "https://service.powerapps.com/.default"


# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests per client
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops


# ─── Check Settings ─────────────────────────────────────────────────────────

@dataclass
class CheckConfig:
    """Thresholds for the expiration monitor and best-practices assessor."""
    expiry_threshold_days: int = 30       # Warn if expiring within N days (inclusive)
    stale_device_days: int = 90           # Days without Intune sync = stale
    noncompliant_warning_ratio: float = 0.10
    noncompliant_fail_ratio: float = 0.25
    flow_sprawl_threshold: int = 200      # Flows in the default environment
    enable_beta_endpoints: bool = True


# ─── Operation Settings ─────────────────────────────────────────────────────

@dataclass
class OperationsConfig:
    """Controls for tenant-modifying operations."""
    dry_run: bool = True                  # Record writes without sending them
    assume_yes: bool = False              # Skip the confirmation prompt
    throttle_every: int = 50              # Pause after every N writes
    throttle_seconds: float = 5.0         # Fixed pause length


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: ["csv", "html"])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "m365_admin_output")

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir)

    def create_directories(self):
        self.run_dir.mkdir(parents=True, exist_ok=True)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolkitConfig:
    """Top-level configuration for the toolkit."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    checks: CheckConfig = field(default_factory=CheckConfig)
    operations: OperationsConfig = field(default_factory=OperationsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    teams_webhook_url: str = ""
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "ToolkitConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "secret" in auth_data:
                s = auth_data["secret"]
                config.auth.secret = SecretAuth(
                    tenant_id=s["tenant_id"],
                    client_id=s["client_id"],
                    client_secret=s.get("client_secret", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for section, target in (
            ("checks", config.checks),
            ("operations", config.operations),
            ("output", config.output),
        ):
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
        config.teams_webhook_url = data.get("teams_webhook_url", "")
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions (per command) ───────────────────────────

REQUIRED_PERMISSIONS = {
    "expiry": {
        "DeviceManagementServiceConfig.Read.All": "Read APNs certificate, DEP and Android enrollment tokens",
        "DeviceManagementApps.Read.All": "Read VPP tokens",
        "Application.Read.All": "Read app registration secrets and certificates",
    },
    "assess": {
        "Policy.Read.All": "Read CA policies and security defaults",
        "DeviceManagementManagedDevices.Read.All": "Read managed device inventory",
        "DeviceManagementConfiguration.Read.All": "Read compliance policies and profiles",
        "DeviceManagementApps.Read.All": "Read mobile apps and assignments",
    },
    "inventory": {
        "DeviceManagementManagedDevices.Read.All": "Export managed devices",
        "DeviceManagementApps.Read.All": "Export mobile apps and assignments",
        "Policy.Read.All": "Export CA policies",
    },
    "ca": {
        "Policy.ReadWrite.ConditionalAccess": "Create Conditional Access policies",
        "Policy.Read.All": "Read existing CA policies",
    },
    "devices": {
        "DeviceManagementManagedDevices.PrivilegedOperations.All": "Rename managed devices",
        "DeviceManagementManagedDevices.Read.All": "Read managed device inventory",
    },
    "autopilot": {
        "DeviceManagementServiceConfig.ReadWrite.All": "Import Autopilot device identities",
    },
    "apps": {
        "DeviceManagementApps.ReadWrite.All": "Remove app assignments",
    },
}
