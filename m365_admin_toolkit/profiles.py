"""
Tenant Profile Manager — Named profiles for multi-tenant administration.

Profiles are stored in:
    ~/.m365_admin_toolkit/profiles.json

Each profile records how to connect to one tenant: the tenant and client
IDs, the auth mode, and where the certificate or credentials file lives.
Admins switch between tenants via `--profile <name>`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("m365_admin_toolkit.profiles")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CONFIG_DIR = Path.home() / ".m365_admin_toolkit"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class TenantProfile:
    """A single named tenant profile."""
    name: str                          # Unique short name (e.g. "contoso-prod")
    tenant_id: str                     # Entra tenant ID
    client_id: str                     # App registration client ID
    auth_mode: str = "certificate"     # certificate, secret or delegated
    cert_path: str = "./base64.txt"    # Base64-encoded PFX (certificate mode)
    credentials_file: str = ""         # KEY=VALUE file (secret mode)
    tenant_display_name: str = ""      # Friendly name shown in reports
    teams_webhook_url: str = ""        # Default webhook for expiry alerts

    def resolve_path(self, value: str) -> str:
        """Return an absolute path, resolving ~ and relative paths."""
        p = Path(value).expanduser()
        if not p.is_absolute():
            p = Path.cwd() / p
        return str(p)

    def resolve_cert_path(self) -> str:
        return self.resolve_path(self.cert_path)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "auth_mode": self.auth_mode,
            "cert_path": self.cert_path,
            "credentials_file": self.credentials_file,
            "tenant_display_name": self.tenant_display_name,
            "teams_webhook_url": self.teams_webhook_url,
        }


@dataclass
class ProfileStore:
    """Manages the collection of tenant profiles on disk."""
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""

    # --- Persistence ---

    @classmethod
    def load(cls) -> "ProfileStore":
        """Load profiles from disk. Returns an empty store if the file doesn't exist."""
        if not _PROFILES_FILE.exists():
            return cls()
        try:
            data = json.loads(_PROFILES_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse {_PROFILES_FILE}: {e}")
            return cls()

        store = cls(default_profile=data.get("default_profile", ""))
        for name, pdata in data.get("profiles", {}).items():
            try:
                store.profiles[name] = TenantProfile(
                    name=name,
                    tenant_id=pdata["tenant_id"],
                    client_id=pdata["client_id"],
                    auth_mode=pdata.get("auth_mode", "certificate"),
                    cert_path=pdata.get("cert_path", "./base64.txt"),
                    credentials_file=pdata.get("credentials_file", ""),
                    tenant_display_name=pdata.get("tenant_display_name", ""),
                    teams_webhook_url=pdata.get("teams_webhook_url", ""),
                )
            except KeyError as e:
                logger.warning(f"Skipping profile '{name}': missing {e}")
        return store

    def save(self) -> None:
        """Persist profiles to disk."""
        _PROFILES_FILE.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        _PROFILES_FILE.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    # --- CRUD ---

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        """Add or overwrite a profile."""
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        """Remove a profile by name. Returns True if it existed."""
        if name not in self.profiles:
            return False
        del self.profiles[name]
        if self.default_profile == name:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        """Get a profile by name (case-insensitive)."""
        key = name.lower()
        for pname, profile in self.profiles.items():
            if pname.lower() == key:
                return profile
        return None

    def get_default(self) -> Optional[TenantProfile]:
        if self.default_profile:
            return self.profiles.get(self.default_profile)
        if self.profiles:
            return next(iter(self.profiles.values()))
        return None

    def set_default(self, name: str) -> bool:
        """Set the default profile. Returns True if the profile exists."""
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(profile_name: Optional[str] = None) -> Optional[TenantProfile]:
    """
    Look up a tenant profile by name.
    If no name is given, returns the default profile (or None).
    """
    store = ProfileStore.load()
    if profile_name:
        return store.get(profile_name)
    return store.get_default()
