"""
Credentials file loader — simple KEY=VALUE text files.

Example:
    # app registration used by the expiry monitor
    TENANT_ID=00000000-0000-0000-0000-000000000000
    CLIENT_ID=11111111-1111-1111-1111-111111111111
    CLIENT_SECRET="s3cr3t=="
    TEAMS_WEBHOOK_URL=https://contoso.webhook.office.com/...
"""

from __future__ import annotations

import logging
from pathlib import Path

from .config import CertificateAuth, SecretAuth

logger = logging.getLogger("m365_admin_toolkit.credentials")

KNOWN_KEYS = {
    "TENANT_ID",
    "CLIENT_ID",
    "CLIENT_SECRET",
    "CERT_PATH",
    "CERT_PASSWORD",
    "TEAMS_WEBHOOK_URL",
}


class CredentialsFileError(Exception):
    """Raised when a credentials file cannot be parsed."""
    pass


def parse_credentials(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines. Keys are upper-cased, quotes stripped."""
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise CredentialsFileError(f"Line {lineno}: expected KEY=VALUE")
        key, value = line.split("=", 1)
        key = key.strip().upper()
        value = value.strip()
        if not key:
            raise CredentialsFileError(f"Line {lineno}: empty key")
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        if key not in KNOWN_KEYS:
            logger.debug(f"Ignoring unknown credentials key on line {lineno}: {key}")
        values[key] = value
    return values


def load_credentials_file(path: str | Path) -> dict[str, str]:
    """Read and parse a credentials file from disk."""
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        raise CredentialsFileError(f"Credentials file not found: {p}")
    return parse_credentials(text)


def to_secret_auth(values: dict[str, str]) -> SecretAuth:
    """Build a SecretAuth from parsed credentials."""
    missing = [k for k in ("TENANT_ID", "CLIENT_ID") if not values.get(k)]
    if missing:
        raise CredentialsFileError(f"Missing required keys: {', '.join(missing)}")
    return SecretAuth(
        tenant_id=values["TENANT_ID"],
        client_id=values["CLIENT_ID"],
        client_secret=values.get("CLIENT_SECRET", ""),
    )


def to_certificate_auth(values: dict[str, str]) -> CertificateAuth:
    """Build a CertificateAuth from parsed credentials."""
    missing = [k for k in ("TENANT_ID", "CLIENT_ID") if not values.get(k)]
    if missing:
        raise CredentialsFileError(f"Missing required keys: {', '.join(missing)}")
    return CertificateAuth(
        tenant_id=values["TENANT_ID"],
        client_id=values["CLIENT_ID"],
        certificate_path=values.get("CERT_PATH", "./base64.txt"),
        certificate_password=values.get("CERT_PASSWORD", ""),
    )
