"""
Expiration classifier shared by the token, certificate and secret checks.

    days_left <  0                  -> expired      (Fail)
    0 <= days_left <= threshold     -> near_expiry  (Warning)
    days_left >  threshold          -> healthy      (Pass)

The near-expiry boundary is inclusive. `now` is always passed in.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .reporting.models import Status

_FRACTION_RE = re.compile(r"\.(\d+)")


class ExpirationStatus(str, Enum):
    EXPIRED = "expired"
    NEAR_EXPIRY = "near_expiry"
    HEALTHY = "healthy"

    @property
    def result_status(self) -> Status:
        return _RESULT_STATUS[self]


_RESULT_STATUS = {
    ExpirationStatus.EXPIRED: Status.FAIL,
    ExpirationStatus.NEAR_EXPIRY: Status.WARNING,
    ExpirationStatus.HEALTHY: Status.PASS,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Graph / Power Platform timestamp ("2025-03-01T10:00:00.1234567Z").
    Returns None for empty or unparsable values.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most 6 fractional digits
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def days_left(expiration: datetime, now: datetime) -> int:
    """Whole days from now until expiration (floored, negative once past)."""
    delta = _as_utc(expiration) - _as_utc(now)
    return math.floor(delta.total_seconds() / 86400)


def classify_expiration(
    expiration: datetime,
    threshold_days: int,
    now: datetime,
) -> ExpirationStatus:
    remaining = days_left(expiration, now)
    if remaining < 0:
        return ExpirationStatus.EXPIRED
    if remaining <= threshold_days:
        return ExpirationStatus.NEAR_EXPIRY
    return ExpirationStatus.HEALTHY


def describe_expiration(expiration: datetime, now: datetime) -> str:
    """Human-readable summary used in result details."""
    remaining = days_left(expiration, now)
    date_str = _as_utc(expiration).strftime("%Y-%m-%d")
    if remaining < 0:
        return f"Expired {-remaining} day(s) ago ({date_str})"
    if remaining == 0:
        return f"Expires today ({date_str})"
    return f"Expires in {remaining} day(s) ({date_str})"
