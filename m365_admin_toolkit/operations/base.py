"""
Shared plumbing for tenant-modifying operations: per-item outcome
tracking and the fixed-interval write throttle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import OperationsConfig

logger = logging.getLogger("m365_admin_toolkit.operations")

APPLIED = "applied"
PLANNED = "planned"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class OperationSummary:
    """Outcome of one bulk operation, one entry per item."""
    operation: str
    items: list[dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: str, target: str, detail: str = "", **extra) -> dict:
        item = {"outcome": outcome, "target": target, "detail": detail, **extra}
        self.items.append(item)
        if outcome == FAILED:
            logger.error(f"[{self.operation}] {target}: {detail}")
        else:
            logger.info(f"[{self.operation}] {outcome}: {target} {detail}".rstrip())
        return item

    def count(self, outcome: str) -> int:
        return sum(1 for i in self.items if i["outcome"] == outcome)

    @property
    def counts(self) -> dict[str, int]:
        return {o: self.count(o) for o in (APPLIED, PLANNED, SKIPPED, FAILED)}

    def to_rows(self) -> list[dict[str, Any]]:
        return [dict(i) for i in self.items]


class WriteThrottle:
    """Sleeps a fixed interval after every N writes. Not adaptive."""

    def __init__(self, config: OperationsConfig):
        self.every = max(config.throttle_every, 0)
        self.seconds = config.throttle_seconds
        self.writes = 0

    async def tick(self, outcome: str = APPLIED):
        """Count one write; dry-run items are not sent and never pause."""
        if outcome != APPLIED:
            return
        self.writes += 1
        if self.every and self.writes % self.every == 0 and self.seconds > 0:
            logger.info(f"Pausing {self.seconds}s after {self.writes} writes")
            await asyncio.sleep(self.seconds)


def outcome_for(response: dict) -> str:
    """Map a client write response to an outcome."""
    return PLANNED if response.get("_dry_run") else APPLIED
