"""
Result data model — check outcomes consumed by the CSV/HTML renderers
and the Teams notifier.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Iterator


class Status(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    WARNING = "Warning"


STATUS_ORDER = [Status.FAIL, Status.WARNING, Status.PASS]


@dataclass
class TestResult:
    """A single check outcome."""
    __test__ = False  # not a pytest test class

    category: str                        # e.g. "Apple Tokens", "Conditional Access"
    test_name: str                       # e.g. "VPP token: contoso@apple"
    status: Status
    details: str = ""
    data: Any = None                     # Optional nested evidence
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.status = Status(self.status)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "test_name": self.test_name,
            "status": self.status.value,
            "details": self.details,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class ResultSet:
    """Ordered collection of TestResults with per-status summaries."""

    def __init__(self, results: Iterable[TestResult] = ()):
        self._results: list[TestResult] = list(results)

    def add(self, result: TestResult) -> TestResult:
        self._results.append(result)
        return result

    def extend(self, results: Iterable[TestResult]):
        self._results.extend(results)

    def __iter__(self) -> Iterator[TestResult]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> list[TestResult]:
        return list(self._results)

    def by_category(self) -> "OrderedDict[str, list[TestResult]]":
        """Group results by category, keeping first-seen category order."""
        groups: OrderedDict[str, list[TestResult]] = OrderedDict()
        for r in self._results:
            groups.setdefault(r.category, []).append(r)
        return groups

    def category_summary(self) -> "OrderedDict[str, dict[str, int]]":
        summary: OrderedDict[str, dict[str, int]] = OrderedDict()
        for category, results in self.by_category().items():
            counts = {s.value: 0 for s in STATUS_ORDER}
            for r in results:
                counts[r.status.value] += 1
            summary[category] = counts
        return summary

    def summary(self) -> dict[str, int]:
        """Totals per status across every category."""
        totals = {s.value: 0 for s in STATUS_ORDER}
        for counts in self.category_summary().values():
            for status, n in counts.items():
                totals[status] += n
        return totals

    def with_status(self, *statuses: Status) -> list[TestResult]:
        return [r for r in self._results if r.status in statuses]

    @property
    def has_failures(self) -> bool:
        return any(r.status == Status.FAIL for r in self._results)
