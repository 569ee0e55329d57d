"""
Base analyzer class — Abstract interface for all check modules.
Analyzers receive collected data and produce TestResults.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import CheckConfig
from ..reporting.models import Status, TestResult

logger = logging.getLogger("m365_admin_toolkit.analyzers")


class BaseAnalyzer(ABC):
    """
    Abstract base class for all analyzers.

    `now` is fixed at construction so repeated runs over the same input
    give the same results.
    """

    name: str = "base"
    category: str = "General"
    description: str = "Base analyzer"

    def __init__(self, config: Optional[CheckConfig] = None, now: Optional[datetime] = None):
        self.config = config or CheckConfig()
        self.now = now or datetime.now(timezone.utc)
        self.results: list[TestResult] = []

    def analyze(self, collected_data: dict[str, Any]) -> list[TestResult]:
        """
        Execute analysis and return results.
        A failing analyzer yields a single Fail result instead of raising.
        """
        self.results = []

        try:
            self._analyze(collected_data)
        except Exception as e:
            logger.exception(f"[{self.name}] Analysis failed: {e}")
            self.results.append(TestResult(
                category=self.category,
                test_name=f"{self.name} analysis",
                status=Status.FAIL,
                details=f"Analyzer error: {type(e).__name__}: {e}",
                timestamp=self.now,
            ))

        logger.info(f"[{self.name}] Analysis complete — {len(self.results)} results")
        return self.results

    @abstractmethod
    def _analyze(self, data: dict[str, Any]):
        """Implement analysis logic. Add results via self.add_result()."""
        raise NotImplementedError

    def add_result(
        self,
        test_name: str,
        status: Status,
        details: str = "",
        data: Any = None,
        category: Optional[str] = None,
    ) -> TestResult:
        result = TestResult(
            category=category or self.category,
            test_name=test_name,
            status=status,
            details=details,
            data=data,
            timestamp=self.now,
        )
        self.results.append(result)
        return result

    def permission_gap(self, section: dict, fragment: str) -> bool:
        """True when the collector recorded a 403 for an endpoint containing fragment."""
        gaps = (section.get("_metadata", {}) or {}).get("permission_gaps", [])
        return any(fragment in gap for gap in gaps)
