"""
Base collector class — Abstract interface for all data collectors.
Collectors enumerate tenant resources into plain dicts; errors are
recorded on the result and collection continues.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..graph.client import ApiClient, GraphAPIError
from ..config import CheckConfig

logger = logging.getLogger("m365_admin_toolkit.collectors")


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
            "permission_gaps": [],
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, list):
            self.metadata["items_collected"] += len(value)
        elif isinstance(value, dict):
            self.metadata["items_collected"] += 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    def add_permission_gap(self, endpoint: str, message: str):
        self.metadata["permission_gaps"].append(endpoint)
        self.add_warning(f"Permission denied: {endpoint} — {message}")

    def to_dict(self) -> dict:
        return {"data": self.data, "metadata": self.metadata}


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect(). The base class provides timing,
    metadata, and "log and continue" wrappers around client calls.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: ApiClient, config: CheckConfig):
        self.graph = graph
        self.config = config

    async def execute(self) -> CollectorResult:
        """Execute the collector with timing and error handling."""
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            await self.collect(result)
        except Exception as e:
            result.add_error(f"Collection failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Collection failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """Add data to result via result.add_data(key, value)."""
        raise NotImplementedError

    async def safe_get(
        self,
        endpoint: str,
        result: CollectorResult,
        client: Optional[ApiClient] = None,
        **kwargs,
    ) -> dict:
        """Execute a GET and record errors without raising."""
        client = client or self.graph
        try:
            data = await client.get(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            if data.get("_forbidden"):
                result.add_permission_gap(endpoint, data.get("_error_message", "Forbidden"))
            return data
        except Exception as e:
            result.add_error(f"Failed to query {endpoint}: {e}")
            return {"value": []}

    async def safe_get_all(
        self,
        endpoint: str,
        result: CollectorResult,
        client: Optional[ApiClient] = None,
        **kwargs,
    ) -> list:
        """Get all pages and record errors without raising."""
        client = client or self.graph
        try:
            data = await client.get_all_pages(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            return data
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_permission_gap(endpoint, str(e))
            else:
                result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
        except Exception as e:
            result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
