"""
CSV exporter — flat rows for inventory exports and check results.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from .models import TestResult
from .rows import normalize_rows

logger = logging.getLogger("m365_admin_toolkit.reporting.csv")

RESULT_FIELDS = ["category", "test_name", "status", "details", "timestamp"]


def write_rows(
    rows: list[dict[str, Any]],
    path: Path,
    fieldnames: Optional[list[str]] = None,
) -> Path:
    """
    Write rows to CSV with a single, consistent header set.
    Columns missing from some rows are back-filled with empty strings.
    `fieldnames` is the header written when there are no rows.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    headers, aligned = normalize_rows(rows)
    if not headers:
        headers = list(fieldnames or [])

    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=headers)
        writer.writeheader()
        writer.writerows(aligned)

    logger.info(f"Wrote {len(aligned)} rows to {path}")
    return path


def export_results(results: Iterable[TestResult], output_dir: Path, run_id: str, name: str = "results") -> Path:
    """Write check results as one row per TestResult."""
    rows = [
        {
            "category": r.category,
            "test_name": r.test_name,
            "status": r.status.value,
            "details": r.details,
            "timestamp": r.timestamp.isoformat(),
        }
        for r in results
    ]
    return write_rows(rows, output_dir / f"{name}_{run_id}.csv", fieldnames=RESULT_FIELDS)
