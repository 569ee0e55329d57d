"""
Excel exporter — converts CSV exports into .xlsx workbooks.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd
from openpyxl.utils import get_column_letter

logger = logging.getLogger("m365_admin_toolkit.reporting.excel")

MAX_COLUMN_WIDTH = 60


def csv_to_excel(
    csv_path: str | Path,
    xlsx_path: Optional[str | Path] = None,
    sheet_name: str = "Export",
) -> Path:
    """
    Convert a CSV file into an Excel workbook with a frozen, filterable
    header row. Defaults to the CSV path with an .xlsx suffix.

    Raises:
        ValueError: The CSV has no header row.
    """
    csv_path = Path(csv_path)
    target = Path(xlsx_path) if xlsx_path else csv_path.with_suffix(".xlsx")

    # Keep every value as text so IDs and serial numbers aren't reformatted
    try:
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        raise ValueError(f"{csv_path} has no header row to convert") from None

    with pd.ExcelWriter(target, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name[:31])
        ws = writer.sheets[sheet_name[:31]]
        ws.freeze_panes = "A2"
        if len(df.columns):
            ws.auto_filter.ref = ws.dimensions
        for idx, column in enumerate(df.columns, start=1):
            longest = max([len(str(column))] + [len(v) for v in df[column].tolist()])
            ws.column_dimensions[get_column_letter(idx)].width = min(longest + 2, MAX_COLUMN_WIDTH)

    logger.info(f"Converted {csv_path} -> {target} ({len(df)} rows)")
    return target
