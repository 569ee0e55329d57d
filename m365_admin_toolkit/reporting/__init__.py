"""Reporting package — result model and CSV / HTML / Excel output."""

from .models import Status, TestResult, ResultSet
from .rows import flatten_record, normalize_rows
from .csv_export import write_rows, export_results
from .html_report import export_html
from .excel_export import csv_to_excel

__all__ = [
    "Status",
    "TestResult",
    "ResultSet",
    "flatten_record",
    "normalize_rows",
    "write_rows",
    "export_results",
    "export_html",
    "csv_to_excel",
]
