import csv
import re
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from openpyxl import load_workbook

from m365_admin_toolkit.reporting import (
    ResultSet,
    Status,
    TestResult,
    csv_to_excel,
    export_html,
    export_results,
    flatten_record,
    normalize_rows,
    write_rows,
)
from m365_admin_toolkit.reporting.html_report import render_html

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _results():
    return ResultSet([
        TestResult("Apple Tokens", "APNs certificate", Status.PASS, "Expires in 200 day(s)", timestamp=NOW),
        TestResult("Apple Tokens", "VPP token: Contoso", Status.FAIL, "Token state is 'expired'", timestamp=NOW),
        TestResult("App Credentials", "HR app: secret", Status.WARNING, "Expires in 5 day(s)", timestamp=NOW),
        TestResult("App Credentials", "Payroll: certificate", Status.WARNING, "Expires today", timestamp=NOW),
        TestResult("Intune", "Stale devices", "Pass", "All devices synced", timestamp=NOW),
    ])


def _read_csv(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.reader(fh)
        return list(reader)


class TestFlattenRecord(unittest.TestCase):
    def test_nested_dicts_lists_and_annotations(self):
        record = {
            "@odata.type": "#microsoft.graph.windowsMobileMSI",
            "id": "1",
            "owner": {"displayName": "Alice", "id": "u1"},
            "tags": ["a", "b"],
            "assignments": [{"id": "x1"}, {"displayName": "Group A"}],
            "notes": None,
            "settings": {},
        }
        row = flatten_record(record)
        self.assertNotIn("@odata.type", row)
        self.assertEqual(row["owner.displayName"], "Alice")
        self.assertEqual(row["owner.id"], "u1")
        self.assertEqual(row["tags"], "a; b")
        self.assertEqual(row["assignments"], "x1; Group A")
        self.assertEqual(row["notes"], "")
        self.assertEqual(row["settings"], "")

    def test_column_projection(self):
        row = flatten_record({"id": "1", "name": "n", "extra": "x"}, columns=["name", "id"])
        self.assertEqual(list(row), ["name", "id"])

    def test_list_of_unlabelled_dicts_is_counted(self):
        row = flatten_record({"items": [{"value": 1}, {"value": 2}]})
        self.assertEqual(row["items"], "2 item(s)")


class TestNormalizeRows(unittest.TestCase):
    def test_backfills_missing_columns(self):
        headers, aligned = normalize_rows([{"a": 1}, {"b": 2}, {"a": 3, "c": 4}])
        self.assertEqual(headers, ["a", "b", "c"])
        self.assertEqual(aligned[1], {"a": "", "b": 2, "c": ""})
        for row in aligned:
            self.assertEqual(list(row), headers)


class TestCsvExport(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_row_count_matches_input(self):
        rows = [{"id": str(i), "name": f"device-{i}"} for i in range(7)]
        rows[3]["serialNumber"] = "ABC123"
        path = write_rows(rows, self.dir / "devices.csv")
        data = _read_csv(path)
        self.assertEqual(len(data) - 1, len(rows))
        self.assertEqual(data[0], ["id", "name", "serialNumber"])
        self.assertTrue(all(len(r) == 3 for r in data))

    def test_written_with_bom(self):
        path = write_rows([{"a": "b"}], self.dir / "bom.csv")
        self.assertTrue(path.read_bytes().startswith(b"\xef\xbb\xbf"))

    def test_export_results(self):
        path = export_results(_results(), self.dir, "run1")
        self.assertEqual(path.name, "results_run1.csv")
        data = _read_csv(path)
        self.assertEqual(data[0], ["category", "test_name", "status", "details", "timestamp"])
        self.assertEqual(len(data), 6)
        self.assertEqual(data[2][2], "Fail")

    def test_export_results_empty_writes_header(self):
        path = export_results([], self.dir, "run2", name="expiry")
        self.assertEqual(_read_csv(path), [["category", "test_name", "status", "details", "timestamp"]])


class TestResultSet(unittest.TestCase):
    def test_summary_equals_category_sums(self):
        results = _results()
        totals = results.summary()
        per_category = results.category_summary()
        for status in ("Pass", "Fail", "Warning"):
            self.assertEqual(totals[status], sum(c[status] for c in per_category.values()))
        self.assertEqual(totals, {"Fail": 1, "Warning": 2, "Pass": 2})
        self.assertEqual(list(per_category), ["Apple Tokens", "App Credentials", "Intune"])

    def test_status_coerced_from_string(self):
        result = TestResult("Intune", "x", "Warning")
        self.assertIs(result.status, Status.WARNING)

    def test_has_failures(self):
        self.assertTrue(_results().has_failures)
        self.assertFalse(ResultSet([TestResult("A", "b", Status.PASS)]).has_failures)


class TestHtmlReport(unittest.TestCase):
    def test_summary_cards_match_category_tallies(self):
        results = _results()
        content = render_html(results, "Report", "Contoso", "2025-06-01")
        cards = dict(
            (label, int(count))
            for count, label in re.findall(
                r'<div class="card-count"[^>]*>(\d+)</div><div class="card-label">(\w+)</div>', content
            )
        )
        tallies = re.findall(r'<span class="tally">(\d+) Fail &middot; (\d+) Warning &middot; (\d+) Pass</span>', content)
        self.assertEqual(len(tallies), 3)
        self.assertEqual(cards["Fail"], sum(int(t[0]) for t in tallies))
        self.assertEqual(cards["Warning"], sum(int(t[1]) for t in tallies))
        self.assertEqual(cards["Pass"], sum(int(t[2]) for t in tallies))

    def test_values_are_escaped_and_no_scripts(self):
        results = ResultSet([TestResult("<Cat>", "<script>alert(1)</script>", Status.FAIL, "a & b")])
        content = render_html(results, "R", "T&T", "now")
        self.assertNotIn("<script>", content)
        self.assertIn("&lt;script&gt;alert(1)&lt;/script&gt;", content)
        self.assertIn("a &amp; b", content)
        self.assertIn("T&amp;T", content)

    def test_export_html_writes_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = export_html(_results(), Path(tmp), "run1", title="Expiry", tenant_name="Contoso", name="expiry")
            self.assertEqual(path.name, "expiry_run1.html")
            self.assertIn("Contoso", path.read_text(encoding="utf-8"))

    def test_empty_report(self):
        content = render_html(ResultSet(), "R", "T", "now")
        self.assertIn("No checks were run.", content)


class TestExcelExport(unittest.TestCase):
    def test_csv_to_excel_keeps_text_values(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = write_rows(
                [{"serialNumber": "000123", "name": "PC-1"}, {"serialNumber": "", "name": "PC-2"}],
                Path(tmp) / "devices.csv",
            )
            xlsx = csv_to_excel(csv_path, sheet_name="devices")
            self.assertEqual(xlsx, csv_path.with_suffix(".xlsx"))

            wb = load_workbook(xlsx)
            ws = wb["devices"]
            self.assertEqual([c.value for c in ws[1]], ["serialNumber", "name"])
            self.assertEqual(ws["A2"].value, "000123")
            self.assertEqual(ws.max_row, 3)
            self.assertEqual(ws.freeze_panes, "A2")

    def test_csv_without_header_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = write_rows([], Path(tmp) / "empty.csv")
            with self.assertRaises(ValueError):
                csv_to_excel(csv_path)
            self.assertFalse(csv_path.with_suffix(".xlsx").exists())

    def test_empty_rows_use_fallback_header(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = write_rows([], Path(tmp) / "devices.csv", fieldnames=["id", "deviceName"])
            ws = load_workbook(csv_to_excel(csv_path)).active
            self.assertEqual([c.value for c in ws[1]], ["id", "deviceName"])
            self.assertEqual(ws.max_row, 1)


if __name__ == "__main__":
    unittest.main()
