import asyncio
import csv
import tempfile
import unittest
from pathlib import Path

import httpx
from openpyxl import load_workbook

from m365_admin_toolkit.graph.client import GraphClient
from m365_admin_toolkit.inventory import (
    INVENTORY_KINDS,
    collect_inventory,
    export_inventory,
    inventory_columns,
)
from m365_admin_toolkit.powerplatform.client import PowerPlatformClient
from m365_admin_toolkit.safety.guardian import ChangeGuard

MOBILE_APPS = {"value": [
    {
        "id": "a1",
        "@odata.type": "#microsoft.graph.win32LobApp",
        "displayName": "Zoom",
        "publisher": "Zoom",
        "assignments": [
            {"id": "x1", "intent": "required",
             "target": {"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": "G1"}},
            {"id": "x2", "intent": "available",
             "target": {"@odata.type": "#microsoft.graph.allLicensedUsersAssignmentTarget"}},
        ],
    },
    {"id": "a2", "displayName": "Legacy VPN", "assignments": []},
]}

CA_POLICIES = {"value": [{
    "id": "p1",
    "displayName": "Require MFA for all users",
    "state": "enabled",
    "conditions": {
        "users": {"includeUsers": ["All"]},
        "applications": {"includeApplications": ["All"]},
        "clientAppTypes": ["all"],
    },
    "grantControls": {"operator": "OR", "builtInControls": ["mfa"]},
}]}


def graph_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v1.0/deviceManagement/managedDevices":
        return httpx.Response(200, json={"value": [
            {"id": "d1", "deviceName": "CTS-001", "operatingSystem": "Windows", "serialNumber": "SN1"},
        ]})
    if path == "/v1.0/deviceAppManagement/mobileApps":
        return httpx.Response(200, json=MOBILE_APPS)
    if path == "/v1.0/identity/conditionalAccess/policies":
        return httpx.Response(200, json=CA_POLICIES)
    return httpx.Response(404)


def pp_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/scopes/admin/environments"):
        return httpx.Response(200, json={"value": [
            {"name": "Default-1", "properties": {"displayName": "Contoso (default)", "isDefault": True}},
            {"name": "env-2", "properties": {"displayName": "Dev"}},
        ]})
    if path.endswith("/v2/flows"):
        env = path.split("/environments/")[1].split("/")[0]
        return httpx.Response(200, json={"value": [
            {"name": f"{env}-flow", "properties": {"displayName": "Flow", "state": "Started"}},
        ]})
    return httpx.Response(200, json={"value": []})


def collect_graph(kind):
    async def scenario():
        async with GraphClient("t", ChangeGuard(), transport=httpx.MockTransport(graph_handler)) as graph:
            return await collect_inventory(kind, graph=graph)

    return asyncio.run(scenario())


def collect_pp(kind):
    transport = httpx.MockTransport(pp_handler)

    async def scenario():
        guard = ChangeGuard()
        async with PowerPlatformClient("bap", "t", guard, transport=transport) as bap, \
                PowerPlatformClient("flow", "t", guard, transport=transport) as flow:
            return await collect_inventory(kind, pp_clients={"bap": bap, "flow": flow})

    return asyncio.run(scenario())


class TestCollectInventory(unittest.TestCase):
    def test_devices(self):
        rows = collect_graph("devices")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["deviceName"], "CTS-001")
        self.assertEqual(rows[0]["model"], "")

    def test_apps_flatten_assignments(self):
        rows = collect_graph("apps")
        zoom, vpn = rows
        self.assertEqual(zoom["assignmentCount"], 2)
        self.assertEqual(zoom["assignedGroups"], "G1")
        self.assertEqual(zoom["type"], "win32LobApp")
        self.assertNotIn("assignments", zoom)
        self.assertEqual(vpn["assignmentCount"], 0)
        self.assertEqual(vpn["assignedGroups"], "")

    def test_ca_policies_are_scalar(self):
        rows = collect_graph("ca-policies")
        self.assertEqual(rows[0]["displayName"], "Require MFA for all users")
        for value in rows[0].values():
            self.assertNotIsInstance(value, (dict, list))

    def test_flows_span_environments(self):
        rows = collect_pp("flows")
        self.assertEqual([r["name"] for r in rows], ["Default-1-flow", "env-2-flow"])
        self.assertEqual([r["environment"] for r in rows], ["Default-1", "env-2"])

    def test_environments(self):
        rows = collect_pp("environments")
        self.assertEqual([r["isDefault"] for r in rows], [True, False])

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            asyncio.run(collect_inventory("mailboxes"))

    def test_kinds_declare_apis(self):
        self.assertEqual(INVENTORY_KINDS["flows"], ("bap", "flow"))
        self.assertEqual(INVENTORY_KINDS["devices"], ("graph",))


class TestExportInventory(unittest.TestCase):
    def test_csv_and_excel(self):
        rows = [{"id": "d1", "deviceName": "CTS-001"}, {"id": "d2", "serialNumber": "00123"}]
        with tempfile.TemporaryDirectory() as tmp:
            paths = export_inventory("ca-policies", rows, Path(tmp), "20260101T000000Z", excel=True)
            self.assertEqual([p.name for p in paths], [
                "ca_policies_20260101T000000Z.csv",
                "ca_policies_20260101T000000Z.xlsx",
            ])
            with open(paths[0], newline="", encoding="utf-8-sig") as fh:
                reader = csv.DictReader(fh)
                self.assertEqual(reader.fieldnames, ["id", "deviceName", "serialNumber"])
                self.assertEqual(len(list(reader)), 2)
            sheet = load_workbook(paths[1]).active
            self.assertEqual(sheet.title, "ca-policies")
            self.assertEqual(sheet.cell(row=3, column=3).value, "00123")

    def test_csv_only(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = export_inventory("devices", [{"id": "d1"}], Path(tmp), "run")
            self.assertEqual(len(paths), 1)
            self.assertTrue(paths[0].exists())

    def test_empty_export_keeps_header(self):
        for kind in INVENTORY_KINDS:
            with self.subTest(kind=kind), tempfile.TemporaryDirectory() as tmp:
                paths = export_inventory(kind, [], Path(tmp), "run", excel=True)
                with open(paths[0], newline="", encoding="utf-8-sig") as fh:
                    reader = csv.DictReader(fh)
                    self.assertEqual(reader.fieldnames, inventory_columns(kind))
                    self.assertEqual(list(reader), [])
                sheet = load_workbook(paths[1]).active
                self.assertEqual(sheet.max_row, 1)
                self.assertEqual([c.value for c in sheet[1]], inventory_columns(kind))

    def test_inventory_columns(self):
        self.assertIn("serialNumber", inventory_columns("devices"))
        apps = inventory_columns("apps")
        self.assertIn("assignedGroups", apps)
        self.assertNotIn("assignments", apps)
        self.assertNotIn("authenticationStrength", inventory_columns("ca-policies"))
        self.assertEqual(inventory_columns("flows")[:2], ["name", "environment"])


if __name__ == "__main__":
    unittest.main()
