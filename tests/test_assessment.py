import asyncio
import unittest
from unittest.mock import patch
from datetime import datetime, timedelta, timezone

import httpx

from m365_admin_toolkit.analyzers import (
    ConditionalAccessAnalyzer,
    ExpirationAnalyzer,
    IntuneAnalyzer,
    PowerPlatformAnalyzer,
)
from m365_admin_toolkit.analyzers.base import BaseAnalyzer
from m365_admin_toolkit.collectors import (
    AppCredentialCollector,
    AppleTokenCollector,
    EnrollmentCollector,
    IntuneCollector,
    PowerPlatformCollector,
)
from m365_admin_toolkit.collectors.conditional_access import summarize_policy
from m365_admin_toolkit.config import CheckConfig
from m365_admin_toolkit.graph.client import GraphClient
from m365_admin_toolkit.operations.ca_templates import build_policy_body, get_templates
from m365_admin_toolkit.powerplatform.client import PowerPlatformClient
from m365_admin_toolkit.reporting.models import Status
from m365_admin_toolkit.safety.guardian import ChangeGuard

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def iso(days: float) -> str:
    return (NOW + timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%S.0000000Z")


def by_name(results):
    return {r.test_name: r for r in results}


GRAPH_FIXTURES = {
    "/v1.0/deviceManagement/applePushNotificationCertificate": {
        "id": "apns", "appleIdentifier": "mdm@contoso.com", "expirationDateTime": iso(20),
    },
    "/beta/deviceManagement/depOnboardingSettings": {"value": [
        {"id": "dep1", "tokenName": "Contoso ADE", "tokenExpirationDateTime": iso(-2), "lastSyncErrorCode": 4},
    ]},
    "/v1.0/deviceAppManagement/vppTokens": {"value": [
        {"id": "vpp1", "displayName": "Store", "expirationDateTime": iso(300), "state": "valid"},
        {"id": "vpp2", "displayName": "Old store", "expirationDateTime": iso(300), "state": "expired"},
    ]},
    "/beta/deviceManagement/androidDeviceOwnerEnrollmentProfiles": {"value": [
        {"id": "a1", "displayName": "Kiosk", "tokenValue": "tok", "tokenExpirationDateTime": iso(45)},
        {"id": "a2", "displayName": "Revoked", "tokenValue": None, "tokenExpirationDateTime": None},
    ]},
    "/v1.0/applications": {"value": [
        {
            "id": "o1", "appId": "app1", "displayName": "HR Portal",
            "passwordCredentials": [{"keyId": "k1", "displayName": "prod", "endDateTime": iso(30)}],
            "keyCredentials": [{"keyId": "k2", "displayName": "cert", "endDateTime": iso(400)}],
        },
    ]},
}


def graph_handler(request: httpx.Request) -> httpx.Response:
    body = GRAPH_FIXTURES.get(request.url.path)
    if body is None:
        return httpx.Response(404)
    return httpx.Response(200, json=body)


async def collect_expiry(config):
    async with GraphClient("t", ChangeGuard(), transport=httpx.MockTransport(graph_handler)) as graph:
        results = await asyncio.gather(*(
            cls(graph=graph, config=config).execute()
            for cls in (AppleTokenCollector, EnrollmentCollector, AppCredentialCollector)
        ))
    return {r.collector_name: {**r.data, "_metadata": r.metadata} for r in results}


class TestExpiryPipeline(unittest.TestCase):
    def setUp(self):
        self.config = CheckConfig()
        self.data = asyncio.run(collect_expiry(self.config))

    def test_collected_shape(self):
        apple = self.data["apple_tokens"]
        self.assertEqual(apple["apns_certificate"]["appleIdentifier"], "mdm@contoso.com")
        self.assertEqual(len(apple["dep_tokens"]), 1)
        self.assertEqual(len(apple["vpp_tokens"]), 2)
        profiles = self.data["enrollment"]["android_enrollment_profiles"]
        self.assertEqual([p["hasToken"] for p in profiles], [True, False])
        creds = self.data["app_credentials"]["credentials"]
        self.assertEqual([c["type"] for c in creds], ["secret", "certificate"])

    def test_classification(self):
        results = by_name(ExpirationAnalyzer(self.config, now=NOW).analyze(self.data))
        self.assertEqual(results["APNs certificate: mdm@contoso.com"].status, Status.WARNING)
        dep = results["DEP token: Contoso ADE"]
        self.assertEqual(dep.status, Status.FAIL)
        self.assertIn("last sync error code 4", dep.details)
        self.assertEqual(results["VPP token: Store"].status, Status.PASS)
        self.assertEqual(results["VPP token: Old store"].status, Status.FAIL)
        self.assertEqual(results["Android enrollment profile: Kiosk"].status, Status.PASS)
        self.assertEqual(results["Android enrollment profile: Revoked"].status, Status.WARNING)
        self.assertEqual(results["HR Portal: secret prod"].status, Status.WARNING)
        self.assertEqual(results["HR Portal: certificate cert"].status, Status.PASS)
        self.assertEqual(results["HR Portal: secret prod"].category, "App Credentials")

    def test_threshold_override(self):
        config = CheckConfig(expiry_threshold_days=10)
        results = by_name(ExpirationAnalyzer(config, now=NOW).analyze(self.data))
        self.assertEqual(results["APNs certificate: mdm@contoso.com"].status, Status.PASS)
        self.assertEqual(results["HR Portal: secret prod"].status, Status.PASS)

    def test_repeatable(self):
        first = [(r.test_name, r.status, r.details) for r in ExpirationAnalyzer(now=NOW).analyze(self.data)]
        second = [(r.test_name, r.status, r.details) for r in ExpirationAnalyzer(now=NOW).analyze(self.data)]
        self.assertEqual(first, second)

    def test_missing_apns_and_bad_dates(self):
        data = {"apple_tokens": {
            "apns_certificate": {},
            "dep_tokens": [{"tokenName": "x", "tokenExpirationDateTime": "garbage"}],
            "vpp_tokens": [],
            "_metadata": {"permission_gaps": []},
        }}
        results = by_name(ExpirationAnalyzer(now=NOW).analyze(data))
        self.assertEqual(results["APNs certificate"].status, Status.WARNING)
        self.assertIn("No APNs certificate", results["APNs certificate"].details)
        self.assertEqual(results["DEP token: x"].details, "No expiration date reported")

    def test_apns_permission_gap(self):
        data = {"apple_tokens": {
            "apns_certificate": {},
            "_metadata": {"permission_gaps": ["deviceManagement/applePushNotificationCertificate"]},
        }}
        results = by_name(ExpirationAnalyzer(now=NOW).analyze(data))
        self.assertIn("permission denied", results["APNs certificate"].details)


class TestCollectorErrors(unittest.TestCase):
    def test_403_is_recorded_as_permission_gap(self):
        handler = lambda request: httpx.Response(403, json={"error": {"message": "denied"}})

        async def scenario():
            async with GraphClient("t", ChangeGuard(), transport=httpx.MockTransport(handler)) as graph:
                return await AppCredentialCollector(graph=graph, config=CheckConfig()).execute()

        result = asyncio.run(scenario())
        self.assertEqual(result.data["credentials"], [])
        self.assertIn("applications", result.metadata["permission_gaps"])
        self.assertEqual(result.metadata["errors"], [])

    def test_server_error_is_recorded_and_collection_continues(self):
        handler = lambda request: httpx.Response(500, text="boom")

        async def scenario():
            async with GraphClient("t", ChangeGuard(), transport=httpx.MockTransport(handler)) as graph:
                return await EnrollmentCollector(graph=graph, config=CheckConfig()).execute()

        result = asyncio.run(scenario())
        self.assertEqual(result.data["android_enrollment_profiles"], [])
        self.assertEqual(len(result.metadata["errors"]), 1)

    @patch.object(IntuneCollector, "_collect_managed_devices", side_effect=RuntimeError("boom"))
    def test_failed_sub_collection_is_a_warning(self, _):
        handler = lambda request: httpx.Response(200, json={"value": []})

        async def scenario():
            async with GraphClient("t", ChangeGuard(), transport=httpx.MockTransport(handler)) as graph:
                return await IntuneCollector(graph=graph, config=CheckConfig()).execute()

        result = asyncio.run(scenario())
        self.assertNotIn("managed_devices", result.data)
        self.assertEqual(result.data["mobile_apps"], [])
        self.assertEqual(len(result.metadata["warnings"]), 1)
        self.assertIn("managed_devices", result.metadata["warnings"][0])

        data = {"intune": {**result.data, "_metadata": result.metadata}}
        results = by_name(IntuneAnalyzer(now=NOW).analyze(data))
        self.assertIn("could not be collected", results["Managed devices"].details)


class TestConditionalAccessAnalyzer(unittest.TestCase):
    def _analyze(self, policies, security_defaults=False):
        data = {"conditional_access": {
            "ca_policies": policies,
            "security_defaults": {"isEnabled": security_defaults},
            "_metadata": {"permission_gaps": []},
        }}
        return by_name(ConditionalAccessAnalyzer(now=NOW).analyze(data))

    def test_all_templates_enforced_pass(self):
        policies = [
            summarize_policy({**build_policy_body(t, state="enabled"), "id": t.key})
            for t in get_templates()
        ]
        results = self._analyze(policies)
        failing = {name: r.details for name, r in results.items() if r.status != Status.PASS}
        self.assertEqual(failing, {})

    def test_report_only_templates_warn(self):
        policies = [summarize_policy(build_policy_body(t)) for t in get_templates()]
        results = self._analyze(policies)
        self.assertEqual(results["Baseline protection"].status, Status.FAIL)
        self.assertEqual(results["MFA required for all users"].status, Status.WARNING)
        self.assertEqual(results["Unenforced policies"].status, Status.WARNING)

    def test_no_policies_no_defaults(self):
        results = self._analyze([])
        self.assertEqual(results["Baseline protection"].status, Status.FAIL)
        self.assertEqual(len(results), 1)

    def test_security_defaults_only(self):
        results = self._analyze([], security_defaults=True)
        self.assertEqual(results["Baseline protection"].status, Status.PASS)

    def test_legacy_auth_missing_fails(self):
        mfa = get_templates(["mfa-all-users"])[0]
        results = self._analyze([summarize_policy(build_policy_body(mfa, state="enabled"))])
        self.assertEqual(results["MFA required for all users"].status, Status.PASS)
        self.assertEqual(results["MFA required for administrators"].status, Status.PASS)
        self.assertEqual(results["Legacy authentication blocked"].status, Status.FAIL)
        self.assertEqual(results["Sign-in risk policy"].status, Status.WARNING)

    def test_permission_gap(self):
        data = {"conditional_access": {
            "ca_policies": [],
            "security_defaults": {"_inaccessible": True},
            "_metadata": {"permission_gaps": ["identity/conditionalAccess/policies"]},
        }}
        results = ConditionalAccessAnalyzer(now=NOW).analyze(data)
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].status, Status.WARNING)


class TestIntuneAnalyzer(unittest.TestCase):
    def test_checks(self):
        devices = [
            {"deviceName": f"PC-{i}", "complianceState": "compliant", "isEncrypted": True,
             "lastSyncDateTime": iso(-1)}
            for i in range(8)
        ]
        devices.append({"deviceName": "OLD", "complianceState": "noncompliant", "isEncrypted": False,
                        "lastSyncDateTime": iso(-120)})
        devices.append({"deviceName": "NEW", "complianceState": "noncompliant", "isEncrypted": True,
                        "lastSyncDateTime": None})
        data = {"intune": {
            "managed_devices": devices,
            "compliance_policies": [{"displayName": "Win", "isAssigned": True}],
            "mobile_apps": [{"displayName": "Teams", "isAssigned": True}, {"displayName": "Old", "isAssigned": False}],
        }}
        results = by_name(IntuneAnalyzer(now=NOW).analyze(data))
        self.assertEqual(results["Compliance policies defined"].status, Status.PASS)
        self.assertEqual(results["Device compliance"].status, Status.WARNING)  # 20%
        self.assertEqual(results["Stale devices"].status, Status.WARNING)
        self.assertEqual(results["Stale devices"].data, {"sample": ["OLD"]})
        self.assertEqual(results["Disk encryption"].status, Status.WARNING)
        self.assertEqual(results["App assignments"].status, Status.WARNING)

    def test_no_compliance_policies_fails(self):
        results = by_name(IntuneAnalyzer(now=NOW).analyze({"intune": {"managed_devices": []}}))
        self.assertEqual(results["Compliance policies defined"].status, Status.FAIL)
        self.assertEqual(results["Managed devices"].status, Status.WARNING)


class TestPowerPlatform(unittest.TestCase):
    def test_collect_and_analyze(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/scopes/admin/environments"):
                return httpx.Response(200, json={"value": [
                    {"name": "Default-1", "location": "europe",
                     "properties": {"displayName": "Contoso (default)", "isDefault": True}},
                    {"name": "env-2", "properties": {"displayName": "Dev", "isDefault": False}},
                ]})
            if path.endswith("/Default-1/v2/flows"):
                return httpx.Response(200, json={"value": [
                    {"name": f"f{i}", "properties": {"displayName": f"Flow {i}", "state": "Started"}}
                    for i in range(3)
                ] + [{"name": "fs", "properties": {"displayName": "Broken", "state": "Suspended"}}]})
            if path.endswith("/apps"):
                return httpx.Response(200, json={"value": [
                    {"name": "a1", "properties": {"displayName": "Expenses", "owner": {"displayName": "Bob"}}},
                ]})
            return httpx.Response(200, json={"value": []})

        async def scenario():
            transport = httpx.MockTransport(handler)
            clients = {
                api: PowerPlatformClient(api, "t", ChangeGuard(), transport=transport)
                for api in ("bap", "flow", "powerapps")
            }
            for c in clients.values():
                await c.__aenter__()
            try:
                return await PowerPlatformCollector(clients, CheckConfig(flow_sprawl_threshold=2)).execute()
            finally:
                for c in clients.values():
                    await c.__aexit__(None, None, None)

        result = asyncio.run(scenario())
        self.assertEqual(len(result.data["environments"]), 2)
        self.assertEqual(len(result.data["flows"]), 4)
        self.assertEqual(len(result.data["apps"]), 2)
        self.assertEqual(result.data["apps"][0]["owner"], "Bob")

        data = {"power_platform": {**result.data, "_metadata": result.metadata}}
        config = CheckConfig(flow_sprawl_threshold=2)
        results = by_name(PowerPlatformAnalyzer(config, now=NOW).analyze(data))
        self.assertEqual(results["Environments"].status, Status.PASS)
        self.assertEqual(results["Default environment flow sprawl"].status, Status.WARNING)
        self.assertEqual(results["Suspended flows"].status, Status.WARNING)
        self.assertEqual(results["Stopped flows"].status, Status.PASS)

    def test_stopped_flows_warn(self):
        data = {"power_platform": {
            "environments": [{"name": "Default-1", "displayName": "Contoso", "isDefault": True}],
            "flows": [
                {"name": "f1", "displayName": "Nightly sync", "state": "Stopped", "environment": "Default-1"},
                {"name": "f2", "displayName": "Intake", "state": "Started", "environment": "Default-1"},
            ],
        }}
        results = by_name(PowerPlatformAnalyzer(CheckConfig(), now=NOW).analyze(data))
        self.assertEqual(results["Stopped flows"].status, Status.WARNING)
        self.assertEqual(results["Stopped flows"].data["flows"], ["Nightly sync (Default-1)"])
        self.assertEqual(results["Suspended flows"].status, Status.PASS)


class TestBaseAnalyzer(unittest.TestCase):
    def test_exception_becomes_single_fail(self):
        class Broken(BaseAnalyzer):
            name = "broken"
            category = "Broken"

            def _analyze(self, data):
                self.add_result("first", Status.PASS)
                raise KeyError("boom")

        results = Broken(now=NOW).analyze({})
        self.assertEqual(results[-1].status, Status.FAIL)
        self.assertIn("KeyError", results[-1].details)
        self.assertEqual(results[-1].category, "Broken")


if __name__ == "__main__":
    unittest.main()
