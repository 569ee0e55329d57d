import asyncio
import json
import unittest

import httpx

from m365_admin_toolkit.notify.teams import (
    MAX_FACTS_PER_SECTION,
    THEME_FAIL,
    THEME_PASS,
    THEME_WARNING,
    WebhookError,
    build_message_card,
    post_message_card,
)
from m365_admin_toolkit.reporting.models import Status, TestResult

WEBHOOK = "https://contoso.webhook.office.com/webhookb2/abc"


class TestBuildMessageCard(unittest.TestCase):
    def test_card_shape_and_failing_theme(self):
        card = build_message_card("Expiry", [
            TestResult("Apple Tokens", "VPP token: A", Status.FAIL, "Expired 2 day(s) ago"),
            TestResult("Apple Tokens", "APNs certificate", Status.PASS, "Expires in 90 day(s)"),
            TestResult("App Credentials", "HR: secret", Status.WARNING, "Expires in 3 day(s)"),
        ])
        self.assertEqual(card["@type"], "MessageCard")
        self.assertEqual(card["@context"], "https://schema.org/extensions")
        self.assertEqual(card["themeColor"], THEME_FAIL)
        self.assertEqual(card["title"], "Expiry")
        self.assertTrue(card["summary"])

        self.assertEqual([s["activityTitle"] for s in card["sections"]], ["Apple Tokens", "App Credentials"])
        apple_facts = card["sections"][0]["facts"]
        self.assertEqual(apple_facts, [{"name": "VPP token: A", "value": "Fail: Expired 2 day(s) ago"}])

    def test_include_passing(self):
        card = build_message_card(
            "Expiry",
            [TestResult("Apple Tokens", "APNs certificate", Status.PASS, "ok")],
            include_passing=True,
        )
        self.assertEqual(card["themeColor"], THEME_PASS)
        self.assertEqual(len(card["sections"][0]["facts"]), 1)

    def test_warning_theme_and_summary_text(self):
        card = build_message_card(
            "Expiry",
            [TestResult("Enrollment Tokens", "Android", Status.WARNING, "soon")],
            summary_text="1 warning",
        )
        self.assertEqual(card["themeColor"], THEME_WARNING)
        self.assertEqual(card["summary"], "1 warning")

    def test_facts_are_capped(self):
        results = [
            TestResult("App Credentials", f"app {i}", Status.FAIL, "expired")
            for i in range(MAX_FACTS_PER_SECTION + 5)
        ]
        facts = build_message_card("Expiry", results)["sections"][0]["facts"]
        self.assertEqual(len(facts), MAX_FACTS_PER_SECTION + 1)
        self.assertIn("5 more", facts[-1]["value"])


class TestPostMessageCard(unittest.TestCase):
    def test_posts_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text="1")

        card = {"@type": "MessageCard", "title": "t"}
        asyncio.run(post_message_card(WEBHOOK, card, transport=httpx.MockTransport(handler)))
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(seen["url"], WEBHOOK)
        self.assertEqual(seen["body"], card)

    def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(400, text="Bad payload"))
        with self.assertRaises(WebhookError) as ctx:
            asyncio.run(post_message_card(WEBHOOK, {}, transport=transport))
        self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
