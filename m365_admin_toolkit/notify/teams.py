"""
Teams incoming-webhook notifier — posts a MessageCard summarising check results.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx

from ..reporting.models import ResultSet, Status, TestResult

logger = logging.getLogger("m365_admin_toolkit.notify.teams")

THEME_FAIL = "DC2626"
THEME_WARNING = "D97706"
THEME_PASS = "16A34A"

MAX_FACTS_PER_SECTION = 50


class WebhookError(Exception):
    """Raised when the webhook endpoint rejects the message."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Webhook returned {status_code}: {message}")


def build_message_card(
    title: str,
    results: ResultSet | Iterable[TestResult],
    summary_text: str = "",
    include_passing: bool = False,
) -> dict:
    """
    Build a MessageCard payload: one section per category, one fact per result.
    Passing results are left out unless include_passing is set.
    """
    if not isinstance(results, ResultSet):
        results = ResultSet(results)

    totals = results.summary()
    if totals[Status.FAIL.value]:
        theme = THEME_FAIL
    elif totals[Status.WARNING.value]:
        theme = THEME_WARNING
    else:
        theme = THEME_PASS

    sections = []
    for category, items in results.by_category().items():
        shown = [r for r in items if include_passing or r.status != Status.PASS]
        if not shown:
            continue
        facts = [
            {"name": r.test_name, "value": f"{r.status.value}: {r.details}"}
            for r in shown[:MAX_FACTS_PER_SECTION]
        ]
        if len(shown) > MAX_FACTS_PER_SECTION:
            facts.append({
                "name": "…",
                "value": f"{len(shown) - MAX_FACTS_PER_SECTION} more result(s) in the report",
            })
        sections.append({"activityTitle": category, "facts": facts})

    counts = ", ".join(f"{n} {status}" for status, n in totals.items())
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "themeColor": theme,
        "summary": summary_text or f"{title}: {counts}",
        "title": title,
        "text": summary_text or counts,
        "sections": sections,
    }


async def post_message_card(
    webhook_url: str,
    card: dict,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """POST the card to a Teams incoming webhook."""
    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0), transport=transport) as client:
        response = await client.post(webhook_url, json=card)
    if response.status_code >= 300:
        raise WebhookError(response.status_code, response.text[:200])
    logger.info(f"Posted MessageCard '{card.get('title')}' to Teams webhook")
