"""
HTML Check Report — single-file HTML output.

Generates a self-contained HTML page with inline CSS and no scripts:
summary cards with Pass/Fail/Warning totals, then one table per category.
"""

from __future__ import annotations

import html
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .models import ResultSet, Status, TestResult, STATUS_ORDER


# ---------------------------------------------------------------------------
# Colour palette
# ---------------------------------------------------------------------------
_STATUS_COLOURS = {
    Status.FAIL:    {"bg": "#dc2626", "fg": "#fff", "soft": "#fef2f2"},
    Status.WARNING: {"bg": "#d97706", "fg": "#fff", "soft": "#fffbeb"},
    Status.PASS:    {"bg": "#16a34a", "fg": "#fff", "soft": "#f0fdf4"},
}


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def _esc(val: Any) -> str:
    if val is None:
        return ""
    return html.escape(str(val))


def _status_badge(status: Status) -> str:
    c = _STATUS_COLOURS[status]
    return (
        f'<span class="badge" style="background:{c["bg"]};color:{c["fg"]}">'
        f'{_esc(status.value.upper())}</span>'
    )


def _render_data(data: Any) -> str:
    """Nested evidence as a collapsed <details> block."""
    if data is None or data == {} or data == []:
        return ""
    try:
        text = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(data)
    if len(text) > 4000:
        text = text[:4000] + "\n…"
    return f'<details class="data"><summary>Details</summary><pre>{_esc(text)}</pre></details>'


def _summary_cards(totals: dict[str, int]) -> str:
    cards = []
    for status in STATUS_ORDER:
        c = _STATUS_COLOURS[status]
        cards.append(
            f'<div class="card" style="border-top:4px solid {c["bg"]}">'
            f'<div class="card-count" style="color:{c["bg"]}">{totals[status.value]}</div>'
            f'<div class="card-label">{_esc(status.value)}</div></div>'
        )
    return "\n".join(cards)


def _category_section(category: str, results: list[TestResult], counts: dict[str, int]) -> str:
    rows = []
    for r in results:
        soft = _STATUS_COLOURS[r.status]["soft"]
        rows.append(
            f'<tr style="background:{soft}">'
            f'<td class="col-test">{_esc(r.test_name)}</td>'
            f'<td class="col-status">{_status_badge(r.status)}</td>'
            f'<td class="col-detail">{_esc(r.details)}{_render_data(r.data)}</td>'
            f'<td class="col-time">{_esc(r.timestamp.strftime("%Y-%m-%d %H:%M"))}</td>'
            f'</tr>'
        )
    tally = " &middot; ".join(f"{counts[s.value]} {s.value}" for s in STATUS_ORDER)
    return f"""
    <section class="category">
      <h2>{_esc(category)} <span class="tally">{tally}</span></h2>
      <table>
        <thead><tr><th>Check</th><th>Status</th><th>Details</th><th>Checked</th></tr></thead>
        <tbody>
          {"".join(rows)}
        </tbody>
      </table>
    </section>"""


def render_html(
    results: ResultSet,
    title: str,
    tenant_name: str,
    generated_at: str,
) -> str:
    """Build the full HTML string."""
    category_counts = results.category_summary()
    totals = results.summary()

    sections = "\n".join(
        _category_section(category, items, category_counts[category])
        for category, items in results.by_category().items()
    )
    if not sections:
        sections = '<p class="muted">No checks were run.</p>'

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{_esc(title)} — {_esc(tenant_name)}</title>
<style>
*, *::before, *::after {{ box-sizing: border-box; margin: 0; padding: 0; }}
body {{
  font-family: "Segoe UI", -apple-system, BlinkMacSystemFont, Roboto, "Helvetica Neue", sans-serif;
  background: #f8fafc; color: #1e293b; line-height: 1.5; font-size: 14px;
}}
.page {{ max-width: 1100px; margin: 0 auto; padding: 2rem 1.5rem; }}
.report-header {{
  background: linear-gradient(135deg, #0f172a 0%, #1e3a5f 100%);
  color: #f1f5f9; padding: 1.8rem 2.2rem; border-radius: 12px; margin-bottom: 1.5rem;
}}
.report-header h1 {{ font-size: 1.5rem; margin-bottom: .3rem; }}
.report-header .meta {{ font-size: .8rem; opacity: .7; }}
.cards {{ display: flex; gap: 1rem; margin-bottom: 2rem; }}
.card {{
  flex: 1; background: #fff; border-radius: 10px; padding: 1rem 1.2rem;
  box-shadow: 0 1px 3px rgba(0,0,0,.08); text-align: center;
}}
.card-count {{ font-size: 2rem; font-weight: 800; }}
.card-label {{ font-size: .8rem; text-transform: uppercase; letter-spacing: .05em; color: #64748b; }}
.category {{ background: #fff; border-radius: 10px; padding: 1.2rem 1.4rem; margin-bottom: 1.5rem;
  box-shadow: 0 1px 3px rgba(0,0,0,.08); }}
.category h2 {{ font-size: 1.1rem; margin-bottom: .8rem; }}
.tally {{ font-size: .75rem; font-weight: 400; color: #64748b; margin-left: .5rem; }}
table {{ width: 100%; border-collapse: collapse; }}
th {{ text-align: left; font-size: .75rem; text-transform: uppercase; color: #64748b;
  border-bottom: 2px solid #e2e8f0; padding: .4rem .5rem; }}
td {{ border-bottom: 1px solid #e2e8f0; padding: .5rem; vertical-align: top; }}
.col-test {{ width: 30%; font-weight: 600; }}
.col-status {{ width: 90px; }}
.col-time {{ width: 120px; font-size: .75rem; color: #64748b; white-space: nowrap; }}
.badge {{ display: inline-block; padding: .1rem .5rem; border-radius: 4px; font-size: .7rem; font-weight: 700; }}
details.data {{ margin-top: .4rem; }}
details.data summary {{ cursor: pointer; font-size: .75rem; color: #2563eb; }}
details.data pre {{ font-size: .72rem; background: #f1f5f9; padding: .5rem; border-radius: 4px;
  white-space: pre-wrap; word-break: break-word; }}
.muted {{ color: #64748b; }}
@media print {{ body {{ background: #fff; }} .category, .card {{ box-shadow: none; }} }}
</style>
</head>
<body>
<div class="page">
  <header class="report-header">
    <h1>{_esc(title)}</h1>
    <div class="meta">Tenant: {_esc(tenant_name)} &middot; Generated: {_esc(generated_at)} &middot; {len(results)} checks</div>
  </header>
  <div class="cards">
    {_summary_cards(totals)}
  </div>
  {sections}
</div>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def export_html(
    results: ResultSet | Iterable[TestResult],
    output_dir: Path,
    run_id: str,
    title: str = "M365 Tenant Check Report",
    tenant_name: str = "Unknown Tenant",
    name: str = "report",
) -> Path:
    """
    Generate a self-contained HTML report.

    Returns the Path to the written file.
    """
    if not isinstance(results, ResultSet):
        results = ResultSet(results)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    content = render_html(results, title=title, tenant_name=tenant_name, generated_at=generated_at)

    filepath = output_dir / f"{name}_{run_id}.html"
    filepath.write_text(content, encoding="utf-8")
    return filepath
