"""
HTML report generator for LP Tracker
Renders the stored position history as a static page: dashboard cards
on top, then one history table per position with the live snapshot first.

The page is self-contained (inline CSS, no scripts) so it can be served
from a static host such as GitHub Pages.
"""

import html as _html_mod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from lp_tracker.central_config import PROJECT_NAME, PROJECT_VERSION
from lp_tracker.formatting import (
    format_currency,
    format_percentage,
    format_table_date,
    percentage_with_class,
)
from lp_tracker.html_styles import build_css as _build_css
from portfolio_metrics import (
    LiveSelection,
    PortfolioMetricsCalculator,
    build_history_map,
    fee_difference,
    format_fee_tier,
    is_in_range,
    select_live_positions,
)

Record = Dict[str, Any]


def _safe(value: Any, fallback: str = "Unknown") -> str:
    """Escape a value for safe HTML embedding (XSS prevention).

    Uses Python's html.escape() for robust entity encoding (CWE-79 mitigation).
    """
    if value is None:
        return fallback
    return _html_mod.escape(str(value), quote=True).replace("'", "&#x27;")


def _safe_num(val: Any, decimals: int = 2, default: float = 0) -> str:
    """Format a number, tolerating None / non-numeric input."""
    try:
        return f"{float(val):,.{decimals}f}"
    except (TypeError, ValueError):
        return f"{default:,.{decimals}f}"


def _status_badge(in_range: bool) -> str:
    if in_range:
        return '<span class="status-badge status-in-range">In Range</span>'
    return '<span class="status-badge status-out-range">Out of Range</span>'


def _fee_diff_cell(diff: Optional[float]) -> str:
    if diff is None:
        return '<span class="neutral">-</span>'
    css = "fees-24h-negative" if diff < 0 else "fees-24h"
    return f'<span class="{css}">{_safe(format_currency(diff, show_sign=True))}</span>'


def _change_suffix(pct: Optional[float]) -> str:
    """`` (+1.23%)`` after a value; omitted for changes under 0.01%."""
    if pct is None or abs(pct) < 0.01:
        return ""
    css = "positive" if pct >= 0 else "negative"
    return f' <span class="{css}">({_safe(format_percentage(pct, show_sign=True))})</span>'


# ── Sections ─────────────────────────────────────────────────────────────


def _render_dashboard(records: List[Record], selection: LiveSelection) -> str:
    metrics = PortfolioMetricsCalculator().calculate(
        records, selection.current, selection.reference
    )
    pnl_text, pnl_class = percentage_with_class(metrics.total_pnl_percentage)
    cards = [
        ("Total Value", _safe(format_currency(metrics.total_value_usd)), ""),
        ("Uncollected Fees", _safe(format_currency(metrics.total_fees_usd)), ""),
        ("24h Fees", _fee_diff_cell(metrics.total_24h_fees), ""),
        (
            "Total P/L",
            _safe(format_currency(metrics.total_pnl, show_sign=True)),
            f'<span class="{pnl_class}">{_safe(pnl_text)}</span>',
        ),
        (
            "In Range",
            f"{metrics.in_range_count} / {metrics.in_range_count + metrics.out_of_range_count}",
            "",
        ),
    ]
    if metrics.current_eth_price:
        cards.append((
            "ETH Price",
            _safe(format_currency(metrics.current_eth_price)),
            _change_suffix(metrics.eth_price_24h_change_percentage),
        ))

    html_cards = "\n".join(
        f"""            <div class="card">
                <div class="label">{label}</div>
                <div class="value">{value}</div>
                <div>{extra}</div>
            </div>"""
        for label, value, extra in cards
    )
    return f"""        <section class="dashboard">
{html_cards}
        </section>"""


def _render_row(record: Record, older: Optional[Record], tz: str, live: bool) -> str:
    t0, t1 = record["token0"], record["token1"]
    fees = record.get("uncollected_fees") or {}
    pr = record.get("price_range") or {}
    label = _safe(format_table_date(record["timestamp"], tz))
    if live:
        label += '<span class="live-tag">LIVE</span>'
    price = (
        f"{_safe_num(pr.get('current'))} {_safe(pr.get('currency'), '')}" if pr else "N/A"
    )
    return f"""                <tr class="{'live' if live else ''}">
                    <td>{label}</td>
                    <td>{_safe_num(t0.get('amount'), 6)} {_safe(t0.get('symbol'))}</td>
                    <td>{_safe_num(t1.get('amount'), 6)} {_safe(t1.get('symbol'))}</td>
                    <td><strong>{_safe(format_currency(record.get('total_value_usd', 0)))}</strong></td>
                    <td>{_safe(format_currency(fees.get('total_usd', 0)))}</td>
                    <td>{_fee_diff_cell(fee_difference(record, older))}</td>
                    <td>{price}</td>
                    <td>{_status_badge(is_in_range(record))}</td>
                </tr>"""


def _render_position(
    position_id: str, history: List[Record], selection: LiveSelection, tz: str
) -> str:
    live, rows = selection.table_rows(position_id, history)
    head = live or history[0]
    t0, t1 = head["token0"]["symbol"], head["token1"]["symbol"]
    pr = head.get("price_range") or {}
    range_text = (
        f"{_safe_num(pr.get('lower'))} – {_safe_num(pr.get('upper'))} {_safe(pr.get('currency'), '')}"
        if pr
        else f"ticks [{head['tick_lower']}, {head['tick_upper']}]"
    )

    body = []
    if live is not None:
        body.append(_render_row(live, rows[0] if rows else None, tz, live=True))
    for i, record in enumerate(rows):
        older = rows[i + 1] if i + 1 < len(rows) else None
        body.append(_render_row(record, older, tz, live=False))

    return f"""        <section class="position">
            <h2>{_safe(t0)}/{_safe(t1)} · #{_safe(position_id)}</h2>
            <div class="meta">{_safe(head.get('chain', '')).capitalize()} · fee {format_fee_tier(head.get('fee', 0))}% · range {range_text}</div>
            <table>
                <tr>
                    <th>Date</th><th>{_safe(t0)}</th><th>{_safe(t1)}</th><th>Value</th>
                    <th>Fees</th><th>Fees Δ</th><th>Price</th><th>Status</th>
                </tr>
{chr(10).join(body)}
            </table>
        </section>"""


def build_html(
    records: List[Record], latest_hourly: Optional[List[Record]] = None, tz: str = "UTC"
) -> str:
    """Full report page for the stored history."""
    history_map = build_history_map(records)
    selection = select_live_positions(latest_hourly, history_map)
    generated = format_table_date(datetime.now(timezone.utc).isoformat(), tz)

    sections = [
        _render_position(pid, history, selection, tz)
        for pid, history in history_map.items()
        if history
    ]
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{_safe(PROJECT_NAME)} — Positions</title>
{_build_css()}
</head>
<body>
    <div class="container">
        <header>
            <h1>🦄 Uniswap V3 Positions</h1>
            <div class="subtitle">Updated {_safe(generated)} ({_safe(tz)})</div>
        </header>
{_render_dashboard(records, selection)}
{chr(10).join(sections)}
        <footer>{_safe(PROJECT_NAME)} v{_safe(PROJECT_VERSION)} · data: The Graph (Uniswap V3 subgraph)</footer>
    </div>
</body>
</html>"""


def generate_report(
    records: List[Record],
    latest_hourly: Optional[List[Record]],
    path: str,
    tz: str = "UTC",
) -> Path:
    """Write the report to ``path`` (parents created) and return it."""
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(build_html(records, latest_hourly, tz), encoding="utf-8")
    return report_path
