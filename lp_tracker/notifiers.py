"""
Chat Notifications — Telegram and Discord
=========================================

Daily summary of the portfolio pushed to chat. Message text is built by
pure functions so it can be inspected without sending anything.

APIs:
  Telegram Bot API sendMessage (parse_mode=HTML):
    https://core.telegram.org/bots/api#sendmessage
  Discord webhook embeds:
    https://discord.com/developers/docs/resources/webhook#execute-webhook
"""

import html as _html_mod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx

from lp_tracker.formatting import format_currency, format_percentage
from portfolio_metrics import is_in_range

Record = Dict[str, Any]

MAX_TELEGRAM_POSITIONS = 10
MAX_DISCORD_POSITIONS = 20  # Discord allows 25 fields per embed
DISCORD_SUCCESS_COLOR = 0x10B981
DISCORD_ERROR_COLOR = 0xEF4444
TIMEOUT_SECONDS = 15


def _esc(value: Any) -> str:
    return _html_mod.escape(str(value), quote=False)


def _trend(value: float) -> str:
    return "📈" if value >= 0 else "📉"


def _range_text(record: Record) -> str:
    pr = record.get("price_range")
    if pr:
        return f"${pr['lower']:.0f}-${pr['upper']:.0f}"
    return f"[{record['tick_lower']}, {record['tick_upper']}]"


def _sorted_by_value(records: List[Record]) -> List[Record]:
    return sorted(records, key=lambda r: r.get("total_value_usd") or 0, reverse=True)


def build_telegram_message(
    records: List[Record],
    metrics,
    tz: str = "UTC",
    report_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    HTML-formatted summary: portfolio totals, then up to ten positions
    ordered by value.

    Args:
        records: Current snapshot records.
        metrics: ``portfolio_metrics.PortfolioMetrics`` for the same records.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(ZoneInfo(tz))
    lines = [
        "<b>🦄 Uniswap Position Update</b>",
        f"<i>Tracking completed at {now.strftime('%Y-%m-%d %H:%M')} ({_esc(tz)})</i>",
        "",
        "<b>📊 Summary</b>",
        "━━━━━━━━━━━━━━━━",
    ]

    pnl_line = f"🤑 <b>Total P/L:</b> {format_currency(metrics.total_pnl, show_sign=True)}"
    if metrics.total_pnl_percentage != 0:
        pnl_line += (
            f" {_trend(metrics.total_pnl)}"
            f" <i>({format_percentage(metrics.total_pnl_percentage, show_sign=True)})</i>"
        )
    lines.append(pnl_line)
    lines.append(f"💵 <b>24h Fees:</b> {format_currency(metrics.total_24h_fees, show_sign=True)}")
    lines.append(f"💰 <b>Total Fees:</b> {format_currency(metrics.total_fees_usd)}")

    if metrics.current_eth_price:
        eth_line = f"🏷️ <b>ETH Price:</b> {format_currency(metrics.current_eth_price)}"
        if metrics.eth_price_24h_change_percentage is not None:
            pct = metrics.eth_price_24h_change_percentage
            eth_line += f" {_trend(pct)} <i>({format_percentage(pct, show_sign=True)})</i>"
        lines.append(eth_line)

    value_line = f"💼 <b>Total Value:</b> {format_currency(metrics.total_value_usd)}"
    change = metrics.dashboard.total_value_change
    if change != 0:
        value_line += f" {_trend(change)} <i>({format_percentage(change, show_sign=True)})</i>"
    lines.append(value_line)

    by_id = {p.position_id: p for p in metrics.positions}
    ordered = _sorted_by_value(records)
    shown = ordered[:MAX_TELEGRAM_POSITIONS]
    if shown:
        lines += ["", "<b>🎯 Active Positions</b>", "━━━━━━━━━━━━━━━━"]
    for record in shown:
        pm = by_id.get(record["position_id"])
        pool_name = f"{record['token0']['symbol']}/{record['token1']['symbol']}"
        status = "✅" if is_in_range(record) else "❌"
        value = record.get("total_value_usd") or 0
        fees = (record.get("uncollected_fees") or {}).get("total_usd") or 0

        if pm is not None and pm.total_pnl != 0:
            pnl = (
                f"{format_currency(pm.total_pnl, show_sign=True)} {_trend(pm.total_pnl)}"
                f" <i>({format_percentage(pm.total_pnl_percentage, show_sign=True)})</i>"
            )
        else:
            pnl = f"💰 {format_currency(value)}"
        value_change = ""
        if pm is not None and pm.value_24h_change_percentage != 0:
            value_change = (
                f" {_trend(pm.value_24h_change)}"
                f" <i>({format_percentage(pm.value_24h_change_percentage, show_sign=True)})</i>"
            )
        fee_change = ""
        if pm is not None and pm.fees_24h_change != 0:
            fee_change = f" <i>(24h: {format_currency(pm.fees_24h_change, show_sign=True)})</i>"

        lines += [
            "",
            f"<b>{_esc(pool_name)}</b> {status}",
            f"├ {_esc(str(record.get('chain', '')).capitalize())} • {record.get('fee', 0) / 10000:.2f}%",
            f"├ <b>ID: </b>{_esc(record['position_id'])}",
            f"├ <b>P/L: </b>{pnl}",
            f"├ <b>Range: </b>{_esc(_range_text(record))}",
            f"├ <b>Value: </b>{format_currency(value)}{value_change}",
            f"└ <b>Fees: </b>{format_currency(fees)}{fee_change}",
        ]

    if len(ordered) > len(shown):
        lines += ["", f"<i>📝 Showing {len(shown)} of {len(ordered)} positions</i>"]
    if report_url:
        lines += ["", "━━━━━━━━━━━━━━━━", f'📊 <a href="{_html_mod.escape(report_url)}">View Full Report</a>']
    return "\n".join(lines)


def build_discord_embed(records: List[Record], metrics) -> Dict[str, Any]:
    """Webhook payload with one summary embed and a field per position."""
    fields = [
        {"name": "🤑 Total P/L", "value": format_currency(metrics.total_pnl, show_sign=True), "inline": True},
        {"name": "💵 24h Fees", "value": format_currency(metrics.total_24h_fees, show_sign=True), "inline": True},
        {"name": "💰 Total Fees", "value": format_currency(metrics.total_fees_usd), "inline": True},
        {"name": "💼 Total Value", "value": format_currency(metrics.total_value_usd), "inline": True},
    ]
    if metrics.current_eth_price:
        fields.append(
            {"name": "🏷️ ETH Price", "value": format_currency(metrics.current_eth_price), "inline": True}
        )
    for record in _sorted_by_value(records)[:MAX_DISCORD_POSITIONS]:
        status = "✅ In Range" if is_in_range(record) else "❌ Out of Range"
        fees = (record.get("uncollected_fees") or {}).get("total_usd") or 0
        fields.append({
            "name": f"{record['token0']['symbol']}/{record['token1']['symbol']} #{record['position_id']}",
            "value": (
                f"{status}\nValue: {format_currency(record.get('total_value_usd') or 0)}"
                f"\nFees: {format_currency(fees)}\nRange: {_range_text(record)}"
            ),
            "inline": False,
        })
    embed = {
        "title": "🦄 Uniswap Position Update",
        "color": DISCORD_SUCCESS_COLOR if metrics.total_pnl >= 0 else DISCORD_ERROR_COLOR,
        "fields": fields,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return {"embeds": [embed]}


class TelegramNotifier:
    """Telegram Bot API sender; a no-op unless token and chat id are set."""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, bot_token: Optional[str], chat_id: Optional[str]):
        self.bot_token = bot_token
        self.chat_id = chat_id

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, message: str) -> bool:
        if not self.enabled:
            return False
        payload = {
            "chat_id": self.chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS) as client:
                resp = await client.post(self.API_URL.format(token=self.bot_token), json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            # CWE-209: the URL embeds the bot token, report the type only
            print(f"❌ Telegram notification failed: {type(e).__name__}")
            return False
        print("✅ Telegram notification sent")
        return True


class DiscordNotifier:
    """Discord webhook sender; a no-op unless a webhook URL is set."""

    def __init__(self, webhook_url: Optional[str]):
        self.webhook_url = webhook_url

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, payload: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS) as client:
                resp = await client.post(self.webhook_url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            print(f"❌ Discord notification failed: {type(e).__name__}")
            return False
        print("✅ Discord notification sent")
        return True
