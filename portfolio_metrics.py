#!/usr/bin/env python3
"""
Portfolio Metrics — history-based P/L, fees and range status
============================================================

Pure functions over stored snapshot records (see position_tracker.py).
One calculator feeds both the HTML report and the chat notifiers so the
figures they show cannot drift apart.

Definitions:
  • 24h fees:       uncollected-fee USD now − at the reference snapshot
  • P/L:            (value_latest − value_oldest) + (fees_latest − fees_oldest)
  • P/L %:          P/L ÷ value_oldest × 100
  • Avg daily fees: mean of the positive day-over-day fee increases
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from lp_tracker.formatting import parse_timestamp
from lp_tracker.stablecoins import STABLECOIN_SYMBOLS

Record = Dict[str, Any]


# ── Record Accessors ─────────────────────────────────────────────────────


def _fees_usd(record: Optional[Record]) -> float:
    if not record:
        return 0.0
    return float((record.get("uncollected_fees") or {}).get("total_usd") or 0)


def _value_usd(record: Optional[Record]) -> float:
    if not record:
        return 0.0
    return float(record.get("total_value_usd") or 0)


def _current_price(record: Optional[Record]) -> Optional[float]:
    if not record:
        return None
    pr = record.get("price_range") or {}
    return pr.get("current") or None


def is_in_range(record: Record) -> bool:
    """
    Range status of a snapshot.

    Uses the rendered price range when present (bounds inclusive), else
    the tick test ``tick_lower ≤ current_tick < tick_upper``.
    """
    pr = record.get("price_range")
    if pr:
        return pr["lower"] <= pr["current"] <= pr["upper"]
    pool = record.get("pool") or {}
    tick = pool.get("current_tick")
    if tick is None:
        return False
    return record["tick_lower"] <= tick < record["tick_upper"]


def is_eth_pool(record: Record) -> bool:
    """ETH/WETH paired with a stablecoin — its price is the dashboard ETH price."""
    symbols = [record["token0"]["symbol"], record["token1"]["symbol"]]
    has_eth = any("eth" in s.lower() for s in symbols)
    has_stable = any(s.upper() in STABLECOIN_SYMBOLS for s in symbols)
    return has_eth and has_stable


# ── History Grouping ─────────────────────────────────────────────────────


def group_by_timestamp(records: List[Record]) -> Dict[str, List[Record]]:
    grouped: Dict[str, List[Record]] = {}
    for record in records:
        grouped.setdefault(record["timestamp"], []).append(record)
    return grouped


def latest_positions(grouped: Dict[str, List[Record]]) -> List[Record]:
    if not grouped:
        return []
    return grouped[max(grouped)]


def previous_positions(grouped: Dict[str, List[Record]]) -> Optional[List[Record]]:
    """Snapshot batch before the latest one, or None with fewer than two."""
    if len(grouped) < 2:
        return None
    return grouped[sorted(grouped)[-2]]


def build_position_map(records: List[Record]) -> Dict[str, Record]:
    return {r["position_id"]: r for r in records}


def build_history_map(records: List[Record]) -> Dict[str, List[Record]]:
    """Position id → its snapshots, newest first."""
    history: Dict[str, List[Record]] = {}
    for record in records:
        history.setdefault(record["position_id"], []).append(record)
    for entries in history.values():
        entries.sort(key=lambda r: parse_timestamp(r["timestamp"]), reverse=True)
    return history


# ── Per-Position Calculations ────────────────────────────────────────────


def fee_difference(current: Record, previous: Optional[Record]) -> Optional[float]:
    if previous is None:
        return None
    return _fees_usd(current) - _fees_usd(previous)


def fees_24h(current: List[Record], previous: Optional[List[Record]]) -> float:
    """Sum of fee increases for positions present in both batches."""
    if not previous:
        return 0.0
    prev_map = build_position_map(previous)
    total = 0.0
    for record in current:
        diff = fee_difference(record, prev_map.get(record["position_id"]))
        if diff is not None:
            total += diff
    return total


def value_change(current: Optional[float], previous: Optional[float]) -> Optional[Tuple[float, float]]:
    """(difference, percentage), or None when either value is missing or zero."""
    if not current or not previous:
        return None
    difference = current - previous
    return difference, difference / previous * 100


def price_change(current: float, previous: float) -> Tuple[float, float]:
    """(difference, percentage); percentage is 0 for a non-positive base."""
    difference = current - previous
    percentage = difference / previous * 100 if previous > 0 else 0.0
    return difference, percentage


def profit_loss(history: List[Record]) -> Tuple[float, float]:
    """
    (P/L USD, P/L %) over a newest-first history.

    P/L = value change + fee change between the oldest and latest entry.
    """
    if not history:
        return 0.0, 0.0
    latest, oldest = history[0], history[-1]
    earned_fees = _fees_usd(latest) - _fees_usd(oldest)
    total = (_value_usd(latest) - _value_usd(oldest)) + earned_fees
    initial = _value_usd(oldest)
    return total, (total / initial * 100 if initial > 0 else 0.0)


def average_daily_fees(history: List[Record]) -> float:
    """Mean of positive fee increases between consecutive entries."""
    increases = []
    for newer, older in zip(history, history[1:]):
        diff = fee_difference(newer, older)
        if diff is not None and diff > 0:
            increases.append(diff)
    return sum(increases) / len(increases) if increases else 0.0


def position_age(oldest_timestamp: str, now: Optional[datetime] = None) -> Tuple[int, str]:
    """(days, label) — "New position", "1 day old", "N days old"."""
    now = now or datetime.now(timezone.utc)
    days = (now - parse_timestamp(oldest_timestamp)).days
    if days == 0:
        return 0, "New position"
    if days == 1:
        return 1, "1 day old"
    return days, f"{days} days old"


def format_fee_tier(fee: int) -> str:
    """Fee in hundredths of a bip → percent string: 3000 → '0.30'."""
    return f"{fee / 10000:.2f}"


# ── Live vs. Reference Snapshots ─────────────────────────────────────────


@dataclass
class LiveSelection:
    """Which snapshots count as "now" and which as "24h ago"."""

    current: List[Record]
    reference: List[Record]
    live_is_hourly: bool
    live_by_id: Dict[str, Record] = field(default_factory=dict)

    def table_rows(self, position_id: str, history: List[Record]) -> Tuple[Optional[Record], List[Record]]:
        """(LIVE row, remaining history rows) for one position's table.

        A daily snapshot shown as LIVE is dropped from the history rows;
        an hourly one leaves the daily history untouched.
        """
        live = self.live_by_id.get(position_id)
        if live is not None and not self.live_is_hourly:
            return live, history[1:]
        return live, history


def select_live_positions(
    latest_hourly: Optional[List[Record]], history_map: Dict[str, List[Record]]
) -> LiveSelection:
    """
    Pick the live snapshot set.

    The hourly snapshot is live only when it is newer than the latest
    daily one; it is then compared with the latest daily batch. When the
    daily batch is live it is compared with the daily batch before it.
    """
    latest_daily = [h[0] for h in history_map.values() if h]

    live_is_hourly = False
    current = latest_daily
    if latest_hourly:
        if not latest_daily or (
            parse_timestamp(latest_hourly[0]["timestamp"])
            > parse_timestamp(latest_daily[0]["timestamp"])
        ):
            current = latest_hourly
            live_is_hourly = True

    if live_is_hourly:
        reference = latest_daily
    else:
        second = [h[1] for h in history_map.values() if len(h) > 1]
        reference = second or latest_daily

    return LiveSelection(
        current=current,
        reference=reference,
        live_is_hourly=live_is_hourly,
        live_by_id=build_position_map(current),
    )


# ── Portfolio Aggregation ────────────────────────────────────────────────


@dataclass
class PositionMetrics:
    position_id: str
    chain: str
    pool_name: str
    fee_tier: str
    in_range: bool
    current_value: float
    current_fees: float
    total_pnl: float
    total_pnl_percentage: float
    value_24h_change: float
    value_24h_change_percentage: float
    fees_24h_change: float
    average_daily_fees: float
    age_days: int
    age_text: str
    price_range: Optional[Dict[str, Any]]
    current_price: Optional[float]
    price_24h_change: Optional[float]
    price_24h_change_percentage: Optional[float]


@dataclass
class DashboardMetrics:
    total_pnl: float = 0.0
    total_fees: float = 0.0
    fees_24h: float = 0.0
    current_eth_price: float = 0.0
    total_value: float = 0.0
    total_fees_change: float = 0.0
    total_value_change: float = 0.0
    eth_price_change: float = 0.0
    total_pnl_change: float = 0.0


@dataclass
class PortfolioMetrics:
    dashboard: DashboardMetrics
    total_value_usd: float
    total_fees_usd: float
    total_pnl: float
    total_pnl_percentage: float
    total_24h_fees: float
    in_range_count: int
    out_of_range_count: int
    current_eth_price: Optional[float]
    eth_price_24h_change: Optional[float]
    eth_price_24h_change_percentage: Optional[float]
    positions: List[PositionMetrics]


def dashboard_metrics(history_map: Dict[str, List[Record]]) -> DashboardMetrics:
    """Headline cards: totals, 24h fee delta, ETH price, % changes."""
    d = DashboardMetrics()
    prev_fees = prev_value = prev_eth = initial = 0.0
    eth_found = False

    for entries in history_map.values():
        if not entries:
            continue
        latest = entries[0]
        previous = entries[1] if len(entries) > 1 else None

        d.total_fees += _fees_usd(latest)
        d.total_value += _value_usd(latest)
        prev_fees += _fees_usd(previous)
        prev_value += _value_usd(previous)
        initial += _value_usd(entries[-1])
        d.fees_24h += _fees_usd(latest) - _fees_usd(previous)
        d.total_pnl += profit_loss(entries)[0]

        if not eth_found and is_eth_pool(latest):
            d.current_eth_price = _current_price(latest) or 0.0
            prev_eth = _current_price(previous) or 0.0
            eth_found = True

    if prev_fees > 0:
        d.total_fees_change = (d.total_fees - prev_fees) / prev_fees * 100
    if initial > 0:
        # Change against the first recorded value, not the previous day
        d.total_value_change = (d.total_value - initial) / initial * 100
        d.total_pnl_change = d.total_pnl / initial * 100
    if prev_eth > 0:
        d.eth_price_change = (d.current_eth_price - prev_eth) / prev_eth * 100
    return d


class PortfolioMetricsCalculator:
    """Single source of the figures shown in every report channel."""

    def calculate(
        self,
        all_records: List[Record],
        current: Optional[List[Record]] = None,
        previous: Optional[List[Record]] = None,
    ) -> PortfolioMetrics:
        if current is None:
            grouped = group_by_timestamp(all_records)
            current = latest_positions(grouped)
            if previous is None:
                previous = previous_positions(grouped)

        history_map = build_history_map(all_records)

        total_pnl = 0.0
        total_initial = 0.0
        for entries in history_map.values():
            if entries:
                total_pnl += profit_loss(entries)[0]
                total_initial += _value_usd(entries[-1])

        in_range = sum(1 for r in current if is_in_range(r))

        eth_price = eth_change = eth_change_pct = None
        eth_record = next((r for r in current if _current_price(r)), None)
        if eth_record is not None:
            eth_price = _current_price(eth_record)
            prev_eth = next((r for r in previous or [] if _current_price(r)), None)
            if prev_eth is not None:
                eth_change, eth_change_pct = price_change(eth_price, _current_price(prev_eth))

        return PortfolioMetrics(
            dashboard=dashboard_metrics(history_map),
            total_value_usd=sum(_value_usd(r) for r in current),
            total_fees_usd=sum(_fees_usd(r) for r in current),
            total_pnl=total_pnl,
            total_pnl_percentage=total_pnl / total_initial * 100 if total_initial > 0 else 0.0,
            total_24h_fees=fees_24h(current, previous),
            in_range_count=in_range,
            out_of_range_count=len(current) - in_range,
            current_eth_price=eth_price,
            eth_price_24h_change=eth_change,
            eth_price_24h_change_percentage=eth_change_pct,
            positions=self._position_metrics(current, previous, history_map),
        )

    @staticmethod
    def _position_metrics(
        current: List[Record],
        previous: Optional[List[Record]],
        history_map: Dict[str, List[Record]],
    ) -> List[PositionMetrics]:
        prev_map = build_position_map(previous or [])
        out = []
        for record in current:
            pid = record["position_id"]
            prev = prev_map.get(pid)
            history = history_map.get(pid, [])
            pnl, pnl_pct = profit_loss(history)

            value_24h = value_24h_pct = fees_24h_change = 0.0
            if prev is not None:
                change = value_change(_value_usd(record), _value_usd(prev))
                if change:
                    value_24h, value_24h_pct = change
                fees_24h_change = fee_difference(record, prev) or 0.0

            oldest = history[-1] if history else record
            age_days, age_text = position_age(oldest["timestamp"])

            price_24h = price_24h_pct = None
            now_price, prev_price = _current_price(record), _current_price(prev)
            if now_price and prev_price:
                price_24h, price_24h_pct = price_change(now_price, prev_price)

            out.append(PositionMetrics(
                position_id=pid,
                chain=record.get("chain", ""),
                pool_name=f"{record['token0']['symbol']}/{record['token1']['symbol']}",
                fee_tier=format_fee_tier(record.get("fee", 0)),
                in_range=is_in_range(record),
                current_value=_value_usd(record),
                current_fees=_fees_usd(record),
                total_pnl=pnl,
                total_pnl_percentage=pnl_pct,
                value_24h_change=value_24h,
                value_24h_change_percentage=value_24h_pct,
                fees_24h_change=fees_24h_change,
                average_daily_fees=average_daily_fees(history),
                age_days=age_days,
                age_text=age_text,
                price_range=record.get("price_range"),
                current_price=now_price,
                price_24h_change=price_24h,
                price_24h_change_percentage=price_24h_pct,
            ))
        return out
