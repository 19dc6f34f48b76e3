#!/usr/bin/env python3
"""
Subgraph Position Tracker for Uniswap V3
========================================

Turns raw subgraph position entities into stored snapshot records, using
the integer-exact engines in position_math.py.

Data Sources (per snapshot):
─────────────────────────────
1. The Graph — Uniswap V3 subgraph ``positions`` entity
   position: liquidity, feeGrowthInside{0,1}LastX128
   ticks:    tickIdx, feeGrowthOutside{0,1}X128
   pool:     tick, sqrtPrice, feeGrowthGlobal{0,1}X128, token0Price, token1Price
   tokens:   symbol, decimals, id
   Ref: https://github.com/Uniswap/v3-subgraph/blob/main/schema.graphql

2. Pool.ticks(int24) over JSON-RPC
   Only when a subgraph omits feeGrowthOutside (Arbitrum deployment).

Record Formulas:
────────────────
  Token amounts: LiquidityAmounts.getAmountsForLiquidity   [Whitepaper §6.2]
  Fees:          L × (feeGrowthInside − last) / 2^128      [Whitepaper §6.4]
  USD:           stablecoin side = $1, other side at pool price
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from html_generator import generate_report
from lp_tracker.central_config import TrackerSettings, validate_settings
from lp_tracker.fixed_point import Uint256
from lp_tracker.rpc_helpers import TickFeeGrowth, fetch_tick_fee_growth
from lp_tracker.storage import PositionStore
from lp_tracker.subgraph_client import SubgraphClient, SubgraphError
from position_math import (
    FeeGrowthAccountant,
    LiquidityAmountCalculator,
    PoolSnapshot,
    PositionSnapshot,
    TickPriceConverter,
    TokenAmounts,
    ValuationEngine,
)

Record = Dict[str, Any]


@dataclass(frozen=True)
class TokenMeta:
    symbol: str
    address: str
    decimals: int
    name: str = ""


# ── Parsing ──────────────────────────────────────────────────────────────


def _to_int(value: Any) -> int:
    """Decimal-string big integer → int. Missing values read as 0."""
    if value is None or value == "":
        return 0
    return int(str(value))


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def _token_meta(raw: Dict[str, Any]) -> TokenMeta:
    return TokenMeta(
        symbol=str(raw.get("symbol") or "UNK"),
        address=str(raw.get("id") or ""),
        decimals=_to_int(raw.get("decimals")),
        name=str(raw.get("name") or ""),
    )


def needs_tick_fallback(raw: Dict[str, Any]) -> bool:
    """True when either tick lacks its feeGrowthOutside fields."""
    for key in ("tickLower", "tickUpper"):
        tick = raw.get(key) or {}
        if tick.get("feeGrowthOutside0X128") is None or tick.get("feeGrowthOutside1X128") is None:
            return True
    return False


def snapshot_from_graph(
    raw: Dict[str, Any],
) -> Tuple[PositionSnapshot, PoolSnapshot, TokenMeta, TokenMeta]:
    """
    Parse one subgraph ``positions`` entity.

    The subgraph's price naming is swapped: ``pool.token0Price`` is the
    price of token1 denominated in token0, and ``pool.token1Price`` is
    the price of token0 denominated in token1.
    """
    tick_lower = raw.get("tickLower") or {}
    tick_upper = raw.get("tickUpper") or {}
    pool = raw.get("pool") or {}

    position = PositionSnapshot(
        tick_lower=_to_int(tick_lower.get("tickIdx")),
        tick_upper=_to_int(tick_upper.get("tickIdx")),
        liquidity=_to_int(raw.get("liquidity")),
        fee_growth_inside0_last_x128=int(Uint256.from_decimal(raw.get("feeGrowthInside0LastX128"))),
        fee_growth_inside1_last_x128=int(Uint256.from_decimal(raw.get("feeGrowthInside1LastX128"))),
        fee_growth_outside0_lower_x128=int(Uint256.from_decimal(tick_lower.get("feeGrowthOutside0X128"))),
        fee_growth_outside1_lower_x128=int(Uint256.from_decimal(tick_lower.get("feeGrowthOutside1X128"))),
        fee_growth_outside0_upper_x128=int(Uint256.from_decimal(tick_upper.get("feeGrowthOutside0X128"))),
        fee_growth_outside1_upper_x128=int(Uint256.from_decimal(tick_upper.get("feeGrowthOutside1X128"))),
    )
    pool_snapshot = PoolSnapshot(
        current_tick=_to_int(pool.get("tick")),
        sqrt_price_x96=_to_int(pool.get("sqrtPrice")),
        fee_growth_global0_x128=int(Uint256.from_decimal(pool.get("feeGrowthGlobal0X128"))),
        fee_growth_global1_x128=int(Uint256.from_decimal(pool.get("feeGrowthGlobal1X128"))),
        token1_price_in_token0=_to_float(pool.get("token0Price")),
        token0_price_in_token1=_to_float(pool.get("token1Price")),
    )
    return (
        position,
        pool_snapshot,
        _token_meta(raw.get("token0") or {}),
        _token_meta(raw.get("token1") or {}),
    )


def apply_tick_fee_growth(
    position: PositionSnapshot, lower: TickFeeGrowth, upper: TickFeeGrowth
) -> PositionSnapshot:
    """New snapshot with the outside accumulators read over RPC."""
    return replace(
        position,
        fee_growth_outside0_lower_x128=lower.fee_growth_outside0_x128,
        fee_growth_outside1_lower_x128=lower.fee_growth_outside1_x128,
        fee_growth_outside0_upper_x128=upper.fee_growth_outside0_x128,
        fee_growth_outside1_upper_x128=upper.fee_growth_outside1_x128,
    )


def has_tick_fee_data(position: PositionSnapshot) -> bool:
    """
    Whether the token0 outside accumulators were actually observed.

    Missing tick data is parsed as 0, and zero outside growth on both
    bounds would make fee growth inside equal the pool's global
    accumulator, i.e. fees the position never earned.
    """
    return bool(position.fee_growth_outside0_lower_x128 or position.fee_growth_outside0_upper_x128)


# ── Record Building ──────────────────────────────────────────────────────


def _human(raw_amount: int, decimals: int) -> float:
    return raw_amount / (10 ** decimals)


def build_position_record(
    raw: Dict[str, Any],
    chain: str,
    timestamp: Optional[str] = None,
    position: Optional[PositionSnapshot] = None,
) -> Record:
    """
    Compute one stored snapshot record from a subgraph entity.

    ``position`` overrides the parsed position state (used after the
    RPC tick fallback). Fee USD uses the same per-token prices as the
    position value, so a zero token balance cannot break the fee price.
    Without observed tick fee data the fees are reported as 0, and without
    a positive pool price ``price_range`` is None.
    """
    parsed_position, pool, token0, token1 = snapshot_from_graph(raw)
    if position is None:
        position = parsed_position
    if timestamp is None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")

    amounts = LiquidityAmountCalculator.amounts_for_ticks(
        pool.sqrt_price_x96, position.tick_lower, position.tick_upper, position.liquidity
    )
    valuation = ValuationEngine.value_position(
        amounts,
        token0.decimals,
        token1.decimals,
        token0.symbol,
        token1.symbol,
        pool.token1_price_in_token0,
        pool.token0_price_in_token1,
    )
    if has_tick_fee_data(position):
        fees = FeeGrowthAccountant.position_fees(position, pool)
    else:
        fees = TokenAmounts(0, 0)
    price_range = ValuationEngine.price_range(
        token0.symbol,
        token1.symbol,
        position.tick_lower,
        position.tick_upper,
        pool.current_tick,
        pool.token1_price_in_token0,
        pool.token0_price_in_token1,
    )

    amount0 = _human(amounts.amount0, token0.decimals)
    amount1 = _human(amounts.amount1, token1.decimals)
    fees0 = _human(fees.amount0, token0.decimals)
    fees1 = _human(fees.amount1, token1.decimals)
    fees0_usd = fees0 * valuation.value_per_token0
    fees1_usd = fees1 * valuation.value_per_token1

    return {
        "timestamp": timestamp,
        "date": timestamp[:10],
        "position_id": str(raw.get("id", "")),
        "owner": str(raw.get("owner", "")),
        "chain": chain,
        "token0": {
            "symbol": token0.symbol,
            "address": token0.address,
            "decimals": token0.decimals,
            "amount": amount0,
            "amount_raw": str(amounts.amount0),
            "value_usd": amount0 * valuation.value_per_token0,
        },
        "token1": {
            "symbol": token1.symbol,
            "address": token1.address,
            "decimals": token1.decimals,
            "amount": amount1,
            "amount_raw": str(amounts.amount1),
            "value_usd": amount1 * valuation.value_per_token1,
        },
        "liquidity": str(position.liquidity),
        "tick_lower": position.tick_lower,
        "tick_upper": position.tick_upper,
        "fee": _to_int((raw.get("pool") or {}).get("feeTier")),
        "uncollected_fees": {
            "token0": fees0,
            "token1": fees1,
            "token0_raw": str(fees.amount0),
            "token1_raw": str(fees.amount1),
            "token0_usd": fees0_usd,
            "token1_usd": fees1_usd,
            "total_usd": fees0_usd + fees1_usd,
        },
        "total_value_usd": valuation.total_usd,
        "pool": {
            "address": str((raw.get("pool") or {}).get("id", "")),
            "current_tick": pool.current_tick,
            "sqrt_price_x96": str(pool.sqrt_price_x96),
            "current_price": TickPriceConverter.sqrt_price_x96_to_price(
                pool.sqrt_price_x96, token0.decimals, token1.decimals
            ),
        },
        "price_range": None if price_range is None else {
            "lower": price_range.lower,
            "upper": price_range.upper,
            "current": price_range.current,
            "currency": price_range.currency,
        },
    }


def print_record(record: Record) -> None:
    """Console summary of one position snapshot."""
    t0, t1 = record["token0"], record["token1"]
    fees = record["uncollected_fees"]
    pr = record.get("price_range")
    print(f"\n📍 Position #{record['position_id']} ({record['chain']})")
    print(f"   Pool        : {t0['symbol']}/{t1['symbol']}  fee {record['fee'] / 10000:.2f}%")
    print(f"   {t0['symbol']:<12}: {t0['amount']:.6f} (${t0['value_usd']:,.2f})")
    print(f"   {t1['symbol']:<12}: {t1['amount']:.6f} (${t1['value_usd']:,.2f})")
    print(f"   Total value : ${record['total_value_usd']:,.2f}")
    if pr:
        in_range = pr["lower"] <= pr["current"] <= pr["upper"]
        status = "✅ In Range" if in_range else "❌ Out of Range"
        print(f"   Range       : {pr['lower']:.2f} – {pr['upper']:.2f} {pr['currency']}")
        print(f"   Current     : {pr['current']:.2f} {pr['currency']} {status}")
    print(f"   Fees        : {fees['token0']:.6f} {t0['symbol']} + {fees['token1']:.6f} {t1['symbol']}"
          f" (${fees['total_usd']:,.2f})")


# ── Tracker ──────────────────────────────────────────────────────────────


class PositionTracker:
    """Fetch → compute → persist → report, for every configured chain."""

    def __init__(self, settings: TrackerSettings, store: Optional[PositionStore] = None):
        self.settings = settings
        self.store = store or PositionStore(settings.data_file_path, settings.latest_file_path)

    async def _fill_missing_ticks(self, raw: Dict[str, Any], chain: str) -> Optional[PositionSnapshot]:
        if not needs_tick_fallback(raw):
            return None
        rpc_url = self.settings.rpc_urls.get(chain)
        position, _, _, _ = snapshot_from_graph(raw)
        pool_address = str((raw.get("pool") or {}).get("id", ""))
        if not rpc_url or not pool_address:
            return None
        ticks = await fetch_tick_fee_growth(
            rpc_url, pool_address, position.tick_lower, position.tick_upper
        )
        if ticks is None:
            return None
        return apply_tick_fee_growth(position, *ticks)

    async def fetch_chain(self, chain: str, timestamp: str) -> List[Record]:
        """Snapshot records for one chain; failures print and yield []."""
        client = SubgraphClient(chain, self.settings.graph_api_key)
        try:
            raw_positions = await client.fetch_positions(
                wallet_address=self.settings.wallet_address,
                position_id=self.settings.position_id,
            )
        except SubgraphError as e:
            print(f"❌ {chain}: {e}")
            return []

        records = []
        for raw in raw_positions:
            position = await self._fill_missing_ticks(raw, chain)
            records.append(build_position_record(raw, chain, timestamp, position))
        return records

    async def fetch_all(self) -> List[Record]:
        """Query every configured chain concurrently under one batch timestamp."""
        validate_settings(self.settings)
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        per_chain = await asyncio.gather(
            *(self.fetch_chain(chain, timestamp) for chain in self.settings.chains)
        )
        records: List[Record] = []
        for chain, chain_records in zip(self.settings.chains, per_chain):
            print(f"  • {chain}: {len(chain_records)} position(s)")
            records.extend(chain_records)
        return records

    async def track(self, hourly: bool = False) -> List[Record]:
        """
        One tracking run.

        Daily runs append to the history file; hourly runs only replace
        the latest-snapshot file. Either way the HTML report is rebuilt.
        """
        print("\n" + "=" * 55)
        print(f"🔍 Checking positions ({'hourly' if hourly else 'daily'} run)")
        if self.settings.wallet_address:
            print(f"   Wallet: {self.settings.wallet_address}")
        print("=" * 55)

        records = await self.fetch_all()
        if not records:
            print("ℹ️  No active positions found")
            return []

        print(f"\n✅ Found {len(records)} active position(s)")
        for record in records:
            print_record(record)

        if hourly:
            self.store.save_latest(records)
        else:
            self.store.append(records)
        self.generate_report()
        return records

    def generate_report(self) -> Optional[str]:
        """Rebuild the HTML report from stored history."""
        history = self.store.load()
        if not history:
            print("ℹ️  No stored position data — nothing to report")
            return None
        path = generate_report(
            history,
            self.store.load_latest(),
            self.settings.report_path,
            self.settings.timezone,
        )
        print(f"📄 Report written to {path}")
        return str(path)
