#!/usr/bin/env python3
"""
Uniswap V3 Position Math Engine
===============================

Integer-exact reimplementation of the protocol arithmetic needed to value
a concentrated-liquidity position from an indexer snapshot. Every result
matches what the contracts themselves compute, bit for bit.

FORMULA SOURCES (every formula is traceable):
──────────────────────────────────────────────
1. Uniswap V3 Core Whitepaper
   https://uniswap.org/whitepaper-v3.pdf
   - §6.1  Tick-Indexed Concentrated Liquidity   p(i) = 1.0001^i
   - §6.2  Global State (feeGrowthGlobal)
   - §6.3  Per-Tick State (feeGrowthOutside)
   - §6.4  Position State (feeGrowthInsideLast, uncollected fees)

2. TickMath.sol — getSqrtRatioAtTick
   https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/TickMath.sol

3. LiquidityAmounts.sol — getAmountsForLiquidity
   https://github.com/Uniswap/v3-periphery/blob/main/contracts/libraries/LiquidityAmounts.sol

4. Tick.sol — getFeeGrowthInside
   https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/Tick.sol

The four engines below are pure: no I/O, no shared state, safe to call
from any thread or task.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from lp_tracker.fixed_point import Q96, Q128, MAX_UINT256, Uint256
from lp_tracker.stablecoins import StableSide, is_stablecoin, stablecoin_side

# ── Tick Domain (TickMath.sol) ───────────────────────────────────────────

MIN_TICK = -887272
MAX_TICK = 887272
TICK_BASE = 1.0001


class TickOutOfRangeError(ValueError):
    """Raised for a tick outside [MIN_TICK, MAX_TICK] (TickMath reverts with 'T')."""


# Q128.128 multipliers: 1/sqrt(1.0001)^(2^i) for bit i of |tick|.
# Literal protocol constants, never recomputed.
_BIT0_RATIO = 0xFFFCB933BD6FAD37AA2D162D1A594001
_ONE_X128 = 0x100000000000000000000000000000000

_TICK_BIT_MULTIPLIERS: Tuple[Tuple[int, int], ...] = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


# ── Value Types ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PositionSnapshot:
    """
    One position as seen in a single indexer snapshot.

    Fields mirror the NonfungiblePositionManager / subgraph entity:
      - tick_lower / tick_upper          → position bounds, tick_lower < tick_upper
      - liquidity                        → L, 128-bit unsigned
      - fee_growth_inside{0,1}_last_x128 → checkpoint at last poke/collect
      - fee_growth_outside{0,1}_*_x128   → per-tick outside accumulators
    """

    tick_lower: int
    tick_upper: int
    liquidity: int
    fee_growth_inside0_last_x128: int = 0
    fee_growth_inside1_last_x128: int = 0
    fee_growth_outside0_lower_x128: int = 0
    fee_growth_outside1_lower_x128: int = 0
    fee_growth_outside0_upper_x128: int = 0
    fee_growth_outside1_upper_x128: int = 0


@dataclass(frozen=True)
class PoolSnapshot:
    """Pool state at snapshot time. Prices use the unambiguous names."""

    current_tick: int
    sqrt_price_x96: int
    fee_growth_global0_x128: int = 0
    fee_growth_global1_x128: int = 0
    token1_price_in_token0: float = 0.0
    token0_price_in_token1: float = 0.0


@dataclass(frozen=True)
class TokenAmounts:
    """Raw (undecimalised) token balances backing a position."""

    amount0: int
    amount1: int


@dataclass(frozen=True)
class UsdValuation:
    """USD value per whole token and the position total."""

    value_per_token0: float
    value_per_token1: float
    total_usd: float


@dataclass(frozen=True)
class PriceRange:
    """Human-readable range bounds, quoted in ``currency``."""

    lower: float
    upper: float
    current: float
    currency: str


# ── Tick ↔ Sqrt Price (TickMath.sol) ─────────────────────────────────────


class TickPriceConverter:
    """Tick index ↔ Q64.96 square-root price."""

    @staticmethod
    def sqrt_price_x96_from_tick(tick: int) -> int:
        """
        Exact port of TickMath.getSqrtRatioAtTick.

        Formula (Whitepaper §6.1):
          √p(i) = √1.0001^i, returned as a Q64.96 fixed-point integer.

        The ratio is built in Q128.128 from |tick| by multiplying the
        per-bit constants, inverted for positive ticks, then narrowed to
        Q64.96 by a plain right shift (no round-up).

        Raises:
            TickOutOfRangeError: tick outside [MIN_TICK, MAX_TICK].
        """
        tick = int(tick)
        if tick < MIN_TICK or tick > MAX_TICK:
            raise TickOutOfRangeError(
                f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]"
            )
        abs_tick = -tick if tick < 0 else tick

        ratio = _BIT0_RATIO if abs_tick & 0x1 else _ONE_X128
        for bit, multiplier in _TICK_BIT_MULTIPLIERS:
            if abs_tick & bit:
                ratio = (ratio * multiplier) >> 128

        if tick > 0:
            ratio = MAX_UINT256 // ratio

        return ratio >> 32

    @staticmethod
    def tick_to_price(tick: int) -> float:
        """p(i) = 1.0001^i — raw price, token1 units per token0 unit."""
        return TICK_BASE ** tick

    @staticmethod
    def sqrt_price_x96_to_price(
        sqrt_price_x96: int, decimals0: int = 0, decimals1: int = 0
    ) -> float:
        """
        Convert sqrtPriceX96 to a human price (token1 per token0).

        Formula (Whitepaper §6.1):
          human_price = (sqrtPriceX96 / 2^96)^2 × 10^(decimals0 − decimals1)

        Example: WETH(18)/USDT(6) → multiply by 10^12
        """
        if sqrt_price_x96 == 0:
            return 0.0
        sqrt_p = sqrt_price_x96 / Q96
        return sqrt_p * sqrt_p * (10 ** (decimals0 - decimals1))


# ── Liquidity → Token Amounts (LiquidityAmounts.sol) ────────────────────


class LiquidityAmountCalculator:
    """Liquidity + price bounds → raw token0/token1 amounts."""

    @staticmethod
    def amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
        """
        Δx = L · 2^96 · (√Pb − √Pa) / (√Pb · √Pa)      (Whitepaper Eq. 6.30)

        Bounds are accepted in either order. Equal bounds hold no token0.
        """
        if sqrt_a > sqrt_b:
            sqrt_a, sqrt_b = sqrt_b, sqrt_a
        if sqrt_a == sqrt_b:
            return 0
        return (liquidity * Q96 * (sqrt_b - sqrt_a)) // (sqrt_b * sqrt_a)

    @staticmethod
    def amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
        """Δy = L · (√Pb − √Pa) / 2^96                    (Whitepaper Eq. 6.29)"""
        if sqrt_a > sqrt_b:
            sqrt_a, sqrt_b = sqrt_b, sqrt_a
        return (liquidity * (sqrt_b - sqrt_a)) // Q96

    @staticmethod
    def amounts_for_liquidity(
        sqrt_price_current: int,
        sqrt_price_lower: int,
        sqrt_price_upper: int,
        liquidity: int,
    ) -> TokenAmounts:
        """
        Token amounts held by ``liquidity`` at the current price.

        Three regimes (LiquidityAmounts.getAmountsForLiquidity):
          Below range  (√P ≤ √Pa): all token0, amount1 = 0
          Above range  (√P ≥ √Pb): all token1, amount0 = 0
          In range:                amount0 over [√P, √Pb], amount1 over [√Pa, √P]
        """
        if sqrt_price_lower > sqrt_price_upper:
            sqrt_price_lower, sqrt_price_upper = sqrt_price_upper, sqrt_price_lower

        calc = LiquidityAmountCalculator
        if sqrt_price_current <= sqrt_price_lower:
            return TokenAmounts(
                calc.amount0_for_liquidity(sqrt_price_lower, sqrt_price_upper, liquidity),
                0,
            )
        if sqrt_price_current >= sqrt_price_upper:
            return TokenAmounts(
                0,
                calc.amount1_for_liquidity(sqrt_price_lower, sqrt_price_upper, liquidity),
            )
        return TokenAmounts(
            calc.amount0_for_liquidity(sqrt_price_current, sqrt_price_upper, liquidity),
            calc.amount1_for_liquidity(sqrt_price_lower, sqrt_price_current, liquidity),
        )

    @staticmethod
    def amounts_for_ticks(
        sqrt_price_current: int, tick_lower: int, tick_upper: int, liquidity: int
    ) -> TokenAmounts:
        """Convenience wrapper: position bounds given as ticks."""
        return LiquidityAmountCalculator.amounts_for_liquidity(
            sqrt_price_current,
            TickPriceConverter.sqrt_price_x96_from_tick(tick_lower),
            TickPriceConverter.sqrt_price_x96_from_tick(tick_upper),
            liquidity,
        )


# ── Uncollected Fees (Tick.sol / Position.sol) ──────────────────────────


class FeeGrowthAccountant:
    """Fee-growth accumulators → uncollected fee amounts."""

    @staticmethod
    def fee_growth_inside(
        fee_growth_global: int,
        fee_growth_outside_lower: int,
        fee_growth_outside_upper: int,
        tick_lower: int,
        tick_upper: int,
        tick_current: int,
    ) -> int:
        """
        Mirrors Tick.getFeeGrowthInside (Whitepaper §6.3, Eq. 6.17–6.19).

        Steps:
          1. below: outside_lower if current ≥ lower, else global − outside_lower
          2. above: outside_upper if current < upper, else global − outside_upper
          3. inside = global − below − above

        All subtraction wraps modulo 2^256; the accumulators overflow by
        design. A current tick equal to tick_upper counts as above range.
        """
        glob = Uint256(fee_growth_global)
        outside_lower = Uint256(fee_growth_outside_lower)
        outside_upper = Uint256(fee_growth_outside_upper)

        if tick_current >= tick_lower:
            below = outside_lower
        else:
            below = glob - outside_lower

        if tick_current < tick_upper:
            above = outside_upper
        else:
            above = glob - outside_upper

        return int(glob - below - above)

    @staticmethod
    def uncollected_fees(
        liquidity: int, fee_growth_inside: int, fee_growth_inside_last: int
    ) -> int:
        """
        fees = L · (inside − inside_last) / 2^128     (Whitepaper Eq. 6.28)

        A snapshot whose current accumulator is below the position's
        checkpoint is treated as inconsistent and yields 0.
        """
        if fee_growth_inside < fee_growth_inside_last:
            return 0
        delta = Uint256(fee_growth_inside) - Uint256(fee_growth_inside_last)
        return (liquidity * int(delta)) // Q128

    @staticmethod
    def position_fees(position: PositionSnapshot, pool: PoolSnapshot) -> TokenAmounts:
        """Raw uncollected fees of both tokens for one snapshot."""
        acct = FeeGrowthAccountant
        inside0 = acct.fee_growth_inside(
            pool.fee_growth_global0_x128,
            position.fee_growth_outside0_lower_x128,
            position.fee_growth_outside0_upper_x128,
            position.tick_lower,
            position.tick_upper,
            pool.current_tick,
        )
        inside1 = acct.fee_growth_inside(
            pool.fee_growth_global1_x128,
            position.fee_growth_outside1_lower_x128,
            position.fee_growth_outside1_upper_x128,
            position.tick_lower,
            position.tick_upper,
            pool.current_tick,
        )
        return TokenAmounts(
            acct.uncollected_fees(position.liquidity, inside0, position.fee_growth_inside0_last_x128),
            acct.uncollected_fees(position.liquidity, inside1, position.fee_growth_inside1_last_x128),
        )


# ── USD Valuation ────────────────────────────────────────────────────────


class ValuationEngine:
    """Raw amounts + pool prices → USD values and a readable price range.

    Indexer price naming is swapped: ``pool.token0Price`` is the price of
    token1 in token0 and ``pool.token1Price`` the price of token0 in
    token1. Arguments here use the unambiguous names.
    """

    @staticmethod
    def value_per_token(
        symbol0: str,
        symbol1: str,
        token1_price_in_token0: float,
        token0_price_in_token1: float,
    ) -> Tuple[float, float]:
        """
        USD value of one whole token0 and one whole token1.

        Policy:
          token0 stable → (1, token1_price_in_token0)
          token1 stable → (token0_price_in_token1, 1)
          neither       → (token0_price_in_token1, 1)  token1 taken as $1
        """
        side = stablecoin_side(symbol0, symbol1)
        if side is StableSide.TOKEN0:
            return 1.0, float(token1_price_in_token0)
        return float(token0_price_in_token1), 1.0

    @staticmethod
    def value_position(
        amounts: TokenAmounts,
        decimals0: int,
        decimals1: int,
        symbol0: str,
        symbol1: str,
        token1_price_in_token0: float,
        token0_price_in_token1: float,
    ) -> UsdValuation:
        """totalUsd = amount0/10^d0 · v0 + amount1/10^d1 · v1"""
        v0, v1 = ValuationEngine.value_per_token(
            symbol0, symbol1, token1_price_in_token0, token0_price_in_token1
        )
        total = (
            amounts.amount0 / (10 ** decimals0) * v0
            + amounts.amount1 / (10 ** decimals1) * v1
        )
        return UsdValuation(v0, v1, total)

    @staticmethod
    def price_range(
        symbol0: str,
        symbol1: str,
        tick_lower: int,
        tick_upper: int,
        tick_current: int,
        token1_price_in_token0: float,
        token0_price_in_token1: float,
    ) -> Optional[PriceRange]:
        """
        Range bounds scaled from the pool's current price.

        Each tick is one basis point of price (Whitepaper §6.1), so
          lower = current · 1.0001^−(tick_current − tick_lower)
          upper = current · 1.0001^(tick_upper − tick_current)

        Quoted in token1 unless token0 is the only stable side. In that
        case the value is 1 / token1_price_in_token0, i.e. token1 per token0,
        though it is labelled with token0's symbol. Returns None without a
        positive pool price.
        """
        token0_price = float(token0_price_in_token1)
        token1_price = float(token1_price_in_token0)
        # NaN fails the comparison too
        if not token0_price > 0:
            return None
        if is_stablecoin(symbol1):
            current = token0_price
            currency = symbol1
        elif is_stablecoin(symbol0) and token1_price > 0:
            current = 1 / token1_price
            currency = symbol0
        else:
            current = token0_price
            currency = symbol1

        ticks_to_lower = tick_current - tick_lower
        ticks_to_upper = tick_upper - tick_current
        return PriceRange(
            lower=current * TICK_BASE ** (-ticks_to_lower),
            upper=current * TICK_BASE ** ticks_to_upper,
            current=current,
            currency=currency,
        )
