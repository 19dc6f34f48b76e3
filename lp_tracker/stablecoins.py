"""
Stablecoin Detection — USD Proxy Classification
================================================

Decides which token of a pair can stand in for $1 when valuing a
position. There is no external price oracle: the pool's own price is
quoted against the stable side.

Known stablecoins are recognised by normalised symbol (case-insensitive).
Sources: CoinGecko stablecoin category, DeFiLlama stablecoin tracker.
"""

from enum import IntEnum

# ── Known Stablecoin Symbols ────────────────────────────────────────────
# Normalised to uppercase. USD-pegged only: a EUR stable is not a $1 proxy.

STABLECOIN_SYMBOLS: frozenset = frozenset({
    # USD-pegged, major
    "USDT", "USDC", "DAI", "BUSD", "TUSD", "USDP", "GUSD",
    "FRAX", "LUSD", "PYUSD", "FDUSD", "GHO", "USDS",

    # Bridged variants seen on L2 subgraphs
    "USDC.E", "USDT.E", "DAI.E", "USDBC", "USDT0",
})


class StableSide(IntEnum):
    """Which side of a pair is priced at $1."""

    TOKEN0 = 0
    TOKEN1 = 1
    NONE = -1


def is_stablecoin(symbol: str) -> bool:
    """
    Check if a token symbol is a known stablecoin.

    Examples:
        >>> is_stablecoin("USDC")
        True
        >>> is_stablecoin(" usdt ")
        True
        >>> is_stablecoin("WETH")
        False
    """
    if not symbol:
        return False
    return symbol.strip().upper() in STABLECOIN_SYMBOLS


def has_stablecoin(symbol0: str, symbol1: str) -> bool:
    """True if at least one token of the pair is a stablecoin."""
    return is_stablecoin(symbol0) or is_stablecoin(symbol1)


def stablecoin_side(symbol0: str, symbol1: str) -> StableSide:
    """
    Identify the side used as the USD proxy.

    token0 wins when both sides are stable, matching the valuation
    order in :class:`position_math.ValuationEngine`.

    Returns:
        StableSide.TOKEN0 — token0 is a stablecoin
        StableSide.TOKEN1 — only token1 is a stablecoin
        StableSide.NONE   — neither is

    Examples:
        >>> stablecoin_side("USDC", "WETH")
        <StableSide.TOKEN0: 0>
        >>> stablecoin_side("WETH", "USDT")
        <StableSide.TOKEN1: 1>
        >>> stablecoin_side("WETH", "WBTC")
        <StableSide.NONE: -1>
    """
    if is_stablecoin(symbol0):
        return StableSide.TOKEN0
    if is_stablecoin(symbol1):
        return StableSide.TOKEN1
    return StableSide.NONE
