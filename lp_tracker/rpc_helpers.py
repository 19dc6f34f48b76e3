#!/usr/bin/env python3
"""
RPC Helpers — Tick Fee-Growth Fallback over JSON-RPC
=====================================================

Some Uniswap V3 subgraph deployments (notably Arbitrum) return ticks
without ``feeGrowthOutside{0,1}X128``. Without them uncollected fees
cannot be reconstructed, so the values are read straight from the pool:

  Pool.ticks(int24) → liquidityGross[0], liquidityNet[1],
                      feeGrowthOutside0X128[2], feeGrowthOutside1X128[3], ...

All constants reference the Ethereum ABI specification:
  https://docs.soliditylang.org/en/latest/abi-spec.html

Terminology:
  • Word:  32 bytes = 256 bits = 64 hex characters
  • Slot:  Position of a 32-byte word in an ABI response
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx

from lp_tracker.central_config import RpcAPI
from lp_tracker.fixed_point import Q256

# ── ABI Word Constants ──────────────────────────────────────────────────

ABI_WORD_HEX = 64             # 32 bytes × 2 hex chars = 64 hex characters

# ── ABI Function Selectors ──────────────────────────────────────────────
# First 4 bytes of keccak256(function_signature).

SELECTORS: dict[str, str] = {
    "ticks": "0xf30dba93",  # ticks(int24)
}

# ticks() return slots
FEE_GROWTH_OUTSIDE0_SLOT = 2
FEE_GROWTH_OUTSIDE1_SLOT = 3


@dataclass(frozen=True)
class TickFeeGrowth:
    """feeGrowthOutside accumulators of one initialised tick."""

    fee_growth_outside0_x128: int = 0
    fee_growth_outside1_x128: int = 0


# ── ABI Encoding / Decoding ─────────────────────────────────────────────


def encode_int24(value: int) -> str:
    """ABI-encode an int24 sign-extended to int256 (for ticks).

    >>> encode_int24(-887220)
    'fffffffffffffffffffffffffffffffffffffffffffffffffffffffffff2764c'
    """
    if value < 0:
        value = Q256 + value
    return format(value, f'0{ABI_WORD_HEX}x')


def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Decode uint256 from ABI response at 32-byte slot offset.

    Args:
        hex_data: Hex string (without 0x prefix).
        slot: Which 32-byte word to read (0-indexed).
    """
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return int(word, 16)


def ticks_calldata(tick: int) -> str:
    return SELECTORS["ticks"] + encode_int24(tick)


def decode_tick_fee_growth(hex_data: str) -> TickFeeGrowth:
    return TickFeeGrowth(
        decode_uint(hex_data, FEE_GROWTH_OUTSIDE0_SLOT),
        decode_uint(hex_data, FEE_GROWTH_OUTSIDE1_SLOT),
    )


# ── JSON-RPC Client ─────────────────────────────────────────────────────


async def eth_call_batch(rpc_url: str, calls: List[Tuple[str, str]], timeout: int = 20) -> List[str]:
    """
    Send several ``eth_call`` requests as one JSON-RPC batch.

    Responses are matched back to ``calls`` by request id, since nodes may
    answer a batch out of order. Each result is a hex string without the
    0x prefix; a call that errored or got no answer yields "".
    """
    batch = [
        {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        }
        for request_id, (to, data) in enumerate(calls, start=1)
    ]

    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(rpc_url, json=batch)
        body = resp.json()

    # Nodes without batch support answer with a single object
    answers = body if isinstance(body, list) else [body]
    by_id = {a.get("id"): a for a in answers if isinstance(a, dict)}
    results = []
    for request_id in range(1, len(calls) + 1):
        result = (by_id.get(request_id) or {}).get("result")
        results.append(result[2:] if isinstance(result, str) else "")
    return results


async def fetch_tick_fee_growth(
    rpc_url: str,
    pool_address: str,
    tick_lower: int,
    tick_upper: int,
    retries: int = RpcAPI.MAX_RETRIES,
    delay: float = RpcAPI.RETRY_DELAY_SECONDS,
) -> Optional[Tuple[TickFeeGrowth, TickFeeGrowth]]:
    """
    Read feeGrowthOutside for both position bounds in one batch.

    Retries ``retries`` times with ``delay`` seconds between attempts.
    Returns None when every attempt fails; the caller then reports no
    uncollected fees rather than valuing missing ticks as zero.
    """
    calls = [
        (pool_address, ticks_calldata(tick_lower)),
        (pool_address, ticks_calldata(tick_upper)),
    ]
    for attempt in range(1, retries + 1):
        try:
            lower_hex, upper_hex = await eth_call_batch(
                rpc_url, calls, timeout=RpcAPI.TIMEOUT_SECONDS
            )
            return decode_tick_fee_growth(lower_hex), decode_tick_fee_growth(upper_hex)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            print(f"  ⚠️  ticks() attempt {attempt}/{retries} failed: {type(e).__name__}")
            if attempt < retries:
                await asyncio.sleep(delay)
    print(f"  ⚠️  Tick fee data unavailable for pool {pool_address[:12]}…, fees reported as 0")
    return None
