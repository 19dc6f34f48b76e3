#!/usr/bin/env python3
"""
LP Tracker — Uniswap V3 Subgraph Client
=======================================
Based on the official documentation:
  https://thegraph.com/docs/en/querying/querying-the-graph/
  https://docs.uniswap.org/api/subgraph/overview

Fetches raw position snapshots (position + ticks + tokens + pool state)
from The Graph gateway. Big integers arrive as decimal strings and are
passed through untouched; parsing happens in position_tracker.py.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from lp_tracker.central_config import SubgraphAPI


class SubgraphError(RuntimeError):
    """GraphQL ``errors`` payload or a transport failure after retries."""


# ── Rate Limiter (CWE-770 mitigation) ────────────────────────────────────


class _RateLimiter:
    """Token-bucket rate limiter to respect gateway query limits."""

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        now = time.monotonic()
        # Purge timestamps outside the current window
        self._timestamps = [t for t in self._timestamps if now - t < self._period]
        if len(self._timestamps) >= self._max:
            sleep_time = self._period - (now - self._timestamps[0]) + 0.1
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
        self._timestamps.append(time.monotonic())


_graph_limiter = _RateLimiter(
    max_requests=SubgraphAPI.RATE_LIMIT_PER_MINUTE, period_seconds=60
)


# ── Queries ──────────────────────────────────────────────────────────────

POSITION_FIELDS = """
      id
      owner
      liquidity
      tickLower {
        tickIdx
        feeGrowthOutside0X128
        feeGrowthOutside1X128
      }
      tickUpper {
        tickIdx
        feeGrowthOutside0X128
        feeGrowthOutside1X128
      }
      token0 {
        id
        symbol
        decimals
        name
      }
      token1 {
        id
        symbol
        decimals
        name
      }
      pool {
        id
        feeTier
        sqrtPrice
        tick
        token0Price
        token1Price
        liquidity
        feeGrowthGlobal0X128
        feeGrowthGlobal1X128
      }
      depositedToken0
      depositedToken1
      withdrawnToken0
      withdrawnToken1
      collectedFeesToken0
      collectedFeesToken1
      feeGrowthInside0LastX128
      feeGrowthInside1LastX128
"""


def build_positions_by_owner_query(
    wallet_address: str, first: int = SubgraphAPI.MAX_POSITIONS
) -> Dict[str, Any]:
    """Open positions of a wallet, largest liquidity first.

    Values go through GraphQL variables, never string interpolation.
    """
    query = (
        "query PositionsByOwner($owner: String!, $first: Int!) {\n"
        "  positions(\n"
        "    where: { owner: $owner, liquidity_gt: 0 }\n"
        "    first: $first\n"
        "    orderBy: liquidity\n"
        "    orderDirection: desc\n"
        "  ) {" + POSITION_FIELDS + "  }\n"
        "}"
    )
    return {
        "query": query,
        "variables": {"owner": wallet_address.strip().lower(), "first": first},
    }


def build_position_by_id_query(position_id: str) -> Dict[str, Any]:
    """A single position by NFT token id."""
    query = (
        "query PositionById($id: ID!) {\n"
        "  positions(where: { id: $id }) {" + POSITION_FIELDS + "  }\n"
        "}"
    )
    return {"query": query, "variables": {"id": str(position_id).strip()}}


def _print_api_key_hint() -> None:
    print("\n📌 The Graph gateway needs an API key:")
    print("   1. Go to https://thegraph.com/studio/apikeys/")
    print("   2. Create a free API key")
    print("   3. Add GRAPH_API_KEY=your-key-here to your .env file\n")


class SubgraphClient:
    """Async client for one chain's Uniswap V3 subgraph."""

    def __init__(self, chain: str, api_key: str = ""):
        self.chain = SubgraphAPI.normalize_chain(chain)
        self.api_key = api_key
        self.timeout = SubgraphAPI.TIMEOUT_SECONDS
        self.max_retries = SubgraphAPI.MAX_RETRIES
        self.retry_delay = SubgraphAPI.RETRY_DELAY_SECONDS
        # Validates the chain eagerly
        SubgraphAPI.endpoint_template(self.chain)

    @property
    def endpoint(self) -> str:
        return SubgraphAPI.get_endpoint(self.chain, self.api_key or "demo")

    async def query(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one GraphQL request and return its ``data`` object.

        Transport errors and 5xx/429 responses are retried; a GraphQL
        ``errors`` payload or a 401/403 is raised immediately.

        Raises:
            SubgraphError: on GraphQL errors or when retries are exhausted.
        """
        last_error: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
            for attempt in range(1, self.max_retries + 1):
                await _graph_limiter.acquire()
                try:
                    resp = await client.post(
                        self.endpoint,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                    )
                except httpx.HTTPError as e:
                    last_error = e
                    print(f"  ⚠️  {self.chain} subgraph attempt {attempt}/{self.max_retries} failed: {type(e).__name__}")
                    await self._backoff(attempt)
                    continue

                if resp.status_code in (401, 403):
                    _print_api_key_hint()
                    raise SubgraphError(f"Authentication failed (HTTP {resp.status_code})")
                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = SubgraphError(f"HTTP {resp.status_code}")
                    print(f"  ⚠️  {self.chain} subgraph HTTP {resp.status_code}, retrying…")
                    await self._backoff(attempt)
                    continue
                if resp.status_code != 200:
                    raise SubgraphError(f"HTTP {resp.status_code}")

                body = resp.json()
                errors = body.get("errors")
                if errors:
                    message = str(errors[0].get("message", errors[0]))
                    if "api key" in message.lower():
                        _print_api_key_hint()
                    raise SubgraphError(f"GraphQL error: {message}")
                return body.get("data") or {}

        raise SubgraphError(
            f"{self.chain} subgraph unreachable after {self.max_retries} attempts"
        ) from last_error

    async def _backoff(self, attempt: int) -> None:
        if attempt < self.max_retries:
            await asyncio.sleep(self.retry_delay * attempt)

    async def fetch_positions(
        self, wallet_address: Optional[str] = None, position_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Raw position snapshots for a wallet, or for one position id
        (the id wins when both are given).
        """
        if position_id:
            payload = build_position_by_id_query(position_id)
        elif wallet_address:
            payload = build_positions_by_owner_query(wallet_address)
        else:
            raise ValueError("wallet_address or position_id is required")

        data = await self.query(payload)
        positions = data.get("positions") or []
        if not positions:
            print(f"  ℹ️  No active positions found on {self.chain}")
        return positions
