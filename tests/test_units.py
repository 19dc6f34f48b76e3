"""
Unit Tests for LP Tracker Modules
=================================

Covers everything around the math engines:
  - stablecoins.py        (symbol classification, USD side)
  - fixed_point.py        (wrapping uint256)
  - central_config.py     (endpoints, env settings, validation)
  - rpc_helpers.py        (ABI encoding/decoding, tick fallback)
  - subgraph_client.py    (query builders, retries, GraphQL errors)
  - storage.py            (JSON history, hourly snapshot)
  - formatting.py         (currency, percentages, dates)
  - portfolio_metrics.py  (P/L, 24h fees, live selection)
  - position_tracker.py   (record building, RPC fallback, track runs)
  - html_generator.py     (XSS prevention, report file)
  - notifiers.py          (message building, disabled senders)
  - commands.py / run.py  (handlers, argparse parser structure)

All tests are offline — no network calls. Mock-based where needed.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from unittest.mock import patch, MagicMock, AsyncMock

import httpx
import pytest

from lp_tracker.fixed_point import Q96, Q128, MAX_UINT256, Uint256, wrapping_sub
from position_math import TickPriceConverter


# ── Fixtures ─────────────────────────────────────────────────────────────

TS_DAY1 = "2025-01-05T09:00:00+00:00"
TS_DAY2 = "2025-01-06T09:00:00+00:00"
LIQUIDITY = 10 ** 15


def raw_position(**overrides):
    """Subgraph ``positions`` entity for a WETH/USDT 0.3% position in range."""
    raw = {
        "id": "424242",
        "owner": "0xabc0000000000000000000000000000000000001",
        "liquidity": str(LIQUIDITY),
        "tickLower": {
            "tickIdx": "-197000",
            "feeGrowthOutside0X128": str(2 * Q128),
            "feeGrowthOutside1X128": "0",
        },
        "tickUpper": {
            "tickIdx": "-195500",
            "feeGrowthOutside0X128": str(3 * Q128),
            "feeGrowthOutside1X128": "0",
        },
        "token0": {"id": "0xweth", "symbol": "WETH", "decimals": "18", "name": "Wrapped Ether"},
        "token1": {"id": "0xusdt", "symbol": "USDT", "decimals": "6", "name": "Tether USD"},
        "pool": {
            "id": "0x4e68ccd3e89f51c3074ca5072bbac773960dfa36",
            "feeTier": "3000",
            "sqrtPrice": str(TickPriceConverter.sqrt_price_x96_from_tick(-196250)),
            "tick": "-196250",
            "token0Price": str(1 / 3000),
            "token1Price": "3000",
            "feeGrowthGlobal0X128": str(10 * Q128),
            "feeGrowthGlobal1X128": "0",
        },
        "feeGrowthInside0LastX128": str(Q128),
        "feeGrowthInside1LastX128": "0",
    }
    raw.update(overrides)
    return raw


def make_record(
    pid="1",
    ts=TS_DAY2,
    value=1000.0,
    fees=10.0,
    current=3000.0,
    lower=2500.0,
    upper=3500.0,
    symbols=("WETH", "USDT"),
    chain="ethereum",
):
    return {
        "timestamp": ts,
        "date": ts[:10],
        "position_id": pid,
        "owner": "0xabc",
        "chain": chain,
        "token0": {"symbol": symbols[0], "amount": 0.1, "value_usd": value / 2},
        "token1": {"symbol": symbols[1], "amount": 500.0, "value_usd": value / 2},
        "liquidity": "1",
        "tick_lower": -197000,
        "tick_upper": -195500,
        "fee": 3000,
        "uncollected_fees": {"total_usd": fees},
        "total_value_usd": value,
        "pool": {"current_tick": -196250},
        "price_range": {"lower": lower, "upper": upper, "current": current, "currency": symbols[1]},
    }


def mock_async_client(MockClient, response=None, side_effect=None):
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    MockClient.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    MockClient.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def json_response(body, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


# ═══════════════════════════════════════════════════════════════════════════
# 1. stablecoins.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.stablecoins import (
    STABLECOIN_SYMBOLS,
    StableSide,
    has_stablecoin,
    is_stablecoin,
    stablecoin_side,
)


class TestStablecoins:

    @pytest.mark.parametrize("sym", ["USDC", "USDT", "DAI", "FRAX", "GHO", "USDC.E", "USDBC"])
    def test_known_stablecoins_present(self, sym):
        assert sym in STABLECOIN_SYMBOLS

    @pytest.mark.parametrize("sym", ["usdc", " Usdt ", "dai"])
    def test_case_and_whitespace_insensitive(self, sym):
        assert is_stablecoin(sym)

    @pytest.mark.parametrize("sym", ["WETH", "WBTC", "UNI", "EURC", "", None])
    def test_not_stable(self, sym):
        assert not is_stablecoin(sym)

    def test_has_stablecoin(self):
        assert has_stablecoin("WETH", "USDC")
        assert not has_stablecoin("WETH", "WBTC")

    @pytest.mark.parametrize("s0,s1,expected", [
        ("USDC", "WETH", StableSide.TOKEN0),
        ("WETH", "USDT", StableSide.TOKEN1),
        ("USDC", "USDT", StableSide.TOKEN0),
        ("WETH", "WBTC", StableSide.NONE),
    ])
    def test_stablecoin_side(self, s0, s1, expected):
        assert stablecoin_side(s0, s1) is expected


# ═══════════════════════════════════════════════════════════════════════════
# 2. fixed_point.py
# ═══════════════════════════════════════════════════════════════════════════

class TestUint256:

    def test_negative_wraps(self):
        assert Uint256(-1) == MAX_UINT256

    def test_add_overflow_wraps(self):
        result = Uint256(MAX_UINT256) + 1
        assert result == 0
        assert isinstance(result, Uint256)

    def test_sub_underflow_wraps(self):
        assert Uint256(0) - 1 == MAX_UINT256

    def test_reflected_sub(self):
        assert 1 - Uint256(2) == MAX_UINT256

    def test_mul_wraps(self):
        assert Uint256(2 ** 255) * 2 == 0

    def test_repr(self):
        assert repr(Uint256(7)) == "Uint256(7)"

    @pytest.mark.parametrize("value,expected", [(None, 0), ("", 0), ("123", 123), (str(Q128), Q128)])
    def test_from_decimal(self, value, expected):
        assert Uint256.from_decimal(value) == expected

    def test_wrapping_sub(self):
        assert wrapping_sub(0, 1) == MAX_UINT256
        assert wrapping_sub(5, 3) == 2


# ═══════════════════════════════════════════════════════════════════════════
# 3. central_config.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.central_config import (
    ConfigError,
    SubgraphAPI,
    TrackerSettings,
    load_settings,
    validate_settings,
)

_ENV_VARS = (
    "WALLET_ADDRESS", "POSITION_ID", "GRAPH_API_KEY", "DATA_FILE_PATH", "REPORT_PATH",
    "TIMEZONE", "CHAINS", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID",
    "DISCORD_WEBHOOK_URL", "REPORT_URL",
)


class TestSubgraphAPI:

    def test_endpoint_substitutes_key(self):
        url = SubgraphAPI.get_endpoint("ethereum", "KEY123")
        assert url == (
            "https://gateway.thegraph.com/api/KEY123/subgraphs/id/"
            "5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV"
        )

    def test_template_keeps_placeholder(self):
        assert SubgraphAPI.API_KEY_PLACEHOLDER in SubgraphAPI.endpoint_template("arbitrum")

    @pytest.mark.parametrize("alias,chain", [("eth", "ethereum"), (" ARB ", "arbitrum"), ("ethereum", "ethereum")])
    def test_normalize_chain(self, alias, chain):
        assert SubgraphAPI.normalize_chain(alias) == chain

    def test_unsupported_chain(self):
        with pytest.raises(ValueError, match="Unsupported chain"):
            SubgraphAPI.endpoint_template("solana")

    def test_frozen(self):
        with pytest.raises(Exception):
            SubgraphAPI().MAX_POSITIONS = 5


class TestSettings:

    @pytest.fixture
    def clean_env(self, monkeypatch, tmp_path):
        for name in _ENV_VARS:
            # set first so teardown also removes values loaded from .env files
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
        env_file = tmp_path / ".env"
        env_file.write_text("")
        return monkeypatch, str(env_file)

    def test_defaults(self, clean_env):
        _, env_file = clean_env
        settings = load_settings(env_file)
        assert settings.wallet_address is None
        assert settings.chains == ("ethereum", "arbitrum")
        assert settings.data_file_path == "./data/positions.json"
        assert settings.timezone == "Europe/Sofia"

    def test_reads_environment(self, clean_env):
        monkeypatch, env_file = clean_env
        monkeypatch.setenv("WALLET_ADDRESS", " 0xWallet ")
        monkeypatch.setenv("CHAINS", "eth, arb")
        monkeypatch.setenv("REPORT_URL", "https://example.org/report")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
        settings = load_settings(env_file)
        assert settings.wallet_address == "0xWallet"
        assert settings.chains == ("ethereum", "arbitrum")
        assert settings.report_url == "https://example.org/report"
        assert settings.telegram_bot_token is None

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("POSITION_ID=777\n")
        settings = load_settings(str(env_file))
        assert settings.position_id == "777"

    def test_latest_file_path(self):
        settings = TrackerSettings(data_file_path="data/positions.json")
        assert settings.latest_file_path == str(Path("data/positions.latest.json"))

    def test_validate_requires_target(self):
        with pytest.raises(ConfigError):
            validate_settings(TrackerSettings())

    def test_validate_rejects_unknown_chain(self):
        with pytest.raises(ConfigError, match="solana"):
            validate_settings(TrackerSettings(wallet_address="0xabc", chains=("solana",)))

    def test_validate_ok(self):
        assert validate_settings(TrackerSettings(position_id="1")) is None

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)


# ═══════════════════════════════════════════════════════════════════════════
# 4. rpc_helpers.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.rpc_helpers import (
    TickFeeGrowth,
    decode_tick_fee_growth,
    decode_uint,
    encode_int24,
    eth_call_batch,
    fetch_tick_fee_growth,
    ticks_calldata,
)


def _words(*values):
    return "".join(format(v, "064x") for v in values)


class TestAbiCodec:

    def test_encode_zero(self):
        assert encode_int24(0) == "0" * 64

    def test_encode_minus_one(self):
        assert encode_int24(-1) == "f" * 64

    def test_encode_positive(self):
        assert encode_int24(887272) == format(887272, "064x")

    def test_encode_negative_tick(self):
        assert encode_int24(-887220).endswith("f2764c")
        assert len(encode_int24(-887220)) == 64

    def test_ticks_calldata(self):
        data = ticks_calldata(60)
        assert data.startswith("0xf30dba93")
        assert len(data) == 2 + 8 + 64

    def test_decode_uint_slot(self):
        assert decode_uint(_words(1, 2, 3), 2) == 3

    def test_decode_uint_short_raises(self):
        with pytest.raises(ValueError, match="too short"):
            decode_uint(_words(1), 1)

    def test_decode_tick_fee_growth(self):
        data = _words(10, 20, 5 * Q128, 7, 0, 0, 0, 1)
        assert decode_tick_fee_growth(data) == TickFeeGrowth(5 * Q128, 7)


class TestEthCallBatch:

    def test_results_sorted_by_id(self):
        body = [
            {"jsonrpc": "2.0", "id": 2, "result": "0x" + "b" * 64},
            {"jsonrpc": "2.0", "id": 1, "result": "0x" + "a" * 64},
        ]
        with patch("lp_tracker.rpc_helpers.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, json_response(body))
            result = asyncio.run(eth_call_batch("http://fake", [("0xP", "0x1"), ("0xP", "0x2")]))
        assert result == ["a" * 64, "b" * 64]
        payload = client.post.call_args.kwargs["json"]
        assert [p["method"] for p in payload] == ["eth_call", "eth_call"]

    def test_failed_call_is_empty_string(self):
        body = [{"jsonrpc": "2.0", "id": 1, "error": {"message": "reverted"}}]
        with patch("lp_tracker.rpc_helpers.httpx.AsyncClient") as MockClient:
            mock_async_client(MockClient, json_response(body))
            result = asyncio.run(eth_call_batch("http://fake", [("0xP", "0x1")]))
        assert result == [""]


class TestFetchTickFeeGrowth:

    def test_success(self):
        lower = _words(0, 0, 11, 12)
        upper = _words(0, 0, 21, 22)
        with patch("lp_tracker.rpc_helpers.eth_call_batch", new=AsyncMock(return_value=[lower, upper])):
            result = asyncio.run(fetch_tick_fee_growth("http://fake", "0xpool", -60, 60))
        assert result == (TickFeeGrowth(11, 12), TickFeeGrowth(21, 22))

    def test_all_attempts_fail_returns_none(self):
        failing = AsyncMock(side_effect=httpx.ConnectError("down"))
        with patch("lp_tracker.rpc_helpers.eth_call_batch", new=failing):
            result = asyncio.run(
                fetch_tick_fee_growth("http://fake", "0xpool", -60, 60, retries=2, delay=0)
            )
        assert result is None
        assert failing.await_count == 2

    def test_short_response_retried(self):
        good = [_words(0, 0, 1, 2), _words(0, 0, 3, 4)]
        calls = AsyncMock(side_effect=[["", ""], good])
        with patch("lp_tracker.rpc_helpers.eth_call_batch", new=calls):
            result = asyncio.run(fetch_tick_fee_growth("http://fake", "0xpool", 0, 10, delay=0))
        assert result == (TickFeeGrowth(1, 2), TickFeeGrowth(3, 4))


# ═══════════════════════════════════════════════════════════════════════════
# 5. subgraph_client.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.subgraph_client import (
    SubgraphClient,
    SubgraphError,
    build_position_by_id_query,
    build_positions_by_owner_query,
)


class TestQueryBuilders:

    def test_owner_query_uses_variables(self):
        payload = build_positions_by_owner_query(" 0xABCdef ")
        assert payload["variables"] == {"owner": "0xabcdef", "first": 100}
        assert "$owner" in payload["query"]
        assert "0xabcdef" not in payload["query"]

    def test_owner_query_filters_closed_positions(self):
        assert "liquidity_gt: 0" in build_positions_by_owner_query("0x1")["query"]

    def test_id_query(self):
        payload = build_position_by_id_query(" 123 ")
        assert payload["variables"] == {"id": "123"}

    @pytest.mark.parametrize("field", [
        "feeGrowthOutside0X128", "feeGrowthGlobal1X128", "feeGrowthInside0LastX128", "sqrtPrice",
    ])
    def test_query_requests_fee_fields(self, field):
        assert field in build_position_by_id_query("1")["query"]


class TestSubgraphClient:

    def _client(self):
        client = SubgraphClient("eth", "KEY")
        client.retry_delay = 0
        return client

    def test_unsupported_chain(self):
        with pytest.raises(ValueError):
            SubgraphClient("solana")

    def test_endpoint(self):
        assert "/api/KEY/" in SubgraphClient("ethereum", "KEY").endpoint
        assert "/api/demo/" in SubgraphClient("arbitrum").endpoint

    def test_query_returns_data(self):
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            mock_async_client(MockClient, json_response({"data": {"positions": [{"id": "1"}]}}))
            data = asyncio.run(self._client().query({"query": "{}"}))
        assert data == {"positions": [{"id": "1"}]}

    def test_graphql_errors_raise(self):
        body = {"errors": [{"message": "bad query"}]}
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            mock_async_client(MockClient, json_response(body))
            with pytest.raises(SubgraphError, match="bad query"):
                asyncio.run(self._client().query({"query": "{}"}))

    def test_auth_failure_not_retried(self):
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, json_response({}, status_code=401))
            with pytest.raises(SubgraphError, match="Authentication"):
                asyncio.run(self._client().query({"query": "{}"}))
        assert client.post.await_count == 1

    def test_server_error_retried(self):
        responses = [json_response({}, status_code=503), json_response({"data": {"ok": 1}})]
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, side_effect=responses)
            data = asyncio.run(self._client().query({"query": "{}"}))
        assert data == {"ok": 1}
        assert client.post.await_count == 2

    def test_transport_errors_exhaust_retries(self):
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, side_effect=httpx.ConnectError("down"))
            with pytest.raises(SubgraphError, match="unreachable"):
                asyncio.run(self._client().query({"query": "{}"}))
        assert client.post.await_count == 3

    def test_fetch_positions_requires_target(self):
        with pytest.raises(ValueError):
            asyncio.run(self._client().fetch_positions())

    def test_fetch_positions_prefers_id(self):
        with patch("lp_tracker.subgraph_client.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, json_response({"data": {"positions": []}}))
            result = asyncio.run(self._client().fetch_positions("0xwallet", "99"))
        assert result == []
        assert client.post.call_args.kwargs["json"]["variables"] == {"id": "99"}


# ═══════════════════════════════════════════════════════════════════════════
# 6. storage.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.storage import PositionStore


class TestPositionStore:

    def test_missing_file_is_empty(self, tmp_path):
        assert PositionStore(str(tmp_path / "none.json")).load() == []

    def test_append_accumulates(self, tmp_path):
        store = PositionStore(str(tmp_path / "data" / "positions.json"))
        store.append([make_record(ts=TS_DAY1)])
        combined = store.append([make_record(ts=TS_DAY2)])
        assert len(combined) == 2
        assert [r["timestamp"] for r in store.load()] == [TS_DAY1, TS_DAY2]

    def test_default_latest_path(self, tmp_path):
        store = PositionStore(str(tmp_path / "positions.json"))
        assert store.latest_path.name == "positions.latest.json"

    def test_latest_overwritten(self, tmp_path):
        store = PositionStore(str(tmp_path / "positions.json"))
        store.save_latest([make_record(pid="1")])
        store.save_latest([make_record(pid="2")])
        assert [r["position_id"] for r in store.load_latest()] == ["2"]
        assert store.load() == []

    def test_corrupt_file_is_empty(self, tmp_path, capsys):
        path = tmp_path / "positions.json"
        path.write_text("{not json")
        assert PositionStore(str(path)).load() == []
        assert "Could not read" in capsys.readouterr().out

    def test_non_list_is_empty(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps({"a": 1}))
        assert PositionStore(str(path)).load() == []


# ═══════════════════════════════════════════════════════════════════════════
# 7. formatting.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.formatting import (
    format_currency,
    format_percentage,
    format_table_date,
    parse_timestamp,
    percentage_with_class,
)


class TestFormatting:

    @pytest.mark.parametrize("value,sign,expected", [
        (1234.5, False, "$1,234.50"),
        (-3, False, "-$3.00"),
        (2, True, "+$2.00"),
        (0, True, "$0.00"),
        (None, False, "$0.00"),
    ])
    def test_format_currency(self, value, sign, expected):
        assert format_currency(value, show_sign=sign) == expected

    def test_format_percentage(self):
        assert format_percentage(12.346) == "12.35%"
        assert format_percentage(0, show_sign=True) == "+0.00%"
        assert format_percentage(-1.5, show_sign=True) == "-1.50%"

    @pytest.mark.parametrize("value,expected", [
        (1.5, ("+1.50%", "positive")),
        (-1.5, ("-1.50%", "negative")),
        (0, ("0.00%", "neutral")),
    ])
    def test_percentage_with_class(self, value, expected):
        assert percentage_with_class(value) == expected

    def test_parse_timestamp_zulu(self):
        assert parse_timestamp("2025-01-06T07:00:00Z") == datetime(2025, 1, 6, 7, tzinfo=timezone.utc)

    def test_parse_timestamp_naive_is_utc(self):
        assert parse_timestamp("2025-01-06T07:00:00").tzinfo is not None

    def test_format_table_date_utc(self):
        assert format_table_date("2025-01-06T07:00:00+00:00", "UTC") == "MON, JAN 6, 07:00"


# ═══════════════════════════════════════════════════════════════════════════
# 8. portfolio_metrics.py
# ═══════════════════════════════════════════════════════════════════════════

from portfolio_metrics import (
    PortfolioMetricsCalculator,
    average_daily_fees,
    build_history_map,
    fees_24h,
    format_fee_tier,
    group_by_timestamp,
    is_eth_pool,
    is_in_range,
    latest_positions,
    position_age,
    previous_positions,
    price_change,
    profit_loss,
    select_live_positions,
    value_change,
)


class TestRangeStatus:

    def test_in_range_by_price(self):
        assert is_in_range(make_record(current=3000.0))

    def test_out_of_range_by_price(self):
        assert not is_in_range(make_record(current=3600.0))

    def test_bounds_inclusive(self):
        assert is_in_range(make_record(current=2500.0))

    def test_tick_fallback(self):
        record = make_record()
        record["price_range"] = None
        assert is_in_range(record)
        record["pool"]["current_tick"] = record["tick_upper"]
        assert not is_in_range(record)

    def test_no_tick_is_out_of_range(self):
        record = make_record()
        record["price_range"] = None
        record["pool"] = {}
        assert not is_in_range(record)

    def test_is_eth_pool(self):
        assert is_eth_pool(make_record(symbols=("WETH", "USDC")))
        assert not is_eth_pool(make_record(symbols=("WBTC", "WETH")))


class TestHistory:

    def test_group_and_select_batches(self):
        records = [make_record(ts=TS_DAY1), make_record(ts=TS_DAY2)]
        grouped = group_by_timestamp(records)
        assert latest_positions(grouped)[0]["timestamp"] == TS_DAY2
        assert previous_positions(grouped)[0]["timestamp"] == TS_DAY1

    def test_single_batch_has_no_previous(self):
        assert previous_positions(group_by_timestamp([make_record()])) is None

    def test_history_newest_first(self):
        history = build_history_map([make_record(ts=TS_DAY1), make_record(ts=TS_DAY2)])
        assert [r["timestamp"] for r in history["1"]] == [TS_DAY2, TS_DAY1]


class TestPositionCalculations:

    def test_profit_loss(self):
        history = [make_record(value=1100, fees=30), make_record(ts=TS_DAY1, value=1000, fees=10)]
        pnl, pct = profit_loss(history)
        assert pnl == pytest.approx(120.0)
        assert pct == pytest.approx(12.0)

    def test_profit_loss_empty(self):
        assert profit_loss([]) == (0.0, 0.0)

    def test_average_daily_fees(self):
        history = [make_record(fees=30), make_record(fees=25), make_record(fees=10)]
        assert average_daily_fees(history) == pytest.approx(10.0)

    def test_average_daily_fees_ignores_collections(self):
        history = [make_record(fees=5), make_record(fees=30), make_record(fees=10)]
        assert average_daily_fees(history) == pytest.approx(20.0)

    def test_fees_24h_matches_positions(self):
        current = [make_record(pid="A", fees=30), make_record(pid="B", fees=5)]
        previous = [make_record(pid="A", ts=TS_DAY1, fees=10)]
        assert fees_24h(current, previous) == pytest.approx(20.0)
        assert fees_24h(current, None) == 0.0

    def test_value_change(self):
        assert value_change(110.0, 100.0) == pytest.approx((10.0, 10.0))
        assert value_change(0.0, 100.0) is None

    def test_price_change(self):
        assert price_change(3300.0, 3000.0) == pytest.approx((300.0, 10.0))
        assert price_change(1.0, 0.0) == (1.0, 0.0)

    @pytest.mark.parametrize("ts,expected", [
        ("2025-01-10T08:00:00+00:00", (0, "New position")),
        ("2025-01-09T08:00:00+00:00", (1, "1 day old")),
        ("2025-01-06T09:00:00+00:00", (4, "4 days old")),
    ])
    def test_position_age(self, ts, expected):
        now = datetime(2025, 1, 10, 9, tzinfo=timezone.utc)
        assert position_age(ts, now) == expected

    @pytest.mark.parametrize("fee,expected", [(100, "0.01"), (500, "0.05"), (3000, "0.30"), (10000, "1.00")])
    def test_format_fee_tier(self, fee, expected):
        assert format_fee_tier(fee) == expected


class TestLiveSelection:

    def _history(self):
        return build_history_map([make_record(ts=TS_DAY1, fees=10), make_record(ts=TS_DAY2, fees=20)])

    def test_newer_hourly_is_live(self):
        hourly = [make_record(ts="2025-01-06T15:00:00+00:00", fees=25)]
        selection = select_live_positions(hourly, self._history())
        assert selection.live_is_hourly
        assert selection.current == hourly
        assert selection.reference[0]["timestamp"] == TS_DAY2

    def test_stale_hourly_ignored(self):
        hourly = [make_record(ts="2025-01-05T15:00:00+00:00")]
        selection = select_live_positions(hourly, self._history())
        assert not selection.live_is_hourly
        assert selection.current[0]["timestamp"] == TS_DAY2
        assert selection.reference[0]["timestamp"] == TS_DAY1

    def test_daily_live_row_removed_from_history(self):
        history = self._history()
        selection = select_live_positions(None, history)
        live, rows = selection.table_rows("1", history["1"])
        assert live["timestamp"] == TS_DAY2
        assert [r["timestamp"] for r in rows] == [TS_DAY1]

    def test_hourly_live_row_keeps_history(self):
        history = self._history()
        selection = select_live_positions([make_record(ts="2025-01-07T01:00:00+00:00")], history)
        _, rows = selection.table_rows("1", history["1"])
        assert len(rows) == 2


class TestPortfolioMetricsCalculator:

    def test_two_day_portfolio(self):
        records = [
            make_record(ts=TS_DAY1, value=1000.0, fees=10.0, current=3000.0),
            make_record(ts=TS_DAY2, value=1100.0, fees=30.0, current=3300.0),
        ]
        metrics = PortfolioMetricsCalculator().calculate(records)
        assert metrics.total_value_usd == pytest.approx(1100.0)
        assert metrics.total_fees_usd == pytest.approx(30.0)
        assert metrics.total_pnl == pytest.approx(120.0)
        assert metrics.total_pnl_percentage == pytest.approx(12.0)
        assert metrics.total_24h_fees == pytest.approx(20.0)
        assert metrics.in_range_count == 1
        assert metrics.out_of_range_count == 0
        assert metrics.current_eth_price == pytest.approx(3300.0)
        assert metrics.eth_price_24h_change_percentage == pytest.approx(10.0)

        position = metrics.positions[0]
        assert position.pool_name == "WETH/USDT"
        assert position.fee_tier == "0.30"
        assert position.value_24h_change == pytest.approx(100.0)
        assert position.fees_24h_change == pytest.approx(20.0)

        dashboard = metrics.dashboard
        assert dashboard.fees_24h == pytest.approx(20.0)
        assert dashboard.total_value_change == pytest.approx(10.0)
        assert dashboard.eth_price_change == pytest.approx(10.0)

    def test_empty(self):
        metrics = PortfolioMetricsCalculator().calculate([])
        assert metrics.total_value_usd == 0
        assert metrics.positions == []
        assert metrics.current_eth_price is None


# ═══════════════════════════════════════════════════════════════════════════
# 9. position_tracker.py
# ═══════════════════════════════════════════════════════════════════════════

from position_tracker import (
    PositionTracker,
    build_position_record,
    needs_tick_fallback,
    snapshot_from_graph,
)


class TestSnapshotParsing:

    def test_price_naming_swapped(self):
        _, pool, token0, token1 = snapshot_from_graph(raw_position())
        assert pool.token0_price_in_token1 == 3000.0
        assert pool.token1_price_in_token0 == pytest.approx(1 / 3000)
        assert (token0.symbol, token0.decimals) == ("WETH", 18)
        assert (token1.symbol, token1.decimals) == ("USDT", 6)

    def test_position_fields(self):
        position, pool, _, _ = snapshot_from_graph(raw_position())
        assert (position.tick_lower, position.tick_upper) == (-197000, -195500)
        assert position.liquidity == LIQUIDITY
        assert position.fee_growth_outside0_upper_x128 == 3 * Q128
        assert pool.current_tick == -196250

    def test_missing_symbol_defaults(self):
        _, _, token0, _ = snapshot_from_graph(raw_position(token0={"id": "0x1", "decimals": "18"}))
        assert token0.symbol == "UNK"

    def test_needs_tick_fallback(self):
        assert not needs_tick_fallback(raw_position())
        raw = raw_position(tickLower={"tickIdx": "-197000", "feeGrowthOutside0X128": None})
        assert needs_tick_fallback(raw)


class TestBuildPositionRecord:

    def _record(self):
        return build_position_record(raw_position(), "ethereum", TS_DAY2)

    def test_identity_fields(self):
        record = self._record()
        assert record["position_id"] == "424242"
        assert record["chain"] == "ethereum"
        assert record["date"] == "2025-01-06"
        assert record["fee"] == 3000
        assert record["liquidity"] == str(LIQUIDITY)

    def test_in_range_holds_both_tokens(self):
        record = self._record()
        assert record["token0"]["amount"] > 0
        assert record["token1"]["amount"] > 0
        assert int(record["token0"]["amount_raw"]) > 0

    def test_total_value(self):
        record = self._record()
        expected = record["token0"]["amount"] * 3000.0 + record["token1"]["amount"]
        assert record["total_value_usd"] == pytest.approx(expected)

    def test_uncollected_fees(self):
        fees = self._record()["uncollected_fees"]
        # inside = 10 − 2 − 3 = 5, last = 1 → 4 · L
        assert fees["token0_raw"] == str(4 * LIQUIDITY)
        assert fees["token1_raw"] == "0"
        assert fees["token0_usd"] == pytest.approx(0.004 * 3000.0)
        assert fees["total_usd"] == pytest.approx(12.0)

    def test_price_range_and_pool(self):
        record = self._record()
        assert record["price_range"]["currency"] == "USDT"
        assert record["price_range"]["current"] == 3000.0
        assert record["price_range"]["lower"] < 3000.0 < record["price_range"]["upper"]
        assert record["pool"]["current_price"] == pytest.approx(3000.0, rel=0.01)
        assert 0 < int(record["pool"]["sqrt_price_x96"]) < Q96

    def test_json_serialisable(self):
        json.dumps(self._record())

    def test_zero_tick_outside_values_report_no_fees(self):
        raw = raw_position(
            tickLower={"tickIdx": "-197000", "feeGrowthOutside0X128": "0", "feeGrowthOutside1X128": "0"},
            tickUpper={"tickIdx": "-195500", "feeGrowthOutside0X128": "0", "feeGrowthOutside1X128": "0"},
        )
        fees = build_position_record(raw, "ethereum", TS_DAY2)["uncollected_fees"]
        assert fees["token0_raw"] == "0"
        assert fees["token1_raw"] == "0"
        assert fees["total_usd"] == 0

    def test_missing_tick_outside_values_report_no_fees(self):
        raw = raw_position(tickLower={"tickIdx": "-197000"}, tickUpper={"tickIdx": "-195500"})
        fees = build_position_record(raw, "ethereum", TS_DAY2)["uncollected_fees"]
        assert fees["token0_raw"] == "0"
        assert fees["total_usd"] == 0

    def test_one_observed_bound_still_computes_fees(self):
        raw = raw_position(
            tickLower={"tickIdx": "-197000", "feeGrowthOutside0X128": "0", "feeGrowthOutside1X128": "0"},
        )
        fees = build_position_record(raw, "ethereum", TS_DAY2)["uncollected_fees"]
        # inside = 10 − 0 − 3 = 7, last = 1 → 6 · L
        assert fees["token0_raw"] == str(6 * LIQUIDITY)

    def test_zero_pool_price_has_no_price_range(self):
        pool = dict(raw_position()["pool"])
        pool.update(
            token0Price="0",
            token1Price="0",
            tick="-100000",
            sqrtPrice=str(TickPriceConverter.sqrt_price_x96_from_tick(-100000)),
        )
        record = build_position_record(raw_position(pool=pool), "ethereum", TS_DAY2)
        assert record["price_range"] is None
        assert not is_in_range(record)
        json.dumps(record)

    def test_zero_pool_price_in_range_by_tick(self):
        pool = dict(raw_position()["pool"])
        pool.update(token0Price="0", token1Price="0")
        record = build_position_record(raw_position(pool=pool), "ethereum", TS_DAY2)
        assert record["price_range"] is None
        assert is_in_range(record)


class TestPositionTracker:

    def _settings(self, tmp_path, **kwargs):
        return TrackerSettings(
            wallet_address="0xabc",
            chains=("ethereum",),
            data_file_path=str(tmp_path / "data" / "positions.json"),
            report_path=str(tmp_path / "docs" / "index.html"),
            timezone="UTC",
            **kwargs,
        )

    def test_fetch_chain_uses_rpc_fallback(self, tmp_path):
        raw = raw_position(
            tickLower={"tickIdx": "-197000"},
            tickUpper={"tickIdx": "-195500"},
        )
        ticks = (TickFeeGrowth(2 * Q128, 0), TickFeeGrowth(3 * Q128, 0))
        with patch("position_tracker.SubgraphClient") as MockClient, \
                patch("position_tracker.fetch_tick_fee_growth", new=AsyncMock(return_value=ticks)) as rpc:
            MockClient.return_value.fetch_positions = AsyncMock(return_value=[raw])
            tracker = PositionTracker(self._settings(tmp_path))
            records = asyncio.run(tracker.fetch_chain("ethereum", TS_DAY2))
        assert rpc.await_count == 1
        assert records[0]["uncollected_fees"]["token0_raw"] == str(4 * LIQUIDITY)

    def test_fetch_chain_rpc_unavailable_reports_no_fees(self, tmp_path):
        raw = raw_position(tickLower={"tickIdx": "-197000"}, tickUpper={"tickIdx": "-195500"})
        with patch("position_tracker.SubgraphClient") as MockClient, \
                patch("position_tracker.fetch_tick_fee_growth", new=AsyncMock(return_value=None)) as rpc:
            MockClient.return_value.fetch_positions = AsyncMock(return_value=[raw])
            tracker = PositionTracker(self._settings(tmp_path))
            records = asyncio.run(tracker.fetch_chain("ethereum", TS_DAY2))
        assert rpc.await_count == 1
        assert records[0]["uncollected_fees"]["token0_raw"] == "0"
        assert records[0]["uncollected_fees"]["total_usd"] == 0

    def test_fetch_chain_without_rpc_url_reports_no_fees(self, tmp_path):
        raw = raw_position(tickLower={"tickIdx": "-197000"}, tickUpper={"tickIdx": "-195500"})
        settings = self._settings(tmp_path, rpc_urls=MappingProxyType({}))
        with patch("position_tracker.SubgraphClient") as MockClient, \
                patch("position_tracker.fetch_tick_fee_growth", new=AsyncMock()) as rpc:
            MockClient.return_value.fetch_positions = AsyncMock(return_value=[raw])
            records = asyncio.run(PositionTracker(settings).fetch_chain("ethereum", TS_DAY2))
        rpc.assert_not_awaited()
        assert records[0]["uncollected_fees"]["token0_raw"] == "0"
        assert records[0]["uncollected_fees"]["token1_raw"] == "0"

    def test_fetch_chain_subgraph_error(self, tmp_path, capsys):
        with patch("position_tracker.SubgraphClient") as MockClient:
            MockClient.return_value.fetch_positions = AsyncMock(side_effect=SubgraphError("boom"))
            tracker = PositionTracker(self._settings(tmp_path))
            assert asyncio.run(tracker.fetch_chain("ethereum", TS_DAY2)) == []
        assert "boom" in capsys.readouterr().out

    def test_daily_track_appends_and_reports(self, tmp_path):
        settings = self._settings(tmp_path)
        record = build_position_record(raw_position(), "ethereum", TS_DAY2)
        with patch.object(PositionTracker, "fetch_all", new=AsyncMock(return_value=[record])):
            asyncio.run(PositionTracker(settings).track())
        assert len(json.loads(Path(settings.data_file_path).read_text())) == 1
        assert Path(settings.report_path).exists()

    def test_hourly_track_keeps_history(self, tmp_path):
        settings = self._settings(tmp_path)
        record = build_position_record(raw_position(), "ethereum", TS_DAY2)
        with patch.object(PositionTracker, "fetch_all", new=AsyncMock(return_value=[record])):
            asyncio.run(PositionTracker(settings).track(hourly=True))
        assert not Path(settings.data_file_path).exists()
        assert len(json.loads(Path(settings.latest_file_path).read_text())) == 1

    def test_no_positions(self, tmp_path):
        with patch.object(PositionTracker, "fetch_all", new=AsyncMock(return_value=[])):
            assert asyncio.run(PositionTracker(self._settings(tmp_path)).track()) == []

    def test_fetch_all_validates(self, tmp_path):
        tracker = PositionTracker(TrackerSettings(data_file_path=str(tmp_path / "p.json")))
        with pytest.raises(ConfigError):
            asyncio.run(tracker.fetch_all())


# ═══════════════════════════════════════════════════════════════════════════
# 10. html_styles.py / html_generator.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.html_styles import build_css
from html_generator import _safe, _safe_num, build_html, generate_report


class TestHtmlHelpers:

    def test_safe_escapes(self):
        assert _safe("<b>\"x\"</b>") == "&lt;b&gt;&quot;x&quot;&lt;/b&gt;"
        assert _safe("'") == "&#x27;"

    def test_safe_none(self):
        assert _safe(None) == "Unknown"
        assert _safe(None, "") == ""

    def test_safe_num(self):
        assert _safe_num(1234.5678) == "1,234.57"
        assert _safe_num(None) == "0.00"
        assert _safe_num("abc", 1) == "0.0"

    def test_css_block(self):
        css = build_css()
        assert "<style>" in css
        assert ".status-in-range" in css

    def test_css_rejects_injection(self):
        with pytest.raises(ValueError):
            build_css(in_range=("red;}</style><script>", "#fff", "#000"))


class TestBuildHtml:

    def test_page_structure(self):
        page = build_html([make_record(ts=TS_DAY1), make_record(ts=TS_DAY2)])
        assert page.startswith("<!DOCTYPE html>")
        assert "WETH/USDT" in page
        assert "LIVE" in page
        assert "In Range" in page

    def test_symbols_escaped(self):
        page = build_html([make_record(symbols=("<script>alert(1)</script>", "USDT"))])
        assert "<script>alert(1)</script>" not in page
        assert "&lt;script&gt;" in page

    def test_hourly_live_row(self):
        page = build_html(
            [make_record(ts=TS_DAY1), make_record(ts=TS_DAY2)],
            [make_record(ts="2025-01-06T15:00:00+00:00")],
        )
        assert page.count('class="live"') == 1
        assert "15:00" in page

    def test_generate_report_writes_file(self, tmp_path):
        path = generate_report([make_record()], None, str(tmp_path / "out" / "index.html"))
        assert path.exists()
        assert "Uniswap V3 Positions" in path.read_text(encoding="utf-8")


# ═══════════════════════════════════════════════════════════════════════════
# 11. notifiers.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.notifiers import (
    DiscordNotifier,
    TelegramNotifier,
    build_discord_embed,
    build_telegram_message,
)


def _metrics(records):
    return PortfolioMetricsCalculator().calculate(records)


class TestTelegramMessage:

    NOW = datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc)

    def test_summary(self):
        records = [make_record()]
        text = build_telegram_message(records, _metrics(records), now=self.NOW)
        assert text.startswith("<b>🦄 Uniswap Position Update</b>")
        assert "2025-01-06 09:30" in text
        assert "Total P/L" in text
        assert "ETH Price" in text

    def test_position_limit(self):
        records = [make_record(pid=str(i), value=100.0 + i) for i in range(12)]
        text = build_telegram_message(records, _metrics(records), now=self.NOW)
        assert "Showing 10 of 12 positions" in text
        # Highest value first
        assert text.index("ID: </b>11") < text.index("ID: </b>10")

    def test_report_link(self):
        records = [make_record()]
        text = build_telegram_message(records, _metrics(records), report_url="https://x.io/?a=1&b=2", now=self.NOW)
        assert 'href="https://x.io/?a=1&amp;b=2"' in text

    def test_escapes_symbols(self):
        records = [make_record(symbols=("<i>", "USDT"))]
        text = build_telegram_message(records, _metrics(records), now=self.NOW)
        assert "&lt;i&gt;/USDT" in text


class TestDiscordEmbed:

    def test_fields(self):
        records = [make_record(pid=str(i)) for i in range(25)]
        payload = build_discord_embed(records, _metrics(records))
        embed = payload["embeds"][0]
        names = [f["name"] for f in embed["fields"]]
        assert names[0] == "🤑 Total P/L"
        assert sum(1 for n in names if "#" in n) == 20


class TestNotifiers:

    def test_disabled_telegram(self):
        notifier = TelegramNotifier(None, "123")
        assert not notifier.enabled
        assert asyncio.run(notifier.send("hi")) is False

    def test_disabled_discord(self):
        assert asyncio.run(DiscordNotifier("").send({})) is False

    def test_telegram_send(self):
        with patch("lp_tracker.notifiers.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, MagicMock())
            assert asyncio.run(TelegramNotifier("TOKEN", "42").send("hello")) is True
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert "botTOKEN/sendMessage" in url
        assert payload["parse_mode"] == "HTML"
        assert payload["chat_id"] == "42"

    def test_telegram_http_error(self, capsys):
        resp = MagicMock()
        resp.raise_for_status.side_effect = httpx.HTTPError("boom")
        with patch("lp_tracker.notifiers.httpx.AsyncClient") as MockClient:
            mock_async_client(MockClient, resp)
            assert asyncio.run(TelegramNotifier("TOKEN", "42").send("hello")) is False
        assert "TOKEN" not in capsys.readouterr().out

    def test_discord_send(self):
        with patch("lp_tracker.notifiers.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, MagicMock())
            assert asyncio.run(DiscordNotifier("https://discord/hook").send({"embeds": []})) is True
        assert client.post.call_args.args[0] == "https://discord/hook"


# ═══════════════════════════════════════════════════════════════════════════
# 12. commands.py / run.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_tracker.commands import cmd_info, cmd_notify, cmd_report, cmd_track
from run import create_parser


class TestCommands:

    def _settings(self, tmp_path, **kwargs):
        return TrackerSettings(
            data_file_path=str(tmp_path / "positions.json"),
            report_path=str(tmp_path / "index.html"),
            timezone="UTC",
            **kwargs,
        )

    def test_info(self, tmp_path, capsys):
        cmd_info(self._settings(tmp_path, wallet_address="0xabc"))
        out = capsys.readouterr().out
        assert "LP Tracker" in out
        assert "0xabc" in out

    def test_track_without_target(self, tmp_path, capsys):
        assert asyncio.run(cmd_track(settings=self._settings(tmp_path))) is False
        assert "WALLET_ADDRESS" in capsys.readouterr().out

    def test_report_without_data(self, tmp_path):
        assert cmd_report(self._settings(tmp_path)) is False

    def test_report_with_data(self, tmp_path):
        settings = self._settings(tmp_path)
        Path(settings.data_file_path).write_text(json.dumps([make_record()]))
        assert cmd_report(settings) is True
        assert Path(settings.report_path).exists()

    def test_notify_unconfigured(self, tmp_path):
        assert asyncio.run(cmd_notify(self._settings(tmp_path))) is False

    def test_notify_sends(self, tmp_path):
        settings = self._settings(tmp_path, discord_webhook_url="https://discord/hook")
        Path(settings.data_file_path).write_text(json.dumps([make_record()]))
        with patch("lp_tracker.notifiers.httpx.AsyncClient") as MockClient:
            client = mock_async_client(MockClient, MagicMock())
            assert asyncio.run(cmd_notify(settings)) is True
        assert "embeds" in client.post.call_args.kwargs["json"]


class TestParser:

    def test_track_hourly(self):
        args = create_parser().parse_args(["track", "--hourly"])
        assert args.command == "track"
        assert args.hourly is True

    def test_track_default_daily(self):
        assert create_parser().parse_args(["track"]).hourly is False

    @pytest.mark.parametrize("command", ["report", "notify", "info"])
    def test_subcommands(self, command):
        assert create_parser().parse_args([command]).command == command

    def test_no_command(self):
        assert create_parser().parse_args([]).command is None

    def test_version(self):
        with pytest.raises(SystemExit) as exc:
            create_parser().parse_args(["--version"])
        assert exc.value.code == 0
