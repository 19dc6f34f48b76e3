"""
Project Configuration — Subgraph endpoints, settings, version
=============================================================

Static API configuration lives in frozen dataclasses; per-deployment
settings come from the environment (a local ``.env`` file is loaded
first via python-dotenv).

Source: https://thegraph.com/docs/en/querying/querying-the-graph/
"""

import os
import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Optional, Tuple

from dotenv import load_dotenv

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("lp-tracker")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LP Tracker"


class ConfigError(ValueError):
    """Raised when the environment does not describe anything to track."""


@dataclass(frozen=True)
class SubgraphAPI:
    """The Graph decentralized-network gateway for the Uniswap V3 subgraphs."""

    API_KEY_PLACEHOLDER: str = "[api-key]"
    GATEWAY_TEMPLATE: str = (
        "https://gateway.thegraph.com/api/[api-key]/subgraphs/id/{subgraph_id}"
    )

    # Uniswap V3 subgraph deployments (immutable mapping)
    SUBGRAPH_IDS = MappingProxyType(
        {
            "ethereum": "5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV",
            "arbitrum": "HyW7A86UEdYVt5b9Lrw8W2F98yKecerHKutZTRbSCX27",
        }
    )

    CHAIN_ALIASES = MappingProxyType({"eth": "ethereum", "arb": "arbitrum"})

    # Query limits
    MAX_POSITIONS: int = 100

    # Network behaviour
    TIMEOUT_SECONDS: int = 30
    MAX_RETRIES: int = 3
    RETRY_DELAY_SECONDS: float = 1.0
    RATE_LIMIT_PER_MINUTE: int = 60

    @classmethod
    def normalize_chain(cls, chain: str) -> str:
        chain = chain.strip().lower()
        return cls.CHAIN_ALIASES.get(chain, chain)

    @classmethod
    def endpoint_template(cls, chain: str) -> str:
        """Gateway URL for ``chain`` with the API-key placeholder still in it."""
        chain = cls.normalize_chain(chain)
        if chain not in cls.SUBGRAPH_IDS:
            raise ValueError(
                f"Unsupported chain {chain!r}. Available: {list(cls.SUBGRAPH_IDS.keys())}"
            )
        return cls.GATEWAY_TEMPLATE.format(subgraph_id=cls.SUBGRAPH_IDS[chain])

    @classmethod
    def get_endpoint(cls, chain: str, api_key: str) -> str:
        """Gateway URL with the API key substituted in."""
        return cls.endpoint_template(chain).replace(cls.API_KEY_PLACEHOLDER, api_key)


@dataclass(frozen=True)
class RpcAPI:
    """Public JSON-RPC endpoints, used when a subgraph omits tick fee data."""

    URLS = MappingProxyType(
        {
            "arbitrum": "https://arb1.arbitrum.io/rpc",
            "ethereum": "https://1rpc.io/eth",
        }
    )
    TIMEOUT_SECONDS: int = 20
    MAX_RETRIES: int = 3
    RETRY_DELAY_SECONDS: float = 1.0


# ── Runtime Settings ─────────────────────────────────────────────────────

DEFAULT_DATA_FILE = "./data/positions.json"
DEFAULT_REPORT_PATH = "./docs/index.html"
DEFAULT_TIMEZONE = "Europe/Sofia"
DEFAULT_CHAINS = ("ethereum", "arbitrum")


@dataclass(frozen=True)
class TrackerSettings:
    """Per-deployment settings, normally built by :func:`load_settings`."""

    wallet_address: Optional[str] = None
    position_id: Optional[str] = None
    graph_api_key: str = ""
    data_file_path: str = DEFAULT_DATA_FILE
    report_path: str = DEFAULT_REPORT_PATH
    timezone: str = DEFAULT_TIMEZONE
    chains: Tuple[str, ...] = DEFAULT_CHAINS
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    report_url: Optional[str] = None
    rpc_urls: MappingProxyType = field(default_factory=lambda: RpcAPI.URLS)

    @property
    def latest_file_path(self) -> str:
        """Sibling file holding only the most recent hourly snapshot."""
        path = Path(self.data_file_path)
        return str(path.with_name(f"{path.stem}.latest{path.suffix}"))


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(env_file: Optional[str] = None) -> TrackerSettings:
    """Build settings from the process environment (and ``.env`` if present)."""
    load_dotenv(env_file)
    chains_raw = _env("CHAINS")
    chains = (
        tuple(SubgraphAPI.normalize_chain(c) for c in chains_raw.split(",") if c.strip())
        if chains_raw
        else DEFAULT_CHAINS
    )
    return TrackerSettings(
        wallet_address=_env("WALLET_ADDRESS"),
        position_id=_env("POSITION_ID"),
        graph_api_key=_env("GRAPH_API_KEY") or "",
        data_file_path=_env("DATA_FILE_PATH") or DEFAULT_DATA_FILE,
        report_path=_env("REPORT_PATH") or DEFAULT_REPORT_PATH,
        timezone=_env("TIMEZONE") or DEFAULT_TIMEZONE,
        chains=chains,
        telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_env("TELEGRAM_CHAT_ID"),
        discord_webhook_url=_env("DISCORD_WEBHOOK_URL"),
        report_url=_env("REPORT_URL"),
    )


def validate_settings(settings: TrackerSettings) -> None:
    """A tracking run needs a wallet address or a position id."""
    if not settings.wallet_address and not settings.position_id:
        raise ConfigError("Either WALLET_ADDRESS or POSITION_ID must be set")
    for chain in settings.chains:
        if chain not in SubgraphAPI.SUBGRAPH_IDS:
            raise ConfigError(f"Unsupported chain in CHAINS: {chain!r}")
