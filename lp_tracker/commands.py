"""
LP Tracker — Command Implementations
====================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher. Each public function corresponds to a
subcommand (track, report, notify, info).
"""

from __future__ import annotations

from lp_tracker.central_config import (
    PROJECT_NAME,
    PROJECT_VERSION,
    ConfigError,
    SubgraphAPI,
    TrackerSettings,
    load_settings,
    validate_settings,
)


def _load(settings: TrackerSettings | None) -> TrackerSettings:
    return settings if settings is not None else load_settings()


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info(settings: TrackerSettings | None = None) -> None:
    """Display configuration and architecture information."""
    settings = _load(settings)
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocol   : Uniswap V3 (concentrated liquidity)")
    print(f"🌐 Chains     : {', '.join(settings.chains)}")
    print("📡 Data Source: The Graph — Uniswap V3 subgraph")
    print()
    print("⚙️  Settings:")
    print(f"   Wallet      : {settings.wallet_address or '—'}")
    print(f"   Position ID : {settings.position_id or '—'}")
    print(f"   API key     : {'set' if settings.graph_api_key else 'missing (demo endpoint)'}")
    print(f"   Data file   : {settings.data_file_path}")
    print(f"   Report      : {settings.report_path}")
    print(f"   Timezone    : {settings.timezone}")
    print(f"   Telegram    : {'enabled' if settings.telegram_bot_token and settings.telegram_chat_id else 'disabled'}")
    print(f"   Discord     : {'enabled' if settings.discord_webhook_url else 'disabled'}")
    print()
    print("📁 Files:")
    print("   run.py                — CLI entry point")
    print("   position_math.py      — Uniswap V3 tick / liquidity / fee math")
    print("   position_tracker.py   — Subgraph snapshot → position records")
    print("   portfolio_metrics.py  — P/L, 24h fees, range status")
    print("   html_generator.py     — HTML history report")
    print("   lp_tracker/           — config, subgraph + RPC clients, storage, notifiers")
    print()
    print(f"🔢 Max positions per query: {SubgraphAPI.MAX_POSITIONS}")


async def cmd_track(hourly: bool = False, settings: TrackerSettings | None = None) -> bool:
    """Fetch, store and report current positions."""
    from position_tracker import PositionTracker

    settings = _load(settings)
    try:
        validate_settings(settings)
    except ConfigError as e:
        print(f"❌ {e}")
        return False
    records = await PositionTracker(settings).track(hourly=hourly)
    return bool(records)


def cmd_report(settings: TrackerSettings | None = None) -> bool:
    """Regenerate the HTML report from stored data only."""
    from position_tracker import PositionTracker

    settings = _load(settings)
    print("\n" + "=" * 55)
    print("📄 Generating HTML report from stored data…")
    print("=" * 55)
    return PositionTracker(settings).generate_report() is not None


async def cmd_notify(settings: TrackerSettings | None = None) -> bool:
    """Send the latest portfolio summary to Telegram and/or Discord."""
    from lp_tracker.notifiers import (
        DiscordNotifier,
        TelegramNotifier,
        build_discord_embed,
        build_telegram_message,
    )
    from lp_tracker.storage import PositionStore
    from portfolio_metrics import (
        PortfolioMetricsCalculator,
        build_history_map,
        select_live_positions,
    )

    settings = _load(settings)
    telegram = TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    discord = DiscordNotifier(settings.discord_webhook_url)
    if not telegram.enabled and not discord.enabled:
        print("ℹ️  No notifier configured (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID or DISCORD_WEBHOOK_URL)")
        return False

    store = PositionStore(settings.data_file_path, settings.latest_file_path)
    history = store.load()
    if not history:
        print("ℹ️  No stored position data — nothing to send")
        return False

    selection = select_live_positions(store.load_latest(), build_history_map(history))
    metrics = PortfolioMetricsCalculator().calculate(
        history, selection.current, selection.reference
    )

    sent = False
    if telegram.enabled:
        message = build_telegram_message(
            selection.current, metrics, settings.timezone, settings.report_url
        )
        sent = await telegram.send(message) or sent
    if discord.enabled:
        sent = await discord.send(build_discord_embed(selection.current, metrics)) or sent
    return sent
