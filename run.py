#!/usr/bin/env python3
"""
LP Tracker -- Uniswap V3 Position Tracker
=========================================

Snapshots Uniswap V3 liquidity positions from The Graph, values them with
integer-exact protocol math, keeps a JSON history and renders reports.

Usage:
  python run.py track              Daily snapshot: fetch, append to history, rebuild report
  python run.py track --hourly     Hourly snapshot: fetch, replace latest snapshot, rebuild report
  python run.py report             Rebuild the HTML report from stored data
  python run.py notify             Send the latest summary to Telegram / Discord
  python run.py info               Show configuration

Scheduling is left to the host, e.g. cron:
  0 9 * * *  cd /srv/lp-tracker && python run.py track && python run.py notify
  0 * * * *  cd /srv/lp-tracker && python run.py track --hourly

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  Uniswap V3 Subgraph   : https://github.com/Uniswap/v3-subgraph
  The Graph             : https://thegraph.com/docs/
"""

import sys
import asyncio
import argparse
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lp_tracker.central_config import PROJECT_VERSION, PROJECT_NAME
from lp_tracker.commands import (
    cmd_info,
    cmd_notify,
    cmd_report,
    cmd_track,
)


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-tracker",
        description=f"{PROJECT_NAME} v{PROJECT_VERSION} — Uniswap V3 Position Tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py track                 Daily snapshot of every configured chain
  python run.py track --hourly        Refresh the LIVE row without growing history
  python run.py report                Rebuild docs/index.html from data/positions.json
  python run.py notify                Push the summary to Telegram / Discord
  python run.py info                  Show the effective configuration

Configuration (.env or environment):
  WALLET_ADDRESS / POSITION_ID        What to track (one is required)
  GRAPH_API_KEY                       https://thegraph.com/studio/apikeys/
  DATA_FILE_PATH, REPORT_PATH         Default ./data/positions.json, ./docs/index.html
  CHAINS, TIMEZONE                    Default ethereum,arbitrum and Europe/Sofia
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, DISCORD_WEBHOOK_URL, REPORT_URL
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"{PROJECT_NAME} v{PROJECT_VERSION}"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    track_p = sub.add_parser("track", help="Fetch positions, store them and rebuild the report")
    track_p.add_argument(
        "--hourly",
        action="store_true",
        help="Replace the latest-snapshot file instead of appending to history",
    )

    sub.add_parser("report", help="Rebuild the HTML report from stored data")
    sub.add_parser("notify", help="Send the latest summary to Telegram / Discord")
    sub.add_parser("info", help="Show configuration")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main() -> int:
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0
    if args.command == "track":
        ok = asyncio.run(cmd_track(hourly=args.hourly))
        return 0 if ok else 1
    if args.command == "report":
        return 0 if cmd_report() else 1
    if args.command == "notify":
        return 0 if asyncio.run(cmd_notify()) else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
