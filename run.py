#!/usr/bin/env python3
"""
LP Valuator -- AMM Liquidity Position Analyzer
==============================================

Values ETCswap V2 (constant-product) and V3 (concentrated-liquidity)
positions, derives USD prices for tokens without a feed, flags
DEX-vs-reference price dislocations and estimates LP yield.

Usage:
  python run.py snapshot <file.json>                     Value a JSON portfolio snapshot
  python run.py snapshot <file.json> --threshold 2.5     Custom arbitrage threshold (%)
  python run.py snapshot <file.json> --json              Machine-readable output
  python run.py value    <wallet> --chain 61             Read positions on-chain and value them
  python run.py info                                     System overview

Sources:
  Uniswap V2 Whitepaper : https://uniswap.org/whitepaper.pdf
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  CoinGecko API         : https://docs.coingecko.com/reference/simple-price
"""

import sys
import asyncio
import argparse

from lp_valuator.central_config import (
    CHAIN_NAMES,
    DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    PROJECT_VERSION,
)
from lp_valuator.commands import cmd_info, cmd_snapshot, cmd_value


# ── CLI Parser ────────────────────────────────────────────────────────────


def _threshold(value: str) -> float:
    try:
        pct = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from None
    if pct < 0:
        raise argparse.ArgumentTypeError("threshold must be non-negative")
    return pct


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-valuator",
        description=f"LP Valuator v{PROJECT_VERSION} — AMM Liquidity Position Analyzer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py snapshot portfolio.json                  Value positions from a file
  python run.py snapshot portfolio.json --json           JSON report
  python run.py value 0xWALLET                           ETC mainnet (chain 61)
  python run.py value 0xWALLET --chain 63                Mordor testnet
  python run.py info                                     System overview

Snapshot format:
  {"chain_id": 61,
   "reference_prices": {"0x…": 20.5},
   "positions": [{"kind": "constant-product", "token0": {…}, "token1": {…},
                  "reserve0": "…", "reserve1": "…", "total_shares": "…", "shares": "…"}],
   "market_pools": []}
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"LP Valuator v{PROJECT_VERSION}"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    snap_p = sub.add_parser("snapshot", help="Value a JSON portfolio snapshot")
    snap_p.add_argument("file", help="Path to the snapshot JSON file")
    snap_p.add_argument(
        "--threshold",
        type=_threshold,
        default=DEFAULT_ARBITRAGE_THRESHOLD_PCT,
        help=f"Arbitrage deviation threshold in percent (default: {DEFAULT_ARBITRAGE_THRESHOLD_PCT})",
    )
    snap_p.add_argument("--json", action="store_true", help="Print the report as JSON")

    value_p = sub.add_parser("value", help="Read a wallet's positions on-chain and value them")
    value_p.add_argument("wallet", help="Wallet address (0x…)")
    value_p.add_argument(
        "--chain",
        type=int,
        default=61,
        choices=sorted(CHAIN_NAMES),
        help="Chain id: 61 = Ethereum Classic, 63 = Mordor testnet (default: 61)",
    )
    value_p.add_argument(
        "--threshold",
        type=_threshold,
        default=DEFAULT_ARBITRAGE_THRESHOLD_PCT,
        help=f"Arbitrage deviation threshold in percent (default: {DEFAULT_ARBITRAGE_THRESHOLD_PCT})",
    )
    value_p.add_argument("--json", action="store_true", help="Print the report as JSON")

    sub.add_parser("info", help="System & architecture info")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0

    if args.command == "snapshot":
        return cmd_snapshot(args.file, threshold=args.threshold, as_json=args.json)

    if args.command == "value":
        return asyncio.run(
            cmd_value(
                args.wallet,
                chain=args.chain,
                threshold=args.threshold,
                as_json=args.json,
            )
        )

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
