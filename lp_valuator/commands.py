"""
LP Valuator — Command Implementations
=====================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher. Each public function corresponds to a
subcommand (info, snapshot, value) and returns a process exit code.

Report rendering (format_report) is shared by the snapshot and
value commands.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from lp_valuator.central_config import (
    CHAIN_NAMES,
    DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    PROJECT_NAME,
    PROJECT_VERSION,
)

DISCLAIMER = "⚠️  Educational estimate — NOT financial advice. APY figures are heuristics."

_PATH_RE = re.compile(r"(/[\w.\-]+){2,}")


def _sanitize_error(error: Exception, max_len: int = 160) -> str:
    """CWE-209: one-line message without filesystem paths or tracebacks."""
    message = str(error).splitlines()[0] if str(error) else type(error).__name__
    message = _PATH_RE.sub("<path>", message)
    return message[:max_len]


def _mask_address(address: str) -> str:
    """0x1234…abcd — never print a full wallet address."""
    return f"{address[:6]}…{address[-4:]}"


# ── Rendering ────────────────────────────────────────────────────────────


def _usd(value: float | None) -> str:
    return f"${value:,.2f}" if value is not None else "n/a"


def format_report(report: Dict[str, Any]) -> str:
    """Human-readable portfolio report from analyze_portfolio() output."""
    lines = []
    bar = "=" * 65
    lines.append(f"\n{bar}")
    lines.append(f"  📊 Portfolio — {report['chain_name']} (chain {report['chain_id']})")
    lines.append(bar)

    if report["reference_prices"]:
        lines.append("\n  💵 Reference prices")
        for addr, price in sorted(report["reference_prices"].items()):
            lines.append(f"     {addr[:10]}…  ${price:,.6f}")

    if report["derived_prices"]:
        lines.append("\n  🧮 Derived prices")
        for dp in report["derived_prices"].values():
            pools = ", ".join(dp["contributing_pools"])
            lines.append(
                f"     {dp['token']['symbol']:<8} ${dp['usd_price']:,.6f}  "
                f"[{dp['confidence']}] via {pools}"
            )

    if not report["positions"]:
        lines.append("\n  No positions found.")

    for i, entry in enumerate(report["positions"], 1):
        pool = entry["pool"]
        val = entry["valuation"]
        apy = entry["apy"]
        lines.append(f"\n  {i}. {pool['label']}")
        if pool["kind"] == "concentrated-liquidity":
            status = "🟢 In range" if pool["in_range"] else "🔴 Out of range"
            lines.append(
                f"     Range    : ticks {pool['tick_lower']} → {pool['tick_upper']} "
                f"(current {pool['current_tick']}) {status}"
            )
        amounts = val["amounts"]
        if amounts:
            lines.append(
                f"     Amounts  : {amounts['amount0']:,.6f} {pool['token0']['symbol']} + "
                f"{amounts['amount1']:,.6f} {pool['token1']['symbol']}"
            )
        lines.append(f"     Value    : {_usd(val['total_value_usd'])} ({val['method']})")
        if val["fees_value_usd"]:
            lines.append(f"     Fees     : {_usd(val['fees_value_usd'])} uncollected")
        if apy["method"] == "unavailable":
            lines.append("     APY      : n/a (missing prices)")
        else:
            lines.append(
                f"     APY      : {apy['apy']:.2f}% ({apy['method']}, {apy['confidence']} confidence)"
            )
        for opp in entry["opportunities"]:
            icon = "📈" if opp["classification"] == "premium" else "📉"
            lines.append(f"     {icon} {opp['description']}")

    totals = report["totals"]
    lines.append(f"\n{bar}")
    lines.append(
        f"  Total: {_usd(totals['total_value_usd'])} across {totals['valued_positions']} "
        f"valued position(s)"
    )
    if totals["unvalued_positions"]:
        lines.append(f"  ⚠️  {totals['unvalued_positions']} position(s) could not be priced")
    if totals["uncollected_fees_usd"]:
        lines.append(f"  Uncollected fees: {_usd(totals['uncollected_fees_usd'])}")
    lines.append(f"  Weighted APY: {totals['weighted_apy']:.2f}%")
    lines.append(f"  Opportunities above {report['threshold_percent']:.2f}%: "
                 f"{len(report['opportunities'])}")
    lines.append(bar)
    lines.append(f"  {DISCLAIMER}")
    return "\n".join(lines)


def _emit(report: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        print(format_report(report))


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system and architecture information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocols  : ETCswap V2 (constant product) & V3 (concentrated liquidity)")
    print(f"🌐 Chains     : {', '.join(f'{n} ({c})' for c, n in CHAIN_NAMES.items())}")
    print("📡 Prices     : CoinGecko simple/price (free, no key)")
    print()
    print("📁 Files:")
    print("   run.py                      — CLI entry point")
    print("   pool_reader.py              — On-chain V2/V3 position reader")
    print("   valuation_engine.py         — Portfolio pipeline")
    print("   lp_valuator/tick_math.py    — Tick ↔ price conversions")
    print("   lp_valuator/pool_valuation.py   — Token amounts & USD value")
    print("   lp_valuator/price_derivation.py — Single-hop derived prices")
    print("   lp_valuator/arbitrage.py    — DEX vs reference deviations")
    print("   lp_valuator/yield_estimator.py  — Heuristic APY")
    print()
    print("🔄 Supported protocols:")
    from lp_valuator.protocol_registry import PROTOCOL_REGISTRY

    for proto in PROTOCOL_REGISTRY.values():
        chains = ", ".join(str(c) for c in proto["chains"])
        print(f"   {proto['icon']} {proto['name']:<12} — {proto['kind']} — chains {chains}")
    print()
    print("🔗 Quick Start:")
    print("   python run.py snapshot portfolio.json")
    print("   python run.py value 0xWALLET --chain 61")
    print()
    print("📚 References:")
    print("   Uniswap V2 Whitepaper : https://uniswap.org/whitepaper.pdf")
    print("   Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf")
    print("   CoinGecko API         : https://docs.coingecko.com/reference/simple-price")


def cmd_snapshot(
    path: str,
    threshold: float = DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    as_json: bool = False,
) -> int:
    """Value a portfolio described by a JSON snapshot file."""
    from lp_valuator.snapshot import load_snapshot
    from valuation_engine import analyze_portfolio

    try:
        snapshot = load_snapshot(path)
        report = analyze_portfolio(snapshot, threshold_percent=threshold)
    except ValueError as e:
        print(f"❌ {_sanitize_error(e)}")
        return 1

    _emit(report, as_json)
    return 0


async def cmd_value(
    wallet: str,
    chain: int = 61,
    threshold: float = DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    as_json: bool = False,
) -> int:
    """Read a wallet's positions on-chain, fetch reference prices, value them."""
    from pool_reader import PoolReader
    from lp_valuator.price_feed import fetch_reference_prices
    from valuation_engine import analyze_portfolio

    if not wallet or not re.fullmatch(r"0x[0-9a-fA-F]{40}", wallet):
        print("❌ Invalid wallet address. Must be 42 hex characters starting with 0x.")
        return 1

    try:
        reader = PoolReader(chain)
    except ValueError as e:
        print(f"❌ {_sanitize_error(e)}")
        return 1

    print(f"\n🔄 Reading positions on {reader.chain_name}...")
    print(f"  👛 Wallet: {_mask_address(wallet)}")
    try:
        prices = await fetch_reference_prices()
        snapshot = await reader.read_snapshot(wallet, prices)
    except RuntimeError as e:
        print(f"❌ {_sanitize_error(e)}")
        return 1

    block = await reader.get_block_number()
    if block:
        print(f"  📦 Block: {block:,}")

    report = analyze_portfolio(snapshot, threshold_percent=threshold)
    _emit(report, as_json)
    return 0
