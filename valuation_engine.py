#!/usr/bin/env python3
"""
Valuation Engine
================

Runs the full pipeline over one PortfolioSnapshot:

  snapshot
    → derive_all_prices   (single-hop, median across pools)
    → per position: amounts, USD value, uncollected fees
    → per position: heuristic APY
    → per position: arbitrage opportunities vs reference prices
    → portfolio totals

The engine is pure: identical snapshots give identical reports
(apart from ``generated_at``, which callers may pin).

FORMULA SOURCES:
  Uniswap V2 Whitepaper : https://uniswap.org/whitepaper.pdf
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from lp_valuator.arbitrage import detect_opportunities, format_opportunity
from lp_valuator.central_config import (
    CHAIN_NAMES,
    DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    DEFAULT_CALIBRATION,
    YieldCalibration,
)
from lp_valuator.models import Position
from lp_valuator.pool_valuation import value_position
from lp_valuator.price_derivation import derive_all_prices
from lp_valuator.snapshot import PortfolioSnapshot
from lp_valuator.token_registry import ETC_ANCHORS, AnchorConfig
from lp_valuator.yield_estimator import estimate_apy


def analyze_position(
    position: Position,
    known_prices: Dict[str, float],
    derived_prices: Dict,
    threshold_percent: float = DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
    anchors: AnchorConfig = ETC_ANCHORS,
) -> Dict[str, Any]:
    """Valuation, APY and opportunities for a single position."""
    valuation = value_position(position, known_prices, derived_prices)
    apy = estimate_apy(position, known_prices, derived_prices, anchors, calibration)
    opportunities = detect_opportunities(position, known_prices, threshold_percent, anchors)

    return {
        "pool": position.pool.to_dict(),
        "shares": position.shares,
        "valuation": valuation.to_dict(),
        "apy": apy.to_dict(),
        "opportunities": [
            {**opp.to_dict(), "description": format_opportunity(opp)} for opp in opportunities
        ],
    }


def analyze_portfolio(
    snapshot: PortfolioSnapshot,
    threshold_percent: float = DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
    anchors: Optional[AnchorConfig] = None,
    generated_at: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Full report for a snapshot, as plain dicts ready for JSON.

    Totals only include positions that could be valued; the rest are
    counted in ``unvalued_positions``.
    """
    anchors = anchors or ETC_ANCHORS
    known = dict(snapshot.reference_prices)
    derived = derive_all_prices(snapshot.all_pools(), known)

    positions: List[Dict[str, Any]] = [
        analyze_position(p, known, derived, threshold_percent, calibration, anchors)
        for p in snapshot.positions
    ]

    total_value = 0.0
    total_fees = 0.0
    weighted_apy = 0.0
    valued = 0
    for entry in positions:
        value = entry["valuation"]["total_value_usd"]
        if value is None:
            continue
        valued += 1
        total_value += value
        total_fees += entry["valuation"]["fees_value_usd"] or 0.0
        weighted_apy += entry["apy"]["apy"] * value

    return {
        "generated_at": generated_at or datetime.now().isoformat(),
        "chain_id": snapshot.chain_id,
        "chain_name": CHAIN_NAMES.get(snapshot.chain_id, f"chain {snapshot.chain_id}"),
        "threshold_percent": threshold_percent,
        "reference_prices": known,
        "derived_prices": {addr: dp.to_dict() for addr, dp in derived.items()},
        "positions": positions,
        "opportunities": [opp for entry in positions for opp in entry["opportunities"]],
        "totals": {
            "total_value_usd": total_value,
            "uncollected_fees_usd": total_fees,
            "valued_positions": valued,
            "unvalued_positions": len(positions) - valued,
            "weighted_apy": weighted_apy / total_value if total_value > 0 else 0.0,
        },
    }
