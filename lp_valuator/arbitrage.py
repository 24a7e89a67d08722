"""
Arbitrage Detection — DEX Spot vs Reference Price
==================================================

Compares the USD price a single pool implies for each of its tokens with
the token's external reference price.

  deviation % = (dex_price − reference_price) / reference_price × 100

  > 0 → premium  (sell on the DEX, buy on the CEX)
  < 0 → discount (buy on the DEX, sell on the CEX)

Fiat-backed tokens are arbitraged via mint/redeem rather than CEX trades.
Which tokens are fiat-backed comes from AnchorConfig (ETC_ANCHORS by default).
"""

import math
from typing import List, Mapping, Optional

from lp_valuator.central_config import DEFAULT_ARBITRAGE_THRESHOLD_PCT
from lp_valuator.models import ArbitrageOpportunity, Position
from lp_valuator.price_derivation import normalize_prices, pool_spot_prices
from lp_valuator.token_registry import ETC_ANCHORS, AnchorConfig


def detect_opportunities(
    position: Position,
    reference_prices: Mapping[str, float],
    threshold_percent: float = DEFAULT_ARBITRAGE_THRESHOLD_PCT,
    anchors: Optional[AnchorConfig] = None,
) -> List[ArbitrageOpportunity]:
    """
    Price dislocations in the position's own pool.

    A token is reported when it has both an implied spot price from this
    pool and a finite positive reference price, and ``abs(deviation) >= threshold``.
    """
    if threshold_percent < 0:
        raise ValueError(f"threshold_percent must be non-negative, got {threshold_percent}")

    anchors = anchors or ETC_ANCHORS
    reference_prices = normalize_prices(reference_prices)
    pool = position.pool
    spot = pool_spot_prices(pool, reference_prices)
    opportunities: List[ArbitrageOpportunity] = []

    for token in (pool.token0, pool.token1):
        implied = spot.get(token.key)
        reference = reference_prices.get(token.key)
        if implied is None or reference is None:
            continue
        if not math.isfinite(reference) or reference <= 0:
            continue

        dex_price, source = implied
        deviation = (dex_price - reference) / reference * 100
        # Zero is neither premium nor discount, so it is never reported
        if not math.isfinite(deviation) or deviation == 0:
            continue
        if abs(deviation) < threshold_percent:
            continue

        fiat_backed = anchors.is_fiat_backed(token.address)
        opportunities.append(
            ArbitrageOpportunity(
                token=token,
                dex_price=dex_price,
                reference_price=reference,
                deviation_percent=deviation,
                classification="premium" if deviation > 0 else "discount",
                mechanism="fiat-backed" if fiat_backed else "cex-trade",
                source=source,
            )
        )

    return opportunities


def format_opportunity(opportunity: ArbitrageOpportunity) -> str:
    """One-line human-readable description."""
    abs_dev = abs(opportunity.deviation_percent)
    symbol = opportunity.token.symbol
    if opportunity.classification == "premium":
        return f"{symbol} trading {abs_dev:.2f}% above reference (sell DEX, buy CEX)"
    return f"{symbol} trading {abs_dev:.2f}% below reference (buy DEX, sell CEX)"
