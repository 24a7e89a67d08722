"""
Yield Estimator — Heuristic LP APY
===================================

No trade-volume feed is available, so daily volume is approximated as a
fixed multiple of TVL chosen by pair tier. Every constant lives in
YieldCalibration (central_config.py).

Constant-product ("tvl-based"):
  TVL         = Σ reserve_i × price_i
  daily_fees  = TVL × volume_ratio × 0.003
  APY         = daily_fees / TVL × 365 × 100

Concentrated ("concentrated-heuristic"):
  cf          = min(FULL_RANGE_TICK_WIDTH / tick_width, 100)
  prob        = in-range probability by range width % (halved out of range)
  pool_tvl    = position_value / assumed_pool_share
  pool_fees   = pool_tvl × volume_ratio × fee_rate
  user_fees   = pool_fees × cf × prob / assumed_active_lps
  APY         = max(user_fees / position_value × 365 × 100, 0)

Refs:
  Uniswap V3 Whitepaper §2 (capital efficiency) — https://uniswap.org/whitepaper-v3.pdf
  Fee tiers — https://docs.uniswap.org/concepts/protocol/fees
"""

from typing import Mapping, Optional

from lp_valuator.central_config import DEFAULT_CALIBRATION, YieldCalibration
from lp_valuator.models import (
    APYEstimate,
    ConcentratedLiquidityPool,
    ConstantProductPool,
    Pool,
    Position,
)
from lp_valuator.pool_valuation import value_position
from lp_valuator.price_derivation import normalize_prices, resolve_price
from lp_valuator.tick_math import range_width_pct
from lp_valuator.token_registry import ETC_ANCHORS, AnchorConfig

DAYS_PER_YEAR = 365


def estimate_volume_ratio(
    pool: Pool,
    anchors: Optional[AnchorConfig] = None,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
) -> float:
    """Assumed daily volume / TVL for the pair's tier."""
    anchors = anchors or ETC_ANCHORS
    addr0, addr1 = pool.token0.address, pool.token1.address
    if anchors.is_primary_pair(addr0, addr1):
        return calibration.primary_pair_volume_ratio
    if anchors.is_anchor(addr0) or anchors.is_anchor(addr1):
        return calibration.anchor_pair_volume_ratio
    return calibration.other_pair_volume_ratio


def in_range_probability(
    width_pct: float,
    in_range: bool,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
) -> float:
    """Share of time a range of this width is expected to earn fees."""
    prob = calibration.in_range_floor
    for min_width, tier_prob in calibration.in_range_tiers:
        if width_pct >= min_width:
            prob = tier_prob
            break
    if not in_range:
        prob *= calibration.out_of_range_penalty
    return prob


def concentration_factor(
    tick_lower: int,
    tick_upper: int,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
) -> float:
    """Capital-efficiency multiple versus a full-range position, capped."""
    width = tick_upper - tick_lower
    if width <= 0:
        return calibration.max_concentration_factor
    return min(calibration.full_range_tick_width / width, calibration.max_concentration_factor)


def _estimate_constant_product(
    position: Position,
    pool: ConstantProductPool,
    known_prices: Mapping[str, float],
    derived_prices,
    anchors: AnchorConfig,
    calibration: YieldCalibration,
) -> APYEstimate:
    price0 = resolve_price(pool.token0, known_prices, derived_prices)
    price1 = resolve_price(pool.token1, known_prices, derived_prices)
    if price0 is None or price1 is None or pool.is_empty:
        return APYEstimate.unavailable()

    reserve0, reserve1 = pool.reserves_decimal()
    tvl = reserve0 * price0 + reserve1 * price1
    valuation = value_position(position, known_prices, derived_prices)
    if tvl <= 0 or not valuation.total_value_usd:
        return APYEstimate.unavailable()

    ratio = estimate_volume_ratio(pool, anchors, calibration)
    # Pool-level fees, matching the TVL the APY is normalised by
    daily_fees = tvl * ratio * calibration.constant_product_fee_rate
    apy = daily_fees / tvl * DAYS_PER_YEAR * 100

    return APYEstimate(
        apy=max(apy, 0.0),
        daily_fees_usd=daily_fees,
        method="tvl-based",
        confidence="medium",
        details={"tvl_usd": tvl, "volume_ratio": ratio},
    )


def _estimate_concentrated(
    position: Position,
    pool: ConcentratedLiquidityPool,
    known_prices: Mapping[str, float],
    derived_prices,
    anchors: AnchorConfig,
    calibration: YieldCalibration,
) -> APYEstimate:
    valuation = value_position(position, known_prices, derived_prices)
    position_value = valuation.total_value_usd
    if not position_value or position_value <= 0:
        return APYEstimate.unavailable()

    cf = concentration_factor(pool.tick_lower, pool.tick_upper, calibration)
    width = range_width_pct(pool.tick_lower, pool.tick_upper, pool.current_tick)
    prob = in_range_probability(width, pool.in_range, calibration)
    ratio = estimate_volume_ratio(pool, anchors, calibration)

    pool_tvl = position_value / calibration.assumed_pool_share
    pool_daily_fees = pool_tvl * ratio * pool.fee_rate
    effective_share = cf * prob / calibration.assumed_active_lps
    user_daily_fees = pool_daily_fees * effective_share
    apy = max(user_daily_fees / position_value * DAYS_PER_YEAR * 100, 0.0)

    narrow_and_out = not pool.in_range and width < calibration.narrow_range_width_pct
    return APYEstimate(
        apy=apy,
        daily_fees_usd=user_daily_fees,
        method="concentrated-heuristic",
        confidence="low" if narrow_and_out else "medium",
        concentration_factor=cf,
        in_range_probability=prob,
        details={
            "position_value_usd": position_value,
            "range_width_pct": width,
            "volume_ratio": ratio,
            "pool_tvl_usd": pool_tvl,
        },
    )


def estimate_apy(
    position: Position,
    known_prices: Mapping[str, float],
    derived_prices=None,
    anchors: Optional[AnchorConfig] = None,
    calibration: YieldCalibration = DEFAULT_CALIBRATION,
) -> APYEstimate:
    """
    Heuristic APY for one position.

    Missing prices or a zero valuation give ``method="unavailable"``
    instead of raising. The result is never negative.
    """
    known_prices = normalize_prices(known_prices)
    anchors = anchors or ETC_ANCHORS
    pool = position.pool
    if isinstance(pool, ConstantProductPool):
        return _estimate_constant_product(
            position, pool, known_prices, derived_prices, anchors, calibration
        )
    return _estimate_concentrated(
        position, pool, known_prices, derived_prices, anchors, calibration
    )
