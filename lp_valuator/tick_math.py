"""
Tick Math — Tick ↔ Price Conversions
=====================================

Pure conversions between discrete tick indices and continuous prices,
the foundation of all concentrated-liquidity arithmetic.

Formulas (Uniswap V3 Whitepaper §6.1):
  p(i)  = 1.0001^i          price of token1 in token0 smallest units
  √p(i) = 1.0001^(i/2)
  human price = p(i) × 10^(decimals0 − decimals1)

Ref: https://uniswap.org/whitepaper-v3.pdf
"""

import math

# Uniswap V3 valid tick range. Not enforced here; callers must clamp.
MIN_TICK = -887272
MAX_TICK = 887272

Q96 = 2 ** 96            # sqrtPriceX96 denominator (FixedPoint96.RESOLUTION)
TICK_BASE = 1.0001       # each tick = 1 basis point price step


def price_from_tick(tick: int) -> float:
    """Raw price at a tick: 1.0001^tick.

    >>> price_from_tick(0)
    1.0
    """
    return TICK_BASE ** tick


def sqrt_price_from_tick(tick: int) -> float:
    """Square root of the raw price at a tick: 1.0001^(tick/2)."""
    return TICK_BASE ** (tick / 2)


def tick_to_human_price(tick: int, decimals0: int, decimals1: int) -> float:
    """
    Price of one whole token0 in whole token1 units.

    Formula (Whitepaper §6.1):
      p(i) = 1.0001^i × 10^(decimals0 − decimals1)

    Example: WETC(18)/USC(6) → multiply the raw price by 10^12
    """
    return price_from_tick(tick) * (10 ** (decimals0 - decimals1))


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
    """
    Convert an on-chain sqrtPriceX96 to a human-readable token1/token0 price.

      raw_price = (sqrtPriceX96 / 2^96)^2
      human     = raw_price × 10^(decimals0 − decimals1)
    """
    if sqrt_price_x96 == 0:
        return 0.0
    sqrt_p = sqrt_price_x96 / Q96
    return sqrt_p * sqrt_p * (10 ** (decimals0 - decimals1))


def price_to_tick(price: float) -> int:
    """
    Nearest lower tick for a raw price.

    Formula: i = floor(log(p) / log(1.0001))
    """
    if price <= 0:
        raise ValueError("Price must be positive")
    return math.floor(math.log(price) / math.log(TICK_BASE))


def range_width_pct(tick_lower: int, tick_upper: int, current_tick: int) -> float:
    """
    Range width as a percentage of the current price.

    Formula: (p(upper) − p(lower)) / p(current) × 100

    Decimal adjustments cancel out, so raw tick prices are used.
    Examples:
      ±5% range  → ~10% width
      ±50% range → ~100% width
    """
    if tick_upper <= tick_lower:
        return 0.0
    current = price_from_tick(current_tick)
    return (price_from_tick(tick_upper) - price_from_tick(tick_lower)) / current * 100
