"""
Price Derivation — USD Prices from Pool Ratios
===============================================

Tokens without an external quote are priced from pools that pair them
with a token that has one. Derivation is single-hop: a price derived here
is never used to derive another.

Spot price formulas:
  constant-product : price(t) = other_reserve × other_price / t_reserve
  concentrated     : p10 = 1.0001^tick × 10^(d0 − d1)   (token1 per token0)
                     price0 = price1 × p10
                     price1 = price0 / p10

Aggregation: median of every contributing pool.
Confidence : ≥3 pools → high, 2 → medium, 1 → low.

Price maps may use any address casing; every public function re-keys them
by lower-cased address on entry.
"""

import math
import statistics
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from lp_valuator.models import (
    ConcentratedLiquidityPool,
    ConstantProductPool,
    DerivedPrice,
    Pool,
    Token,
    confidence_for_count,
    normalize_address,
)
from lp_valuator.tick_math import tick_to_human_price


def normalize_prices(prices: Mapping[str, float]) -> Dict[str, float]:
    """Re-key a price map by lower-cased address."""
    return {normalize_address(addr): float(price) for addr, price in prices.items()}


def _usable(price: Optional[float]) -> Optional[float]:
    if price is None or not math.isfinite(price) or price <= 0:
        return None
    return price


def pool_spot_prices(
    pool: Pool, known_prices: Mapping[str, float]
) -> Dict[str, Tuple[float, str]]:
    """
    USD prices this single pool implies for its tokens.

    Returns ``{address: (usd_price, pool_label)}``. A token gets an entry
    only when the other side of the pool has a finite positive known
    price. Empty pools and pools with an unread tick imply nothing.
    """
    known_prices = normalize_prices(known_prices)
    spot: Dict[str, Tuple[float, str]] = {}
    known0 = _usable(known_prices.get(pool.token0.key))
    known1 = _usable(known_prices.get(pool.token1.key))

    if isinstance(pool, ConstantProductPool):
        if pool.is_empty:
            return spot
        reserve0, reserve1 = pool.reserves_decimal()
        if known0 is not None:
            spot[pool.token1.key] = (reserve0 * known0 / reserve1, pool.label)
        if known1 is not None:
            spot[pool.token0.key] = (reserve1 * known1 / reserve0, pool.label)
        return spot

    if pool.has_placeholder_tick:
        return spot
    p10 = tick_to_human_price(pool.current_tick, pool.token0.decimals, pool.token1.decimals)
    if p10 <= 0 or not math.isfinite(p10):
        return spot
    if known0 is not None:
        spot[pool.token1.key] = (known0 / p10, pool.label)
    if known1 is not None:
        spot[pool.token0.key] = (known1 * p10, pool.label)
    return spot


def derive_price(
    token: Token, pools: Iterable[Pool], known_prices: Mapping[str, float]
) -> Optional[DerivedPrice]:
    """
    Median USD price of ``token`` across pools pairing it with a priced token.

    Non-positive or non-finite pool prices are dropped. Returns None when
    no pool contributes.
    """
    known_prices = normalize_prices(known_prices)
    samples: List[float] = []
    sources: List[str] = []

    for pool in pools:
        if not pool.contains(token):
            continue
        other = pool.token1 if pool.token0.same_as(token) else pool.token0
        if other.key not in known_prices:
            continue
        implied = pool_spot_prices(pool, known_prices).get(token.key)
        if implied is None:
            continue
        price, label = implied
        if price <= 0 or not math.isfinite(price):
            continue
        samples.append(price)
        sources.append(label)

    if not samples:
        return None

    return DerivedPrice(
        token=token,
        usd_price=statistics.median(samples),
        contributing_pools=tuple(sources),
        confidence=confidence_for_count(len(samples)),
    )


def derive_all_prices(
    pools: Iterable[Pool], known_prices: Mapping[str, float]
) -> Dict[str, DerivedPrice]:
    """
    Derive every token that appears in ``pools`` but has no known price.

    Each token is derived independently from ``known_prices`` only, so
    pool order never changes the result. Output is sorted by address.
    """
    known_prices = normalize_prices(known_prices)
    pools = list(pools)
    tokens: Dict[str, Token] = {}
    for pool in pools:
        for token in (pool.token0, pool.token1):
            tokens.setdefault(token.key, token)

    derived: Dict[str, DerivedPrice] = {}
    for key in sorted(tokens):
        if key in known_prices:
            continue
        result = derive_price(tokens[key], pools, known_prices)
        if result is not None:
            derived[key] = result
    return derived


def resolve_price(
    token: Token,
    known_prices: Mapping[str, float],
    derived_prices: Optional[Mapping[str, DerivedPrice]] = None,
) -> Optional[float]:
    """Known price first, derived price as fallback, else None."""
    known = normalize_prices(known_prices).get(token.key)
    if known is not None:
        return known
    if derived_prices:
        by_key = {normalize_address(k): v for k, v in derived_prices.items()}
        derived = by_key.get(token.key)
        if derived is not None:
            return derived.usd_price
    return None
