"""
Pool Valuation — Token Amounts and USD Value of LP Positions
=============================================================

FORMULA SOURCES:
────────────────
1. Uniswap V2 Whitepaper §2 — fungible pool shares
   https://uniswap.org/whitepaper.pdf
   user_amount_i = reserve_i × shares / total_shares

2. Uniswap V3 Whitepaper §6.2 — amounts from liquidity L
   https://uniswap.org/whitepaper-v3.pdf
   below range   : amount1 = L × (√pU − √pL)
   above range   : amount0 = L × (1/√pL − 1/√pU)
   in range      : amount0 = L × (1/√pC − 1/√pU)
                   amount1 = L × (√pC − √pL)

All returned amounts are decimal-adjusted (human units).
"""

from typing import Mapping, Optional

from lp_valuator.models import (
    ConcentratedLiquidityPool,
    ConstantProductPool,
    Pool,
    Position,
    PositionValuation,
    TokenAmounts,
)
from lp_valuator.price_derivation import normalize_prices, resolve_price
from lp_valuator.tick_math import sqrt_price_from_tick


def _constant_product_amounts(pool: ConstantProductPool, shares: int) -> Optional[TokenAmounts]:
    if pool.total_shares == 0 or pool.is_empty:
        return None
    amount0 = pool.reserve0 * shares / pool.total_shares / (10 ** pool.token0.decimals)
    amount1 = pool.reserve1 * shares / pool.total_shares / (10 ** pool.token1.decimals)
    return TokenAmounts(amount0, amount1)


def _concentrated_amounts(pool: ConcentratedLiquidityPool) -> TokenAmounts:
    if pool.liquidity == 0 or pool.has_placeholder_tick:
        return TokenAmounts(0.0, 0.0)

    liq = pool.liquidity
    sqrt_lower = sqrt_price_from_tick(pool.tick_lower)
    sqrt_upper = sqrt_price_from_tick(pool.tick_upper)

    if pool.current_tick < pool.tick_lower:
        # Entirely token1 below the range
        raw0 = 0.0
        raw1 = liq * (sqrt_upper - sqrt_lower)
    elif pool.current_tick >= pool.tick_upper:
        # Entirely token0 at/above the upper bound
        raw0 = liq * (1 / sqrt_lower - 1 / sqrt_upper)
        raw1 = 0.0
    else:
        sqrt_current = sqrt_price_from_tick(pool.current_tick)
        raw0 = liq * (1 / sqrt_current - 1 / sqrt_upper)
        raw1 = liq * (sqrt_current - sqrt_lower)

    return TokenAmounts(
        raw0 / (10 ** pool.token0.decimals),
        raw1 / (10 ** pool.token1.decimals),
    )


def amounts_for_position(position: Position) -> Optional[TokenAmounts]:
    """
    Decimal-adjusted token amounts a position owns.

    Returns None for constant-product positions in an empty pool or with
    no outstanding shares. Concentrated positions with zero liquidity or
    an unread (placeholder) tick return (0, 0).
    """
    pool = position.pool
    if isinstance(pool, ConstantProductPool):
        return _constant_product_amounts(pool, position.shares)
    return _concentrated_amounts(pool)


def uncollected_fees(pool: Pool) -> TokenAmounts:
    """Tokens owed to a concentrated position, decimal-adjusted. Zero for V2."""
    if not isinstance(pool, ConcentratedLiquidityPool):
        return TokenAmounts(0.0, 0.0)
    return TokenAmounts(
        pool.uncollected_fees0 / (10 ** pool.token0.decimals),
        pool.uncollected_fees1 / (10 ** pool.token1.decimals),
    )


def value_position(
    position: Position,
    known_prices: Mapping[str, float],
    derived_prices: Optional[Mapping] = None,
) -> PositionValuation:
    """
    USD value of a position.

    Constant-product pools hold equal value on both sides, so when only
    one side has a price the priced side is doubled ("half-doubled").
    Concentrated positions can be one-sided and are never doubled.
    """
    known_prices = normalize_prices(known_prices)
    pool = position.pool
    amounts = amounts_for_position(position)
    if amounts is None:
        return PositionValuation(None, None, None, None)

    price0 = resolve_price(pool.token0, known_prices, derived_prices)
    price1 = resolve_price(pool.token1, known_prices, derived_prices)
    value0 = amounts.amount0 * price0 if price0 is not None else None
    value1 = amounts.amount1 * price1 if price1 is not None else None

    fees_value = None
    if isinstance(pool, ConcentratedLiquidityPool):
        fees = uncollected_fees(pool)
        fees_value = (fees.amount0 * (price0 or 0.0)) + (fees.amount1 * (price1 or 0.0))

    if value0 is not None and value1 is not None:
        return PositionValuation(
            amounts, value0, value1, value0 + value1, fees_value, method="priced"
        )

    if isinstance(pool, ConstantProductPool):
        if value0 is not None:
            return PositionValuation(
                amounts, value0, None, value0 * 2, fees_value, method="half-doubled"
            )
        if value1 is not None:
            return PositionValuation(
                amounts, None, value1, value1 * 2, fees_value, method="half-doubled"
            )
        return PositionValuation(amounts, None, None, None, fees_value)

    # Concentrated: an unpriced side only matters if it holds tokens
    if value0 is not None and amounts.amount1 == 0:
        return PositionValuation(amounts, value0, 0.0, value0, fees_value, method="priced")
    if value1 is not None and amounts.amount0 == 0:
        return PositionValuation(amounts, 0.0, value1, value1, fees_value, method="priced")
    return PositionValuation(amounts, value0, value1, None, fees_value)
