"""
Portfolio Snapshot — JSON Loader
================================

A snapshot is the immutable input to one valuation run:

    {
      "chain_id": 61,
      "reference_prices": {"0x…": 20.5},
      "positions":    [ {pool fields…, "shares": "10"} ],
      "market_pools": [ {pool fields…} ]
    }

Pool entries carry a ``kind`` tag ("constant-product" or
"concentrated-liquidity"). Raw on-chain integers (reserves, shares,
liquidity, fees) may be JSON numbers or strings, since uint256 values
overflow JavaScript-style JSON producers.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

from lp_valuator.models import (
    CONCENTRATED_LIQUIDITY,
    CONSTANT_PRODUCT,
    ConcentratedLiquidityPool,
    ConstantProductPool,
    Pool,
    Position,
    Token,
)
from lp_valuator.price_derivation import normalize_prices


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Everything one valuation run needs, read once."""

    chain_id: int
    reference_prices: Dict[str, float] = field(default_factory=dict)
    positions: Tuple[Position, ...] = ()
    market_pools: Tuple[Pool, ...] = ()

    def all_pools(self) -> Tuple[Pool, ...]:
        """Position pools plus market pools, equal pools listed once."""
        seen = []
        for pool in [p.pool for p in self.positions] + list(self.market_pools):
            if pool not in seen:
                seen.append(pool)
        return tuple(seen)


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected integer, got boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name}: expected integer, got {value}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith(("0x", "-0x")):
                return int(text, 16)
            return int(text)
        except ValueError:
            raise ValueError(f"{name}: not an integer: {value!r}") from None
    raise ValueError(f"{name}: expected integer, got {type(value).__name__}")


def _require(data: Mapping[str, Any], key: str, context: str) -> Any:
    if key not in data:
        raise ValueError(f"{context}: missing field '{key}'")
    return data[key]


def token_from_dict(data: Mapping[str, Any]) -> Token:
    """Build a Token from ``{address, symbol, decimals}``."""
    if not isinstance(data, Mapping):
        raise ValueError("token: expected an object")
    address = _require(data, "address", "token")
    if not isinstance(address, str) or not address:
        raise ValueError("token: address must be a non-empty string")
    return Token(
        address=address,
        symbol=str(data.get("symbol", "UNK")),
        decimals=_parse_int(_require(data, "decimals", "token"), "token.decimals"),
    )


def pool_from_dict(data: Mapping[str, Any]) -> Pool:
    """Build a pool from a tagged dict. Raises ValueError on malformed input."""
    if not isinstance(data, Mapping):
        raise ValueError("pool: expected an object")
    kind = data.get("kind")
    token0 = token_from_dict(_require(data, "token0", "pool"))
    token1 = token_from_dict(_require(data, "token1", "pool"))

    if kind == CONSTANT_PRODUCT:
        return ConstantProductPool(
            token0=token0,
            token1=token1,
            reserve0=_parse_int(_require(data, "reserve0", kind), "reserve0"),
            reserve1=_parse_int(_require(data, "reserve1", kind), "reserve1"),
            total_shares=_parse_int(_require(data, "total_shares", kind), "total_shares"),
            address=str(data.get("address", "")),
            venue=str(data.get("venue", "V2")),
        )

    if kind == CONCENTRATED_LIQUIDITY:
        token_id = data.get("token_id")
        return ConcentratedLiquidityPool(
            token0=token0,
            token1=token1,
            fee_tier=_parse_int(_require(data, "fee_tier", kind), "fee_tier"),
            tick_lower=_parse_int(_require(data, "tick_lower", kind), "tick_lower"),
            tick_upper=_parse_int(_require(data, "tick_upper", kind), "tick_upper"),
            current_tick=_parse_int(_require(data, "current_tick", kind), "current_tick"),
            liquidity=_parse_int(_require(data, "liquidity", kind), "liquidity"),
            uncollected_fees0=_parse_int(data.get("uncollected_fees0", 0), "uncollected_fees0"),
            uncollected_fees1=_parse_int(data.get("uncollected_fees1", 0), "uncollected_fees1"),
            address=str(data.get("address", "")),
            venue=str(data.get("venue", "V3")),
            token_id=_parse_int(token_id, "token_id") if token_id is not None else None,
        )

    raise ValueError(
        f"Unknown pool kind: {kind!r}. Expected '{CONSTANT_PRODUCT}' or '{CONCENTRATED_LIQUIDITY}'"
    )


def position_from_dict(data: Mapping[str, Any]) -> Position:
    pool = pool_from_dict(data)
    shares = _parse_int(data.get("shares", 0), "shares")
    return Position(pool=pool, shares=shares)


def snapshot_from_dict(data: Mapping[str, Any]) -> PortfolioSnapshot:
    """Validate and build a PortfolioSnapshot from parsed JSON."""
    if not isinstance(data, Mapping):
        raise ValueError("snapshot: expected a JSON object")

    prices_raw = data.get("reference_prices", {})
    if not isinstance(prices_raw, Mapping):
        raise ValueError("reference_prices: expected an object")
    for addr, price in prices_raw.items():
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise ValueError(f"reference_prices[{addr}]: expected a number")
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"reference_prices[{addr}]: expected a positive finite price")

    positions_raw = data.get("positions", [])
    pools_raw = data.get("market_pools", [])
    if not isinstance(positions_raw, list) or not isinstance(pools_raw, list):
        raise ValueError("positions and market_pools must be lists")

    return PortfolioSnapshot(
        chain_id=_parse_int(data.get("chain_id", 61), "chain_id"),
        reference_prices=normalize_prices(prices_raw),
        positions=tuple(position_from_dict(p) for p in positions_raw),
        market_pools=tuple(pool_from_dict(p) for p in pools_raw),
    )


def load_snapshot(path: Union[str, Path]) -> PortfolioSnapshot:
    """Read a snapshot JSON file."""
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Snapshot file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path.name}: {e.msg} (line {e.lineno})") from e
    return snapshot_from_dict(data)
