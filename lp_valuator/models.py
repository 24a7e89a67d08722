"""
Data Model — Tokens, Pools, Positions and Valuation Results
============================================================

All entities are frozen value types built from a snapshot of external
state, consumed, then discarded. Nothing here holds references into
shared mutable state.

Pools form a tagged variant:
  ConstantProductPool       → Uniswap V2 style reserves + fungible shares
  ConcentratedLiquidityPool → Uniswap V3 style tick range + liquidity

Malformed pools (inverted tick range, negative reserves, unknown fee tier)
raise ValueError at construction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple, Union

Confidence = Literal["high", "medium", "low"]
Classification = Literal["premium", "discount"]
Mechanism = Literal["cex-trade", "fiat-backed"]
APYMethod = Literal["tvl-based", "concentrated-heuristic", "unavailable"]

CONSTANT_PRODUCT = "constant-product"
CONCENTRATED_LIQUIDITY = "concentrated-liquidity"

# Uniswap V3 fee tiers (fee / 1_000_000 = rate)
# Ref: https://docs.uniswap.org/concepts/protocol/fees
FEE_TIERS: Dict[int, str] = {
    100: "0.01%",
    500: "0.05%",
    3000: "0.30%",
    10000: "1.00%",
}

# currentTick == 0 with a range this far from zero is an unset placeholder
PLACEHOLDER_TICK_DISTANCE = 1000


def normalize_address(address: str) -> str:
    """Lower-case, stripped address used as a case-insensitive key."""
    return address.strip().lower()


def confidence_for_count(count: int) -> Confidence:
    """Confidence tier from the number of corroborating pools."""
    if count >= 3:
        return "high"
    if count == 2:
        return "medium"
    return "low"


# ── Tokens ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Token:
    """ERC-20 token metadata from the static registry."""

    address: str
    symbol: str
    decimals: int

    def __post_init__(self):
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")

    @property
    def key(self) -> str:
        return normalize_address(self.address)

    def same_as(self, other: "Token | str") -> bool:
        other_addr = other.address if isinstance(other, Token) else other
        return self.key == normalize_address(other_addr)

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "symbol": self.symbol, "decimals": self.decimals}


# ── Pools ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConstantProductPool:
    """
    Constant-product (x·y = k) pool.

    Ownership is a fungible share of both reserves:
      user_amount_i = reserve_i × shares / total_shares
    """

    token0: Token
    token1: Token
    reserve0: int
    reserve1: int
    total_shares: int
    address: str = ""
    venue: str = "V2"

    kind = CONSTANT_PRODUCT

    def __post_init__(self):
        if self.reserve0 < 0 or self.reserve1 < 0:
            raise ValueError(
                f"Reserves must be non-negative, got {self.reserve0}/{self.reserve1}"
            )
        if self.total_shares < 0:
            raise ValueError(f"total_shares must be non-negative, got {self.total_shares}")

    @property
    def label(self) -> str:
        return f"{self.venue} {self.token0.symbol}/{self.token1.symbol}"

    @property
    def is_empty(self) -> bool:
        """Either reserve is zero — no usable price or valuation."""
        return self.reserve0 == 0 or self.reserve1 == 0

    def reserves_decimal(self) -> Tuple[float, float]:
        """Reserves in human-readable units."""
        return (
            self.reserve0 / (10 ** self.token0.decimals),
            self.reserve1 / (10 ** self.token1.decimals),
        )

    def contains(self, token: "Token | str") -> bool:
        return self.token0.same_as(token) or self.token1.same_as(token)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "label": self.label,
            "address": self.address,
            "token0": self.token0.to_dict(),
            "token1": self.token1.to_dict(),
            "reserve0": self.reserve0,
            "reserve1": self.reserve1,
            "total_shares": self.total_shares,
        }


@dataclass(frozen=True)
class ConcentratedLiquidityPool:
    """
    Concentrated-liquidity position snapshot.

    ``liquidity`` is already scoped to one user's tick range. The position
    earns fees only while tick_lower <= current_tick < tick_upper.
    """

    token0: Token
    token1: Token
    fee_tier: int
    tick_lower: int
    tick_upper: int
    current_tick: int
    liquidity: int
    uncollected_fees0: int = 0
    uncollected_fees1: int = 0
    address: str = ""
    venue: str = "V3"
    token_id: Optional[int] = None

    kind = CONCENTRATED_LIQUIDITY

    def __post_init__(self):
        if self.tick_lower >= self.tick_upper:
            raise ValueError(
                f"tick_lower must be below tick_upper, got {self.tick_lower} >= {self.tick_upper}"
            )
        if self.fee_tier not in FEE_TIERS:
            raise ValueError(
                f"Unsupported fee tier: {self.fee_tier}. Available: {list(FEE_TIERS)}"
            )
        if self.liquidity < 0:
            raise ValueError(f"liquidity must be non-negative, got {self.liquidity}")
        if self.uncollected_fees0 < 0 or self.uncollected_fees1 < 0:
            raise ValueError("Uncollected fees must be non-negative")

    @property
    def label(self) -> str:
        return f"{self.venue} {self.token0.symbol}/{self.token1.symbol} {FEE_TIERS[self.fee_tier]}"

    @property
    def fee_rate(self) -> float:
        """Fee as a decimal, e.g. 3000 → 0.003."""
        return self.fee_tier / 1_000_000

    @property
    def in_range(self) -> bool:
        return self.tick_lower <= self.current_tick < self.tick_upper

    @property
    def tick_width(self) -> int:
        return self.tick_upper - self.tick_lower

    @property
    def has_placeholder_tick(self) -> bool:
        """currentTick of 0 while the range sits far from zero was never read."""
        return self.current_tick == 0 and (
            self.tick_lower > PLACEHOLDER_TICK_DISTANCE
            or self.tick_upper < -PLACEHOLDER_TICK_DISTANCE
        )

    def contains(self, token: "Token | str") -> bool:
        return self.token0.same_as(token) or self.token1.same_as(token)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "label": self.label,
            "address": self.address,
            "token_id": self.token_id,
            "token0": self.token0.to_dict(),
            "token1": self.token1.to_dict(),
            "fee_tier": self.fee_tier,
            "tick_lower": self.tick_lower,
            "tick_upper": self.tick_upper,
            "current_tick": self.current_tick,
            "liquidity": self.liquidity,
            "in_range": self.in_range,
        }


Pool = Union[ConstantProductPool, ConcentratedLiquidityPool]


@dataclass(frozen=True)
class Position:
    """A wallet's stake in a pool.

    ``shares`` is the LP token balance for constant-product pools and is
    ignored for concentrated-liquidity pools.
    """

    pool: Pool
    shares: int = 0

    def __post_init__(self):
        if self.shares < 0:
            raise ValueError(f"shares must be non-negative, got {self.shares}")

    @property
    def share_ratio(self) -> Optional[float]:
        if isinstance(self.pool, ConstantProductPool):
            if self.pool.total_shares == 0:
                return None
            return self.shares / self.pool.total_shares
        return None


# ── Prices ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceQuote:
    """Externally supplied, already-trusted USD reference price."""

    token_id: str
    usd_price: float
    source: str = "CoinGecko"
    last_updated: float = 0.0
    change_24h: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DerivedPrice:
    """USD price computed from pool ratios, one hop from a known price."""

    token: Token
    usd_price: float
    contributing_pools: Tuple[str, ...]
    confidence: Confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.to_dict(),
            "usd_price": self.usd_price,
            "contributing_pools": list(self.contributing_pools),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Deviation between a pool's implied spot price and a reference price."""

    token: Token
    dex_price: float
    reference_price: float
    deviation_percent: float
    classification: Classification
    mechanism: Mechanism
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.to_dict(),
            "dex_price": self.dex_price,
            "reference_price": self.reference_price,
            "deviation_percent": self.deviation_percent,
            "classification": self.classification,
            "mechanism": self.mechanism,
            "source": self.source,
        }


# ── Valuation Results ───────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenAmounts:
    """Decimal-adjusted token amounts (token0, token1)."""

    amount0: float
    amount1: float

    def __iter__(self):
        return iter((self.amount0, self.amount1))

    def to_dict(self) -> Dict[str, Any]:
        return {"amount0": self.amount0, "amount1": self.amount1}


@dataclass(frozen=True)
class PositionValuation:
    """USD valuation of one position."""

    amounts: Optional[TokenAmounts]
    value0_usd: Optional[float]
    value1_usd: Optional[float]
    total_value_usd: Optional[float]
    fees_value_usd: Optional[float] = None
    method: str = "unavailable"

    @property
    def available(self) -> bool:
        return self.total_value_usd is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amounts": self.amounts.to_dict() if self.amounts else None,
            "value0_usd": self.value0_usd,
            "value1_usd": self.value1_usd,
            "total_value_usd": self.total_value_usd,
            "fees_value_usd": self.fees_value_usd,
            "method": self.method,
        }


@dataclass(frozen=True)
class APYEstimate:
    """Heuristic annual yield estimate."""

    apy: float
    daily_fees_usd: float
    method: APYMethod
    confidence: Confidence
    concentration_factor: Optional[float] = None
    in_range_probability: Optional[float] = None
    details: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def unavailable(cls) -> "APYEstimate":
        return cls(apy=0.0, daily_fees_usd=0.0, method="unavailable", confidence="low")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
