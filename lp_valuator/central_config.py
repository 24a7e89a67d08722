"""
Project Configuration — API endpoints, version, calibration constants
======================================================================

Contains CoinGecko API configuration, JSON-RPC endpoints per chain,
project metadata and the heuristic calibration tables used by the
yield estimator.

Sources:
  CoinGecko API : https://docs.coingecko.com/reference/simple-price
  Uniswap V3    : https://uniswap.org/whitepaper-v3.pdf (tick range ±887272)
"""

import re
from dataclasses import dataclass
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Tuple

# Version — single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("lp-valuator")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LP Valuator"


@dataclass(frozen=True)
class CoinGeckoAPI:
    """CoinGecko public API configuration (no key required)."""

    BASE_URL: str = "https://api.coingecko.com/api/v3"
    SIMPLE_PRICE_ENDPOINT: str = "/simple/price"

    TIMEOUT_SECONDS: int = 15

    # Free tier allows ~30 calls/minute; stay under it
    MAX_REQUESTS_PER_MINUTE: int = 25

    @classmethod
    def get_simple_price_url(cls) -> str:
        """URL for the simple/price endpoint."""
        return f"{cls.BASE_URL}{cls.SIMPLE_PRICE_ENDPOINT}"

    @staticmethod
    def get_simple_price_params(ids: list[str]) -> dict[str, str]:
        """Query parameters for a batch USD quote with timestamps and 24h change."""
        return {
            "ids": ",".join(ids),
            "vs_currencies": "usd",
            "include_last_updated_at": "true",
            "include_24hr_change": "true",
        }


class PriceFeedConfig:
    """Unified reference-price configuration."""

    api = CoinGeckoAPI()


# Global instance
config = PriceFeedConfig()


# ── Chains ──────────────────────────────────────────────────────────────

ETC_MAINNET_CHAIN_ID = 61
MORDOR_TESTNET_CHAIN_ID = 63

CHAIN_NAMES = MappingProxyType(
    {
        ETC_MAINNET_CHAIN_ID: "Ethereum Classic",
        MORDOR_TESTNET_CHAIN_ID: "Mordor Testnet",
    }
)

RPC_URLS = MappingProxyType(
    {
        ETC_MAINNET_CHAIN_ID: "https://etc.rivet.link",
        MORDOR_TESTNET_CHAIN_ID: "https://rpc.mordor.etccooperative.org",
    }
)


# ── Arbitrage ───────────────────────────────────────────────────────────

DEFAULT_ARBITRAGE_THRESHOLD_PCT = 1.0


# ── Yield Heuristics ────────────────────────────────────────────────────
#
# None of these values are measured. They are calibration guesses kept in
# one place so they can be re-tuned without touching the estimator.


@dataclass(frozen=True)
class YieldCalibration:
    """Heuristic constants for APY estimation.

    Override with ``dataclasses.replace(DEFAULT_CALIBRATION, ...)``.
    """

    # Daily volume / TVL by pair tier
    primary_pair_volume_ratio: float = 1.5   # both tokens form the primary anchor pair
    anchor_pair_volume_ratio: float = 0.8    # one anchor token in the pair
    other_pair_volume_ratio: float = 0.3     # no anchor token

    # Constant-product swap fee (Uniswap V2 style, 0.30%)
    constant_product_fee_rate: float = 0.003

    # (min range width %, probability): first match wins, checked top-down
    in_range_tiers: Tuple[Tuple[float, float], ...] = (
        (80.0, 0.95),
        (40.0, 0.80),
        (20.0, 0.60),
        (10.0, 0.40),
    )
    in_range_floor: float = 0.20
    out_of_range_penalty: float = 0.5

    # Concentration factor = full-range width / position width, capped
    full_range_tick_width: int = 2 * 887272
    max_concentration_factor: float = 100.0

    # Unverified: the position is assumed to be ~5% of its pool, sharing
    # in-range fees with ~20 equally weighted LPs.
    assumed_pool_share: float = 0.05
    assumed_active_lps: int = 20

    # Below this range width an out-of-range position is rated low confidence
    narrow_range_width_pct: float = 20.0


DEFAULT_CALIBRATION = YieldCalibration()
