"""
Token Registry — ERC-20 Metadata and Reference-Price Anchors
=============================================================

Static token lists for Ethereum Classic mainnet (61) and Mordor testnet
(63), plus the anchor configuration that maps registry tokens to their
external reference prices.

Token list source:
  ETCswap V3 Token List (v0.14.0)
  https://github.com/etcswap/tokens/blob/main/ethereum-classic/all.json

Peg hierarchy (ETC_ANCHORS):
  WETC → CoinGecko "wrapped-etc-2", falls back to "ethereum-classic"
  USC  → CoinGecko "classic-usd" (fiat-backed, mint/redeem at 1:1 USD)
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from lp_valuator.central_config import ETC_MAINNET_CHAIN_ID, MORDOR_TESTNET_CHAIN_ID
from lp_valuator.models import PriceQuote, Token, normalize_address

# Same address on both networks
WETC_ADDRESS = "0x1953cab0E5bFa6D4a9BaD6E05fD46C1CC6527a5a"
USC_ADDRESS = "0xDE093684c796204224BC081f937aa059D903c52a"


@dataclass(frozen=True)
class TokenInfo:
    """Registry entry: on-chain token plus display name."""

    address: str
    symbol: str
    name: str
    decimals: int
    chain_id: int

    def to_token(self) -> Token:
        return Token(address=self.address, symbol=self.symbol, decimals=self.decimals)


ETC_MAINNET_TOKENS: Tuple[TokenInfo, ...] = (
    TokenInfo(WETC_ADDRESS, "WETC", "Wrapped ETC", 18, 61),
    TokenInfo(USC_ADDRESS, "USC", "Classic USD", 6, 61),
    TokenInfo("0xc0364FB5498c17088A5B1d98F6FB3dB2Df9866a9", "ECO", "Eco", 18, 61),
    TokenInfo("0xAccc4ae3a58E8bC3115E67eE67852044069F154A", "CYPH", "Cypher by ETCMC", 18, 61),
    TokenInfo("0x6c3B413C461c42a88160Ed1B1B31d6f7b02a1C83", "ETCPOW", "ETCPOW by ETCMC", 18, 61),
    TokenInfo("0x271dc2DF1390a7b319CAE1711A454fa416D6A309", "BOB", "BOB by TMWSTW", 0, 61),
    TokenInfo("0x152BAEFdc3b7E60985addF66FaB95e01089ba958", "GREASE", "GREASE by TMWSTW", 0, 61),
    TokenInfo("0x19b4343d272DA48779aB7A9a7436F95F63249871", "INK", "INK by TMWSTW", 0, 61),
    TokenInfo("0xa1Ccb330165cda264f35De7630De084e83d39134", "SLAG", "SLAG by TMWSTW", 0, 61),
    TokenInfo("0xbf72BfEFA79957Fa944431f25e73a6aAEBC81798", "TMWSTW", "TMWSTW Profits", 0, 61),
    TokenInfo("0xbB2D194ABBac8834c833dcCd0ccb266670b0d3de", "WAACC", "2015 Relic: AyeAyeCoin", 0, 61),
    TokenInfo("0x80365F3f6d3C335C3f2b7D72cD7Fa8Eb56c933c9", "BTCC", "2015 Relic: bitcoin", 8, 61),
)

MORDOR_TESTNET_TOKENS: Tuple[TokenInfo, ...] = (
    TokenInfo(WETC_ADDRESS, "WETC", "Wrapped ETC", 18, 63),
    TokenInfo(USC_ADDRESS, "USC", "Classic USD", 6, 63),
    TokenInfo("0xD333787e69DbfC47E67C59441e392Eb530b3DC19", "USDC", "USDC", 6, 63),
    TokenInfo("0xfC95e5e3f912823eE531687E2Df137940ef3BA2c", "USDT", "Tether", 6, 63),
    TokenInfo("0xbe147F327704d4F62dCA47172261585D7b12eEEC", "WBTC", "Wrapped Bitcoin", 8, 63),
)

_TOKENS_BY_CHAIN: Mapping[int, Tuple[TokenInfo, ...]] = MappingProxyType(
    {
        ETC_MAINNET_CHAIN_ID: ETC_MAINNET_TOKENS,
        MORDOR_TESTNET_CHAIN_ID: MORDOR_TESTNET_TOKENS,
    }
)


def get_tokens_for_chain(chain_id: int) -> Tuple[TokenInfo, ...]:
    """All registry tokens for a chain; empty for unknown chains."""
    return _TOKENS_BY_CHAIN.get(chain_id, ())


def get_token_info(address: str, chain_id: int) -> Optional[TokenInfo]:
    """Case-insensitive registry lookup."""
    key = normalize_address(address)
    for token in get_tokens_for_chain(chain_id):
        if normalize_address(token.address) == key:
            return token
    return None


# ── Reference-Price Anchors ─────────────────────────────────────────────


@dataclass(frozen=True)
class AnchorConfig:
    """
    Which tokens have an external reference price, and how to get it.

    reference_ids : token address → CoinGecko id quoted directly
    pegs          : token address → CoinGecko id of the pegged asset,
                    used when the direct quote is missing
    primary_pair  : the most liquid pair (highest volume tier)
    fiat_backed   : tokens redeemable 1:1 off-chain
    """

    reference_ids: Mapping[str, str] = field(default_factory=dict)
    pegs: Mapping[str, str] = field(default_factory=dict)
    primary_pair: Tuple[str, str] = ("", "")
    fiat_backed: FrozenSet[str] = frozenset()

    def __post_init__(self):
        # Normalise keys once so every lookup is case-insensitive
        object.__setattr__(
            self,
            "reference_ids",
            MappingProxyType({normalize_address(a): i for a, i in self.reference_ids.items()}),
        )
        object.__setattr__(
            self,
            "pegs",
            MappingProxyType({normalize_address(a): i for a, i in self.pegs.items()}),
        )
        object.__setattr__(
            self, "primary_pair", tuple(normalize_address(a) for a in self.primary_pair)
        )
        object.__setattr__(
            self, "fiat_backed", frozenset(normalize_address(a) for a in self.fiat_backed)
        )

    @property
    def anchor_addresses(self) -> FrozenSet[str]:
        return frozenset(self.reference_ids) | frozenset(self.pegs)

    def is_anchor(self, address: str) -> bool:
        return normalize_address(address) in self.anchor_addresses

    def is_primary_pair(self, address_a: str, address_b: str) -> bool:
        pair = {normalize_address(address_a), normalize_address(address_b)}
        return pair == set(self.primary_pair)

    def is_fiat_backed(self, address: str) -> bool:
        return normalize_address(address) in self.fiat_backed

    def quote_ids(self) -> List[str]:
        """Every CoinGecko id needed to resolve all anchors, sorted."""
        return sorted(set(self.reference_ids.values()) | set(self.pegs.values()))


ETC_ANCHORS = AnchorConfig(
    reference_ids={
        WETC_ADDRESS: "wrapped-etc-2",
        USC_ADDRESS: "classic-usd",
    },
    pegs={
        WETC_ADDRESS: "ethereum-classic",
    },
    primary_pair=(WETC_ADDRESS, USC_ADDRESS),
    fiat_backed=frozenset({USC_ADDRESS}),
)


def reference_prices_from_quotes(
    quotes: Mapping[str, PriceQuote], anchors: AnchorConfig = ETC_ANCHORS
) -> Dict[str, float]:
    """
    Resolve the peg hierarchy into ``address → usd_price``.

    The direct quote wins; the pegged asset's quote is the fallback.
    Anchors with neither (or a non-positive price) are omitted.
    """
    prices: Dict[str, float] = {}
    for address in sorted(anchors.anchor_addresses):
        for quote_id in (anchors.reference_ids.get(address), anchors.pegs.get(address)):
            quote = quotes.get(quote_id) if quote_id else None
            if quote is not None and quote.usd_price > 0:
                prices[address] = quote.usd_price
                break
    return prices
