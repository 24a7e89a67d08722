#!/usr/bin/env python3
"""
Protocol Registry — ETCswap V2/V3 Contract Address Configuration
=================================================================

Maps each supported AMM protocol to its Factory (and, for V3, its
NonfungiblePositionManager) contract addresses per chain.

Compatibility Rules:
  ✅ ETCswap V2 — Uniswap V2 fork (getPair, getReserves, totalSupply)
  ✅ ETCswap V3 — Uniswap V3 fork (same positions() ABI), identical
                  addresses on mainnet and Mordor

Contract Address Sources:
  ETCswap : https://github.com/etcswap/.github-private/blob/main/profile/README.md
  V2 info : https://v2-info.etcswap.org
  V3 info : https://v3-info.etcswap.org
"""

from typing import Dict, List, Optional

from lp_valuator.central_config import ETC_MAINNET_CHAIN_ID, MORDOR_TESTNET_CHAIN_ID

# ── Protocol Registry ───────────────────────────────────────────────────
#
# Structure:
#   PROTOCOL_REGISTRY[protocol_slug] = {
#       "name": str,                       # Display name
#       "icon": str,                       # Emoji for CLI
#       "kind": str,                       # Pool variant read from it
#       "chains": {
#           chain_id: {
#               "factory": "0x...",
#               "position_manager": "0x...",   # V3 only
#           }
#       }
#   }

_V3_CONTRACTS = {
    "factory": "0x2624E907BcC04f93C8f29d7C7149a8700Ceb8cDC",
    "position_manager": "0x3CEDe6562D6626A04d7502CC35720901999AB699",
}

PROTOCOL_REGISTRY: Dict[str, dict] = {
    # ── ETCswap V2 ──────────────────────────────────────────────────
    # Constant-product pairs. Different factories per chain.
    "etcswap_v2": {
        "name": "ETCswap V2",
        "icon": "🔁",
        "kind": "constant-product",
        "chains": {
            ETC_MAINNET_CHAIN_ID: {
                "factory": "0x0307cd3D7DA98A29e6Ed0D2137be386Ec1e4Bc9C",
                "router": "0x79Bf07555C34e68C4Ae93642d1007D7f908d60F5",
            },
            MORDOR_TESTNET_CHAIN_ID: {
                "factory": "0x212eE1B5c8C26ff5B2c4c14CD1C54486Fe23ce70",
                "router": "0x582A87594c86b204920f9e337537b5Aa1fefC07C",
            },
        },
    },
    # ── ETCswap V3 ──────────────────────────────────────────────────
    # Concentrated liquidity. Same addresses on both chains (CREATE2).
    "etcswap_v3": {
        "name": "ETCswap V3",
        "icon": "🎯",
        "kind": "concentrated-liquidity",
        "chains": {
            ETC_MAINNET_CHAIN_ID: dict(_V3_CONTRACTS),
            MORDOR_TESTNET_CHAIN_ID: dict(_V3_CONTRACTS),
        },
    },
}


# ── Helper Functions ────────────────────────────────────────────────────


def get_protocols_for_chain(chain_id: int) -> List[dict]:
    """
    Get all protocols deployed on a given chain.

    Returns:
        List of dicts: [{slug, name, icon, kind, factory, position_manager}, ...]
    """
    protocols = []
    for slug, proto in PROTOCOL_REGISTRY.items():
        if chain_id in proto["chains"]:
            addrs = proto["chains"][chain_id]
            protocols.append(
                {
                    "slug": slug,
                    "name": proto["name"],
                    "icon": proto["icon"],
                    "kind": proto["kind"],
                    "factory": addrs["factory"],
                    "position_manager": addrs.get("position_manager"),
                }
            )
    return protocols


def get_factory_address(protocol_slug: str, chain_id: int) -> Optional[str]:
    """Get the Factory address for a specific protocol + chain."""
    proto = PROTOCOL_REGISTRY.get(protocol_slug)
    if not proto or chain_id not in proto.get("chains", {}):
        return None
    return proto["chains"][chain_id]["factory"]


def get_position_manager_address(protocol_slug: str, chain_id: int) -> Optional[str]:
    """Get the NonfungiblePositionManager address (V3 only)."""
    proto = PROTOCOL_REGISTRY.get(protocol_slug)
    if not proto or chain_id not in proto.get("chains", {}):
        return None
    return proto["chains"][chain_id].get("position_manager")


def get_protocol_display_name(protocol_slug: str) -> str:
    """Get display name for a protocol slug."""
    proto = PROTOCOL_REGISTRY.get(protocol_slug)
    return proto["name"] if proto else protocol_slug
