#!/usr/bin/env python3
"""
On-Chain Pool Reader — ETCswap V2/V3 Wallet Positions
======================================================

Reads a wallet's liquidity positions directly from the blockchain via
public JSON-RPC and turns them into an immutable PortfolioSnapshot.
No API key required. No web3.py dependency — uses httpx for raw eth_call.

V2 flow (per registry token pair):
  1. Factory.getPair(token0, token1)   → pair address (zero = no pair)
  2. Pair.balanceOf(wallet)            → LP shares held
  3. Pair.totalSupply()                → total LP shares
  4. Pair.getReserves()                → reserve0, reserve1

V3 flow:
  1. PositionManager.balanceOf(wallet) → number of position NFTs
  2. PositionManager.ownerOf(id)       → scan ids 0..MAX_SCAN_RANGE
  3. PositionManager.positions(id)     → token0, token1, fee, ticks,
                                         liquidity, tokensOwed0/1
  4. Factory.getPool(t0, t1, fee)      → pool address
  5. Pool.slot0()                      → current tick

Contract References:
  UniswapV2Pair              : https://github.com/Uniswap/v2-core/blob/master/contracts/UniswapV2Pair.sol
  NonfungiblePositionManager : https://github.com/Uniswap/v3-periphery/blob/main/contracts/NonfungiblePositionManager.sol
  UniswapV3Pool              : https://github.com/Uniswap/v3-core/blob/main/contracts/UniswapV3Pool.sol
"""

import asyncio
import re
from typing import Dict, List, Mapping, Optional, Tuple

from lp_valuator.central_config import CHAIN_NAMES, RPC_URLS
from lp_valuator.models import ConcentratedLiquidityPool, ConstantProductPool, FEE_TIERS, Position
from lp_valuator.protocol_registry import (
    get_factory_address,
    get_position_manager_address,
    get_protocol_display_name,
)
from lp_valuator.rpc_helpers import (
    SELECTORS,
    ZERO_ADDRESS,
    build_calldata,
    decode_address as _decode_address,
    decode_int as _decode_int,
    decode_uint as _decode_uint,
    encode_address as _encode_address,
    encode_uint24 as _encode_uint24,
    encode_uint256 as _encode_uint256,
    eth_block_number as _eth_block_number,
    eth_call as _eth_call,
    eth_call_batch as _eth_call_batch,
)
from lp_valuator.snapshot import PortfolioSnapshot
from lp_valuator.token_registry import TokenInfo, get_token_info, get_tokens_for_chain

# Position NFT ids scanned with ownerOf (ETCswap V3 has no enumerable index)
MAX_SCAN_RANGE = 200
_SCAN_CHUNK = 50

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def _validate_wallet(wallet: str) -> None:
    if not wallet or not _ADDRESS_RE.fullmatch(wallet):
        raise ValueError(f"Invalid wallet address: {wallet}")


def _sorted_pairs(tokens: Tuple[TokenInfo, ...]) -> List[Tuple[TokenInfo, TokenInfo]]:
    """All token pairs with token0 < token1 by address (Uniswap V2 convention)."""
    pairs = []
    for i, token_a in enumerate(tokens):
        for token_b in tokens[i + 1:]:
            if token_a.address.lower() < token_b.address.lower():
                pairs.append((token_a, token_b))
            else:
                pairs.append((token_b, token_a))
    return pairs


class PoolReader:
    """
    Reads ETCswap V2 and V3 positions for a wallet.

    Usage:
        reader = PoolReader(61)                        # ETC mainnet
        positions = await reader.read_v2_positions("0x...")
        snapshot = await reader.read_snapshot("0x...", reference_prices)
    """

    def __init__(self, chain_id: int = 61):
        if chain_id not in RPC_URLS:
            raise ValueError(
                f"Unsupported chain: {chain_id}. Available: {list(RPC_URLS.keys())}"
            )
        self.chain_id = chain_id
        self.chain_name = CHAIN_NAMES[chain_id]
        self.rpc_url = RPC_URLS[chain_id]
        self.v2_factory = get_factory_address("etcswap_v2", chain_id)
        self.v3_factory = get_factory_address("etcswap_v3", chain_id)
        self.position_manager = get_position_manager_address("etcswap_v3", chain_id)

    async def _call_many(self, calls: List[Tuple[str, str]]) -> List[str]:
        """Batch eth_call; falls back to sequential calls if batching fails."""
        if not calls:
            return []
        try:
            return await _eth_call_batch(self.rpc_url, calls)
        except Exception:  # noqa: BLE001
            results = []
            for to, data in calls:
                try:
                    results.append(await _eth_call(self.rpc_url, to, data))
                except Exception:  # noqa: BLE001
                    results.append("")
            return results

    async def get_block_number(self) -> int:
        """Current block number for the audit trail; 0 if unavailable."""
        try:
            return await _eth_block_number(self.rpc_url)
        except Exception:  # noqa: BLE001
            return 0

    # ── V2 ──────────────────────────────────────────────────────────────

    async def scan_v2_pairs(self, wallet: str) -> List[Tuple[ConstantProductPool, int]]:
        """
        Every existing registry pair with the wallet's LP balance.

        Returns:
            List of (pool, wallet_shares), including zero balances.
        """
        _validate_wallet(wallet)
        tokens = get_tokens_for_chain(self.chain_id)
        pairs = _sorted_pairs(tokens)
        print(f"  🔁 Scanning {len(pairs)} {get_protocol_display_name('etcswap_v2')} pairs "
              f"on {self.chain_name}...")

        pair_calls = [
            (
                self.v2_factory,
                build_calldata(
                    SELECTORS["getPair"], _encode_address(t0.address), _encode_address(t1.address)
                ),
            )
            for t0, t1 in pairs
        ]
        pair_results = await self._call_many(pair_calls)

        existing = []
        for (t0, t1), raw in zip(pairs, pair_results):
            if not raw:
                continue
            pair_address = _decode_address(raw, 0)
            if pair_address != ZERO_ADDRESS:
                existing.append((t0, t1, pair_address))

        async def _read_pair(t0: TokenInfo, t1: TokenInfo, pair_address: str):
            batch = await self._call_many([
                (pair_address, build_calldata(SELECTORS["balanceOf"], _encode_address(wallet))),
                (pair_address, SELECTORS["totalSupply"]),
                (pair_address, SELECTORS["getReserves"]),
            ])
            if not all(batch):
                print(f"     ⚠️  {t0.symbol}/{t1.symbol} — pair read failed")
                return None
            pool = ConstantProductPool(
                token0=t0.to_token(),
                token1=t1.to_token(),
                reserve0=_decode_uint(batch[2], 0),
                reserve1=_decode_uint(batch[2], 1),
                total_shares=_decode_uint(batch[1], 0),
                address=pair_address,
                venue="ETCswap V2",
            )
            return pool, _decode_uint(batch[0], 0)

        results = await asyncio.gather(*[_read_pair(*p) for p in existing])
        return [r for r in results if r is not None]

    async def read_v2_positions(self, wallet: str) -> List[Position]:
        """Constant-product positions with a non-zero LP balance."""
        scanned = await self.scan_v2_pairs(wallet)
        positions = [Position(pool=pool, shares=shares) for pool, shares in scanned if shares > 0]
        print(f"     📊 Found {len(positions)} V2 position(s)")
        return positions

    # ── V3 ──────────────────────────────────────────────────────────────

    async def get_position_count(self, wallet: str) -> int:
        """balanceOf(wallet) on the NonfungiblePositionManager."""
        calldata = build_calldata(SELECTORS["balanceOf"], _encode_address(wallet))
        result = await _eth_call(self.rpc_url, self.position_manager, calldata)
        return _decode_uint(result, 0)

    async def find_token_ids(self, wallet: str, count: int) -> List[int]:
        """Scan ownerOf(0..MAX_SCAN_RANGE) until ``count`` owned ids are found."""
        owned: List[int] = []
        wallet_key = wallet.lower()
        for start in range(0, MAX_SCAN_RANGE + 1, _SCAN_CHUNK):
            ids = list(range(start, min(start + _SCAN_CHUNK, MAX_SCAN_RANGE + 1)))
            calls = [
                (self.position_manager, build_calldata(SELECTORS["ownerOf"], _encode_uint256(i)))
                for i in ids
            ]
            results = await self._call_many(calls)
            for token_id, raw in zip(ids, results):
                # Burned or unminted ids revert and come back empty
                if raw and _decode_address(raw, 0).lower() == wallet_key:
                    owned.append(token_id)
            if len(owned) >= count:
                break
        return owned

    async def read_v3_position(self, token_id: int) -> Optional[ConcentratedLiquidityPool]:
        """
        One position NFT as a pool snapshot.

        Returns None for closed (zero-liquidity) positions, unregistered
        tokens or unsupported fee tiers. A failed slot0() read leaves the
        tick at 0, which the valuation treats as an unread placeholder.
        """
        calldata = build_calldata(SELECTORS["positions"], _encode_uint256(token_id))
        result = await _eth_call(self.rpc_url, self.position_manager, calldata)

        token0_addr = _decode_address(result, 2)
        token1_addr = _decode_address(result, 3)
        fee = _decode_uint(result, 4)
        tick_lower = _decode_int(result, 5)
        tick_upper = _decode_int(result, 6)
        liquidity = _decode_uint(result, 7)
        owed0 = _decode_uint(result, 10)
        owed1 = _decode_uint(result, 11)

        if liquidity == 0:
            return None
        info0 = get_token_info(token0_addr, self.chain_id)
        info1 = get_token_info(token1_addr, self.chain_id)
        if info0 is None or info1 is None or fee not in FEE_TIERS:
            print(f"     #{token_id} — ⚠️  unregistered token or fee tier, skipped")
            return None

        pool_calldata = build_calldata(
            SELECTORS["getPool"],
            _encode_address(token0_addr),
            _encode_address(token1_addr),
            _encode_uint24(fee),
        )
        pool_raw = (await self._call_many([(self.v3_factory, pool_calldata)]))[0]
        pool_address = _decode_address(pool_raw, 0) if pool_raw else ZERO_ADDRESS

        current_tick = 0
        if pool_address != ZERO_ADDRESS:
            slot0_raw = (await self._call_many([(pool_address, SELECTORS["slot0"])]))[0]
            if slot0_raw:
                current_tick = _decode_int(slot0_raw, 1)

        return ConcentratedLiquidityPool(
            token0=info0.to_token(),
            token1=info1.to_token(),
            fee_tier=fee,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            current_tick=current_tick,
            liquidity=liquidity,
            uncollected_fees0=owed0,
            uncollected_fees1=owed1,
            address=pool_address,
            venue="ETCswap V3",
            token_id=token_id,
        )

    async def read_v3_positions(self, wallet: str) -> List[Position]:
        """All open concentrated-liquidity positions owned by ``wallet``."""
        _validate_wallet(wallet)
        print(f"  🎯 Scanning {get_protocol_display_name('etcswap_v3')} on {self.chain_name}...")
        count = await self.get_position_count(wallet)
        print(f"     📊 Wallet holds {count} position NFT(s)")
        if count == 0:
            return []

        token_ids = await self.find_token_ids(wallet, count)
        if len(token_ids) < count:
            print(f"     ⚠️  Only {len(token_ids)} of {count} found in ids 0..{MAX_SCAN_RANGE}")

        async def _read(tid: int):
            try:
                return await self.read_v3_position(tid)
            except Exception:  # noqa: BLE001
                print(f"     #{tid} — ❌ Position read failed")
                return None

        pools = await asyncio.gather(*[_read(tid) for tid in token_ids])
        return [Position(pool=pool) for pool in pools if pool is not None]

    # ── Snapshot ────────────────────────────────────────────────────────

    async def read_snapshot(
        self, wallet: str, reference_prices: Mapping[str, float]
    ) -> PortfolioSnapshot:
        """
        Both protocols read concurrently, then frozen into one snapshot.

        V2 pairs the wallet holds no shares in are kept as market pools
        so they can still contribute derived prices.
        """
        _validate_wallet(wallet)
        v2_scan, v3_positions = await asyncio.gather(
            self.scan_v2_pairs(wallet),
            self.read_v3_positions(wallet),
        )
        v2_positions = [Position(pool=p, shares=s) for p, s in v2_scan if s > 0]
        market_pools = [p for p, s in v2_scan if s == 0 and not p.is_empty]

        print(f"  ✅ {len(v2_positions)} V2 + {len(v3_positions)} V3 position(s) loaded")
        prices: Dict[str, float] = {a.lower(): float(p) for a, p in reference_prices.items()}
        return PortfolioSnapshot(
            chain_id=self.chain_id,
            reference_prices=prices,
            positions=tuple(v2_positions + v3_positions),
            market_pools=tuple(market_pools),
        )
