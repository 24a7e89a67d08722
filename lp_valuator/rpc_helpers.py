#!/usr/bin/env python3
"""
RPC Helpers — ABI Words and a Minimal JSON-RPC Client
=====================================================

Everything pool_reader.py needs to talk to an Ethereum Classic node
without web3.py:

  • ABI word encoding/decoding for the handful of types ETCswap returns
    (uint256, int24 sign-extended to int256, address, uint24)
  • eth_call, batched eth_call and eth_blockNumber over httpx
  • Function selectors for ERC-20, UniswapV2 pairs/factory and the V3
    NonfungiblePositionManager/factory/pool

ABI layout reference:
  https://docs.soliditylang.org/en/latest/abi-spec.html

A "word" is 32 bytes (64 hex chars); "slot" N is the N-th word of a
return value.
"""

import httpx
from typing import Any, Dict, List, Tuple

WORD_HEX = 64                 # 32-byte word as hex
ADDRESS_HEX = 40              # 20-byte address as hex
ADDRESS_PAD_HEX = WORD_HEX - ADDRESS_HEX
Q256 = 1 << 256
SIGN_BIT = 1 << 255

ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX

# keccak256(signature)[:4]
SELECTORS: dict[str, str] = {
    "balanceOf":   "0x70a08231",  # balanceOf(address)          ERC-20 / ERC-721
    "totalSupply": "0x18160ddd",  # totalSupply()               V2 pair LP supply
    "getPair":     "0xe6a43905",  # getPair(address,address)    UniswapV2Factory
    "getReserves": "0x0902f1ac",  # getReserves()               UniswapV2Pair
    "ownerOf":     "0x6352211e",  # ownerOf(uint256)            position NFT
    "positions":   "0x99fbab88",  # positions(uint256)          NonfungiblePositionManager
    "getPool":     "0x1698ee82",  # getPool(address,address,uint24)  UniswapV3Factory
    "slot0":       "0x3850c7bd",  # slot0()                     UniswapV3Pool
}


# ── Encoding ────────────────────────────────────────────────────────────

def encode_uint256(value: int) -> str:
    """One word for an unsigned integer, no 0x prefix.

    >>> encode_uint256(1)[-4:]
    '0001'
    """
    if value < 0:
        raise ValueError(f"uint256 must be non-negative, got {value}")
    return f"{value:0{WORD_HEX}x}"


def encode_address(addr: str) -> str:
    """Address left-padded to one word, lower-cased, no 0x prefix."""
    return addr.lower().removeprefix("0x").rjust(WORD_HEX, "0")


def encode_uint24(val: int) -> str:
    """Fee tier argument for getPool (uint24 occupies a full word)."""
    return encode_uint256(val)


def build_calldata(selector: str, *words: str) -> str:
    """Selector followed by pre-encoded words."""
    return selector + "".join(words)


# ── Decoding ────────────────────────────────────────────────────────────

def _word(hex_data: str, slot: int) -> str:
    start = slot * WORD_HEX
    word = hex_data[start:start + WORD_HEX]
    if len(word) != WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return word


def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Unsigned integer in word ``slot`` of a 0x-less return value."""
    return int(_word(hex_data, slot), 16)


def decode_int(hex_data: str, slot: int = 0) -> int:
    """Two's-complement signed integer; covers sign-extended int24 ticks."""
    val = decode_uint(hex_data, slot)
    return val - Q256 if val >= SIGN_BIT else val


def decode_address(hex_data: str, slot: int = 0) -> str:
    """Lower-cased 0x address held in the low 20 bytes of a word."""
    return "0x" + _word(hex_data, slot)[ADDRESS_PAD_HEX:]


# ── JSON-RPC ────────────────────────────────────────────────────────────

def _call_request(to: str, data: str, request_id: int = 1) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "eth_call",
        "params": [{"to": to, "data": data}, "latest"],
    }


async def _post(rpc_url: str, payload: Any, timeout: int) -> Any:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(rpc_url, json=payload)
            return resp.json()
    except httpx.TimeoutException as e:
        raise RuntimeError("RPC error: request timed out") from e
    except httpx.HTTPError as e:
        # CWE-209: the node URL stays out of the message
        raise RuntimeError("RPC error: network request failed") from e
    except ValueError as e:
        raise RuntimeError("RPC error: invalid JSON reply") from e


async def eth_call(rpc_url: str, to: str, data: str, timeout: int = 20) -> str:
    """
    Single read-only contract call at the latest block.

    Returns the result hex without its 0x prefix.

    Raises:
        RuntimeError: The node returned an error object, or the call
            returned no data (no contract at ``to``, or a revert).
    """
    reply = await _post(rpc_url, _call_request(to, data), timeout)
    if "error" in reply:
        raise RuntimeError(f"RPC error: {reply['error'].get('message', reply['error'])}")
    raw = reply.get("result", "0x")
    if len(raw) < 4:
        raise RuntimeError("Empty response — contract may not exist at this address")
    return raw[2:]


async def eth_call_batch(rpc_url: str, calls: List[Tuple[str, str]], timeout: int = 20) -> List[str]:
    """
    Several eth_calls in one HTTP round trip.

    ``calls`` is a list of (contract_address, calldata). Results come back
    in the same order, matched by request id; an entry that failed or
    reverted is "".

    Raises:
        RuntimeError: The node answered the batch with a single object,
            which means it does not accept batches.
    """
    payload = [_call_request(to, data, i) for i, (to, data) in enumerate(calls, 1)]
    replies = await _post(rpc_url, payload, timeout)

    if not isinstance(replies, list):
        raise RuntimeError(f"RPC error: batch not supported ({replies.get('error', replies)})")

    by_id = {r.get("id"): r for r in replies if isinstance(r, dict)}
    out = []
    for request_id in range(1, len(calls) + 1):
        raw = by_id.get(request_id, {}).get("result") or "0x"
        out.append(raw[2:])
    return out


async def eth_block_number(rpc_url: str, timeout: int = 10) -> int:
    """Latest block height."""
    payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []}
    reply = await _post(rpc_url, payload, timeout)
    if "error" in reply:
        raise RuntimeError(f"RPC error: {reply['error']}")
    return int(reply["result"], 16)
