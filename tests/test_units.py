"""
Unit Tests for LP Valuator Modules
==================================

Unit tests covering the I/O edges and glue modules:
  - models.py              (construction validation, labels)
  - token_registry.py      (token lists, anchors, peg hierarchy)
  - protocol_registry.py   (factory / position manager lookups)
  - central_config.py      (API config, calibration)
  - snapshot.py            (JSON snapshot parsing and errors)
  - rpc_helpers.py         (ABI encoding/decoding, mocked JSON-RPC)
  - price_feed.py          (CoinGecko client, mocked httpx)
  - pool_reader.py         (on-chain reader, mocked RPC)
  - valuation_engine.py    (full pipeline over a snapshot)
  - commands.py            (report rendering, error sanitization)
  - run.py                 (argparse parser structure)

All tests are offline — no network calls. Mock-based where needed.
"""

import asyncio
import dataclasses
import json
from unittest.mock import patch, MagicMock, AsyncMock

import httpx
import pytest

from lp_valuator.token_registry import USC_ADDRESS, WETC_ADDRESS

ECO_ADDRESS = "0xc0364FB5498c17088A5B1d98F6FB3dB2Df9866a9"
WALLET = "0x" + "1234abcd" * 5


def _token(address, symbol, decimals):
    return {"address": address, "symbol": symbol, "decimals": decimals}


SAMPLE_SNAPSHOT = {
    "chain_id": 61,
    "reference_prices": {WETC_ADDRESS: 20.0, USC_ADDRESS: 1.0},
    "positions": [
        {
            "kind": "constant-product",
            "token0": _token(WETC_ADDRESS, "WETC", 18),
            "token1": _token(USC_ADDRESS, "USC", 6),
            "reserve0": str(1000 * 10 ** 18),
            "reserve1": str(21000 * 10 ** 6),
            "total_shares": "1000",
            "shares": "100",
        },
        {
            "kind": "concentrated-liquidity",
            "token0": _token(ECO_ADDRESS, "ECO", 18),
            "token1": _token(USC_ADDRESS, "USC", 6),
            "fee_tier": 3000,
            "tick_lower": -290000,
            "tick_upper": -280000,
            "current_tick": -283000,
            "liquidity": str(10 ** 15),
            "token_id": 42,
        },
    ],
    "market_pools": [
        {
            "kind": "constant-product",
            "token0": _token(ECO_ADDRESS, "ECO", 18),
            "token1": _token(USC_ADDRESS, "USC", 6),
            "reserve0": str(1000 * 10 ** 18),
            "reserve1": str(500 * 10 ** 6),
            "total_shares": "1",
        },
    ],
}


def _mock_async_client(MockClient, response, method="post"):
    mock_client = AsyncMock()
    getattr(mock_client, method).return_value = response
    MockClient.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    MockClient.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_client


# ═══════════════════════════════════════════════════════════════════════════
# 1. models.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.models import (
    FEE_TIERS,
    APYEstimate,
    ConcentratedLiquidityPool,
    ConstantProductPool,
    Position,
    Token,
    confidence_for_count,
    normalize_address,
)

AAA = Token("0x" + "a" * 40, "AAA", 0)
BBB = Token("0x" + "b" * 40, "BBB", 0)


class TestModelValidation:
    def test_negative_decimals(self):
        with pytest.raises(ValueError):
            Token("0x" + "a" * 40, "AAA", -1)

    def test_negative_reserves(self):
        with pytest.raises(ValueError, match="Reserves"):
            ConstantProductPool(AAA, BBB, -1, 10, 10)

    def test_negative_total_shares(self):
        with pytest.raises(ValueError):
            ConstantProductPool(AAA, BBB, 1, 10, -10)

    def test_inverted_tick_range(self):
        with pytest.raises(ValueError, match="tick_lower"):
            ConcentratedLiquidityPool(AAA, BBB, 3000, 100, -100, 0, 1)

    def test_equal_ticks_rejected(self):
        with pytest.raises(ValueError):
            ConcentratedLiquidityPool(AAA, BBB, 3000, 100, 100, 0, 1)

    def test_unknown_fee_tier(self):
        with pytest.raises(ValueError, match="fee tier"):
            ConcentratedLiquidityPool(AAA, BBB, 2500, -100, 100, 0, 1)

    def test_negative_shares(self):
        with pytest.raises(ValueError):
            Position(ConstantProductPool(AAA, BBB, 1, 1, 1), shares=-1)

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            AAA.symbol = "ZZZ"


class TestModelHelpers:
    def test_fee_tiers(self):
        assert set(FEE_TIERS) == {100, 500, 3000, 10000}

    def test_labels(self):
        cp = ConstantProductPool(AAA, BBB, 1, 1, 1, venue="ETCswap V2")
        cl = ConcentratedLiquidityPool(AAA, BBB, 3000, -60, 60, 0, 1, venue="ETCswap V3")
        assert cp.label == "ETCswap V2 AAA/BBB"
        assert cl.label == "ETCswap V3 AAA/BBB 0.30%"
        assert cl.fee_rate == pytest.approx(0.003)
        assert cl.tick_width == 120

    def test_token_key_case_insensitive(self):
        upper = Token("0x" + "A" * 40, "AAA", 0)
        assert upper.key == AAA.key
        assert upper.same_as(AAA)
        assert AAA.same_as("0x" + "A" * 40)

    def test_normalize_address(self):
        assert normalize_address("  0xABC ") == "0xabc"

    @pytest.mark.parametrize("count,expected", [(0, "low"), (1, "low"), (2, "medium"), (3, "high"), (9, "high")])
    def test_confidence_for_count(self, count, expected):
        assert confidence_for_count(count) == expected

    def test_share_ratio(self):
        pool = ConstantProductPool(AAA, BBB, 1, 1, 200)
        assert Position(pool, shares=50).share_ratio == pytest.approx(0.25)
        assert Position(ConstantProductPool(AAA, BBB, 1, 1, 0)).share_ratio is None

    def test_apy_unavailable(self):
        est = APYEstimate.unavailable()
        assert est.apy == 0.0
        assert est.method == "unavailable"
        assert est.confidence == "low"

    def test_to_dict_serializable(self):
        cl = ConcentratedLiquidityPool(AAA, BBB, 500, -60, 60, 0, 1, token_id=5)
        data = cl.to_dict()
        assert data["kind"] == "concentrated-liquidity"
        assert data["in_range"] is True
        json.dumps(data)


# ═══════════════════════════════════════════════════════════════════════════
# 2. token_registry.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.models import PriceQuote
from lp_valuator.token_registry import (
    ETC_ANCHORS,
    ETC_MAINNET_TOKENS,
    MORDOR_TESTNET_TOKENS,
    AnchorConfig,
    get_token_info,
    get_tokens_for_chain,
    reference_prices_from_quotes,
)


class TestTokenRegistry:
    def test_mainnet_tokens(self):
        tokens = get_tokens_for_chain(61)
        assert tokens == ETC_MAINNET_TOKENS
        symbols = {t.symbol for t in tokens}
        assert {"WETC", "USC", "ECO"} <= symbols

    def test_mordor_tokens(self):
        assert get_tokens_for_chain(63) == MORDOR_TESTNET_TOKENS

    def test_unknown_chain_empty(self):
        assert get_tokens_for_chain(1) == ()

    def test_addresses_well_formed(self):
        for token in ETC_MAINNET_TOKENS + MORDOR_TESTNET_TOKENS:
            assert token.address.startswith("0x")
            assert len(token.address) == 42
            assert token.decimals >= 0

    def test_no_duplicate_addresses_per_chain(self):
        for tokens in (ETC_MAINNET_TOKENS, MORDOR_TESTNET_TOKENS):
            keys = [t.address.lower() for t in tokens]
            assert len(keys) == len(set(keys))

    def test_lookup_case_insensitive(self):
        info = get_token_info(USC_ADDRESS.lower(), 61)
        assert info is not None
        assert info.symbol == "USC"
        assert info.decimals == 6

    def test_lookup_unknown(self):
        assert get_token_info("0x" + "0" * 40, 61) is None

    def test_to_token(self):
        token = get_token_info(WETC_ADDRESS, 63).to_token()
        assert token == Token(WETC_ADDRESS, "WETC", 18)


class TestAnchorConfig:
    def test_etc_anchors(self):
        assert ETC_ANCHORS.is_anchor(WETC_ADDRESS.upper().replace("0X", "0x"))
        assert ETC_ANCHORS.is_anchor(USC_ADDRESS)
        assert not ETC_ANCHORS.is_anchor(ECO_ADDRESS)

    def test_primary_pair_either_order(self):
        assert ETC_ANCHORS.is_primary_pair(WETC_ADDRESS, USC_ADDRESS)
        assert ETC_ANCHORS.is_primary_pair(USC_ADDRESS.lower(), WETC_ADDRESS)
        assert not ETC_ANCHORS.is_primary_pair(WETC_ADDRESS, ECO_ADDRESS)

    def test_fiat_backed(self):
        assert ETC_ANCHORS.is_fiat_backed(USC_ADDRESS)
        assert not ETC_ANCHORS.is_fiat_backed(WETC_ADDRESS)

    def test_quote_ids(self):
        assert ETC_ANCHORS.quote_ids() == ["classic-usd", "ethereum-classic", "wrapped-etc-2"]

    def test_custom_anchor_config(self):
        anchors = AnchorConfig(reference_ids={"0xAB": "foo"}, fiat_backed=frozenset({"0xAB"}))
        assert anchors.is_anchor("0xab")
        assert anchors.is_fiat_backed("0xAb")
        assert anchors.quote_ids() == ["foo"]


class TestReferencePrices:
    @staticmethod
    def _quotes(**prices):
        return {
            qid.replace("_", "-"): PriceQuote(token_id=qid.replace("_", "-"), usd_price=p)
            for qid, p in prices.items()
        }

    def test_direct_quote_wins(self):
        quotes = self._quotes(wrapped_etc_2=20.5, ethereum_classic=20.0, classic_usd=1.0)
        prices = reference_prices_from_quotes(quotes)
        assert prices[WETC_ADDRESS.lower()] == 20.5
        assert prices[USC_ADDRESS.lower()] == 1.0

    def test_peg_fallback(self):
        quotes = self._quotes(ethereum_classic=20.0, classic_usd=1.0)
        prices = reference_prices_from_quotes(quotes)
        assert prices[WETC_ADDRESS.lower()] == 20.0

    def test_non_positive_quote_skipped(self):
        quotes = self._quotes(wrapped_etc_2=0.0, ethereum_classic=19.0)
        prices = reference_prices_from_quotes(quotes)
        assert prices[WETC_ADDRESS.lower()] == 19.0
        assert USC_ADDRESS.lower() not in prices

    def test_no_quotes(self):
        assert reference_prices_from_quotes({}) == {}


# ═══════════════════════════════════════════════════════════════════════════
# 3. protocol_registry.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.protocol_registry import (
    PROTOCOL_REGISTRY,
    get_factory_address,
    get_position_manager_address,
    get_protocol_display_name,
    get_protocols_for_chain,
)


class TestProtocolRegistry:
    def test_both_protocols_registered(self):
        assert set(PROTOCOL_REGISTRY) == {"etcswap_v2", "etcswap_v3"}

    def test_v2_factories_differ_per_chain(self):
        mainnet = get_factory_address("etcswap_v2", 61)
        mordor = get_factory_address("etcswap_v2", 63)
        assert mainnet == "0x0307cd3D7DA98A29e6Ed0D2137be386Ec1e4Bc9C"
        assert mordor != mainnet

    def test_v3_same_on_both_chains(self):
        assert get_factory_address("etcswap_v3", 61) == get_factory_address("etcswap_v3", 63)
        assert get_position_manager_address("etcswap_v3", 61) == (
            "0x3CEDe6562D6626A04d7502CC35720901999AB699"
        )

    def test_v2_has_no_position_manager(self):
        assert get_position_manager_address("etcswap_v2", 61) is None

    def test_unknown_lookups(self):
        assert get_factory_address("nope", 61) is None
        assert get_factory_address("etcswap_v2", 1) is None
        assert get_protocol_display_name("nope") == "nope"
        assert get_protocol_display_name("etcswap_v3") == "ETCswap V3"

    def test_protocols_for_chain(self):
        protocols = get_protocols_for_chain(63)
        assert {p["slug"] for p in protocols} == {"etcswap_v2", "etcswap_v3"}
        assert get_protocols_for_chain(1) == []


# ═══════════════════════════════════════════════════════════════════════════
# 4. central_config.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.central_config import (
    CHAIN_NAMES,
    DEFAULT_CALIBRATION,
    PROJECT_VERSION,
    RPC_URLS,
    config,
)


class TestCentralConfig:
    def test_simple_price_url(self):
        url = config.api.get_simple_price_url()
        assert url.startswith("https://")
        assert url.endswith("/simple/price")

    def test_simple_price_params(self):
        params = config.api.get_simple_price_params(["a", "b"])
        assert params["ids"] == "a,b"
        assert params["vs_currencies"] == "usd"

    def test_rate_limit_below_free_tier(self):
        assert 0 < config.api.MAX_REQUESTS_PER_MINUTE <= 30

    def test_chains(self):
        assert set(CHAIN_NAMES) == set(RPC_URLS) == {61, 63}
        for url in RPC_URLS.values():
            assert url.startswith("https://")

    def test_version_string(self):
        assert isinstance(PROJECT_VERSION, str)
        assert PROJECT_VERSION

    def test_calibration_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_CALIBRATION.assumed_pool_share = 0.5

    def test_in_range_tiers_descending(self):
        widths = [w for w, _ in DEFAULT_CALIBRATION.in_range_tiers]
        assert widths == sorted(widths, reverse=True)


# ═══════════════════════════════════════════════════════════════════════════
# 5. snapshot.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.snapshot import (
    PortfolioSnapshot,
    load_snapshot,
    pool_from_dict,
    snapshot_from_dict,
)


class TestSnapshotParsing:
    def test_sample_snapshot(self):
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        assert snap.chain_id == 61
        assert len(snap.positions) == 2
        assert len(snap.market_pools) == 1
        assert snap.positions[0].shares == 100
        assert snap.positions[0].pool.reserve0 == 1000 * 10 ** 18
        assert snap.positions[1].pool.token_id == 42

    def test_prices_keyed_lowercase(self):
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        assert set(snap.reference_prices) == {WETC_ADDRESS.lower(), USC_ADDRESS.lower()}

    def test_defaults(self):
        snap = snapshot_from_dict({})
        assert snap.chain_id == 61
        assert snap.positions == ()
        assert snap.reference_prices == {}

    @pytest.mark.parametrize("raw,expected", [(10, 10), ("10", 10), ("0x10", 16), (1e3, 1000)])
    def test_integer_formats(self, raw, expected):
        data = dict(SAMPLE_SNAPSHOT["market_pools"][0], reserve0=raw)
        assert pool_from_dict(data).reserve0 == expected

    @pytest.mark.parametrize("raw", [True, "abc", 1.5, None, [1]])
    def test_bad_integers(self, raw):
        data = dict(SAMPLE_SNAPSHOT["market_pools"][0], reserve0=raw)
        with pytest.raises(ValueError):
            pool_from_dict(data)

    def test_unknown_kind(self):
        data = dict(SAMPLE_SNAPSHOT["market_pools"][0], kind="stable-swap")
        with pytest.raises(ValueError, match="Unknown pool kind"):
            pool_from_dict(data)

    def test_missing_field(self):
        data = dict(SAMPLE_SNAPSHOT["market_pools"][0])
        del data["total_shares"]
        with pytest.raises(ValueError, match="total_shares"):
            pool_from_dict(data)

    def test_non_numeric_price(self):
        with pytest.raises(ValueError, match="reference_prices"):
            snapshot_from_dict({"reference_prices": {WETC_ADDRESS: "20"}})

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), 0, -20.0])
    def test_unusable_price_rejected(self, bad):
        with pytest.raises(ValueError, match="positive finite"):
            snapshot_from_dict({"reference_prices": {WETC_ADDRESS: bad}})

    def test_nan_literal_in_file_rejected(self, tmp_path):
        path = tmp_path / "portfolio.json"
        path.write_text('{"reference_prices": {"%s": NaN}}' % WETC_ADDRESS, encoding="utf-8")
        with pytest.raises(ValueError, match="positive finite"):
            load_snapshot(path)

    def test_positions_must_be_list(self):
        with pytest.raises(ValueError):
            snapshot_from_dict({"positions": {}})

    def test_invalid_pool_rejected(self):
        bad = dict(SAMPLE_SNAPSHOT["positions"][1], tick_lower=0, tick_upper=0)
        with pytest.raises(ValueError):
            snapshot_from_dict({"positions": [bad]})

    def test_all_pools_deduplicated(self):
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        duplicate = PortfolioSnapshot(
            chain_id=61,
            positions=snap.positions,
            market_pools=snap.market_pools + (snap.positions[0].pool,),
        )
        assert len(duplicate.all_pools()) == 3


class TestLoadSnapshot:
    def test_load_file(self, tmp_path):
        path = tmp_path / "portfolio.json"
        path.write_text(json.dumps(SAMPLE_SNAPSHOT), encoding="utf-8")
        assert len(load_snapshot(path).positions) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_snapshot(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_snapshot(path)


# ═══════════════════════════════════════════════════════════════════════════
# 6. rpc_helpers.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.rpc_helpers import (
    WORD_HEX,
    Q256,
    SELECTORS,
    ZERO_ADDRESS,
    build_calldata,
    decode_address,
    decode_int,
    decode_uint,
    encode_address,
    encode_uint24,
    encode_uint256,
    eth_block_number,
    eth_call,
    eth_call_batch,
)


class TestRpcConstants:
    def test_selectors_are_4_bytes(self):
        for name, selector in SELECTORS.items():
            assert selector.startswith("0x"), name
            assert len(selector) == 10, name

    def test_zero_address(self):
        assert ZERO_ADDRESS == "0x" + "0" * 40


class TestAbiEncoding:
    def test_encode_uint256(self):
        assert encode_uint256(1) == "0" * 63 + "1"
        assert len(encode_uint256(2 ** 255)) == WORD_HEX

    def test_encode_uint256_negative(self):
        with pytest.raises(ValueError):
            encode_uint256(-1)

    def test_encode_address(self):
        encoded = encode_address(WETC_ADDRESS)
        assert len(encoded) == WORD_HEX
        assert encoded.endswith(WETC_ADDRESS[2:].lower())
        assert encoded.startswith("0" * 24)

    def test_encode_uint24(self):
        assert encode_uint24(3000).endswith("bb8")

    def test_build_calldata(self):
        data = build_calldata(SELECTORS["balanceOf"], encode_address(WALLET))
        assert data.startswith("0x70a08231")
        assert len(data) == 10 + WORD_HEX


class TestAbiDecoding:
    def test_decode_uint_slots(self):
        hex_data = encode_uint256(7) + encode_uint256(9)
        assert decode_uint(hex_data, 0) == 7
        assert decode_uint(hex_data, 1) == 9

    def test_decode_negative_int(self):
        assert decode_int(format(Q256 - 887272, "064x")) == -887272
        assert decode_int(encode_uint256(60)) == 60

    def test_decode_address(self):
        assert decode_address(encode_address(USC_ADDRESS)) == USC_ADDRESS.lower()

    def test_short_response_raises(self):
        with pytest.raises(ValueError, match="too short"):
            decode_uint("abc", 0)
        with pytest.raises(ValueError):
            decode_address(encode_uint256(1), 1)


class TestEthCallMocked:
    """Test eth_call with mocked httpx responses."""

    def test_successful_call(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + "0" * 63 + "1"}

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            result = asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))
            assert result == "0" * 63 + "1"

    def test_rpc_error_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "jsonrpc": "2.0",
            "id": 1,
            "error": {"message": "execution reverted"},
        }

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            with pytest.raises(RuntimeError, match="RPC error"):
                asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))

    def test_empty_response_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x"}

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            with pytest.raises(RuntimeError, match="Empty response"):
                asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))

    def test_connection_error_becomes_runtime_error(self):
        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            mock_client = _mock_async_client(MockClient, MagicMock())
            mock_client.post.side_effect = httpx.ConnectError("connection refused")
            with pytest.raises(RuntimeError, match="RPC error: network request failed"):
                asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))

    def test_timeout_becomes_runtime_error(self):
        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            mock_client = _mock_async_client(MockClient, MagicMock())
            mock_client.post.side_effect = httpx.ReadTimeout("slow node")
            with pytest.raises(RuntimeError, match="timed out"):
                asyncio.run(eth_block_number("http://fake"))

    def test_non_json_reply_becomes_runtime_error(self):
        mock_response = MagicMock()
        mock_response.json.side_effect = ValueError("Expecting value")

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            with pytest.raises(RuntimeError, match="invalid JSON"):
                asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1")]))


class TestEthCallBatchMocked:
    def test_results_ordered_by_id(self):
        mock_response = MagicMock()
        mock_response.json.return_value = [
            {"jsonrpc": "2.0", "id": 2, "result": "0x" + "0" * 63 + "2"},
            {"jsonrpc": "2.0", "id": 1, "result": "0x" + "0" * 63 + "1"},
        ]

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            results = asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2")]))
            assert results == ["0" * 63 + "1", "0" * 63 + "2"]

    def test_failed_entries_empty(self):
        mock_response = MagicMock()
        mock_response.json.return_value = [
            {"jsonrpc": "2.0", "id": 1, "error": {"message": "reverted"}},
            {"jsonrpc": "2.0", "id": 2, "result": "0x"},
        ]

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            results = asyncio.run(
                eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2"), ("0xC", "0xD3")])
            )
            assert results == ["", "", ""]

    def test_batch_unsupported_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": None, "error": {"message": "no batch"}}

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            with pytest.raises(RuntimeError, match="batch"):
                asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1")]))


class TestBlockNumberMocked:
    def test_block_number(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x1b4"}

        with patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, mock_response)
            assert asyncio.run(eth_block_number("http://fake")) == 436


# ═══════════════════════════════════════════════════════════════════════════
# 7. price_feed.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.price_feed import CoinGeckoClient, _RateLimiter, fetch_reference_prices

COINGECKO_PAYLOAD = {
    "wrapped-etc-2": {"usd": 20.5, "last_updated_at": 1700000000, "usd_24h_change": -1.2},
    "ethereum-classic": {"usd": 20.4, "last_updated_at": 1700000000},
    "classic-usd": {"usd": 1.0, "last_updated_at": 1700000000},
}


def _coingecko_response(status=200, payload=None):
    mock_response = MagicMock()
    mock_response.status_code = status
    mock_response.json.return_value = COINGECKO_PAYLOAD if payload is None else payload
    return mock_response


class TestRateLimiter:
    def test_under_limit_records_requests(self):
        limiter = _RateLimiter(max_requests=5, period_seconds=60)

        async def _run():
            await limiter.acquire()
            await limiter.acquire()

        asyncio.run(_run())
        assert len(limiter._timestamps) == 2


class TestCoinGeckoMocked:
    def test_fetch_quotes(self):
        with patch("lp_valuator.price_feed.httpx.AsyncClient") as MockClient:
            client = _mock_async_client(MockClient, _coingecko_response(), method="get")
            quotes = asyncio.run(CoinGeckoClient().fetch_quotes(["wrapped-etc-2", "classic-usd"]))

        assert quotes["wrapped-etc-2"].usd_price == 20.5
        assert quotes["wrapped-etc-2"].change_24h == -1.2
        assert quotes["classic-usd"].change_24h is None
        assert quotes["classic-usd"].last_updated == 1700000000.0
        params = client.get.call_args.kwargs["params"]
        assert params["ids"] == "classic-usd,wrapped-etc-2"

    def test_empty_ids_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(CoinGeckoClient().fetch_quotes([]))

    def test_missing_id_raises(self):
        with patch("lp_valuator.price_feed.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, _coingecko_response(payload={"classic-usd": {}}), method="get")
            with pytest.raises(RuntimeError, match="Invalid price data"):
                asyncio.run(CoinGeckoClient().fetch_quotes(["classic-usd"]))

    @pytest.mark.parametrize("status,message", [(429, "Rate limit"), (500, "HTTP Error 500")])
    def test_http_errors(self, status, message):
        with patch("lp_valuator.price_feed.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, _coingecko_response(status=status), method="get")
            with pytest.raises(RuntimeError, match=message):
                asyncio.run(CoinGeckoClient().fetch_quotes(["classic-usd"]))

    def test_timeout(self):
        with patch("lp_valuator.price_feed.httpx.AsyncClient") as MockClient:
            client = _mock_async_client(MockClient, None, method="get")
            client.get.side_effect = httpx.TimeoutException("slow")
            with pytest.raises(RuntimeError, match="Timeout"):
                asyncio.run(CoinGeckoClient().fetch_quotes(["classic-usd"]))

    def test_fetch_reference_prices(self, capsys):
        with patch("lp_valuator.price_feed.httpx.AsyncClient") as MockClient:
            _mock_async_client(MockClient, _coingecko_response(), method="get")
            prices = asyncio.run(fetch_reference_prices())

        assert prices == {WETC_ADDRESS.lower(): 20.5, USC_ADDRESS.lower(): 1.0}
        assert "Reference prices loaded for 2" in capsys.readouterr().out


# ═══════════════════════════════════════════════════════════════════════════
# 8. pool_reader.py
# ═══════════════════════════════════════════════════════════════════════════

from pool_reader import MAX_SCAN_RANGE, PoolReader, _sorted_pairs

POOL_ADDRESS = "0x" + "ab" * 20


def _positions_response(token0=WETC_ADDRESS, token1=USC_ADDRESS, fee=3000,
                        tick_lower=-600, tick_upper=600, liquidity=10 ** 12, owed0=5, owed1=7):
    words = [
        encode_uint256(0),                        # nonce
        encode_address(ZERO_ADDRESS),             # operator
        encode_address(token0),
        encode_address(token1),
        encode_uint24(fee),
        format(tick_lower % Q256, "064x"),
        format(tick_upper % Q256, "064x"),
        encode_uint256(liquidity),
        encode_uint256(0),                        # feeGrowthInside0LastX128
        encode_uint256(0),                        # feeGrowthInside1LastX128
        encode_uint256(owed0),
        encode_uint256(owed1),
    ]
    return "".join(words)


class TestPoolReaderInit:
    def test_mainnet(self):
        reader = PoolReader(61)
        assert reader.chain_name == "Ethereum Classic"
        assert reader.v2_factory == get_factory_address("etcswap_v2", 61)
        assert reader.position_manager is not None

    def test_unsupported_chain(self):
        with pytest.raises(ValueError, match="Unsupported chain"):
            PoolReader(1)

    def test_invalid_wallet(self):
        with pytest.raises(ValueError, match="Invalid wallet"):
            asyncio.run(PoolReader(61).scan_v2_pairs("0x123"))

    def test_sorted_pairs(self):
        pairs = _sorted_pairs(MORDOR_TESTNET_TOKENS)
        assert len(pairs) == 10
        for t0, t1 in pairs:
            assert t0.address.lower() < t1.address.lower()


class TestPoolReaderMocked:
    def test_call_many_falls_back_to_sequential(self):
        reader = PoolReader(61)
        with patch("pool_reader._eth_call_batch", new=AsyncMock(side_effect=RuntimeError("no batch"))), \
                patch("pool_reader._eth_call", new=AsyncMock(side_effect=["aa", RuntimeError("reverted")])):
            results = asyncio.run(reader._call_many([("0xA", "0x1"), ("0xB", "0x2")]))
        assert results == ["aa", ""]

    def test_block_number_failure_is_zero(self):
        with patch("pool_reader._eth_block_number", new=AsyncMock(side_effect=RuntimeError("down"))):
            assert asyncio.run(PoolReader(61).get_block_number()) == 0

    def test_scan_v2_pairs(self):
        reader = PoolReader(63)
        pair_results = [encode_address(POOL_ADDRESS)] + [encode_address(ZERO_ADDRESS)] * 8 + [""]
        pair_batch = [
            encode_uint256(10),
            encode_uint256(100),
            encode_uint256(1000) + encode_uint256(2000) + encode_uint256(0),
        ]
        mock_calls = AsyncMock(side_effect=[pair_results, pair_batch])
        with patch.object(PoolReader, "_call_many", new=mock_calls):
            scanned = asyncio.run(reader.scan_v2_pairs(WALLET))

        assert len(scanned) == 1
        pool, shares = scanned[0]
        assert shares == 10
        assert pool.token0.symbol == "WETC"
        assert pool.token1.symbol == "USC"
        assert (pool.reserve0, pool.reserve1, pool.total_shares) == (1000, 2000, 100)
        assert pool.venue == "ETCswap V2"
        assert pool.address == POOL_ADDRESS

    def test_find_token_ids(self):
        reader = PoolReader(61)

        def _owners(calls):
            out = []
            for _, data in calls:
                token_id = int(data[10:], 16)
                out.append(encode_address(WALLET) if token_id in (3, 7) else "")
            return out

        mock_calls = AsyncMock(side_effect=_owners)
        with patch.object(PoolReader, "_call_many", new=mock_calls):
            ids = asyncio.run(reader.find_token_ids(WALLET, 2))
        assert ids == [3, 7]
        assert mock_calls.await_count == 1

    def test_find_token_ids_scans_whole_range(self):
        reader = PoolReader(61)
        mock_calls = AsyncMock(side_effect=lambda calls: [""] * len(calls))
        with patch.object(PoolReader, "_call_many", new=mock_calls):
            assert asyncio.run(reader.find_token_ids(WALLET, 1)) == []
        scanned = sum(len(c.args[0]) for c in mock_calls.await_args_list)
        assert scanned == MAX_SCAN_RANGE + 1

    def test_read_v3_position(self):
        reader = PoolReader(61)
        slot0 = encode_uint256(2 ** 96) + encode_uint256(60)
        with patch("pool_reader._eth_call", new=AsyncMock(return_value=_positions_response())), \
                patch.object(PoolReader, "_call_many",
                             new=AsyncMock(side_effect=[[encode_address(POOL_ADDRESS)], [slot0]])):
            pool = asyncio.run(reader.read_v3_position(7))

        assert pool.token0.symbol == "WETC"
        assert pool.token1.symbol == "USC"
        assert (pool.tick_lower, pool.tick_upper, pool.current_tick) == (-600, 600, 60)
        assert pool.liquidity == 10 ** 12
        assert (pool.uncollected_fees0, pool.uncollected_fees1) == (5, 7)
        assert pool.token_id == 7
        assert pool.address == POOL_ADDRESS
        assert pool.in_range

    def test_read_v3_position_closed(self):
        reader = PoolReader(61)
        mock_calls = AsyncMock()
        with patch("pool_reader._eth_call", new=AsyncMock(return_value=_positions_response(liquidity=0))), \
                patch.object(PoolReader, "_call_many", new=mock_calls):
            assert asyncio.run(reader.read_v3_position(1)) is None
        mock_calls.assert_not_awaited()

    def test_read_v3_position_unknown_token(self):
        reader = PoolReader(61)
        response = _positions_response(token0="0x" + "9" * 40)
        with patch("pool_reader._eth_call", new=AsyncMock(return_value=response)):
            assert asyncio.run(reader.read_v3_position(1)) is None

    def test_read_v3_position_slot0_failure_leaves_tick_zero(self):
        reader = PoolReader(61)
        with patch("pool_reader._eth_call", new=AsyncMock(return_value=_positions_response())), \
                patch.object(PoolReader, "_call_many",
                             new=AsyncMock(side_effect=[[encode_address(POOL_ADDRESS)], [""]])):
            pool = asyncio.run(reader.read_v3_position(7))
        assert pool.current_tick == 0

    def test_read_snapshot(self):
        reader = PoolReader(61)
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        held = snap.positions[0].pool
        market = snap.market_pools[0]
        empty = ConstantProductPool(held.token0, held.token1, 0, 0, 0)
        with patch.object(PoolReader, "scan_v2_pairs",
                          new=AsyncMock(return_value=[(held, 10), (market, 0), (empty, 0)])), \
                patch.object(PoolReader, "read_v3_positions", new=AsyncMock(return_value=[])):
            result = asyncio.run(reader.read_snapshot(WALLET, {WETC_ADDRESS: 20.0}))

        assert result.chain_id == 61
        assert [p.shares for p in result.positions] == [10]
        assert result.market_pools == (market,)
        assert result.reference_prices == {WETC_ADDRESS.lower(): 20.0}


# ═══════════════════════════════════════════════════════════════════════════
# 9. valuation_engine.py
# ═══════════════════════════════════════════════════════════════════════════

from valuation_engine import analyze_portfolio


class TestAnalyzePortfolio:
    @pytest.fixture
    def report(self):
        return analyze_portfolio(snapshot_from_dict(SAMPLE_SNAPSHOT), generated_at="2026-01-01T00:00:00")

    def test_structure(self, report):
        assert report["chain_name"] == "Ethereum Classic"
        assert report["threshold_percent"] == 1.0
        assert len(report["positions"]) == 2
        json.dumps(report)

    def test_constant_product_position(self, report):
        val = report["positions"][0]["valuation"]
        assert val["method"] == "priced"
        assert val["total_value_usd"] == pytest.approx(100 * 20.0 + 2100 * 1.0)

    def test_derived_price_used(self, report):
        eco = report["derived_prices"][ECO_ADDRESS.lower()]
        # Market pool implies 0.50, the position's own pool ~0.51
        assert eco["confidence"] == "medium"
        assert eco["usd_price"] == pytest.approx(0.5, rel=0.05)
        assert report["positions"][1]["valuation"]["total_value_usd"] > 0

    def test_opportunities(self, report):
        opps = {o["token"]["symbol"]: o for o in report["opportunities"]}
        assert opps["WETC"]["classification"] == "premium"
        assert opps["WETC"]["deviation_percent"] == pytest.approx(5.0)
        assert opps["USC"]["classification"] == "discount"
        assert opps["USC"]["mechanism"] == "fiat-backed"
        assert "above reference" in opps["WETC"]["description"]

    def test_totals(self, report):
        totals = report["totals"]
        assert totals["valued_positions"] == 2
        assert totals["unvalued_positions"] == 0
        assert totals["total_value_usd"] == pytest.approx(
            sum(p["valuation"]["total_value_usd"] for p in report["positions"])
        )
        assert totals["weighted_apy"] > 0

    def test_deterministic(self):
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        first = analyze_portfolio(snap, generated_at="t")
        second = analyze_portfolio(snap, generated_at="t")
        assert first == second

    def test_high_threshold_no_opportunities(self):
        report = analyze_portfolio(snapshot_from_dict(SAMPLE_SNAPSHOT), threshold_percent=50)
        assert report["opportunities"] == []

    def test_unvalued_position_counted(self):
        data = dict(SAMPLE_SNAPSHOT, reference_prices={}, market_pools=[])
        report = analyze_portfolio(snapshot_from_dict(data))
        assert report["totals"]["valued_positions"] == 0
        assert report["totals"]["unvalued_positions"] == 2
        assert report["totals"]["weighted_apy"] == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# 10. commands.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_valuator.commands import (
    DISCLAIMER,
    _sanitize_error,
    cmd_info,
    cmd_snapshot,
    cmd_value,
    format_report,
)


class TestSanitizeError:
    def test_strips_paths(self):
        msg = _sanitize_error(ValueError("Snapshot file not found: /home/user/secret/p.json"))
        assert "/home/user" not in msg
        assert "<path>" in msg

    def test_first_line_only(self):
        assert _sanitize_error(RuntimeError("first\nTraceback ...")) == "first"

    def test_truncated(self):
        assert len(_sanitize_error(RuntimeError("x" * 500))) == 160

    def test_empty_message_uses_type(self):
        assert _sanitize_error(RuntimeError()) == "RuntimeError"


class TestFormatReport:
    def test_report_text(self):
        text = format_report(analyze_portfolio(snapshot_from_dict(SAMPLE_SNAPSHOT)))
        assert "Ethereum Classic" in text
        assert "WETC/USC" in text
        assert "🟢 In range" in text
        assert "Total:" in text
        assert DISCLAIMER in text

    def test_empty_portfolio(self):
        text = format_report(analyze_portfolio(snapshot_from_dict({})))
        assert "No positions found" in text


class TestCommands:
    def test_cmd_info(self, capsys):
        cmd_info()
        out = capsys.readouterr().out
        assert "LP Valuator" in out
        assert "ETCswap V3" in out

    def test_cmd_snapshot_text(self, tmp_path, capsys):
        path = tmp_path / "portfolio.json"
        path.write_text(json.dumps(SAMPLE_SNAPSHOT), encoding="utf-8")
        assert cmd_snapshot(str(path)) == 0
        assert "Portfolio" in capsys.readouterr().out

    def test_cmd_snapshot_json(self, tmp_path, capsys):
        path = tmp_path / "portfolio.json"
        path.write_text(json.dumps(SAMPLE_SNAPSHOT), encoding="utf-8")
        assert cmd_snapshot(str(path), threshold=2.5, as_json=True) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["threshold_percent"] == 2.5

    def test_cmd_snapshot_missing(self, tmp_path, capsys):
        assert cmd_snapshot(str(tmp_path / "nope.json")) == 1
        out = capsys.readouterr().out
        assert "❌" in out
        assert str(tmp_path) not in out

    def test_cmd_snapshot_nan_price(self, tmp_path, capsys):
        data = dict(SAMPLE_SNAPSHOT, reference_prices={WETC_ADDRESS: float("nan"), USC_ADDRESS: 1.0})
        path = tmp_path / "portfolio.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        assert cmd_snapshot(str(path), as_json=True) == 1
        assert "positive finite" in capsys.readouterr().out

    def test_cmd_value_invalid_wallet(self, capsys):
        assert asyncio.run(cmd_value("not-a-wallet")) == 1
        assert "Invalid wallet" in capsys.readouterr().out

    def test_cmd_value(self, capsys):
        snap = snapshot_from_dict(SAMPLE_SNAPSHOT)
        with patch("lp_valuator.price_feed.fetch_reference_prices",
                   new=AsyncMock(return_value=dict(snap.reference_prices))), \
                patch.object(PoolReader, "read_snapshot", new=AsyncMock(return_value=snap)), \
                patch.object(PoolReader, "get_block_number", new=AsyncMock(return_value=1234567)):
            assert asyncio.run(cmd_value(WALLET, chain=61)) == 0
        out = capsys.readouterr().out
        assert "Block: 1,234,567" in out
        assert "Total:" in out

    def test_cmd_value_feed_failure(self, capsys):
        with patch("lp_valuator.price_feed.fetch_reference_prices",
                   new=AsyncMock(side_effect=RuntimeError("Rate limit reached on CoinGecko."))):
            assert asyncio.run(cmd_value(WALLET)) == 1
        assert "Rate limit" in capsys.readouterr().out

    def test_cmd_value_unreachable_node(self, capsys):
        with patch("lp_valuator.price_feed.fetch_reference_prices",
                   new=AsyncMock(return_value={WETC_ADDRESS.lower(): 20.0})), \
                patch("lp_valuator.rpc_helpers.httpx.AsyncClient") as MockClient:
            mock_client = _mock_async_client(MockClient, MagicMock())
            mock_client.post.side_effect = httpx.ConnectError("connection refused")
            assert asyncio.run(cmd_value(WALLET, chain=61)) == 1
        out = capsys.readouterr().out
        assert "❌ RPC error" in out
        assert "connection refused" not in out

    def test_cmd_value_unsupported_chain(self, capsys):
        assert asyncio.run(cmd_value(WALLET, chain=1)) == 1
        assert "Unsupported chain" in capsys.readouterr().out


# ═══════════════════════════════════════════════════════════════════════════
# 11. run.py (argparse parser)
# ═══════════════════════════════════════════════════════════════════════════

from run import create_parser, main


class TestParser:
    def test_snapshot_defaults(self):
        args = create_parser().parse_args(["snapshot", "p.json"])
        assert args.command == "snapshot"
        assert args.file == "p.json"
        assert args.threshold == 1.0
        assert args.json is False

    def test_value_options(self):
        args = create_parser().parse_args(["value", WALLET, "--chain", "63", "--threshold", "2.5", "--json"])
        assert args.chain == 63
        assert args.threshold == 2.5
        assert args.json is True

    def test_invalid_chain(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["value", WALLET, "--chain", "1"])

    @pytest.mark.parametrize("bad", ["-1", "abc"])
    def test_invalid_threshold(self, bad):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["snapshot", "p.json", "--threshold", bad])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--version"])
        assert "LP Valuator v" in capsys.readouterr().out

    def test_main_no_command(self, capsys):
        assert main([]) == 0

    def test_main_info(self, capsys):
        assert main(["info"]) == 0

    def test_main_snapshot_error_exit_code(self, tmp_path, capsys):
        assert main(["snapshot", str(tmp_path / "missing.json")]) == 1
