"""Tests for swap log decoding."""

from __future__ import annotations

import pytest
from eth_abi import encode

from dex_buy_tracker.ingestor.abi import (
    BALANCE_OF_SELECTOR,
    CURVE_BUY_TOPIC,
    SWAP_TOPICS,
    LogDecodeError,
    decode_address_result,
    decode_curve_buy_log,
    decode_swap_log,
    decode_uint_result,
    encode_address_arg,
    topic_to_address,
)
from dex_buy_tracker.ingestor.models import DeltaSwap, PoolVersion, ReserveSwap

POOL = "0x2222222222222222222222222222222222222222"
ROUTER = "0x10ed43c718714eb63d5aa57b78b54704e256024e"
WALLET = "0x3333333333333333333333333333333333333333"
TOKEN = "0x1111111111111111111111111111111111111111"
BONDING_ROUTER = "0x6f6b8f1a20703309951a5127c45b49b1cd981a22"


def _topic(address: str) -> str:
    return "0x" + "0" * 24 + address.removeprefix("0x")


def _log(version: PoolVersion, data: bytes, topics: list[str] | None = None) -> dict:
    return {
        "address": POOL.upper().replace("0X", "0x"),
        "topics": topics if topics is not None else [SWAP_TOPICS[version], _topic(ROUTER), _topic(WALLET)],
        "data": "0x" + data.hex(),
        "transactionHash": "0x" + "ab" * 32,
        "blockNumber": "0x10",
        "logIndex": "0x2",
    }


class TestSwapTopics:
    """Tests for event signature hashes."""

    def test_v2_topic_matches_uniswap_v2(self) -> None:
        assert SWAP_TOPICS[PoolVersion.V2] == (
            "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
        )

    def test_v3_topic_matches_uniswap_v3(self) -> None:
        assert SWAP_TOPICS[PoolVersion.V3] == (
            "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
        )

    def test_balance_of_selector(self) -> None:
        assert BALANCE_OF_SELECTOR == "0x70a08231"


class TestDecodeSwapLog:
    """Tests for decode_swap_log."""

    def test_decodes_v2_reserve_swap(self) -> None:
        data = encode(["uint256"] * 4, [0, 5 * 10**18, 1_000_000, 0])
        event = decode_swap_log(_log(PoolVersion.V2, data), PoolVersion.V2)

        assert isinstance(event, ReserveSwap)
        assert event.pool_address == POOL
        assert event.amount1_in == 5 * 10**18
        assert event.amount0_out == 1_000_000
        assert event.recipient == WALLET
        assert event.block_number == 16
        assert event.log_index == 2
        assert event.tx_hash == "0x" + "ab" * 32

    def test_decodes_v3_signed_deltas(self) -> None:
        data = encode(
            ["int256", "int256", "uint160", "uint128", "int24"],
            [-250, 10**18, 2**96, 10**20, -100],
        )
        event = decode_swap_log(_log(PoolVersion.V3, data), PoolVersion.V3)

        assert isinstance(event, DeltaSwap)
        assert event.amount0 == -250
        assert event.amount1 == 10**18
        assert event.version is PoolVersion.V3
        assert event.recipient == WALLET

    def test_decodes_v4_with_recipient_in_data(self) -> None:
        data = encode(
            ["address", "address", "int256", "int256", "uint160", "uint128", "int24", "uint256"],
            [ROUTER, WALLET, 7, -9, 2**96, 10**20, 5, 3000],
        )
        log = _log(PoolVersion.V4, data, topics=[SWAP_TOPICS[PoolVersion.V4]])
        event = decode_swap_log(log, PoolVersion.V4)

        assert isinstance(event, DeltaSwap)
        assert event.version is PoolVersion.V4
        assert event.recipient == WALLET
        assert (event.amount0, event.amount1) == (7, -9)

    def test_accepts_bytes_and_int_fields(self) -> None:
        data = encode(["uint256"] * 4, [1, 0, 0, 2])
        log = {
            "address": POOL,
            "topics": [bytes.fromhex(t[2:]) for t in (SWAP_TOPICS[PoolVersion.V2], _topic(ROUTER), _topic(WALLET))],
            "data": data,
            "transactionHash": bytes.fromhex("cd" * 32),
            "blockNumber": 42,
            "logIndex": 0,
        }
        event = decode_swap_log(log, PoolVersion.V2)

        assert isinstance(event, ReserveSwap)
        assert event.block_number == 42
        assert event.tx_hash == "0x" + "cd" * 32

    def test_v2_without_recipient_topic_raises(self) -> None:
        data = encode(["uint256"] * 4, [1, 0, 0, 2])
        with pytest.raises(LogDecodeError):
            decode_swap_log(_log(PoolVersion.V2, data, topics=[SWAP_TOPICS[PoolVersion.V2]]), PoolVersion.V2)

    def test_truncated_data_raises(self) -> None:
        with pytest.raises(LogDecodeError):
            decode_swap_log(_log(PoolVersion.V3, b"\x00" * 31), PoolVersion.V3)


class TestDecodeCurveBuyLog:
    """Tests for launchpad CurveBuy decoding."""

    def _log(self, **overrides: object) -> dict:
        log = {
            "address": BONDING_ROUTER,
            "topics": [CURVE_BUY_TOPIC, _topic(WALLET), _topic(TOKEN)],
            "data": "0x" + encode(["uint256", "uint256"], [3 * 10**18, 7 * 10**20]).hex(),
            "transactionHash": "0x" + "ef" * 32,
            "blockNumber": 99,
            "logIndex": 4,
        }
        log.update(overrides)
        return log

    def test_decodes_buyer_token_and_amounts(self) -> None:
        event = decode_curve_buy_log(self._log())

        assert event.router_address == BONDING_ROUTER
        assert event.recipient == WALLET
        assert event.token == TOKEN
        assert event.amount_in == 3 * 10**18
        assert event.amount_out == 7 * 10**20
        assert event.block_number == 99
        assert event.log_index == 4

    def test_other_event_is_rejected(self) -> None:
        topics = [SWAP_TOPICS[PoolVersion.V2], _topic(WALLET), _topic(TOKEN)]
        with pytest.raises(LogDecodeError):
            decode_curve_buy_log(self._log(topics=topics))

    def test_missing_token_topic_raises(self) -> None:
        with pytest.raises(LogDecodeError):
            decode_curve_buy_log(self._log(topics=[CURVE_BUY_TOPIC, _topic(WALLET)]))

    def test_truncated_data_raises(self) -> None:
        with pytest.raises(LogDecodeError):
            decode_curve_buy_log(self._log(data="0x" + "00" * 40))


class TestCallHelpers:
    """Tests for eth_call argument and result helpers."""

    def test_topic_to_address(self) -> None:
        assert topic_to_address(_topic(WALLET)) == WALLET

    def test_topic_must_be_32_bytes(self) -> None:
        with pytest.raises(LogDecodeError):
            topic_to_address("0x1234")

    def test_encode_address_arg_pads_to_word(self) -> None:
        encoded = encode_address_arg("0xABCDEF0000000000000000000000000000000001")
        assert len(encoded) == 64
        assert encoded.endswith("abcdef0000000000000000000000000000000001")

    def test_decode_address_result(self) -> None:
        assert decode_address_result(_topic(ROUTER)) == ROUTER

    def test_decode_uint_result(self) -> None:
        assert decode_uint_result("0x" + (18).to_bytes(32, "big").hex()) == 18

    def test_decode_uint_result_rejects_short_payload(self) -> None:
        with pytest.raises(LogDecodeError):
            decode_uint_result("0x12")
