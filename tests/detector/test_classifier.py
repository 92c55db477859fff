"""Tests for swap classification."""

from __future__ import annotations

import pytest

from dex_buy_tracker.detector.classifier import classify_swap, normalize_delta
from dex_buy_tracker.ingestor.models import DeltaSwap, PoolTokens, PoolVersion, ReserveSwap

TOKEN = "0x1111111111111111111111111111111111111111"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
POOL = "0x2222222222222222222222222222222222222222"
WALLET = "0x3333333333333333333333333333333333333333"


def _reserve(a0_in: int, a1_in: int, a0_out: int, a1_out: int) -> ReserveSwap:
    return ReserveSwap(
        pool_address=POOL,
        amount0_in=a0_in,
        amount1_in=a1_in,
        amount0_out=a0_out,
        amount1_out=a1_out,
        recipient=WALLET,
        tx_hash="0x" + "ab" * 32,
        block_number=100,
    )


def _delta(amount0: int, amount1: int, version: PoolVersion = PoolVersion.V3) -> DeltaSwap:
    return DeltaSwap(
        pool_address=POOL,
        amount0=amount0,
        amount1=amount1,
        recipient=WALLET,
        tx_hash="0x" + "cd" * 32,
        block_number=200,
        version=version,
    )


@pytest.fixture
def target_is_token0() -> PoolTokens:
    return PoolTokens(token0=TOKEN, token1=WBNB, target_token=TOKEN)


@pytest.fixture
def target_is_token1() -> PoolTokens:
    return PoolTokens(token0=WBNB, token1=TOKEN, target_token=TOKEN)


class TestPoolTokens:
    """Tests for pool token framing."""

    def test_base_token_is_counter_asset(self, target_is_token0: PoolTokens) -> None:
        assert target_is_token0.target_is_token0
        assert target_is_token0.base_token == WBNB

    def test_addresses_are_lowercased(self) -> None:
        tokens = PoolTokens(token0=TOKEN.upper().replace("0X", "0x"), token1=WBNB, target_token=TOKEN)
        assert tokens.token0 == TOKEN

    def test_target_must_be_in_pool(self) -> None:
        with pytest.raises(ValueError):
            PoolTokens(token0=WBNB, token1=POOL, target_token=TOKEN)

    def test_tokens_must_differ(self) -> None:
        with pytest.raises(ValueError):
            PoolTokens(token0=TOKEN, token1=TOKEN, target_token=TOKEN)


class TestReserveSwaps:
    """Tests for two-reserve (V2 style) swaps."""

    def test_buy_when_target_is_token0(self, target_is_token0: PoolTokens) -> None:
        buy = classify_swap(_reserve(0, 2 * 10**18, 5000, 0), target_is_token0)

        assert buy is not None
        assert buy.base_token == WBNB
        assert buy.target_token == TOKEN
        assert buy.base_amount_in == 2 * 10**18
        assert buy.target_amount_out == 5000
        assert buy.recipient == WALLET
        assert buy.block_number == 100

    def test_buy_when_target_is_token1(self, target_is_token1: PoolTokens) -> None:
        buy = classify_swap(_reserve(10**18, 0, 0, 777), target_is_token1)

        assert buy is not None
        assert buy.base_amount_in == 10**18
        assert buy.target_amount_out == 777

    def test_sell_is_ignored(self, target_is_token0: PoolTokens) -> None:
        assert classify_swap(_reserve(5000, 0, 0, 10**18), target_is_token0) is None

    def test_base_in_on_wrong_slot_is_ignored(self, target_is_token0: PoolTokens) -> None:
        # Target out but paid with the target itself: not a buy.
        assert classify_swap(_reserve(100, 0, 5000, 0), target_is_token0) is None

    def test_zero_swap_is_ignored(self, target_is_token0: PoolTokens) -> None:
        assert classify_swap(_reserve(0, 0, 0, 0), target_is_token0) is None


class TestDeltaSwaps:
    """Tests for signed-delta (V3/V4 style) swaps."""

    def test_normalize_delta(self) -> None:
        amounts = normalize_delta(-5, 9)
        assert (amounts.amount0_in, amounts.amount1_in) == (0, 9)
        assert (amounts.amount0_out, amounts.amount1_out) == (5, 0)

    def test_pool_pays_out_target_is_buy(self, target_is_token0: PoolTokens) -> None:
        buy = classify_swap(_delta(-5000, 10**18), target_is_token0)

        assert buy is not None
        assert buy.base_amount_in == 10**18
        assert buy.target_amount_out == 5000

    def test_v4_buy_on_token1(self, target_is_token1: PoolTokens) -> None:
        buy = classify_swap(_delta(3 * 10**17, -42, PoolVersion.V4), target_is_token1)

        assert buy is not None
        assert buy.target_amount_out == 42
        assert buy.base_amount_in == 3 * 10**17

    def test_pool_receives_target_is_sell(self, target_is_token0: PoolTokens) -> None:
        assert classify_swap(_delta(5000, -(10**18)), target_is_token0) is None

    def test_one_sided_delta_is_ignored(self, target_is_token0: PoolTokens) -> None:
        assert classify_swap(_delta(-5000, 0), target_is_token0) is None

    def test_unknown_event_type_raises(self, target_is_token0: PoolTokens) -> None:
        with pytest.raises(TypeError):
            classify_swap(object(), target_is_token0)  # type: ignore[arg-type]
