"""Tests for alert enrichment."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from dex_buy_tracker.detector.enrichment import AlertEnricher, position_increase_pct, to_units
from dex_buy_tracker.ingestor.models import BuyEvent, PairStats, TokenInfo
from dex_buy_tracker.profiler.chain import RPCError

TOKEN = "0x1111111111111111111111111111111111111111"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
USDT = "0x55d398326f99059ff775485246999027b3197955"
POOL = "0x2222222222222222222222222222222222222222"
BUYER = "0x3333333333333333333333333333333333333333"


def _buy(base: str = WBNB, base_in: int = 2 * 10**18, target_out: int = 125_000 * 10**18) -> BuyEvent:
    return BuyEvent(
        pool_address=POOL,
        base_token=base,
        target_token=TOKEN,
        base_amount_in=base_in,
        target_amount_out=target_out,
        recipient=BUYER,
        tx_hash="0x" + "ab" * 32,
        block_number=1000,
    )


def _stats(price_usd: str = "0.01", **tokens: TokenInfo) -> PairStats:
    return PairStats(
        pair_address=POOL,
        base_token=tokens.get("base", TokenInfo(address=TOKEN, symbol="TKN", decimals=18)),
        quote_token=tokens.get("quote", TokenInfo(address=WBNB, symbol="WBNB", decimals=18)),
        price_usd=Decimal(price_usd),
        quote_price_usd=Decimal("625"),
        fdv_usd=Decimal("620000"),
        liquidity_usd=Decimal("88000"),
        volume_24h_usd=Decimal("75400"),
    )


@pytest.fixture
def gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.get_pair_stats = AsyncMock(return_value=_stats())
    gateway.get_native_asset_price = AsyncMock(return_value=Decimal("600"))
    return gateway


@pytest.fixture
def chain_client() -> MagicMock:
    client = MagicMock()
    client.get_decimals = AsyncMock(return_value=18)
    client.get_balance_of = AsyncMock(return_value=0)
    return client


class TestPositionIncrease:
    """Tests for position_increase_pct."""

    def test_rounds_half_up_in_tenths(self) -> None:
        # 1 / 3 = 33.3% -> 33; 1 / 8 = 12.5% -> 13
        assert position_increase_pct(1, 3, max_pct=100_000) == 33
        assert position_increase_pct(1, 8, max_pct=100_000) == 13

    def test_doubling_is_100_pct(self) -> None:
        assert position_increase_pct(500, 500, max_pct=100_000) == 100

    def test_dust_balance_is_unreliable(self) -> None:
        # 2,000,000 on top of 1,000 is 200,000%: above the cap.
        assert position_increase_pct(2_000_000, 1000, max_pct=100_000) is None

    def test_at_cap_is_kept(self) -> None:
        assert position_increase_pct(1_000_000, 1000, max_pct=100_000) == 100_000

    def test_no_previous_balance(self) -> None:
        assert position_increase_pct(100, 0, max_pct=100_000) is None

    def test_negligible_increase_is_none(self) -> None:
        assert position_increase_pct(1, 10**9, max_pct=100_000) is None


class TestToUnits:
    def test_scales_by_decimals(self) -> None:
        assert to_units(1_500_000, 6) == Decimal("1.5")
        assert to_units(10**18, 18) == Decimal(1)


class TestAlertEnricher:
    """Tests for AlertEnricher.enrich."""

    @pytest.mark.asyncio
    async def test_usd_value_from_target_price(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(), BUYER)

        assert alert.target_amount == Decimal(125_000)
        assert alert.usd_value == Decimal(1250)
        assert alert.target_symbol == "TKN"
        assert alert.base_symbol == "WBNB"
        assert alert.base_amount == Decimal(2)
        assert alert.market_cap_usd == Decimal("620000")
        gateway.get_native_asset_price.assert_not_awaited()
        chain_client.get_decimals.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_native_price(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        gateway.get_pair_stats.return_value = _stats(price_usd="0")
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(), BUYER)

        assert alert.usd_value == Decimal(1200)
        gateway.get_native_asset_price.assert_awaited_once_with("bsc")

    @pytest.mark.asyncio
    async def test_missing_stats_use_defaults(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        gateway.get_pair_stats.return_value = None
        chain_client.get_decimals.side_effect = RPCError("timeout")
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(base_in=10**18), BUYER)

        assert alert.target_symbol == "TOKEN"
        assert alert.price_usd == 0
        assert alert.usd_value == Decimal(600)
        assert alert.liquidity_usd == 0

    @pytest.mark.asyncio
    async def test_position_increase_uses_previous_block(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        chain_client.get_balance_of.return_value = 125_000 * 10**18
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(), BUYER)

        assert alert.position_increase_pct == 100
        chain_client.get_balance_of.assert_awaited_once_with("bsc", TOKEN, BUYER, block=999)

    @pytest.mark.asyncio
    async def test_small_buy_skips_position_lookup(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(target_out=5000 * 10**18), BUYER)

        assert alert.usd_value == Decimal(50)
        assert alert.position_increase_pct is None
        chain_client.get_balance_of.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_balance_failure_leaves_position_unknown(
        self, gateway: MagicMock, chain_client: MagicMock
    ) -> None:
        chain_client.get_balance_of.side_effect = RPCError("pruned state")
        enricher = AlertEnricher(gateway, chain_client)

        alert = await enricher.enrich("bsc", _buy(), BUYER)
        assert alert.position_increase_pct is None


class TestResolveDecimals:
    """Tests for decimals precedence."""

    @pytest.mark.asyncio
    async def test_provider_decimals_win(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        enricher = AlertEnricher(gateway, chain_client)
        info = TokenInfo(address=USDT, symbol="USDT", decimals=18)

        assert await enricher.resolve_decimals("bsc", USDT, info) == 18
        chain_client.get_decimals.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stablecoin_symbol_implies_six(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        enricher = AlertEnricher(gateway, chain_client)
        info = TokenInfo(address=USDT, symbol="usdc")

        assert await enricher.resolve_decimals("ethereum", USDT, info) == 6
        chain_client.get_decimals.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_chain_read(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        chain_client.get_decimals.return_value = 9
        enricher = AlertEnricher(gateway, chain_client)

        assert await enricher.resolve_decimals("bsc", TOKEN, TokenInfo(address=TOKEN, symbol="TKN")) == 9

    @pytest.mark.asyncio
    async def test_unreadable_decimals_default_to_18(self, gateway: MagicMock, chain_client: MagicMock) -> None:
        chain_client.get_decimals.return_value = None
        enricher = AlertEnricher(gateway, chain_client)

        assert await enricher.resolve_decimals("bsc", TOKEN, None) == 18
