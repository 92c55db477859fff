"""Pytest configuration and fixtures."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dex_buy_tracker.detector.models import BuyAlert
from dex_buy_tracker.storage.models import Base
from dex_buy_tracker.storage.settings_store import GroupSettings

TOKEN = "0x1111111111111111111111111111111111111111"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
POOL = "0x2222222222222222222222222222222222222222"
BUYER = "0x3333333333333333333333333333333333333333"


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def sample_group_settings() -> GroupSettings:
    """Group tracking one BSC pool with a $100 minimum."""
    return GroupSettings(
        chain="bsc",
        token_address=TOKEN,
        pair_address=POOL,
        all_pair_addresses=[POOL],
        emoji="🟢",
        min_buy_usd=100.0,
        dollars_per_emoji=50.0,
        tg_group_link="https://t.me/example_group",
    )


@pytest.fixture
def sample_buy_alert() -> BuyAlert:
    """A $1,250 buy of TKN paid in BNB."""
    return BuyAlert(
        chain="bsc",
        pool_address=POOL,
        target_token=TOKEN,
        base_token=WBNB,
        buyer="0x3333333333333333333333333333333333333333",
        tx_hash="0x" + "a" * 64,
        block_number=40_000_000,
        usd_value=Decimal("1250"),
        base_amount=Decimal("2"),
        base_symbol="WBNB",
        target_amount=Decimal("125000"),
        target_symbol="TKN",
        price_usd=Decimal("0.01"),
        market_cap_usd=Decimal("620000"),
        volume_24h_usd=Decimal("75400"),
        liquidity_usd=Decimal("88000"),
        position_increase_pct=None,
    )
