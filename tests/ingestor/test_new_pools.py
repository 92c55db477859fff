"""Tests for the new-pool scanner."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from dex_buy_tracker.ingestor.models import NewPool
from dex_buy_tracker.ingestor.new_pools import NewPoolScanner


def _pool(address: str) -> NewPool:
    return NewPool(
        chain="bsc",
        address=address,
        name="TKN / WBNB",
        liquidity_usd=Decimal("12000"),
        created_at=datetime.now(UTC),
        source="dexscreener",
    )


@pytest.fixture
def gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.get_new_pools = AsyncMock(return_value=[_pool("0x" + "1" * 40), _pool("0x" + "2" * 40)])
    return gateway


class TestNewPoolScanner:
    """Tests for NewPoolScanner."""

    @pytest.mark.asyncio
    async def test_scan_once_passes_filters(self, gateway: MagicMock) -> None:
        scanner = NewPoolScanner("bsc", gateway, min_liquidity_usd=5000.0, max_age_seconds=600.0)

        pools = await scanner.scan_once()

        assert len(pools) == 2
        gateway.get_new_pools.assert_awaited_once_with("bsc", min_liquidity_usd=5000.0, max_age_seconds=600.0)
        assert scanner.stats.cycles == 1
        assert scanner.stats.pools_seen == 2
        assert scanner.stats.last_run_at is not None

    @pytest.mark.asyncio
    async def test_run_stops_on_abort(self, gateway: MagicMock) -> None:
        scanner = NewPoolScanner("bsc", gateway, poll_interval_seconds=0.01)
        abort = asyncio.Event()

        task = asyncio.create_task(scanner.run(abort))
        while scanner.stats.cycles < 2:
            await asyncio.sleep(0.01)
        abort.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert task.done()

    @pytest.mark.asyncio
    async def test_run_survives_provider_errors(self, gateway: MagicMock) -> None:
        gateway.get_new_pools.side_effect = RuntimeError("provider down")
        scanner = NewPoolScanner("bsc", gateway, poll_interval_seconds=0.01)
        abort = asyncio.Event()

        task = asyncio.create_task(scanner.run(abort))
        while scanner.stats.errors < 2:
            await asyncio.sleep(0.01)
        abort.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert scanner.stats.cycles == 0

    @pytest.mark.asyncio
    async def test_run_returns_immediately_when_already_aborted(self, gateway: MagicMock) -> None:
        abort = asyncio.Event()
        abort.set()

        await NewPoolScanner("bsc", gateway).run(abort)

        gateway.get_new_pools.assert_not_called()
