"""Tests for the on-chain read client."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from dex_buy_tracker.ingestor.abi import DECIMALS_SELECTOR, TOKEN0_SELECTOR, TOKEN1_SELECTOR
from dex_buy_tracker.ingestor.transport import RPCResponseError, TransportError
from dex_buy_tracker.profiler.chain import (
    ChainClient,
    ChainUnavailableError,
    RateLimiter,
    RPCError,
)

TOKEN = "0x1111111111111111111111111111111111111111"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
POOL = "0x2222222222222222222222222222222222222222"
WALLET = "0x3333333333333333333333333333333333333333"


def _word(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def _address_word(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


@pytest.fixture
def transport() -> MagicMock:
    transport = MagicMock()
    transport.request = AsyncMock()
    return transport


@pytest.fixture
def client(transport: MagicMock) -> ChainClient:
    return ChainClient(lambda chain: transport, retry_delay_seconds=0.0)


class TestRateLimiter:
    """Tests for the token bucket."""

    @pytest.mark.asyncio
    async def test_acquire_consumes_tokens(self) -> None:
        limiter = RateLimiter.create(5)
        await limiter.acquire()
        assert limiter.tokens == pytest.approx(4, abs=0.1)


class TestRetries:
    """Tests for retry and error mapping."""

    @pytest.mark.asyncio
    async def test_retries_transport_errors(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.side_effect = [TransportError("reset"), TimeoutError(), "0x6080"]

        assert await client.get_code("bsc", TOKEN) == "0x6080"
        assert transport.request.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.side_effect = TransportError("down")

        with pytest.raises(RPCError):
            await client.get_code("bsc", TOKEN)
        assert transport.request.await_count == 3

    @pytest.mark.asyncio
    async def test_rpc_rejection_is_not_retried(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.side_effect = RPCResponseError("execution reverted")

        with pytest.raises(RPCError):
            await client.call("bsc", TOKEN, DECIMALS_SELECTOR)
        assert transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_connection_raises(self) -> None:
        client = ChainClient(lambda chain: None)
        with pytest.raises(ChainUnavailableError):
            await client.get_code("bsc", TOKEN)

    @pytest.mark.asyncio
    async def test_transport_is_looked_up_per_attempt(self) -> None:
        old = MagicMock()
        old.request = AsyncMock(side_effect=TransportError("stale"))
        new = MagicMock()
        new.request = AsyncMock(return_value="0x")
        current = {"bsc": old}

        def lookup(chain: str) -> Any:
            transport = current[chain]
            current[chain] = new
            return transport

        client = ChainClient(lookup, retry_delay_seconds=0.0)
        assert await client.get_code("bsc", TOKEN) == "0x"
        new.request.assert_awaited_once()


class TestIsContract:
    """Tests for contract detection."""

    @pytest.mark.asyncio
    async def test_code_means_contract_and_is_cached(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = "0x6080604052"

        assert await client.is_contract("bsc", POOL) is True
        assert await client.is_contract("bsc", POOL.upper().replace("0X", "0x")) is True
        assert transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_code_is_wallet(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = "0x"
        assert await client.is_contract("bsc", WALLET) is False

    @pytest.mark.asyncio
    async def test_lookup_failure_is_not_cached(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.side_effect = [RPCResponseError("rate limited"), "0x6080"]

        assert await client.is_contract("bsc", POOL) is False
        assert await client.is_contract("bsc", POOL) is True

    @pytest.mark.asyncio
    async def test_uses_redis_cache(self, transport: MagicMock) -> None:
        redis = MagicMock()
        redis.get = AsyncMock(return_value=b"1")
        redis.set = AsyncMock()
        client = ChainClient(lambda chain: transport, redis=redis)

        assert await client.is_contract("bsc", POOL) is True
        transport.request.assert_not_awaited()
        redis.get.assert_awaited_once_with(f"dexbuy:is_contract:bsc:{POOL}")


class TestTokenReads:
    """Tests for pool token and ERC20 reads."""

    @pytest.mark.asyncio
    async def test_get_pool_tokens(self, client: ChainClient, transport: MagicMock) -> None:
        async def request(method: str, params: list[Any]) -> str:
            selector = params[0]["data"]
            return _address_word(TOKEN) if selector == TOKEN0_SELECTOR else _address_word(WBNB)

        transport.request.side_effect = request
        assert await client.get_pool_tokens("bsc", POOL) == (TOKEN, WBNB)
        selectors = [c.args[1][0]["data"] for c in transport.request.await_args_list]
        assert selectors == [TOKEN0_SELECTOR, TOKEN1_SELECTOR]

    @pytest.mark.asyncio
    async def test_get_pool_tokens_rejects_garbage(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = "0x"
        with pytest.raises(RPCError):
            await client.get_pool_tokens("bsc", WALLET)

    @pytest.mark.asyncio
    async def test_get_decimals_is_cached(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = _word(9)

        assert await client.get_decimals("bsc", TOKEN) == 9
        assert await client.get_decimals("bsc", TOKEN) == 9
        assert transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_out_of_range_decimals_are_none(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = _word(77)
        assert await client.get_decimals("bsc", TOKEN) is None

    @pytest.mark.asyncio
    async def test_balance_of_uses_block_tag(self, client: ChainClient, transport: MagicMock) -> None:
        transport.request.return_value = _word(1000)

        assert await client.get_balance_of("bsc", TOKEN, WALLET, block=99) == 1000
        method, params = transport.request.await_args.args
        assert method == "eth_call"
        assert params[1] == hex(99)
        assert params[0]["data"].startswith("0x70a08231")
        assert params[0]["data"].endswith(WALLET[2:])
