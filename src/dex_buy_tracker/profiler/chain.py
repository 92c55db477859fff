"""Multi-chain on-chain read client with rate limiting and caching.

Reads go through whatever transport the connection registry currently holds
for the chain, so a replaced streaming connection is picked up on the next
call. The client adds:
- Token-bucket rate limiting per chain
- Retry with exponential backoff for transport failures
- In-process caching for contract-code checks and token decimals
- Optional Redis caching for the same stable values
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis

from dex_buy_tracker.ingestor.abi import (
    BALANCE_OF_SELECTOR,
    DECIMALS_SELECTOR,
    TOKEN0_SELECTOR,
    TOKEN1_SELECTOR,
    LogDecodeError,
    decode_address_result,
    decode_uint_result,
    encode_address_arg,
)
from dex_buy_tracker.ingestor.transport import (
    ChainTransport,
    RPCResponseError,
    TransportClosedError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 24 * 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5
MAX_TOKEN_DECIMALS = 36

TransportLookup = Callable[[str], ChainTransport | None]


class ChainClientError(Exception):
    """Base exception for on-chain read errors."""


class RPCError(ChainClientError):
    """Raised when an RPC call fails."""


class ChainUnavailableError(ChainClientError):
    """Raised when the chain has no live connection."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainClient:
    """On-chain reads for every tracked chain.

    Example:
        ```python
        client = ChainClient(registry.transport_for, redis=redis)

        if await client.is_contract("bsc", "0x..."):
            tx = await client.get_transaction("bsc", "0xhash...")

        token0, token1 = await client.get_pool_tokens("bsc", "0xpool...")
        balance = await client.get_balance_of("bsc", token0, "0xwallet...", block=123)
        ```
    """

    def __init__(
        self,
        transport_for: TransportLookup,
        *,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the chain client.

        Args:
            transport_for: Returns the current transport for a chain, or None.
            redis: Optional Redis client for caching stable values.
            cache_ttl_seconds: Redis cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls, per chain.
            max_retries: Maximum attempts on transport failure.
            retry_delay_seconds: Initial delay between retries.
        """
        self._transport_for = transport_for
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_rps = max_requests_per_second
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._rate_limiters: dict[str, RateLimiter] = {}
        self._contract_cache: dict[str, bool] = {}
        self._decimals_cache: dict[str, int | None] = {}

        self._cache_prefix = "dexbuy:"

    def _cache_key(self, key_type: str, chain: str, address: str) -> str:
        return f"{self._cache_prefix}{key_type}:{chain}:{address.lower()}"

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set value in cache."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl or self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _limiter(self, chain: str) -> RateLimiter:
        limiter = self._rate_limiters.get(chain)
        if limiter is None:
            limiter = RateLimiter.create(self._max_rps)
            self._rate_limiters[chain] = limiter
        return limiter

    async def _execute_with_retry(self, chain: str, method: str, params: list[Any]) -> Any:
        """Execute an RPC call with retry logic.

        The transport is looked up on every attempt so that a connection
        replaced mid-retry is used immediately.

        Raises:
            ChainUnavailableError: If the chain has no connection.
            RPCError: If the node rejects the call or all retries fail.
        """
        await self._limiter(chain).acquire()

        last_error: Exception | None = None
        delay = self._retry_delay
        for attempt in range(self._max_retries):
            transport = self._transport_for(chain)
            if transport is None:
                raise ChainUnavailableError(f"No connection for chain {chain}")
            try:
                return await transport.request(method, params)
            except RPCResponseError as e:
                raise RPCError(f"{method} rejected on {chain}: {e}") from e
            except (TransportError, TimeoutError) as e:
                last_error = e
                logger.warning(
                    "RPC %s on %s failed (attempt %d/%d): %s",
                    method,
                    chain,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1 and not isinstance(e, TransportClosedError):
                    await asyncio.sleep(delay)
                    delay *= 2  # Exponential backoff

        raise RPCError(f"RPC call {method} on {chain} failed after all retries: {last_error}")

    async def call(self, chain: str, to: str, data: str, *, block: int | str = "latest") -> str:
        """Run `eth_call` and return the raw hex result."""
        block_tag = hex(block) if isinstance(block, int) else block
        result = await self._execute_with_retry(chain, "eth_call", [{"to": to, "data": data}, block_tag])
        return str(result or "0x")

    async def get_code(self, chain: str, address: str) -> str:
        result = await self._execute_with_retry(chain, "eth_getCode", [address, "latest"])
        return str(result or "0x")

    async def is_contract(self, chain: str, address: str) -> bool:
        """Check whether an address has deployed code.

        Results are cached per chain+address. A failed lookup is treated as
        "not a contract" for this call only and is not cached.
        """
        key = f"{chain}:{address.lower()}"
        if key in self._contract_cache:
            return self._contract_cache[key]

        redis_key = self._cache_key("is_contract", chain, address)
        cached = await self._get_cached(redis_key)
        if cached is not None:
            is_contract = cached == "1"
            self._contract_cache[key] = is_contract
            return is_contract

        try:
            code = await self.get_code(chain, address)
        except ChainClientError as e:
            logger.warning("getCode failed for %s on %s: %s", address, chain, e)
            return False

        is_contract = code not in ("", "0x", "0x0")
        self._contract_cache[key] = is_contract
        await self._set_cached(redis_key, "1" if is_contract else "0")
        return is_contract

    async def get_transaction(self, chain: str, tx_hash: str) -> dict[str, Any] | None:
        """Fetch a transaction by hash, or None if the node does not know it."""
        result = await self._execute_with_retry(chain, "eth_getTransactionByHash", [tx_hash])
        return result if isinstance(result, dict) else None

    async def get_pool_tokens(self, chain: str, pool_address: str) -> tuple[str, str]:
        """Read token0/token1 from a pool contract (lowercased).

        Raises:
            ChainClientError: If either read fails or returns garbage.
        """
        try:
            raw0 = await self.call(chain, pool_address, TOKEN0_SELECTOR)
            raw1 = await self.call(chain, pool_address, TOKEN1_SELECTOR)
            return decode_address_result(raw0), decode_address_result(raw1)
        except LogDecodeError as e:
            raise RPCError(f"Pool {pool_address} on {chain} returned invalid token addresses") from e

    async def get_decimals(self, chain: str, token_address: str) -> int | None:
        """Read ERC20 decimals. Values outside 0..36 are reported as None.

        Raises:
            ChainClientError: If the read fails.
        """
        key = f"{chain}:{token_address.lower()}"
        if key in self._decimals_cache:
            return self._decimals_cache[key]

        redis_key = self._cache_key("decimals", chain, token_address)
        cached = await self._get_cached(redis_key)
        if cached is not None:
            decimals = int(cached) if cached.isdigit() else None
            self._decimals_cache[key] = decimals
            return decimals

        raw = await self.call(chain, token_address, DECIMALS_SELECTOR)
        try:
            value = decode_uint_result(raw)
        except LogDecodeError as e:
            raise RPCError(f"decimals() on {token_address} returned invalid data") from e
        decimals = value if 0 <= value <= MAX_TOKEN_DECIMALS else None
        self._decimals_cache[key] = decimals
        await self._set_cached(redis_key, str(decimals) if decimals is not None else "none")
        return decimals

    async def get_balance_of(self, chain: str, token_address: str, wallet: str, *, block: int) -> int:
        """ERC20 `balanceOf(wallet)` as of a specific block."""
        data = BALANCE_OF_SELECTOR + encode_address_arg(wallet)
        raw = await self.call(chain, token_address, data, block=block)
        try:
            return decode_uint_result(raw)
        except LogDecodeError as e:
            raise RPCError(f"balanceOf on {token_address} returned invalid data") from e

    def clear_caches(self) -> None:
        self._contract_cache.clear()
        self._decimals_cache.clear()
