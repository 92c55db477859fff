"""Market data gateway over DexScreener, GeckoTerminal and Binance.

Every provider payload is normalized into `PairStats`, `PoolCandidate` or
`NewPool` here; nothing provider-shaped leaves this module. Public methods
never raise on upstream failure: they fall back to the last cached value,
an empty result, or a static default.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import backoff
import httpx

from dex_buy_tracker.ingestor.cache import TimedCache
from dex_buy_tracker.ingestor.models import NewPool, PairStats, PoolCandidate

logger = logging.getLogger(__name__)

DEXSCREENER_BASE_URL = "https://api.dexscreener.com"
GECKOTERMINAL_BASE_URL = "https://api.geckoterminal.com"
BINANCE_BASE_URL = "https://api.binance.com"

DEFAULT_TIMEOUT_SECONDS = 10.0
DEXSCREENER_NEW_PAIRS_TIMEOUT = 7.0
GECKO_NEW_POOLS_TIMEOUT = 8.0
DEFAULT_PAIR_STATS_TTL = 8.0
DEFAULT_FALLBACK_TTL = 10.0
DEFAULT_NATIVE_PRICE_TTL = 30.0
DEFAULT_TOKEN_POOLS_TTL = 120.0
PRUNE_GRACE_SECONDS = 60.0
NEW_POOLS_LIMIT = 40

GECKO_NETWORKS: dict[str, str] = {
    "bsc": "bsc",
    "ethereum": "eth",
    "base": "base",
    "monad": "monad",
    "arbitrum": "arbitrum",
    "polygon": "polygon_pos",
    "avalanche": "avax",
}

# DexScreener sometimes reports numeric chain ids instead of slugs.
CHAIN_NUMERIC_IDS: dict[str, int] = {
    "ethereum": 1,
    "bsc": 56,
    "polygon": 137,
    "base": 8453,
    "arbitrum": 42161,
    "avalanche": 43114,
    "monad": 143,
}

# chain -> (Binance ticker, static USD default)
NATIVE_TICKERS: dict[str, tuple[str, Decimal]] = {
    "bsc": ("BNBUSDT", Decimal("875")),
    "ethereum": ("ETHUSDT", Decimal("3400")),
    "base": ("ETHUSDT", Decimal("3400")),
    "arbitrum": ("ETHUSDT", Decimal("3400")),
    "polygon": ("POLUSDT", Decimal("0.5")),
    "avalanche": ("AVAXUSDT", Decimal("30")),
}
DEFAULT_NATIVE_TICKER: tuple[str, Decimal] = ("ETHUSDT", Decimal("3400"))

# Raised by normalization when a provider returns an unexpected shape.
PAYLOAD_ERRORS = (AttributeError, TypeError, ValueError, ArithmeticError)


class MarketDataError(Exception):
    """Upstream provider failure (internal to the gateway)."""


class MarketDataGateway:
    """Cached, fallback-aware access to third-party market data.

    Example:
        ```python
        gateway = MarketDataGateway()
        stats = await gateway.get_pair_stats("bsc", "0xpool...")
        pools = await gateway.get_token_pools_by_liquidity("bsc", "0xtoken...")
        bnb = await gateway.get_native_asset_price("bsc")
        await gateway.aclose()
        ```
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        pair_stats_ttl: float = DEFAULT_PAIR_STATS_TTL,
        fallback_ttl: float = DEFAULT_FALLBACK_TTL,
        native_price_ttl: float = DEFAULT_NATIVE_PRICE_TTL,
        token_pools_ttl: float = DEFAULT_TOKEN_POOLS_TTL,
        dexscreener_url: str = DEXSCREENER_BASE_URL,
        geckoterminal_url: str = GECKOTERMINAL_BASE_URL,
        binance_url: str = BINANCE_BASE_URL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._dexscreener_url = dexscreener_url.rstrip("/")
        self._geckoterminal_url = geckoterminal_url.rstrip("/")
        self._binance_url = binance_url.rstrip("/")

        self._pair_cache: TimedCache[str, PairStats | None] = TimedCache(pair_stats_ttl, clock=clock)
        self._gecko_cache: TimedCache[str, PairStats | None] = TimedCache(fallback_ttl, clock=clock)
        self._native_cache: TimedCache[str, Decimal] = TimedCache(native_price_ttl, clock=clock)
        self._token_pools_cache: TimedCache[str, list[PoolCandidate]] = TimedCache(
            token_pools_ttl, clock=clock
        )

    @backoff.on_exception(backoff.expo, httpx.RequestError, max_tries=3, jitter=None)
    async def _get_json(self, url: str, *, params: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.get(url, **kwargs)
        if response.status_code != 200:
            raise MarketDataError(f"HTTP {response.status_code} from {url}")
        try:
            return response.json()
        except ValueError as e:
            raise MarketDataError(f"Malformed JSON from {url}") from e

    async def get_pair_stats(self, chain: str, pool_address: str) -> PairStats | None:
        """Get stats for one pool: DexScreener first, GeckoTerminal for gaps.

        The fallback is consulted only when the primary has no usable data
        (missing, or liquidity/valuation/volume all zero) and the chain has a
        GeckoTerminal network.
        """
        primary = await self._get_dexscreener_pair(chain, pool_address)
        if primary is not None and primary.has_market_data:
            return primary
        if chain not in GECKO_NETWORKS:
            return primary

        fallback = await self._get_gecko_pair(chain, pool_address)
        if fallback is None:
            return primary
        logger.info(
            "GeckoTerminal fallback used for %s:%s (liq=$%.0f, mc=$%.0f)",
            chain,
            pool_address,
            fallback.liquidity_usd,
            fallback.fdv_usd,
        )
        if primary is None:
            return fallback
        return primary.merge_missing(fallback)

    async def _get_dexscreener_pair(self, chain: str, pool_address: str) -> PairStats | None:
        key = f"{chain}:{pool_address.lower()}"
        hit, cached = self._pair_cache.lookup(key)
        if hit:
            return cached

        url = f"{self._dexscreener_url}/latest/dex/pairs/{chain}/{pool_address}"
        try:
            payload = await self._get_json(url)
        except (httpx.HTTPError, MarketDataError) as e:
            logger.warning("DexScreener request failed for %s: %s", key, e)
            return self._pair_cache.get_stale(key)

        try:
            stats = _parse_dexscreener_pair(payload)
        except PAYLOAD_ERRORS as e:
            logger.warning("Malformed DexScreener pair for %s: %s", key, e)
            return self._pair_cache.get_stale(key)
        self._pair_cache.set(key, stats)
        return stats

    async def _get_gecko_pair(self, chain: str, pool_address: str) -> PairStats | None:
        network = GECKO_NETWORKS.get(chain)
        if network is None:
            return None
        key = f"{network}:{pool_address.lower()}"
        hit, cached = self._gecko_cache.lookup(key)
        if hit:
            return cached

        url = f"{self._geckoterminal_url}/api/v2/networks/{network}/pools/{pool_address}"
        try:
            payload = await self._get_json(url)
        except (httpx.HTTPError, MarketDataError) as e:
            logger.warning("GeckoTerminal request failed for %s: %s", key, e)
            return self._gecko_cache.get_stale(key)

        data = payload.get("data") if isinstance(payload, dict) else None
        try:
            stats = PairStats.from_geckoterminal(data) if isinstance(data, dict) else None
        except PAYLOAD_ERRORS as e:
            logger.warning("Malformed GeckoTerminal pool for %s: %s", key, e)
            return self._gecko_cache.get_stale(key)
        self._gecko_cache.set(key, stats)
        return stats

    async def get_token_pools_by_liquidity(
        self,
        chain: str,
        token_address: str,
        *,
        min_liquidity_usd: float = 10.0,
        limit: int = 15,
    ) -> list[PoolCandidate]:
        """Discover pools trading a token on a chain, deepest first."""
        token = token_address.lower()
        key = f"{chain}:{token}:{min_liquidity_usd}:{limit}"
        cached = self._token_pools_cache.get(key)
        if cached is not None:
            return list(cached)

        url = f"{self._dexscreener_url}/latest/dex/tokens/{token_address}"
        try:
            payload = await self._get_json(url)
        except (httpx.HTTPError, MarketDataError) as e:
            logger.warning("Pool discovery failed for %s on %s: %s", token_address, chain, e)
            return list(self._token_pools_cache.get_stale(key) or [])

        try:
            candidates = _parse_token_pools(payload, chain, token, Decimal(str(min_liquidity_usd)))
        except PAYLOAD_ERRORS as e:
            logger.warning("Malformed pool discovery reply for %s on %s: %s", token_address, chain, e)
            return list(self._token_pools_cache.get_stale(key) or [])

        candidates.sort(key=lambda c: c.liquidity_usd, reverse=True)
        result = candidates[:limit]
        self._token_pools_cache.set(key, result)
        logger.info("Discovered %d pools for %s on %s", len(result), token_address, chain)
        return list(result)

    async def get_native_asset_price(self, chain: str) -> Decimal:
        """USD price of the chain's native asset, falling back to a static default."""
        cached = self._native_cache.get(chain)
        if cached is not None:
            return cached

        symbol, default = NATIVE_TICKERS.get(chain, DEFAULT_NATIVE_TICKER)
        price = self._native_cache.get_stale(chain) or default
        try:
            payload = await self._get_json(
                f"{self._binance_url}/api/v3/ticker/price",
                params={"symbol": symbol},
            )
            fetched = Decimal(str(payload["price"]))
            if fetched > 0:
                price = fetched
        except (httpx.HTTPError, MarketDataError, KeyError, TypeError, ArithmeticError) as e:
            logger.warning("Native price fetch failed for %s (%s), using %s: %s", chain, symbol, price, e)
        self._native_cache.set(chain, price)
        return price

    async def get_new_pools(
        self,
        chain: str,
        *,
        min_liquidity_usd: float,
        max_age_seconds: float,
    ) -> list[NewPool]:
        """Recently created pools from both providers, newest first."""
        dex_pools, gecko_pools = await asyncio.gather(
            self._fetch_dexscreener_new_pools(chain),
            self._fetch_gecko_new_pools(chain),
        )

        floor = Decimal(str(min_liquidity_usd))
        seen: set[str] = set()
        result: list[tuple[float, NewPool]] = []
        for pool in [*dex_pools, *gecko_pools]:
            if not pool.address or pool.address in seen:
                continue
            age = max(0.0, pool.age_seconds() or 0.0)
            if pool.liquidity_usd >= floor and age <= max_age_seconds:
                seen.add(pool.address)
                result.append((age, pool))
        result.sort(key=lambda item: item[0])
        return [pool for _, pool in result]

    async def _fetch_dexscreener_new_pools(self, chain: str) -> list[NewPool]:
        try:
            payload = await self._get_json(
                f"{self._dexscreener_url}/latest/dex/pairs/{chain}",
                params={"orderBy": "age", "order": "asc", "limit": NEW_POOLS_LIMIT},
                timeout=DEXSCREENER_NEW_PAIRS_TIMEOUT,
            )
        except (httpx.HTTPError, MarketDataError) as e:
            logger.debug("DexScreener new pairs failed for %s: %s", chain, e)
            return []
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        try:
            return [NewPool.from_dexscreener(chain, p) for p in pairs or [] if isinstance(p, dict)]
        except PAYLOAD_ERRORS as e:
            logger.debug("Malformed DexScreener new pairs for %s: %s", chain, e)
            return []

    async def _fetch_gecko_new_pools(self, chain: str) -> list[NewPool]:
        network = GECKO_NETWORKS.get(chain)
        if network is None:
            return []
        try:
            payload = await self._get_json(
                f"{self._geckoterminal_url}/api/v2/networks/{network}/new_pools",
                params={"limit": NEW_POOLS_LIMIT},
                timeout=GECKO_NEW_POOLS_TIMEOUT,
            )
        except (httpx.HTTPError, MarketDataError) as e:
            logger.debug("GeckoTerminal new pools failed for %s: %s", chain, e)
            return []
        data = payload.get("data") if isinstance(payload, dict) else None
        try:
            return [NewPool.from_geckoterminal(chain, p) for p in data or [] if isinstance(p, dict)]
        except PAYLOAD_ERRORS as e:
            logger.debug("Malformed GeckoTerminal new pools for %s: %s", chain, e)
            return []

    def prune(self) -> int:
        """Drop cache entries long past their TTL."""
        return sum(
            cache.prune(PRUNE_GRACE_SECONDS)
            for cache in (self._pair_cache, self._gecko_cache, self._native_cache, self._token_pools_cache)
        )

    def clear(self) -> None:
        self._pair_cache.clear()
        self._gecko_cache.clear()
        self._native_cache.clear()
        self._token_pools_cache.clear()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_dexscreener_pair(payload: Any) -> PairStats | None:
    pairs = payload.get("pairs") if isinstance(payload, dict) else None
    if not isinstance(pairs, list):
        pair = payload.get("pair") if isinstance(payload, dict) else None
        pairs = [pair] if isinstance(pair, dict) else []
    return PairStats.from_dexscreener(pairs[0]) if pairs and isinstance(pairs[0], dict) else None


def _parse_token_pools(payload: Any, chain: str, token: str, floor: Decimal) -> list[PoolCandidate]:
    pairs = payload.get("pairs") if isinstance(payload, dict) else None
    numeric_id = CHAIN_NUMERIC_IDS.get(chain)
    candidates: list[PoolCandidate] = []
    for raw in pairs or []:
        if not isinstance(raw, dict):
            continue
        chain_id = str(raw.get("chainId") or "").lower()
        chain_name = str(raw.get("chain") or "").lower()
        on_chain = chain_id == chain or chain_name == chain or (
            numeric_id is not None and chain_id == str(numeric_id)
        )
        if not on_chain:
            continue
        stats = PairStats.from_dexscreener(raw)
        if token not in (stats.base_token.address, stats.quote_token.address):
            continue
        if not stats.pair_address or stats.liquidity_usd < floor:
            continue
        candidates.append(PoolCandidate(address=stats.pair_address, liquidity_usd=stats.liquidity_usd))
    return candidates
