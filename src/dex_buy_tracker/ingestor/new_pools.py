"""Best-effort new-pool scanner (logging only).

One scanner runs per chain. It is cancelled through an abort event that is
checked before and after every provider call; a call in flight is never
interrupted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dex_buy_tracker.ingestor.market_data import MarketDataGateway
    from dex_buy_tracker.ingestor.models import NewPool

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_MIN_LIQUIDITY_USD = 5000.0
DEFAULT_MAX_AGE_SECONDS = 600.0
DEFAULT_LOG_TOP_N = 5


@dataclass
class ScannerStats:
    cycles: int = 0
    pools_seen: int = 0
    errors: int = 0
    last_run_at: datetime | None = None


class NewPoolScanner:
    """Periodically logs freshly created, liquid pools for one chain."""

    def __init__(
        self,
        chain: str,
        gateway: MarketDataGateway,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        log_top_n: int = DEFAULT_LOG_TOP_N,
    ) -> None:
        self.chain = chain
        self._gateway = gateway
        self._poll_interval = poll_interval_seconds
        self._min_liquidity = min_liquidity_usd
        self._max_age = max_age_seconds
        self._log_top_n = log_top_n
        self.stats = ScannerStats()

    async def scan_once(self) -> list[NewPool]:
        pools = await self._gateway.get_new_pools(
            self.chain,
            min_liquidity_usd=self._min_liquidity,
            max_age_seconds=self._max_age,
        )
        self.stats.cycles += 1
        self.stats.pools_seen += len(pools)
        self.stats.last_run_at = datetime.now(UTC)
        if pools:
            logger.info("%s: %d fresh pools detected", self.chain, len(pools))
            for pool in pools[: self._log_top_n]:
                age = pool.age_seconds()
                logger.info(
                    "  %s | %s | liq=$%.0f | age %ss | %s",
                    pool.name,
                    pool.address,
                    pool.liquidity_usd,
                    int(age) if age is not None else "?",
                    pool.source,
                )
        return pools

    async def run(self, abort: asyncio.Event) -> None:
        """Scan until `abort` is set."""
        logger.info("Starting new-pool scanner for %s", self.chain)
        while not abort.is_set():
            try:
                await self.scan_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.errors += 1
                if not abort.is_set():
                    logger.error("%s scanner error: %s", self.chain, e)
            if abort.is_set():
                break
            try:
                await asyncio.wait_for(abort.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
        logger.info("New-pool scanner stopped for %s", self.chain)
