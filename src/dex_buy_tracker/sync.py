"""Listener reconciliation loop.

Diffs the pools every group wants against the live subscriptions and drives
the connection registry to match. Each pass runs these phases in order:

1. Orphan chains: tear down connections for chains no longer configured.
2. Dead pools: detach subscriptions no group on that chain references any
   more.
3. Auto-fill: groups with no pools get the deepest pools for their token.
4. Per-chain sync: ensure a healthy connection, drop pools the chain no
   longer needs, attach newly desired pools.
5. Launchpads: keep the bonding-curve router subscription on chains that
   have a launchpad and at least one group.

Passes never overlap. The next pass starts a fixed delay after the previous
one finished, whether it succeeded or not.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

from web3 import Web3

from dex_buy_tracker.ingestor.market_data import MarketDataGateway
from dex_buy_tracker.ingestor.models import PoolTokens
from dex_buy_tracker.ingestor.registry import ChainConnectionRegistry
from dex_buy_tracker.profiler.chain import ChainClient, ChainClientError
from dex_buy_tracker.storage.settings_store import GroupSettings, GroupSettingsStore

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_INTERVAL_SECONDS = 15.0
DEFAULT_DISCOVERY_MAX_POOLS = 15
DEFAULT_DISCOVERY_MIN_LIQUIDITY_USD = 10.0


@dataclass
class SyncResult:
    """What one reconciliation pass changed."""

    orphan_chains_removed: list[str] = field(default_factory=list)
    dead_pools_removed: int = 0
    groups_autofilled: int = 0
    pools_attached: int = 0
    pools_detached: int = 0
    pools_skipped: int = 0
    autofill_errors: int = 0
    chain_errors: int = 0
    launchpads_attached: list[str] = field(default_factory=list)

    @property
    def churn(self) -> int:
        return self.dead_pools_removed + self.pools_attached + self.pools_detached


@dataclass
class SyncStats:
    cycles: int = 0
    failed_cycles: int = 0
    last_duration_seconds: float = 0.0
    last_result: SyncResult | None = None


def desired_pools_by_chain(
    groups: Mapping[int, GroupSettings],
    configured_chains: Mapping[str, str],
) -> dict[str, set[str]]:
    """Union of every group's pools, per configured chain, lowercased."""
    desired: dict[str, set[str]] = {}
    for gs in groups.values():
        if gs.chain not in configured_chains or not gs.all_pair_addresses:
            continue
        desired.setdefault(gs.chain, set()).update(p.lower() for p in gs.all_pair_addresses)
    return desired


def resolve_target_token(groups: Mapping[int, GroupSettings], chain: str, pool_address: str) -> str | None:
    """Target token of the first group on `chain` that tracks the pool."""
    for gs in groups.values():
        if gs.chain == chain and gs.tracks_pool(pool_address):
            return gs.token_address.lower()
    return None


class ListenerSync:
    """Periodic reconciliation of desired pools against live subscriptions.

    Example:
        ```python
        sync = ListenerSync(registry, store, gateway, chain_client, endpoints=settings.chains.configured())
        task = asyncio.create_task(sync.run_forever())
        ...
        sync.request_resync()  # run the next pass now
        ...
        sync.stop()
        await task
        ```
    """

    def __init__(
        self,
        registry: ChainConnectionRegistry,
        store: GroupSettingsStore,
        gateway: MarketDataGateway,
        chain_client: ChainClient,
        *,
        endpoints: Mapping[str, str],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        discovery_max_pools: int = DEFAULT_DISCOVERY_MAX_POOLS,
        discovery_min_liquidity_usd: float = DEFAULT_DISCOVERY_MIN_LIQUIDITY_USD,
        launchpads: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._gateway = gateway
        self._chain_client = chain_client
        self._endpoints = dict(endpoints)
        self._interval = interval_seconds
        self._discovery_max_pools = discovery_max_pools
        self._discovery_min_liquidity = discovery_min_liquidity_usd
        self._launchpads = {chain: router.lower() for chain, router in (launchpads or {}).items()}

        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._stop_event = asyncio.Event()
        self.stats = SyncStats()

    @property
    def endpoints(self) -> dict[str, str]:
        return dict(self._endpoints)

    def set_endpoints(self, endpoints: Mapping[str, str]) -> None:
        """Replace the configured chain endpoints; applied on the next pass."""
        self._endpoints = dict(endpoints)

    def request_resync(self) -> None:
        """Cut the current delay short so the next pass runs immediately."""
        self._wake.set()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake.set()

    async def reset(self) -> None:
        """Tear down every connection between passes and schedule a fresh pass."""
        async with self._lock:
            await self._registry.teardown_all()
        self.request_resync()

    async def run_forever(self) -> None:
        logger.info("Listener sync started (interval=%.0fs)", self._interval)
        while not self._stop_event.is_set():
            self._wake.clear()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.stats.failed_cycles += 1
                logger.exception("Listener sync pass failed")

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except TimeoutError:
                pass
        logger.info("Listener sync stopped")

    async def run_once(self) -> SyncResult:
        """Run one full reconciliation pass."""
        async with self._lock:
            started = time.monotonic()
            result = SyncResult()
            logger.debug("Syncing live listeners...")

            await self._remove_orphan_chains(result)
            await self._remove_dead_pools(result)
            await self._autofill_pools(result)

            groups = self._store.get_all()
            desired = desired_pools_by_chain(groups, self._endpoints)
            for chain, pools in desired.items():
                try:
                    await self._sync_chain(chain, pools, result)
                except Exception as e:
                    result.chain_errors += 1
                    logger.error("Sync for %s failed, chain stays degraded: %s", chain, e)

            await self._sync_launchpads(groups, result)

            self.stats.cycles += 1
            self.stats.last_duration_seconds = time.monotonic() - started
            self.stats.last_result = result
            if result.churn or result.orphan_chains_removed:
                logger.info(
                    "Sync pass: +%d pools, -%d pools, %d skipped, %d chain errors",
                    result.pools_attached,
                    result.pools_detached + result.dead_pools_removed,
                    result.pools_skipped,
                    result.chain_errors,
                )
            return result

    async def _remove_orphan_chains(self, result: SyncResult) -> None:
        for chain in list(self._registry.list_chains()):
            if chain in self._endpoints:
                continue
            logger.info("Removing connection for %s (no longer configured)", chain)
            await self._registry.teardown(chain)
            result.orphan_chains_removed.append(chain)

    async def _remove_dead_pools(self, result: SyncResult) -> None:
        desired = desired_pools_by_chain(self._store.get_all(), self._endpoints)
        for chain in list(self._registry.list_chains()):
            active = desired.get(chain, set())
            for pool in sorted(self._registry.subscribed_pools(chain)):
                if pool in active:
                    continue
                if await self._registry.detach_pool(chain, pool):
                    result.dead_pools_removed += 1
                    logger.info("Auto-removed dead pool %s:%s", chain, pool)

    async def _autofill_pools(self, result: SyncResult) -> None:
        for group_id, gs in list(self._store.get_all().items()):
            if gs.all_pair_addresses or gs.chain not in self._endpoints:
                continue
            try:
                candidates = await self._gateway.get_token_pools_by_liquidity(
                    gs.chain,
                    gs.token_address,
                    min_liquidity_usd=self._discovery_min_liquidity,
                    limit=self._discovery_max_pools,
                )
            except Exception as e:
                result.autofill_errors += 1
                logger.warning("Pool discovery for group %s (%s on %s) failed: %s", group_id, gs.token_address, gs.chain, e)
                continue
            if not candidates:
                continue
            gs.all_pair_addresses = [c.address for c in candidates[: self._discovery_max_pools]]
            if not gs.pair_address:
                gs.pair_address = gs.all_pair_addresses[0]
            self._store.mark_dirty()
            result.groups_autofilled += 1
            logger.info(
                "Auto-added %d pools for %s on %s (group %s)",
                len(gs.all_pair_addresses),
                gs.token_address,
                gs.chain,
                group_id,
            )

    async def _sync_chain(self, chain: str, pools: set[str], result: SyncResult) -> None:
        conn = await self._registry.ensure_connection(chain, self._endpoints[chain])

        for pool in sorted(set(conn.subscriptions) - pools):
            if await self._registry.detach_pool(chain, pool):
                result.pools_detached += 1
                logger.info("Stopped listening on pool %s:%s", chain, pool)

        groups = self._store.get_all()
        for pool in sorted(pools - set(conn.subscriptions)):
            try:
                attached = await self._attach(chain, pool, groups)
            except Exception as e:
                attached = False
                logger.error("Failed to attach listener to pool %s:%s: %s", chain, pool, e)
            if attached:
                result.pools_attached += 1
            else:
                result.pools_skipped += 1

    async def _attach(self, chain: str, pool: str, groups: Mapping[int, GroupSettings]) -> bool:
        if not Web3.is_address(pool):
            logger.warning("Invalid pool address skipped: %s", pool)
            return False

        target = resolve_target_token(groups, chain, pool)
        if target is None:
            logger.warning("No matching settings for pool %s:%s, skipping attach", chain, pool)
            return False

        try:
            token0, token1 = await self._chain_client.get_pool_tokens(chain, pool)
        except ChainClientError as e:
            logger.warning("Could not read token0/token1 for pool %s:%s, skipping: %s", chain, pool, e)
            return False

        try:
            tokens = PoolTokens(token0=token0, token1=token1, target_token=target)
        except ValueError as e:
            logger.warning("Pool %s:%s does not trade %s, skipping: %s", chain, pool, target, e)
            return False

        await self._registry.attach_pool(chain, pool, tokens)
        return True

    async def _sync_launchpads(self, groups: Mapping[int, GroupSettings], result: SyncResult) -> None:
        for chain, router in self._launchpads.items():
            wanted = chain in self._endpoints and any(gs.chain == chain for gs in groups.values())
            if not wanted:
                await self._registry.detach_launchpad(chain)
                continue
            conn = self._registry.get(chain)
            if conn is not None and conn.launchpad is not None:
                continue
            try:
                await self._registry.ensure_connection(chain, self._endpoints[chain])
                await self._registry.attach_launchpad(chain, router)
            except Exception as e:
                result.chain_errors += 1
                logger.error("Failed to attach launchpad listener on %s: %s", chain, e)
                continue
            result.launchpads_attached.append(chain)
