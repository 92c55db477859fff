"""Main tracker orchestrator for DEX Buy Tracker.

This module provides the BuyTracker class that wires together the listener
sync, chain connections, swap classification, buyer attribution, alert
enrichment and dispatch, and manages their lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from redis.asyncio import Redis

from dex_buy_tracker.alerter.cooldown import CooldownTracker
from dex_buy_tracker.alerter.formatter import BuyAlertFormatter, round_usd
from dex_buy_tracker.alerter.models import AlertJob, RenderedAlert
from dex_buy_tracker.alerter.queue import AlertDispatchQueue
from dex_buy_tracker.alerter.telegram import TelegramChannel
from dex_buy_tracker.config import SUPPORTED_CHAINS, Settings, get_settings
from dex_buy_tracker.detector.classifier import classify_swap
from dex_buy_tracker.detector.enrichment import AlertEnricher
from dex_buy_tracker.health import HealthServer
from dex_buy_tracker.ingestor.market_data import MarketDataGateway
from dex_buy_tracker.ingestor.models import BuyEvent
from dex_buy_tracker.ingestor.new_pools import NewPoolScanner
from dex_buy_tracker.ingestor.registry import ChainConnectionRegistry, TransportFactory
from dex_buy_tracker.ingestor.transport import create_transport
from dex_buy_tracker.profiler.buyer import BuyerResolver
from dex_buy_tracker.profiler.chain import ChainClient
from dex_buy_tracker.storage.database import DatabaseManager
from dex_buy_tracker.storage.settings_store import GroupSettings, GroupSettingsStore
from dex_buy_tracker.sync import ListenerSync

if TYPE_CHECKING:
    from dex_buy_tracker.detector.models import BuyAlert
    from dex_buy_tracker.ingestor.models import LaunchpadBuy, SwapEvent
    from dex_buy_tracker.ingestor.registry import PoolSubscription

logger = logging.getLogger(__name__)


class AlertDelivery(Protocol):
    async def send(self, chat_id: int, alert: RenderedAlert) -> None: ...


class TrackerState(str, Enum):
    """Tracker lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class TrackerStats:
    """Statistics for the tracker."""

    started_at: datetime | None = None
    swaps_received: int = 0
    launchpad_buys_received: int = 0
    buys_detected: int = 0
    sells_ignored: int = 0
    buyers_skipped: int = 0
    alerts_enqueued: int = 0
    alerts_filtered: int = 0
    alerts_cooled_down: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_buy_time: datetime | None = None
    last_error: str | None = None


class BuyTracker:
    """Main orchestrator for live buy tracking.

    Tracker flow:
        ListenerSync → ChainConnectionRegistry → classify_swap → BuyerResolver
        → AlertEnricher → per-group admission → AlertDispatchQueue → Telegram

    Launchpad CurveBuy events skip classification and join the flow at
    BuyerResolver, matched to groups by token.

    Example:
        ```python
        from dex_buy_tracker.config import get_settings
        from dex_buy_tracker.pipeline import BuyTracker

        tracker = BuyTracker(get_settings())

        await tracker.start_tracking()
        # Tracker runs until shutdown() is called
        await tracker.shutdown()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: GroupSettingsStore | None = None,
        *,
        dry_run: bool | None = None,
        gateway: MarketDataGateway | None = None,
        delivery: AlertDelivery | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            store: Loaded group settings store. If not provided, one is opened
                from `settings.database.url` on start and closed on shutdown.
            dry_run: If True, log alerts instead of sending. Overrides settings.dry_run.
            gateway: Market data gateway override.
            delivery: Alert delivery override (defaults to the Telegram channel).
            transport_factory: Chain transport factory override.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = TrackerState.STOPPED
        self._stats = TrackerStats()

        self._store = store
        self._owns_store = store is None
        self._gateway = gateway
        self._owns_gateway = gateway is None
        self._delivery = delivery
        self._owns_delivery = delivery is None
        self._transport_factory = transport_factory

        # Components (initialized in start_tracking())
        self._redis: Redis | None = None
        self._registry: ChainConnectionRegistry | None = None
        self._chain_client: ChainClient | None = None
        self._resolver: BuyerResolver | None = None
        self._enricher: AlertEnricher | None = None
        self._formatter: BuyAlertFormatter | None = None
        self._cooldowns = CooldownTracker()
        self._queue: AlertDispatchQueue | None = None
        self._sync: ListenerSync | None = None
        self._health: HealthServer | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._prune_task: asyncio.Task[None] | None = None
        self._scanners: dict[str, tuple[asyncio.Event, asyncio.Task[None]]] = {}

    @property
    def state(self) -> TrackerState:
        """Current tracker state."""
        return self._state

    @property
    def stats(self) -> TrackerStats:
        """Current tracker statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if tracker is running."""
        return self._state == TrackerState.RUNNING

    @property
    def registry(self) -> ChainConnectionRegistry | None:
        return self._registry

    @property
    def queue(self) -> AlertDispatchQueue | None:
        return self._queue

    @property
    def listener_sync(self) -> ListenerSync | None:
        return self._sync

    async def start_tracking(self) -> None:
        """Start tracking.

        Initializes all components, then starts the listener sync, the
        dispatch ticker, cache pruning and the new-pool scanners.

        Raises:
            RuntimeError: If the tracker is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != TrackerState.STOPPED:
            raise RuntimeError(f"Cannot start tracker in state {self._state}")

        self._state = TrackerState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting buy tracker...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = TrackerState.RUNNING
            logger.info("Buy tracker started (dry_run=%s)", self._dry_run)
        except Exception as e:
            self._state = TrackerState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start buy tracker: %s", e)
            await self._cleanup()
            raise

    async def shutdown(self) -> None:
        """Stop tracking gracefully.

        Aborts the scanners, stops the sync loop, detaches every pool,
        closes every chain connection, stops the dispatch ticker and clears
        all caches. A failing step is logged and the sequence continues.
        """
        if self._state == TrackerState.STOPPED:
            return

        self._state = TrackerState.STOPPING
        logger.info("Stopping buy tracker...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = TrackerState.STOPPED
        logger.info("Buy tracker shutdown complete")

    def request_stop(self) -> None:
        """Ask `run()` to return; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    async def clear_caches_and_resync(self) -> bool:
        """Drop every connection and cache, then resync immediately.

        Returns:
            True if the caches were cleared and a resync was scheduled.
        """
        if not self.is_running or self._registry is None or self._sync is None:
            logger.warning("Cache clear requested while tracker is %s", self._state.value)
            return False
        try:
            await self._sync.reset()
            self._cooldowns.clear()
            self._clear_caches()
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Manual cache clear failed: %s", e)
            return False
        logger.info("Manual cache clear done, resync scheduled")
        return True

    async def _initialize_components(self) -> None:
        """Initialize all tracker components."""
        settings = self._settings

        if self._store is None:
            self._store = GroupSettingsStore(DatabaseManager(settings.database.url))
            await self._store.load()

        if settings.redis.url:
            logger.debug("Connecting to Redis...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._gateway is None:
            self._gateway = MarketDataGateway(
                timeout_seconds=settings.enrichment.http_timeout_seconds,
                pair_stats_ttl=settings.enrichment.pair_stats_ttl_seconds,
                fallback_ttl=settings.enrichment.fallback_stats_ttl_seconds,
                native_price_ttl=settings.enrichment.native_price_ttl_seconds,
                token_pools_ttl=settings.enrichment.token_pools_ttl_seconds,
            )

        transport_factory = self._transport_factory or functools.partial(
            create_transport,
            request_timeout=settings.tracker.request_timeout_seconds,
            poll_interval=settings.tracker.poll_interval_seconds,
            max_block_range=settings.tracker.max_block_range,
        )
        self._registry = ChainConnectionRegistry(
            swap_handler=self._on_swap,
            launchpad_handler=self._on_launchpad_buy,
            transport_factory=transport_factory,
            stale_after_seconds=settings.tracker.stale_after_seconds,
        )

        self._chain_client = ChainClient(
            self._registry.transport_for,
            redis=self._redis,
            max_requests_per_second=settings.tracker.rpc_max_requests_per_second,
            max_retries=settings.tracker.rpc_max_retries,
        )
        self._resolver = BuyerResolver(
            self._chain_client,
            aggregator_heavy_chains=settings.tracker.aggregator_heavy_chains,
        )
        self._enricher = AlertEnricher(
            self._gateway,
            self._chain_client,
            min_position_usd=Decimal(str(settings.enrichment.min_position_usd)),
            max_position_increase_pct=settings.enrichment.max_position_increase_pct,
        )
        self._formatter = BuyAlertFormatter(
            {chain: settings.chains.explorer_for(chain) for chain in SUPPORTED_CHAINS},
            trending_url=settings.telegram.trending_url,
            ads_url=settings.telegram.ads_url,
        )
        self._queue = AlertDispatchQueue(
            capacity=settings.dispatch.capacity,
            max_per_second=settings.dispatch.max_per_second,
            max_in_flight=settings.dispatch.max_in_flight,
            tick_interval_seconds=settings.dispatch.tick_interval_seconds,
        )

        if self._delivery is None and not self._dry_run and settings.telegram.bot_token:
            self._delivery = TelegramChannel(
                settings.telegram.bot_token.get_secret_value(),
                api_base_url=settings.telegram.api_base_url,
            )
            logger.info("Telegram channel enabled")
        if self._delivery is None and not self._dry_run:
            logger.warning("No alert delivery configured, alerts will only be logged")

        self._sync = ListenerSync(
            self._registry,
            self._store,
            self._gateway,
            self._chain_client,
            endpoints=settings.chains.configured(),
            interval_seconds=settings.tracker.sync_interval_seconds,
            discovery_max_pools=settings.tracker.discovery_max_pools,
            discovery_min_liquidity_usd=settings.tracker.discovery_min_liquidity_usd,
            launchpads=settings.tracker.launchpads(),
        )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._queue:
            await self._queue.start()

        if self._sync:
            logger.debug("Starting listener sync loop...")
            self._sync_task = asyncio.create_task(self._sync.run_forever())

        logger.debug("Starting cache prune loop...")
        self._prune_task = asyncio.create_task(self._run_prune_loop())

        if self._settings.scanner.enabled and self._gateway:
            for chain in self._settings.chains.configured():
                self.start_scanner(chain)

        if self._settings.health_port:
            self._health = HealthServer(lambda: self.is_running, port=self._settings.health_port)
            await self._health.start()

    def start_scanner(self, chain: str) -> None:
        """Start the new-pool scanner for a chain, aborting any previous one."""
        if self._gateway is None:
            return
        previous = self._scanners.pop(chain, None)
        if previous is not None:
            previous[0].set()

        scanner_settings = self._settings.scanner
        scanner = NewPoolScanner(
            chain,
            self._gateway,
            poll_interval_seconds=scanner_settings.poll_interval_seconds,
            min_liquidity_usd=scanner_settings.min_liquidity_usd,
            max_age_seconds=scanner_settings.max_age_seconds,
            log_top_n=scanner_settings.log_top_n,
        )
        abort = asyncio.Event()
        self._scanners[chain] = (abort, asyncio.create_task(scanner.run(abort)))

    async def _stop_scanners(self) -> None:
        scanners = list(self._scanners.values())
        self._scanners.clear()
        for abort, _ in scanners:
            abort.set()
        for _, task in scanners:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run_prune_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.tracker.cache_prune_interval_seconds
        purge_interval = self._settings.dispatch.cooldown_purge_interval_seconds
        last_purge = time.monotonic()
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                if self._gateway:
                    pruned = self._gateway.prune()
                    if pruned:
                        logger.debug("Pruned %d market data cache entries", pruned)

                if time.monotonic() - last_purge >= purge_interval:
                    last_purge = time.monotonic()
                    self._cooldowns.prune(self._settings.dispatch.cooldown_max_age_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Cache prune loop error: %s", e)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._health:
            try:
                await self._health.stop()
            except Exception:
                logger.exception("Stopping health server failed")
            self._health = None

        try:
            await self._stop_scanners()
        except Exception:
            logger.exception("Stopping scanners failed")

        if self._sync:
            self._sync.stop()
        if self._sync_task:
            self._sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sync_task
            self._sync_task = None

        if self._prune_task:
            self._prune_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._prune_task
            self._prune_task = None

        if self._registry:
            try:
                await self._registry.teardown_all()
            except Exception:
                logger.exception("Tearing down chain connections failed")

        if self._queue:
            try:
                await self._queue.stop()
            except Exception:
                logger.exception("Stopping alert queue failed")

    def _clear_caches(self) -> None:
        if self._gateway:
            self._gateway.clear()
        if self._chain_client:
            self._chain_client.clear_caches()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        self._cooldowns.clear()
        self._clear_caches()

        if self._gateway and self._owns_gateway:
            await self._gateway.aclose()
            self._gateway = None

        if isinstance(self._delivery, TelegramChannel) and self._owns_delivery:
            await self._delivery.aclose()
            self._delivery = None

        if self._store and self._owns_store:
            await self._store.aclose()
            self._store = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _on_swap(self, chain: str, sub: PoolSubscription, event: SwapEvent) -> None:
        """Process one decoded swap from a pool subscription.

        1. Classify against the pool's target token (sells are dropped)
        2. Resolve the end-user buyer (ambiguous contracts are skipped)
        3. Enrich with market data
        4. Admit and enqueue once per group that tracks the pool
        """
        self._stats.swaps_received += 1
        if self._resolver is None or self._enricher is None:
            return

        try:
            buy = classify_swap(event, sub.tokens)
        except Exception as e:
            self._stats.errors += 1
            logger.warning("Swap classification failed for %s:%s: %s", chain, sub.pool_address, e)
            return
        if buy is None:
            self._stats.sells_ignored += 1
            logger.debug("Non-buy swap ignored on %s:%s tx=%s", chain, sub.pool_address, event.tx_hash)
            return

        buyer = await self._resolver.resolve(chain, buy.recipient, buy.tx_hash)
        if buyer is None:
            self._stats.buyers_skipped += 1
            return

        self._stats.buys_detected += 1
        self._stats.last_buy_time = datetime.now(UTC)
        alert = await self._enricher.enrich(chain, buy, buyer)
        self.dispatch_alert(alert)

    async def _on_launchpad_buy(self, chain: str, event: LaunchpadBuy) -> None:
        """Process one bonding-curve buy from a launchpad router.

        Groups are matched on the bought token. The alert is priced against
        the first group's primary pool, or the token itself when the group
        has no pools yet.
        """
        self._stats.launchpad_buys_received += 1
        if self._store is None or self._resolver is None or self._enricher is None:
            return

        groups = [
            gs for gs in self._store.get_all().values()
            if gs.chain == chain and gs.token_address.lower() == event.token
        ]
        if not groups:
            return
        if event.amount_in <= 0 or event.amount_out <= 0:
            return

        pools = groups[0].all_pair_addresses
        buy = BuyEvent(
            pool_address=pools[0].lower() if pools else event.token,
            base_token=self._settings.tracker.launchpad_base_token,
            target_token=event.token,
            base_amount_in=event.amount_in,
            target_amount_out=event.amount_out,
            recipient=event.recipient,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
        )

        buyer = await self._resolver.resolve(chain, buy.recipient, buy.tx_hash)
        if buyer is None:
            self._stats.buyers_skipped += 1
            return

        self._stats.buys_detected += 1
        self._stats.last_buy_time = datetime.now(UTC)
        alert = await self._enricher.enrich(chain, buy, buyer)
        self.dispatch_alert(alert, match_token=True)

    def dispatch_alert(self, alert: BuyAlert, *, match_token: bool = False) -> int:
        """Fan an alert out to every group tracking its pool.

        With `match_token`, groups are matched on the alert's target token
        instead of the pool.

        Returns:
            Number of jobs enqueued.
        """
        if self._store is None or self._queue is None or self._formatter is None:
            return 0

        enqueued = 0
        for group_id, gs in list(self._store.get_all().items()):
            if gs.chain != alert.chain:
                continue
            if match_token:
                if gs.token_address.lower() != alert.target_token:
                    continue
            elif not gs.tracks_pool(alert.pool_address):
                continue
            if not self._admit(group_id, gs, alert):
                continue
            rendered = self._formatter.format(alert, gs)
            self._queue.enqueue(AlertJob(group_id=group_id, run=functools.partial(self._deliver, group_id, rendered)))
            self._stats.alerts_enqueued += 1
            enqueued += 1
        return enqueued

    def _admit(self, group_id: int, gs: GroupSettings, alert: BuyAlert) -> bool:
        buy_usd = round_usd(alert.usd_value)
        if buy_usd < gs.min_buy_usd:
            self._stats.alerts_filtered += 1
            logger.debug("Buy $%d below group %s minimum $%.0f", buy_usd, group_id, gs.min_buy_usd)
            return False
        if gs.max_buy_usd and buy_usd > gs.max_buy_usd:
            self._stats.alerts_filtered += 1
            logger.debug("Buy $%d above group %s maximum $%.0f", buy_usd, group_id, gs.max_buy_usd)
            return False

        cooldown = (
            gs.cooldown_seconds
            if gs.cooldown_seconds is not None
            else self._settings.dispatch.default_cooldown_seconds
        )
        if not self._cooldowns.try_acquire(group_id, alert.pool_address, cooldown):
            self._stats.alerts_cooled_down += 1
            return False
        return True

    async def _deliver(self, group_id: int, rendered: RenderedAlert) -> None:
        if self._dry_run or self._delivery is None:
            logger.info("[DRY RUN] Alert for group %s:\n%s", group_id, rendered.text)
            return
        await self._delivery.send(group_id, rendered)
        self._stats.alerts_sent += 1

    async def run(self) -> None:
        """Start tracking and run until `request_stop()` or cancellation.

        Example:
            ```python
            tracker = BuyTracker()
            try:
                await tracker.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start_tracking()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()

    async def __aenter__(self) -> BuyTracker:
        """Async context manager entry."""
        await self.start_tracking()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.shutdown()
