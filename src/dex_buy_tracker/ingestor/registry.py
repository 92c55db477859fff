"""Chain connection registry.

Owns one live transport per chain and the pool subscriptions bound to it.
Streaming connections that go quiet are replaced, and every subscription is
re-bound to the replacement before the old transport is dropped.

Each PoolSubscription has its own asyncio.Queue of decoded SwapEvents and a
consumer task, so events for one pool are handled in delivery order and a
failing handler never affects other pools.

A chain may also carry one launchpad subscription: the bonding-curve router's
CurveBuy events, delivered the same way to a separate handler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from dex_buy_tracker.ingestor.abi import (
    CURVE_BUY_TOPIC,
    SWAP_TOPICS,
    LogDecodeError,
    decode_curve_buy_log,
    decode_swap_log,
)
from dex_buy_tracker.ingestor.models import LaunchpadBuy, PoolTokens, PoolVersion, SwapEvent
from dex_buy_tracker.ingestor.transport import (
    ChainTransport,
    TransportKind,
    create_transport,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 60.0

SwapHandler = Callable[[str, "PoolSubscription", SwapEvent], Awaitable[None]]
LaunchpadHandler = Callable[[str, LaunchpadBuy], Awaitable[None]]
TransportFactory = Callable[[str], ChainTransport]
Clock = Callable[[], float]


@dataclass
class PoolSubscription:
    """Listeners bound to one pool across all swap event shapes."""

    chain: str
    pool_address: str
    tokens: PoolTokens
    handles: dict[PoolVersion, str] = field(default_factory=dict)
    channel: asyncio.Queue[SwapEvent] = field(default_factory=asyncio.Queue)
    consumer_task: asyncio.Task[None] | None = None
    events_received: int = 0
    decode_errors: int = 0

    @property
    def token0(self) -> str:
        return self.tokens.token0

    @property
    def token1(self) -> str:
        return self.tokens.token1

    @property
    def target_token(self) -> str:
        return self.tokens.target_token

    def deliver(self, version: PoolVersion, log: dict[str, Any]) -> None:
        """Decode a raw log and push it onto this subscription's channel."""
        try:
            event = decode_swap_log(log, version)
        except LogDecodeError as e:
            self.decode_errors += 1
            logger.debug("Dropping undecodable %s log for %s: %s", version.value, self.pool_address, e)
            return
        self.events_received += 1
        self.channel.put_nowait(event)


@dataclass
class LaunchpadSubscription:
    """CurveBuy listener on one launchpad router."""

    chain: str
    router_address: str
    handle: str = ""
    channel: asyncio.Queue[LaunchpadBuy] = field(default_factory=asyncio.Queue)
    consumer_task: asyncio.Task[None] | None = None
    events_received: int = 0
    decode_errors: int = 0

    def deliver(self, log: dict[str, Any]) -> None:
        try:
            event = decode_curve_buy_log(log)
        except LogDecodeError as e:
            self.decode_errors += 1
            logger.debug("Dropping undecodable CurveBuy log on %s: %s", self.chain, e)
            return
        self.events_received += 1
        self.channel.put_nowait(event)


@dataclass
class ChainConnection:
    """One live network connection for a chain."""

    chain: str
    endpoint: str
    transport: ChainTransport
    subscriptions: dict[str, PoolSubscription] = field(default_factory=dict)
    launchpad: LaunchpadSubscription | None = None
    created_at: float = 0.0
    replaced_count: int = 0

    @property
    def kind(self) -> TransportKind:
        return self.transport.kind

    @property
    def is_alive(self) -> bool:
        return not self.transport.is_closed

    @property
    def last_activity(self) -> float:
        return self.transport.last_activity


@dataclass
class RegistryStats:
    connections_created: int = 0
    connections_replaced: int = 0
    replacement_failures: int = 0
    subscriptions_attached: int = 0
    subscriptions_detached: int = 0
    handler_errors: int = 0


class ChainConnectionRegistry:
    """Per-chain connection owner with staleness detection and recovery.

    Example:
        ```python
        registry = ChainConnectionRegistry(swap_handler=on_swap)
        await registry.ensure_connection("bsc", "wss://bsc.example/ws")
        await registry.attach_pool("bsc", pool, PoolTokens(t0, t1, target))
        ...
        await registry.teardown_all()
        ```
    """

    def __init__(
        self,
        *,
        swap_handler: SwapHandler,
        launchpad_handler: LaunchpadHandler | None = None,
        transport_factory: TransportFactory = create_transport,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self._swap_handler = swap_handler
        self._launchpad_handler = launchpad_handler
        self._transport_factory = transport_factory
        self._stale_after = stale_after_seconds
        self._clock = clock
        self._connections: dict[str, ChainConnection] = {}
        self._stats = RegistryStats()

    @property
    def stats(self) -> RegistryStats:
        return self._stats

    def list_chains(self) -> list[str]:
        return list(self._connections)

    def get(self, chain: str) -> ChainConnection | None:
        return self._connections.get(chain)

    def transport_for(self, chain: str) -> ChainTransport | None:
        conn = self._connections.get(chain)
        return conn.transport if conn else None

    def subscribed_pools(self, chain: str) -> set[str]:
        conn = self._connections.get(chain)
        return set(conn.subscriptions) if conn else set()

    def is_stale(self, conn: ChainConnection) -> bool:
        if conn.kind is not TransportKind.STREAMING:
            return False
        return conn.transport.is_stale(self._clock(), self._stale_after)

    async def ensure_connection(self, chain: str, endpoint: str) -> ChainConnection:
        """Return the chain's connection, creating or replacing it as needed.

        Raises:
            TransportError: If no connection exists and a new one cannot be opened.
        """
        conn = self._connections.get(chain)
        if conn is None:
            transport = self._transport_factory(endpoint)
            try:
                await transport.connect()
            except Exception:
                with contextlib.suppress(Exception):
                    await transport.close()
                raise
            conn = ChainConnection(
                chain=chain,
                endpoint=endpoint,
                transport=transport,
                created_at=self._clock(),
            )
            self._connections[chain] = conn
            self._stats.connections_created += 1
            logger.info("Connected %s via %s transport", chain, transport.kind.value)
            return conn

        if conn.endpoint != endpoint:
            logger.info("Endpoint for %s changed, replacing connection", chain)
            conn.endpoint = endpoint
            await self._replace(conn)
        elif self.is_stale(conn):
            idle = self._clock() - conn.last_activity
            logger.warning("Connection for %s is stale (idle %.0fs), replacing", chain, idle)
            await self._replace(conn)
        return conn

    async def _replace(self, conn: ChainConnection) -> bool:
        """Swap in a fresh transport with every subscription re-bound.

        On failure the old transport stays in place for the next cycle.
        """
        new_transport = self._transport_factory(conn.endpoint)
        try:
            await new_transport.connect()
        except Exception as e:
            self._stats.replacement_failures += 1
            logger.error("Failed to replace connection for %s: %s", conn.chain, e)
            with contextlib.suppress(Exception):
                await new_transport.close()
            return False

        if self._connections.get(conn.chain) is not conn:
            logger.info("Connection for %s was torn down during replacement, discarding", conn.chain)
            with contextlib.suppress(Exception):
                await new_transport.close()
            return False

        new_handles: dict[str, dict[PoolVersion, str]] = {}
        lost: list[str] = []
        for pool_address, sub in list(conn.subscriptions.items()):
            try:
                new_handles[pool_address] = await self._bind(new_transport, sub)
            except Exception as e:
                logger.warning("Re-attach of %s on %s failed: %s", pool_address, conn.chain, e)
                lost.append(pool_address)

        launchpad_handle = None
        if conn.launchpad is not None:
            try:
                launchpad_handle = await self._bind_launchpad(new_transport, conn.launchpad)
            except Exception as e:
                logger.warning("Re-attach of launchpad %s on %s failed: %s", conn.launchpad.router_address, conn.chain, e)

        if self._connections.get(conn.chain) is not conn:
            logger.info("Connection for %s was torn down during re-attach, discarding", conn.chain)
            with contextlib.suppress(Exception):
                await new_transport.close()
            return False

        old_transport = conn.transport
        conn.transport = new_transport
        conn.replaced_count += 1
        for pool_address, handles in new_handles.items():
            if pool_address in conn.subscriptions:
                conn.subscriptions[pool_address].handles = handles
        for pool_address in lost:
            sub = conn.subscriptions.pop(pool_address, None)
            if sub is not None:
                await self._stop_consumer(sub)
        if conn.launchpad is not None:
            if launchpad_handle is None:
                await self._stop_consumer(conn.launchpad)
                conn.launchpad = None
            else:
                conn.launchpad.handle = launchpad_handle

        with contextlib.suppress(Exception):
            await old_transport.close()
        self._stats.connections_replaced += 1
        logger.info(
            "Replaced connection for %s (%d pools re-attached, %d dropped)",
            conn.chain,
            len(new_handles),
            len(lost),
        )
        return True

    async def _bind(self, transport: ChainTransport, sub: PoolSubscription) -> dict[PoolVersion, str]:
        handles: dict[PoolVersion, str] = {}
        try:
            for version in PoolVersion:
                sink = _make_sink(sub, version)
                handles[version] = await transport.subscribe_logs(
                    sub.pool_address, SWAP_TOPICS[version], sink
                )
        except Exception:
            for handle in handles.values():
                with contextlib.suppress(Exception):
                    await transport.unsubscribe(handle)
            raise
        return handles

    async def attach_pool(self, chain: str, pool_address: str, tokens: PoolTokens) -> PoolSubscription:
        """Subscribe to one pool's swap events on the chain's connection.

        Raises:
            KeyError: If the chain has no connection.
        """
        conn = self._connections[chain]
        pool_address = pool_address.lower()
        existing = conn.subscriptions.get(pool_address)
        if existing is not None:
            return existing

        sub = PoolSubscription(chain=chain, pool_address=pool_address, tokens=tokens)
        sub.handles = await self._bind(conn.transport, sub)
        sub.consumer_task = asyncio.create_task(self._consume(sub))
        conn.subscriptions[pool_address] = sub
        self._stats.subscriptions_attached += 1
        logger.info(
            "Attached %s pool %s (target=%s)",
            chain,
            pool_address,
            tokens.target_token,
        )
        return sub

    async def detach_pool(self, chain: str, pool_address: str) -> bool:
        conn = self._connections.get(chain)
        if conn is None:
            return False
        sub = conn.subscriptions.pop(pool_address.lower(), None)
        if sub is None:
            return False
        await self._unbind(conn.transport, sub)
        await self._stop_consumer(sub)
        self._stats.subscriptions_detached += 1
        logger.info("Detached %s pool %s", chain, sub.pool_address)
        return True

    async def _unbind(self, transport: ChainTransport, sub: PoolSubscription) -> None:
        for handle in list(sub.handles.values()):
            try:
                await transport.unsubscribe(handle)
            except Exception as e:
                logger.debug("Unsubscribe %s failed: %s", handle, e)
        sub.handles.clear()

    async def attach_launchpad(self, chain: str, router_address: str) -> LaunchpadSubscription:
        """Subscribe to a launchpad router's CurveBuy events.

        Raises:
            KeyError: If the chain has no connection.
            RuntimeError: If the registry has no launchpad handler.
        """
        if self._launchpad_handler is None:
            raise RuntimeError("No launchpad handler configured")
        conn = self._connections[chain]
        router_address = router_address.lower()
        if conn.launchpad is not None:
            if conn.launchpad.router_address == router_address:
                return conn.launchpad
            await self.detach_launchpad(chain)

        launchpad = LaunchpadSubscription(chain=chain, router_address=router_address)
        launchpad.handle = await self._bind_launchpad(conn.transport, launchpad)
        launchpad.consumer_task = asyncio.create_task(self._consume_launchpad(launchpad))
        conn.launchpad = launchpad
        logger.info("Attached %s launchpad router %s", chain, router_address)
        return launchpad

    async def detach_launchpad(self, chain: str) -> bool:
        conn = self._connections.get(chain)
        if conn is None or conn.launchpad is None:
            return False
        launchpad, conn.launchpad = conn.launchpad, None
        await self._unbind_launchpad(conn.transport, launchpad)
        await self._stop_consumer(launchpad)
        logger.info("Detached %s launchpad router %s", chain, launchpad.router_address)
        return True

    async def _bind_launchpad(self, transport: ChainTransport, launchpad: LaunchpadSubscription) -> str:
        return await transport.subscribe_logs(launchpad.router_address, CURVE_BUY_TOPIC, launchpad.deliver)

    async def _unbind_launchpad(self, transport: ChainTransport, launchpad: LaunchpadSubscription) -> None:
        if not launchpad.handle:
            return
        try:
            await transport.unsubscribe(launchpad.handle)
        except Exception as e:
            logger.debug("Unsubscribe %s failed: %s", launchpad.handle, e)
        launchpad.handle = ""

    async def _consume_launchpad(self, launchpad: LaunchpadSubscription) -> None:
        while True:
            event = await launchpad.channel.get()
            try:
                if self._launchpad_handler is not None:
                    await self._launchpad_handler(launchpad.chain, event)
            except Exception:
                self._stats.handler_errors += 1
                logger.exception("Launchpad handler failed for %s router %s", launchpad.chain, launchpad.router_address)

    async def _stop_consumer(self, sub: PoolSubscription | LaunchpadSubscription) -> None:
        if sub.consumer_task is None:
            return
        sub.consumer_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sub.consumer_task
        sub.consumer_task = None

    async def _consume(self, sub: PoolSubscription) -> None:
        while True:
            event = await sub.channel.get()
            try:
                await self._swap_handler(sub.chain, sub, event)
            except Exception:
                self._stats.handler_errors += 1
                logger.exception("Swap handler failed for %s pool %s", sub.chain, sub.pool_address)

    async def teardown(self, chain: str) -> None:
        """Detach every subscription and close the chain's transport."""
        conn = self._connections.pop(chain, None)
        if conn is None:
            return
        for sub in list(conn.subscriptions.values()):
            await self._unbind(conn.transport, sub)
            await self._stop_consumer(sub)
        conn.subscriptions.clear()
        if conn.launchpad is not None:
            await self._unbind_launchpad(conn.transport, conn.launchpad)
            await self._stop_consumer(conn.launchpad)
            conn.launchpad = None
        try:
            await conn.transport.close()
        except Exception as e:
            logger.warning("Closing transport for %s failed: %s", chain, e)
        logger.info("Tore down connection for %s", chain)

    async def teardown_all(self) -> None:
        for chain in list(self._connections):
            await self.teardown(chain)


def _make_sink(sub: PoolSubscription, version: PoolVersion) -> Callable[[dict[str, Any]], None]:
    def sink(log: dict[str, Any]) -> None:
        sub.deliver(version, log)

    return sink
