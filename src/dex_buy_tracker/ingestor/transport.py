"""Chain transports: JSON-RPC over WebSocket (streaming) or HTTP (polling).

Both transports expose the same surface so the connection registry and the
on-chain read client never care which one a chain uses:

- `request(method, params)` for plain JSON-RPC calls
- `subscribe_logs(address, topic0, sink)` / `unsubscribe(handle)`
- `is_stale(now, window)` for liveness
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider
from web3.types import RPCEndpoint
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 15.0  # seconds
DEFAULT_PING_INTERVAL = 20  # seconds
DEFAULT_POLL_INTERVAL = 4.0  # seconds
DEFAULT_MAX_BLOCK_RANGE = 2000

LogSink = Callable[[dict[str, Any]], None]
Clock = Callable[[], float]


class TransportKind(str, Enum):
    """How a transport learns about new events."""

    STREAMING = "streaming"
    POLLING = "polling"


class TransportError(Exception):
    """Base exception for chain transport errors."""


class TransportClosedError(TransportError):
    """Raised when using a transport that has been closed."""


class RPCResponseError(TransportError):
    """Raised when the node answers a request with a JSON-RPC error."""


@dataclass
class TransportStats:
    messages_received: int = 0
    logs_delivered: int = 0
    requests_sent: int = 0
    last_error: str | None = None


def is_streaming_endpoint(endpoint: str) -> bool:
    return endpoint.startswith(("ws://", "wss://"))


class StreamingTransport:
    """JSON-RPC over a persistent WebSocket with `eth_subscribe` push events.

    Any inbound frame (responses, log notifications, `newHeads` heartbeats)
    refreshes `last_activity`.
    """

    kind = TransportKind.STREAMING

    def __init__(
        self,
        endpoint: str,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        clock: Clock = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self._request_timeout = request_timeout
        self._ping_interval = ping_interval
        self._clock = clock

        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._sinks: dict[str, LogSink] = {}
        self._closed = False
        self._heads_subscription: str | None = None

        self.last_activity = clock()
        self.stats = TransportStats()

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        """Open the socket, start the reader and subscribe to new heads.

        Raises:
            TransportError: If the socket cannot be opened.
        """
        try:
            self._ws = await websockets.connect(
                self.endpoint,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
                max_size=None,
            )
        except Exception as e:
            self._closed = True
            raise TransportError(f"Failed to connect to {self.endpoint}: {e}") from e

        self.last_activity = self._clock()
        self._reader_task = asyncio.create_task(self._listen(self._ws))
        # newHeads only serves as a heartbeat, so the sink ignores payloads.
        self._heads_subscription = await self.request("eth_subscribe", ["newHeads"])
        self._sinks[self._heads_subscription] = lambda _head: None
        logger.debug("Streaming transport connected: %s", self.endpoint)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            async for message in ws:
                self.last_activity = self._clock()
                self.stats.messages_received += 1
                self._handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.warning("Streaming transport closed (%s): %s", self.endpoint, e)
            self.stats.last_error = str(e)
        except Exception as e:
            logger.error("Streaming transport reader failed (%s): %s", self.endpoint, e)
            self.stats.last_error = str(e)
        finally:
            self._closed = True
            self._fail_pending(TransportClosedError(f"Connection to {self.endpoint} closed"))

    def _handle_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning("Invalid JSON frame from %s", self.endpoint)
            return
        if not isinstance(data, dict):
            return

        request_id = data.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            error = data.get("error")
            if error:
                future.set_exception(RPCResponseError(f"RPC error: {error}"))
            else:
                future.set_result(data.get("result"))
            return

        if data.get("method") == "eth_subscription":
            params = data.get("params") or {}
            sink = self._sinks.get(params.get("subscription"))
            result = params.get("result")
            if sink is not None and isinstance(result, dict):
                self.stats.logs_delivered += 1
                sink(result)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def request(self, method: str, params: list[Any]) -> Any:
        """Send a JSON-RPC request and wait for its response.

        Raises:
            TransportClosedError: If the socket is closed.
            RPCResponseError: If the node returns an error.
            TimeoutError: If no response arrives in time.
        """
        if self._closed or self._ws is None:
            raise TransportClosedError(f"Transport to {self.endpoint} is closed")
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            try:
                await self._ws.send(json.dumps(payload))
            except websockets.ConnectionClosed as e:
                self._closed = True
                raise TransportClosedError(str(e)) from e
            self.stats.requests_sent += 1
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def subscribe_logs(self, address: str, topic0: str, sink: LogSink) -> str:
        handle = await self.request(
            "eth_subscribe",
            ["logs", {"address": address, "topics": [topic0]}],
        )
        handle = str(handle)
        self._sinks[handle] = sink
        return handle

    async def unsubscribe(self, handle: str) -> None:
        if self._sinks.pop(handle, None) is None or self._closed:
            return
        try:
            await self.request("eth_unsubscribe", [handle])
        except (TransportError, TimeoutError) as e:
            logger.debug("eth_unsubscribe %s failed on %s: %s", handle, self.endpoint, e)

    def is_stale(self, now: float, window: float) -> bool:
        """Closed, or silent for longer than `window` seconds."""
        return self._closed or (now - self.last_activity) > window

    async def close(self) -> None:
        self._closed = True
        self._sinks.clear()
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        self._fail_pending(TransportClosedError(f"Transport to {self.endpoint} closed"))


class PollingTransport:
    """JSON-RPC over HTTP; log filters are served by polling `eth_getLogs`."""

    kind = TransportKind.POLLING

    def __init__(
        self,
        endpoint: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Clock = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self._poll_interval = poll_interval
        self._max_block_range = max_block_range
        self._clock = clock

        self._w3: AsyncWeb3[AsyncHTTPProvider] = AsyncWeb3(
            AsyncHTTPProvider(endpoint, request_kwargs={"timeout": request_timeout})
        )
        try:
            self._w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", endpoint, e)

        self._filters: dict[str, tuple[str, str, LogSink]] = {}
        self._handle_ids = itertools.count(1)
        self._next_block: int | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._closed = False

        self.last_activity = clock()
        self.stats = TransportStats()

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        """Resolve the starting block and start the poll loop.

        Raises:
            TransportError: If the endpoint does not answer.
        """
        self._next_block = int(await self.request("eth_blockNumber", []), 16) + 1
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.debug("Polling transport connected: %s (from block %d)", self.endpoint, self._next_block)

    async def request(self, method: str, params: list[Any]) -> Any:
        if self._closed:
            raise TransportClosedError(f"Transport to {self.endpoint} is closed")
        try:
            response = await self._w3.provider.make_request(RPCEndpoint(method), params)
        except Exception as e:
            self.stats.last_error = str(e)
            raise TransportError(f"{method} failed on {self.endpoint}: {e}") from e
        self.stats.requests_sent += 1
        self.last_activity = self._clock()
        error = response.get("error")
        if error:
            raise RPCResponseError(f"RPC error: {error}")
        return response.get("result")

    async def subscribe_logs(self, address: str, topic0: str, sink: LogSink) -> str:
        handle = f"poll-{next(self._handle_ids)}"
        self._filters[handle] = (address.lower(), topic0.lower(), sink)
        return handle

    async def unsubscribe(self, handle: str) -> None:
        self._filters.pop(handle, None)

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                break
            except TimeoutError:
                pass
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.last_error = str(e)
                logger.warning("Log poll failed on %s: %s", self.endpoint, e)

    async def poll_once(self) -> int:
        """Fetch logs for the next block range and route them to their sinks.

        Returns:
            Number of logs delivered.
        """
        filters = dict(self._filters)
        latest = int(await self.request("eth_blockNumber", []), 16)
        if self._next_block is None:
            self._next_block = latest + 1
            return 0
        if latest < self._next_block:
            return 0
        to_block = min(latest, self._next_block + self._max_block_range - 1)
        if not filters:
            self._next_block = to_block + 1
            return 0

        addresses = sorted({address for address, _, _ in filters.values()})
        topics = sorted({topic for _, topic, _ in filters.values()})
        logs = await self.request(
            "eth_getLogs",
            [
                {
                    "fromBlock": hex(self._next_block),
                    "toBlock": hex(to_block),
                    "address": addresses,
                    "topics": [topics],
                }
            ],
        )
        self._next_block = to_block + 1

        delivered = 0
        for log in logs or []:
            address = str(log.get("address") or "").lower()
            log_topics = log.get("topics") or []
            topic0 = str(log_topics[0]).lower() if log_topics else ""
            for filter_address, filter_topic, sink in filters.values():
                if filter_address == address and filter_topic == topic0:
                    sink(log)
                    delivered += 1
        self.stats.logs_delivered += delivered
        return delivered

    def is_stale(self, now: float, window: float) -> bool:
        return False

    async def close(self) -> None:
        self._closed = True
        self._stop_event.set()
        self._filters.clear()
        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if callable(disconnect):
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)


ChainTransport = StreamingTransport | PollingTransport


def create_transport(
    endpoint: str,
    *,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
) -> ChainTransport:
    """Create an unconnected transport; the endpoint scheme picks the kind."""
    if is_streaming_endpoint(endpoint):
        return StreamingTransport(endpoint, request_timeout=request_timeout)
    return PollingTransport(
        endpoint,
        poll_interval=poll_interval,
        max_block_range=max_block_range,
        request_timeout=request_timeout,
    )
