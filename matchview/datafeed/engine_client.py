"""
Matching engine client with async orchestration.

Handles:
1. STOMP push subscription for executed trades (with bounded reconnect)
2. Metrics polling every second
3. Order book polling for the selected symbol every 500ms
4. Idempotent teardown of all of the above

All network I/O is non-blocking (pure asyncio) and shares one
aiohttp.ClientSession. State lives in the SyncCoordinator; this class only
wires triggers to it.
"""

from __future__ import annotations

import asyncio

import aiohttp

from .codec import parse_metrics, parse_order_book
from .polling import PollingChannel, PollOutcome, PollScheduler
from .reconnect import PolicyState, ReconnectPolicy
from .subscription import DisconnectCallback, SubscriptionChannel
from ..config import DashboardConfig
from ..engine.coordinator import SyncCoordinator
from ..logging_utils import get_logger
from ..types import MetricsSnapshot, OrderBookSnapshot

logger = get_logger(__name__)


class EngineClient:
    """
    Async client for the matching engine's dashboard feeds.

    Usage:
        client = EngineClient(DashboardConfig(base_url="http://localhost:8080"))
        await client.run()          # until stop() is called
        state = client.coordinator.current_state()
    """

    def __init__(
        self,
        config: DashboardConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config
        self.selected_symbol = config.symbol.upper()

        # Core components
        self.coordinator = SyncCoordinator(
            trade_capacity=config.trade_capacity,
            latency_capacity=config.latency_capacity,
        )

        # Resources, acquired in start()
        self._session = session
        self._owns_session = session is None
        self._policy: ReconnectPolicy | None = None
        self._metrics_poller: PollScheduler[MetricsSnapshot] | None = None
        self._book_poller: PollScheduler[OrderBookSnapshot] | None = None

        self._started = False
        self._closed = False
        self._stop_event = asyncio.Event()

    @property
    def policy(self) -> ReconnectPolicy | None:
        return self._policy

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("EngineClient used before start()")
        return self._session

    def _new_channel(self, on_disconnect: DisconnectCallback) -> SubscriptionChannel:
        return SubscriptionChannel(
            self._require_session(),
            self.config.ws_url,
            on_trade=self.coordinator.on_trade_received,
            on_disconnect=on_disconnect,
            connect_timeout=self.config.connect_timeout,
        )

    def _start_book_poller(self, symbol: str) -> None:
        channel = PollingChannel(
            self._require_session(),
            self.config.order_book_url(symbol),
            parse_order_book,
            timeout=self.config.poll_timeout,
        )

        def on_result(outcome: PollOutcome) -> None:
            self.coordinator.on_order_book_polled(symbol, outcome)

        self._book_poller = PollScheduler(
            channel, self.config.orderbook_interval, on_result, name=f"orderbook-{symbol}"
        )
        self._book_poller.start()

    async def start(self) -> None:
        """Open the session and start the subscription and both pollers."""
        if self._started or self._closed:
            return
        self._started = True

        if self._session is None:
            self._session = aiohttp.ClientSession()

        metrics_channel = PollingChannel(
            self._session, self.config.metrics_url, parse_metrics, timeout=self.config.poll_timeout
        )
        self._metrics_poller = PollScheduler(
            metrics_channel,
            self.config.metrics_interval,
            self.coordinator.on_metrics_polled,
            name="metrics",
        )
        self._metrics_poller.start()
        self._start_book_poller(self.selected_symbol)

        self._policy = ReconnectPolicy(
            self._new_channel,
            self.coordinator.on_connection_event,
            topic=self.config.topic,
            delay=self.config.reconnect_delay,
            max_attempts=self.config.max_reconnect_attempts,
        )
        self._policy.start()
        logger.info("Engine client started against %s", self.config.base_url)

    def select_symbol(self, symbol: str) -> None:
        """Switch the order book poll to another symbol."""
        if self._closed:
            return
        symbol = symbol.upper()
        if symbol == self.selected_symbol:
            return
        previous = self.selected_symbol
        self.selected_symbol = symbol
        if self._book_poller is None:
            return  # Not started yet; start() picks up the new symbol

        self._book_poller.stop()
        self.coordinator.forget_order_book(previous)
        self._start_book_poller(symbol)
        logger.info("Order book selection: %s -> %s", previous, symbol)

    def retry(self) -> bool:
        """Manual reconnect once the policy has given up."""
        if self._policy is None or self._closed:
            return False
        return self._policy.retry()

    @property
    def given_up(self) -> bool:
        return self._policy is not None and self._policy.state is PolicyState.GIVEN_UP

    async def run(self) -> None:
        """
        Main run loop. Starts everything and waits until stop() is called.

        Teardown happens on exit, including cancellation.
        """
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        """Signal run() to exit."""
        self._stop_event.set()

    async def close(self) -> None:
        """
        Tear down: close the subscription, cancel both pollers and any
        pending reconnect. Idempotent and safe if start() never ran.
        """
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()

        if self._metrics_poller is not None:
            self._metrics_poller.stop()
        if self._book_poller is not None:
            self._book_poller.stop()
        if self._policy is not None:
            await self._policy.stop()

        if self._owns_session and self._session is not None:
            await self._session.close()
        logger.info("Engine client closed")
