"""
Single owner of dashboard state.

Every mutation (trade push, poll completion, connection status change) goes
through one of the on_* methods. They are synchronous and run on the event
loop, so each is applied as one discrete step; no await happens mid-update.

After each mutation a fresh DashboardState is built and published by a
single reference assignment. Readers (TUI, headless logger, another thread)
call current_state() and get an immutable, internally consistent object.
"""

from __future__ import annotations

import time
from types import MappingProxyType
from typing import Callable, Mapping, NamedTuple

from .buffer import BoundedEventBuffer
from ..datafeed.polling import PollOutcome
from ..logging_utils import get_logger
from ..types import (
    ConnectionStatus,
    LatencySample,
    MetricsSnapshot,
    OrderBookSnapshot,
    StatusKind,
    Trade,
)

logger = get_logger(__name__)

METRICS_STREAM = "metrics"

ADVISORY_RECONNECTING = "Connection lost. Attempting to reconnect..."
ADVISORY_FAILED = "Failed to reconnect after multiple attempts"
ADVISORY_POLL_FAILED = "Unable to fetch metrics"
ADVISORY_BOOK_FAILED = "Unable to fetch order book"

# Allowed status transitions; RECONNECTING is further checked on the attempt number
_TRANSITIONS: dict[StatusKind, frozenset[StatusKind]] = {
    StatusKind.CONNECTING: frozenset({StatusKind.CONNECTED, StatusKind.DISCONNECTED}),
    StatusKind.CONNECTED: frozenset({StatusKind.DISCONNECTED}),
    StatusKind.DISCONNECTED: frozenset({StatusKind.RECONNECTING, StatusKind.CONNECTING}),
    StatusKind.RECONNECTING: frozenset({StatusKind.CONNECTED, StatusKind.RECONNECTING, StatusKind.FAILED}),
    StatusKind.FAILED: frozenset({StatusKind.CONNECTING}),
}


def order_book_stream(symbol: str) -> str:
    return f"orderbook:{symbol}"


def is_valid_transition(current: ConnectionStatus, new: ConnectionStatus) -> bool:
    if new.kind not in _TRANSITIONS[current.kind]:
        return False
    if new.kind is StatusKind.RECONNECTING:
        expected = current.attempt + 1 if current.kind is StatusKind.RECONNECTING else 1
        return new.attempt == expected
    return True


class DashboardState(NamedTuple):
    """Read-only view handed to the presentation layer."""
    trades: tuple[Trade, ...]                  # Newest first
    latency_window: tuple[LatencySample, ...]  # Newest first
    metrics: MetricsSnapshot | None
    order_books: Mapping[str, OrderBookSnapshot]
    connection_status: ConnectionStatus
    poll_failures: frozenset[str] = frozenset()

    @property
    def push_healthy(self) -> bool:
        return self.connection_status.kind is StatusKind.CONNECTED

    @property
    def degraded(self) -> bool:
        """Polls are failing and the push feed cannot vouch for the engine either."""
        return bool(self.poll_failures) and not self.push_healthy

    @property
    def advisory(self) -> str | None:
        kind = self.connection_status.kind
        if kind is StatusKind.FAILED:
            return ADVISORY_FAILED
        if kind in (StatusKind.RECONNECTING, StatusKind.DISCONNECTED):
            return ADVISORY_RECONNECTING
        if self.degraded:
            if METRICS_STREAM in self.poll_failures:
                return ADVISORY_POLL_FAILED
            return ADVISORY_BOOK_FAILED
        return None

    def trades_for(self, symbol: str) -> tuple[Trade, ...]:
        return tuple(t for t in self.trades if t.symbol == symbol)

    def order_book(self, symbol: str) -> OrderBookSnapshot | None:
        return self.order_books.get(symbol)


class SyncCoordinator:
    """
    Merges push and poll inputs into bounded in-memory state.

    Thread-safety: mutations must run on the event loop thread. current_state()
    is safe from any thread.
    """

    def __init__(
        self,
        trade_capacity: int = 50,
        latency_capacity: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._trades: BoundedEventBuffer[Trade] = BoundedEventBuffer(trade_capacity)
        self._latency: BoundedEventBuffer[LatencySample] = BoundedEventBuffer(latency_capacity)
        self._metrics: MetricsSnapshot | None = None
        self._order_books: dict[str, OrderBookSnapshot] = {}
        self._status = ConnectionStatus.connecting()
        self._poll_failures: set[str] = set()
        self._clock = clock

        # Per-stream sequence bookkeeping for stale-result discard
        self._applied_seq: dict[str, int] = {}
        self._health_seq: dict[str, int] = {}
        self._listeners: list[Callable[[DashboardState], None]] = []

        self.stale_discarded = 0
        self._state = self._build_state()

    def current_state(self) -> DashboardState:
        return self._state

    def add_listener(self, listener: Callable[[DashboardState], None]) -> None:
        """Called with every newly published state, on the event loop."""
        self._listeners.append(listener)

    def _publish(self) -> None:
        self._state = state = self._build_state()
        for listener in self._listeners:
            listener(state)

    def _build_state(self) -> DashboardState:
        return DashboardState(
            trades=self._trades.newest_first(),
            latency_window=self._latency.newest_first(),
            metrics=self._metrics,
            order_books=MappingProxyType(dict(self._order_books)),
            connection_status=self._status,
            poll_failures=frozenset(self._poll_failures),
        )

    # --- push feed -------------------------------------------------------

    def on_trade_received(self, trade: Trade) -> None:
        """Append to both bounded buffers, arrival order preserved."""
        self._trades.append(trade)
        self._latency.append(LatencySample(
            captured_at_ms=int(self._clock() * 1000),
            latency_micros=trade.latency_micros,
        ))
        self._publish()

    # --- polls -----------------------------------------------------------

    def on_metrics_polled(self, outcome: PollOutcome) -> None:
        if self._apply_poll(METRICS_STREAM, outcome):
            self._metrics = outcome.value
        self._publish()

    def on_order_book_polled(self, symbol: str, outcome: PollOutcome) -> None:
        if self._apply_poll(order_book_stream(symbol), outcome):
            self._order_books[symbol] = outcome.value
        self._publish()

    def _apply_poll(self, stream: str, outcome: PollOutcome) -> bool:
        """
        Update health for the stream and decide whether the snapshot is replaced.

        Health follows the newest issued poll that has completed; a success
        replaces the snapshot only if no newer success was applied before it.
        """
        if outcome.seq > self._health_seq.get(stream, 0):
            self._health_seq[stream] = outcome.seq
            if outcome.ok:
                if stream in self._poll_failures:
                    logger.info("Poll %s recovered", stream)
                self._poll_failures.discard(stream)
            else:
                if stream not in self._poll_failures:
                    logger.warning("Poll %s failed: %s", stream, outcome.error)
                else:
                    logger.debug("Poll %s still failing: %s", stream, outcome.error)
                self._poll_failures.add(stream)

        if not outcome.ok:
            return False
        if outcome.seq <= self._applied_seq.get(stream, 0):
            self.stale_discarded += 1
            logger.debug("Discarding stale %s result (seq %d)", stream, outcome.seq)
            return False
        self._applied_seq[stream] = outcome.seq
        return True

    def forget_order_book(self, symbol: str) -> None:
        """Drop the snapshot and health flag of a symbol no longer being polled."""
        stream = order_book_stream(symbol)
        had_book = self._order_books.pop(symbol, None) is not None
        if stream in self._poll_failures or had_book:
            self._poll_failures.discard(stream)
            self._publish()

    # --- connection ------------------------------------------------------

    def on_connection_event(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        if not is_valid_transition(self._status, status):
            logger.warning("Ignoring out-of-order status change %s -> %s", self._status, status)
            return
        logger.info("Connection status: %s -> %s", self._status, status)
        self._status = status
        self._publish()
