from types import MappingProxyType

import pytest

from matchview.datafeed.codec import parse_trade
from matchview.datafeed.polling import PollOutcome
from matchview.engine.coordinator import (
    ADVISORY_BOOK_FAILED,
    ADVISORY_FAILED,
    ADVISORY_POLL_FAILED,
    ADVISORY_RECONNECTING,
    SyncCoordinator,
    is_valid_transition,
)
from matchview.errors import PollError
from matchview.types import ConnectionStatus, MetricsSnapshot, OrderBookSnapshot, StatusKind

from conftest import make_trade


def metrics(total_orders: int) -> MetricsSnapshot:
    return MetricsSnapshot(total_orders, total_orders // 2, 10.0, MappingProxyType({}))


def book(symbol: str, best_bid: float) -> OrderBookSnapshot:
    return OrderBookSnapshot(symbol, (), (), best_bid, best_bid + 1, 1.0, 0, 0)


def failure(seq: int, status: int = 500) -> PollOutcome:
    return PollOutcome(seq, error=PollError(f"HTTP {status}", status=status))


def connect(coord: SyncCoordinator) -> None:
    coord.on_connection_event(ConnectionStatus.connected())


def test_initial_state():
    state = SyncCoordinator().current_state()

    assert state.trades == ()
    assert state.latency_window == ()
    assert state.metrics is None
    assert state.connection_status.kind is StatusKind.CONNECTING
    assert state.advisory is None


def test_trade_round_trip_into_state():
    coord = SyncCoordinator(clock=lambda: 1234.5)
    trade = parse_trade('{"tradeId":1,"commodity":"OIL","price":82.5,"quantity":10,'
                        '"latencyMicros":45.2,"timestamp":1700000000000}')
    coord.on_trade_received(trade)

    state = coord.current_state()
    first = state.trades[0]
    assert (first.trade_id, first.symbol, first.price, first.quantity,
            first.latency_micros, first.timestamp_ms) == (1, "OIL", 82.5, 10, 45.2, 1700000000000)
    assert len(state.latency_window) == 1
    assert state.latency_window[0].latency_micros == 45.2
    assert state.latency_window[0].captured_at_ms == 1234500


def test_buffers_bounded_and_most_recent_first():
    coord = SyncCoordinator()
    symbols = ["OIL", "GOLD", "GAS"]
    for i in range(120):
        coord.on_trade_received(make_trade(i, symbol=symbols[i % 3], latency=float(i)))
        state = coord.current_state()
        assert len(state.trades) <= 50
        assert len(state.latency_window) <= 30

    state = coord.current_state()
    assert [t.trade_id for t in state.trades] == list(range(119, 69, -1))
    assert [s.latency_micros for s in state.latency_window] == [float(i) for i in range(119, 89, -1)]


def test_readers_keep_their_snapshot():
    coord = SyncCoordinator()
    coord.on_trade_received(make_trade(1))
    before = coord.current_state()
    coord.on_trade_received(make_trade(2))

    assert len(before.trades) == 1
    assert len(coord.current_state().trades) == 2


def test_trades_for_filters_by_symbol():
    coord = SyncCoordinator()
    coord.on_trade_received(make_trade(1, "OIL"))
    coord.on_trade_received(make_trade(2, "GOLD"))
    coord.on_trade_received(make_trade(3, "OIL"))

    assert [t.trade_id for t in coord.current_state().trades_for("OIL")] == [3, 1]


def test_metrics_replaced_wholesale():
    coord = SyncCoordinator()
    first, second = metrics(10), metrics(20)
    coord.on_metrics_polled(PollOutcome(1, value=first))
    assert coord.current_state().metrics is first
    coord.on_metrics_polled(PollOutcome(2, value=second))
    assert coord.current_state().metrics is second


def test_stale_poll_completion_is_discarded():
    coord = SyncCoordinator()
    older, newer = metrics(10), metrics(20)

    # Second-issued poll completes first
    coord.on_metrics_polled(PollOutcome(2, value=newer))
    coord.on_metrics_polled(PollOutcome(1, value=older))

    assert coord.current_state().metrics is newer
    assert coord.stale_discarded == 1


def test_failed_poll_keeps_previous_snapshot():
    coord = SyncCoordinator()
    good = metrics(10)
    coord.on_metrics_polled(PollOutcome(1, value=good))
    coord.on_metrics_polled(failure(2))

    state = coord.current_state()
    assert state.metrics is good
    assert "metrics" in state.poll_failures


def test_poll_failure_degraded_only_when_push_down():
    coord = SyncCoordinator()
    connect(coord)
    coord.on_metrics_polled(failure(1))

    state = coord.current_state()
    assert state.poll_failures
    assert not state.degraded
    assert state.advisory is None

    coord.on_connection_event(ConnectionStatus.disconnected())
    coord.on_connection_event(ConnectionStatus.reconnecting(1))
    assert coord.current_state().degraded

    coord.on_metrics_polled(PollOutcome(2, value=metrics(5)))
    assert not coord.current_state().degraded


def test_poll_failure_advisory_while_connecting():
    coord = SyncCoordinator()
    coord.on_metrics_polled(failure(1))
    assert coord.current_state().advisory == ADVISORY_POLL_FAILED


def test_stale_failure_does_not_mark_unhealthy():
    coord = SyncCoordinator()
    coord.on_metrics_polled(PollOutcome(5, value=metrics(1)))
    coord.on_metrics_polled(failure(4))
    assert coord.current_state().poll_failures == frozenset()


def test_order_books_keyed_by_symbol():
    coord = SyncCoordinator()
    coord.on_order_book_polled("OIL", PollOutcome(1, value=book("OIL", 80.0)))
    coord.on_order_book_polled("GOLD", PollOutcome(2, value=book("GOLD", 1900.0)))
    coord.on_order_book_polled("OIL", PollOutcome(3, value=book("OIL", 81.0)))
    coord.on_order_book_polled("OIL", PollOutcome(2, value=book("OIL", 79.0)))

    state = coord.current_state()
    assert state.order_book("OIL").best_bid == 81.0
    assert state.order_book("GOLD").best_bid == 1900.0
    assert state.order_book("SILVER") is None
    with pytest.raises(TypeError):
        state.order_books["GAS"] = book("GAS", 1.0)


def test_forget_order_book_clears_health_flag():
    coord = SyncCoordinator()
    coord.on_order_book_polled("OIL", failure(1))
    assert coord.current_state().poll_failures == {"orderbook:OIL"}
    coord.forget_order_book("OIL")
    assert coord.current_state().poll_failures == frozenset()


def test_forget_order_book_drops_snapshot():
    coord = SyncCoordinator()
    coord.on_order_book_polled("OIL", PollOutcome(1, value=book("OIL", 80.0)))
    coord.on_order_book_polled("GOLD", PollOutcome(2, value=book("GOLD", 1900.0)))
    coord.forget_order_book("OIL")

    state = coord.current_state()
    assert state.order_book("OIL") is None
    assert state.order_book("GOLD").best_bid == 1900.0


def test_connection_lifecycle_and_advisories():
    coord = SyncCoordinator()
    sequence = [
        (ConnectionStatus.connected(), None),
        (ConnectionStatus.disconnected(), ADVISORY_RECONNECTING),
        (ConnectionStatus.reconnecting(1), ADVISORY_RECONNECTING),
        (ConnectionStatus.reconnecting(2), ADVISORY_RECONNECTING),
        (ConnectionStatus.connected(), None),
    ]
    for status, advisory in sequence:
        coord.on_connection_event(status)
        assert coord.current_state().connection_status == status
        assert coord.current_state().advisory == advisory


def test_failed_status_is_terminal_until_manual_retry():
    coord = SyncCoordinator()
    coord.on_connection_event(ConnectionStatus.disconnected())
    for n in range(1, 6):
        coord.on_connection_event(ConnectionStatus.reconnecting(n))
    coord.on_connection_event(ConnectionStatus.failed(5))
    assert coord.current_state().advisory == ADVISORY_FAILED

    coord.on_connection_event(ConnectionStatus.reconnecting(1))
    assert coord.current_state().connection_status.kind is StatusKind.FAILED

    coord.on_connection_event(ConnectionStatus.connecting())
    assert coord.current_state().connection_status.kind is StatusKind.CONNECTING


def test_out_of_order_status_is_ignored():
    coord = SyncCoordinator()
    connect(coord)
    coord.on_connection_event(ConnectionStatus.reconnecting(3))
    assert coord.current_state().connection_status == ConnectionStatus.connected()


@pytest.mark.parametrize("current,new,ok", [
    (ConnectionStatus.connecting(), ConnectionStatus.connected(), True),
    (ConnectionStatus.connected(), ConnectionStatus.reconnecting(1), False),
    (ConnectionStatus.disconnected(), ConnectionStatus.reconnecting(1), True),
    (ConnectionStatus.disconnected(), ConnectionStatus.reconnecting(2), False),
    (ConnectionStatus.reconnecting(2), ConnectionStatus.reconnecting(3), True),
    (ConnectionStatus.reconnecting(2), ConnectionStatus.reconnecting(2), False),
    (ConnectionStatus.reconnecting(5), ConnectionStatus.failed(5), True),
    (ConnectionStatus.failed(5), ConnectionStatus.connected(), False),
])
def test_transition_table(current, new, ok):
    assert is_valid_transition(current, new) is ok


def test_listeners_see_every_published_state():
    coord = SyncCoordinator()
    seen = []
    coord.add_listener(seen.append)
    coord.on_trade_received(make_trade(1))
    connect(coord)

    assert len(seen) == 2
    assert seen[-1] is coord.current_state()


def test_poll_advisory_names_the_failing_stream():
    coord = SyncCoordinator()
    coord.on_order_book_polled("OIL", failure(1))
    assert coord.current_state().advisory == ADVISORY_BOOK_FAILED

    coord.on_metrics_polled(failure(2))
    assert coord.current_state().advisory == ADVISORY_POLL_FAILED

    coord.on_metrics_polled(PollOutcome(3, value=metrics(1)))
    assert coord.current_state().advisory == ADVISORY_BOOK_FAILED
