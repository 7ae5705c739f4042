"""
Engine dashboard TUI using Textual.

Displays:
- Top: connection status, totals, advisory banner
- Left: order book for the selected commodity + latency monitor
- Right: recent trades for the selected commodity + per-commodity metrics

Notes:
- Renders at ~10 FPS from SyncCoordinator.current_state()
- Widgets never call the network; symbol selection and manual reconnect
  go through the EngineClient
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Static

from ..engine.latency import sparkline, summarize
from ..types import StatusKind

if TYPE_CHECKING:
    from ..datafeed.engine_client import EngineClient
    from ..engine.coordinator import DashboardState

# Color scheme (dark theme)
BID_COLOR = "#22c55e"      # Green
ASK_COLOR = "#ef4444"      # Red
PRICE_COLOR = "#60a5fa"
LATENCY_COLOR = "#a78bfa"
FILL_COLOR = "#facc15"
HEADER_COLOR = "#94a3b8"

STATUS_STYLES = {
    StatusKind.CONNECTED: ("● Connected", "bold #22c55e"),
    StatusKind.CONNECTING: ("◌ Connecting", "bold #facc15"),
    StatusKind.DISCONNECTED: ("○ Disconnected", "bold #ef4444"),
    StatusKind.RECONNECTING: ("○ Reconnecting", "bold #f97316"),
    StatusKind.FAILED: ("✕ Failed", "bold white on #991b1b"),
}

BOOK_ROWS = 10


def symbol_for_key(symbols: tuple[str, ...], key: str) -> str | None:
    """Map a digit key (1-9) to the configured symbol at that position."""
    if len(key) != 1 or not "1" <= key <= "9":
        return None
    index = int(key) - 1
    return symbols[index] if index < len(symbols) else None


def format_qty(qty: float) -> str:
    """Format a count for display."""
    if qty >= 1_000_000:
        return f"{qty/1_000_000:.1f}M"
    elif qty >= 1000:
        return f"{qty/1000:.1f}K"
    return f"{qty:,.0f}"


class StateWidget(Static):
    """Base for panels that re-render from the latest DashboardState."""

    def __init__(self, client: EngineClient, **kwargs) -> None:
        super().__init__(**kwargs)
        self.client = client
        self._dash_state: DashboardState | None = None

    def update_state(self, state: DashboardState) -> None:
        if state is self._dash_state:
            return
        self._dash_state = state
        self.refresh()


class StatusBar(StateWidget):
    """Connection status, engine totals and the advisory banner."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self, client: EngineClient) -> None:
        super().__init__(client)
        self.dismissed_advisory: str | None = None

    def render(self) -> RenderableType:
        if self._dash_state is None:
            return Text("Connecting to matching engine...", style="dim")

        state = self._dash_state
        status = state.connection_status
        label, style = STATUS_STYLES[status.kind]
        metrics = state.metrics

        line = Text()
        line.append(f" {label} ", style=style)
        if status.kind in (StatusKind.RECONNECTING, StatusKind.FAILED):
            line.append(f" attempt {status.attempt}/{self.client.config.max_reconnect_attempts}", style="dim")
        line.append("  │  ", style="dim")
        line.append("Orders: ", style="dim")
        line.append(format_qty(metrics.total_orders) if metrics else "0", style=PRICE_COLOR)
        line.append("  Trades: ", style="dim")
        line.append(format_qty(metrics.total_trades) if metrics else "0", style=BID_COLOR)
        line.append("  Avg latency: ", style="dim")
        line.append(f"{metrics.avg_latency_micros:.2f}µs" if metrics else "-", style=LATENCY_COLOR)
        line.append("  │  ", style="dim")
        for i, symbol in enumerate(self.client.config.symbols[:9], start=1):
            if symbol == self.client.selected_symbol:
                line.append(f" {i} {symbol} ", style="bold white on #1e40af")
            else:
                line.append(f" {i} {symbol} ", style="dim")

        advisory = state.advisory
        if advisory and advisory != self.dismissed_advisory:
            hint = "  (r to retry)" if status.kind is StatusKind.FAILED else "  (x to dismiss)"
            return Group(line, Text(f" {advisory}{hint}", style="#fca5a5 on #450a0a"))
        return line


class OrderBookPanel(StateWidget):

    def render(self) -> RenderableType:
        symbol = self.client.selected_symbol
        book = self._dash_state.order_book(symbol) if self._dash_state else None
        if book is None:
            return Text(f"Order Book - {symbol}\nLoading...", style="dim")

        summary = Text()
        summary.append("Best Bid ", style="dim")
        summary.append(f"${book.best_bid:.2f}", style=BID_COLOR)
        summary.append("   Spread ", style="dim")
        summary.append(f"${book.spread:.2f}", style=FILL_COLOR)
        summary.append("   Best Ask ", style="dim")
        summary.append(f"${book.best_ask:.2f}", style=ASK_COLOR)

        table = Table(
            title=f"Order Book - {symbol} ({book.bid_count} bids / {book.ask_count} asks)",
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
        )
        table.add_column("Bid Qty", justify="right")
        table.add_column("Bid", justify="right")
        table.add_column("Ask", justify="left")
        table.add_column("Ask Qty", justify="left")

        for i in range(min(BOOK_ROWS, max(len(book.bids), len(book.asks)))):
            bid = book.bids[i] if i < len(book.bids) else None
            ask = book.asks[i] if i < len(book.asks) else None
            table.add_row(
                Text(str(bid.quantity) if bid else "", style=BID_COLOR),
                Text(f"${bid.price:.2f}" if bid else "", style=BID_COLOR),
                Text(f"${ask.price:.2f}" if ask else "", style=ASK_COLOR),
                Text(str(ask.quantity) if ask else "", style=ASK_COLOR),
            )
        return Group(summary, table)


class LatencyPanel(StateWidget):

    def render(self) -> RenderableType:
        window = self._dash_state.latency_window if self._dash_state else ()
        stats = summarize(window)

        text = Text("Latency Monitor (last 30 trades)\n", style="bold")
        text.append(sparkline(window) or "waiting for trades", style=LATENCY_COLOR)
        text.append("\n")
        text.append(
            f"mean {stats.mean:.2f}µs  p50 {stats.p50:.2f}  p95 {stats.p95:.2f}  max {stats.max:.2f}",
            style="dim",
        )
        return text


class TradePanel(StateWidget):

    def render(self) -> RenderableType:
        symbol = self.client.selected_symbol
        trades = self._dash_state.trades_for(symbol) if self._dash_state else ()

        table = Table(title=f"Recent Trades - {symbol}", header_style=HEADER_COLOR, box=None, padding=(0, 1))
        table.add_column("Trade ID", justify="left")
        table.add_column("Price", justify="right")
        table.add_column("Quantity", justify="right")
        table.add_column("Latency (µs)", justify="right")

        for trade in trades:
            table.add_row(
                f"#{trade.trade_id}",
                Text(f"${trade.price:.2f}", style=PRICE_COLOR),
                str(trade.quantity),
                Text(f"{trade.latency_micros:.2f}", style=LATENCY_COLOR),
            )
        return table


class MetricsPanel(StateWidget):

    def render(self) -> RenderableType:
        symbol = self.client.selected_symbol
        metrics = self._dash_state.metrics if self._dash_state else None
        if metrics is None:
            return Text("Loading metrics...", style="dim")

        selected = metrics.per_symbol.get(symbol)
        if selected is None:
            head = Text(f"Performance Metrics - {symbol}\nNo data available", style="dim")
        else:
            head = Text(f"Performance Metrics - {symbol}\n", style="bold")
            head.append(f"Orders {format_qty(selected.orders_received)}  ", style=PRICE_COLOR)
            head.append(f"Trades {format_qty(selected.trades_executed)}  ", style=BID_COLOR)
            head.append(f"Fill {selected.fill_rate:.1f}%  ", style=FILL_COLOR)
            head.append(f"Slippage ${selected.avg_slippage:.3f}", style=LATENCY_COLOR)

        table = Table(title="All Commodities", header_style=HEADER_COLOR, box=None, padding=(0, 1))
        table.add_column("Symbol")
        table.add_column("Orders", justify="right")
        table.add_column("Trades", justify="right")
        table.add_column("Fill", justify="right")
        for sm in metrics.per_symbol.values():
            table.add_row(
                sm.symbol,
                Text(str(sm.orders_received), style=PRICE_COLOR),
                Text(str(sm.trades_executed), style=BID_COLOR),
                Text(f"{sm.fill_rate:.0f}%", style=FILL_COLOR),
            )
        return Group(head, table)


class DashboardApp(App):
    """Main Matchview application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
    }

    .column {
        width: 1fr;
    }

    .column > Static {
        height: auto;
        margin-bottom: 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "retry", "Reconnect"),
        ("x", "dismiss", "Dismiss"),
    ]

    def __init__(self, client: EngineClient, refresh_interval: float = 0.1) -> None:
        super().__init__()
        self.client = client
        self.refresh_interval = refresh_interval
        self._status_bar = StatusBar(client)
        self._panels: list[StateWidget] = [
            self._status_bar,
            OrderBookPanel(client),
            LatencyPanel(client),
            TradePanel(client),
            MetricsPanel(client),
        ]

    def compose(self) -> ComposeResult:
        status, book, latency, trades, metrics = self._panels
        yield status
        yield Horizontal(
            Vertical(book, latency, classes="column"),
            Vertical(trades, metrics, classes="column"),
            id="main-container",
        )
        yield Footer()

    def on_mount(self) -> None:
        """Start pulling state at the refresh rate."""
        self.set_interval(self.refresh_interval, self._pull_state)
        self._pull_state()

    def _pull_state(self, force: bool = False) -> None:
        state = self.client.coordinator.current_state()
        for panel in self._panels:
            if force:
                panel._dash_state = None
            panel.update_state(state)

    def on_key(self, event: events.Key) -> None:
        """Digit keys select a commodity; covers symbols added with --symbol."""
        symbol = symbol_for_key(self.client.config.symbols, event.key)
        if symbol is None:
            return
        event.stop()
        self.client.select_symbol(symbol)
        self._pull_state(force=True)

    def action_retry(self) -> None:
        if self.client.retry():
            self.notify("Reconnecting...")

    def action_dismiss(self) -> None:
        self._status_bar.dismissed_advisory = self.client.coordinator.current_state().advisory
        self._status_bar.refresh()


async def run_ui(client: EngineClient) -> None:
    """Run the TUI application."""
    app = DashboardApp(client)
    await app.run_async()
