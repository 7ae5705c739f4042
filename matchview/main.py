#!/usr/bin/env python3
"""
Matchview - live dashboard for the commodities matching engine.

Usage:
    python -m matchview.main --url http://localhost:8080 --symbol OIL

    Or headless (state summary in the log):
    python -m matchview.main --headless

Controls:
    q     - Quit
    1-9   - Select commodity (OIL, GOLD, SILVER, COPPER, GAS, then any extra --symbol)
    r     - Reconnect after giving up
    x     - Dismiss the advisory banner
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from . import config as defaults
from .config import DashboardConfig
from .logging_utils import get_logger, setup_logging

logger = get_logger(__name__)

HEADLESS_REPORT_INTERVAL = 5.0


def summarize_state(client) -> str:
    """One-line state summary for headless mode."""
    state = client.coordinator.current_state()
    metrics = state.metrics
    book = state.order_book(client.selected_symbol)
    parts = [
        f"status={state.connection_status}",
        f"trades={len(state.trades)}",
        f"latency_samples={len(state.latency_window)}",
    ]
    if metrics is not None:
        parts.append(f"orders={metrics.total_orders} executed={metrics.total_trades} "
                     f"avg_latency={metrics.avg_latency_micros:.2f}us")
    if book is not None:
        parts.append(f"{book.symbol} bid={book.best_bid:.2f} ask={book.best_ask:.2f} spread={book.spread:.2f}")
    if state.advisory:
        parts.append(f"advisory={state.advisory!r}")
    return " ".join(parts)


async def report_headless(client) -> None:
    while True:
        await asyncio.sleep(HEADLESS_REPORT_INTERVAL)
        logger.info(summarize_state(client))


async def main(cfg: DashboardConfig, headless: bool = False) -> None:
    """Main entry point - runs data feeds and UI (or headless reporter) concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.engine_client import EngineClient

    logger.info("Starting Matchview against %s (symbol %s)", cfg.base_url, cfg.symbol)

    client = EngineClient(cfg)
    feed_task = asyncio.create_task(client.run())

    try:
        if headless:
            await report_headless(client)
        else:
            from .ui.dashboard_view import run_ui
            # Run UI (blocks until quit)
            await run_ui(client)
    finally:
        client.stop()
        await feed_task


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Matchview - live dashboard for the commodities matching engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m matchview.main
    python -m matchview.main --url http://engine:8080 --symbol GOLD
    python -m matchview.main --headless --log-level DEBUG
        """
    )

    parser.add_argument(
        "--url",
        default=defaults.DEFAULT_BASE_URL,
        help=f"Engine base URL (default: {defaults.DEFAULT_BASE_URL})"
    )
    parser.add_argument(
        "--ws-path",
        default=defaults.WS_PATH,
        help=f"WebSocket path of the STOMP endpoint (default: {defaults.WS_PATH})"
    )
    parser.add_argument(
        "--topic",
        default=defaults.TRADES_TOPIC,
        help=f"Trade topic to subscribe to (default: {defaults.TRADES_TOPIC})"
    )
    parser.add_argument(
        "--symbol",
        default=defaults.COMMODITIES[0],
        type=str.upper,
        help=f"Initially selected commodity (default: {defaults.COMMODITIES[0]})"
    )
    parser.add_argument(
        "--depth",
        type=int,
        default=10,
        help="Order book depth to request (default: 10)"
    )
    parser.add_argument(
        "--metrics-interval",
        type=float,
        default=defaults.METRICS_INTERVAL,
        help=f"Metrics poll interval in seconds (default: {defaults.METRICS_INTERVAL})"
    )
    parser.add_argument(
        "--orderbook-interval",
        type=float,
        default=defaults.ORDERBOOK_INTERVAL,
        help=f"Order book poll interval in seconds (default: {defaults.ORDERBOOK_INTERVAL})"
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=defaults.RECONNECT_DELAY,
        help=f"Seconds between reconnect attempts (default: {defaults.RECONNECT_DELAY})"
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=defaults.MAX_RECONNECT_ATTEMPTS,
        help=f"Reconnect attempts before giving up (default: {defaults.MAX_RECONNECT_ATTEMPTS})"
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="No TUI; log a state summary every few seconds"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: $LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Write logs to this file (TUI mode logs nowhere otherwise)"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> DashboardConfig:
    symbols = defaults.COMMODITIES
    if args.symbol not in symbols:
        symbols = symbols + (args.symbol,)
    return DashboardConfig(
        base_url=args.url,
        ws_path=args.ws_path,
        topic=args.topic,
        symbol=args.symbol,
        symbols=symbols,
        order_book_depth=args.depth,
        metrics_interval=args.metrics_interval,
        orderbook_interval=args.orderbook_interval,
        reconnect_delay=args.reconnect_delay,
        max_reconnect_attempts=args.max_attempts,
    )


def cli(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    # The TUI owns the terminal, so console logging only in headless mode
    setup_logging(args.log_level, log_file=args.log_file, console=args.headless)

    try:
        asyncio.run(main(cfg, headless=args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
