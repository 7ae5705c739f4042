"""
Runtime configuration.

Defaults mirror the matching engine's dashboard: trades pushed over
STOMP on /topic/trades, metrics polled every second, the selected
order book every 500ms, and a flat 3s reconnect delay with 5 attempts.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

# Engine endpoints
DEFAULT_BASE_URL = "http://localhost:8080"
WS_PATH = "/ws/websocket"          # Raw WebSocket transport of the SockJS endpoint
TRADES_TOPIC = "/topic/trades"
METRICS_PATH = "/api/metrics"
ORDERBOOK_PATH = "/api/orderbook/{symbol}"

COMMODITIES = ("OIL", "GOLD", "SILVER", "COPPER", "GAS")

# Retention
TRADE_CAPACITY = 50
LATENCY_CAPACITY = 30

# Cadence (seconds)
METRICS_INTERVAL = 1.0
ORDERBOOK_INTERVAL = 0.5
POLL_TIMEOUT = 5.0

# Reconnect
RECONNECT_DELAY = 3.0
MAX_RECONNECT_ATTEMPTS = 5
CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True)
class DashboardConfig:
    base_url: str = DEFAULT_BASE_URL
    ws_path: str = WS_PATH
    topic: str = TRADES_TOPIC
    symbol: str = COMMODITIES[0]
    symbols: tuple[str, ...] = COMMODITIES
    order_book_depth: int = 10
    trade_capacity: int = TRADE_CAPACITY
    latency_capacity: int = LATENCY_CAPACITY
    metrics_interval: float = METRICS_INTERVAL
    orderbook_interval: float = ORDERBOOK_INTERVAL
    poll_timeout: float = POLL_TIMEOUT
    reconnect_delay: float = RECONNECT_DELAY
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    connect_timeout: float = CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        if self.trade_capacity < 1 or self.latency_capacity < 1:
            raise ValueError("buffer capacities must be positive")
        if self.metrics_interval <= 0 or self.orderbook_interval <= 0:
            raise ValueError("poll intervals must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be at least 1")

    @property
    def ws_url(self) -> str:
        """WebSocket URL derived from base_url (http -> ws, https -> wss)."""
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, self.ws_path, "", ""))

    @property
    def metrics_url(self) -> str:
        return self.base_url.rstrip("/") + METRICS_PATH

    def order_book_url(self, symbol: str) -> str:
        path = ORDERBOOK_PATH.format(symbol=symbol.upper())
        return f"{self.base_url.rstrip('/')}{path}?depth={self.order_book_depth}"
