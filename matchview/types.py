"""
Data types for Matchview.

Notes:
- Using NamedTuple for immutable, memory-efficient structures
- Snapshots are replaced wholesale, never mutated field by field
- Mappings handed to readers are wrapped in MappingProxyType
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, NamedTuple


class Trade(NamedTuple):
    """Single executed trade from the push feed."""
    trade_id: int
    symbol: str
    price: float
    quantity: int
    latency_micros: float
    timestamp_ms: int     # When the engine executed it


class LatencySample(NamedTuple):
    """Latency point derived 1:1 from a received trade."""
    captured_at_ms: int   # Local receipt time, not the trade's timestamp
    latency_micros: float


class SymbolMetrics(NamedTuple):
    symbol: str
    orders_received: int
    trades_executed: int
    fill_rate: float      # 0-100
    avg_slippage: float   # Currency units
    complete_fills: int = 0
    partial_fills: int = 0


class MetricsSnapshot(NamedTuple):
    """Engine-wide aggregate metrics, one per successful poll."""
    total_orders: int
    total_trades: int
    avg_latency_micros: float
    per_symbol: Mapping[str, SymbolMetrics]


class PriceLevel(NamedTuple):
    """Single resting order from the order book."""
    price: float
    quantity: int
    order_id: int = 0


class OrderBookSnapshot(NamedTuple):
    """
    Top of book for one symbol.

    bids are sorted by price descending, asks ascending (server order).
    """
    symbol: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    best_bid: float
    best_ask: float
    spread: float
    bid_count: int
    ask_count: int


class StatusKind(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionStatus(NamedTuple):
    """Push connection status. attempt is only meaningful for RECONNECTING/FAILED."""
    kind: StatusKind
    attempt: int = 0

    @classmethod
    def connecting(cls) -> ConnectionStatus:
        return cls(StatusKind.CONNECTING)

    @classmethod
    def connected(cls) -> ConnectionStatus:
        return cls(StatusKind.CONNECTED)

    @classmethod
    def disconnected(cls) -> ConnectionStatus:
        return cls(StatusKind.DISCONNECTED)

    @classmethod
    def reconnecting(cls, attempt: int) -> ConnectionStatus:
        return cls(StatusKind.RECONNECTING, attempt)

    @classmethod
    def failed(cls, attempts: int) -> ConnectionStatus:
        return cls(StatusKind.FAILED, attempts)

    def __str__(self) -> str:
        if self.kind is StatusKind.RECONNECTING:
            return f"Reconnecting({self.attempt})"
        return self.kind.value.capitalize()
