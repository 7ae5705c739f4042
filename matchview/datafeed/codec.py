"""
JSON decoding for the engine's wire formats.

Every parse_* function takes raw bytes/str and returns an immutable domain
object, or raises ParseError. Nothing here does I/O.

Trade (push feed, one per STOMP MESSAGE):
    {tradeId, commodity, price, quantity, latencyMicros, timestamp}
Metrics (GET /api/metrics):
    {totalOrders, totalTrades, avgLatencyMicros, commodities: {SYM: {...}}}
Order book (GET /api/orderbook/{SYM}):
    {commodity, bids: [{orderId, price, quantity, side}], asks: [...],
     bestBid, bestAsk, spread, bidCount, askCount}
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any

import orjson

from ..errors import ParseError
from ..types import MetricsSnapshot, OrderBookSnapshot, PriceLevel, SymbolMetrics, Trade


def json_loads(data: bytes | str) -> Any:
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e


def _object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ParseError(f"{what}: expected object, got {type(data).__name__}")
    return data


def _int(obj: dict, key: str, default: int | None = None) -> int:
    value = obj.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"field {key!r}: expected integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ParseError(f"field {key!r}: expected integer, got {value!r}")
        value = int(value)
    return value


def _float(obj: dict, key: str, default: float | None = None) -> float:
    value = obj.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"field {key!r}: expected number, got {value!r}")
    return float(value)


def _str(obj: dict, key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise ParseError(f"field {key!r}: expected non-empty string, got {value!r}")
    return value


def trade_from_dict(data: Any) -> Trade:
    obj = _object(data, "trade")
    return Trade(
        trade_id=_int(obj, 'tradeId'),
        symbol=_str(obj, 'commodity'),
        price=_float(obj, 'price'),
        quantity=_int(obj, 'quantity'),
        latency_micros=_float(obj, 'latencyMicros'),
        timestamp_ms=_int(obj, 'timestamp'),
    )


def parse_trade(raw: bytes | str) -> Trade:
    """Decode a single Trade record from a push message body."""
    return trade_from_dict(json_loads(raw))


def _symbol_metrics(symbol: str, data: Any) -> SymbolMetrics:
    obj = _object(data, f"metrics for {symbol}")
    return SymbolMetrics(
        symbol=obj.get('commodity') or symbol,
        orders_received=_int(obj, 'ordersReceived', 0),
        trades_executed=_int(obj, 'tradesExecuted', 0),
        fill_rate=_float(obj, 'fillRate', 0.0),
        avg_slippage=_float(obj, 'avgSlippage', 0.0),
        complete_fills=_int(obj, 'completeFills', 0),
        partial_fills=_int(obj, 'partialFills', 0),
    )


def parse_metrics(raw: bytes | str) -> MetricsSnapshot:
    """Decode the /api/metrics body. Missing per-symbol block means no symbols yet."""
    obj = _object(json_loads(raw), "metrics")
    per_symbol_raw = obj.get('commodities') or {}
    if not isinstance(per_symbol_raw, dict):
        raise ParseError("field 'commodities': expected object")

    per_symbol = {sym: _symbol_metrics(sym, m) for sym, m in per_symbol_raw.items()}
    return MetricsSnapshot(
        total_orders=_int(obj, 'totalOrders'),
        total_trades=_int(obj, 'totalTrades'),
        avg_latency_micros=_float(obj, 'avgLatencyMicros'),
        per_symbol=MappingProxyType(per_symbol),
    )


def _levels(obj: dict, key: str) -> tuple[PriceLevel, ...]:
    entries = obj.get(key) or []
    if not isinstance(entries, list):
        raise ParseError(f"field {key!r}: expected array")
    levels = []
    for entry in entries:
        e = _object(entry, f"{key} entry")
        levels.append(PriceLevel(
            price=_float(e, 'price'),
            quantity=_int(e, 'quantity'),
            order_id=_int(e, 'orderId', 0),
        ))
    return tuple(levels)


def parse_order_book(raw: bytes | str) -> OrderBookSnapshot:
    """
    Decode an /api/orderbook/{SYM} body.

    Levels are kept in server order (bids descending, asks ascending).
    """
    obj = _object(json_loads(raw), "order book")
    bids = _levels(obj, 'bids')
    asks = _levels(obj, 'asks')
    return OrderBookSnapshot(
        symbol=_str(obj, 'commodity'),
        bids=bids,
        asks=asks,
        best_bid=_float(obj, 'bestBid', 0.0),
        best_ask=_float(obj, 'bestAsk', 0.0),
        spread=_float(obj, 'spread', 0.0),
        bid_count=_int(obj, 'bidCount', len(bids)),
        ask_count=_int(obj, 'askCount', len(asks)),
    )
