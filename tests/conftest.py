import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from matchview.types import Trade


def make_trade(trade_id: int, symbol: str = "OIL", latency: float = 10.0) -> Trade:
    return Trade(
        trade_id=trade_id,
        symbol=symbol,
        price=80.0 + trade_id / 100,
        quantity=trade_id % 7 + 1,
        latency_micros=latency,
        timestamp_ms=1_700_000_000_000 + trade_id,
    )


@pytest.fixture
def trade_factory():
    return make_trade
