"""
Latency window statistics for the latency panel.

The window is small (30 samples) so a fresh numpy array per call is fine.
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np

from ..types import LatencySample


class LatencyStats(NamedTuple):
    samples: int
    mean: float
    p50: float
    p95: float
    max: float


EMPTY_STATS = LatencyStats(0, 0.0, 0.0, 0.0, 0.0)

_BLOCKS = "▁▂▃▄▅▆▇█"


def summarize(samples: Sequence[LatencySample]) -> LatencyStats:
    """Summary statistics over a latency window (any order)."""
    if not samples:
        return EMPTY_STATS

    values = np.fromiter((s.latency_micros for s in samples), dtype=np.float64, count=len(samples))
    p50, p95 = np.percentile(values, [50, 95])
    return LatencyStats(
        samples=int(values.size),
        mean=float(values.mean()),
        p50=float(p50),
        p95=float(p95),
        max=float(values.max()),
    )


def sparkline(samples: Sequence[LatencySample], width: int = 30) -> str:
    """
    Render a latency window as block characters, oldest on the left.

    Expects samples newest first, as exposed by DashboardState.
    """
    if not samples:
        return ""

    values = np.fromiter(
        (s.latency_micros for s in reversed(samples)), dtype=np.float64, count=len(samples)
    )[-width:]
    lo, hi = float(values.min()), float(values.max())
    if hi - lo <= 0:
        return _BLOCKS[len(_BLOCKS) // 2] * values.size

    idx = np.rint((values - lo) / (hi - lo) * (len(_BLOCKS) - 1)).astype(int)
    return "".join(_BLOCKS[i] for i in idx)

