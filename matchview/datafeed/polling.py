"""
Periodic REST polling.

PollingChannel turns one GET into a PollOutcome: never raises for network
errors, non-2xx statuses or malformed bodies. Each poll draws an issue
sequence number from a process-wide counter so the consumer can discard
results that complete after a newer one has already been applied.

PollScheduler fires a channel on a fixed interval without waiting for the
previous poll, so polls may overlap and complete out of order.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable, Generic, NamedTuple, TypeVar

import aiohttp

from ..errors import ParseError, PollError
from ..logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Shared by every channel so sequences stay comparable across symbol switches
_SEQUENCE = itertools.count(1)


def next_sequence() -> int:
    return next(_SEQUENCE)


class PollOutcome(NamedTuple):
    """Result of one poll. Exactly one of value / error is set."""
    seq: int
    value: Any = None
    error: PollError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PollingChannel(Generic[T]):
    """
    Issues GET requests against one endpoint and parses the body.

    Usage:
        channel = PollingChannel(session, url, parse_metrics)
        outcome = await channel.poll()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        parse: Callable[[bytes], T],
        timeout: float = 5.0,
    ) -> None:
        self.url = url
        self._session = session
        self._parse = parse
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        # Stats
        self.polls = 0
        self.failures = 0

    async def _fetch(self) -> bytes:
        async with self._session.get(self.url, timeout=self._timeout) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def poll(self) -> PollOutcome:
        """Fetch and parse once. Cancellation propagates; everything else is captured."""
        seq = next_sequence()
        self.polls += 1
        if self._session.closed:
            return self._failed(seq, PollError("session closed"))
        try:
            body = await self._fetch()
            value = self._parse(body)
        except aiohttp.ClientResponseError as e:
            return self._failed(seq, PollError(f"HTTP {e.status}: {e.message}", status=e.status))
        except ParseError as e:
            return self._failed(seq, PollError(f"malformed body: {e}"))
        except asyncio.TimeoutError:
            return self._failed(seq, PollError("request timed out"))
        except (aiohttp.ClientError, OSError) as e:
            return self._failed(seq, PollError(f"request failed: {e}"))
        return PollOutcome(seq, value=value)

    def _failed(self, seq: int, error: PollError) -> PollOutcome:
        self.failures += 1
        return PollOutcome(seq, error=error)


class PollScheduler(Generic[T]):
    """
    Runs channel.poll() every `interval` seconds and hands outcomes to on_result.

    The first poll fires immediately. Polls are not serialized: a slow one
    does not delay the next tick. Outcomes that complete after stop() are
    dropped.
    """

    def __init__(
        self,
        channel: PollingChannel[T],
        interval: float,
        on_result: Callable[[PollOutcome], None],
        name: str = "poller",
    ) -> None:
        self.channel = channel
        self.interval = interval
        self.name = name
        self._on_result = on_result
        self._running = False
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-timer")
        logger.info("[POLLER] %s started (every %.2fs): %s", self.name, self.interval, self.channel.url)

    def stop(self) -> None:
        """Cancel the timer and every in-flight poll. Idempotent."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()

    async def _loop(self) -> None:
        while self._running:
            task = asyncio.create_task(self._poll_once(), name=f"{self.name}-poll")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.interval)

    async def _poll_once(self) -> None:
        outcome = await self.channel.poll()
        if not self._running:
            return
        self._on_result(outcome)
