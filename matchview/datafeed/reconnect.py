"""
Bounded reconnect policy for the push subscription.

State machine:

    IDLE --start--> CONNECTING --ok--> CONNECTED
    CONNECTING --fail--> ATTEMPTING(1)
    CONNECTED --disconnect--> ATTEMPTING(1)
    ATTEMPTING(n) --ok--> CONNECTED              (counter reset)
    ATTEMPTING(n) --fail, n < max--> ATTEMPTING(n+1)
    ATTEMPTING(n) --fail, n >= max--> GIVEN_UP   (no more automatic attempts)
    GIVEN_UP --retry()--> CONNECTING
    any --stop()--> STOPPED

Every attempt waits the same fixed delay (flat backoff). At most one
channel is open or opening at any time; the pending attempt task is the
only thing that creates channels.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable

from .subscription import DisconnectCallback, SubscriptionChannel
from ..errors import SubscriptionError
from ..logging_utils import get_logger
from ..types import ConnectionStatus

logger = get_logger(__name__)

ChannelFactory = Callable[[DisconnectCallback], SubscriptionChannel]
StatusCallback = Callable[[ConnectionStatus], None]

RECONNECT_DELAY = 3.0
MAX_ATTEMPTS = 5


class PolicyState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ATTEMPTING = "attempting"
    CONNECTED = "connected"
    GIVEN_UP = "given_up"
    STOPPED = "stopped"


class ReconnectPolicy:
    """
    Owns the lifecycle of SubscriptionChannel instances.

    Status changes are reported through on_status in strict state-machine
    order; the policy never touches dashboard state itself.
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        on_status: StatusCallback,
        topic: str,
        delay: float = RECONNECT_DELAY,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self.topic = topic
        self.delay = delay
        self.max_attempts = max_attempts

        self.state = PolicyState.IDLE
        self.attempt = 0
        self.attempts_made = 0      # Channels opened over the policy's lifetime

        self._factory = channel_factory
        self._on_status = on_status
        self._channel: SubscriptionChannel | None = None
        self._opening: SubscriptionChannel | None = None
        self._pending: asyncio.Task | None = None
        self._closing: set[asyncio.Task] = set()

    @property
    def channel(self) -> SubscriptionChannel | None:
        """The live channel while CONNECTED, else None."""
        return self._channel

    @property
    def has_pending_attempt(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def start(self) -> None:
        """Begin the first connection. No-op unless IDLE."""
        if self.state is not PolicyState.IDLE:
            return
        self._begin_cycle()

    def retry(self) -> bool:
        """Manual reconnect after giving up. Returns False in any other state."""
        if self.state is not PolicyState.GIVEN_UP:
            return False
        logger.info("Manual reconnect requested")
        self._begin_cycle()
        return True

    def _begin_cycle(self) -> None:
        self.state = PolicyState.CONNECTING
        self.attempt = 0
        self._on_status(ConnectionStatus.connecting())
        self._launch(0, delay=0.0)

    def _launch(self, n: int, delay: float) -> None:
        if self.has_pending_attempt:
            raise RuntimeError("reconnect attempts must not overlap")
        self._pending = asyncio.create_task(self._run_attempt(n, delay), name=f"connect-attempt-{n}")

    async def _run_attempt(self, n: int, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        channel = self._factory(self._on_channel_disconnect)
        self._opening = channel
        self.attempts_made += 1
        try:
            await channel.open(self.topic)
        except SubscriptionError as e:
            self._opening = None
            self._pending = None
            await channel.close()
            if self.state is PolicyState.STOPPED:
                return
            logger.warning("Connection attempt %d failed: %s", n, e)
            self._attempt_failed(n)
            return
        except asyncio.CancelledError:
            self._opening = None
            await channel.close()
            raise

        self._opening = None
        self._pending = None
        if self.state is PolicyState.STOPPED:
            await channel.close()
            return

        self._channel = channel
        self.state = PolicyState.CONNECTED
        self.attempt = 0
        logger.info("Connected to %s", channel.url)
        self._on_status(ConnectionStatus.connected())

    def _attempt_failed(self, n: int) -> None:
        if n == 0:
            # Initial (or manual) connection failed: same path as a lost session
            self._on_status(ConnectionStatus.disconnected())
            self._schedule(1)
        elif n >= self.max_attempts:
            self.state = PolicyState.GIVEN_UP
            logger.error("Giving up after %d reconnect attempts", n)
            self._on_status(ConnectionStatus.failed(n))
        else:
            self._schedule(n + 1)

    def _schedule(self, n: int) -> None:
        self.state = PolicyState.ATTEMPTING
        self.attempt = n
        logger.info("Reconnecting in %.1fs (attempt %d/%d)", self.delay, n, self.max_attempts)
        self._on_status(ConnectionStatus.reconnecting(n))
        self._launch(n, delay=self.delay)

    def _on_channel_disconnect(self, channel: SubscriptionChannel, reason: str) -> None:
        if channel is not self._channel or self.state is not PolicyState.CONNECTED:
            return  # Stale channel

        self._channel = None
        task = asyncio.create_task(channel.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

        self._on_status(ConnectionStatus.disconnected())
        self._schedule(1)

    async def stop(self) -> None:
        """
        Cancel any pending attempt and close every channel. Idempotent.

        No status is reported after stop().
        """
        if self.state is PolicyState.STOPPED:
            return
        self.state = PolicyState.STOPPED

        pending, self._pending = self._pending, None
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()
            await asyncio.wait([pending])

        for channel in (self._channel, self._opening):
            if channel is not None:
                await channel.close()
        self._channel = None
        self._opening = None

        if self._closing:
            await asyncio.wait(list(self._closing))
