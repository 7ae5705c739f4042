"""
Push subscription over STOMP-on-WebSocket.

One SubscriptionChannel is one session: connect, STOMP handshake, subscribe
to one topic, then dispatch every MESSAGE frame as a Trade. A channel is
never reused; ReconnectPolicy builds a fresh one per attempt.

Guarantees:
- A bad message body is logged and dropped, the session keeps going
- Transport errors, ERROR frames and server closes produce exactly one
  on_disconnect call per channel
- After close() returns (or even just starts), no callback fires again
"""

from __future__ import annotations

import asyncio
from typing import Callable
from urllib.parse import urlsplit

import aiohttp

from . import stomp
from .codec import parse_trade
from ..errors import ParseError, ProtocolError, SubscriptionError
from ..logging_utils import get_logger
from ..types import Trade

logger = get_logger(__name__)

TradeCallback = Callable[[Trade], None]
DisconnectCallback = Callable[["SubscriptionChannel", str], None]


class SubscriptionChannel:
    """
    Single-use push session for one topic.

    Usage:
        channel = SubscriptionChannel(session, url, on_trade, on_disconnect)
        await channel.open("/topic/trades")
        ...
        await channel.close()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        on_trade: TradeCallback,
        on_disconnect: DisconnectCallback,
        connect_timeout: float = 10.0,
        sub_id: str = "sub-0",
    ) -> None:
        self.url = url
        self.topic: str | None = None
        self.connect_timeout = connect_timeout
        self.sub_id = sub_id

        self._session = session
        self._on_trade = on_trade
        self._on_disconnect = on_disconnect

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._closed = False
        self._disconnect_signalled = False

        # Diagnostics
        self.messages_received: int = 0
        self.parse_failures: int = 0

    @property
    def is_open(self) -> bool:
        return self._reader is not None and not self._closed and not self._disconnect_signalled

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, topic: str) -> SubscriptionChannel:
        """
        Connect, handshake and subscribe.

        Raises SubscriptionError (ProtocolError for handshake rejections).
        On any failure the channel releases what it acquired.
        """
        if self._closed:
            raise SubscriptionError("channel already closed")
        if self._ws is not None:
            raise SubscriptionError("channel already opened")

        try:
            ws = self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, autoping=True),
                timeout=self.connect_timeout,
            )
            host = urlsplit(self.url).hostname or "localhost"
            await ws.send_str(stomp.connect_frame(host))
            connected = await asyncio.wait_for(self._await_connected(ws), timeout=self.connect_timeout)
            if self._closed:
                raise SubscriptionError("channel closed during handshake")
            await ws.send_str(stomp.subscribe_frame(topic, self.sub_id))
        except SubscriptionError:
            await self._release()
            raise
        except asyncio.TimeoutError as e:
            await self._release()
            raise ProtocolError(f"handshake with {self.url} timed out") from e
        except (aiohttp.ClientError, OSError) as e:
            await self._release()
            raise SubscriptionError(f"cannot connect to {self.url}: {e}") from e
        except asyncio.CancelledError:
            await self._release()
            raise

        self.topic = topic
        logger.info(
            "Subscribed to %s on %s (server %s)",
            topic, self.url, connected.headers.get("server", "unknown"),
        )
        self._reader = asyncio.create_task(self._read_loop(), name=f"stomp-reader:{topic}")
        return self

    async def _await_connected(self, ws: aiohttp.ClientWebSocketResponse) -> stomp.StompFrame:
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frames = stomp.decode_frames(msg.data)
                except ParseError as e:
                    raise ProtocolError(f"malformed handshake frame: {e}") from e
                for frame in frames:
                    if frame.command == "CONNECTED":
                        return frame
                    if frame.command == "ERROR":
                        raise ProtocolError(
                            f"server rejected connect: {frame.headers.get('message', frame.body)}"
                        )
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                              aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                raise ProtocolError(f"connection closed during handshake ({msg.type.name})")

    async def _read_loop(self) -> None:
        """Dispatch frames until the session ends, then signal disconnect once."""
        ws = self._ws
        if ws is None:
            return  # Released before the reader got scheduled
        reason = "server closed the connection"
        try:
            async for msg in ws:
                if self._closed:
                    return

                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_text(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"transport error: {ws.exception()}"
                    break
        except ProtocolError as e:
            reason = str(e)
        except (aiohttp.ClientError, OSError) as e:
            reason = f"transport error: {e}"
        except Exception as e:
            logger.exception("Unexpected error in subscription reader")
            reason = f"reader failed: {e}"

        self._signal_disconnect(reason)

    def _handle_text(self, data: str) -> None:
        try:
            frames = stomp.decode_frames(data)
        except ParseError as e:
            self.parse_failures += 1
            logger.warning("Dropping malformed STOMP frame: %s", e)
            return

        for frame in frames:
            if self._closed:
                return
            if frame.command == "MESSAGE":
                self._dispatch(frame)
            elif frame.command == "ERROR":
                raise ProtocolError(f"server error: {frame.headers.get('message', frame.body)}")

    def _dispatch(self, frame: stomp.StompFrame) -> None:
        try:
            trade = parse_trade(frame.body)
        except ParseError as e:
            self.parse_failures += 1
            logger.warning("Dropping unparseable trade message: %s", e)
            return

        self.messages_received += 1
        self._on_trade(trade)

    def _signal_disconnect(self, reason: str) -> None:
        if self._closed or self._disconnect_signalled:
            return
        self._disconnect_signalled = True
        logger.warning("Subscription to %s lost: %s", self.topic, reason)
        self._on_disconnect(self, reason)

    async def close(self) -> None:
        """
        Release the session. Idempotent, safe before or during open().

        No trade or disconnect callback fires once this has been called.
        """
        if self._closed:
            return
        self._closed = True

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.wait([reader])

        await self._release()

    async def _release(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None or ws.closed:
            return
        try:
            await ws.send_str(stomp.disconnect_frame())
        except (aiohttp.ClientError, ConnectionError, RuntimeError):
            pass  # Transport already gone
        try:
            await ws.close()
        except (aiohttp.ClientError, OSError) as e:
            logger.debug("Error closing websocket: %s", e)
