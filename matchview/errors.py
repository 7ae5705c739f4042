"""Exception types raised at the channel boundaries."""

from __future__ import annotations


class MatchviewError(Exception):
    """Base class for all matchview errors."""


class ParseError(MatchviewError, ValueError):
    """A payload from the engine could not be decoded into a domain object."""


class PollError(MatchviewError):
    """A poll failed: network error, non-2xx status or malformed body."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SubscriptionError(MatchviewError):
    """The push connection could not be established or was lost."""


class ProtocolError(SubscriptionError):
    """The server rejected the STOMP handshake or subscription."""
