"""
Minimal STOMP 1.2 text framing.

Frame layout:
    COMMAND EOL
    header:value EOL   (zero or more)
    EOL
    body NUL

Bare EOLs between frames are heart-beats and are skipped. Only what the
client needs is implemented: CONNECT/SUBSCRIBE/UNSUBSCRIBE/DISCONNECT out,
CONNECTED/MESSAGE/RECEIPT/ERROR in. Bodies are assumed NUL-free (JSON).
"""

from __future__ import annotations

from typing import Mapping, NamedTuple

from ..errors import ParseError

NUL = "\x00"

# CONNECT and CONNECTED headers are never escaped
_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED"})

_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}


class StompFrame(NamedTuple):
    command: str
    headers: Mapping[str, str]
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    if "\\" not in value:
        return value
    out = []
    i = 0
    while i < len(value):
        pair = value[i:i + 2]
        if pair in _UNESCAPES:
            out.append(_UNESCAPES[pair])
            i += 2
        elif value[i] == "\\":
            raise ParseError(f"invalid header escape {pair!r}")
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def encode_frame(command: str, headers: Mapping[str, str] | None = None, body: str = "") -> str:
    """Serialize a frame to its wire text, NUL terminator included."""
    escape = command not in _UNESCAPED_COMMANDS
    lines = [command]
    for key, value in (headers or {}).items():
        if escape:
            key, value = _escape(key), _escape(str(value))
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + body + NUL


def _parse_frame(text: str) -> StompFrame:
    head, sep, body = text.partition("\n\n")
    if not sep:
        # Frame with CRLF line endings
        head, sep, body = text.partition("\r\n\r\n")
    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise ParseError("frame without command")

    escape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        key, colon, value = line.partition(":")
        if not colon:
            raise ParseError(f"malformed header line {line!r}")
        if escape:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: first occurrence wins
        headers.setdefault(key, value)
    return StompFrame(command, headers, body)


def decode_frames(data: str) -> list[StompFrame]:
    """
    Split a WebSocket text message into frames.

    A message may carry several frames, a lone heart-beat, or both.
    Raises ParseError on the first malformed frame.
    """
    frames = []
    for chunk in data.split(NUL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        frames.append(_parse_frame(chunk))
    return frames


def connect_frame(host: str, heartbeat: tuple[int, int] = (0, 0)) -> str:
    return encode_frame("CONNECT", {
        "accept-version": "1.2",
        "host": host,
        "heart-beat": f"{heartbeat[0]},{heartbeat[1]}",
    })


def subscribe_frame(destination: str, sub_id: str = "sub-0") -> str:
    return encode_frame("SUBSCRIBE", {"id": sub_id, "destination": destination, "ack": "auto"})


def disconnect_frame() -> str:
    return encode_frame("DISCONNECT")
