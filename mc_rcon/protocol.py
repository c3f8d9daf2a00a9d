# mc_rcon/protocol.py
"""RCON wire format: little-endian size/id/type header, UTF-8 body, two NULs."""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Optional

from .errors import ProtocolError

logger = logging.getLogger(__name__)

HEADER = struct.Struct("<iii")   # size, id, type
SIZE_FIELD = 4
TERMINATOR = b"\x00\x00"

MIN_PACKET_SIZE = 14             # 4 size + 4 id + 4 type + 2 terminator
MIN_DECLARED_SIZE = MIN_PACKET_SIZE - SIZE_FIELD
MAX_FRAME_SIZE = 1 << 20         # anything larger is treated as a desync
AUTH_FAILED_ID = -1


class ClientPacketType(IntEnum):
    """Types we send. COMMAND shares its value with ServerPacketType.AUTH_RESPONSE."""
    COMMAND = 2
    AUTH = 3


class ServerPacketType(IntEnum):
    """Types the server sends back."""
    RESPONSE = 0
    AUTH_RESPONSE = 2


@dataclass(frozen=True)
class Packet:
    size: int
    id: int
    type: int
    payload: bytes

    @property
    def body(self) -> str:
        return self.payload.decode("utf-8", "replace")

    def server_type(self) -> Optional[ServerPacketType]:
        try:
            return ServerPacketType(self.type)
        except ValueError:
            return None


def encode_packet(req_id: int, kind: ClientPacketType, body: str) -> bytes:
    data = body.encode("utf-8")
    size = 4 + 4 + len(data) + len(TERMINATOR)
    return HEADER.pack(size, req_id, int(kind)) + data + TERMINATOR


def decode_packet(buf: bytes) -> tuple[Optional[Packet], bytes]:
    """Pull one packet off the front of ``buf``.

    Returns ``(None, buf)`` unchanged when the buffer doesn't hold a whole
    frame yet. A frame that is self-consistent but shorter than
    MIN_PACKET_SIZE is logged and dropped, returning ``(None, rest)``; use
    ``len(rest) < len(buf)`` to tell that apart from "incomplete". Raises
    ProtocolError when the size header itself can't be trusted.
    """
    if len(buf) < SIZE_FIELD:
        return None, buf
    (size,) = struct.unpack_from("<i", buf, 0)
    if size < 0 or size > MAX_FRAME_SIZE:
        raise ProtocolError(f"invalid packet size {size}", data=bytes(buf[:16]))
    total = size + SIZE_FIELD
    if len(buf) < total:
        return None, buf

    frame, rest = bytes(buf[:total]), bytes(buf[total:])
    if size < MIN_DECLARED_SIZE:
        logger.warning(
            "Discarding undersized packet (%d bytes)", total,
            extra={"bytes": total, "preview": frame[:16].hex()},
        )
        return None, rest

    _, req_id, kind = HEADER.unpack_from(frame, 0)
    body_end = min(total - len(TERMINATOR), len(frame))
    return Packet(size=size, id=req_id, type=kind, payload=frame[HEADER.size:body_end]), rest


class PacketDecoder:
    """Buffers a TCP byte stream and yields whole packets as they complete."""

    def __init__(self) -> None:
        self.buffer = b""

    def feed(self, data: bytes) -> Iterator[Packet]:
        """Yield each packet as soon as it is framed; a desync raises mid-iteration."""
        self.buffer += data
        while True:
            before = len(self.buffer)
            packet, self.buffer = decode_packet(self.buffer)
            if packet is not None:
                yield packet
            elif len(self.buffer) == before:
                return
