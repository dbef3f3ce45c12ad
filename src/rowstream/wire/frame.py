"""Wire framing: ``schema_id (uint16, big-endian) || record body``.

There is no length field and no checksum; the Kafka message boundary ends
the body and integrity is left to the transport.
"""

from __future__ import annotations

import struct

from rowstream.errors import FrameTooShort

_HEADER = struct.Struct("!H")
HEADER_WIDTH = _HEADER.size
MAX_SCHEMA_ID = 0xFFFF


def encode_frame(schema_id: int, body: bytes) -> bytes:
    """Prefix *body* with the 2-byte schema id header."""
    if not 0 <= schema_id <= MAX_SCHEMA_ID:
        msg = f"Schema id {schema_id} does not fit in {HEADER_WIDTH} bytes"
        raise ValueError(msg)
    return _HEADER.pack(schema_id) + bytes(body)


def decode_frame(frame: bytes) -> tuple[int, bytes]:
    """Split a frame into ``(schema_id, body)``."""
    if len(frame) < HEADER_WIDTH:
        raise FrameTooShort(len(frame), HEADER_WIDTH)
    (schema_id,) = _HEADER.unpack_from(frame, 0)
    return schema_id, bytes(frame[HEADER_WIDTH:])
