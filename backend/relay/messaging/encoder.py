"""
MessagePack framing for the relay protocol.

Every frame is a map. Inbound frames carry ``event``, ``data`` and an optional
``ack`` callback id; outbound frames carry ``event`` and ``data``.
"""

from typing import Any

import msgpack


class DecodeError(Exception):
    """Error raised when a frame cannot be decoded."""


# Size limits to prevent resource exhaustion from malicious payloads.
# Game state blobs and character sheets are larger than typical chat traffic.
MAX_BUFFER_LEN = 512 * 1024
MAX_STR_LEN = 128 * 1024
MAX_BIN_LEN = 128 * 1024
MAX_ARRAY_LEN = 4096
MAX_MAP_LEN = 1024
MAX_EXT_LEN = 1024


def encode(data: dict[str, Any]) -> bytes:
    return msgpack.packb(data)


def decode(data: bytes) -> dict[str, Any]:
    """
    Decode one frame into a dict.

    Raises DecodeError if the frame is oversized, malformed or not a map.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")

    return result
