"""
Cache Payload Codec

Values are stored as UTF-8 JSON, LZ4-framed once they pass the size
threshold. The first byte of every payload says which of the two it is:

    \x00 + json bytes       small entries, or when LZ4 did not shrink them
    \x01 + lz4 frame        everything else
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple

import lz4.frame


logger = logging.getLogger(__name__)


MARKER_UNCOMPRESSED = b'\x00'
MARKER_LZ4 = b'\x01'


@dataclass
class CompressionStats:
    """Sizes before and after one LZ4 pass (marker byte included)."""
    original_size: int
    compressed_size: int

    @property
    def compression_ratio(self) -> float:
        if self.compressed_size == 0:
            return 0.0
        return self.original_size / self.compressed_size

    @property
    def savings_percent(self) -> float:
        if self.original_size == 0:
            return 0.0
        return (1 - self.compressed_size / self.original_size) * 100


class CacheCompressor:
    """
    Adds the encoding marker and LZ4-frames large payloads.

    Report and post lists are repetitive JSON, so LZ4 typically gets
    2-3x at a cost far below a network round trip.
    """

    def __init__(self, enabled: bool = True, threshold: int = 1024):
        self.enabled = enabled
        self.threshold = threshold

    def compress(self, data: bytes) -> Tuple[bytes, Optional[CompressionStats]]:
        """Return (marked payload, stats); stats is None when stored raw."""
        raw = MARKER_UNCOMPRESSED + data
        if not self.enabled or len(data) < self.threshold:
            return raw, None

        try:
            framed = lz4.frame.compress(data)
        except Exception as e:
            logger.warning(f"LZ4 compress failed ({e}); storing raw payload")
            return raw, None

        if len(framed) >= len(data):
            return raw, None

        return MARKER_LZ4 + framed, CompressionStats(len(data), len(framed) + 1)

    def decompress(self, data: bytes) -> bytes:
        if not data:
            return data

        marker, payload = data[:1], data[1:]
        if marker == MARKER_UNCOMPRESSED:
            return payload
        if marker == MARKER_LZ4:
            return lz4.frame.decompress(payload)
        raise ValueError(f"Unknown compression marker: {marker!r}")


def _to_json(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return float(obj)
    if hasattr(obj, '__dict__'):
        return vars(obj)
    return str(obj)


def serialize_value(value: Any) -> bytes:
    """JSON-encode a response payload; datetimes become ISO strings."""
    return json.dumps(value, default=_to_json, ensure_ascii=False).encode('utf-8')


def deserialize_value(data: bytes) -> Any:
    if not data:
        return None
    return json.loads(data.decode('utf-8'))


class PayloadCodec:
    """Serialize + compress on the way in, the reverse on the way out."""

    def __init__(self, compressor: Optional[CacheCompressor] = None):
        self.compressor = compressor or CacheCompressor()

    def encode(self, value: Any) -> Tuple[bytes, Optional[CompressionStats]]:
        return self.compressor.compress(serialize_value(value))

    def decode(self, data: bytes) -> Any:
        return deserialize_value(self.compressor.decompress(data))
