"""Encoded log messages and the records they are built from."""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .errors import CorruptMessageError

_KEY_START = 6


@dataclass
class Record:
    """A message as handed to the log, before encoding."""

    key: Optional[bytes] = None
    value: Optional[bytes] = None
    timestamp: int = 0
    leader_epoch: int = 0
    headers: Dict[str, bytes] = field(default_factory=dict)
    magic_byte: int = 0
    attributes: int = 0


def _sized(data: Optional[bytes]) -> bytes:
    if data is None:
        return struct.pack(">i", -1)
    return struct.pack(">i", len(data)) + bytes(data)


def encode_record(record: Record) -> bytes:
    """Encode a record into the on-disk message format, CRC first."""
    parts = [
        struct.pack(">bb", record.magic_byte, record.attributes),
        _sized(record.key),
        _sized(record.value),
        struct.pack(">H", len(record.headers)),
    ]
    for name, value in record.headers.items():
        raw_name = name.encode("utf-8")
        parts.append(struct.pack(">H", len(raw_name)))
        parts.append(raw_name)
        parts.append(struct.pack(">I", len(value)))
        parts.append(bytes(value))
    body = b"".join(parts)
    return struct.pack(">I", zlib.crc32(body) & 0xFFFFFFFF) + body


class Message(bytes):
    """A single encoded message: crc, magic, attributes, key, value, headers."""

    def crc(self) -> int:
        return struct.unpack_from(">I", self, 0)[0]

    def magic_byte(self) -> int:
        return struct.unpack_from(">b", self, 4)[0]

    def attributes(self) -> int:
        return struct.unpack_from(">b", self, 5)[0]

    def _key_bounds(self) -> Tuple[int, int, int]:
        start = _KEY_START
        size = struct.unpack_from(">i", self, start)[0]
        end = start + 4 + (size if size != -1 else 0)
        return start, end, size

    def _value_bounds(self) -> Tuple[int, int, int]:
        _, start, _ = self._key_bounds()
        size = struct.unpack_from(">i", self, start)[0]
        end = start + 4 + (size if size != -1 else 0)
        return start, end, size

    def key(self) -> Optional[bytes]:
        start, end, size = self._key_bounds()
        if size == -1:
            return None
        return bytes(self[start + 4:end])

    def value(self) -> Optional[bytes]:
        start, end, size = self._value_bounds()
        if size == -1:
            return None
        return bytes(self[start + 4:end])

    def headers(self) -> Dict[str, bytes]:
        _, n, _ = self._value_bounds()
        (count,) = struct.unpack_from(">H", self, n)
        n += 2
        headers: Dict[str, bytes] = {}
        for _ in range(count):
            (name_size,) = struct.unpack_from(">H", self, n)
            n += 2
            name = bytes(self[n:n + name_size]).decode("utf-8")
            n += name_size
            (value_size,) = struct.unpack_from(">I", self, n)
            n += 4
            headers[name] = bytes(self[n:n + value_size])
            n += value_size
        return headers

    def verify(self) -> None:
        """Raise CorruptMessageError if the stored CRC does not match."""
        expected = self.crc()
        actual = zlib.crc32(self[4:]) & 0xFFFFFFFF
        if expected != actual:
            raise CorruptMessageError(
                f"Read corrupted data, expected CRC: 0x{expected:08x}, got: 0x{actual:08x}"
            )