"""Message sets: a fixed header followed by one encoded message."""

from __future__ import annotations

import struct
from typing import List, Optional, Sequence, Tuple

from .index import Entry
from .message import Message, Record, encode_record

OFFSET_POS = 0
TIMESTAMP_POS = 8
LEADER_EPOCH_POS = 16
SIZE_POS = 24
MSG_SET_HEADER_LEN = 28

_HEADER = struct.Struct(">qqQI")


class MessageSet(bytes):
    """Header (offset, timestamp, leader epoch, size) plus message bytes."""

    def offset(self) -> int:
        return struct.unpack_from(">q", self, OFFSET_POS)[0]

    def timestamp(self) -> int:
        return struct.unpack_from(">q", self, TIMESTAMP_POS)[0]

    def leader_epoch(self) -> int:
        return struct.unpack_from(">Q", self, LEADER_EPOCH_POS)[0]

    def size(self) -> int:
        return struct.unpack_from(">i", self, SIZE_POS)[0]

    def message(self) -> Optional[Message]:
        if len(self) <= MSG_SET_HEADER_LEN:
            return None
        return Message(self[MSG_SET_HEADER_LEN:MSG_SET_HEADER_LEN + self.size()])


def entries_for_message_set(base_position: int, data: bytes) -> List[Entry]:
    """Build index entries for consecutive message sets in data."""
    entries: List[Entry] = []
    if len(data) <= MSG_SET_HEADER_LEN:
        return entries
    view = memoryview(data)
    relative = 0
    while relative < len(view):
        ms = MessageSet(view[relative:relative + MSG_SET_HEADER_LEN])
        size = ms.size()
        entries.append(
            Entry(
                offset=ms.offset(),
                timestamp=ms.timestamp(),
                leader_epoch=ms.leader_epoch(),
                position=base_position + relative,
                size=size + MSG_SET_HEADER_LEN,
            )
        )
        relative += MSG_SET_HEADER_LEN + size
    return entries


def message_set_from_records(
    base_offset: int, base_position: int, records: Sequence[Record]
) -> Tuple[MessageSet, List[Entry]]:
    """Encode records into message sets with consecutive offsets."""
    chunks: List[bytes] = []
    entries: List[Entry] = []
    relative = 0
    for i, record in enumerate(records):
        data = encode_record(record)
        offset = base_offset + i
        chunks.append(
            _HEADER.pack(offset, record.timestamp, record.leader_epoch, len(data))
        )
        chunks.append(data)
        entries.append(
            Entry(
                offset=offset,
                timestamp=record.timestamp,
                leader_epoch=record.leader_epoch,
                position=base_position + relative,
                size=len(data) + MSG_SET_HEADER_LEN,
            )
        )
        relative += MSG_SET_HEADER_LEN + len(data)
    return MessageSet(b"".join(chunks)), entries