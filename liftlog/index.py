"""File-backed offset index mapping log offsets to file positions."""

from __future__ import annotations

import bisect
import os
import struct
import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .errors import IndexCorruptError

ENTRY_WIDTH = 20
DEFAULT_INDEX_BYTES = 10 * 1024 * 1024

_REL_ENTRY = struct.Struct(">iqii")


def _round_down(total: int, factor: int) -> int:
    return factor * (total // factor)


@dataclass
class Entry:
    """Location and metadata of one message set in a segment."""

    offset: int = 0
    timestamp: int = 0
    leader_epoch: int = 0
    position: int = 0
    size: int = 0


class Index:
    """Fixed-width index entries stored relative to a base offset."""

    def __init__(self, path, base_offset: int = 0, bytes: int = 0) -> None:
        if not path:
            raise ValueError("path is empty")
        self._path = os.fspath(path)
        self.base_offset = base_offset
        self._bytes = bytes or DEFAULT_INDEX_BYTES
        self._lock = threading.RLock()
        flags = os.O_RDWR | os.O_CREAT | getattr(os, "O_BINARY", 0)
        fd = os.open(self._path, flags, 0o666)
        self._file = os.fdopen(fd, "r+b", buffering=0)
        # Pre-allocate the index if it was just created.
        if os.fstat(fd).st_size == 0:
            self._file.truncate(_round_down(self._bytes, ENTRY_WIDTH))
        self._size = os.fstat(fd).st_size
        self._position = self._size

    def position(self) -> int:
        """Next write position, which is also the length of the contents."""
        with self._lock:
            return self._position

    def count_entries(self) -> int:
        with self._lock:
            return self._position // ENTRY_WIDTH

    def write_entries(self, entries: List[Entry]) -> None:
        data = b"".join(
            _REL_ENTRY.pack(
                entry.offset - self.base_offset, entry.timestamp, entry.position, entry.size
            )
            for entry in entries
        )
        with self._lock:
            self._write_at(data, self._position)
            self._position += ENTRY_WIDTH * len(entries)

    def _write_at(self, data: bytes, offset: int) -> int:
        if offset + len(data) >= self._size:
            new_size = _round_down(self._size + self._bytes, ENTRY_WIDTH)
            if new_size < offset + len(data):
                new_size = self._size + len(data)
            self._file.truncate(new_size)
            self._size = new_size
        self._file.seek(offset)
        return self._file.write(data)

    def read_at(self, offset: int) -> bytes:
        """Return the raw entry bytes at the given file offset."""
        with self._lock:
            if self._position < offset + ENTRY_WIDTH:
                raise EOFError("read past end of index")
            self._file.seek(offset)
            return self._file.read(ENTRY_WIDTH)

    def read_entry_at_file_offset(self, file_offset: int) -> Entry:
        raw = self.read_at(file_offset)
        rel_offset, timestamp, position, size = _REL_ENTRY.unpack(raw)
        return Entry(
            offset=self.base_offset + rel_offset,
            timestamp=timestamp,
            position=position,
            size=size,
        )

    def read_entry_at_log_offset(self, log_offset: int) -> Entry:
        return self.read_entry_at_file_offset(log_offset * ENTRY_WIDTH)

    def sync(self) -> None:
        with self._lock:
            self._file.flush()
            os.fsync(self._file.fileno())

    def close(self) -> None:
        self.sync()
        self.shrink()
        self._file.close()

    def shrink(self) -> None:
        """Truncate the index file to the size of its contents."""
        with self._lock:
            self._file.truncate(self._position)

    def name(self) -> str:
        return self._path

    def file_size(self) -> int:
        return os.path.getsize(self._path)

    def truncate_entries(self, number: int) -> None:
        with self._lock:
            if number * ENTRY_WIDTH > self._position:
                raise ValueError("bad truncate number")
            self._position = number * ENTRY_WIDTH

    def initialize_position(self) -> Optional[Entry]:
        """Locate the first empty slot and return the last entry, if any."""
        count = self._size // ENTRY_WIDTH

        def is_empty(i: int) -> bool:
            entry = self.read_entry_at_file_offset(i * ENTRY_WIDTH)
            return entry.position == 0 and entry.timestamp == 0 and entry.size == 0

        i = bisect.bisect_left(range(count), True, key=is_empty)
        with self._lock:
            self._position = i * ENTRY_WIDTH
        if i == 0:
            return None
        entry = self.read_entry_at_file_offset((i - 1) * ENTRY_WIDTH)
        if entry.offset < self.base_offset:
            raise IndexCorruptError()
        with self._lock:
            if self._position % ENTRY_WIDTH != 0:
                raise IndexCorruptError()
        return entry


class IndexScanner:
    """Walks the entries of an index in order."""

    def __init__(self, index: Index) -> None:
        self._index = index
        self._offset = 0

    def scan(self) -> Entry:
        """Return the next entry; raise EOFError when there are no more."""
        entry = self._index.read_entry_at_log_offset(self._offset)
        if entry.offset == 0 and self._offset != 0:
            raise EOFError("end of index")
        self._offset += 1
        return entry

    def __iter__(self) -> Iterator[Entry]:
        while True:
            try:
                yield self.scan()
            except EOFError:
                return