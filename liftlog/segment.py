"""A log segment: an append-only log file paired with its offset index."""

from __future__ import annotations

import bisect
import contextlib
import os
import threading
import time
from typing import Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from .errors import (
    EntryNotFoundError,
    SegmentClosedError,
    SegmentExistsError,
    SegmentReplacedError,
)
from .index import ENTRY_WIDTH, Entry, Index, IndexScanner
from .message_set import MSG_SET_HEADER_LEN, MessageSet

LOG_SUFFIX = ".log"
INDEX_SUFFIX = ".index"
CLEANED_SUFFIX = ".cleaned"
TRUNCATED_SUFFIX = ".truncated"


def now_ns() -> int:
    """Current time in Unix nanoseconds."""
    return time.time_ns()


class Segment:
    """One file of a commit log starting at a base offset."""

    def __init__(self, path, base_offset: int, max_bytes: int,
                 is_new: bool = False, suffix: str = "") -> None:
        self.path = os.fspath(path)
        self.base_offset = base_offset
        self.max_bytes = max_bytes
        self.suffix = suffix
        self.lock = threading.RLock()
        self.clock: Callable[[], int] = now_ns
        self.first_write_time = 0
        self.last_write_time = 0
        self.sealed = False
        self.closed = False
        self.replaced = False
        self._first_offset = -1
        self._last_offset = -1
        self._waiters: Dict[Hashable, threading.Event] = {}
        if is_new and os.path.exists(self._log_path()):
            raise SegmentExistsError()
        self._open_log()
        self._position = os.fstat(self._log.fileno()).st_size
        self._setup_index()

    def _log_path(self) -> str:
        return os.path.join(self.path, f"{self.base_offset:020d}{LOG_SUFFIX}{self.suffix}")

    def _index_path(self) -> str:
        return os.path.join(self.path, f"{self.base_offset:020d}{INDEX_SUFFIX}{self.suffix}")

    def _open_log(self) -> None:
        self._log_name = self._log_path()
        self._log = open(self._log_name, "a+b", buffering=0)

    def _setup_index(self) -> None:
        self.index = Index(self._index_path(), self.base_offset)
        last = self.index.initialize_position()
        if last is not None:
            self._last_offset = last.offset
            self.last_write_time = last.timestamp
            first = self.index.read_entry_at_file_offset(0)
            self._first_offset = first.offset
            self.first_write_time = first.timestamp

    def check_split(self, log_roll_time: int) -> bool:
        """Whether a new segment should be rolled.

        True when this segment is full or log_roll_time nanoseconds have
        passed since its first write. A zero roll time disables the latter.
        """
        with self.lock:
            if self._position >= self.max_bytes:
                return True
            if not log_roll_time or self.first_write_time == 0:
                return False
            return self.clock() - self.first_write_time >= log_roll_time

    def seal(self) -> None:
        """Mark the segment read-only, wake waiters and shrink the index."""
        with self.lock:
            if self.sealed:
                return
            self.sealed = True
            self._notify_waiters()
            with contextlib.suppress(OSError):
                self.index.shrink()

    def next_offset(self) -> int:
        with self.lock:
            if self._last_offset == -1:
                return self.base_offset
            return self._last_offset + 1

    def first_offset(self) -> int:
        with self.lock:
            return self._first_offset

    def last_offset(self) -> int:
        with self.lock:
            return self._last_offset

    def position(self) -> int:
        with self.lock:
            return self._position

    def is_empty(self) -> bool:
        with self.lock:
            return self._first_offset == -1

    def message_count(self) -> int:
        with self.lock:
            return self.index.count_entries()

    def write_message_set(self, data: bytes, entries: List[Entry]) -> None:
        """Append message set data and index its entries."""
        with self.lock:
            self._write(data, entries)
            self.index.write_entries(entries)

    def _write(self, data: bytes, entries: List[Entry]) -> int:
        if self.closed:
            raise SegmentClosedError()
        written = self._log.write(data)
        self._position += written
        if self.first_write_time == 0:
            first = entries[0]
            self._first_offset = first.offset
            self.first_write_time = first.timestamp
        last = entries[-1]
        self._last_offset = last.offset
        self.last_write_time = last.timestamp
        self._notify_waiters()
        return written

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to size bytes at offset; fewer bytes means end of data."""
        with self.lock:
            if self.closed:
                if self.replaced:
                    raise SegmentReplacedError()
                raise SegmentClosedError()
            if size <= 0:
                return b""
            self._log.seek(offset)
            chunks = []
            remaining = size
            while remaining > 0:
                chunk = self._log.read(remaining)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
            return b"".join(chunks)

    def _notify_waiters(self) -> None:
        for event in self._waiters.values():
            event.set()
        self._waiters.clear()

    def wait_for_leo(self, waiter: Hashable, leo: int) -> threading.Event:
        """Event set once data past leo arrives; already set if leo is stale."""
        with self.lock:
            if self._last_offset != leo:
                event = threading.Event()
                event.set()
                return event
            return self._wait_for_data(waiter, self._position)

    def wait_for_data(self, waiter: Hashable, pos: int) -> threading.Event:
        """Event set once data is written past pos or the segment fills or seals."""
        with self.lock:
            return self._wait_for_data(waiter, pos)

    def _wait_for_data(self, waiter: Hashable, pos: int) -> threading.Event:
        existing = self._waiters.get(waiter)
        if existing is not None:
            return existing
        event = threading.Event()
        if self._position > pos or self._position >= self.max_bytes:
            event.set()
        else:
            self._waiters[waiter] = event
        return event

    def remove_waiter(self, waiter: Hashable) -> None:
        with self.lock:
            self._waiters.pop(waiter, None)

    def close(self) -> None:
        """Close the segment for reads and writes; idempotent."""
        with self.lock:
            self._close()

    def _close(self) -> None:
        if self.closed:
            return
        self._log.close()
        self.index.close()
        self.closed = True

    def cleaned(self) -> "Segment":
        """Create the companion segment that compaction writes into."""
        return Segment(self.path, self.base_offset, self.max_bytes, False, CLEANED_SUFFIX)

    def truncated(self) -> "Segment":
        """Create the companion segment that truncation writes into."""
        return Segment(self.path, self.base_offset, self.max_bytes, False, TRUNCATED_SUFFIX)

    def replace(self, old: "Segment") -> None:
        """Take over the files of old, which is closed and marked replaced."""
        with self.lock, old.lock:
            old._close()
            self._close()
            os.replace(self._log_path(), old._log_path())
            os.replace(self._index_path(), old._index_path())
            self.suffix = ""
            self._open_log()
            self.closed = False
            old.replaced = True
            self._setup_index()

    def _search_entries(self, predicate: Callable[[Entry], bool]) -> Entry:
        with self.lock:
            n = self.index.position() // ENTRY_WIDTH
            idx = bisect.bisect_left(
                range(n),
                True,
                key=lambda i: predicate(self.index.read_entry_at_file_offset(i * ENTRY_WIDTH)),
            )
            if idx == n:
                raise EntryNotFoundError()
            return self.index.read_entry_at_file_offset(idx * ENTRY_WIDTH)

    def find_entry(self, offset: int) -> Entry:
        """First entry whose offset is at least offset."""
        return self._search_entries(lambda e: e.offset >= offset)

    def find_entry_by_timestamp(self, timestamp: int) -> Entry:
        """First entry whose timestamp is at least timestamp."""
        return self._search_entries(lambda e: e.timestamp >= timestamp)

    def delete(self) -> None:
        """Close the segment and remove its log and index files."""
        self.close()
        with self.lock:
            for name in (self._log_name, self.index.name()):
                if os.path.exists(name):
                    os.remove(name)

    def __repr__(self) -> str:
        return f"Segment(path={self.path!r}, base_offset={self.base_offset})"


class SegmentScanner:
    """Iterates over the message sets stored in a segment."""

    def __init__(self, segment: Segment) -> None:
        self._segment = segment
        self._index_scanner = IndexScanner(segment.index)

    def scan(self) -> Tuple[MessageSet, Entry]:
        """Return the next message set and its entry; EOFError at the end."""
        entry = self._index_scanner.scan()
        header = self._segment.read_at(MSG_SET_HEADER_LEN, entry.position)
        if len(header) < MSG_SET_HEADER_LEN:
            raise EOFError("short read of message set header")
        size = MessageSet(header).size()
        payload = self._segment.read_at(size, entry.position + MSG_SET_HEADER_LEN)
        if len(payload) < size:
            raise EOFError("short read of message set payload")
        return MessageSet(header + payload), entry

    def __iter__(self) -> Iterator[Tuple[MessageSet, Entry]]:
        while True:
            try:
                yield self.scan()
            except EOFError:
                return