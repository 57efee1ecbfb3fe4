"""Readers that pull messages from a commit log, blocking for new data.

The log handed to these readers provides ``segments()``,
``high_watermark()``, ``wait_for_hw(waiter, hw)``,
``remove_hw_waiter(waiter)`` and a ``closed`` threading.Event.
"""

from __future__ import annotations

import threading
from typing import NamedTuple, Optional, Tuple

from .errors import CommitLogError, SegmentNotFoundError, SegmentReplacedError
from .message import Message
from .message_set import MSG_SET_HEADER_LEN, MessageSet
from .util import find_segment, find_segment_by_base_offset, find_segment_contains

_POLL_INTERVAL = 0.01


class ReadResult(NamedTuple):
    """A message read from the log with its header fields."""

    message: Message
    offset: int
    timestamp: int
    leader_epoch: int


def _wait(event: threading.Event, closed: threading.Event,
          cancel: Optional[threading.Event]) -> bool:
    """Wait for event; False if the log closes or the read is cancelled first."""
    while True:
        if closed.is_set() or (cancel is not None and cancel.is_set()):
            return False
        if event.wait(_POLL_INTERVAL):
            return True


def read_message(reader, cancel: Optional[threading.Event] = None) -> ReadResult:
    """Read one message set from a byte reader and verify its CRC.

    Blocks until the message is available. Raises EOFError if the read is
    cancelled or the log is closed, and CorruptMessageError on a bad CRC.
    """
    header = MessageSet(reader.read(MSG_SET_HEADER_LEN, cancel))
    size = header.size() & 0xFFFFFFFF
    message = Message(reader.read(size, cancel))
    message.verify()
    return ReadResult(message, header.offset(), header.timestamp(), header.leader_epoch())


def _hw_position(segments, hw: int) -> Tuple[int, int]:
    segment, idx = find_segment(segments, hw)
    if segment is None:
        raise SegmentNotFoundError()
    entry = segment.find_entry(hw)
    return idx, entry.position + entry.size


class UncommittedReader:
    """Reads all data written to the log, committed or not."""

    def __init__(self, log, offset: int) -> None:
        segment, contains = find_segment_contains(log.segments(), offset)
        if segment is None:
            raise SegmentNotFoundError()
        self._log = log
        self._segment = segment
        self._position = segment.find_entry(offset).position if contains else 0
        self._lock = threading.Lock()

    def _wait_for_data(self, cancel: Optional[threading.Event]) -> bool:
        segment = self._segment
        event = segment.wait_for_data(self, self._position)
        if _wait(event, self._log.closed, cancel):
            return True
        segment.remove_waiter(self)
        return False

    def read(self, size: int, cancel: Optional[threading.Event] = None) -> bytes:
        """Return exactly size bytes, blocking until they have been written."""
        with self._lock:
            segments = self._log.segments()
            buf = bytearray()
            waiting = False
            while True:
                chunk = self._segment.read_at(size - len(buf), self._position)
                buf += chunk
                self._position += len(chunk)
                if len(buf) == size:
                    return bytes(buf)
                if chunk:
                    waiting = False
                    continue

                if not waiting:
                    following = find_segment_by_base_offset(
                        segments, self._segment.base_offset + 1)
                    if following is not None:
                        self._segment, self._position = following, 0
                        continue
                    # Wait for the segment to be written to or rolled.
                    waiting = True
                    if not self._wait_for_data(cancel):
                        raise EOFError("stopped while waiting for data")
                    continue

                # End of segment after waiting: a new segment was rolled.
                segments = self._log.segments()
                following = find_segment_by_base_offset(
                    segments, self._segment.base_offset + 1)
                while following is None:
                    if not self._wait_for_data(cancel):
                        raise EOFError("stopped while waiting for data")
                    segments = self._log.segments()
                    following = find_segment_by_base_offset(
                        segments, self._segment.base_offset + 1)
                self._segment, self._position = following, 0
                waiting = False


class CommittedReader:
    """Reads only data at or below the log's high watermark."""

    def __init__(self, log, offset: int) -> None:
        self._log = log
        self._lock = threading.Lock()
        self._hw = log.high_watermark()
        self._hw_segment = None
        self._hw_position = -1
        self._segment = None
        self._position = -1
        # Past the HW (which includes an empty log) the first read waits.
        if offset > self._hw:
            return
        segments = log.segments()
        if self._hw != -1:
            hw_idx, self._hw_position = _hw_position(segments, self._hw)
            self._hw_segment = segments[hw_idx]
        segment, contains = find_segment_contains(segments, offset)
        self._segment = segment
        self._position = segment.find_entry(offset).position if contains else 0

    def _wait_for_hw(self, hw: int, cancel: Optional[threading.Event]) -> bool:
        event = self._log.wait_for_hw(self, hw)
        if _wait(event, self._log.closed, cancel):
            return True
        self._log.remove_hw_waiter(self)
        return False

    def _sync_hw(self, cancel: Optional[threading.Event]) -> None:
        hw = self._log.high_watermark()
        while hw == self._hw:
            if not self._wait_for_hw(hw, cancel):
                raise EOFError("stopped while waiting for the high watermark")
            hw = self._log.high_watermark()
        self._hw = hw

    def read(self, size: int, cancel: Optional[threading.Event] = None) -> bytes:
        """Return exactly size committed bytes, blocking for the HW to advance."""
        with self._lock:
            segments = self._log.segments()
            if self._segment is None:
                offset = self._hw + 1
                self._sync_hw(cancel)
                segments = self._log.segments()
                hw_idx, self._hw_position = _hw_position(segments, self._hw)
                self._hw_segment = segments[hw_idx]
                segment, _ = find_segment(segments, offset)
                if segment is None:
                    raise SegmentNotFoundError()
                self._segment = segment
                self._position = segment.find_entry(offset).position
            return self._read_loop(size, cancel, segments)

    def _read_loop(self, size: int, cancel: Optional[threading.Event], segments) -> bytes:
        buf = bytearray()
        while True:
            wanted = size - len(buf)
            if self._segment is self._hw_segment:
                wanted = max(0, min(wanted, self._hw_position - self._position))
            chunk = self._segment.read_at(wanted, self._position)
            buf += chunk
            self._position += len(chunk)
            if len(buf) == size:
                return bytes(buf)

            if len(chunk) < wanted:
                following = find_segment_by_base_offset(
                    segments, self._segment.base_offset + 1)
                if following is None:
                    raise CommitLogError("no segment to consume")
                self._segment, self._position = following, 0
                continue

            # Reached the HW, so wait for it to move.
            self._sync_hw(cancel)
            segments = self._log.segments()
            hw_idx, self._hw_position = _hw_position(segments, self._hw)
            self._hw_segment = segments[hw_idx]


class Reader:
    """Reads messages in order from a commit log; not for concurrent use."""

    def __init__(self, log, offset: int, uncommitted: bool = False) -> None:
        self._log = log
        self._offset = offset
        self.uncommitted = uncommitted
        self._source = self._open(offset)

    def _open(self, offset: int):
        if self.uncommitted:
            return UncommittedReader(self._log, offset)
        return CommittedReader(self._log, offset)

    @property
    def offset(self) -> int:
        """Offset of the next message to read."""
        return self._offset

    def read_message(self, cancel: Optional[threading.Event] = None) -> ReadResult:
        """Read the next message, blocking until one is available.

        Raises EOFError if cancel is set or the log closes while waiting.
        """
        while True:
            try:
                result = read_message(self._source, cancel)
            except SegmentReplacedError:
                # The segment was swapped out by compaction; reopen and retry.
                self._source = self._open(self._offset)
                continue
            self._offset = result.offset + 1
            return result