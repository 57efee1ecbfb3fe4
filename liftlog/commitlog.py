"""A durable, segmented write-ahead log with retention, compaction and leader epochs."""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from .compact_cleaner import CompactCleaner
from .delete_cleaner import DeleteCleaner, Duration
from .errors import CommitLogError, EntryNotFoundError, SegmentExistsError
from .index import Entry
from .leader_epoch_cache import LeaderEpochCache
from .message import Record
from .message_set import entries_for_message_set, message_set_from_records
from .reader import Reader
from .segment import Segment, SegmentScanner
from .util import find_segment, find_segment_index_by_timestamp

LOG_FILE_SUFFIX = ".log"
INDEX_FILE_SUFFIX = ".index"
HW_FILE_NAME = "replication-offset-checkpoint"
DEFAULT_MAX_SEGMENT_BYTES = 1073741824
DEFAULT_HW_CHECKPOINT_INTERVAL = 5.0
DEFAULT_CLEANER_INTERVAL = 300.0

logger = logging.getLogger(__name__)


@dataclass
class Options:
    """Settings for a CommitLog.

    Intervals are in seconds, log_roll_time in nanoseconds and max_log_age
    in nanoseconds or a timedelta. Zero leaves a setting at its default or
    disables the limit.
    """

    path: str = ""
    name: str = ""
    max_segment_bytes: int = 0
    max_log_bytes: int = 0
    max_log_messages: int = 0
    max_log_age: Duration = 0
    compact: bool = False
    compact_max_workers: int = 0
    cleaner_interval: float = 0.0
    hw_checkpoint_interval: float = 0.0
    log_roll_time: int = 0


def _write_atomic(path: str, text: str) -> None:
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".hw-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as stream:
            stream.write(text)
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class CommitLog:
    """A file-backed log of message sets split into segments.

    Background threads periodically checkpoint the high watermark and apply
    the retention and compaction rules until the log is closed.
    """

    def __init__(self, options: Options) -> None:
        if not options.path:
            raise ValueError("path is empty")
        options = dataclasses.replace(
            options,
            path=os.fspath(options.path),
            max_segment_bytes=options.max_segment_bytes or DEFAULT_MAX_SEGMENT_BYTES,
            hw_checkpoint_interval=(
                options.hw_checkpoint_interval or DEFAULT_HW_CHECKPOINT_INTERVAL),
            cleaner_interval=options.cleaner_interval or DEFAULT_CLEANER_INTERVAL,
        )
        self.options = options
        self.path = options.path
        absolute = os.path.abspath(self.path)
        self.name = os.path.basename(absolute)
        self._delete_cleaner = DeleteCleaner(
            self.path, options.max_log_bytes, options.max_log_messages, options.max_log_age)
        self._compact_cleaner = CompactCleaner(options.name, options.compact_max_workers)
        self._lock = threading.RLock()
        self._active_lock = threading.Lock()
        self._hw = -1
        self._hw_waiters: Dict[Hashable, threading.Event] = {}
        self._segments: List[Segment] = []
        self._active: Optional[Segment] = None
        self.closed = threading.Event()

        os.makedirs(self.path, exist_ok=True)
        self.epoch_cache = LeaderEpochCache(options.name, absolute)
        self._open()

        # After an unclean shutdown the epoch checkpoint may be ahead of the
        # log, and the earliest epoch may not have been flushed.
        self.epoch_cache.clear_latest(self.active_segment().next_offset())
        self.epoch_cache.clear_earliest(self.oldest_offset())

        for target, label in ((self._checkpoint_hw_loop, "hw-checkpoint"),
                              (self._cleaner_loop, "cleaner")):
            threading.Thread(target=target, name=f"{label}-{self.name}", daemon=True).start()

    def _open(self) -> None:
        for file_name in sorted(os.listdir(self.path)):
            full = os.path.join(self.path, file_name)
            if file_name.endswith(INDEX_FILE_SUFFIX):
                log_name = file_name.replace(INDEX_FILE_SUFFIX, LOG_FILE_SUFFIX, 1)
                if not os.path.exists(os.path.join(self.path, log_name)):
                    os.remove(full)
            elif file_name.endswith(LOG_FILE_SUFFIX):
                base_offset = int(file_name[:-len(LOG_FILE_SUFFIX)])
                self._segments.append(
                    Segment(self.path, base_offset, self.options.max_segment_bytes, False, ""))
            elif file_name == HW_FILE_NAME:
                with open(full, "r", encoding="utf-8") as stream:
                    raw = stream.read()
                try:
                    self._hw = int(raw)
                except ValueError as exc:
                    raise CommitLogError("parse high watermark file failed") from exc
        if not self._segments:
            self._segments.append(
                Segment(self.path, 0, self.options.max_segment_bytes, True, ""))
        self._active = self._segments[-1]

    def append(self, records: Sequence[Record]) -> List[int]:
        """Write records to the log and return their offsets."""
        self._check_and_perform_split()
        segment = self.active_segment()
        data, entries = message_set_from_records(
            segment.next_offset(), segment.position(), records)
        return self._append(segment, data, entries)

    def append_message_set(self, data: bytes) -> List[int]:
        """Write already encoded message sets and return their offsets."""
        self._check_and_perform_split()
        segment = self.active_segment()
        entries = entries_for_message_set(segment.position(), data)
        return self._append(segment, data, entries)

    def _append(self, segment: Segment, data: bytes, entries: List[Entry]) -> List[int]:
        segment.write_message_set(data, entries)
        last_epoch = self.epoch_cache.last_leader_epoch()
        offsets = []
        for entry in entries:
            if entry.leader_epoch > last_epoch:
                self.epoch_cache.assign(entry.leader_epoch, entry.offset)
                last_epoch = entry.leader_epoch
            offsets.append(entry.offset)
        return offsets

    def newest_offset(self) -> int:
        """Offset of the last message, or -1 if the log is empty."""
        return self.active_segment().next_offset() - 1

    def oldest_offset(self) -> int:
        """Offset of the first message, or -1 if the log is empty."""
        with self._lock:
            return self._segments[0].first_offset()

    def offset_for_timestamp(self, timestamp: int) -> int:
        """Earliest offset whose timestamp is at least timestamp."""
        with self._lock:
            segments = self._segments
            try:
                idx = find_segment_index_by_timestamp(segments, timestamp)
            except (EOFError, OSError) as exc:
                raise CommitLogError("failed to find log segment for timestamp") from exc
            segment = segments[idx - 1] if idx > 0 else segments[0]
            try:
                return segment.find_entry_by_timestamp(timestamp).offset
            except (EntryNotFoundError, EOFError):
                pass
            # Nothing in that segment is new enough: try the next one, or
            # the timestamp lies beyond the end of the log.
            if idx < len(segments):
                try:
                    return segments[idx].find_entry_by_timestamp(timestamp).offset
                except (EntryNotFoundError, EOFError) as exc:
                    raise CommitLogError("failed to find log entry for timestamp") from exc
            return segments[-1].next_offset()

    def set_high_watermark(self, hw: int) -> None:
        """Raise the high watermark; lower values are ignored."""
        with self._lock:
            if hw > self._hw:
                self._hw = hw
                self._notify_hw_waiters()

    def override_high_watermark(self, hw: int) -> None:
        """Set the high watermark even if it moves backwards."""
        with self._lock:
            self._hw = hw
            self._notify_hw_waiters()

    def _notify_hw_waiters(self) -> None:
        for event in self._hw_waiters.values():
            event.set()
        self._hw_waiters.clear()

    def high_watermark(self) -> int:
        with self._lock:
            return self._hw

    def wait_for_hw(self, waiter: Hashable, hw: int) -> threading.Event:
        """Event set once the high watermark differs from hw."""
        event = threading.Event()
        with self._lock:
            if self._hw != hw:
                event.set()
            else:
                self._hw_waiters[waiter] = event
        return event

    def remove_hw_waiter(self, waiter: Hashable) -> None:
        with self._lock:
            self._hw_waiters.pop(waiter, None)

    def new_leader_epoch(self, epoch: int) -> None:
        """Record that the log enters a new leader epoch."""
        self.epoch_cache.assign(epoch, self.newest_offset())

    def last_offset_for_leader_epoch(self, epoch: int) -> int:
        """Start offset of the first later epoch, or the newest offset."""
        offset = self.epoch_cache.last_offset_for_leader_epoch(epoch)
        if offset == -1:
            offset = self.active_segment().next_offset() - 1
        return offset

    def last_leader_epoch(self) -> int:
        return self.epoch_cache.last_leader_epoch()

    def active_segment(self) -> Segment:
        return self._active

    def segments(self) -> List[Segment]:
        with self._lock:
            return list(self._segments)

    def new_reader(self, offset: int, uncommitted: bool = False) -> Reader:
        """Reader starting at offset; committed data only unless uncommitted."""
        return Reader(self, offset, uncommitted)

    def truncate(self, offset: int) -> None:
        """Remove every message at or after offset."""
        with self._lock:
            segment, idx = find_segment(self._segments, offset)
            if segment is None:
                return
            for following in self._segments[idx + 1:]:
                following.delete()
            kept = list(self._segments[:idx])
            if segment.base_offset == offset and idx != 0:
                segment.delete()
            else:
                replacement = segment.truncated()
                for ms, entry in SegmentScanner(segment):
                    if ms.offset() >= offset:
                        break
                    replacement.write_message_set(ms, [entry])
                replacement.replace(segment)
                kept.append(replacement)
            with self._active_lock:
                self._active = kept[-1]
            self._segments = kept
            self.epoch_cache.clear_latest(offset)

    def notify_leo(self, waiter: Hashable, leo: int) -> threading.Event:
        """Event set when data past leo arrives; already set if leo is stale."""
        return self.active_segment().wait_for_leo(waiter, leo)

    def _check_and_perform_split(self) -> bool:
        while True:
            active = self.active_segment()
            if not active.check_split(self.options.log_roll_time):
                return False
            try:
                self._split(active)
            except SegmentExistsError:
                # Another thread rolled the segment; check the new one.
                continue
            active.seal()
            return True

    def _split(self, old_active: Segment) -> None:
        offset = self.newest_offset() + 1
        logger.debug("Appending new log segment for %s with base offset %d", self.path, offset)
        segment = Segment(self.path, offset, self.options.max_segment_bytes, True, "")
        with self._active_lock:
            if self._active is not old_active:
                segment.delete()
                raise SegmentExistsError()
            self._active = segment
        with self._lock:
            self._segments = self._segments + [segment]

    def clean(self) -> None:
        """Apply retention and, if enabled, compaction."""
        with self._lock:
            old_segments = list(self._segments)
        cleaned, epoch_cache = self._clean(old_segments)
        with self._lock:
            current = self._segments
            cleaned = list(cleaned)
            if len(current) > len(old_segments):
                # Segments were added while cleaning; put them back on top.
                added = current[len(old_segments):]
                cleaned.extend(added)
                if epoch_cache is not None:
                    epoch_cache.rebase(self.epoch_cache, added[0].base_offset)
            self._segments = cleaned
            if epoch_cache is not None:
                self.epoch_cache.replace(epoch_cache)
            else:
                self.epoch_cache.clear_earliest(self._segments[0].base_offset)

    def _clean(self, segments: List[Segment]) -> Tuple[Sequence[Segment], Optional[LeaderEpochCache]]:
        cleaned = self._delete_cleaner.clean(segments)
        epoch_cache = None
        if self.options.compact:
            cleaned, epoch_cache = self._compact_cleaner.compact(self.high_watermark(), cleaned)
        return cleaned, epoch_cache

    def _cleaner_loop(self) -> None:
        while not self.closed.wait(self.options.cleaner_interval):
            try:
                if self._check_and_perform_split():
                    continue
            except Exception:
                logger.exception("Failed to split log %s", self.path)
                continue
            try:
                self.clean()
            except Exception:
                logger.exception("Failed to clean log %s", self.path)

    def _checkpoint_hw_loop(self) -> None:
        while not self.closed.wait(self.options.hw_checkpoint_interval):
            with self._lock:
                if self.closed.is_set():
                    return
                self._checkpoint_hw()

    def _checkpoint_hw(self) -> None:
        _write_atomic(os.path.join(self.path, HW_FILE_NAME), str(self._hw))

    def close(self) -> None:
        """Checkpoint the high watermark and close every segment."""
        with self._lock:
            if self.closed.is_set():
                return
            self._checkpoint_hw()
            self.closed.set()
            for segment in self._segments:
                segment.close()

    def delete(self) -> None:
        """Close the log and remove its directory."""
        self.close()
        shutil.rmtree(self.path, ignore_errors=True)

    def __enter__(self) -> "CommitLog":
        return self

    def __exit__(self, *args) -> None:
        self.close()