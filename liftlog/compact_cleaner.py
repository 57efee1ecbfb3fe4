"""Log compaction: keep only the latest message for each key."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

from .leader_epoch_cache import LeaderEpochCache
from .message_set import MessageSet, entries_for_message_set
from .segment import Segment, SegmentScanner

DEFAULT_COMPACT_MAX_WORKERS = 10

logger = logging.getLogger(__name__)


def _message_key(ms: MessageSet) -> Optional[bytes]:
    message = ms.message()
    return message.key() if message is not None else None


def _key_slot(key: Optional[bytes]) -> bytes:
    # A missing key and an empty key share one slot in the key table.
    return key if key is not None else b""


def _scan_segment(segment: Segment, hw: int) -> Dict[bytes, int]:
    """Latest offset of each key in the segment, ignoring offsets past hw."""
    latest: Dict[bytes, int] = {}
    for ms, _ in SegmentScanner(segment):
        offset = ms.offset()
        if offset > hw:
            break
        slot = _key_slot(_message_key(ms))
        latest[slot] = max(latest.get(slot, offset), offset)
    return latest


def _cleanup_empty_segment(new: Segment, old: Segment) -> None:
    new.delete()
    # The old segment is still in the read path, so mark it replaced.
    with old.lock:
        old.replaced = True
    old.delete()


class CompactCleaner:
    """Rewrites segments so that they keep only the last message for a key."""

    def __init__(self, name: str, max_workers: int = 0) -> None:
        self.name = name
        self.max_workers = max_workers or DEFAULT_COMPACT_MAX_WORKERS

    def compact(
        self, hw: int, segments: Sequence[Segment]
    ) -> Tuple[Sequence[Segment], Optional[LeaderEpochCache]]:
        """Compact every segment but the last, up to the high watermark.

        Returns the resulting segments and an in-memory leader epoch cache
        holding the start offset of each epoch, or None if nothing was
        compacted.
        """
        if len(segments) <= 1:
            return segments, None
        logger.debug("Compacting log %s", self.name)
        started = time.monotonic()
        compacted, epoch_cache, removed = self._compact(hw, list(segments))
        logger.debug(
            "Finished compacting log %s\n\tMessages Removed: %d\n"
            "\tSegments: %d -> %d\n\tDuration: %.3fs",
            self.name, removed, len(segments), len(compacted),
            time.monotonic() - started,
        )
        return compacted, epoch_cache

    def _scan_keys(self, hw: int, segments: List[Segment]) -> Dict[bytes, int]:
        workers = min(self.max_workers, len(segments))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            partials = list(pool.map(lambda seg: _scan_segment(seg, hw), segments))
        merged: Dict[bytes, int] = {}
        for partial in partials:
            for slot, offset in partial.items():
                merged[slot] = max(merged.get(slot, offset), offset)
        return merged

    def _compact(
        self, hw: int, segments: List[Segment]
    ) -> Tuple[List[Segment], LeaderEpochCache, int]:
        compacted: List[Segment] = []
        epoch_cache = LeaderEpochCache(self.name)
        removed = 0
        key_offsets = self._scan_keys(hw, segments)

        for segment in segments[:-1]:
            cleaned = segment.cleaned()
            for ms, _ in SegmentScanner(segment):
                offset = ms.offset()
                key = _message_key(ms)
                leader_epoch = ms.leader_epoch()
                latest = key_offsets.get(_key_slot(key), 0)
                # Keep messages without keys, the last one for each key and
                # everything past the high watermark.
                if key is None or offset == latest or offset >= hw:
                    entries = entries_for_message_set(cleaned.position(), ms)
                    cleaned.write_message_set(ms, entries)
                    if leader_epoch > epoch_cache.last_leader_epoch():
                        epoch_cache.assign(leader_epoch, offset)
                else:
                    removed += 1
            if cleaned.is_empty():
                _cleanup_empty_segment(cleaned, segment)
            else:
                cleaned.replace(segment)
                compacted.append(cleaned)

        last = segments[-1]
        compacted.append(last)
        for ms, _ in SegmentScanner(last):
            leader_epoch = ms.leader_epoch()
            if leader_epoch > epoch_cache.last_leader_epoch():
                epoch_cache.assign(leader_epoch, ms.offset())

        return compacted, epoch_cache, removed