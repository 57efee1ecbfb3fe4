"""Searches over ordered lists of log segments."""

from __future__ import annotations

import bisect
from typing import Callable, List, Optional, Sequence, Tuple


def _search(n: int, predicate: Callable[[int], bool]) -> int:
    """Smallest index in [0, n) for which predicate is true, or n."""
    return bisect.bisect_left(range(n), True, key=predicate)


def find_segment(segments: Sequence, offset: int) -> Tuple[Optional[object], int]:
    """Return the first segment whose next offset is greater than offset.

    When there is none, return None and the index where it would be.
    """
    n = len(segments)
    idx = _search(n, lambda i: segments[i].next_offset() > offset)
    if idx == n:
        return None, idx
    return segments[idx], idx


def find_segment_contains(segments: Sequence, offset: int) -> Tuple[Optional[object], bool]:
    """Return the segment found by find_segment and whether offset lies within its bounds.

    Because segments may be compacted, lying within the bounds does not mean
    the offset is actually present.
    """
    segment, _ = find_segment(segments, offset)
    if segment is None:
        return None, False
    return segment, segment.base_offset <= offset


def find_segment_index_by_timestamp(segments: Sequence, timestamp: int) -> int:
    """Index of the first segment whose base timestamp exceeds timestamp.

    Returns len(segments) if there is no such segment. Raises the error met
    while reading a segment's first index entry, if any.
    """
    errors: List[BaseException] = []

    def newer(i: int) -> bool:
        try:
            entry = segments[i].index.read_entry_at_log_offset(0)
        except (EOFError, OSError) as exc:
            errors.append(exc)
            return True
        return entry.timestamp > timestamp

    idx = _search(len(segments), newer)
    if errors:
        raise errors[-1]
    return idx


def find_segment_by_base_offset(segments: Sequence, offset: int) -> Optional[object]:
    """Return the first segment whose base offset is at least offset, or None."""
    n = len(segments)
    idx = _search(n, lambda i: segments[i].base_offset >= offset)
    if idx == n:
        return None
    return segments[idx]


def round_down(total: int, factor: int) -> int:
    """Round total down to a multiple of factor."""
    return factor * (total // factor)