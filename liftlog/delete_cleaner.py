"""Retention policy that deletes whole segments by age, message count and size."""

from __future__ import annotations

import datetime
import logging
from typing import Callable, List, Sequence, Union

from .segment import Segment, now_ns

logger = logging.getLogger(__name__)

Duration = Union[int, datetime.timedelta]


def _to_ns(age: Duration) -> int:
    if isinstance(age, datetime.timedelta):
        return (age // datetime.timedelta(microseconds=1)) * 1000
    return int(age)


def compute_ttl(age: Duration) -> int:
    """Age cutoff in Unix nanoseconds: now minus age."""
    return now_ns() - _to_ns(age)


class DeleteCleaner:
    """Deletes old segments to satisfy the retention limits.

    A limit of zero is disabled. Ages are in nanoseconds or a timedelta.
    """

    def __init__(self, name: str, max_bytes: int = 0, max_messages: int = 0,
                 max_age: Duration = 0) -> None:
        self.name = name
        self.max_bytes = max_bytes
        self.max_messages = max_messages
        self.max_age = _to_ns(max_age)
        self.clock: Callable[[], int] = now_ns

    def _no_retention_limits(self) -> bool:
        return self.max_bytes == 0 and self.max_messages == 0 and self.max_age == 0

    def clean(self, segments: Sequence[Segment]) -> List[Segment]:
        """Apply the limits and return the segments that remain.

        Deletion happens at segment granularity and the last (active)
        segment is always kept.
        """
        if not segments or self._no_retention_limits():
            return segments
        logger.debug(
            "Cleaning log %s based on retention policy bytes=%d messages=%d age=%d",
            self.name, self.max_bytes, self.max_messages, self.max_age,
        )
        result = list(segments)
        if self.max_age > 0:
            result = self._apply_age_limit(result)
        if self.max_messages > 0:
            result = self._apply_messages_limit(result)
        if self.max_bytes > 0:
            result = self._apply_bytes_limit(result)
        logger.debug("Finished cleaning log %s", self.name)
        return result

    def _apply_messages_limit(self, segments: List[Segment]) -> List[Segment]:
        if len(segments) <= 1:
            return segments
        kept: List[Segment] = []
        total = 0
        cut = -1
        for i in range(len(segments) - 1, -1, -1):
            total += segments[i].message_count()
            if total > self.max_messages:
                cut = i
                break
            kept.append(segments[i])
        for segment in segments[:cut + 1]:
            segment.delete()
        kept.reverse()
        return kept

    def _apply_bytes_limit(self, segments: List[Segment]) -> List[Segment]:
        last = segments[-1]
        kept = [last]
        total = last.position()
        cut = -1
        for i in range(len(segments) - 2, -1, -1):
            total += segments[i].position()
            if total > self.max_bytes:
                cut = i
                break
            kept.append(segments[i])
        for segment in segments[:cut + 1]:
            segment.delete()
        kept.reverse()
        return kept

    def _apply_age_limit(self, segments: List[Segment]) -> List[Segment]:
        if len(segments) == 1:
            return segments
        ttl = self.clock() - self.max_age
        last_index = len(segments) - 1
        start = 0
        for i, segment in enumerate(segments):
            if i != last_index and segment.last_write_time < ttl:
                segment.delete()
            else:
                start = i
                break
        return segments[start:]