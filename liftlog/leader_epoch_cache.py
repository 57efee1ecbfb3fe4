"""Cache of the start offset of each leader epoch, optionally checkpointed to disk."""

from __future__ import annotations

import bisect
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from typing import IO, Dict, List, Optional, Union

LEADER_EPOCH_FILE_NAME = "leader-epoch-checkpoint"
LEADER_EPOCH_FILE_V0 = 0

logger = logging.getLogger(__name__)


@dataclass
class EpochOffset:
    """The start offset of a leader epoch."""

    leader_epoch: int
    start_offset: int


def _plural(count: int, word: str) -> str:
    if count == 1:
        return f"{count} {word}"
    if word.endswith("y"):
        return f"{count} {word[:-1]}ies"
    return f"{count} {word}s"


def read_leader_epoch_offsets(stream: IO) -> List[EpochOffset]:
    """Parse a leader epoch checkpoint file.

    The v0 format is whitespace separated: version, number of entries, then
    pairs of leader epoch and start offset.
    """
    content: Union[str, bytes] = stream.read()
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    words = iter(content.split())

    raw_version = next(words, None)
    if raw_version is None:
        raise ValueError("missing version")
    try:
        version = int(raw_version)
    except ValueError as exc:
        raise ValueError(f"invalid file version value: {exc}") from exc
    if version > LEADER_EPOCH_FILE_V0:
        raise ValueError(f"unknown version: {version}")

    raw_count = next(words, None)
    if raw_count is None:
        raise ValueError("missing number of entries")
    try:
        num_entries = int(raw_count)
    except ValueError as exc:
        raise ValueError(f"invalid entries count value: {exc}") from exc

    seen: Dict[int, int] = {}
    offsets: List[EpochOffset] = []
    for raw_epoch in words:
        try:
            leader_epoch = int(raw_epoch)
        except ValueError as exc:
            raise ValueError(f"invalid leader epoch value: {exc}") from exc
        raw_offset = next(words, None)
        if raw_offset is None:
            raise ValueError("missing start offset for epoch")
        try:
            start_offset = int(raw_offset)
        except ValueError as exc:
            raise ValueError(f"invalid epoch start offset value: {exc}") from exc
        if leader_epoch in seen:
            raise ValueError(f"duplicate leader epoch {leader_epoch}")
        seen[leader_epoch] = start_offset
        offsets.append(EpochOffset(leader_epoch, start_offset))

    if num_entries != len(offsets):
        raise ValueError(f"expected {_plural(num_entries, 'entry')}, got {len(offsets)}")
    return offsets


class LeaderEpochCache:
    """Ordered leader epoch start offsets for one log.

    With a path, every change is written atomically to a checkpoint file in
    that directory and existing entries are loaded from it; without one the
    cache lives in memory only.
    """

    def __init__(self, name: str, path=None) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._offsets: List[EpochOffset] = []
        self._checkpoint_file: Optional[str] = None
        if path is not None:
            checkpoint = os.path.join(os.fspath(path), LEADER_EPOCH_FILE_NAME)
            self._checkpoint_file = checkpoint
            if os.path.exists(checkpoint):
                with open(checkpoint, "r", encoding="utf-8") as stream:
                    self._offsets = read_leader_epoch_offsets(stream)

    def epoch_offsets(self) -> List[EpochOffset]:
        """A copy of the cached entries, oldest first."""
        with self._lock:
            return [EpochOffset(e.leader_epoch, e.start_offset) for e in self._offsets]

    def assign(self, epoch: int, offset: int) -> None:
        """Assign epoch to offset; an epoch once assigned is not reassigned."""
        with self._lock:
            self._assign(epoch, offset)

    def last_offset_for_leader_epoch(self, epoch: int) -> int:
        """Start offset of the first epoch after epoch, or -1 if there is none."""
        with self._lock:
            keys = [e.leader_epoch for e in self._offsets]
            i = bisect.bisect_left(keys, epoch + 1)
            if i < len(self._offsets):
                return self._offsets[i].start_offset
            return -1

    def last_leader_epoch(self) -> int:
        with self._lock:
            return self._latest_epoch()

    def clear_latest(self, offset: int) -> None:
        """Remove entries whose start offset is at or after offset."""
        with self._lock:
            if offset > self._latest_offset():
                return
            filtered = [e for e in self._offsets if e.start_offset < offset]
            removed = len(self._offsets) - len(filtered)
            self._offsets = filtered
            self._flush()
            logger.debug(
                "Removed latest %s from leader epoch cache based on passed offset %d "
                "leaving %d in epoch file for log %s",
                _plural(removed, "entry"), offset, len(self._offsets), self.name,
            )

    def clear_earliest(self, offset: int) -> None:
        """Drop entries starting before offset, keeping the last of them moved to offset."""
        with self._lock:
            if self._earliest_offset() >= offset:
                return
            earliest = [e for e in self._offsets if e.start_offset < offset]
            if not earliest:
                return
            removed = len(earliest)
            self._offsets = self._offsets[removed:]
            if not self._offsets or offset < self._earliest_offset():
                self._offsets.insert(0, EpochOffset(earliest[-1].leader_epoch, offset))
                removed -= 1
            self._flush()
            logger.debug(
                "Removed earliest %s from leader epoch cache based on passed offset %d "
                "leaving %d in epoch file for log %s",
                _plural(removed, "entry"), offset, len(self._offsets), self.name,
            )

    def rebase(self, other: "LeaderEpochCache", offset: int) -> None:
        """Add the entries of other that start at or after offset."""
        with other._lock:
            starts = [e.start_offset for e in other._offsets]
            i = bisect.bisect_left(starts, offset)
            pending = list(other._offsets[i:])
        with self._lock:
            for epoch in pending:
                if epoch.leader_epoch > self._latest_epoch():
                    self._assign(epoch.leader_epoch, epoch.start_offset)
            self._flush()

    def replace(self, other: "LeaderEpochCache") -> None:
        """Replace the contents of this cache with those of other."""
        with other._lock:
            entries = list(other._offsets)
        with self._lock:
            self._offsets = entries
            self._flush()

    def earliest_offset(self) -> int:
        with self._lock:
            return self._earliest_offset()

    def latest_offset(self) -> int:
        with self._lock:
            return self._latest_offset()

    def _earliest_offset(self) -> int:
        return self._offsets[0].start_offset if self._offsets else -1

    def _latest_offset(self) -> int:
        return self._offsets[-1].start_offset if self._offsets else -1

    def _latest_epoch(self) -> int:
        return self._offsets[-1].leader_epoch if self._offsets else 0

    def _assign(self, epoch: int, offset: int) -> None:
        latest_epoch = self._latest_epoch()
        latest_offset = self._latest_offset()
        change = self._change_message(epoch, latest_epoch, offset, latest_offset)
        if epoch > latest_epoch and offset >= latest_offset:
            self._offsets.append(EpochOffset(epoch, offset))
            self._flush()
            logger.debug(
                "Updated log leader epoch. %s. Cache now contains %s.",
                change, _plural(len(self._offsets), "entry"),
            )
        elif epoch < latest_epoch:
            logger.warning(
                "Received log leader epoch assignment for an epoch < latest epoch. "
                "This implies messages have arrived out of order. %s", change,
            )
        elif offset < latest_offset:
            logger.warning(
                "Received log leader epoch assignment for an offset < latest offset "
                "for the most recently stored leader epoch. This implies messages "
                "have arrived out of order. %s", change,
            )

    def _change_message(self, new_epoch: int, last_epoch: int,
                        new_offset: int, last_offset: int) -> str:
        return (
            f"New: {{epoch:{new_epoch}, offset:{new_offset}}}, "
            f"Previous: {{epoch:{last_epoch}, offset:{last_offset}}} for log {self.name}"
        )

    def _flush(self) -> None:
        if self._checkpoint_file is None:
            return
        lines = [f"{LEADER_EPOCH_FILE_V0}\n", f"{len(self._offsets)}\n"]
        lines.extend(f"{e.leader_epoch} {e.start_offset}\n" for e in self._offsets)
        directory = os.path.dirname(self._checkpoint_file) or "."
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".epoch-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as stream:
                stream.write("".join(lines))
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(tmp, self._checkpoint_file)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise