import os

from liftlog.compact_cleaner import CompactCleaner
from liftlog.message import Record
from liftlog.message_set import message_set_from_records
from liftlog.segment import Segment, SegmentScanner

ENTRIES = [
    (b"foo", b"first"),
    (b"bar", b"first"),
    (b"foo", b"second"),
    (b"foo", b"third"),
    (b"bar", b"second"),
    (b"baz", b"first"),
    (b"baz", b"second"),
    (b"qux", b"first"),
    (b"foo", b"fourth"),
    (b"baz", b"third"),
]


def build_segments(directory, records, per_segment):
    segments = []
    for start in range(0, len(records), per_segment):
        segment = Segment(str(directory), start, 1024, True, "")
        for offset in range(start, min(start + per_segment, len(records))):
            data, entries = message_set_from_records(
                offset, segment.position(), [records[offset]]
            )
            segment.write_message_set(data, entries)
        segments.append(segment)
    return segments


def contents(segments):
    return [
        (ms.offset(), ms.message().key(), ms.message().value())
        for segment in segments
        for ms, _ in SegmentScanner(segment)
    ]


def keyed_records(entries):
    return [Record(key=key, value=value) for key, value in entries]


def test_compact_no_segments():
    cleaner = CompactCleaner("foo")
    segments, epoch_cache = cleaner.compact(0, [])
    assert segments == []
    assert epoch_cache is None


def test_compact_one_segment(tmp_path):
    cleaner = CompactCleaner("foo")
    expected = [Segment(str(tmp_path), 0, 100, False, "")]
    actual, epoch_cache = cleaner.compact(0, expected)
    assert actual == expected
    assert epoch_cache is None


def test_compact_keeps_latest_per_key(tmp_path):
    segments = build_segments(tmp_path, keyed_records(ENTRIES), 2)
    compacted, _ = CompactCleaner("foo").compact(9, segments)
    assert contents(compacted) == [
        (4, b"bar", b"second"),
        (7, b"qux", b"first"),
        (8, b"foo", b"fourth"),
        # Present because it is in the active segment.
        (9, b"baz", b"third"),
    ]


def test_compact_up_to_hw(tmp_path):
    segments = build_segments(tmp_path, keyed_records(ENTRIES), 2)
    compacted, _ = CompactCleaner("foo").compact(5, segments)
    assert contents(compacted) == [
        (3, b"foo", b"third"),
        (4, b"bar", b"second"),
        (5, b"baz", b"first"),
        (6, b"baz", b"second"),
        (7, b"qux", b"first"),
        (8, b"foo", b"fourth"),
        (9, b"baz", b"third"),
    ]


def test_compact_retains_messages_without_keys(tmp_path):
    values = [b"first", b"second", b"third", b"fourth"]
    records = [Record(value=value) for value in values]
    segments = build_segments(tmp_path, records, 2)
    compacted, _ = CompactCleaner("foo").compact(3, segments)
    assert contents(compacted) == [
        (0, None, b"first"),
        (1, None, b"second"),
        (2, None, b"third"),
        (3, None, b"fourth"),
    ]


def test_compact_rebuilds_leader_epochs(tmp_path):
    records = []
    for epoch, key in ((1, b"foo"), (2, b"bar"), (3, b"baz")):
        for i in range(5):
            records.append(Record(key=key, value=str(len(records)).encode(),
                                  timestamp=len(records) + 1, leader_epoch=epoch))
    segments = build_segments(tmp_path, records, 1)
    assert len(segments) == 15

    compacted, epoch_cache = CompactCleaner("foo").compact(14, segments)

    assert [segment.base_offset for segment in compacted] == [4, 9, 14]
    assert epoch_cache.last_leader_epoch() == 3
    assert epoch_cache.last_offset_for_leader_epoch(0) == 4
    assert epoch_cache.last_offset_for_leader_epoch(1) == 9
    assert epoch_cache.last_offset_for_leader_epoch(2) == 14
    assert len(epoch_cache.epoch_offsets()) == 3
    assert not os.path.exists(tmp_path / "00000000000000000000.log")
    assert not os.path.exists(tmp_path / "00000000000000000000.log.cleaned")


def test_compact_result_independent_of_worker_count(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "many"
    first.mkdir()
    second.mkdir()
    one, _ = CompactCleaner("foo", max_workers=1).compact(
        9, build_segments(first, keyed_records(ENTRIES), 3))
    many, _ = CompactCleaner("foo", max_workers=8).compact(
        9, build_segments(second, keyed_records(ENTRIES), 3))
    assert contents(one) == contents(many)
    assert [s.base_offset for s in one] == [s.base_offset for s in many]