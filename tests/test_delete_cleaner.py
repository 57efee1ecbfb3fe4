import datetime
import os
import time

import pytest

from liftlog.delete_cleaner import DeleteCleaner, compute_ttl
from liftlog.message import Record
from liftlog.message_set import message_set_from_records
from liftlog.segment import Segment, SegmentScanner


@pytest.fixture
def make_segment(tmp_path):
    created = []

    def factory(base_offset, max_bytes):
        segment = Segment(tmp_path, base_offset, max_bytes, False, "")
        created.append(segment)
        return segment

    yield factory
    for segment in created:
        segment.close()


def write_to_segment(segment, offset, data, timestamp=None):
    record = Record(
        value=data,
        timestamp=time.time_ns() if timestamp is None else timestamp,
        leader_epoch=42,
    )
    ms, entries = message_set_from_records(offset, segment.position(), [record])
    segment.write_message_set(ms, entries)


def test_no_segments():
    cleaner = DeleteCleaner("foo", max_bytes=100)
    assert cleaner.clean([]) == []


def test_no_retention_set(make_segment):
    cleaner = DeleteCleaner("foo")
    expected = [make_segment(0, 100)]
    assert cleaner.clean(expected) == expected


def test_one_segment(make_segment):
    cleaner = DeleteCleaner("foo", max_bytes=100)
    expected = [make_segment(0, 100)]
    assert cleaner.clean(expected) == expected


def test_bytes(make_segment):
    cleaner = DeleteCleaner("foo", max_bytes=100)
    segments = []
    for i in range(5):
        segment = make_segment(i, 20)
        write_to_segment(segment, i, b"blah")
        segments.append(segment)
    actual = cleaner.clean(segments)
    assert [s.base_offset for s in actual] == [3, 4]
    assert not os.path.exists(segments[0].index.name())
    assert os.path.exists(segments[3].index.name())


def test_bytes_below_limit(make_segment):
    cleaner = DeleteCleaner("foo", max_bytes=50)
    expected = [make_segment(i, 20) for i in range(5)]
    assert cleaner.clean(expected) == expected


def test_messages(make_segment):
    cleaner = DeleteCleaner("foo", max_messages=10)
    segments = []
    for i in range(20):
        segment = make_segment(i, 20)
        write_to_segment(segment, i, b"blah")
        segments.append(segment)
    actual = cleaner.clean(segments)
    assert [s.base_offset for s in actual] == list(range(10, 20))
    assert segments[9].closed
    assert not segments[10].closed


def test_messages_below_limit(make_segment):
    cleaner = DeleteCleaner("foo", max_messages=100)
    expected = [make_segment(i, 20) for i in range(5)]
    assert cleaner.clean(expected) == expected


def test_bytes_messages(make_segment):
    cleaner = DeleteCleaner("foo", max_bytes=240, max_messages=15)
    segments = []
    for i in range(20):
        segment = make_segment(i, 20)
        write_to_segment(segment, i, b"blah")
        segments.append(segment)
    actual = cleaner.clean(segments)
    assert [s.base_offset for s in actual] == list(range(15, 20))


def test_age(make_segment):
    cleaner = DeleteCleaner("foo", max_age=100)
    cleaner.clock = lambda: 200
    segments = []
    for i in range(20):
        segment = make_segment(i, 20)
        ms, entries = message_set_from_records(i, 0, [Record(timestamp=i * 10)])
        segment.write_message_set(ms, entries)
        segments.append(segment)
    actual = cleaner.clean(segments)
    assert [s.base_offset for s in actual] == list(range(10, 20))


def test_below_age_limit(make_segment):
    cleaner = DeleteCleaner("foo", max_age=50)
    cleaner.clock = lambda: 50
    expected = []
    for i in range(5):
        segment = make_segment(i, 20)
        ms, entries = message_set_from_records(i, 0, [Record(timestamp=i * 10)])
        segment.write_message_set(ms, entries)
        expected.append(segment)
    assert cleaner.clean(expected) == expected


def test_age_keeps_active_segment(make_segment):
    cleaner = DeleteCleaner("foo", max_age=1)
    cleaner.clock = lambda: 10_000
    segments = []
    for i in range(3):
        segment = make_segment(i, 20)
        write_to_segment(segment, i, b"x", timestamp=1)
        segments.append(segment)
    actual = cleaner.clean(segments)
    assert [s.base_offset for s in actual] == [2]


def test_messages_compacted(make_segment):
    cleaner = DeleteCleaner("foo", max_messages=10)

    seg1 = make_segment(0, 1024)
    for offset in (2, 4, 12):
        write_to_segment(seg1, offset, b"blah")
    seg2 = make_segment(13, 1024)
    for offset in (13, 14, 15):
        write_to_segment(seg2, offset, b"blah")

    actual = cleaner.clean([seg1, seg2])
    assert len(actual) == 2

    scanner = SegmentScanner(actual[0])
    assert [scanner.scan()[1].offset for _ in range(3)] == [2, 4, 12]
    with pytest.raises(EOFError):
        scanner.scan()

    scanner = SegmentScanner(actual[1])
    assert [scanner.scan()[1].offset for _ in range(3)] == [13, 14, 15]
    with pytest.raises(EOFError):
        scanner.scan()


def test_compute_ttl():
    before = time.time_ns()
    ttl = compute_ttl(1000)
    after = time.time_ns()
    assert before - 1000 <= ttl <= after - 1000


def test_compute_ttl_timedelta():
    before = time.time_ns()
    ttl = compute_ttl(datetime.timedelta(seconds=1))
    after = time.time_ns()
    assert before - 1_000_000_000 <= ttl <= after - 1_000_000_000


def test_timedelta_age_converted():
    cleaner = DeleteCleaner("foo", max_age=datetime.timedelta(milliseconds=2))
    assert cleaner.max_age == 2_000_000