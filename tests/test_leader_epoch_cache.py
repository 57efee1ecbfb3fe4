import io
import os

import pytest

from liftlog.leader_epoch_cache import (
    LEADER_EPOCH_FILE_NAME,
    EpochOffset,
    LeaderEpochCache,
    read_leader_epoch_offsets,
)


def test_leader_epoch_cache(tmp_path):
    cache = LeaderEpochCache("foo", tmp_path)

    assert cache.last_offset_for_leader_epoch(0) == -1
    assert cache.last_leader_epoch() == 0

    cache.assign(1, 0)
    assert cache.last_offset_for_leader_epoch(1) == -1
    assert cache.last_offset_for_leader_epoch(0) == 0

    cache.assign(1, 10)
    assert cache.last_offset_for_leader_epoch(0) == 0

    cache.assign(2, 10)
    cache.assign(3, 15)
    cache.assign(4, 30)
    cache.assign(5, 40)
    assert cache.last_leader_epoch() == 5

    cache.clear_latest(100)
    assert cache.last_leader_epoch() == 5

    cache.clear_latest(20)
    assert cache.last_leader_epoch() == 3
    assert cache.earliest_offset() == 0
    assert cache.latest_offset() == 15

    cache.clear_earliest(0)
    assert cache.earliest_offset() == 0

    cache.clear_earliest(15)
    assert cache.earliest_offset() == 15
    assert cache.latest_offset() == 15

    cache.clear_earliest(16)
    assert cache.earliest_offset() == 16
    assert cache.latest_offset() == 16


def test_rebase(tmp_path):
    l1 = LeaderEpochCache("foo", tmp_path / "a")
    (tmp_path / "a").mkdir()
    l1.assign(3, 15)
    l1.assign(4, 30)
    l1.assign(5, 40)

    (tmp_path / "b").mkdir()
    l2 = LeaderEpochCache("foo", tmp_path / "b")
    l2.assign(1, 0)
    l2.assign(2, 10)

    l2.rebase(l1, 3)

    assert len(l2.epoch_offsets()) == 5
    assert l2.earliest_offset() == 0
    assert l2.latest_offset() == 40
    assert l2.last_leader_epoch() == 5


def test_replace(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    l1 = LeaderEpochCache("foo", tmp_path / "a")
    l1.assign(3, 15)
    l1.assign(4, 30)
    l1.assign(5, 40)

    l2 = LeaderEpochCache("foo", tmp_path / "b")
    l2.assign(3, 17)
    l2.assign(4, 33)

    l1.replace(l2)

    assert len(l1.epoch_offsets()) == 2
    assert l1.earliest_offset() == 17
    assert l1.latest_offset() == 33
    assert l1.last_leader_epoch() == 4


def test_read_leader_epoch_offsets(tmp_path):
    cache = LeaderEpochCache("foo", tmp_path)
    for epoch, offset in [(1, 0), (2, 10), (3, 15), (4, 30), (5, 40)]:
        cache.assign(epoch, offset)

    expected = [
        EpochOffset(1, 0),
        EpochOffset(2, 10),
        EpochOffset(3, 15),
        EpochOffset(4, 30),
        EpochOffset(5, 40),
    ]
    with open(tmp_path / LEADER_EPOCH_FILE_NAME, "r", encoding="utf-8") as stream:
        assert read_leader_epoch_offsets(stream) == expected


def test_checkpoint_is_reloaded(tmp_path):
    cache = LeaderEpochCache("foo", tmp_path)
    cache.assign(1, 0)
    cache.assign(2, 7)

    reopened = LeaderEpochCache("foo", tmp_path)
    assert reopened.epoch_offsets() == [EpochOffset(1, 0), EpochOffset(2, 7)]
    assert reopened.last_leader_epoch() == 2


def test_checkpoint_file_format(tmp_path):
    cache = LeaderEpochCache("foo", tmp_path)
    cache.assign(1, 0)
    cache.assign(2, 10)
    content = (tmp_path / LEADER_EPOCH_FILE_NAME).read_text(encoding="utf-8")
    assert content == "0\n2\n1 0\n2 10\n"


def test_cache_without_file_writes_nothing(tmp_path):
    cache = LeaderEpochCache("foo")
    cache.assign(1, 5)
    assert cache.epoch_offsets() == [EpochOffset(1, 5)]
    assert os.listdir(tmp_path) == []


def test_assign_out_of_order_is_ignored():
    cache = LeaderEpochCache("foo")
    cache.assign(3, 10)
    cache.assign(2, 20)
    cache.assign(4, 5)
    assert cache.epoch_offsets() == [EpochOffset(3, 10)]


def test_read_accepts_bytes_stream():
    stream = io.BytesIO(b"0\n1\n7 3\n")
    assert read_leader_epoch_offsets(stream) == [EpochOffset(7, 3)]


@pytest.mark.parametrize(
    "content, message",
    [
        ("", "missing version"),
        ("x", "invalid file version value"),
        ("1\n0\n", "unknown version: 1"),
        ("0\n", "missing number of entries"),
        ("0\n1\n5\n", "missing start offset for epoch"),
        ("0\n2\n1 0\n1 5\n", "duplicate leader epoch 1"),
        ("0\n2\n1 0\n", "expected 2 entries, got 1"),
        ("0\n1\na 0\n", "invalid leader epoch value"),
    ],
)
def test_read_errors(content, message):
    with pytest.raises(ValueError, match=message):
        read_leader_epoch_offsets(io.StringIO(content))