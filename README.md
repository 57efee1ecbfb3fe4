# liftlog

`liftlog` is a durable, file-backed write-ahead log for message streams. It
keeps records in segments on disk. Each segment is a log file paired with an
offset index file. On top of the segments, `liftlog.commitlog.CommitLog`
offers:

- appending batches of records (`append`) or already encoded message sets
  (`append_message_set`). Both return the offset of each message;
- readers that return either every written message or only committed ones.
  Committed messages are those up to and including the high watermark;
- lookup of the earliest offset at or after a timestamp;
- truncation from a given offset onwards;
- retention by age, message count and total bytes;
- key-based compaction. It keeps only the latest message for each key up to
  the high watermark, and never touches the active segment;
- a leader epoch checkpoint file that records the first offset of each leader
  epoch;
- recovery of segments, the high watermark and leader epochs when a log
  directory is opened again.

The package has no dependencies outside the standard library.

## Usage

```python
from liftlog.commitlog import CommitLog, Options
from liftlog.message import Record

with CommitLog(Options(path="/tmp/my-stream")) as log:
    offsets = log.append([
        Record(key=b"user-1", value=b"signed up", timestamp=1, leader_epoch=1),
        Record(key=b"user-1", value=b"logged in", timestamp=2, leader_epoch=1),
    ])

    # Mark everything so far as committed.
    log.set_high_watermark(log.newest_offset())

    reader = log.new_reader(0, False)
    for _ in offsets:
        result = reader.read_message()
        print(result.offset, result.message.key(), result.message.value())
```

`Reader.read_message` returns a `ReadResult` with four fields: `message`,
`offset`, `timestamp` and `leader_epoch`. A reader made with `uncommitted`
set to true returns messages as soon as they are written. A committed reader
stops at the high watermark and blocks until the high watermark moves.

A blocking read can be stopped. Pass a `threading.Event` as `cancel` and set
it. The read then raises `EOFError`. The same happens when the log is closed
while a read is waiting. If a message fails its CRC check, the read raises
`CorruptMessageError`.

### Options

`Options` holds every setting. A value of zero means the default is used or
the limit is switched off.

| field | meaning | default |
|---|---|---|
| `path` | log directory (required; an empty path raises `ValueError`) | — |
| `name` | name used for the leader epoch cache and compaction logging | `""` |
| `max_segment_bytes` | size at which a new segment is rolled | 1 GiB |
| `max_log_bytes` | retention by total bytes | off |
| `max_log_messages` | retention by message count | off |
| `max_log_age` | retention by age, in nanoseconds or a `timedelta` | off |
| `compact` | compact the log when cleaning | `False` |
| `compact_max_workers` | threads used to scan keys during compaction | 10 |
| `cleaner_interval` | seconds between background cleaning runs | 300 |
| `hw_checkpoint_interval` | seconds between high watermark checkpoints | 5 |
| `log_roll_time` | nanoseconds after a segment's first write before a new one is rolled | off |

`CommitLog.clean()` applies the retention limits and, when `compact` is set,
compaction. A background thread runs it every `cleaner_interval`. When that
thread rolls a new segment instead, it skips cleaning for that tick. A second
thread writes the high watermark to `replication-offset-checkpoint` in the log
directory. `close()` writes it too.

`CommitLog.truncate(offset)` drops every message from `offset` onwards. It
also drops the leader epoch entries that start at or after that offset.
`CommitLog.delete()` closes the log and removes its directory.

### Offsets and epochs

- `oldest_offset()` and `newest_offset()` return `-1` when the log is empty.
- `offset_for_timestamp(ts)` returns the first offset whose timestamp is at
  least `ts`. When `ts` is past the end of the log, it returns the next
  offset to be written.
- `last_offset_for_leader_epoch(epoch)` returns the start offset of the next
  larger epoch. When there is none, it returns the newest offset.
- `new_leader_epoch(epoch)` records the newest offset as the start of `epoch`.
- `notify_leo(waiter, leo)` returns a `threading.Event`. The event is set
  when data past `leo` is written to the active segment. If `leo` is no
  longer the log end, it is set already.

### Lower-level pieces

The building blocks can also be used on their own:

- `liftlog.segment.Segment` and `SegmentScanner`: one segment and its message sets.
- `liftlog.index.Index` and `IndexScanner`: the offset index.
- `liftlog.message_set` and `liftlog.message`: the binary message format.
- `liftlog.leader_epoch_cache.LeaderEpochCache`.
- `liftlog.delete_cleaner.DeleteCleaner`.
- `liftlog.compact_cleaner.CompactCleaner`.

### Server address lists

`liftlog.servers.normalize_nats_servers` turns repeated, comma-separated
address options into one clean list:

```python
from liftlog.servers import normalize_nats_servers

normalize_nats_servers([" nats://localhost:1111, nats://localhost:2222 ", "nats://localhost:3333"])
# ['nats://localhost:1111', 'nats://localhost:2222', 'nats://localhost:3333']
```

It does not check that the addresses are valid URLs.

## Errors

Log failures raise subclasses of `liftlog.errors.CommitLogError`:

- `SegmentNotFoundError`
- `EntryNotFoundError`
- `SegmentClosedError`
- `SegmentExistsError`
- `SegmentReplacedError`
- `IndexCorruptError`
- `CorruptMessageError`

A malformed leader epoch checkpoint raises `ValueError`. Diagnostic messages
go through the standard `logging` module.

## What this package does not do

`liftlog` is the storage layer only. It has no message broker, no network
server or client API, and no clustering, replication or leader election.
It does not connect to NATS. It also has no command-line program, so there is
nothing to run. Use it as a library.