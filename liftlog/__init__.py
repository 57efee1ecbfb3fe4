"""File-backed segmented commit log with retention, compaction and leader epochs."""

__version__ = "0.0.1"

__all__ = [
    "commitlog",
    "compact_cleaner",
    "delete_cleaner",
    "errors",
    "index",
    "leader_epoch_cache",
    "message",
    "message_set",
    "reader",
    "segment",
    "servers",
    "util",
]