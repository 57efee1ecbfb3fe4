"""Exceptions raised by the commit log."""


class CommitLogError(Exception):
    """Base class for commit log errors."""


class SegmentNotFoundError(CommitLogError, LookupError):
    """The segment could not be found."""

    def __init__(self, message: str = "segment not found") -> None:
        super().__init__(message)


class EntryNotFoundError(CommitLogError, LookupError):
    """A segment search could not find a specific entry."""

    def __init__(self, message: str = "entry not found") -> None:
        super().__init__(message)


class SegmentClosedError(CommitLogError):
    """A read or write was attempted on a closed segment."""

    def __init__(self, message: str = "segment has been closed") -> None:
        super().__init__(message)


class SegmentExistsError(CommitLogError):
    """A segment that already exists was to be created."""

    def __init__(self, message: str = "segment already exists") -> None:
        super().__init__(message)


class SegmentReplacedError(CommitLogError):
    """The segment was replaced by compaction; retry against the new one."""

    def __init__(self, message: str = "segment was replaced") -> None:
        super().__init__(message)


class IndexCorruptError(CommitLogError):
    """The index file holds inconsistent data."""

    def __init__(self, message: str = "corrupt index file") -> None:
        super().__init__(message)


class CorruptMessageError(CommitLogError):
    """A message's stored CRC does not match its contents."""