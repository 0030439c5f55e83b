"""Error taxonomy for the import pipeline."""

from typing import Iterable


class FatalJobError(RuntimeError):
    """Raised when a job cannot continue and must end in the ``error`` stage."""


class UnsupportedArchiveError(FatalJobError):
    """Raised when no known layout is recognised in an archive."""

    def __init__(self, entries: Iterable[str]):
        self.entries = list(entries)
        super().__init__('No "Saved/*.csv" or structured places document found in archive')


class ArchiveTooLargeError(FatalJobError):
    """Raised when the archive exceeds the configured size limit."""


class CollectionError(RuntimeError):
    """A single collection failed; the job skips it and continues."""


class InvalidStageTransition(RuntimeError):
    """Raised when a job is moved outside the fixed stage order."""
