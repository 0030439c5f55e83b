"""Read-only access to an uploaded export archive."""

from __future__ import annotations

import logging
import os
import zipfile
from pathlib import PurePosixPath
from typing import List, Optional

from takeout_import.core.errors import ArchiveTooLargeError, CollectionError, FatalJobError

logger = logging.getLogger(__name__)


class TakeoutArchive:
    """Thin wrapper around :class:`zipfile.ZipFile` exposing file entries as text."""

    def __init__(self, zip_file: zipfile.ZipFile) -> None:
        self._zip = zip_file
        self.entries: List[str] = [info.filename for info in zip_file.infolist() if not info.is_dir()]

    @classmethod
    def open(cls, path: str, max_bytes: Optional[int] = None) -> "TakeoutArchive":
        try:
            size = os.path.getsize(path)
        except OSError as exc:
            raise FatalJobError(f"Archive could not be read: {exc}") from exc
        if max_bytes is not None and size > max_bytes:
            raise ArchiveTooLargeError(f"Archive is {size} bytes; the maximum is {max_bytes}")

        try:
            zip_file = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError) as exc:
            raise FatalJobError(f"Archive could not be opened: {exc}") from exc

        archive = cls(zip_file)
        logger.info("Opened archive %s with %d entries", path, len(archive.entries))
        return archive

    def read_text(self, entry: str) -> str:
        try:
            data = self._zip.read(entry)
        except (KeyError, zipfile.BadZipFile, OSError) as exc:
            raise CollectionError(f"Failed to read {entry}") from exc
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CollectionError(f"Failed to decode {entry} as UTF-8") from exc

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "TakeoutArchive":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def entry_stem(entry: str) -> str:
    """Return an entry's file name without directories or extension."""
    return PurePosixPath(entry).stem


def entry_suffix(entry: str) -> str:
    return PurePosixPath(entry).suffix.lower()
