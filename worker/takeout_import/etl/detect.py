"""Choose an ingestion strategy from an archive's entry listing."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

from takeout_import.core.errors import UnsupportedArchiveError
from takeout_import.etl.archive import entry_suffix

logger = logging.getLogger(__name__)

SAVED_DIRECTORY = "Saved"
TABULAR_SUFFIXES = {".csv": ",", ".tsv": "\t"}
STRUCTURED_DOCUMENT_NAMES = ("Labeled places.json", "Saved Places.json")
STRUCTURED_SUFFIXES = (".geojson",)


class StrategyKind(enum.Enum):
    SAVED_LISTS = "saved_lists"
    STRUCTURED_DOCUMENT = "structured_document"


@dataclass(frozen=True)
class Strategy:
    kind: StrategyKind
    entries: List[str] = field(default_factory=list)
    # Tabular entries anywhere in the archive, used when the structured
    # document turns out to have no usable features.
    fallback_entries: List[str] = field(default_factory=list)

    @property
    def document(self) -> Optional[str]:
        if self.kind is StrategyKind.STRUCTURED_DOCUMENT and self.entries:
            return self.entries[0]
        return None


def is_tabular(entry: str) -> bool:
    return entry_suffix(entry) in TABULAR_SUFFIXES


def delimiter_for(entry: str) -> str:
    return TABULAR_SUFFIXES.get(entry_suffix(entry), ",")


def is_saved_list(entry: str) -> bool:
    return is_tabular(entry) and SAVED_DIRECTORY in PurePosixPath(entry).parts[:-1]


def is_structured_document(entry: str) -> bool:
    name = PurePosixPath(entry).name
    return name in STRUCTURED_DOCUMENT_NAMES or entry_suffix(entry) in STRUCTURED_SUFFIXES


def _structured_rank(entry: str) -> int:
    name = PurePosixPath(entry).name
    if name in STRUCTURED_DOCUMENT_NAMES:
        return STRUCTURED_DOCUMENT_NAMES.index(name)
    return len(STRUCTURED_DOCUMENT_NAMES)


class ArchiveFormatDetector:
    """Priority-ordered presence checks; the first match wins."""

    def detect(self, entries: Iterable[str]) -> Strategy:
        entries = list(entries)

        saved_lists = [entry for entry in entries if is_saved_list(entry)]
        if saved_lists:
            logger.info("Detected %d saved lists in tabular format", len(saved_lists))
            return Strategy(kind=StrategyKind.SAVED_LISTS, entries=saved_lists)

        documents = sorted((entry for entry in entries if is_structured_document(entry)), key=_structured_rank)
        if documents:
            logger.info("No saved lists found; using structured document %s", documents[0])
            return Strategy(
                kind=StrategyKind.STRUCTURED_DOCUMENT,
                entries=documents[:1],
                fallback_entries=[entry for entry in entries if is_tabular(entry)],
            )

        logger.warning("Unsupported archive layout. Available files: %s", entries)
        raise UnsupportedArchiveError(entries)
