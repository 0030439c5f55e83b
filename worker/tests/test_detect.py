import pytest

from takeout_import.core.errors import UnsupportedArchiveError
from takeout_import.etl.detect import ArchiveFormatDetector, StrategyKind, delimiter_for, is_saved_list


def test_saved_lists_take_priority_over_structured_document():
    entries = [
        "Takeout/Maps (your places)/Saved Places.json",
        "Takeout/Saved/Tokyo.csv",
        "Takeout/Saved/Want to go.csv",
    ]

    strategy = ArchiveFormatDetector().detect(entries)

    assert strategy.kind is StrategyKind.SAVED_LISTS
    assert strategy.entries == ["Takeout/Saved/Tokyo.csv", "Takeout/Saved/Want to go.csv"]
    assert strategy.document is None


def test_structured_document_prefers_labeled_places():
    entries = [
        "Takeout/Maps/Saved Places.json",
        "Takeout/Maps/Labeled places.json",
        "Takeout/Maps/extra.geojson",
        "Takeout/Favorites.csv",
    ]

    strategy = ArchiveFormatDetector().detect(entries)

    assert strategy.kind is StrategyKind.STRUCTURED_DOCUMENT
    assert strategy.document == "Takeout/Maps/Labeled places.json"
    assert strategy.fallback_entries == ["Takeout/Favorites.csv"]


def test_unsupported_archive_lists_entries(caplog):
    entries = ["Takeout/archive_browser.html", "Takeout/Mail/inbox.mbox"]

    with caplog.at_level("WARNING"):
        with pytest.raises(UnsupportedArchiveError) as excinfo:
            ArchiveFormatDetector().detect(entries)

    assert excinfo.value.entries == entries
    assert "Saved/*.csv" in str(excinfo.value)
    assert "archive_browser.html" in " ".join(caplog.messages)


def test_saved_list_needs_saved_directory():
    assert is_saved_list("Saved/Tokyo.csv")
    assert is_saved_list("Takeout/Saved/Bars.TSV")
    assert not is_saved_list("Takeout/Tokyo.csv")
    assert not is_saved_list("Takeout/Saved/notes.txt")


def test_delimiter_for_suffix():
    assert delimiter_for("Saved/a.csv") == ","
    assert delimiter_for("Saved/a.tsv") == "\t"
