import sys
import zipfile
from pathlib import Path

import pytest

# Ensure `takeout_import` package is importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeStore:
    """In-memory stand-in for PlaceStore with find-or-create semantics."""

    def __init__(self, fail_names=()):
        self.places = {}
        self.lists = {}
        self.links = []
        self.fail_names = set(fail_names)

    def find_or_create_place(self, row):
        if row["name"] in self.fail_names:
            raise RuntimeError(f"cannot store {row['name']}")
        assert row["lat"] is not None and row["lng"] is not None
        existing = self.places.get(row["external_id"])
        if existing is not None:
            return existing["id"], False
        place_id = len(self.places) + 1
        self.places[row["external_id"]] = {"id": place_id, **row}
        return place_id, True

    def create_list(self, row):
        list_id = len(self.lists) + 1
        self.lists[list_id] = dict(row)
        return list_id

    def add_list_place(self, list_id, place_id, *, order, notes=None):
        self.links.append({"list_id": list_id, "place_id": place_id, "order": order, "notes": notes})

    def update_list_place_count(self, list_id, place_count):
        self.lists[list_id]["place_count"] = place_count


class FakeLookup:
    """Lookup service returning canned results keyed by query."""

    def __init__(self, results=None):
        self.results = results or {}
        self.queries = []

    def submit(self, query):
        self.queries.append(query)
        return self.results.get(query)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_lookup():
    return FakeLookup()


@pytest.fixture
def make_archive(tmp_path):
    """Write a zip archive from a mapping of entry name -> text content."""

    def _make(entries, name="takeout.zip"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for entry, content in entries.items():
                zf.writestr(entry, content)
        return str(path)

    return _make
