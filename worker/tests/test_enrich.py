import json

import pytest

from takeout_import.etl.enrich import APPROXIMATE_SUFFIX, EnrichmentStage
from takeout_import.etl.gazetteer import DEFAULT_REFERENCE, Gazetteer
from takeout_import.models import CandidateCollection, LookupResult, RawPlaceCandidate


def _collection(name, *candidates):
    return CandidateCollection(name=name, candidates=list(candidates))


def test_places_with_coordinates_skip_lookup(fake_lookup):
    place = RawPlaceCandidate(name="Shibuya", latitude=35.66, longitude=139.70)

    outcome = EnrichmentStage(fake_lookup).enrich(_collection("Tokyo", place))

    assert fake_lookup.queries == []
    assert outcome.places == [place]
    assert outcome.warnings == []


def test_lookup_match_fills_coordinates(fake_lookup):
    fake_lookup.results["1 Main St"] = LookupResult(latitude=1.0, longitude=2.0, display_name="1 Main St, Town")
    fake_lookup.results["Blue Bottle"] = LookupResult(latitude=3.0, longitude=4.0, display_name="Blue Bottle, Oakland")

    outcome = EnrichmentStage(fake_lookup).enrich(
        _collection(
            "Coffee",
            RawPlaceCandidate(name="Office", address="1 Main St"),
            RawPlaceCandidate(name="Blue Bottle"),
        )
    )

    assert fake_lookup.queries == ["1 Main St", "Blue Bottle"]
    office, cafe = outcome.places
    assert (office.latitude, office.longitude, office.address) == (1.0, 2.0, "1 Main St")
    assert (cafe.latitude, cafe.longitude, cafe.address) == (3.0, 4.0, "Blue Bottle, Oakland")
    assert outcome.lookups == 2
    assert outcome.approximate == 0


def test_unresolved_places_get_distinct_offsets(fake_lookup):
    names = ["Ramen A", "Ramen B", "Ramen C"]

    outcome = EnrichmentStage(fake_lookup).enrich(
        _collection("Tokyo eats", *(RawPlaceCandidate(name=n) for n in names))
    )

    latitudes = [place.latitude for place in outcome.places]
    assert latitudes == sorted(set(latitudes))
    assert outcome.places[0].latitude == pytest.approx(35.6762)
    assert outcome.places[2].longitude == pytest.approx(139.6503 + 0.002)
    assert all(place.approximate for place in outcome.places)
    assert outcome.places[1].address == f"Ramen B {APPROXIMATE_SUFFIX}"
    assert outcome.warnings == ["Used approximate locations for 3 places in Tokyo eats"]


def test_offset_follows_position_in_collection(fake_lookup):
    fake_lookup.results["Known"] = LookupResult(latitude=0.5, longitude=0.5)

    outcome = EnrichmentStage(fake_lookup).enrich(
        _collection("Nowhere", RawPlaceCandidate(name="Known"), RawPlaceCandidate(name="Unknown"))
    )

    unknown = outcome.places[1]
    assert unknown.latitude == pytest.approx(DEFAULT_REFERENCE.latitude + 0.001)
    assert unknown.longitude == pytest.approx(DEFAULT_REFERENCE.longitude + 0.001)
    assert outcome.reference == DEFAULT_REFERENCE


def test_skip_lookup_places_everything_approximately(fake_lookup):
    fake_lookup.results["Cafe"] = LookupResult(latitude=1.0, longitude=1.0)

    outcome = EnrichmentStage(fake_lookup).enrich(_collection("Seoul", RawPlaceCandidate(name="Cafe")), skip_lookup=True)

    assert fake_lookup.queries == []
    assert outcome.places[0].approximate is True
    assert outcome.places[0].latitude == pytest.approx(37.5665)


def test_unusable_candidates_are_dropped(fake_lookup):
    outcome = EnrichmentStage(fake_lookup).enrich(
        _collection("Misc", RawPlaceCandidate(name=""), RawPlaceCandidate(name="Kept", latitude=1, longitude=1))
    )

    assert [place.name for place in outcome.places] == ["Kept"]
    assert outcome.warnings == ["Dropped unusable place 1 in Misc"]


def test_gazetteer_defaults():
    gazetteer = Gazetteer()

    assert gazetteer.reference_point("NYC pizza").city == "New York"
    assert gazetteer.reference_point("Weekend in Park City").city == "Park City"
    assert gazetteer.reference_point("Random") == DEFAULT_REFERENCE
    assert gazetteer.category("Coffee shops") == "Food & Drink"
    assert gazetteer.category("Museums") == "Culture"
    assert gazetteer.category("Misc") is None


def test_gazetteer_from_file(tmp_path):
    path = tmp_path / "gazetteer.json"
    path.write_text(
        json.dumps(
            {
                "cities": [{"keywords": ["Lisbon"], "latitude": 38.72, "longitude": -9.14, "city": "Lisbon"}],
                "default": {"latitude": 51.5, "longitude": -0.12, "city": "London"},
            }
        ),
        encoding="utf-8",
    )

    gazetteer = Gazetteer.from_file(str(path))

    assert gazetteer.reference_point("lisbon bakeries").city == "Lisbon"
    assert gazetteer.reference_point("Tokyo").city == "London"
    assert gazetteer.category("bakery") == "Food & Drink"
