"""Keyword lookup tables for fallback placement and list categories."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferencePoint:
    latitude: float
    longitude: float
    city: Optional[str] = None


@dataclass(frozen=True)
class CityEntry:
    keywords: Tuple[str, ...]
    point: ReferencePoint


@dataclass(frozen=True)
class CategoryEntry:
    category: str
    keywords: Tuple[str, ...]


DEFAULT_CITIES: Tuple[CityEntry, ...] = (
    CityEntry(("tokyo",), ReferencePoint(35.6762, 139.6503, "Tokyo")),
    CityEntry(("nyc", "new york"), ReferencePoint(40.7128, -74.0060, "New York")),
    CityEntry(("seoul",), ReferencePoint(37.5665, 126.9780, "Seoul")),
    CityEntry(("frankfurt",), ReferencePoint(50.1109, 8.6821, "Frankfurt")),
    CityEntry(("park city",), ReferencePoint(40.6461, -111.4980, "Park City")),
)

# San Francisco; the city stays unknown because nothing in the name matched.
DEFAULT_REFERENCE = ReferencePoint(37.7749, -122.4194, None)

DEFAULT_CATEGORIES: Tuple[CategoryEntry, ...] = (
    CategoryEntry(
        "Food & Drink",
        ("food", "restaurant", "cafe", "coffee", "lunch", "dinner", "bakery", "sushi", "market", "dessert"),
    ),
    CategoryEntry("Travel", ("travel", "visit", "trip", "hotel", "activities")),
    CategoryEntry("Nightlife", ("night", "bar", "club", "drinks")),
    CategoryEntry("Shopping", ("shop", "store")),
    CategoryEntry("Culture", ("culture", "museum", "art")),
    CategoryEntry("Health", ("health", "wellness")),
)


def _matches(name: str, keywords: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in keywords)


class Gazetteer:
    """First-match keyword tables, evaluated in declaration order."""

    def __init__(
        self,
        cities: Sequence[CityEntry] = DEFAULT_CITIES,
        default: ReferencePoint = DEFAULT_REFERENCE,
        categories: Sequence[CategoryEntry] = DEFAULT_CATEGORIES,
    ) -> None:
        self.cities = tuple(cities)
        self.default = default
        self.categories = tuple(categories)

    def reference_point(self, name: str) -> ReferencePoint:
        for entry in self.cities:
            if _matches(name, entry.keywords):
                return entry.point
        return self.default

    def category(self, name: str) -> Optional[str]:
        for entry in self.categories:
            if _matches(name, entry.keywords):
                return entry.category
        return None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Gazetteer":
        cities = [
            CityEntry(
                keywords=tuple(k.lower() for k in item["keywords"]),
                point=ReferencePoint(float(item["latitude"]), float(item["longitude"]), item.get("city")),
            )
            for item in payload.get("cities", [])
        ]
        default_raw = payload.get("default")
        default = (
            ReferencePoint(float(default_raw["latitude"]), float(default_raw["longitude"]), default_raw.get("city"))
            if default_raw
            else DEFAULT_REFERENCE
        )
        categories = [
            CategoryEntry(category=item["category"], keywords=tuple(k.lower() for k in item["keywords"]))
            for item in payload.get("categories", [])
        ]
        return cls(
            cities=cities or DEFAULT_CITIES,
            default=default,
            categories=categories or DEFAULT_CATEGORIES,
        )

    @classmethod
    def from_file(cls, path: str) -> "Gazetteer":
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        logger.info("Loaded gazetteer overrides from %s", path)
        return cls.from_dict(payload)
