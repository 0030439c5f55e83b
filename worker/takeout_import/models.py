"""Core data models shared by the Takeout import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class RawPlaceCandidate:
    """Normalized place extracted from an archive, not yet persisted."""

    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    external_id: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    approximate: bool = False

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True, slots=True)
class LookupResult:
    """A single geocoding match. Absence of a match is represented by ``None``."""

    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(slots=True)
class CandidateCollection:
    """An ordered, named group of candidates destined to become one list."""

    name: str
    candidates: List[RawPlaceCandidate] = field(default_factory=list)
    display_name: Optional[str] = None
    monetize: bool = False
    price: float = 0.0

    @property
    def title(self) -> str:
        return self.display_name or self.name

    @property
    def is_public(self) -> bool:
        return not self.monetize

    @property
    def center(self) -> Optional[Tuple[float, float]]:
        """Mean latitude/longitude of the members that have coordinates."""
        located = [c for c in self.candidates if c.has_coordinates]
        if not located:
            return None
        latitude = sum(c.latitude for c in located) / len(located)
        longitude = sum(c.longitude for c in located) / len(located)
        return latitude, longitude


@dataclass(frozen=True, slots=True)
class ListSelection:
    """Caller-provided override constraining which collections are imported."""

    name: str
    display_name: Optional[str] = None
    monetize: bool = False
    price: float = 0.0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ListSelection":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("selection name is required")

        display_name = payload.get("displayName") or payload.get("display_name")
        display_name = str(display_name).strip() if display_name else None

        monetize = payload.get("monetize", payload.get("isPaid", False))
        if monetize is None:
            monetize = False
        if not isinstance(monetize, bool):
            raise ValueError(f"monetize for {name} must be true or false")

        price_raw = payload.get("price", 0)
        try:
            price = float(price_raw or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"price for {name} must be numeric") from exc
        if price < 0:
            raise ValueError(f"price for {name} must not be negative")

        return cls(name=name, display_name=display_name or None, monetize=monetize, price=price)


@dataclass(slots=True)
class ProcessResult:
    success: bool
    lists_created: int = 0
    places_imported: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "listsCreated": self.lists_created,
            "placesImported": self.places_imported,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        return payload
