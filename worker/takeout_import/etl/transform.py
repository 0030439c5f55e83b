"""Utilities for transforming enriched collections into database rows."""

import logging
from typing import Any, Dict, Optional

from takeout_import.etl.extract import DEFAULT_CATEGORY
from takeout_import.etl.gazetteer import ReferencePoint
from takeout_import.models import CandidateCollection, RawPlaceCandidate

logger = logging.getLogger(__name__)

LIST_DESCRIPTION = "Imported from Google Maps"


def parse_city(address: Optional[str]) -> Optional[str]:
    """Pick the city out of a "street, city, region, country" address."""
    if not address:
        return None
    parts = [part.strip() for part in address.split(",")]
    if len(parts) >= 2 and parts[1]:
        return parts[1]
    return None


def derive_city(collection: CandidateCollection, reference: Optional[ReferencePoint] = None) -> Optional[str]:
    if collection.candidates:
        first = collection.candidates[0]
        if not first.approximate:
            city = parse_city(first.address)
            if city:
                return city
    if reference is not None:
        return reference.city
    return None


def to_place_row(candidate: RawPlaceCandidate) -> Dict[str, Any]:
    return {
        "external_id": candidate.external_id,
        "name": candidate.name,
        "address": candidate.address or "",
        "lat": candidate.latitude,
        "lng": candidate.longitude,
        "category": candidate.category or DEFAULT_CATEGORY,
    }


def to_list_row(
    collection: CandidateCollection,
    *,
    user_id: str,
    category: Optional[str],
    reference: Optional[ReferencePoint] = None,
    description: str = LIST_DESCRIPTION,
) -> Dict[str, Any]:
    center = collection.center
    center_lat, center_lng = center if center else (None, None)

    return {
        "creator_id": user_id,
        "title": collection.title,
        "description": description,
        "is_public": collection.is_public,
        "is_paid": collection.monetize,
        "price": collection.price if collection.monetize else 0,
        "place_count": len(collection.candidates),
        "center_lat": center_lat,
        "center_lng": center_lng,
        "category": category,
        "city": derive_city(collection, reference),
    }
