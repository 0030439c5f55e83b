"""Turn raw archive entries into candidate collections."""

from __future__ import annotations

import csv
import hashlib
import io
import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from takeout_import.core.errors import CollectionError
from takeout_import.etl.detect import delimiter_for
from takeout_import.models import CandidateCollection, RawPlaceCandidate

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"

_PAIR_TOKEN = re.compile(r"!1s(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
_TOKEN = re.compile(r"!1s([^:&!/?#]+)")
# Bare path form; only the hex pair shape, since place names may start with "1s".
_PATH_PAIR_TOKEN = re.compile(r"(?:^|/)1s(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
_CID = re.compile(r"[?&]cid=(\d+)")

Extraction = Tuple[CandidateCollection, List[str]]


def _hash_id(value: str) -> str:
    return f"imported_{hashlib.sha1(value.encode('utf-8')).hexdigest()[:20]}"


def extract_place_id_from_url(url: str) -> str:
    """Return the provider token embedded in a Maps URL, or a stable hash of it."""
    for pattern in (_PAIR_TOKEN, _TOKEN, _PATH_PAIR_TOKEN, _CID):
        match = pattern.search(url)
        if match:
            return match.group(1)
    return _hash_id(url)


def synthesize_external_id(*parts: Any) -> str:
    return _hash_id("|".join("" if part is None else str(part) for part in parts))


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _read_rows(text: str, delimiter: str, source: str) -> List[Tuple[int, Dict[Optional[str], Any]]]:
    try:
        reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
        return [(reader.line_num, row) for row in reader]
    except csv.Error as exc:
        raise CollectionError(f"Failed to parse {source}: {exc}") from exc


def extract_saved_list(name: str, text: str, *, delimiter: str = ",") -> Extraction:
    """Parse one saved-list table. Rows need a title and a URL.

    Rows missing either field are expected noise and dropped silently; rows
    with more cells than the header are malformed and reported.
    """
    candidates: List[RawPlaceCandidate] = []
    warnings: List[str] = []

    for line_num, row in _read_rows(text, delimiter, name):
        if None in row:
            warnings.append(f"Skipped malformed row on line {line_num} in {name}")
            continue

        title = _clean(row.get("Title"))
        url = _clean(row.get("URL"))
        if not title or not url:
            logger.debug("Dropping row on line %d in %s without title or URL", line_num, name)
            continue

        candidates.append(
            RawPlaceCandidate(
                name=title,
                external_id=extract_place_id_from_url(url),
                category=DEFAULT_CATEGORY,
                notes=_clean(row.get("Note")) or _clean(row.get("Comment")),
            )
        )

    logger.info("Found %d places in %s", len(candidates), name)
    return CandidateCollection(name=name, candidates=candidates), warnings


def _feature_coordinates(feature: Dict[str, Any], location: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    geometry = feature.get("geometry") or {}
    coordinates = geometry.get("coordinates")
    if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
        longitude = _safe_float(coordinates[0])
        latitude = _safe_float(coordinates[1])
        # Exports use [0, 0] for places that were saved without a position.
        if latitude is not None and longitude is not None and (latitude, longitude) != (0.0, 0.0):
            return latitude, longitude

    geo = location.get("Geo Coordinates") or {}
    latitude = _safe_float(geo.get("Latitude"))
    longitude = _safe_float(geo.get("Longitude"))
    if latitude is not None and longitude is not None:
        return latitude, longitude
    return None, None


def _feature_to_candidate(feature: Dict[str, Any]) -> Optional[RawPlaceCandidate]:
    props = feature.get("properties") or {}
    location = props.get("Location") if isinstance(props.get("Location"), dict) else {}

    name = _clean(props.get("name")) or _clean(props.get("Title")) or _clean(location.get("Business Name"))
    address = _clean(location.get("Address")) or _clean(props.get("address")) or _clean(props.get("Address"))
    category = _clean(location.get("Business Status")) or _clean(props.get("category")) or DEFAULT_CATEGORY
    latitude, longitude = _feature_coordinates(feature, location)

    if not name and not address and latitude is None:
        return None

    url = _clean(props.get("Google Maps URL")) or _clean(props.get("google_maps_url"))
    external_id = extract_place_id_from_url(url) if url else synthesize_external_id(name, address, latitude, longitude)

    return RawPlaceCandidate(
        name=name or address or "Unnamed Place",
        address=address,
        latitude=latitude,
        longitude=longitude,
        external_id=external_id,
        category=category,
        notes=_clean(props.get("Comment")) or _clean(props.get("Note")),
    )


def extract_structured_document(text: str, *, name: str, source: str = "document") -> Extraction:
    """Yield one candidate per point feature of a feature collection."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CollectionError(f"Failed to parse {source}: {exc}") from exc

    features = payload.get("features") if isinstance(payload, dict) else None
    if not isinstance(features, list):
        raise CollectionError(f"{source} is not a feature collection")

    candidates: List[RawPlaceCandidate] = []
    warnings: List[str] = []
    for index, feature in enumerate(features):
        if not isinstance(feature, dict):
            warnings.append(f"Skipped unusable feature {index + 1} in {source}")
            continue
        geometry_type = (feature.get("geometry") or {}).get("type")
        if geometry_type not in (None, "Point"):
            logger.debug("Ignoring %s feature %d in %s", geometry_type, index + 1, source)
            continue
        candidate = _feature_to_candidate(feature)
        if candidate is None:
            warnings.append(f"Skipped unusable feature {index + 1} in {source}")
            continue
        candidates.append(candidate)

    logger.info("Found %d point features in %s", len(candidates), source)
    return CandidateCollection(name=name, candidates=candidates), warnings


def extract_root_tables(read_text: Callable[[str], str], entries: Iterable[str], *, name: str) -> Extraction:
    """Merge rows from every table in the archive into one synthetic collection.

    Used only when a structured document produced nothing; a table that
    fails to parse is reported and the remaining tables are still merged.
    """
    entries = list(entries)
    candidates: List[RawPlaceCandidate] = []
    warnings: List[str] = []

    for entry in entries:
        try:
            rows = _read_rows(read_text(entry), delimiter_for(entry), entry)
        except CollectionError as exc:
            logger.warning("Skipping table %s: %s", entry, exc)
            warnings.append(f"Failed to parse {entry}")
            continue

        for line_num, row in rows:
            title = _clean(row.get("Title")) or _clean(row.get("Name"))
            address = _clean(row.get("Address")) or _clean(row.get("Location"))
            if not title and not address:
                warnings.append(f"Skipped unusable row on line {line_num} in {entry}")
                continue
            url = _clean(row.get("URL"))
            candidates.append(
                RawPlaceCandidate(
                    name=title or address,
                    address=address,
                    external_id=extract_place_id_from_url(url) if url else synthesize_external_id(title, address),
                    category=DEFAULT_CATEGORY,
                    notes=_clean(row.get("Note")) or _clean(row.get("Comment")),
                )
            )

    logger.info("Recovered %d places from %d root tables", len(candidates), len(entries))
    return CandidateCollection(name=name, candidates=candidates), warnings
