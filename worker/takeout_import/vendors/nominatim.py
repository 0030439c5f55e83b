"""Client utilities for the OpenStreetMap Nominatim search API."""

import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

import requests

from takeout_import.core.config import DEFAULT_NOMINATIM_URL, Settings
from takeout_import.models import LookupResult

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
USER_AGENT = "TakeoutImporter/1.0"


class NominatimError(RuntimeError):
    """Raised when Nominatim returns a payload we cannot interpret."""


def _user_agent(contact_email: str) -> str:
    if contact_email:
        return f"{USER_AGENT} ({contact_email})"
    return USER_AGENT


def to_lookup_result(item: Dict[str, Any]) -> LookupResult:
    try:
        latitude = float(item["lat"])
        longitude = float(item["lon"])
    except (KeyError, TypeError, ValueError) as exc:
        raise NominatimError(f"malformed coordinates in result: {item!r}") from exc

    address = item.get("address") or {}
    city = address.get("city") or address.get("town") or address.get("village") or address.get("municipality")
    return LookupResult(
        latitude=latitude,
        longitude=longitude,
        city=city,
        country=address.get("country"),
        display_name=item.get("display_name"),
    )


def search(
    query: str,
    *,
    base_url: str = DEFAULT_NOMINATIM_URL,
    contact_email: str = "",
    timeout: float = 10,
) -> Optional[LookupResult]:
    """Return the best match for ``query`` or ``None`` when nothing matches."""
    params = {"q": query, "format": "json", "limit": 1, "addressdetails": 1}
    headers = {"User-Agent": _user_agent(contact_email)}
    response = _SESSION.get(f"{base_url.rstrip('/')}/search", params=params, headers=headers, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, list):
        logger.error("search failed: unexpected payload type=%s", type(payload).__name__)
        raise NominatimError("unexpected payload from Nominatim search")
    if not payload:
        logger.debug("No match for query=%s", query)
        return None
    return to_lookup_result(payload[0])


def build_lookup(settings: Settings) -> Callable[[str], Optional[LookupResult]]:
    """Bind :func:`search` to the configured endpoint for use by the lookup queue."""
    return partial(
        search,
        base_url=settings.nominatim_url,
        contact_email=settings.nominatim_email,
        timeout=settings.geocode_timeout,
    )
