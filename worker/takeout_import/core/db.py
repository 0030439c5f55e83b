"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional, Tuple

import psycopg2
from psycopg2 import pool

from takeout_import.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection, rolled back on error."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    except psycopg2.Error:
        conn.rollback()
        raise
    finally:
        pg_pool.putconn(conn)


def _prepare_place_params(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": row.get("external_id"),
        "name": row.get("name"),
        "address": row.get("address") or "",
        "lng": row.get("lng"),
        "lat": row.get("lat"),
        "category": row.get("category") or "general",
    }


_INSERT_PLACE = """
INSERT INTO places (
    external_id,
    name,
    address,
    latitude,
    longitude,
    location,
    category,
    created_at
) VALUES (
    %(external_id)s,
    %(name)s,
    %(address)s,
    %(lat)s,
    %(lng)s,
    ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography,
    %(category)s,
    NOW()
)
ON CONFLICT (external_id) DO NOTHING
RETURNING id;
"""

_SELECT_PLACE = "SELECT id FROM places WHERE external_id = %(external_id)s;"

_INSERT_LIST = """
INSERT INTO lists (
    creator_id,
    title,
    description,
    is_public,
    is_paid,
    price,
    place_count,
    center_latitude,
    center_longitude,
    category,
    city,
    created_at
) VALUES (
    %(creator_id)s,
    %(title)s,
    %(description)s,
    %(is_public)s,
    %(is_paid)s,
    %(price)s,
    %(place_count)s,
    %(center_lat)s,
    %(center_lng)s,
    %(category)s,
    %(city)s,
    NOW()
)
RETURNING id;
"""

_INSERT_LIST_PLACE = """
INSERT INTO list_places (list_id, place_id, "order", notes)
VALUES (%(list_id)s, %(place_id)s, %(order)s, %(notes)s);
"""

_UPDATE_PLACE_COUNT = "UPDATE lists SET place_count = %(place_count)s WHERE id = %(list_id)s;"


class PlaceStore:
    """Write path for imported lists and places."""

    def find_or_create_place(self, row: Dict[str, Any]) -> Tuple[Any, bool]:
        """Return ``(place_id, created)``, keyed by the place's external identifier."""
        params = _prepare_place_params(row)
        if not params["external_id"] or not params["name"]:
            raise ValueError("external_id and name are required for places")
        if params["lat"] is None or params["lng"] is None:
            raise ValueError("latitude and longitude are required for places")

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_PLACE, params)
                inserted = cur.fetchone()
                if inserted is None:
                    cur.execute(_SELECT_PLACE, params)
                    existing = cur.fetchone()
                    if existing is None:
                        raise RuntimeError(f"place {params['external_id']} vanished during insert")
            conn.commit()

        if inserted is not None:
            logger.debug("Created place %s", params["external_id"])
            return inserted[0], True
        return existing[0], False

    def create_list(self, row: Dict[str, Any]) -> Any:
        if not row.get("creator_id") or not row.get("title"):
            raise ValueError("creator_id and title are required for lists")

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_LIST, row)
                list_id = cur.fetchone()[0]
            conn.commit()
        logger.debug("Created list %s (%s)", row["title"], list_id)
        return list_id

    def add_list_place(self, list_id: Any, place_id: Any, *, order: int, notes: Optional[str] = None) -> None:
        params = {"list_id": list_id, "place_id": place_id, "order": order, "notes": notes}
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_LIST_PLACE, params)
            conn.commit()

    def update_list_place_count(self, list_id: Any, place_count: int) -> None:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_UPDATE_PLACE_COUNT, {"list_id": list_id, "place_count": place_count})
            conn.commit()
