"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org"


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    nominatim_url: str = DEFAULT_NOMINATIM_URL
    nominatim_email: str = ""
    geocode_min_interval: float = 1.1
    geocode_timeout: float = 10.0
    max_archive_bytes: int = 100 * 1024 * 1024
    upload_dir: str = "./uploads"
    worker_port: int = 9000
    import_workers: int = 2
    gazetteer_path: Optional[str] = None


def _get_number(name: str, default: str, cast=int):
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    nominatim_url = os.getenv("NOMINATIM_URL") or DEFAULT_NOMINATIM_URL
    nominatim_email = os.getenv("NOMINATIM_EMAIL", "")
    rate_limit_ms = _get_number("GEOCODING_RATE_LIMIT_MS", "1100")
    geocode_timeout = _get_number("GEOCODING_TIMEOUT_SECONDS", "10", cast=float)
    max_archive_bytes = _get_number("MAX_FILE_SIZE", str(100 * 1024 * 1024))
    upload_dir = os.getenv("UPLOAD_DIR") or "./uploads"
    worker_port = _get_number("WORKER_PORT", "9000")
    import_workers = max(1, _get_number("IMPORT_WORKERS", "2"))
    gazetteer_path = os.getenv("GAZETTEER_PATH") or None

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not nominatim_email:
        logger.warning("NOMINATIM_EMAIL is not configured; geocoding requests carry no contact address.")

    return Settings(
        database_url=database_url,
        nominatim_url=nominatim_url.rstrip("/"),
        nominatim_email=nominatim_email,
        geocode_min_interval=rate_limit_ms / 1000.0,
        geocode_timeout=geocode_timeout,
        max_archive_bytes=max_archive_bytes,
        upload_dir=upload_dir,
        worker_port=worker_port,
        import_workers=import_workers,
        gazetteer_path=gazetteer_path,
    )
