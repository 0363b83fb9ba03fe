# ⚙️ Process-wide configuration
# Built once at startup from the environment and injected into services

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Explicit configuration object for the whole process.

    Replaces ambient globals (theme flag, singleton backend client): the
    application lifespan builds one instance and hands it to every component.
    """

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017/cityreport"
    db_name: str = "cityreport"
    reports_collection: str = "reports"
    photos_bucket: str = "photos"
    report_fetch_limit: int = Field(default=100, ge=1)

    # Preferences
    preferences_backend: str = "file"  # file | redis
    preferences_path: Path = Path(".cityreport_prefs.json")
    redis_url: Optional[str] = None
    dark_mode_default: bool = False

    # Lifecycle
    sweep_interval_hours: int = Field(default=24, ge=1)
    expiry_after_days: int = Field(default=90, ge=0)

    # Aggregation
    popular_window_days: int = Field(default=7, ge=1)
    popular_limit: int = Field(default=5, ge=1)
    urgent_severity: int = Field(default=4, ge=1, le=5)

    # Image pipeline
    image_max_width: int = Field(default=1024, ge=1)
    image_max_height: int = Field(default=1024, ge=1)
    image_quality: int = Field(default=80, ge=0, le=100)
    profile_max_size: int = Field(default=512, ge=1)
    profile_quality: int = Field(default=85, ge=0, le=100)

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(hours=self.sweep_interval_hours)

    @property
    def expiry_after(self) -> timedelta:
        return timedelta(days=self.expiry_after_days)

    @property
    def popular_window(self) -> timedelta:
        return timedelta(days=self.popular_window_days)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "Settings":
        """
        Load settings from environment variables (and a .env file if present).
        Priority for the Mongo URI: MONGO_URI > MONGODB_URL > MONGODB_URI > local default.
        """
        load_dotenv(dotenv_path=dotenv_path)

        defaults = cls()
        mongo_uri = (
            os.getenv("MONGO_URI")
            or os.getenv("MONGODB_URL")
            or os.getenv("MONGODB_URI")
            or defaults.mongo_uri
        )
        settings = cls(
            mongo_uri=mongo_uri,
            db_name=os.getenv("MONGODB_NAME", defaults.db_name),
            reports_collection=os.getenv("REPORTS_COLLECTION", defaults.reports_collection),
            photos_bucket=os.getenv("PHOTOS_BUCKET", defaults.photos_bucket),
            report_fetch_limit=_env_int("REPORT_FETCH_LIMIT", defaults.report_fetch_limit),
            preferences_backend=os.getenv("PREFERENCES_BACKEND", defaults.preferences_backend).lower(),
            preferences_path=Path(os.getenv("PREFERENCES_PATH", str(defaults.preferences_path))),
            redis_url=os.getenv("REDIS_URL") or None,
            dark_mode_default=_env_bool("DARK_MODE_DEFAULT", defaults.dark_mode_default),
            sweep_interval_hours=_env_int("SWEEP_INTERVAL_HOURS", defaults.sweep_interval_hours),
            expiry_after_days=_env_int("EXPIRY_AFTER_DAYS", defaults.expiry_after_days),
            popular_window_days=_env_int("POPULAR_WINDOW_DAYS", defaults.popular_window_days),
            popular_limit=_env_int("POPULAR_LIMIT", defaults.popular_limit),
            urgent_severity=_env_int("URGENT_SEVERITY", defaults.urgent_severity),
            image_max_width=_env_int("IMAGE_MAX_WIDTH", defaults.image_max_width),
            image_max_height=_env_int("IMAGE_MAX_HEIGHT", defaults.image_max_height),
            image_quality=_env_int("IMAGE_QUALITY", defaults.image_quality),
        )

        uri_display = mongo_uri.split("@")[-1] if "@" in mongo_uri else mongo_uri
        logger.info("🔧 City Report configuration:")
        logger.info(f"   MongoDB: {uri_display[:50]} / {settings.db_name}")
        logger.info(f"   Preferences: {settings.preferences_backend}")
        logger.info(
            f"   Sweep every {settings.sweep_interval_hours}h, expiry after {settings.expiry_after_days}d"
        )
        return settings
