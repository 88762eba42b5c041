"""
==============================================================================
Application Settings Module
==============================================================================

Configuration management using Pydantic Settings.

A single cached Settings instance is shared across the application through
get_settings().

Configuration Priority (highest to lowest):
------------------------------------------
1. Environment variables
2. .env file
3. Default values

Scanner Settings:
----------------
- scan_interval_ms: detection loop period (100-250ms)
- native_decoder_enabled: allow the OpenCV native detector to be probed
- camera_*: server-attached camera used by the "camera" scan source
- frame_wait_timeout_seconds: how long a browser scan waits for the first frame

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        app_name: Display name for the application
        app_env: Environment mode (development/staging/production)
        debug: Enable debug mode for verbose logging
        host: Server bind address
        port: Server port number
        database_url: SQLAlchemy database connection string
        timezone: IANA timezone used to compute a record's calendar date
        google_books_url: Google Books volumes endpoint
        google_books_api_key: Optional API key (public requests are rate limited)
        lookup_timeout_seconds: HTTP timeout for metadata lookups
        scan_interval_ms: Detection loop period
        native_decoder_enabled: Probe the native OpenCV barcode detector
        native_frame_interval_ms: Frame pacing of the native worker thread
        camera_index: Server camera device index
        camera_width: Requested capture width
        camera_height: Requested capture height
        camera_open_timeout_seconds: Max wait while opening the server camera
        camera_facing_mode: Camera facing requested from browser clients
        frame_wait_timeout_seconds: Max wait for the first browser frame
        cancel_join_timeout_seconds: Max wait for an in-flight poll on cancel
        max_frame_bytes: Largest accepted encoded browser frame
        cors_origins: Allowed CORS origins (JSON array string)

    Example:
        >>> settings = Settings()
        >>> settings.scan_interval_seconds
        0.2
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="Snap Shelf",
        description="Display name for the application"
    )

    app_env: str = Field(
        default="development",
        description="Environment mode: development, staging, production"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode for verbose logging"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    # =========================================================================
    # STORAGE SETTINGS
    # =========================================================================
    database_url: str = Field(
        default="sqlite:///./storage/db/snapshelf.db",
        description="SQLAlchemy database connection string"
    )

    timezone: str = Field(
        default="UTC",
        description="Timezone used for the date a book was recorded"
    )

    # =========================================================================
    # METADATA LOOKUP SETTINGS
    # =========================================================================
    google_books_url: str = Field(
        default="https://www.googleapis.com/books/v1/volumes",
        description="Google Books volumes endpoint"
    )

    google_books_api_key: Optional[str] = Field(
        default=None,
        description="Google Books API key"
    )

    lookup_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="HTTP timeout for metadata lookups"
    )

    # =========================================================================
    # SCANNER SETTINGS
    # =========================================================================
    scan_interval_ms: int = Field(
        default=200,
        ge=100,
        le=250,
        description="Detection loop period in milliseconds"
    )

    native_decoder_enabled: bool = Field(
        default=True,
        description="Use the native OpenCV barcode detector when available"
    )

    native_frame_interval_ms: int = Field(
        default=100,
        ge=10,
        le=1000,
        description="Frame pacing of the native decoder worker"
    )

    camera_index: int = Field(
        default=0,
        ge=0,
        description="Server camera device index"
    )

    camera_width: int = Field(
        default=1280,
        ge=160,
        description="Requested capture width"
    )

    camera_height: int = Field(
        default=720,
        ge=120,
        description="Requested capture height"
    )

    camera_open_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Max wait while opening the server camera"
    )

    camera_facing_mode: str = Field(
        default="environment",
        description="Camera facing requested from browser clients"
    )

    frame_wait_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Max wait for the first frame of a browser scan"
    )

    cancel_join_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Max wait for an in-flight decode when cancelling"
    )

    max_frame_bytes: int = Field(
        default=4 * 1024 * 1024,
        ge=1024,
        description="Largest accepted encoded browser frame"
    )

    # =========================================================================
    # CORS SETTINGS
    # =========================================================================
    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        """
        Validate and normalize application environment.

        Unknown values fall back to 'development'.
        """
        valid_envs = {"development", "staging", "production"}
        normalized = value.lower().strip()

        if normalized not in valid_envs:
            logger.warning(
                f"Unknown environment '{value}', defaulting to 'development'"
            )
            return "development"

        return normalized

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """
        Validate the timezone name against the IANA database.

        Raises:
            ValueError: If the timezone is unknown
        """
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("camera_facing_mode")
    @classmethod
    def validate_facing_mode(cls, value: str) -> str:
        """Only the two camera facings browsers understand are accepted."""
        normalized = value.lower().strip()
        if normalized not in {"environment", "user"}:
            raise ValueError(
                f"Unsupported camera facing mode: {value}. "
                "Supported: environment, user"
            )
        return normalized

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def scan_interval_seconds(self) -> float:
        """Detection loop period in seconds."""
        return self.scan_interval_ms / 1000

    @property
    def native_frame_interval_seconds(self) -> float:
        """Native worker frame pacing in seconds."""
        return self.native_frame_interval_ms / 1000

    @property
    def tzinfo(self) -> ZoneInfo:
        """Timezone object for the configured timezone."""
        return ZoneInfo(self.timezone)

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS origins from JSON string to list.

        Returns:
            List of allowed origin strings
        """
        try:
            origins = json.loads(self.cors_origins)
            if isinstance(origins, list):
                return origins
            return ["*"]
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid CORS origins JSON: {self.cors_origins}, "
                "defaulting to ['*']"
            )
            return ["*"]

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================
    def get_database_path(self) -> Optional[Path]:
        """
        Extract database file path for SQLite databases.

        Returns:
            Path to database file, or None for non-file databases
        """
        if self.database_url.startswith("sqlite:///"):
            db_path = self.database_url.replace("sqlite:///", "")
            if db_path.startswith("./"):
                db_path = db_path[2:]
            if not db_path or db_path == ":memory:":
                return None
            return Path(db_path)
        return None

    def ensure_directories(self) -> None:
        """Create the SQLite database directory when one is configured."""
        db_path = self.get_database_path()
        if db_path:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.debug("Required directories created/verified")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"app_env={self.app_env!r}, "
            f"debug={self.debug})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    Uses lru_cache so that only one Settings instance is created
    throughout the application lifecycle.

    Returns:
        Global Settings instance
    """
    settings = Settings()
    settings.ensure_directories()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
