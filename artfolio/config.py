# =============================================================================
# artfolio/config.py - Application Settings
# =============================================================================
# Configuration is read from environment variables prefixed with ARTFOLIO_
# (and from a .env file in the working directory, if present).
#
# Usage:
#   from artfolio.config import get_settings
#   settings = get_settings()
#   print(settings.UPLOAD_PATH)
# =============================================================================

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a development default, so the app starts without any
    environment at all.
    """

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    DATABASE_URL: str = Field(
        default="sqlite:///./data/artfolio.sqlite",
        description="SQLAlchemy database URL"
    )

    UPLOAD_PATH: str = Field(
        default="./uploads",
        description="Root directory of the image object store"
    )

    IMPORT_PATH: str = Field(
        default="",
        description="Directory local file path image payloads may be read from; empty refuses them"
    )

    MEDIA_URL: str = Field(
        default="/media",
        description="URL prefix the object store is served under"
    )

    # -------------------------------------------------------------------------
    # Image Upload Settings
    # -------------------------------------------------------------------------

    MAX_FILE_SIZE: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Maximum decoded image size in bytes"
    )

    ALLOWED_IMAGE_FORMATS: str = Field(
        default="jpeg,png,webp,gif",
        description="Accepted raster formats (comma-separated, Pillow names)"
    )

    # -------------------------------------------------------------------------
    # Listing / Curation Limits
    # -------------------------------------------------------------------------

    DEFAULT_PAGE_LIMIT: int = Field(default=20, ge=1, le=100)

    MAX_PAGE_LIMIT: int = Field(default=100, ge=1)

    CURATION_MAX_ARTWORKS: int = Field(
        default=100,
        ge=1,
        description="Maximum number of artworks a curation can hold"
    )

    DEFAULT_CURRENCY: str = Field(default="CNY", min_length=3, max_length=3)

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(default=False)

    LOG_LEVEL: str = Field(default="INFO")

    API_KEY: str = Field(
        default="",
        description="Shared API key; the API is open when empty"
    )

    model_config = SettingsConfigDict(
        env_prefix="ARTFOLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def allowed_image_formats_list(self) -> list[str]:
        """
        Parse ALLOWED_IMAGE_FORMATS into normalized Pillow format names.

        Example: "JPEG, png" -> ["jpeg", "png"]
        """
        return [f.strip().lower() for f in self.ALLOWED_IMAGE_FORMATS.split(",") if f.strip()]

    @property
    def upload_root(self) -> Path:
        return Path(self.UPLOAD_PATH)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached Settings instance.

    The environment is parsed and validated once per process.
    """
    return Settings()
