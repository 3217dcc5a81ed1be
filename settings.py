# settings.py
# Environment-driven configuration for the Image Geolocation Engine

import os
import logging
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from errors import ConfigurationError

logger = logging.getLogger(__name__)

# --- Constants ---
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_REGION_BIAS = "us"          # Region hint for the first geocoding attempt
DEFAULT_COUNTRY_SUFFIX = "USA"      # Appended by the third geocoding attempt
MAX_UPLOAD_BYTES = 16 * 1024 * 1024 # 16MB request body limit
MAPS_REQUEST_TIMEOUT = 10           # Seconds for Google Maps requests
IMAGE_DOWNLOAD_TIMEOUT = 15         # Seconds for fetching remote images


@dataclass(frozen=True)
class Settings:
    gemini_model: str
    region_bias: str
    country_suffix: str
    max_upload_bytes: int


@lru_cache(maxsize=1)
def get_settings():
    """Reads tunable (non-secret) settings once per process."""
    load_dotenv()
    max_upload = os.getenv("MAX_UPLOAD_BYTES")
    try:
        max_upload_bytes = int(max_upload) if max_upload else MAX_UPLOAD_BYTES
    except ValueError:
        logger.warning(f"MAX_UPLOAD_BYTES={max_upload!r} is not an integer, using default.")
        max_upload_bytes = MAX_UPLOAD_BYTES

    return Settings(
        gemini_model=os.getenv("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
        region_bias=os.getenv("GEOCODE_REGION_BIAS") or DEFAULT_REGION_BIAS,
        country_suffix=os.getenv("GEOCODE_COUNTRY_SUFFIX") or DEFAULT_COUNTRY_SUFFIX,
        max_upload_bytes=max_upload_bytes,
    )


def _require_env(name):
    # Secrets are looked up at first use, not at import or startup.
    load_dotenv()
    value = os.getenv(name)
    if not value:
        logger.error(f"{name} environment variable is not set.")
        raise ConfigurationError(f"{name} environment variable is not set")
    return value


def get_gemini_api_key():
    return _require_env("GEMINI_API_KEY")


def get_maps_api_key():
    return _require_env("GOOGLE_MAPS_API_KEY")
