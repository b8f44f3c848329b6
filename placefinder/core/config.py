"""Configuration management for the place search service."""
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", PROJECT_ROOT / "data"))
DUCKDB_PATH = Path(os.getenv("DATABASE_PATH", DATA_DIR / "duckdb" / "gazetteer.duckdb"))

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Language used when a request does not name one
DEFAULT_LANG: str = os.getenv("DEFAULT_LANG", "en")

# GeoNames web service (remote source A)
GEONAMES_URL: str = os.getenv("GEONAMES_URL", "http://api.geonames.org")
GEONAMES_USERNAME: Optional[str] = os.getenv("GEONAMES_USERNAME")
GEONAMES_TIMEOUT: float = float(os.getenv("GEONAMES_TIMEOUT", "20"))

# OSM Nominatim (remote source B)
NOMINATIM_URL: str = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_TIMEOUT: float = float(os.getenv("NOMINATIM_TIMEOUT", "110"))
NOMINATIM_PREFERRED_TIME: float = float(os.getenv("NOMINATIM_PREFERRED_TIME", "40"))
NOMINATIM_MAX_PAGES: int = int(os.getenv("NOMINATIM_MAX_PAGES", "4"))

# Per-request HTTP timeout for a single remote call
HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "15"))
USER_AGENT: str = os.getenv("USER_AGENT", "placefinder/0.1 (gazetteer search)")

# Minimum similarity (0-1) for resolving a misspelled country name
FUZZY_THRESHOLD: float = float(os.getenv("FUZZY_THRESHOLD", "0.9"))

# Search limits
DEFAULT_MATCH_LIMIT: int = int(os.getenv("DEFAULT_MATCH_LIMIT", "75"))
MAX_MATCH_LIMIT: int = int(os.getenv("MAX_MATCH_LIMIT", "500"))

# Search history
MAX_MONTHS_BEFORE_REDOING_EXTENDED_SEARCH: int = int(os.getenv("MAX_MONTHS_BEFORE_REDOING_EXTENDED_SEARCH", "12"))
SEARCH_LOG_DEBOUNCE_SECONDS: float = float(os.getenv("SEARCH_LOG_DEBOUNCE_SECONDS", "3"))

# Ranking constants
ZIP_RANK = 9
ZIP_SUPPLEMENT_RANK = 1

# Corpus rows whose numeric source tier is at or above this value came from
# external updates and are only trusted on extended searches.
MIN_EXTERNAL_SOURCE = 100

# Source tag used for postal-code records supplied by GeoNames
POSTAL_SOURCE_TAG = "GEOZ"
