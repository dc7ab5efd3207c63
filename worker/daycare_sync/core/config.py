"""Application configuration helpers.

Every value comes from the environment (optionally via a ``.env`` file).
Source credentials are only checked when a collector is about to run, so a
missing Yelp key stops the reviews pass without blocking the licensing pass.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from daycare_sync.core.errors import FatalConfigError

logger = logging.getLogger(__name__)

DEFAULT_PLACES_QUERIES = (
    "daycare",
    "preschool",
    "child care center",
    "family daycare",
    "nursery school",
    "infant care",
    "toddler care",
    "montessori school",
)
DEFAULT_CHECKPOINT_DIR = Path(__file__).resolve().parents[2].joinpath("data", "checkpoints")


@dataclass(frozen=True)
class RetryPolicy:
    request_delay: float = 1.0
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    timeout: int = 10
    max_consecutive_page_failures: int = 3

    def validate(self, source_id: str) -> None:
        if self.max_attempts < 1:
            raise FatalConfigError(f"{source_id}: max_attempts must be >= 1", source_id=source_id)
        if self.request_delay < 0 or self.backoff_seconds < 0:
            raise FatalConfigError(f"{source_id}: delays must not be negative", source_id=source_id)
        if self.timeout <= 0:
            raise FatalConfigError(f"{source_id}: timeout must be positive", source_id=source_id)


@dataclass(frozen=True)
class LicensingConfig:
    base_url: str
    facility_type: str
    city: str
    county: str
    page_size: int = 100
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def validate(self) -> None:
        if not self.base_url:
            raise FatalConfigError("LICENSING_API_BASE must be set for the licensing source", source_id="licensing")
        if not self.city:
            raise FatalConfigError("DIRECTORY_CITY must be set for the licensing source", source_id="licensing")
        if self.page_size <= 0:
            raise FatalConfigError("LICENSING_PAGE_SIZE must be positive", source_id="licensing")
        self.retry.validate("licensing")


@dataclass(frozen=True)
class PlacesConfig:
    api_key: str
    queries: Tuple[str, ...]
    city: str
    state: str
    max_pages: int = 3
    settle_delay: float = 2.0
    enrich_contact_emails: bool = False
    retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(request_delay=0.2))

    def validate(self) -> None:
        if not self.api_key:
            raise FatalConfigError("GOOGLE_PLACES_API_KEY is required for the places source", source_id="places")
        if not self.queries:
            raise FatalConfigError("PLACES_QUERIES must contain at least one query", source_id="places")
        if self.max_pages <= 0:
            raise FatalConfigError("PLACES_MAX_PAGES must be positive", source_id="places")
        self.retry.validate("places")


@dataclass(frozen=True)
class ReviewsConfig:
    api_key: str
    location: str
    categories: str = "childcare"
    page_size: int = 50
    max_results: int = 1000
    retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(request_delay=0.5))

    def validate(self) -> None:
        if not self.api_key:
            raise FatalConfigError("YELP_API_KEY is required for the reviews source", source_id="reviews")
        if not self.location:
            raise FatalConfigError("DIRECTORY_CITY must be set for the reviews source", source_id="reviews")
        # Yelp Fusion rejects limit > 50 and offset + limit > 1000.
        if not 0 < self.page_size <= 50:
            raise FatalConfigError("REVIEWS_PAGE_SIZE must be between 1 and 50", source_id="reviews")
        if not 0 < self.max_results <= 1000:
            raise FatalConfigError("REVIEWS_MAX_RESULTS must be between 1 and 1000", source_id="reviews")
        self.retry.validate("reviews")


@dataclass(frozen=True)
class ManualConfig:
    curated_path: Optional[Path] = None

    def validate(self) -> None:
        if self.curated_path is not None and not self.curated_path.is_file():
            raise FatalConfigError(f"MANUAL_SOURCE_PATH {self.curated_path} does not exist", source_id="manual")


@dataclass(frozen=True)
class MergeConfig:
    max_reviews_per_source: int = 20
    max_photos_per_source: int = 10
    default_lat: float = 37.7749
    default_lng: float = -122.4194


@dataclass(frozen=True)
class Settings:
    database_url: str
    licensing: LicensingConfig
    places: PlacesConfig
    reviews: ReviewsConfig
    manual: ManualConfig
    merge: MergeConfig = field(default_factory=MergeConfig)
    checkpoint_dir: Path = DEFAULT_CHECKPOINT_DIR
    worker_port: int = 9000


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not numeric; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default


def _retry_policy(default_delay: float) -> RetryPolicy:
    return RetryPolicy(
        request_delay=_env_float("REQUEST_DELAY_SECONDS", default_delay),
        max_attempts=_env_int("REQUEST_MAX_ATTEMPTS", 3),
        backoff_seconds=_env_float("REQUEST_BACKOFF_SECONDS", 2.0),
        timeout=_env_int("REQUEST_TIMEOUT", 10),
        max_consecutive_page_failures=_env_int("MAX_CONSECUTIVE_PAGE_FAILURES", 3),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    city = os.getenv("DIRECTORY_CITY", "San Francisco")
    county = os.getenv("DIRECTORY_COUNTY", city)
    state = os.getenv("DIRECTORY_STATE", "CA")

    queries_raw = os.getenv("PLACES_QUERIES")
    if queries_raw:
        queries = tuple(q.strip() for q in queries_raw.split(",") if q.strip())
    else:
        queries = DEFAULT_PLACES_QUERIES

    manual_path_raw = os.getenv("MANUAL_SOURCE_PATH")
    checkpoint_dir_raw = os.getenv("CHECKPOINT_DIR")

    google_api_key = os.getenv("GOOGLE_PLACES_API_KEY", "")
    yelp_api_key = os.getenv("YELP_API_KEY", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_api_key:
        logger.warning("GOOGLE_PLACES_API_KEY is not configured; the places source will be skipped.")
    if not yelp_api_key:
        logger.warning("YELP_API_KEY is not configured; the reviews source will be skipped.")

    return Settings(
        database_url=database_url,
        licensing=LicensingConfig(
            base_url=os.getenv("LICENSING_API_BASE", "https://secure.dss.ca.gov/CareFacilitySearch").rstrip("/"),
            facility_type=os.getenv("LICENSING_FACILITY_TYPE", "801"),
            city=city,
            county=county,
            page_size=_env_int("LICENSING_PAGE_SIZE", 100),
            retry=_retry_policy(1.0),
        ),
        places=PlacesConfig(
            api_key=google_api_key,
            queries=queries,
            city=city,
            state=state,
            max_pages=_env_int("PLACES_MAX_PAGES", 3),
            settle_delay=_env_float("PAGE_SETTLE_DELAY_SECONDS", 2.0),
            enrich_contact_emails=os.getenv("ENRICH_CONTACT_EMAILS", "false").lower() in {"1", "true", "yes"},
            retry=_retry_policy(0.2),
        ),
        reviews=ReviewsConfig(
            api_key=yelp_api_key,
            location=f"{city}, {state}" if city else "",
            page_size=_env_int("REVIEWS_PAGE_SIZE", 50),
            max_results=_env_int("REVIEWS_MAX_RESULTS", 1000),
            retry=_retry_policy(0.5),
        ),
        manual=ManualConfig(curated_path=Path(manual_path_raw) if manual_path_raw else None),
        merge=MergeConfig(
            max_reviews_per_source=_env_int("MAX_REVIEWS_PER_SOURCE", 20),
            max_photos_per_source=_env_int("MAX_PHOTOS_PER_SOURCE", 10),
            default_lat=_env_float("DEFAULT_LAT", 37.7749),
            default_lng=_env_float("DEFAULT_LNG", -122.4194),
        ),
        checkpoint_dir=Path(checkpoint_dir_raw) if checkpoint_dir_raw else DEFAULT_CHECKPOINT_DIR,
        worker_port=_env_int("WORKER_PORT", 9000),
    )
