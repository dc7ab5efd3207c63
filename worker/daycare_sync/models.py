"""Core data models shared by the directory sync pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

SOURCE_LICENSING = "licensing"
SOURCE_MANUAL = "manual"
SOURCE_PLACES = "places"
SOURCE_REVIEWS = "reviews"

# Processing order: authoritative data first, curated data next, enrichment last.
SOURCE_ORDER = (SOURCE_LICENSING, SOURCE_MANUAL, SOURCE_PLACES, SOURCE_REVIEWS)

# Key used in ratings.by_source for each rating-bearing source.
RATING_PROVIDERS = {SOURCE_PLACES: "google", SOURCE_REVIEWS: "yelp"}

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


@dataclass(slots=True)
class Contact:
    phone: str = ""
    email: str = ""
    website: str = ""


@dataclass(slots=True)
class Location:
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    neighborhood: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    transit: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Licensing:
    number: str = ""
    status: str = ""
    type: str = ""
    capacity: Optional[int] = None
    issued_date: Optional[str] = None
    expiration_date: Optional[str] = None
    last_inspection: Optional[str] = None
    inspection_score: Optional[float] = None
    violations: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class Program:
    age_groups: List[str] = field(default_factory=list)
    min_months: Optional[int] = None
    max_years: Optional[int] = None
    languages: List[str] = field(default_factory=list)
    curriculum: str = ""
    special_programs: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Availability:
    accepting_enrollment: Optional[bool] = None
    spots_by_age_band: Dict[str, int] = field(default_factory=dict)
    waitlist: Optional[bool] = None
    last_updated: Optional[str] = None


@dataclass(slots=True)
class Pricing:
    monthly_by_age_band: Dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class Ratings:
    by_source: Dict[str, float] = field(default_factory=dict)
    review_counts: Dict[str, int] = field(default_factory=dict)
    review_count: int = 0
    aggregate_overall: Optional[float] = None


@dataclass(slots=True)
class Review:
    author: str
    text: str
    source: str
    rating: Optional[float] = None
    time: Optional[str] = None
    url: Optional[str] = None


@dataclass(slots=True)
class Photo:
    url: str
    source: str


@dataclass(slots=True)
class Premium:
    is_premium: bool = False
    tier: Optional[str] = None
    featured_until: Optional[str] = None


@dataclass(slots=True)
class CanonicalRecord:
    """Merged representation of one facility in the directory."""

    name: str
    id: Optional[int] = None
    slug: str = ""
    description: str = ""
    contact: Contact = field(default_factory=Contact)
    location: Location = field(default_factory=Location)
    licensing: Licensing = field(default_factory=Licensing)
    program: Program = field(default_factory=Program)
    availability: Availability = field(default_factory=Availability)
    pricing: Pricing = field(default_factory=Pricing)
    hours: Dict[str, str] = field(default_factory=dict)
    ratings: Ratings = field(default_factory=Ratings)
    reviews: List[Review] = field(default_factory=list)
    photos: List[Photo] = field(default_factory=list)
    verified: bool = False
    premium: Premium = field(default_factory=Premium)
    status: str = STATUS_ACTIVE
    external_ids: Dict[str, str] = field(default_factory=dict)
    field_sources: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRecord":
        """Rebuild a record from ``to_dict`` output or a stored JSON payload."""
        return cls(
            name=data.get("name") or "",
            id=data.get("id"),
            slug=data.get("slug") or "",
            description=data.get("description") or "",
            contact=_build(Contact, data.get("contact")),
            location=_build(Location, data.get("location")),
            licensing=_build(Licensing, data.get("licensing")),
            program=_build(Program, data.get("program")),
            availability=_build(Availability, data.get("availability")),
            pricing=_build(Pricing, data.get("pricing")),
            hours=dict(data.get("hours") or {}),
            ratings=_build(Ratings, data.get("ratings")),
            reviews=[_build(Review, item) for item in data.get("reviews") or []],
            photos=[_build(Photo, item) for item in data.get("photos") or []],
            verified=bool(data.get("verified", False)),
            premium=_build(Premium, data.get("premium")),
            status=data.get("status") or STATUS_ACTIVE,
            external_ids=dict(data.get("external_ids") or {}),
            field_sources=dict(data.get("field_sources") or {}),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(slots=True)
class RawSourceRecord:
    """One facility as returned by a single external source."""

    source_id: str
    external_id: str
    raw_fields: Dict[str, Any]
    fetched_at: datetime


@dataclass(frozen=True)
class IdentitySignature:
    normalized_name: str
    normalized_address: str
    normalized_phone: str


@dataclass(frozen=True)
class MatchCandidate:
    existing_record_id: Optional[int]
    similarity: float
    basis: str
    name_similarity: float = 0.0
    address_similarity: float = 0.0


def _build(cls, data: Optional[Dict[str, Any]]):
    known = {f.name for f in fields(cls)}
    kwargs = {key: value for key, value in (data or {}).items() if key in known}
    return cls(**kwargs)
