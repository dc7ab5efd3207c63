"""Project source-specific raw payloads onto the canonical record shape.

Each ``*_draft`` function returns a CanonicalRecord holding only what that
source said about the facility. The merge engine decides which of those
values survive.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from daycare_sync.core.errors import ValidationError
from daycare_sync.models import (
    RATING_PROVIDERS,
    SOURCE_LICENSING,
    SOURCE_MANUAL,
    SOURCE_PLACES,
    SOURCE_REVIEWS,
    CanonicalRecord,
    Photo,
    Ratings,
    RawSourceRecord,
    Review,
)
from daycare_sync.vendors.google_places import photo_url

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MAX_PHOTOS_PER_PAYLOAD = 10

NEIGHBORHOOD_KEYWORDS = {
    "mission": "mission-district",
    "castro": "castro",
    "noe valley": "noe-valley",
    "pacific heights": "pacific-heights",
    "richmond": "richmond",
    "sunset": "sunset",
    "haight": "haight-ashbury",
    "marina": "marina",
    "north beach": "north-beach",
    "financial district": "financial-district",
    "soma": "soma",
    "potrero": "potrero-hill",
}

LICENSE_STATUS_MAP = {
    "licensed": "active",
    "active": "active",
    "closed": "closed",
    "revoked": "revoked",
    "suspended": "suspended",
    "pending": "pending",
    "inactive": "inactive",
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    number = _safe_float(value)
    return int(number) if number is not None else None


def infer_neighborhood(address: str) -> str:
    lowered = (address or "").lower()
    for keyword, slug in NEIGHBORHOOD_KEYWORDS.items():
        if keyword in lowered:
            return slug
    return ""


def infer_age_groups(min_months: Optional[int], max_years: Optional[int]) -> List[str]:
    if min_months is None and max_years is None:
        return []
    low = min_months if min_months is not None else 0
    high = max_years if max_years is not None else 12
    groups = []
    if low <= 12:
        groups.append("infant")
    if low <= 36 and high >= 1:
        groups.append("toddler")
    if high >= 3:
        groups.append("preschool")
    return groups


def normalize_license_status(raw_status: Any) -> str:
    status = _text(raw_status).lower()
    return LICENSE_STATUS_MAP.get(status, status)


def parse_address_components(address_components: Iterable[Dict[str, Any]]) -> Tuple[str, str, str]:
    city = ""
    state = ""
    postal_code = ""
    for component in address_components or []:
        types = set(component.get("types", []))
        if "locality" in types or ("administrative_area_level_2" in types and not city):
            city = component.get("long_name") or city
        if "administrative_area_level_1" in types:
            state = component.get("short_name") or component.get("long_name") or state
        if "postal_code" in types:
            postal_code = component.get("long_name") or postal_code
    return city, state, postal_code


def street_line(address_components: Iterable[Dict[str, Any]], formatted_address: str) -> str:
    """Street part of a Places address, comparable with registry and Yelp street lines."""
    number = ""
    route = ""
    for component in address_components or []:
        types = set(component.get("types", []))
        if "street_number" in types:
            number = component.get("long_name") or number
        if "route" in types:
            route = component.get("short_name") or component.get("long_name") or route
    if route:
        return f"{number} {route}".strip()
    return (formatted_address or "").split(",", 1)[0].strip()


def format_yelp_time(value: str) -> str:
    """0800 -> 8:00 AM"""
    hours = int(value[:2])
    minutes = value[2:]
    suffix = "PM" if hours >= 12 else "AM"
    display = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
    return f"{display}:{minutes} {suffix}"


def licensing_draft(raw: Dict[str, Any]) -> CanonicalRecord:
    facility = raw.get("facility") or {}
    details = raw.get("details") or {}
    inspections = raw.get("inspections") or []
    latest = inspections[0] if inspections else {}

    address = _text(facility.get("FacilityAddress"))
    min_months = _safe_int(details.get("MinimumAge"))
    max_years = _safe_int(details.get("MaximumAge"))

    draft = CanonicalRecord(name=_text(facility.get("FacilityName")))
    draft.contact.phone = _text(facility.get("FacilityPhone"))
    draft.contact.email = _text(details.get("ContactEmail"))
    draft.contact.website = _text(details.get("Website"))

    draft.location.address = address
    draft.location.city = _text(facility.get("City"))
    draft.location.state = _text(facility.get("State")) or "CA"
    draft.location.zip = _text(facility.get("ZipCode"))
    draft.location.neighborhood = infer_neighborhood(address)
    draft.location.lat = _safe_float(facility.get("Latitude"))
    draft.location.lng = _safe_float(facility.get("Longitude"))

    lic = draft.licensing
    lic.number = _text(facility.get("FacilityNumber"))
    lic.status = normalize_license_status(facility.get("FacilityStatus"))
    lic.type = _text(facility.get("FacilityType"))
    lic.capacity = _safe_int(facility.get("LicensedCapacity"))
    lic.issued_date = facility.get("OriginalLicenseDate") or None
    lic.expiration_date = facility.get("ExpirationDate") or None
    lic.last_inspection = latest.get("InspectionDate") or None
    lic.inspection_score = _safe_float(latest.get("OverallScore"))
    lic.violations = [
        {
            "date": item.get("InspectionDate"),
            "type": item.get("ViolationType"),
            "description": item.get("ViolationDescription"),
        }
        for item in inspections
        if (_safe_int(item.get("ViolationCount")) or 0) > 0
    ]

    draft.program.min_months = min_months
    draft.program.max_years = max_years
    draft.program.age_groups = infer_age_groups(min_months, max_years)
    return draft


def places_draft(raw: Dict[str, Any]) -> CanonicalRecord:
    geometry = (raw.get("geometry") or {}).get("location") or {}
    city, state, postal_code = parse_address_components(raw.get("address_components", []))
    formatted_address = _text(raw.get("formatted_address"))
    address = street_line(raw.get("address_components", []), formatted_address)
    provider = RATING_PROVIDERS[SOURCE_PLACES]

    draft = CanonicalRecord(name=_text(raw.get("name")))
    draft.contact.phone = _text(raw.get("formatted_phone_number") or raw.get("international_phone_number"))
    draft.contact.website = _text(raw.get("website"))
    draft.location.address = address
    draft.location.city = city
    draft.location.state = state
    draft.location.zip = postal_code
    draft.location.neighborhood = infer_neighborhood(formatted_address)
    draft.location.lat = _safe_float(geometry.get("lat"))
    draft.location.lng = _safe_float(geometry.get("lng"))

    weekday_text = (raw.get("opening_hours") or {}).get("weekday_text") or []
    for index, text in enumerate(weekday_text[: len(WEEKDAYS)]):
        parts = str(text).split(": ", 1)
        if len(parts) == 2:
            draft.hours[WEEKDAYS[index]] = parts[1]

    rating = _safe_float(raw.get("rating"))
    if rating:
        draft.ratings.by_source[provider] = rating
        draft.ratings.review_counts[provider] = _safe_int(raw.get("user_ratings_total")) or 0

    for review in raw.get("reviews") or []:
        author = _text(review.get("author_name"))
        text = _text(review.get("text"))
        if not author and not text:
            continue
        draft.reviews.append(
            Review(
                author=author,
                text=text,
                source=SOURCE_PLACES,
                rating=_safe_float(review.get("rating")),
                time=_text(review.get("time")) or None,
                url=review.get("author_url"),
            )
        )

    for photo in (raw.get("photos") or [])[:MAX_PHOTOS_PER_PAYLOAD]:
        url = photo_url(photo.get("photo_reference"))
        if url:
            draft.photos.append(Photo(url=url, source=SOURCE_PLACES))

    if raw.get("contact_email"):
        draft.contact.email = _text(raw["contact_email"])
    return draft


def reviews_draft(raw: Dict[str, Any]) -> CanonicalRecord:
    business = raw.get("business") or {}
    location = business.get("location") or {}
    coordinates = business.get("coordinates") or {}
    address = _text(location.get("address1"))
    provider = RATING_PROVIDERS[SOURCE_REVIEWS]

    draft = CanonicalRecord(name=_text(business.get("name")))
    draft.contact.phone = _text(business.get("display_phone") or business.get("phone"))
    draft.location.address = address
    draft.location.city = _text(location.get("city"))
    draft.location.state = _text(location.get("state"))
    draft.location.zip = _text(location.get("zip_code"))
    draft.location.neighborhood = infer_neighborhood(address)
    draft.location.lat = _safe_float(coordinates.get("latitude"))
    draft.location.lng = _safe_float(coordinates.get("longitude"))

    hours_blocks = business.get("hours") or []
    if hours_blocks:
        for slot in hours_blocks[0].get("open") or []:
            day = slot.get("day")
            if isinstance(day, int) and 0 <= day < len(WEEKDAYS):
                draft.hours[WEEKDAYS[day]] = f"{format_yelp_time(slot['start'])} - {format_yelp_time(slot['end'])}"

    rating = _safe_float(business.get("rating"))
    if rating:
        draft.ratings.by_source[provider] = rating
        draft.ratings.review_counts[provider] = _safe_int(business.get("review_count")) or 0

    for review in raw.get("reviews") or []:
        author = _text((review.get("user") or {}).get("name"))
        text = _text(review.get("text"))
        if not author and not text:
            continue
        draft.reviews.append(
            Review(
                author=author,
                text=text,
                source=SOURCE_REVIEWS,
                rating=_safe_float(review.get("rating")),
                time=review.get("time_created"),
                url=review.get("url"),
            )
        )

    for url in (business.get("photos") or [])[:MAX_PHOTOS_PER_PAYLOAD]:
        if url:
            draft.photos.append(Photo(url=str(url), source=SOURCE_REVIEWS))
    return draft


def _alias(data: Dict[str, Any], target: str, *aliases: str) -> None:
    for alias in aliases:
        if data.get(target) in (None, "") and data.get(alias) not in (None, ""):
            data[target] = data[alias]


def manual_draft(raw: Dict[str, Any]) -> CanonicalRecord:
    """Curated entries use the canonical shape, with the legacy JSON key names accepted."""
    data = dict(raw)
    location = dict(data.get("location") or {})
    _alias(location, "address", "street")
    _alias(location, "lat", "latitude")
    _alias(location, "lng", "longitude")
    _alias(location, "transit", "public_transit")
    data["location"] = location

    licensing = dict(data.get("licensing") or data.get("license") or {})
    _alias(licensing, "number", "license_number")
    data["licensing"] = licensing

    program = dict(data.get("program") or {})
    _alias(program, "min_months", "ages_min_months")
    _alias(program, "max_years", "ages_max_years")
    data["program"] = program

    data["reviews"] = [
        {**item, "author": _text(item.get("author")), "text": _text(item.get("text")), "source": SOURCE_MANUAL}
        for item in data.get("reviews") or []
        if isinstance(item, dict)
    ]
    data["photos"] = [
        {"url": item, "source": SOURCE_MANUAL} if isinstance(item, str) else {**item, "source": SOURCE_MANUAL}
        for item in data.get("photos") or []
        if item
    ]

    draft = CanonicalRecord.from_dict({key: value for key, value in data.items() if key not in {"id", "slug"}})
    draft.name = _text(draft.name)
    draft.licensing.status = normalize_license_status(draft.licensing.status)
    draft.location.lat = _safe_float(draft.location.lat)
    draft.location.lng = _safe_float(draft.location.lng)
    # Provenance, ratings and timestamps belong to the stored record, not to the curated input.
    draft.field_sources = {}
    draft.external_ids = {}
    draft.ratings = Ratings()
    draft.created_at = None
    draft.updated_at = None
    return draft


_DRAFTERS = {
    SOURCE_LICENSING: licensing_draft,
    SOURCE_PLACES: places_draft,
    SOURCE_REVIEWS: reviews_draft,
    SOURCE_MANUAL: manual_draft,
}


def to_draft(incoming: RawSourceRecord) -> CanonicalRecord:
    """Project a raw record and check it carries enough identity to be matched."""
    drafter = _DRAFTERS.get(incoming.source_id)
    if drafter is None:
        raise ValidationError(
            f"unknown source {incoming.source_id!r}", source_id=incoming.source_id, external_id=incoming.external_id
        )
    draft = drafter(incoming.raw_fields or {})
    if not draft.name:
        raise ValidationError("record has no name", source_id=incoming.source_id, external_id=incoming.external_id)
    return draft
