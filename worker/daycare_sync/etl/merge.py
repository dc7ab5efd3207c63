"""Field-level merge of an incoming source record into a canonical record.

Provenance of scalar fields is kept in ``record.field_sources`` so that a
value written by a more authoritative source is never downgraded on a later
pass, whatever order sources arrive in.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from daycare_sync.core.config import MergeConfig
from daycare_sync.core.errors import ValidationError
from daycare_sync.etl.slugs import SlugAllocator
from daycare_sync.etl.transform import to_draft
from daycare_sync.models import (
    SOURCE_LICENSING,
    SOURCE_MANUAL,
    SOURCE_PLACES,
    SOURCE_REVIEWS,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    CanonicalRecord,
    Photo,
    RawSourceRecord,
    Review,
)

logger = logging.getLogger(__name__)

PRECEDENCE = {SOURCE_LICENSING: 3, SOURCE_MANUAL: 2, SOURCE_PLACES: 1, SOURCE_REVIEWS: 1}
DEFAULT_PROVENANCE = "default"
# Non-empty values with no recorded provenance predate the pipeline and are curated.
_LEGACY_PRECEDENCE = PRECEDENCE[SOURCE_MANUAL]
_PROVENANCE_PRECEDENCE = {**PRECEDENCE, DEFAULT_PROVENANCE: -1}

LICENSING_FIELDS = (
    "number",
    "status",
    "type",
    "capacity",
    "issued_date",
    "expiration_date",
    "last_inspection",
    "inspection_score",
    "violations",
)
CONTACT_FIELDS = ("phone", "email", "website")
LOCATION_FIELDS = ("address", "city", "state", "zip", "neighborhood", "transit")
PROGRAM_FIELDS = ("age_groups", "min_months", "max_years", "languages", "curriculum", "special_programs")
INACTIVE_LICENSE_STATUSES = {"closed", "revoked", "inactive"}

MANUAL_STORE_PREFIX = "record:"


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def round_half_up(value: Decimal, places: str = "0.1") -> float:
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


def aggregate_rating(by_source: Dict[str, float]) -> Optional[float]:
    """Mean of the present per-source ratings, round-half-up to one decimal."""
    present = [Decimal(str(value)) for value in by_source.values() if value]
    if not present:
        return None
    return round_half_up(sum(present) / len(present))


def _owner_precedence(record: CanonicalRecord, key: str, current: Any) -> int:
    owner = record.field_sources.get(key)
    if owner is None:
        return -1 if is_empty(current) else _LEGACY_PRECEDENCE
    return _PROVENANCE_PRECEDENCE.get(owner, 0)


def _write_scalar(record: CanonicalRecord, group: Any, group_name: str, attr: str, value: Any, source_id: str) -> bool:
    """Fill when empty, or overwrite a strictly less authoritative value."""
    if is_empty(value):
        return False
    key = f"{group_name}.{attr}" if group_name else attr
    current = getattr(group, attr)
    if not is_empty(current) and PRECEDENCE[source_id] <= _owner_precedence(record, key, current):
        return False
    if current == value and (source_id != SOURCE_LICENSING or record.field_sources.get(key) == source_id):
        return False
    setattr(group, attr, copy.deepcopy(value))
    record.field_sources[key] = source_id
    return True


def _fill_if_empty(record: CanonicalRecord, group: Any, group_name: str, attr: str, value: Any, source_id: str) -> bool:
    if is_empty(value) or not is_empty(getattr(group, attr)):
        return False
    setattr(group, attr, copy.deepcopy(value))
    record.field_sources[f"{group_name}.{attr}" if group_name else attr] = source_id
    return True


def _merge_licensing(record: CanonicalRecord, draft: CanonicalRecord, source_id: str) -> None:
    if source_id == SOURCE_LICENSING:
        for attr in LICENSING_FIELDS:
            value = getattr(draft.licensing, attr)
            if not is_empty(value) or attr == "violations":
                setattr(record.licensing, attr, copy.deepcopy(value))
        record.field_sources["licensing"] = SOURCE_LICENSING
        if draft.licensing.status in INACTIVE_LICENSE_STATUSES:
            record.status = STATUS_INACTIVE
        elif draft.licensing.status == "active":
            record.status = STATUS_ACTIVE
    elif source_id == SOURCE_MANUAL:
        if record.field_sources.get("licensing") == SOURCE_LICENSING:
            return
        wrote = False
        for attr in LICENSING_FIELDS:
            value = getattr(draft.licensing, attr)
            if not is_empty(value) and getattr(record.licensing, attr) != value:
                setattr(record.licensing, attr, copy.deepcopy(value))
                wrote = True
        if wrote:
            record.field_sources["licensing"] = SOURCE_MANUAL
    # Enrichment sources never write licensing fields.


def _merge_contact_and_location(record: CanonicalRecord, draft: CanonicalRecord, source_id: str) -> None:
    _write_scalar(record, record, "", "name", draft.name, source_id)
    for attr in CONTACT_FIELDS:
        _write_scalar(record, record.contact, "contact", attr, getattr(draft.contact, attr), source_id)
    for attr in LOCATION_FIELDS:
        _write_scalar(record, record.location, "location", attr, getattr(draft.location, attr), source_id)

    if draft.location.lat is not None and draft.location.lng is not None:
        key = "location.coordinates"
        current = record.location.lat if record.location.lng is not None else None
        if is_empty(current) or PRECEDENCE[source_id] > _owner_precedence(record, key, current):
            record.location.lat = draft.location.lat
            record.location.lng = draft.location.lng
            record.field_sources[key] = source_id


def _merge_fill_only(record: CanonicalRecord, draft: CanonicalRecord, source_id: str) -> None:
    _fill_if_empty(record, record, "", "description", draft.description, source_id)
    for attr in PROGRAM_FIELDS:
        _fill_if_empty(record, record.program, "program", attr, getattr(draft.program, attr), source_id)
    for attr in ("accepting_enrollment", "spots_by_age_band", "waitlist", "last_updated"):
        _fill_if_empty(record, record.availability, "availability", attr, getattr(draft.availability, attr), source_id)
    _fill_if_empty(record, record.pricing, "pricing", "monthly_by_age_band", draft.pricing.monthly_by_age_band, source_id)
    _fill_if_empty(record, record, "", "hours", draft.hours, source_id)


def _union_capped(existing: List[Any], incoming: Iterable[Any], key_fn, cap: int) -> List[Any]:
    merged = list(existing)
    seen = {key_fn(item) for item in merged}
    per_source: Dict[str, int] = {}
    for item in merged:
        per_source[item.source] = per_source.get(item.source, 0) + 1
    for item in incoming:
        key = key_fn(item)
        if key in seen or per_source.get(item.source, 0) >= cap:
            continue
        merged.append(copy.deepcopy(item))
        seen.add(key)
        per_source[item.source] = per_source.get(item.source, 0) + 1
    return merged


def _review_key(review: Review):
    return (review.author.strip().lower(), review.text.strip())


def _photo_key(photo: Photo):
    return photo.url


def _merge_ratings(record: CanonicalRecord, draft: CanonicalRecord) -> None:
    for provider, value in draft.ratings.by_source.items():
        record.ratings.by_source[provider] = value
    for provider, count in draft.ratings.review_counts.items():
        record.ratings.review_counts[provider] = count
    record.ratings.aggregate_overall = aggregate_rating(record.ratings.by_source)
    if record.ratings.review_counts:
        record.ratings.review_count = sum(record.ratings.review_counts.values())
    else:
        record.ratings.review_count = len(record.reviews)


def _apply_default_coordinates(record: CanonicalRecord, config: MergeConfig) -> None:
    if record.location.lat is None or record.location.lng is None:
        record.location.lat = config.default_lat
        record.location.lng = config.default_lng
        record.field_sources["location.coordinates"] = DEFAULT_PROVENANCE


def validate_canonical(record: CanonicalRecord) -> None:
    if not record.name or not record.name.strip():
        raise ValidationError("canonical record has no name")
    if not record.slug:
        raise ValidationError(f"canonical record {record.name!r} has no slug")
    if record.created_at is None or record.updated_at is None:
        raise ValidationError(f"canonical record {record.slug} is missing timestamps")


def merge_record(
    existing: Optional[CanonicalRecord],
    incoming: RawSourceRecord,
    *,
    allocator: Optional[SlugAllocator] = None,
    config: Optional[MergeConfig] = None,
    now: Optional[datetime] = None,
) -> CanonicalRecord:
    """Return a new, complete canonical record; ``existing`` is never mutated."""
    config = config or MergeConfig()
    now = now or datetime.now(timezone.utc)
    source_id = incoming.source_id
    draft = to_draft(incoming)

    if existing is None:
        if not draft.name.strip():
            raise ValidationError(f"{source_id} record {incoming.external_id} has no name", source_id=source_id)
        record = CanonicalRecord(name=draft.name, created_at=now)
        record.field_sources["name"] = source_id
        if allocator is not None:
            record.slug = allocator.allocate(draft.name)
    else:
        record = copy.deepcopy(existing)
        if not record.slug and allocator is not None:
            # Rows created before slugs existed get one on their next merge.
            record.slug = allocator.allocate(record.name, record_id=record.id)
            logger.info("Backfilled slug %s for record %s", record.slug, record.id)

    _merge_licensing(record, draft, source_id)
    _merge_contact_and_location(record, draft, source_id)
    _merge_fill_only(record, draft, source_id)

    record.reviews = _union_capped(record.reviews, draft.reviews, _review_key, config.max_reviews_per_source)
    record.photos = _union_capped(record.photos, draft.photos, _photo_key, config.max_photos_per_source)
    _merge_ratings(record, draft)
    _apply_default_coordinates(record, config)

    if incoming.external_id and not incoming.external_id.startswith(MANUAL_STORE_PREFIX):
        record.external_ids[source_id] = incoming.external_id

    record.verified = record.licensing.status == "active" and bool(record.licensing.number)
    record.updated_at = now
    if record.created_at is None:
        record.created_at = now

    logger.debug("Merged %s %s into %s", source_id, incoming.external_id, record.slug)
    validate_canonical(record)
    return record
