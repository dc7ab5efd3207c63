"""Persistence of canonical records in the ``daycares`` table.

Nested groups are stored as JSONB; the handful of values the public read API
filters and sorts on are duplicated into flat columns.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

import psycopg2
from psycopg2 import errors, extras

from daycare_sync.core.db import get_connection
from daycare_sync.core.errors import ConflictError, StoreUnavailableError
from daycare_sync.models import STATUS_ACTIVE, CanonicalRecord

logger = logging.getLogger(__name__)

JSON_COLUMNS = (
    "contact",
    "location",
    "licensing",
    "program",
    "availability",
    "pricing",
    "hours",
    "ratings",
    "reviews",
    "photos",
    "premium",
    "external_ids",
    "field_sources",
)

_SELECT_COLUMNS = """
    id,
    slug,
    name,
    description,
    verified,
    status,
    contact,
    location,
    licensing,
    program,
    availability,
    pricing,
    hours,
    ratings,
    reviews,
    photos,
    premium,
    external_ids,
    field_sources,
    address,
    city,
    state,
    zip,
    neighborhood,
    lat,
    lng,
    phone,
    email,
    website,
    created_at,
    updated_at
"""

_UPSERT_BY_SLUG = """
INSERT INTO daycares (
    slug,
    name,
    description,
    verified,
    status,
    contact,
    location,
    licensing,
    program,
    availability,
    pricing,
    hours,
    ratings,
    reviews,
    photos,
    premium,
    external_ids,
    field_sources,
    address,
    city,
    state,
    zip,
    neighborhood,
    lat,
    lng,
    phone,
    email,
    website,
    license_number,
    accepting_enrollment,
    age_groups,
    min_monthly_price,
    max_monthly_price,
    is_premium,
    aggregate_rating,
    review_count,
    created_at,
    updated_at
) VALUES (
    %(slug)s,
    %(name)s,
    %(description)s,
    %(verified)s,
    %(status)s,
    %(contact)s,
    %(location)s,
    %(licensing)s,
    %(program)s,
    %(availability)s,
    %(pricing)s,
    %(hours)s,
    %(ratings)s,
    %(reviews)s,
    %(photos)s,
    %(premium)s,
    %(external_ids)s,
    %(field_sources)s,
    %(address)s,
    %(city)s,
    %(state)s,
    %(zip)s,
    %(neighborhood)s,
    %(lat)s,
    %(lng)s,
    %(phone)s,
    %(email)s,
    %(website)s,
    %(license_number)s,
    %(accepting_enrollment)s,
    %(age_groups)s,
    %(min_monthly_price)s,
    %(max_monthly_price)s,
    %(is_premium)s,
    %(aggregate_rating)s,
    %(review_count)s,
    %(created_at)s,
    %(updated_at)s
)
ON CONFLICT (slug) DO UPDATE SET
    name = EXCLUDED.name,
    description = EXCLUDED.description,
    verified = EXCLUDED.verified,
    status = EXCLUDED.status,
    contact = EXCLUDED.contact,
    location = EXCLUDED.location,
    licensing = EXCLUDED.licensing,
    program = EXCLUDED.program,
    availability = EXCLUDED.availability,
    pricing = EXCLUDED.pricing,
    hours = EXCLUDED.hours,
    ratings = EXCLUDED.ratings,
    reviews = EXCLUDED.reviews,
    photos = EXCLUDED.photos,
    premium = EXCLUDED.premium,
    external_ids = EXCLUDED.external_ids,
    field_sources = EXCLUDED.field_sources,
    address = EXCLUDED.address,
    city = EXCLUDED.city,
    state = EXCLUDED.state,
    zip = EXCLUDED.zip,
    neighborhood = EXCLUDED.neighborhood,
    lat = EXCLUDED.lat,
    lng = EXCLUDED.lng,
    phone = EXCLUDED.phone,
    email = EXCLUDED.email,
    website = EXCLUDED.website,
    license_number = EXCLUDED.license_number,
    accepting_enrollment = EXCLUDED.accepting_enrollment,
    age_groups = EXCLUDED.age_groups,
    min_monthly_price = EXCLUDED.min_monthly_price,
    max_monthly_price = EXCLUDED.max_monthly_price,
    is_premium = EXCLUDED.is_premium,
    aggregate_rating = EXCLUDED.aggregate_rating,
    review_count = EXCLUDED.review_count,
    updated_at = EXCLUDED.updated_at
WHERE daycares.id IS NOT DISTINCT FROM %(id)s
RETURNING id, (xmax = 0) AS inserted;
"""

_ASSIGN_SLUG = """
UPDATE daycares SET slug = %(slug)s
WHERE id = %(id)s AND (slug IS NULL OR slug = '')
RETURNING id;
"""

_SLUG_EXISTS = """
SELECT 1 FROM daycares
WHERE slug = %(slug)s AND (%(exclude_id)s IS NULL OR id <> %(exclude_id)s)
LIMIT 1;
"""


@dataclass
class SearchFilters:
    neighborhood: Optional[str] = None
    age_group: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    accepting_enrollment: Optional[bool] = None
    verified: Optional[bool] = None
    text: Optional[str] = None
    include_inactive: bool = False
    limit: int = 50
    offset: int = 0


def record_params(record: CanonicalRecord) -> Dict[str, Any]:
    """Bind parameters for one canonical record."""
    data = record.to_dict()
    prices = [float(value) for value in record.pricing.monthly_by_age_band.values() if value is not None]
    params: Dict[str, Any] = {column: extras.Json(data[column]) for column in JSON_COLUMNS}
    params.update(
        {
            "id": record.id,
            "slug": record.slug,
            "name": record.name,
            "description": record.description,
            "verified": record.verified,
            "status": record.status,
            "address": record.location.address,
            "city": record.location.city,
            "state": record.location.state,
            "zip": record.location.zip,
            "neighborhood": record.location.neighborhood,
            "lat": record.location.lat,
            "lng": record.location.lng,
            "phone": record.contact.phone,
            "email": record.contact.email,
            "website": record.contact.website,
            "license_number": record.licensing.number or None,
            "accepting_enrollment": record.availability.accepting_enrollment,
            "age_groups": list(record.program.age_groups),
            "min_monthly_price": min(prices) if prices else None,
            "max_monthly_price": max(prices) if prices else None,
            "is_premium": record.premium.is_premium,
            "aggregate_rating": record.ratings.aggregate_overall,
            "review_count": record.ratings.review_count,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }
    )
    return params


def record_from_row(row: Dict[str, Any]) -> CanonicalRecord:
    """Rebuild a record from a row, falling back to flat columns for legacy rows."""
    data = {column: row.get(column) for column in JSON_COLUMNS}
    if not data["location"]:
        data["location"] = {
            "address": row.get("address") or "",
            "city": row.get("city") or "",
            "state": row.get("state") or "",
            "zip": row.get("zip") or "",
            "neighborhood": row.get("neighborhood") or "",
            "lat": row.get("lat"),
            "lng": row.get("lng"),
        }
    if not data["contact"]:
        data["contact"] = {
            "phone": row.get("phone") or "",
            "email": row.get("email") or "",
            "website": row.get("website") or "",
        }
    data.update(
        id=row.get("id"),
        slug=row.get("slug"),
        name=row.get("name"),
        description=row.get("description"),
        verified=row.get("verified"),
        status=row.get("status"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
    return CanonicalRecord.from_dict(data)


class DaycareStore:
    """Idempotent slug-keyed persistence plus the read queries the directory needs.

    Writes are serialized by a process-wide lock.
    """

    _write_lock = threading.Lock()

    def __init__(self, connection_factory: Callable[[], ContextManager[Any]] = get_connection) -> None:
        self._connection = connection_factory

    def upsert(self, record: CanonicalRecord) -> Tuple[str, int]:
        params = record_params(record)
        with self._write_lock:
            try:
                with self._connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute(_UPSERT_BY_SLUG, params)
                        row = cur.fetchone()
                    if row is None:
                        raise ConflictError(
                            f"slug {record.slug} already belongs to another record", external_id=record.slug
                        )
                    conn.commit()
            except errors.UniqueViolation as exc:
                raise ConflictError(f"unique violation writing {record.slug}: {exc}", external_id=record.slug) from exc
            except psycopg2.OperationalError as exc:
                raise StoreUnavailableError(f"database unavailable writing {record.slug}: {exc}") from exc

        record_id, inserted = row[0], row[1]
        outcome = "inserted" if inserted else "updated"
        logger.debug("Upserted %s (%s, id=%s)", record.slug, outcome, record_id)
        return outcome, record_id

    def assign_slug(self, record_id: int, slug: str) -> None:
        """Give a slugless legacy row its slug; the slug-keyed upsert can then find it."""
        with self._write_lock:
            try:
                with self._connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute(_ASSIGN_SLUG, {"id": record_id, "slug": slug})
                        row = cur.fetchone()
                    if row is None:
                        raise ConflictError(f"record {record_id} already has a slug", external_id=slug)
                    conn.commit()
            except errors.UniqueViolation as exc:
                raise ConflictError(f"slug {slug} already taken: {exc}", external_id=slug) from exc
            except psycopg2.OperationalError as exc:
                raise StoreUnavailableError(f"database unavailable assigning {slug}: {exc}") from exc
        logger.info("Assigned slug %s to record %s", slug, record_id)

    def _fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            with self._connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return list(cur.fetchall())
        except psycopg2.OperationalError as exc:
            raise StoreUnavailableError(f"database unavailable: {exc}") from exc

    def load_all(self) -> List[CanonicalRecord]:
        rows = self._fetch(f"SELECT {_SELECT_COLUMNS} FROM daycares ORDER BY id;", {})
        logger.info("Loaded %d canonical records", len(rows))
        return [record_from_row(row) for row in rows]

    def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        rows = self._fetch(_SLUG_EXISTS, {"slug": slug, "exclude_id": exclude_id})
        return bool(rows)

    def get_by_slug(self, slug: str) -> Optional[CanonicalRecord]:
        rows = self._fetch(f"SELECT {_SELECT_COLUMNS} FROM daycares WHERE slug = %(slug)s;", {"slug": slug})
        return record_from_row(rows[0]) if rows else None

    def search(self, filters: Optional[SearchFilters] = None) -> List[CanonicalRecord]:
        filters = filters or SearchFilters()
        clauses = []
        params: Dict[str, Any] = asdict(filters)
        if not filters.include_inactive:
            clauses.append("status = %(active)s")
            params["active"] = STATUS_ACTIVE
        if filters.neighborhood:
            clauses.append("neighborhood = %(neighborhood)s")
        if filters.age_group:
            clauses.append("%(age_group)s = ANY(age_groups)")
        if filters.min_price is not None:
            clauses.append("max_monthly_price >= %(min_price)s")
        if filters.max_price is not None:
            clauses.append("min_monthly_price <= %(max_price)s")
        if filters.accepting_enrollment is not None:
            clauses.append("accepting_enrollment = %(accepting_enrollment)s")
        if filters.verified is not None:
            clauses.append("verified = %(verified)s")
        if filters.text:
            clauses.append("(name ILIKE %(pattern)s OR description ILIKE %(pattern)s OR address ILIKE %(pattern)s)")
            params["pattern"] = f"%{filters.text}%"

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = (
            f"SELECT {_SELECT_COLUMNS} FROM daycares {where} "
            "ORDER BY is_premium DESC, aggregate_rating DESC NULLS LAST, created_at DESC "
            "LIMIT %(limit)s OFFSET %(offset)s;"
        )
        return [record_from_row(row) for row in self._fetch(sql, params)]

    def iter_export(self, batch_size: int = 500) -> Iterator[CanonicalRecord]:
        """Stream active records ordered by slug through a server-side cursor."""
        try:
            with self._connection() as conn:
                with conn.cursor(name="daycare_export", cursor_factory=extras.RealDictCursor) as cur:
                    cur.itersize = batch_size
                    cur.execute(
                        f"SELECT {_SELECT_COLUMNS} FROM daycares WHERE status = %(active)s ORDER BY slug;",
                        {"active": STATUS_ACTIVE},
                    )
                    for row in cur:
                        yield record_from_row(row)
        except psycopg2.OperationalError as exc:
            raise StoreUnavailableError(f"database unavailable during export: {exc}") from exc
