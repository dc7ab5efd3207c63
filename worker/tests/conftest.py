import copy
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure `daycare_sync` is importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from daycare_sync.core.errors import ConflictError  # noqa: E402
from daycare_sync.models import RawSourceRecord  # noqa: E402

FETCHED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for DaycareStore with the same slug-keyed upsert rules."""

    def __init__(self, records=None):
        self.rows = {}
        self.next_id = 1
        self.upserts = 0
        self.conflict_slugs = set()
        for record in records or []:
            self.seed(record)

    def seed(self, record):
        record = copy.deepcopy(record)
        if record.id is None:
            record.id = self.next_id
        self.next_id = max(self.next_id, record.id + 1)
        self.rows[record.slug] = record
        return record

    def load_all(self):
        return [copy.deepcopy(r) for r in sorted(self.rows.values(), key=lambda r: r.id)]

    def slug_exists(self, slug, exclude_id=None):
        row = self.rows.get(slug)
        return row is not None and row.id != exclude_id

    def get_by_slug(self, slug):
        row = self.rows.get(slug)
        return copy.deepcopy(row) if row else None

    def upsert(self, record):
        self.upserts += 1
        if record.slug in self.conflict_slugs:
            self.conflict_slugs.discard(record.slug)
            raise ConflictError(f"slug {record.slug} taken")
        row = self.rows.get(record.slug)
        if row is not None and row.id != record.id:
            raise ConflictError(f"slug {record.slug} taken")
        stored = copy.deepcopy(record)
        if row is None:
            stored.id = record.id if record.id is not None else self.next_id
            self.next_id = max(self.next_id, stored.id + 1)
            self.rows[stored.slug] = stored
            return "inserted", stored.id
        self.rows[stored.slug] = stored
        return "updated", stored.id

    def assign_slug(self, record_id, slug):
        if slug in self.rows:
            raise ConflictError(f"slug {slug} taken")
        key = next(key for key, row in self.rows.items() if row.id == record_id and not row.slug)
        row = self.rows.pop(key)
        row.slug = slug
        self.rows[slug] = row

    def iter_export(self):
        return iter(self.load_all())


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def no_sleep(monkeypatch):
    calls = []
    monkeypatch.setattr("time.sleep", lambda seconds: calls.append(seconds))
    return calls


def make_raw(source_id, external_id, raw_fields):
    return RawSourceRecord(source_id=source_id, external_id=external_id, raw_fields=raw_fields, fetched_at=FETCHED_AT)


def licensing_raw(number, name, address, *, status="Licensed", phone="", lat=None, lng=None, inspections=None):
    return make_raw(
        "licensing",
        number,
        {
            "facility": {
                "FacilityNumber": number,
                "FacilityName": name,
                "FacilityAddress": address,
                "City": "San Francisco",
                "State": "CA",
                "ZipCode": "94110",
                "FacilityPhone": phone,
                "FacilityStatus": status,
                "FacilityType": "Child Care Center",
                "LicensedCapacity": "45",
                "Latitude": lat,
                "Longitude": lng,
            },
            "details": {"MinimumAge": "0", "MaximumAge": "5"},
            "inspections": inspections or [],
        },
    )


def places_raw(place_id, name, address, *, rating=None, total=0, website="", phone="", reviews=None, photos=None):
    return make_raw(
        "places",
        place_id,
        {
            "place_id": place_id,
            "name": name,
            "formatted_address": address,
            "formatted_phone_number": phone,
            "website": website,
            "rating": rating,
            "user_ratings_total": total,
            "reviews": reviews or [],
            "photos": photos or [],
            "geometry": {"location": {"lat": 37.76, "lng": -122.42}},
        },
    )


def yelp_raw(business_id, name, address, *, rating=None, review_count=0, reviews=None):
    return make_raw(
        "reviews",
        business_id,
        {
            "business": {
                "id": business_id,
                "name": name,
                "rating": rating,
                "review_count": review_count,
                "location": {"address1": address, "city": "San Francisco", "state": "CA", "zip_code": "94110"},
                "coordinates": {"latitude": 37.75, "longitude": -122.41},
            },
            "reviews": reviews or [],
        },
    )


def manual_raw(external_id, fields):
    return make_raw("manual", external_id, fields)
