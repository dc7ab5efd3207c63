import json

import pytest

from conftest import FakeStore
from daycare_sync.collectors import licensing as licensing_module
from daycare_sync.collectors import places as places_module
from daycare_sync.collectors import reviews as reviews_module
from daycare_sync.collectors.licensing import LicensingCollector
from daycare_sync.collectors.manual import ManualCollector, manual_fields
from daycare_sync.collectors.places import PlacesCollector
from daycare_sync.collectors.reviews import ReviewsCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import LicensingConfig, ManualConfig, PlacesConfig, RetryPolicy, ReviewsConfig
from daycare_sync.core.errors import (
    FatalConfigError,
    PermanentSourceError,
    SourceUnavailableError,
    TransientSourceError,
)
from daycare_sync.models import CanonicalRecord, Review

FAST_RETRY = RetryPolicy(request_delay=0, max_attempts=2, backoff_seconds=0, max_consecutive_page_failures=2)


class DummyClient:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class SpyCheckpoints(CheckpointStore):
    def __init__(self, directory):
        super().__init__(directory)
        self.saved = []
        self.cleared = []

    def save(self, source_id, cursor):
        self.saved.append(cursor)
        super().save(source_id, cursor)

    def clear(self, source_id):
        self.cleared.append(source_id)
        super().clear(source_id)


@pytest.fixture
def checkpoints(tmp_path):
    return SpyCheckpoints(tmp_path)


def licensing_config(**overrides):
    values = dict(base_url="https://licensing.example", facility_type="801", city="SF", county="SF", page_size=2)
    values.update(overrides)
    return LicensingConfig(retry=FAST_RETRY, **values)


def facility(number):
    return {"FacilityNumber": number, "FacilityName": f"Facility {number}"}


@pytest.fixture
def licensing_api(monkeypatch):
    api = {"pages": {1: [facility("A"), facility("B")], 2: [facility("C")]}, "requested": [], "bad": {"B"}}

    def search(client, config, page):
        api["requested"].append(page)
        outcome = api["pages"].get(page, [])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def details(client, config, number):
        if number in api["bad"]:
            raise PermanentSourceError(f"no details for {number}")
        return {"FacilityNumber": number}

    monkeypatch.setattr(licensing_module.ca_licensing, "search_facilities", search)
    monkeypatch.setattr(licensing_module.ca_licensing, "facility_details", details)
    monkeypatch.setattr(licensing_module.ca_licensing, "inspection_history", lambda client, config, number: [])
    return api


def test_licensing_pages_until_short_page(licensing_api, checkpoints):
    client = DummyClient()
    collector = LicensingCollector(licensing_config(), checkpoints=checkpoints, client=client)

    records = list(collector.iter_records())

    assert [r.external_id for r in records] == ["A", "C"]
    assert records[0].raw_fields["facility"]["FacilityName"] == "Facility A"
    assert records[0].source_id == "licensing"
    assert collector.failures == {"permanent": 1}
    assert checkpoints.saved == [{"page": 2}, {"page": 3}]
    assert checkpoints.cleared == ["licensing"]
    assert client.closed is True


def test_licensing_checkpoints_after_page_is_consumed(licensing_api, checkpoints):
    collector = LicensingCollector(licensing_config(), checkpoints=checkpoints, client=DummyClient())
    records = collector.iter_records()

    assert next(records).external_id == "A"
    assert checkpoints.saved == []
    assert next(records).external_id == "C"
    assert checkpoints.saved == [{"page": 2}]


def test_licensing_resumes_from_checkpoint(licensing_api, checkpoints):
    checkpoints.save("licensing", {"page": 2})
    collector = LicensingCollector(licensing_config(), checkpoints=checkpoints, client=DummyClient())

    assert [r.external_id for r in collector.iter_records(resume=True)] == ["C"]
    assert licensing_api["requested"] == [2]


def test_licensing_skips_failed_page(licensing_api, no_sleep):
    licensing_api["pages"][1] = TransientSourceError("503")
    collector = LicensingCollector(licensing_config(), client=DummyClient())

    assert [r.external_id for r in collector.iter_records()] == ["C"]
    assert collector.failures == {"page": 1}


def test_licensing_gives_up_after_consecutive_failures(licensing_api, checkpoints, no_sleep):
    licensing_api["pages"] = {1: TransientSourceError("503"), 2: TransientSourceError("503")}
    collector = LicensingCollector(licensing_config(), checkpoints=checkpoints, client=DummyClient())

    with pytest.raises(SourceUnavailableError):
        list(collector.iter_records())
    assert checkpoints.cleared == []


def places_config(**overrides):
    values = dict(api_key="key", queries=("daycare", "preschool"), city="SF", state="CA", max_pages=3)
    values.update(overrides)
    return PlacesConfig(retry=FAST_RETRY, **values)


@pytest.fixture
def places_api(monkeypatch):
    api = {
        ("daycare in SF, CA", None): {"results": [{"place_id": "p1"}, {"place_id": "p2"}], "next_page_token": "t1"},
        ("daycare in SF, CA", "t1"): {"results": [{"place_id": "p3"}]},
        ("preschool in SF, CA", None): {"results": [{"place_id": "p2"}, {"place_id": "p4"}]},
    }

    def text_search(client, query, api_key, pagetoken=None):
        outcome = api[(query, pagetoken)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def place_details(client, place_id, api_key):
        return {"place_id": place_id, "name": f"Place {place_id}", "website": "https://place.example"}

    monkeypatch.setattr(places_module.google_places, "text_search", text_search)
    monkeypatch.setattr(places_module.google_places, "place_details", place_details)
    return api


def test_places_follows_tokens_and_dedupes(places_api, checkpoints, no_sleep):
    collector = PlacesCollector(places_config(), checkpoints=checkpoints, client=DummyClient())

    records = list(collector.iter_records())

    assert [r.external_id for r in records] == ["p1", "p2", "p3", "p4"]
    assert 2.0 in no_sleep
    assert checkpoints.saved == [{"query_index": 0, "pagetoken": "t1"}, {"query_index": 1}, {"query_index": 2}]


def test_places_skipped_token_page_ends_query(places_api, no_sleep):
    places_api[("daycare in SF, CA", "t1")] = TransientSourceError("INVALID_REQUEST")
    collector = PlacesCollector(places_config(), client=DummyClient())

    assert [r.external_id for r in collector.iter_records()] == ["p1", "p2", "p4"]
    assert collector.failures == {"page": 1}


def test_places_respects_max_pages(places_api, no_sleep):
    collector = PlacesCollector(places_config(max_pages=1), client=DummyClient())
    assert [r.external_id for r in collector.iter_records()] == ["p1", "p2", "p4"]


def test_places_optional_contact_email(places_api, monkeypatch, no_sleep):
    monkeypatch.setattr(places_module, "first_contact_email", lambda url: "hello@place.example")
    collector = PlacesCollector(places_config(enrich_contact_emails=True, queries=("preschool",)), client=DummyClient())

    records = list(collector.iter_records())
    assert records[0].raw_fields["contact_email"] == "hello@place.example"


def test_places_requires_api_key():
    collector = PlacesCollector(places_config(api_key=""), client=DummyClient())
    with pytest.raises(FatalConfigError):
        list(collector.iter_records())


def test_reviews_offset_pagination(monkeypatch, checkpoints):
    pages = {
        0: {"businesses": [{"id": "b1"}, {"id": "b2"}], "total": 3},
        2: {"businesses": [{"id": "b3"}, {"name": "no id"}], "total": 3},
    }
    monkeypatch.setattr(reviews_module.yelp, "search_businesses", lambda client, config, offset: pages[offset])
    monkeypatch.setattr(
        reviews_module.yelp, "business_details", lambda client, business_id: {"id": business_id, "name": business_id}
    )
    monkeypatch.setattr(reviews_module.yelp, "business_reviews", lambda client, business_id: [{"text": "ok"}])
    config = ReviewsConfig(api_key="k", location="SF, CA", page_size=2, max_results=10, retry=FAST_RETRY)
    collector = ReviewsCollector(config, checkpoints=checkpoints, client=DummyClient())

    records = list(collector.iter_records())

    assert [r.external_id for r in records] == ["b1", "b2", "b3"]
    assert records[0].raw_fields["reviews"] == [{"text": "ok"}]
    assert collector.failures == {"missing-id": 1}
    assert checkpoints.saved == [{"offset": 2}, {"offset": 4}]


def stored_record():
    record = CanonicalRecord(name="Sunshine Academy", id=1, slug="sunshine-academy")
    record.description = "Hand written"
    record.contact.phone = "415-555-0100"
    record.contact.website = "https://sunshine.example"
    record.licensing.number = "L1"
    record.location.lat = 37.7749
    record.location.lng = -122.4194
    record.reviews = [
        Review(author="Ana", text="Lovely", source="manual"),
        Review(author="Ben", text="Great", source="places"),
    ]
    record.field_sources = {
        "contact.phone": "licensing",
        "contact.website": "manual",
        "licensing": "licensing",
        "location.coordinates": "default",
    }
    return record


def test_manual_fields_only_carry_curated_values():
    raw = manual_fields(stored_record())

    assert raw["name"] == "Sunshine Academy"
    assert raw["description"] == "Hand written"
    assert raw["contact"] == {"email": "", "website": "https://sunshine.example"}
    assert "licensing" not in raw
    assert "lat" not in raw["location"]
    assert [review["author"] for review in raw["reviews"]] == ["Ana"]


def test_manual_collector_reads_store_and_curated_file(tmp_path):
    curated = tmp_path / "curated.json"
    curated.write_text(
        json.dumps({"daycares": [{"id": "c1", "name": "Curated Place"}, {"name": "No Id Place"}, {}]}),
        encoding="utf-8",
    )
    collector = ManualCollector(ManualConfig(curated_path=curated), FakeStore([stored_record()]))

    records = list(collector.iter_records())

    assert [r.external_id for r in records] == ["record:1", "c1", "no-id-place"]
    assert all(r.source_id == "manual" for r in records)
    assert collector.failures == {"missing-id": 1}


def test_manual_collector_rejects_malformed_file(tmp_path):
    curated = tmp_path / "curated.json"
    curated.write_text('"just a string"', encoding="utf-8")
    collector = ManualCollector(ManualConfig(curated_path=curated), FakeStore())

    with pytest.raises(FatalConfigError):
        list(collector.iter_records())
