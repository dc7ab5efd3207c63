import pytest

from conftest import licensing_raw, make_raw, places_raw
from daycare_sync.core.errors import ValidationError
from daycare_sync.etl import transform


def test_licensing_draft_maps_registry_fields():
    raw = licensing_raw(
        "384001234",
        "Sunshine Academy",
        "123 Market St, Mission District",
        phone="(415) 555-0100",
        lat="37.79",
        lng="-122.40",
        inspections=[
            {"InspectionDate": "2024-03-01", "OverallScore": "96", "ViolationCount": "1", "ViolationType": "Type B"},
            {"InspectionDate": "2023-02-01", "OverallScore": "90", "ViolationCount": "0"},
        ],
    )
    draft = transform.to_draft(raw)

    assert draft.name == "Sunshine Academy"
    assert draft.licensing.number == "384001234"
    assert draft.licensing.status == "active"
    assert draft.licensing.capacity == 45
    assert draft.licensing.last_inspection == "2024-03-01"
    assert draft.licensing.inspection_score == 96.0
    assert draft.licensing.violations == [{"date": "2024-03-01", "type": "Type B", "description": None}]
    assert draft.location.neighborhood == "mission-district"
    assert draft.location.lat == 37.79
    assert draft.program.age_groups == ["infant", "toddler", "preschool"]


def test_places_draft_hours_rating_reviews_photos():
    raw = places_raw(
        "pid-1",
        "Sunshine Academy Inc.",
        "123 Market Street, San Francisco, CA 94103",
        rating=4.5,
        total=32,
        website="https://sunshine.example",
        reviews=[{"author_name": "Ana", "text": "Lovely staff", "rating": 5, "time": 1700000000}],
        photos=[{"photo_reference": "ref-1"}, {"photo_reference": None}],
    )
    raw.raw_fields["opening_hours"] = {"weekday_text": ["Monday: 7:00 AM – 6:00 PM", "Tuesday: Closed"]}
    raw.raw_fields["address_components"] = [
        {"types": ["locality"], "long_name": "San Francisco"},
        {"types": ["administrative_area_level_1"], "short_name": "CA"},
        {"types": ["postal_code"], "long_name": "94103"},
    ]

    draft = transform.to_draft(raw)

    assert draft.contact.website == "https://sunshine.example"
    assert draft.hours == {"monday": "7:00 AM – 6:00 PM", "tuesday": "Closed"}
    assert draft.ratings.by_source == {"google": 4.5}
    assert draft.ratings.review_counts == {"google": 32}
    assert [(r.author, r.source) for r in draft.reviews] == [("Ana", "places")]
    assert len(draft.photos) == 1
    assert draft.photos[0].url.endswith("photo_reference=ref-1")
    assert (draft.location.city, draft.location.state, draft.location.zip) == ("San Francisco", "CA", "94103")
    assert draft.location.address == "123 Market Street"


def test_street_line_prefers_address_components():
    components = [
        {"types": ["street_number"], "long_name": "123"},
        {"types": ["route"], "long_name": "Market Street", "short_name": "Market St"},
        {"types": ["locality"], "long_name": "San Francisco"},
    ]
    formatted = "123 Market St, San Francisco, CA 94103, USA"

    assert transform.street_line(components, formatted) == "123 Market St"
    assert transform.street_line([], formatted) == "123 Market St"
    assert transform.street_line([], "") == ""


def test_reviews_draft_formats_yelp_hours():
    raw = make_raw(
        "reviews",
        "biz-1",
        {
            "business": {
                "id": "biz-1",
                "name": "Little Stars",
                "rating": 4.0,
                "review_count": 12,
                "location": {"address1": "1200 Castro St"},
                "hours": [{"open": [{"day": 0, "start": "0730", "end": "1800"}]}],
                "photos": ["https://yelp.example/p.jpg"],
            },
            "reviews": [{"user": {"name": "Ben"}, "text": "Great", "rating": 4, "time_created": "2024-01-01"}],
        },
    )
    draft = transform.to_draft(raw)

    assert draft.hours == {"monday": "7:30 AM - 6:00 PM"}
    assert draft.ratings.by_source == {"yelp": 4.0}
    assert draft.location.neighborhood == "castro"
    assert draft.reviews[0].author == "Ben"
    assert draft.photos[0].source == "reviews"


def test_manual_draft_accepts_legacy_keys():
    raw = make_raw(
        "manual",
        "tiny-tots",
        {
            "id": "tiny-tots",
            "name": " Tiny Tots ",
            "location": {"street": "88 Noe St", "latitude": "37.76", "longitude": "-122.43"},
            "license": {"license_number": "999", "status": "Licensed"},
            "program": {"ages_min_months": 6},
            "photos": ["https://img.example/a.jpg"],
            "field_sources": {"name": "licensing"},
            "ratings": {"by_source": {"google": 5.0}},
        },
    )
    draft = transform.to_draft(raw)

    assert draft.name == "Tiny Tots"
    assert draft.location.address == "88 Noe St"
    assert draft.location.lat == 37.76
    assert draft.licensing.number == "999"
    assert draft.licensing.status == "active"
    assert draft.program.min_months == 6
    assert draft.photos[0].source == "manual"
    assert draft.field_sources == {}
    assert draft.ratings.by_source == {}


def test_manual_reviews_with_null_author_or_text():
    raw = make_raw(
        "manual",
        "tiny-tots",
        {"name": "Tiny Tots", "reviews": [{"author": None, "text": " Cozy ", "rating": 5}, {"author": "Ana", "text": None}]},
    )
    draft = transform.to_draft(raw)

    assert [(r.author, r.text) for r in draft.reviews] == [("", "Cozy"), ("Ana", "")]
    assert draft.reviews[0].source == "manual"


def test_to_draft_rejects_nameless_and_unknown():
    with pytest.raises(ValidationError):
        transform.to_draft(places_raw("pid", "", "1 Main St"))
    with pytest.raises(ValidationError):
        transform.to_draft(make_raw("winnie", "x", {"name": "A"}))


def test_helpers():
    assert transform.format_yelp_time("0000") == "12:00 AM"
    assert transform.format_yelp_time("1230") == "12:30 PM"
    assert transform.normalize_license_status("CLOSED") == "closed"
    assert transform.infer_age_groups(None, None) == []
    assert transform.infer_neighborhood("500 Haight St") == "haight-ashbury"
