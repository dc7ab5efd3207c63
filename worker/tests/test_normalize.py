from conftest import places_raw
from daycare_sync.etl import normalize
from daycare_sync.models import CanonicalRecord


def test_normalize_name_drops_legal_suffixes_and_accents():
    assert normalize.normalize_name("Sunshine Academy, Inc.") == "sunshine academy"
    assert normalize.normalize_name("Café  Niños LLC") == "cafe ninos"
    assert normalize.normalize_name("Bright-Start Co") == "brightstart"


def test_punctuation_is_removed_not_spaced():
    assert normalize.normalize_name("A.B.C. Daycare") == normalize.normalize_name("ABC Daycare") == "abc daycare"
    assert normalize.normalize_name("Kids' Place") == "kids place"


def test_normalize_address_is_folded():
    assert normalize.normalize_address("  123 Market St., Suite #4 ") == "123 market st suite 4"
    assert normalize.normalize_address("") == ""


def test_normalize_phone():
    assert normalize.normalize_phone("(415) 555-0123") == "+14155550123"
    assert normalize.normalize_phone("") == ""
    assert normalize.normalize_phone("call 12") == "12"


def test_signatures_are_deterministic():
    record = CanonicalRecord(name="Sunshine Academy")
    record.location.address = "123 Market St"
    first = normalize.signature_of(record)
    second = normalize.signature_of(record)
    assert first == second
    assert first.normalized_name == "sunshine academy"

    raw_sig = normalize.signature_for_raw(places_raw("pid", "Sunshine Academy Inc.", "123 Market Street"))
    assert raw_sig.normalized_name == first.normalized_name
    assert raw_sig.normalized_address == "123 market street"
