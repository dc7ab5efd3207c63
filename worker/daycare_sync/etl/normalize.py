"""Identity signatures used for fuzzy matching.

Everything here is pure: the same input always produces the same signature.
"""

import re
import unicodedata

import phonenumbers

from daycare_sync.etl.transform import to_draft
from daycare_sync.models import CanonicalRecord, IdentitySignature, RawSourceRecord

DEFAULT_PHONE_REGION = "US"

LEGAL_SUFFIXES = frozenset(
    {"llc", "inc", "incorporated", "corp", "corporation", "co", "company", "ltd", "lp", "llp", "pllc", "pc"}
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value or "")
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = without_marks.lower().replace("_", " ")
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub("", lowered)).strip()


def normalize_name(name: str) -> str:
    tokens = [token for token in _fold(name).split(" ") if token and token not in LEGAL_SUFFIXES]
    return " ".join(tokens)


def normalize_address(address: str) -> str:
    return _fold(address)


def normalize_phone(phone: str, region: str = DEFAULT_PHONE_REGION) -> str:
    """E.164 when the number parses, otherwise its digits."""
    if not phone or not phone.strip():
        return ""
    try:
        parsed = phonenumbers.parse(phone, region)
    except phonenumbers.NumberParseException:
        return re.sub(r"\D", "", phone)
    if not phonenumbers.is_possible_number(parsed):
        return re.sub(r"\D", "", phone)
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def signature_of(record: CanonicalRecord) -> IdentitySignature:
    return IdentitySignature(
        normalized_name=normalize_name(record.name),
        normalized_address=normalize_address(record.location.address),
        normalized_phone=normalize_phone(record.contact.phone),
    )


def signature_for_raw(incoming: RawSourceRecord) -> IdentitySignature:
    return signature_of(to_draft(incoming))
