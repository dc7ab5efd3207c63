"""Re-ingestion of manually curated content.

Two inputs: the records already in the directory store, and an optional
curated JSON file. Stored records only contribute the values that were
curated by hand (provenance ``manual`` or none), so a field set by the
licensing registry is never handed back to the merge as a manual value.
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Protocol

from daycare_sync.collectors.base import Page, SourceCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import ManualConfig
from daycare_sync.core.errors import FatalConfigError
from daycare_sync.etl.merge import MANUAL_STORE_PREFIX
from daycare_sync.etl.slugs import base_slug
from daycare_sync.models import SOURCE_MANUAL, CanonicalRecord, RawSourceRecord

logger = logging.getLogger(__name__)

FILL_ONLY_GROUPS = {
    "program": ("age_groups", "min_months", "max_years", "languages", "curriculum", "special_programs"),
    "availability": ("accepting_enrollment", "spots_by_age_band", "waitlist", "last_updated"),
    "pricing": ("monthly_by_age_band",),
}
SCALAR_GROUPS = {
    "contact": ("phone", "email", "website"),
    "location": ("address", "city", "state", "zip", "neighborhood", "transit"),
}


class RecordSource(Protocol):
    def load_all(self) -> List[CanonicalRecord]:
        ...


def _curated(field_sources: Dict[str, str], key: str) -> bool:
    return field_sources.get(key) in (None, SOURCE_MANUAL)


def manual_fields(record: CanonicalRecord) -> Dict[str, Any]:
    """The hand-curated subset of a stored record, in canonical shape."""
    data = record.to_dict()
    owners = record.field_sources
    raw: Dict[str, Any] = {"name": record.name}

    if _curated(owners, "description"):
        raw["description"] = record.description
    if _curated(owners, "hours"):
        raw["hours"] = dict(record.hours)
    for group, attrs in {**SCALAR_GROUPS, **FILL_ONLY_GROUPS}.items():
        raw[group] = {attr: data[group][attr] for attr in attrs if _curated(owners, f"{group}.{attr}")}
    if _curated(owners, "location.coordinates"):
        raw["location"]["lat"] = record.location.lat
        raw["location"]["lng"] = record.location.lng
    if _curated(owners, "licensing"):
        raw["licensing"] = data["licensing"]

    raw["reviews"] = [review for review in data["reviews"] if review["source"] == SOURCE_MANUAL]
    raw["photos"] = [photo for photo in data["photos"] if photo["source"] == SOURCE_MANUAL]
    return raw


class ManualCollector(SourceCollector):
    source_id = SOURCE_MANUAL

    def __init__(
        self,
        config: ManualConfig,
        store: RecordSource,
        *,
        checkpoints: Optional[CheckpointStore] = None,
    ) -> None:
        super().__init__(config, checkpoints=checkpoints)
        self.store = store

    def iter_pages(self, cursor: Optional[Dict[str, Any]]) -> Iterator[Page]:
        # Both inputs are local and cheap to re-read, so a pass always starts over.
        yield Page(self._stored_records(), None)
        if self.config.curated_path is not None:
            yield Page(self._curated_records(), None)

    def _stored_records(self) -> Iterator[RawSourceRecord]:
        records = self.store.load_all()
        logger.info("Re-ingesting %d stored records", len(records))
        for record in records:
            if record.id is None:
                continue
            yield self.make_record(f"{MANUAL_STORE_PREFIX}{record.id}", manual_fields(record))

    def load_curated(self) -> List[Dict[str, Any]]:
        path = self.config.curated_path
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            raise FatalConfigError(f"cannot read curated file {path}: {exc}", source_id=SOURCE_MANUAL) from exc
        if isinstance(payload, dict):
            payload = payload.get("daycares") or []
        if not isinstance(payload, list):
            raise FatalConfigError(f"curated file {path} must hold a list of daycares", source_id=SOURCE_MANUAL)
        return [entry for entry in payload if isinstance(entry, dict)]

    def _curated_records(self) -> Iterator[RawSourceRecord]:
        entries = self.load_curated()
        logger.info("Loaded %d curated entries from %s", len(entries), self.config.curated_path)
        for entry in entries:
            external_id = str(entry.get("id") or entry.get("slug") or "").strip()
            if not external_id:
                if not entry.get("name"):
                    self.failures["missing-id"] += 1
                    continue
                external_id = base_slug(str(entry["name"]))
            yield self.make_record(external_id, entry)
