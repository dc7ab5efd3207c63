"""Token-paginated collection from Google Places text search."""

import logging
import time
from typing import Any, Dict, Iterator, List, Optional, Set

from daycare_sync.collectors.base import Page, SourceCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import PlacesConfig
from daycare_sync.models import SOURCE_PLACES, RawSourceRecord
from daycare_sync.vendors import google_places
from daycare_sync.vendors.http import RateLimitedSession
from daycare_sync.vendors.website import first_contact_email

logger = logging.getLogger(__name__)


class PlacesCollector(SourceCollector):
    source_id = SOURCE_PLACES

    def __init__(
        self,
        config: PlacesConfig,
        *,
        checkpoints: Optional[CheckpointStore] = None,
        client: Optional[RateLimitedSession] = None,
    ) -> None:
        super().__init__(config, checkpoints=checkpoints)
        self.client = client or RateLimitedSession(
            SOURCE_PLACES, request_delay=config.retry.request_delay, timeout=config.retry.timeout
        )
        self._seen: Set[str] = set()

    def close(self) -> None:
        self.client.close()

    def query_text(self, query: str) -> str:
        return f"{query} in {self.config.city}, {self.config.state}".strip()

    def iter_pages(self, cursor: Optional[Dict[str, Any]]) -> Iterator[Page]:
        cursor = cursor or {}
        start = int(cursor.get("query_index") or 0)
        resume_token = cursor.get("pagetoken")
        self._seen = set()

        for index in range(start, len(self.config.queries)):
            query = self.query_text(self.config.queries[index])
            token = resume_token if index == start else None
            pages = 0
            while pages < self.config.max_pages:
                if token:
                    # next_page_token only becomes valid a short while after it is issued.
                    time.sleep(self.config.settle_delay)
                payload = self.fetch_page(
                    lambda: google_places.text_search(self.client, query, self.config.api_key, pagetoken=token),
                    f"text search {query!r} page {pages + 1}",
                )
                if payload is None:
                    # A token cannot be re-derived, so the rest of this query is lost.
                    break
                pages += 1
                results = payload.get("results") or []
                next_token = payload.get("next_page_token")
                if next_token and pages < self.config.max_pages:
                    next_cursor = {"query_index": index, "pagetoken": next_token}
                else:
                    next_cursor = {"query_index": index + 1}
                logger.info("Places %r page %d: %d results", query, pages, len(results))
                yield Page(self._place_records(results), next_cursor)
                if not next_token:
                    break
                token = next_token

    def _place_records(self, results: List[Dict[str, Any]]) -> Iterator[RawSourceRecord]:
        for result in results:
            place_id = result.get("place_id")
            if not place_id:
                self.failures["missing-id"] += 1
                logger.debug("Skipping result without place_id: %s", result.get("name"))
                continue
            if place_id in self._seen:
                continue
            self._seen.add(place_id)

            details = self.fetch_detail(
                lambda: google_places.place_details(self.client, place_id, self.config.api_key),
                "place details",
                place_id,
            )
            if details is None:
                continue
            if self.config.enrich_contact_emails and details.get("website"):
                email = first_contact_email(details["website"])
                if email:
                    details = {**details, "contact_email": email}
            yield self.make_record(place_id, details)
