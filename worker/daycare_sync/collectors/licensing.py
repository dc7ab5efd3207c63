"""Page-numbered collection from the state licensing registry."""

import logging
from typing import Any, Dict, Iterator, List, Optional

from daycare_sync.collectors.base import Page, SourceCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import LicensingConfig
from daycare_sync.models import SOURCE_LICENSING, RawSourceRecord
from daycare_sync.vendors import ca_licensing
from daycare_sync.vendors.http import RateLimitedSession

logger = logging.getLogger(__name__)


class LicensingCollector(SourceCollector):
    source_id = SOURCE_LICENSING

    def __init__(
        self,
        config: LicensingConfig,
        *,
        checkpoints: Optional[CheckpointStore] = None,
        client: Optional[RateLimitedSession] = None,
    ) -> None:
        super().__init__(config, checkpoints=checkpoints)
        self.client = client or RateLimitedSession(
            SOURCE_LICENSING, request_delay=config.retry.request_delay, timeout=config.retry.timeout
        )

    def close(self) -> None:
        self.client.close()

    def iter_pages(self, cursor: Optional[Dict[str, Any]]) -> Iterator[Page]:
        page = int((cursor or {}).get("page") or 1)
        while True:
            facilities = self.fetch_page(
                lambda: ca_licensing.search_facilities(self.client, self.config, page),
                f"licensing search page {page}",
            )
            if facilities is None:
                page += 1
                continue
            if not facilities:
                logger.info("Licensing listing exhausted at page %d", page)
                return
            logger.info("Licensing page %d: %d facilities", page, len(facilities))
            yield Page(self._facility_records(facilities), {"page": page + 1})
            if len(facilities) < self.config.page_size:
                return
            page += 1

    def _facility_records(self, facilities: List[Dict[str, Any]]) -> Iterator[RawSourceRecord]:
        for facility in facilities:
            number = str(facility.get("FacilityNumber") or "").strip()
            if not number:
                self.failures["missing-id"] += 1
                logger.warning("Licensing facility without a number skipped: %r", facility.get("FacilityName"))
                continue
            details = self.fetch_detail(
                lambda: ca_licensing.facility_details(self.client, self.config, number),
                "facility details",
                number,
            )
            if details is None:
                continue
            inspections = self.fetch_detail(
                lambda: ca_licensing.inspection_history(self.client, self.config, number),
                "inspection history",
                number,
            )
            if inspections is None:
                continue
            yield self.make_record(number, {"facility": facility, "details": details, "inspections": inspections})
