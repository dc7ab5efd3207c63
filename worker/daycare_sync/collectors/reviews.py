"""Offset-paginated collection from the Yelp Fusion business search."""

import logging
from typing import Any, Dict, Iterator, List, Optional

from daycare_sync.collectors.base import Page, SourceCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import ReviewsConfig
from daycare_sync.models import SOURCE_REVIEWS, RawSourceRecord
from daycare_sync.vendors import yelp
from daycare_sync.vendors.http import RateLimitedSession

logger = logging.getLogger(__name__)


class ReviewsCollector(SourceCollector):
    source_id = SOURCE_REVIEWS

    def __init__(
        self,
        config: ReviewsConfig,
        *,
        checkpoints: Optional[CheckpointStore] = None,
        client: Optional[RateLimitedSession] = None,
    ) -> None:
        super().__init__(config, checkpoints=checkpoints)
        self.client = client or RateLimitedSession(
            SOURCE_REVIEWS,
            request_delay=config.retry.request_delay,
            timeout=config.retry.timeout,
            headers=yelp.auth_headers(config.api_key),
        )

    def close(self) -> None:
        self.client.close()

    def iter_pages(self, cursor: Optional[Dict[str, Any]]) -> Iterator[Page]:
        offset = int((cursor or {}).get("offset") or 0)
        limit = self.config.page_size
        total: Optional[int] = None

        while offset < self.config.max_results and (total is None or offset < total):
            payload = self.fetch_page(
                lambda: yelp.search_businesses(self.client, self.config, offset),
                f"business search offset {offset}",
            )
            if payload is None:
                offset += limit
                continue
            businesses = payload.get("businesses") or []
            if not businesses:
                return
            total = payload.get("total", total)
            logger.info("Reviews offset %d: %d businesses (total=%s)", offset, len(businesses), total)
            yield Page(self._business_records(businesses), {"offset": offset + limit})
            offset += limit

    def _business_records(self, businesses: List[Dict[str, Any]]) -> Iterator[RawSourceRecord]:
        for business in businesses:
            business_id = business.get("id")
            if not business_id:
                self.failures["missing-id"] += 1
                continue
            details = self.fetch_detail(
                lambda: yelp.business_details(self.client, business_id),
                "business details",
                business_id,
            )
            if details is None:
                continue
            reviews = self.fetch_detail(
                lambda: yelp.business_reviews(self.client, business_id),
                "business reviews",
                business_id,
            )
            if reviews is None:
                continue
            yield self.make_record(business_id, {"business": details, "reviews": reviews})
