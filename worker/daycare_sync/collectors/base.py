"""Shared pagination, retry and checkpoint plumbing for source collectors."""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, TypeVar

from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import RetryPolicy
from daycare_sync.core.errors import PermanentSourceError, SourceUnavailableError, TransientSourceError
from daycare_sync.models import RawSourceRecord
from daycare_sync.vendors.http import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page:
    records: Iterable[RawSourceRecord]
    # Where to resume once every record of this page has been handled.
    next_cursor: Optional[Dict[str, Any]]


class SourceCollector:
    """Lazy, restartable iterator of RawSourceRecord for one source.

    Subclasses implement ``iter_pages``. Pages are fetched only when the
    consumer asks for more records, and the cursor is checkpointed once a
    page's records have all been consumed.
    """

    source_id = ""

    def __init__(self, config: Any, *, checkpoints: Optional[CheckpointStore] = None) -> None:
        self.config = config
        self.checkpoints = checkpoints
        self.failures: Counter = Counter()
        self._consecutive_page_failures = 0

    @property
    def retry(self) -> RetryPolicy:
        return self.config.retry

    def validate(self) -> None:
        self.config.validate()

    def iter_pages(self, cursor: Optional[Dict[str, Any]]) -> Iterator[Page]:
        raise NotImplementedError

    def iter_records(self, resume: bool = False) -> Iterator[RawSourceRecord]:
        self.validate()
        cursor = None
        if resume and self.checkpoints is not None:
            cursor = self.checkpoints.load(self.source_id)
        try:
            for page in self.iter_pages(cursor):
                yield from page.records
                if page.next_cursor is not None and self.checkpoints is not None:
                    self.checkpoints.save(self.source_id, page.next_cursor)
        finally:
            self.close()
        if self.checkpoints is not None:
            self.checkpoints.clear(self.source_id)
        if self.failures:
            logger.info("%s pass finished with skipped items: %s", self.source_id, dict(self.failures))

    def __iter__(self) -> Iterator[RawSourceRecord]:
        return self.iter_records()

    def close(self) -> None:
        pass

    def fetch_page(self, fn: Callable[[], T], description: str) -> Optional[T]:
        """Fetch one listing page, or None when the page has to be skipped."""
        try:
            result = call_with_retry(fn, self.retry, description=description)
        except (TransientSourceError, PermanentSourceError) as exc:
            self.failures["page"] += 1
            self._consecutive_page_failures += 1
            logger.warning("%s: skipping %s: %s", self.source_id, description, exc)
            if self._consecutive_page_failures >= self.retry.max_consecutive_page_failures:
                raise SourceUnavailableError(
                    f"{self._consecutive_page_failures} consecutive page failures, last: {exc}",
                    source_id=self.source_id,
                ) from exc
            return None
        self._consecutive_page_failures = 0
        return result

    def fetch_detail(self, fn: Callable[[], T], description: str, external_id: str) -> Optional[T]:
        """Fetch a per-facility payload, or None when the facility has to be skipped."""
        try:
            return call_with_retry(fn, self.retry, description=description)
        except (TransientSourceError, PermanentSourceError) as exc:
            self.failures[exc.kind] += 1
            logger.warning("%s: skipping %s (%s): %s", self.source_id, external_id, description, exc)
            return None

    def make_record(self, external_id: str, raw_fields: Dict[str, Any]) -> RawSourceRecord:
        return RawSourceRecord(
            source_id=self.source_id,
            external_id=external_id,
            raw_fields=raw_fields,
            fetched_at=datetime.now(timezone.utc),
        )
