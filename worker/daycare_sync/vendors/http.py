"""Rate-limited HTTP session and retry helper shared by the vendor clients."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from daycare_sync.core.config import RetryPolicy
from daycare_sync.core.errors import PermanentSourceError, TransientSourceError

logger = logging.getLogger(__name__)

USER_AGENT = "DaycareDirectoryBot/1.0 (+https://sfdaycarelist.com)"
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

T = TypeVar("T")


class RateLimitedSession:
    """requests.Session wrapper that sleeps a fixed delay after every call.

    The delay applies whether the call succeeded or not, so a burst of
    failures never hammers a source faster than its published limit.
    """

    def __init__(
        self,
        source_id: str,
        *,
        request_delay: float,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.source_id = source_id
        self.request_delay = request_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        if headers:
            self.session.headers.update(headers)
        self.calls = 0

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("timeout", self.timeout)
        self.calls += 1
        try:
            logger.debug("%s %s %s", self.source_id, method, url)
            try:
                response = self.session.request(method, url, **kwargs)
            except requests.Timeout as exc:
                raise TransientSourceError(f"timeout calling {url}: {exc}", source_id=self.source_id) from exc
            except requests.ConnectionError as exc:
                raise TransientSourceError(f"connection error calling {url}: {exc}", source_id=self.source_id) from exc
            except requests.RequestException as exc:
                raise PermanentSourceError(f"request to {url} failed: {exc}", source_id=self.source_id) from exc

            status = response.status_code
            if status in RETRYABLE_STATUS_CODES:
                raise _http_error(TransientSourceError, status, url, self.source_id)
            if status >= 400:
                raise _http_error(PermanentSourceError, status, url, self.source_id)
            try:
                return response.json()
            except ValueError as exc:
                raise PermanentSourceError(f"invalid JSON from {url}", source_id=self.source_id) from exc
        finally:
            if self.request_delay:
                time.sleep(self.request_delay)

    def get_json(self, url: str, **kwargs: Any) -> Any:
        return self.request_json("GET", url, **kwargs)

    def post_json(self, url: str, **kwargs: Any) -> Any:
        return self.request_json("POST", url, **kwargs)

    def close(self) -> None:
        self.session.close()


def _http_error(cls, status: int, url: str, source_id: str):
    exc = cls(f"HTTP {status} from {url}", source_id=source_id)
    exc.status_code = status
    return exc


def call_with_retry(fn: Callable[[], T], policy: RetryPolicy, *, description: str) -> T:
    """Run ``fn`` retrying TransientSourceError with a fixed backoff.

    The last TransientSourceError is re-raised once attempts are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except TransientSourceError as exc:
            logger.warning("%s failed (attempt %s/%s): %s", description, attempt, policy.max_attempts, exc)
            if attempt >= policy.max_attempts:
                logger.error("%s exhausted retries", description)
                raise
            time.sleep(policy.backoff_seconds)
