"""Client for the Yelp Fusion business API."""

import logging
from typing import Any, Dict, List

from daycare_sync.core.config import ReviewsConfig
from daycare_sync.core.errors import FatalConfigError, PermanentSourceError
from daycare_sync.vendors.http import RateLimitedSession

logger = logging.getLogger(__name__)
_BASE_URL = "https://api.yelp.com/v3"


def auth_headers(api_key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


def search_businesses(client: RateLimitedSession, config: ReviewsConfig, offset: int) -> Dict[str, Any]:
    params = {
        "location": config.location,
        "categories": config.categories,
        "limit": config.page_size,
        "offset": offset,
    }
    try:
        return client.get_json(f"{_BASE_URL}/businesses/search", params=params) or {}
    except PermanentSourceError as exc:
        # 401/403 on the listing call means the key itself is bad.
        if getattr(exc, "status_code", None) in {401, 403}:
            raise FatalConfigError(f"Yelp rejected YELP_API_KEY: {exc}", source_id="reviews") from exc
        raise


def business_details(client: RateLimitedSession, business_id: str) -> Dict[str, Any]:
    payload = client.get_json(f"{_BASE_URL}/businesses/{business_id}")
    if not payload or not payload.get("id"):
        raise PermanentSourceError(f"no details for business {business_id}", source_id="reviews", external_id=business_id)
    return payload


def business_reviews(client: RateLimitedSession, business_id: str) -> List[Dict[str, Any]]:
    payload = client.get_json(f"{_BASE_URL}/businesses/{business_id}/reviews", params={"limit": 50})
    return (payload or {}).get("reviews") or []
