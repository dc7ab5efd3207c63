"""Client utilities for the Google Places API."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from daycare_sync.core.errors import FatalConfigError, PermanentSourceError, TransientSourceError
from daycare_sync.vendors.http import RateLimitedSession

logger = logging.getLogger(__name__)
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

DETAIL_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,international_phone_number,website,"
    "rating,user_ratings_total,reviews,photos,opening_hours,geometry,address_components,business_status"
)
_TRANSIENT_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


def _check_status(payload: Dict[str, Any], operation: str, *, pagetoken: Optional[str] = None) -> None:
    status = payload.get("status")
    if status in {"OK", "ZERO_RESULTS"}:
        return
    message = payload.get("error_message") or status
    logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
    if status in _TRANSIENT_STATUSES:
        raise TransientSourceError(f"{operation}: {message}", source_id="places")
    # A next_page_token is rejected as INVALID_REQUEST until it has settled.
    if status == "INVALID_REQUEST" and pagetoken:
        raise TransientSourceError(f"{operation}: page token not ready", source_id="places")
    if status == "REQUEST_DENIED":
        raise FatalConfigError(f"{operation}: {message}", source_id="places")
    raise PermanentSourceError(f"{operation}: {message}", source_id="places")


def text_search(client: RateLimitedSession, query: str, api_key: str, pagetoken: Optional[str] = None) -> Dict[str, Any]:
    params = {"query": query, "key": api_key}
    if pagetoken:
        params = {"pagetoken": pagetoken, "key": api_key}
    payload = client.get_json(f"{_BASE_URL}/textsearch/json", params=params)
    _check_status(payload, "text_search", pagetoken=pagetoken)
    return payload


def place_details(client: RateLimitedSession, place_id: str, api_key: str) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": DETAIL_FIELDS}
    payload = client.get_json(f"{_BASE_URL}/details/json", params=params)
    _check_status(payload, "place_details")
    if payload.get("status") == "ZERO_RESULTS" or not payload.get("result"):
        raise PermanentSourceError(f"place_details: no result for {place_id}", source_id="places", external_id=place_id)
    return payload["result"]


def photo_url(photo_reference: Optional[str], max_width: int = 800) -> Optional[str]:
    """Keyless photo URL; the read API signs it with its own key when serving."""
    if not photo_reference:
        return None
    query = urlencode({"maxwidth": max_width, "photo_reference": photo_reference})
    return f"{_BASE_URL}/photo?{query}"
