"""Client for the California CDSS Care Facility Search API."""

import logging
from typing import Any, Dict, List

from daycare_sync.core.config import LicensingConfig
from daycare_sync.core.errors import PermanentSourceError
from daycare_sync.vendors.http import RateLimitedSession

logger = logging.getLogger(__name__)


def search_facilities(client: RateLimitedSession, config: LicensingConfig, page: int) -> List[Dict[str, Any]]:
    """Return one page (1-based) of licensed facilities; an empty list ends the listing."""
    body = {
        "FacilityType": config.facility_type,
        "City": config.city,
        "County": config.county,
        "FacilityStatus": "Licensed",
        "PageSize": config.page_size,
        "PageNumber": page,
    }
    payload = client.post_json(f"{config.base_url}/Search", json=body)
    if isinstance(payload, list):
        return payload
    facilities = (payload or {}).get("facilities") or []
    logger.debug("Licensing search page %d returned %d facilities", page, len(facilities))
    return facilities


def facility_details(client: RateLimitedSession, config: LicensingConfig, facility_number: str) -> Dict[str, Any]:
    payload = client.get_json(f"{config.base_url}/FacilityDetails/{facility_number}")
    if not payload:
        raise PermanentSourceError(
            f"no details for facility {facility_number}", source_id="licensing", external_id=facility_number
        )
    return payload


def inspection_history(client: RateLimitedSession, config: LicensingConfig, facility_number: str) -> List[Dict[str, Any]]:
    """Inspections newest first; missing history is not an error."""
    payload = client.get_json(f"{config.base_url}/Inspections/{facility_number}")
    if isinstance(payload, dict):
        payload = payload.get("inspections") or []
    inspections = [item for item in payload or [] if isinstance(item, dict)]
    return sorted(inspections, key=lambda item: str(item.get("InspectionDate") or ""), reverse=True)
