"""CLI job writing the active directory as a JSON dataset for sitemap/SEO builds."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from daycare_sync.core.errors import StoreUnavailableError
from daycare_sync.core.store import DaycareStore
from daycare_sync.models import CanonicalRecord

logger = logging.getLogger(__name__)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def export_entry(record: CanonicalRecord) -> Dict[str, Any]:
    return {
        "slug": record.slug,
        "name": record.name,
        "neighborhood": record.location.neighborhood,
        "updated_at": _iso(record.updated_at),
        "verified": record.verified,
        "rating": record.ratings.aggregate_overall,
        "review_count": record.ratings.review_count,
        "location": {
            "address": record.location.address,
            "city": record.location.city,
            "state": record.location.state,
            "zip": record.location.zip,
            "lat": record.location.lat,
            "lng": record.location.lng,
        },
    }


def build_dataset(records: Iterable[CanonicalRecord]) -> List[Dict[str, Any]]:
    return sorted((export_entry(record) for record in records), key=lambda entry: entry["slug"])


def export_dataset(store: DaycareStore, output: Path) -> int:
    dataset = build_dataset(store.iter_export())
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(dataset, fh, ensure_ascii=False, indent=2)
    logger.info("Exported %d daycares to %s", len(dataset), output)
    return len(dataset)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export active daycares as JSON")
    parser.add_argument("--output", type=Path, required=True, help="Destination JSON file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)
    try:
        export_dataset(DaycareStore(), args.output)
    except StoreUnavailableError as exc:
        logger.error("Export failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
