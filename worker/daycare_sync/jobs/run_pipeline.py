"""CLI job that runs every source through match, merge and persist."""

import argparse
import json
import logging
import sys
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

from daycare_sync.collectors.base import SourceCollector
from daycare_sync.collectors.licensing import LicensingCollector
from daycare_sync.collectors.manual import ManualCollector
from daycare_sync.collectors.places import PlacesCollector
from daycare_sync.collectors.reviews import ReviewsCollector
from daycare_sync.core.checkpoints import CheckpointStore
from daycare_sync.core.config import MergeConfig, Settings, get_settings
from daycare_sync.core.errors import (
    ConflictError,
    FatalConfigError,
    PermanentSourceError,
    PipelineError,
    SourceUnavailableError,
    StoreUnavailableError,
    ValidationError,
)
from daycare_sync.core.store import DaycareStore
from daycare_sync.etl.matcher import MatchIndex
from daycare_sync.etl.merge import MANUAL_STORE_PREFIX, merge_record
from daycare_sync.etl.normalize import signature_for_raw, signature_of
from daycare_sync.etl.slugs import SlugAllocator
from daycare_sync.models import (
    SOURCE_LICENSING,
    SOURCE_MANUAL,
    SOURCE_ORDER,
    SOURCE_PLACES,
    SOURCE_REVIEWS,
    CanonicalRecord,
    RawSourceRecord,
)

logger = logging.getLogger(__name__)

STATUS_NOT_RUN = "not_run"
STATUS_COMPLETED = "completed"
STATUS_ABORTED = "aborted"
STATUS_CANCELLED = "cancelled"

EXIT_OK = 0
EXIT_STORE_UNAVAILABLE = 1
EXIT_CONFIG_ERROR = 2


@dataclass
class SourceStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    status: str = STATUS_NOT_RUN
    error: Optional[str] = None
    error_kind: Optional[str] = None
    errors_by_kind: Counter = field(default_factory=Counter)

    def count(self, outcome: str) -> None:
        if outcome == "inserted":
            self.inserted += 1
        else:
            self.updated += 1

    def to_dict(self, detailed: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errored": self.errored,
        }
        if detailed:
            data.update(status=self.status, error=self.error, errors_by_kind=dict(self.errors_by_kind))
        return data


@dataclass
class RunSummary:
    sources: Dict[str, SourceStats] = field(default_factory=lambda: {s: SourceStats() for s in SOURCE_ORDER})
    status: str = STATUS_NOT_RUN
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self, detailed: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {source: stats.to_dict(detailed) for source, stats in self.sources.items()}
        if detailed:
            return {
                "status": self.status,
                "error": self.error,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
                "sources": data,
            }
        return data


class PipelineRunner:
    """Holds the in-memory view of the directory for one run."""

    def __init__(
        self,
        store: DaycareStore,
        *,
        merge_config: Optional[MergeConfig] = None,
        allocator: Optional[SlugAllocator] = None,
        index: Optional[MatchIndex] = None,
    ) -> None:
        self.store = store
        self.merge_config = merge_config or MergeConfig()
        self.allocator = allocator or SlugAllocator(store)
        self.index = index or MatchIndex()
        self.records: Dict[int, CanonicalRecord] = {}

    def load(self) -> None:
        for record in self.store.load_all():
            self._remember(record)
        logger.info("Match index holds %d records", len(self.index))

    def _remember(self, record: CanonicalRecord) -> None:
        self.records[record.id] = record
        self.index.add(record.id, signature_of(record), record.external_ids)
        self.index.link(SOURCE_MANUAL, f"{MANUAL_STORE_PREFIX}{record.id}", record.id)

    def process_record(self, incoming: RawSourceRecord, now: Optional[datetime] = None) -> str:
        """normalize -> match -> merge -> persist; returns "inserted" or "updated"."""
        signature = signature_for_raw(incoming)
        candidate = self.index.match(signature, source_id=incoming.source_id, external_id=incoming.external_id)
        existing = self.records.get(candidate.existing_record_id) if candidate else None

        merged = merge_record(existing, incoming, allocator=self.allocator, config=self.merge_config, now=now)
        if existing is not None and not existing.slug:
            self.store.assign_slug(existing.id, merged.slug)
        outcome, record_id = self._persist(merged, is_new=existing is None)
        merged.id = record_id
        self._remember(merged)
        return outcome

    def _persist(self, record: CanonicalRecord, *, is_new: bool):
        try:
            return self.store.upsert(record)
        except ConflictError as exc:
            if not is_new:
                raise
            previous = record.slug
            record.slug = self.allocator.allocate(record.name)
            logger.warning("Slug %s was taken concurrently (%s); retrying as %s", previous, exc, record.slug)
            return self.store.upsert(record)


def build_collectors(settings: Settings, store: DaycareStore, checkpoints: Optional[CheckpointStore] = None):
    checkpoints = checkpoints or CheckpointStore(settings.checkpoint_dir)
    return {
        SOURCE_LICENSING: lambda: LicensingCollector(settings.licensing, checkpoints=checkpoints),
        SOURCE_MANUAL: lambda: ManualCollector(settings.manual, store, checkpoints=checkpoints),
        SOURCE_PLACES: lambda: PlacesCollector(settings.places, checkpoints=checkpoints),
        SOURCE_REVIEWS: lambda: ReviewsCollector(settings.reviews, checkpoints=checkpoints),
    }


def _record_name(incoming: RawSourceRecord) -> str:
    raw = incoming.raw_fields or {}
    return str(
        raw.get("name") or (raw.get("facility") or {}).get("FacilityName") or (raw.get("business") or {}).get("name") or ""
    )


def _run_source(runner: PipelineRunner, collector: SourceCollector, stats: SourceStats, resume: bool) -> None:
    source_id = collector.source_id
    try:
        for incoming in collector.iter_records(resume=resume):
            try:
                stats.count(runner.process_record(incoming))
            except StoreUnavailableError:
                raise
            except (ValidationError, PermanentSourceError) as exc:
                stats.skipped += 1
                stats.errors_by_kind[exc.kind] += 1
                logger.warning(
                    "Skipped %s record %s (%r): %s",
                    source_id,
                    incoming.external_id,
                    _record_name(incoming),
                    exc,
                )
            except PipelineError as exc:
                stats.errored += 1
                stats.errors_by_kind[exc.kind] += 1
                logger.warning(
                    "Failed %s record %s (%r): %s", source_id, incoming.external_id, _record_name(incoming), exc
                )
            except Exception as exc:  # noqa: BLE001
                stats.errored += 1
                stats.errors_by_kind["unexpected"] += 1
                logger.exception("Unexpected failure on %s record %s: %s", source_id, incoming.external_id, exc)
    finally:
        for kind, count in collector.failures.items():
            stats.skipped += count
            stats.errors_by_kind[kind] += count


def run_pipeline(
    settings: Settings,
    store: DaycareStore,
    collectors: Optional[Dict[str, Any]] = None,
    stop_event: Optional[threading.Event] = None,
    *,
    sources: Optional[Iterable[str]] = None,
    resume: bool = False,
    runner: Optional[PipelineRunner] = None,
) -> RunSummary:
    """Run the selected sources in the fixed order and return the summary.

    ``collectors`` maps source id to a collector, or to a zero-argument
    factory returning one; missing entries are built from ``settings``.
    """
    summary = RunSummary(started_at=datetime.now(timezone.utc))
    selected = set(sources or SOURCE_ORDER)
    factories = {**build_collectors(settings, store), **(collectors or {})}
    runner = runner or PipelineRunner(store, merge_config=settings.merge)

    try:
        runner.load()
    except StoreUnavailableError as exc:
        logger.error("Directory store unavailable, nothing processed: %s", exc)
        summary.status = STATUS_ABORTED
        summary.error = str(exc)
        summary.finished_at = datetime.now(timezone.utc)
        return summary

    summary.status = STATUS_COMPLETED
    for source_id in SOURCE_ORDER:
        if source_id not in selected:
            continue
        stats = summary.sources[source_id]
        if stop_event is not None and stop_event.is_set():
            logger.info("Run cancelled before %s", source_id)
            stats.status = STATUS_CANCELLED
            summary.status = STATUS_CANCELLED
            continue

        logger.info("Starting %s pass", source_id)
        try:
            target = factories[source_id]
            collector = target if isinstance(target, SourceCollector) else target()
            _run_source(runner, collector, stats, resume)
            stats.status = STATUS_COMPLETED
        except (FatalConfigError, SourceUnavailableError) as exc:
            stats.status = STATUS_ABORTED
            stats.error = str(exc)
            stats.error_kind = exc.kind
            logger.error("%s pass aborted: %s", source_id, exc)
        except StoreUnavailableError as exc:
            stats.status = STATUS_ABORTED
            stats.error = str(exc)
            stats.error_kind = exc.kind
            summary.status = STATUS_ABORTED
            summary.error = str(exc)
            logger.error("Directory store unavailable during %s pass; halting run: %s", source_id, exc)
            break
        logger.info("Finished %s pass: %s", source_id, stats.to_dict())

    summary.finished_at = datetime.now(timezone.utc)
    logger.info("Run %s: %s", summary.status, json.dumps(summary.to_dict()))
    return summary


def exit_code_for(summary: RunSummary) -> int:
    if summary.status == STATUS_ABORTED and summary.error is not None:
        return EXIT_STORE_UNAVAILABLE
    if any(stats.error_kind == FatalConfigError.kind for stats in summary.sources.values()):
        return EXIT_CONFIG_ERROR
    return EXIT_OK


def _parse_sources(raw: str) -> Sequence[str]:
    names = [name.strip() for name in raw.split(",") if name.strip()]
    unknown = [name for name in names if name not in SOURCE_ORDER]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown source(s): {', '.join(unknown)}")
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Consolidate daycare sources into the directory")
    parser.add_argument(
        "--sources",
        type=_parse_sources,
        default=list(SOURCE_ORDER),
        help=f"Comma separated subset of {','.join(SOURCE_ORDER)}",
    )
    parser.add_argument("--resume", action="store_true", help="Resume each source from its last checkpoint")
    parser.add_argument("--summary-path", type=Path, help="Also write the JSON summary to this file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    summary = run_pipeline(get_settings(), DaycareStore(), sources=args.sources, resume=args.resume)
    payload = json.dumps(summary.to_dict(detailed=True), indent=2)
    print(payload)
    if args.summary_path:
        args.summary_path.parent.mkdir(parents=True, exist_ok=True)
        args.summary_path.write_text(payload, encoding="utf-8")
    return exit_code_for(summary)


if __name__ == "__main__":
    sys.exit(main())
