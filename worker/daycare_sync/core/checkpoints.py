"""Per-source pagination cursors persisted as small JSON files.

A cursor is written after the orchestrator has consumed a page, so a run that
dies part-way can resume from the last fully processed page.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class CheckpointStore:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, source_id: str) -> Path:
        return self.directory.joinpath(f"{source_id}.json")

    def load(self, source_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(source_id)
        if not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable checkpoint %s: %s", path, exc)
            return None
        cursor = payload.get("cursor") if isinstance(payload, dict) else None
        if cursor is not None:
            logger.info("Resuming %s from checkpoint %s", source_id, cursor)
        return cursor

    def save(self, source_id: str, cursor: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(source_id)
        tmp = path.with_suffix(".json.tmp")
        payload = {"source": source_id, "cursor": cursor, "saved_at": datetime.now(timezone.utc).isoformat()}
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        tmp.replace(path)
        logger.debug("Saved %s checkpoint %s", source_id, cursor)

    def clear(self, source_id: str) -> None:
        path = self._path(source_id)
        if path.exists():
            path.unlink()
            logger.info("Cleared %s checkpoint", source_id)
