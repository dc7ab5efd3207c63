"""Stable, collision-free URL slugs for new canonical records."""

import logging
import re
import threading
from typing import Optional, Protocol, Set

logger = logging.getLogger(__name__)

FALLBACK_SLUG = "daycare"

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9-]")
_HYPHENS = re.compile(r"-+")


class SlugRegistry(Protocol):
    def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        ...


def base_slug(name: str) -> str:
    slug = _WHITESPACE.sub("-", (name or "").lower().strip())
    slug = _DISALLOWED.sub("", slug)
    slug = _HYPHENS.sub("-", slug).strip("-")
    return slug or FALLBACK_SLUG


class SlugAllocator:
    """Hands out slugs one at a time.

    The registry answers for what is already stored; ``_reserved`` covers slugs
    handed out in this process that may not have reached the store yet.
    """

    def __init__(self, registry: SlugRegistry) -> None:
        self.registry = registry
        self._lock = threading.Lock()
        self._reserved: Set[str] = set()

    def _taken(self, slug: str, record_id: Optional[int]) -> bool:
        return slug in self._reserved or self.registry.slug_exists(slug, exclude_id=record_id)

    def allocate(self, display_name: str, record_id: Optional[int] = None) -> str:
        base = base_slug(display_name)
        with self._lock:
            candidate = base
            suffix = 0
            while self._taken(candidate, record_id):
                suffix += 1
                candidate = f"{base}-{suffix}"
            self._reserved.add(candidate)
        if suffix:
            logger.info("Slug %s taken; allocated %s for %r", base, candidate, display_name)
        return candidate

    def release(self, slug: str) -> None:
        """Forget a reservation whose write never happened."""
        with self._lock:
            self._reserved.discard(slug)
