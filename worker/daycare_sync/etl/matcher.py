"""Fuzzy identity matching of incoming facilities against the canonical set.

Invariant: given the same index contents and the same incoming signature the
result is always the same candidate (or None). Iteration order of the index
does not matter because ties are broken by record id.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from daycare_sync.models import IdentitySignature, MatchCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchPolicy:
    name_threshold: float = 0.90
    name_with_address_threshold: float = 0.70
    address_threshold: float = 0.70


DEFAULT_POLICY = MatchPolicy()


def similarity(left: str, right: str) -> float:
    """1 - levenshtein / max(len). Two empty strings are identical."""
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    distance = Levenshtein.distance(left, right)
    return 1.0 - distance / max(len(left), len(right))


def address_similarity(left: str, right: str) -> float:
    # A missing address can never support a match.
    if not left or not right:
        return 0.0
    return similarity(left, right)


def score(
    incoming: IdentitySignature,
    existing: IdentitySignature,
    policy: MatchPolicy = DEFAULT_POLICY,
) -> Optional[Tuple[float, float, str]]:
    """Return (name_sim, address_sim, basis) when the pair qualifies, else None."""
    name_sim = similarity(incoming.normalized_name, existing.normalized_name)
    addr_sim = address_similarity(incoming.normalized_address, existing.normalized_address)
    both_addressed = bool(incoming.normalized_address and existing.normalized_address)

    if name_sim > policy.name_threshold:
        # Same name at clearly different addresses is two facilities.
        if both_addressed and addr_sim < policy.address_threshold:
            return None
        return name_sim, addr_sim, "name"
    if name_sim > policy.name_with_address_threshold and addr_sim > policy.address_threshold:
        return name_sim, addr_sim, "name+address"
    return None


def find_best_match(
    incoming: IdentitySignature,
    existing: Iterable[Tuple[int, IdentitySignature]],
    policy: MatchPolicy = DEFAULT_POLICY,
) -> Optional[MatchCandidate]:
    best: Optional[MatchCandidate] = None
    best_key: Optional[Tuple[float, int]] = None

    for record_id, signature in existing:
        qualified = score(incoming, signature, policy)
        if qualified is None:
            continue
        name_sim, addr_sim, basis = qualified
        combined = name_sim + addr_sim
        # Highest combined similarity wins, then the earliest-created id.
        key = (-combined, record_id)
        if best_key is None or key < best_key:
            best_key = key
            best = MatchCandidate(
                existing_record_id=record_id,
                similarity=combined / 2,
                basis=basis,
                name_similarity=name_sim,
                address_similarity=addr_sim,
            )
    return best


class MatchIndex:
    """In-memory signatures of every canonical record known to the run."""

    def __init__(self, policy: MatchPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy
        self._signatures: Dict[int, IdentitySignature] = {}
        self._external: Dict[Tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._signatures)

    def add(self, record_id: int, signature: IdentitySignature, external_ids: Optional[Dict[str, str]] = None) -> None:
        self._signatures[record_id] = signature
        for source_id, external_id in (external_ids or {}).items():
            self.link(source_id, external_id, record_id)

    def link(self, source_id: str, external_id: str, record_id: int) -> None:
        if external_id:
            self._external[(source_id, external_id)] = record_id

    def match(
        self,
        signature: IdentitySignature,
        *,
        source_id: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Optional[MatchCandidate]:
        if source_id and external_id:
            known = self._external.get((source_id, external_id))
            if known is not None:
                return MatchCandidate(existing_record_id=known, similarity=1.0, basis="external-id")
        candidate = find_best_match(signature, self._signatures.items(), self.policy)
        if candidate is not None:
            logger.debug(
                "Matched %r to record %s (name=%.2f address=%.2f basis=%s)",
                signature.normalized_name,
                candidate.existing_record_id,
                candidate.name_similarity,
                candidate.address_similarity,
                candidate.basis,
            )
        return candidate
