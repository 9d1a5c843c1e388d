"""
Deduplication against everything already staged or promoted.
"""

import logging
from typing import Iterable, List, Set, Callable, TypeVar, Optional

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DeduplicationIndex:
    """
    Set of external ids present in staging or in the catalog.

    Loaded once per crawl run with a single store lookup, then extended in
    memory as the run stages new drafts. Never shared between runs.
    """

    def __init__(self, known_ids: Optional[Iterable[str]] = None):
        self._known: Set[str] = set(known_ids or ())

    @classmethod
    def load(cls, store, candidate_ids: Iterable[str]) -> 'DeduplicationIndex':
        """
        Build the index for a batch of candidates.

        Args:
            store: Persistence adapter exposing find_by_external_ids(ids)
            candidate_ids: External ids about to be considered
        """
        ids = [external_id for external_id in candidate_ids if external_id]
        known = store.find_by_external_ids(ids) if ids else set()
        logger.debug(f"Dedup index loaded: {len(known)} of {len(ids)} candidates already known")
        return cls(known)

    def __contains__(self, external_id: str) -> bool:
        return external_id in self._known

    def __len__(self) -> int:
        return len(self._known)

    def is_known(self, external_id: str) -> bool:
        return external_id in self._known

    def add(self, external_id: str):
        self._known.add(external_id)

    def filter_new(self, candidates: Iterable[T], key: Callable[[T], str] = lambda c: c.external_id) -> List[T]:
        """Candidates whose external id is not known yet, order preserved."""
        fresh = []
        skipped = 0
        for candidate in candidates:
            if key(candidate) in self._known:
                skipped += 1
                continue
            fresh.append(candidate)
        if skipped:
            logger.info(f"Skipped {skipped} already known candidates")
        return fresh
