"""
First-write-wins bookkeeping for contribution sources.

A fragment may be loaded more than once (retried fetch, the same script
included twice, a crawler re-requesting it). Only the first delivery of a
given ``source_id`` counts; later ones are suppressed but counted, because a
non-zero duplicate count is a useful signal about the page loader.

Examples:
    >>> ledger = SourceLedger()
    >>> ledger.claim("haybale")
    True
    >>> ledger.claim("haybale")
    False
    >>> ledger.duplicate_counts
    {'haybale': 1}
"""

from __future__ import annotations

from collections import Counter


class SourceLedger:
    """Set of claimed source ids plus per-source duplicate counters."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._duplicates: Counter[str] = Counter()

    def claim(self, source_id: str) -> bool:
        """Record ``source_id``; True the first time, False for every repeat."""
        if source_id in self._seen:
            self._duplicates[source_id] += 1
            return False
        self._seen.add(source_id)
        return True

    @property
    def seen(self) -> frozenset[str]:
        return frozenset(self._seen)

    @property
    def duplicate_counts(self) -> dict[str, int]:
        return dict(self._duplicates)

    @property
    def duplicate_total(self) -> int:
        return sum(self._duplicates.values())

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)


__all__ = ["SourceLedger"]
