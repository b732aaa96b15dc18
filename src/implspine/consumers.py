"""
Collecting consumer for a marker page.

:class:`ImplementorCollector` is the simplest useful consumer: it keeps every
contribution it is handed, in delivery order, and exposes the merged view a
renderer needs.

Usage::

    collector = ImplementorCollector(name="unpin-page")
    broker.register_consumer(collector)
    ...
    for record in collector.records:
        render(record.display_fragment)
"""

from __future__ import annotations

from typing import Any

from implspine.core.models import Contribution, ImplementorRecord

__all__ = ["ImplementorCollector"]


class ImplementorCollector:
    """Callable consumer that accumulates contributions in delivery order."""

    def __init__(self, name: str = "collector") -> None:
        self.name = name
        self.contributions: list[Contribution] = []
        self.batches: list[list[str]] = []

    def __call__(self, batch: list[Contribution]) -> None:
        self.batches.append([c.source_id for c in batch])
        self.contributions.extend(batch)

    @property
    def source_ids(self) -> list[str]:
        return [c.source_id for c in self.contributions]

    @property
    def records(self) -> list[ImplementorRecord]:
        """All records, grouped by contribution, in delivery order."""
        return [record for c in self.contributions for record in c.records]

    @property
    def by_source(self) -> dict[str, Contribution]:
        return {c.source_id: c for c in self.contributions}

    def to_payload(self) -> dict[str, list[dict[str, Any]]]:
        """Merged result in the generator's ``{library: [record, ...]}`` shape."""
        return {
            c.source_id: [record.to_wire() for record in c.records]
            for c in self.contributions
        }

    def __len__(self) -> int:
        return len(self.contributions)
