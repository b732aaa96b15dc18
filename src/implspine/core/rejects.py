"""
Reject log for contributions and fragments that fail validation.

Rejects are inputs that were refused at the broker boundary but must not stop
the rest of the page from aggregating. They are kept in memory for the page
lifetime so that the CLI (or a test) can report them afterwards.

Manifesto:
    A rejected contribution silently vanishing is the worst failure mode for
    an aggregated page: one library's implementors are just missing and
    nobody knows why. Every reject answers:

    - **Where?** stage (``INGEST``, ``PARSE``, ``READ``, ``REGISTER``)
    - **Why?** reason_code + reason_detail
    - **What?** raw_data (the offending input, untouched)
    - **Source?** source_locator (fragment path, when known)

Examples:
    >>> log = RejectLog()
    >>> log.write(Reject(
    ...     stage="INGEST",
    ...     reason_code="MISSING_SOURCE_ID",
    ...     reason_detail="source_id: Field required",
    ...     raw_data={"records": []},
    ... ))
    >>> log.count
    1
    >>> log.by_reason()
    {'MISSING_SOURCE_ID': 1}

Guardrails:
    - Rejects are never removed during a page lifetime (``clear`` is for tests
      and teardown only)
    - raw_data is stored as given; it is never re-validated

Tags:
    reject, validation, diagnostics, implspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


class RejectReason:
    """Reason codes written by the broker and the fragment loader."""

    MISSING_SOURCE_ID = "MISSING_SOURCE_ID"
    INVALID_SOURCE_ID = "INVALID_SOURCE_ID"
    INVALID_RECORDS = "INVALID_RECORDS"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    FRAGMENT_PARSE_ERROR = "FRAGMENT_PARSE_ERROR"
    FRAGMENT_READ_ERROR = "FRAGMENT_READ_ERROR"
    DUPLICATE_CONSUMER = "DUPLICATE_CONSUMER"
    INVALID_CONSUMER = "INVALID_CONSUMER"


@dataclass
class Reject:
    """A single refused input with classification and debugging info."""

    stage: str
    reason_code: str
    reason_detail: str
    raw_data: Any = None
    source_locator: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "reason_code": self.reason_code,
            "reason_detail": self.reason_detail,
            "raw_data": repr(self.raw_data) if self.raw_data is not None else None,
            "source_locator": self.source_locator,
            "created_at": self.created_at.isoformat(),
        }


class RejectLog:
    """In-memory, append-only log of rejects for one broker."""

    def __init__(self) -> None:
        self._rejects: list[Reject] = []

    def write(self, reject: Reject) -> None:
        self._rejects.append(reject)

    def write_batch(self, rejects: Iterable[Reject]) -> int:
        """Append several rejects; returns how many were written."""
        written = 0
        for reject in rejects:
            self.write(reject)
            written += 1
        return written

    @property
    def count(self) -> int:
        return len(self._rejects)

    def by_reason(self) -> dict[str, int]:
        """Reject counts keyed by reason code."""
        return dict(Counter(r.reason_code for r in self._rejects))

    def clear(self) -> None:
        self._rejects.clear()

    def __iter__(self) -> Iterator[Reject]:
        return iter(list(self._rejects))

    def __len__(self) -> int:
        return len(self._rejects)


__all__ = ["Reject", "RejectLog", "RejectReason"]
