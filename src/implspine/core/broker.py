"""
Aggregation broker: order-independent, at-most-once merge point.

Why This Module Exists
----------------------
A marker page (say ``core::marker::Unpin``) shows the union of implementors
from every documented library. Each library ships its own fragment, and the
fragments load whenever they load: before the page's rendering bootstrap has
run, after it, twice, or never. The broker makes the merged result
independent of that timing:

- contributions that arrive before a consumer exists are buffered;
- registering the consumer flushes the buffer as one batch, in arrival order;
- contributions that arrive afterwards go straight to the consumer;
- every ``source_id`` is delivered at most once (first write wins).

Callers never branch on whether a consumer is present. Both sides can run
first against a broker that does not exist yet: :func:`get_broker` creates it
on demand.

Usage::

    from implspine.core.broker import page_broker

    with page_broker(marker="core::marker::Unpin") as broker:
        broker.contribute_payload({"haybale": [...]})      # buffered
        broker.register_consumer(render)                   # render([haybale])
        broker.contribute_payload({"llvm-ir": [...]})      # render([llvm-ir])

Guardrails:
    - SINGLE-THREADED: every call runs to completion on one logical thread;
      there is no locking
    - Nothing raised from ``contribute``; malformed input becomes a reject
    - A second consumer never replaces the first

Tags:
    implspine, broker, aggregation, idempotency, buffering

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import (
    ConfigError,
    ConsumerAlreadyRegisteredError,
    ConsumerError,
    MalformedContributionError,
)
from .idempotency import SourceLedger
from .logging import get_logger
from .models import ConsumerCallback, ConsumerHandle, Contribution
from .rejects import Reject, RejectLog, RejectReason

__all__ = [
    "Broker",
    "BrokerStats",
    "ContributeOutcome",
    "get_broker",
    "set_broker",
    "reset_broker",
    "page_broker",
    "contribute",
    "contribute_payload",
    "register_consumer",
]

logger = get_logger(__name__)


class ContributeOutcome(str, Enum):
    """What happened to a single ``contribute`` call."""

    BUFFERED = "buffered"
    DELIVERED = "delivered"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    CLOSED = "closed"


@dataclass(frozen=True)
class BrokerStats:
    """Point-in-time counters for one broker."""

    accepted: int = 0
    buffered: int = 0
    delivered: int = 0
    duplicates: int = 0
    rejected: int = 0
    rejected_registrations: int = 0
    batches: int = 0
    duplicate_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "buffered": self.buffered,
            "delivered": self.delivered,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "rejected_registrations": self.rejected_registrations,
            "batches": self.batches,
            "duplicate_counts": dict(self.duplicate_counts),
        }


_SOURCE_ID_FIELDS = frozenset({"source_id", "sourceId"})


class Broker:
    """Page-lifetime merge point between contribution sources and one consumer.

    Args:
        marker: Marker this page documents; only used for logging
        strict_registration: Raise on a second consumer registration instead
            of logging and ignoring it. ``None`` reads the setting (False when the
            settings do not validate).
        rejects: Reject log to write to (a fresh one by default)
    """

    def __init__(
        self,
        marker: str | None = None,
        *,
        strict_registration: bool | None = None,
        rejects: RejectLog | None = None,
    ) -> None:
        if strict_registration is None:
            strict_registration = _strict_registration_setting()

        self.marker = marker
        self.strict_registration = strict_registration
        self.rejects = rejects if rejects is not None else RejectLog()

        self._buffer: list[Contribution] = []
        self._queued: deque[list[Contribution]] = deque()
        self._delivering = False
        self._consumer: ConsumerHandle | None = None
        self._ledger = SourceLedger()
        self._closed = False

        self._accepted = 0
        self._delivered = 0
        self._rejected = 0
        self._rejected_registrations = 0
        self._batches = 0

        self._log = logger.bind(marker=marker) if marker else logger

    # ── Contribution side ────────────────────────────────────────────────

    def contribute(self, contribution: Contribution | Mapping[str, Any]) -> ContributeOutcome:
        """Accept one contribution; buffer it or hand it to the consumer.

        Safe to call at any point of the page lifetime. Returns the outcome
        for diagnostics; callers are free to ignore it.
        """
        if self._closed:
            self._log.warning("contribution_after_close", source_id=_peek_source_id(contribution))
            return ContributeOutcome.CLOSED

        try:
            accepted = self._validate(contribution)
        except MalformedContributionError as e:
            self._reject(e, contribution)
            return ContributeOutcome.REJECTED

        if not self._ledger.claim(accepted.source_id):
            self._log.debug(
                "contribution_duplicate",
                source_id=accepted.source_id,
                duplicates=self._ledger.duplicate_counts[accepted.source_id],
            )
            return ContributeOutcome.DUPLICATE

        self._accepted += 1

        if self._consumer is None:
            self._buffer.append(accepted)
            self._log.debug(
                "contribution_buffered",
                source_id=accepted.source_id,
                records=len(accepted.records),
                pending=len(self._buffer),
            )
            return ContributeOutcome.BUFFERED

        self._dispatch([accepted])
        return ContributeOutcome.DELIVERED

    def contribute_payload(
        self,
        payload: Mapping[str, Any],
        *,
        source_locator: str | None = None,
    ) -> list[ContributeOutcome]:
        """Contribute every library of a generator payload, in mapping order.

        A payload maps library name to its list of implementor records; each
        library becomes one contribution keyed by its name.
        """
        if not isinstance(payload, Mapping):
            if self._closed:
                return [ContributeOutcome.CLOSED]
            error = MalformedContributionError(
                f"Payload must be a mapping of library name to records, got {type(payload).__name__}",
                field="payload",
                value=payload,
            ).with_context(source_locator=source_locator, reason_code=RejectReason.INVALID_PAYLOAD)
            self._reject(error, payload)
            return [ContributeOutcome.REJECTED]

        return [
            self.contribute(
                {"source_id": library, "records": records, "source_locator": source_locator}
            )
            for library, records in payload.items()
        ]

    # ── Consumer side ────────────────────────────────────────────────────

    def register_consumer(self, consumer: ConsumerHandle | ConsumerCallback) -> bool:
        """Install the page's single consumer and flush the buffer to it.

        Returns True when ``consumer`` became the active consumer. A second
        registration leaves the first consumer in place and returns False
        (or raises :class:`ConsumerAlreadyRegisteredError` in strict mode).
        A consumer that is not callable returns False in either mode and never
        takes the slot.
        """
        handle = ConsumerHandle.wrap(consumer)

        if self._closed:
            self._log.warning("consumer_after_close", consumer=handle.name)
            return False

        if not callable(handle.callback):
            self._rejected_registrations += 1
            error = ConsumerError(
                f"Consumer {handle.name!r} is not callable"
            ).with_context(marker=self.marker, consumer=handle.name)
            self.rejects.write(
                Reject(
                    stage="REGISTER",
                    reason_code=RejectReason.INVALID_CONSUMER,
                    reason_detail=error.message,
                    raw_data=handle.callback,
                )
            )
            self._log.error("consumer_invalid", **error.to_dict())
            return False

        if self._consumer is not None:
            self._rejected_registrations += 1
            error = ConsumerAlreadyRegisteredError(
                f"Broker already has consumer {self._consumer.name!r}; "
                f"refusing {handle.name!r}"
            ).with_context(marker=self.marker, consumer=handle.name)
            self.rejects.write(
                Reject(
                    stage="REGISTER",
                    reason_code=RejectReason.DUPLICATE_CONSUMER,
                    reason_detail=error.message,
                    raw_data=handle.name,
                )
            )
            self._log.error(
                "consumer_already_registered",
                active=self._consumer.name,
                refused=handle.name,
            )
            if self.strict_registration:
                raise error
            return False

        batch = list(self._buffer)
        self._buffer.clear()
        self._consumer = handle
        self._log.info("consumer_registered", consumer=handle.name, flushed=len(batch))

        if batch:
            self._dispatch(batch)
        return True

    # ── Lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        """Tear the broker down (navigation away). Pending contributions are dropped."""
        if self._closed:
            return
        self._closed = True
        if self._buffer:
            self._log.info("broker_closed_with_pending", pending=len(self._buffer))
        self._buffer.clear()
        self._queued.clear()

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_consumer(self) -> bool:
        return self._consumer is not None

    @property
    def consumer(self) -> ConsumerHandle | None:
        return self._consumer

    @property
    def pending(self) -> tuple[Contribution, ...]:
        """Contributions waiting for a consumer, in arrival order."""
        return tuple(self._buffer)

    @property
    def seen(self) -> frozenset[str]:
        return self._ledger.seen

    @property
    def stats(self) -> BrokerStats:
        return BrokerStats(
            accepted=self._accepted,
            buffered=len(self._buffer),
            delivered=self._delivered,
            duplicates=self._ledger.duplicate_total,
            rejected=self._rejected,
            rejected_registrations=self._rejected_registrations,
            batches=self._batches,
            duplicate_counts=self._ledger.duplicate_counts,
        )

    def __repr__(self) -> str:
        return (
            f"Broker(marker={self.marker!r}, seen={len(self._ledger)}, "
            f"pending={len(self._buffer)}, consumer={self.has_consumer})"
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _validate(self, contribution: Contribution | Mapping[str, Any]) -> Contribution:
        if isinstance(contribution, Contribution):
            return contribution

        if not isinstance(contribution, Mapping):
            raise MalformedContributionError(
                f"Contribution must be a mapping, got {type(contribution).__name__}",
                field="contribution",
                value=contribution,
            ).with_context(reason_code=RejectReason.INVALID_PAYLOAD)

        try:
            return Contribution.model_validate(dict(contribution))
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = first["loc"][0] if first["loc"] else "contribution"
            if loc in _SOURCE_ID_FIELDS:
                reason = (
                    RejectReason.MISSING_SOURCE_ID
                    if first["type"] == "missing"
                    else RejectReason.INVALID_SOURCE_ID
                )
            elif loc == "records":
                reason = RejectReason.INVALID_RECORDS
            else:
                reason = RejectReason.INVALID_PAYLOAD
            raise MalformedContributionError(
                f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}",
                field=str(loc),
                value=first.get("input"),
                cause=e,
            ).with_context(
                source_id=_peek_source_id(contribution),
                source_locator=_peek_source_locator(contribution),
                reason_code=reason,
            ) from e

    def _reject(self, error: MalformedContributionError, raw: Any) -> None:
        self._rejected += 1
        reason = error.context.metadata.get("reason_code", RejectReason.INVALID_PAYLOAD)
        self.rejects.write(
            Reject(
                stage="INGEST",
                reason_code=reason,
                reason_detail=error.message,
                raw_data=raw,
                source_locator=error.context.source_locator,
            )
        )
        self._log.warning("contribution_rejected", reason_code=reason, **error.to_dict())

    def _dispatch(self, batch: list[Contribution]) -> None:
        # A contribute() made from inside the callback waits for the running
        # delivery, so the consumer still sees arrival order.
        if self._delivering:
            self._queued.append(batch)
            return

        self._delivering = True
        try:
            self._deliver(batch)
            while self._queued:
                self._deliver(self._queued.popleft())
        finally:
            self._delivering = False

    def _deliver(self, batch: list[Contribution]) -> None:
        assert self._consumer is not None
        self._batches += 1
        self._delivered += len(batch)
        source_ids = [c.source_id for c in batch]
        try:
            self._consumer.deliver(batch)
        except Exception:
            # At-most-once: a failing consumer does not get the batch again
            self._log.exception(
                "consumer_callback_failed",
                consumer=self._consumer.name,
                source_ids=source_ids,
            )
            return
        self._log.debug("contributions_delivered", source_ids=source_ids)


def _peek_source_id(contribution: Any) -> Any:
    if isinstance(contribution, Contribution):
        return contribution.source_id
    if isinstance(contribution, Mapping):
        return contribution.get("source_id", contribution.get("sourceId"))
    return None


def _peek_source_locator(contribution: Mapping[str, Any]) -> str | None:
    locator = contribution.get("source_locator")
    return locator if isinstance(locator, str) else None


def _strict_registration_setting() -> bool:
    from .settings import get_settings

    try:
        return get_settings().strict_registration
    except ConfigError as e:
        # Bad settings must not stop the page from aggregating
        logger.warning("settings_invalid_using_defaults", **e.to_dict())
        return False


# ── Page-scoped default broker ───────────────────────────────────────────

_broker: Broker | None = None


def get_broker(marker: str | None = None) -> Broker:
    """Return the current page broker, creating it on first use.

    Whichever side runs first (a fragment or the consumer bootstrap) creates
    it; the other side finds the same instance.
    """
    global _broker
    if _broker is None or _broker.closed:
        _broker = Broker(marker=marker)
    return _broker


def set_broker(broker: Broker | None) -> None:
    """Install ``broker`` as the page broker (``None`` forgets the current one)."""
    global _broker
    _broker = broker


def reset_broker() -> None:
    """Navigation away: close the current page broker and forget it."""
    global _broker
    if _broker is not None:
        _broker.close()
    _broker = None


@contextmanager
def page_broker(marker: str | None = None, **kwargs: Any) -> Iterator[Broker]:
    """Create a broker for one page lifetime and close it on exit.

    The broker is passed by reference to sources and the consumer; it is not
    installed as the global page broker.
    """
    broker = Broker(marker=marker, **kwargs)
    try:
        yield broker
    finally:
        broker.close()


def contribute(contribution: Contribution | Mapping[str, Any]) -> ContributeOutcome:
    """Contribute to the page broker, creating it if needed."""
    return get_broker().contribute(contribution)


def contribute_payload(
    payload: Mapping[str, Any],
    *,
    source_locator: str | None = None,
) -> list[ContributeOutcome]:
    """Contribute a generator payload to the page broker, creating it if needed."""
    return get_broker().contribute_payload(payload, source_locator=source_locator)


def register_consumer(consumer: ConsumerHandle | ConsumerCallback) -> bool:
    """Register the page consumer on the page broker, creating it if needed."""
    return get_broker().register_consumer(consumer)
