"""Tests for implspine.core.broker: buffering, flush, dedup, single consumer."""

from itertools import permutations

import pytest

from implspine.core.broker import (
    Broker,
    ContributeOutcome,
    contribute,
    contribute_payload,
    get_broker,
    page_broker,
    register_consumer,
    reset_broker,
    set_broker,
)
from implspine.core.errors import ConsumerAlreadyRegisteredError
from implspine.core.models import ConsumerHandle, Contribution
from implspine.core.rejects import RejectReason


def _contribution(source_id: str, *types: str) -> Contribution:
    return Contribution.from_library(
        source_id,
        [{"text": f"impl Unpin for {t}", "synthetic": True, "types": [t]} for t in types],
    )


class Recorder:
    """Consumer that remembers every batch it was handed."""

    def __init__(self, name: str = "recorder"):
        self.name = name
        self.batches: list[list[Contribution]] = []

    def __call__(self, batch):
        self.batches.append(list(batch))

    @property
    def received(self) -> list[str]:
        return [c.source_id for batch in self.batches for c in batch]


@pytest.fixture
def broker():
    return Broker(marker="core::marker::Unpin")


# ------------------------------------------------------------------ #
# Order independence
# ------------------------------------------------------------------ #


class TestOrderIndependence:
    @pytest.mark.parametrize("order", list(permutations(["A", "B", "register"])))
    def test_every_interleaving_delivers_both_once_in_order(self, order):
        broker = Broker()
        recorder = Recorder()
        contributions = {"A": _contribution("A", "a::X"), "B": _contribution("B", "b::Y")}

        for step in order:
            if step == "register":
                assert broker.register_consumer(recorder) is True
            else:
                broker.contribute(contributions[step])

        expected = [s for s in order if s != "register"]
        assert recorder.received == expected

    def test_buffer_flush_is_one_batch(self, broker):
        recorder = Recorder()
        a, b = _contribution("A"), _contribution("B")

        assert broker.contribute(a) is ContributeOutcome.BUFFERED
        assert broker.contribute(b) is ContributeOutcome.BUFFERED
        broker.register_consumer(recorder)

        assert recorder.batches == [[a, b]]
        assert broker.pending == ()

    def test_late_contribution_delivered_directly(self, broker):
        recorder = Recorder()
        broker.register_consumer(recorder)

        assert broker.contribute(_contribution("A")) is ContributeOutcome.DELIVERED
        assert broker.contribute(_contribution("B")) is ContributeOutcome.DELIVERED

        assert [[c.source_id for c in batch] for batch in recorder.batches] == [["A"], ["B"]]

    def test_register_with_empty_buffer_makes_no_call(self, broker):
        recorder = Recorder()
        broker.register_consumer(recorder)
        assert recorder.batches == []

    def test_contributions_between_flush_and_late_keep_order(self, broker):
        recorder = Recorder()
        broker.contribute(_contribution("A"))
        broker.register_consumer(recorder)
        broker.contribute(_contribution("B"))
        broker.contribute(_contribution("C"))
        assert recorder.received == ["A", "B", "C"]
        assert broker.stats.batches == 3


# ------------------------------------------------------------------ #
# Idempotent ingestion
# ------------------------------------------------------------------ #


class TestIdempotentIngestion:
    def test_duplicate_before_consumer_keeps_first(self, broker):
        recorder = Recorder()
        first = _contribution("haybale", "haybale::Project")
        second = _contribution("haybale", "haybale::State", "haybale::Config")

        assert broker.contribute(first) is ContributeOutcome.BUFFERED
        assert broker.contribute(second) is ContributeOutcome.DUPLICATE
        broker.register_consumer(recorder)

        assert recorder.batches == [[first]]

    def test_duplicate_after_consumer_is_suppressed(self, broker):
        recorder = Recorder()
        broker.register_consumer(recorder)
        broker.contribute(_contribution("haybale", "haybale::Project"))
        assert broker.contribute(_contribution("haybale")) is ContributeOutcome.DUPLICATE

        assert recorder.received == ["haybale"]
        assert recorder.batches[0][0].records[0].constraint_dependencies == ("haybale::Project",)

    def test_duplicate_across_registration(self, broker):
        recorder = Recorder()
        broker.contribute(_contribution("A"))
        broker.register_consumer(recorder)
        broker.contribute(_contribution("A"))
        assert recorder.received == ["A"]

    def test_duplicates_are_counted_per_source(self, broker):
        broker.contribute(_contribution("A"))
        broker.contribute(_contribution("A"))
        broker.contribute(_contribution("A"))
        broker.contribute(_contribution("B"))
        broker.contribute(_contribution("B"))

        stats = broker.stats
        assert stats.duplicates == 3
        assert stats.duplicate_counts == {"A": 2, "B": 1}
        assert stats.accepted == 2

    def test_empty_records_still_claim_source(self, broker):
        recorder = Recorder()
        assert broker.contribute({"source_id": "empty", "records": []}) is ContributeOutcome.BUFFERED
        assert broker.contribute(_contribution("empty", "x::Y")) is ContributeOutcome.DUPLICATE
        broker.register_consumer(recorder)

        assert "empty" in broker.seen
        assert recorder.batches[0][0].records == ()


# ------------------------------------------------------------------ #
# Single registration
# ------------------------------------------------------------------ #


class TestSingleRegistration:
    def test_second_registration_is_rejected(self, broker):
        h1, h2 = Recorder("h1"), Recorder("h2")
        assert broker.register_consumer(h1) is True
        assert broker.register_consumer(h2) is False

        broker.contribute(_contribution("A"))

        assert h1.received == ["A"]
        assert h2.batches == []
        assert broker.consumer.name == "h1"
        assert broker.stats.rejected_registrations == 1

    def test_second_registration_recorded_as_reject(self, broker):
        broker.register_consumer(Recorder("h1"))
        broker.register_consumer(Recorder("h2"))
        assert broker.rejects.by_reason() == {RejectReason.DUPLICATE_CONSUMER: 1}

    def test_second_registration_does_not_disturb_flush(self, broker):
        h1, h2 = Recorder("h1"), Recorder("h2")
        broker.contribute(_contribution("A"))
        broker.register_consumer(h1)
        broker.register_consumer(h2)
        broker.contribute(_contribution("B"))

        assert h1.received == ["A", "B"]
        assert h2.received == []

    def test_strict_registration_raises(self):
        broker = Broker(strict_registration=True)
        h1 = Recorder("h1")
        broker.register_consumer(h1)

        with pytest.raises(ConsumerAlreadyRegisteredError) as exc_info:
            broker.register_consumer(Recorder("h2"))

        assert exc_info.value.context.consumer == "h2"
        broker.contribute(_contribution("A"))
        assert h1.received == ["A"]

    def test_invalid_settings_fall_back_to_lenient(self, monkeypatch):
        monkeypatch.setenv("IMPLSPINE_MAX_CONCURRENT_LOADS", "0")
        broker = Broker()
        assert broker.strict_registration is False

    def test_strict_registration_from_settings(self, monkeypatch):
        monkeypatch.setenv("IMPLSPINE_STRICT_REGISTRATION", "true")
        broker = Broker()
        assert broker.strict_registration is True

    @pytest.mark.parametrize("consumer", [None, "render", 42])
    def test_non_callable_consumer_is_refused(self, broker, consumer):
        broker.contribute(_contribution("A"))

        assert broker.register_consumer(consumer) is False
        assert broker.has_consumer is False
        assert broker.rejects.by_reason() == {RejectReason.INVALID_CONSUMER: 1}
        assert broker.stats.rejected_registrations == 1
        assert [c.source_id for c in broker.pending] == ["A"]

    def test_valid_consumer_after_non_callable_gets_buffer(self, broker):
        recorder = Recorder()
        broker.contribute(_contribution("A"))
        broker.register_consumer(None)

        assert broker.register_consumer(recorder) is True
        assert recorder.received == ["A"]

    def test_handle_object_accepted(self, broker):
        recorder = Recorder()
        handle = ConsumerHandle(callback=recorder, name="page")
        broker.register_consumer(handle)
        broker.contribute(_contribution("A"))
        assert broker.consumer is handle
        assert recorder.received == ["A"]


# ------------------------------------------------------------------ #
# Malformed input
# ------------------------------------------------------------------ #


class TestMalformedInput:
    def test_missing_source_id_isolated(self, broker):
        recorder = Recorder()

        outcome = broker.contribute({"records": []})
        assert outcome is ContributeOutcome.REJECTED
        assert broker.seen == frozenset()
        assert broker.pending == ()

        assert broker.contribute(_contribution("A")) is ContributeOutcome.BUFFERED
        broker.register_consumer(recorder)

        assert recorder.received == ["A"]
        assert broker.rejects.by_reason() == {RejectReason.MISSING_SOURCE_ID: 1}

    @pytest.mark.parametrize("source_id", ["", 42, None])
    def test_invalid_source_id(self, broker, source_id):
        assert broker.contribute({"source_id": source_id, "records": []}) is ContributeOutcome.REJECTED
        assert broker.rejects.by_reason() == {RejectReason.INVALID_SOURCE_ID: 1}
        assert broker.seen == frozenset()

    @pytest.mark.parametrize("records", ["not-a-list", 7, {"text": "x"}, None])
    def test_non_sequence_records(self, broker, records):
        assert broker.contribute({"source_id": "A", "records": records}) is ContributeOutcome.REJECTED
        assert broker.rejects.by_reason() == {RejectReason.INVALID_RECORDS: 1}
        assert "A" not in broker.seen

    def test_missing_records(self, broker):
        assert broker.contribute({"source_id": "A"}) is ContributeOutcome.REJECTED
        assert broker.rejects.by_reason() == {RejectReason.INVALID_RECORDS: 1}

    def test_badly_shaped_record(self, broker):
        outcome = broker.contribute({"source_id": "A", "records": [{"synthetic": True}]})
        assert outcome is ContributeOutcome.REJECTED
        assert "A" not in broker.seen

    def test_rejected_source_can_be_contributed_later(self, broker):
        broker.contribute({"source_id": "A", "records": "oops"})
        assert broker.contribute(_contribution("A")) is ContributeOutcome.BUFFERED

    def test_non_mapping_contribution(self, broker):
        assert broker.contribute(["A", []]) is ContributeOutcome.REJECTED  # type: ignore[arg-type]
        assert broker.rejects.by_reason() == {RejectReason.INVALID_PAYLOAD: 1}

    def test_bad_source_locator_is_invalid_payload(self, broker):
        outcome = broker.contribute({"source_id": "A", "records": [], "source_locator": 42})
        assert outcome is ContributeOutcome.REJECTED
        (reject,) = list(broker.rejects)
        assert reject.reason_code == RejectReason.INVALID_PAYLOAD
        assert reject.source_locator is None

    def test_reject_keeps_source_locator(self, broker):
        broker.contribute({"source_id": "", "records": [], "source_locator": "a/trait.Unpin.js"})
        (reject,) = list(broker.rejects)
        assert reject.stage == "INGEST"
        assert reject.source_locator == "a/trait.Unpin.js"

    def test_camel_case_source_id_accepted(self, broker):
        assert broker.contribute({"sourceId": "A", "records": []}) is ContributeOutcome.BUFFERED
        assert broker.seen == frozenset({"A"})


# ------------------------------------------------------------------ #
# Payloads
# ------------------------------------------------------------------ #


class TestContributePayload:
    def test_each_library_is_a_contribution(self, broker):
        recorder = Recorder()
        outcomes = broker.contribute_payload(
            {
                "haybale": [{"text": "impl Unpin for Project", "synthetic": True, "types": ["haybale::Project"]}],
                "llvm-ir": [],
            },
            source_locator="doc/implementors/core/marker/trait.Unpin.js",
        )
        broker.register_consumer(recorder)

        assert outcomes == [ContributeOutcome.BUFFERED, ContributeOutcome.BUFFERED]
        assert recorder.received == ["haybale", "llvm-ir"]
        assert recorder.batches[0][0].source_locator == "doc/implementors/core/marker/trait.Unpin.js"

    def test_non_mapping_payload_rejected(self, broker):
        assert broker.contribute_payload([1, 2]) == [ContributeOutcome.REJECTED]  # type: ignore[arg-type]
        assert broker.rejects.by_reason() == {RejectReason.INVALID_PAYLOAD: 1}

    def test_one_bad_library_does_not_affect_others(self, broker):
        outcomes = broker.contribute_payload({"good": [], "bad": "nope", "also-good": []})
        assert outcomes == [
            ContributeOutcome.BUFFERED,
            ContributeOutcome.REJECTED,
            ContributeOutcome.BUFFERED,
        ]
        assert [c.source_id for c in broker.pending] == ["good", "also-good"]


# ------------------------------------------------------------------ #
# Consumer failures
# ------------------------------------------------------------------ #


class TestConsumerFailures:
    def test_failing_callback_does_not_break_later_deliveries(self, broker):
        received = []

        def flaky(batch):
            if batch[0].source_id == "boom":
                raise RuntimeError("render failed")
            received.extend(c.source_id for c in batch)

        broker.register_consumer(flaky)
        broker.contribute(_contribution("boom"))
        broker.contribute(_contribution("A"))

        assert received == ["A"]
        assert broker.stats.delivered == 2

    def test_failed_batch_is_not_redelivered(self, broker):
        calls = []

        def failing(batch):
            calls.append([c.source_id for c in batch])
            raise ValueError("nope")

        broker.contribute(_contribution("A"))
        broker.register_consumer(failing)
        broker.contribute(_contribution("A"))

        assert calls == [["A"]]

    def test_reentrant_contribute_from_callback_keeps_arrival_order(self, broker):
        seen = []

        def consumer(batch):
            for c in batch:
                seen.append(c.source_id)
                if c.source_id == "A":
                    broker.contribute(_contribution("C"))

        broker.contribute(_contribution("A"))
        broker.contribute(_contribution("B"))
        broker.register_consumer(consumer)

        assert seen == ["A", "B", "C"]
        assert broker.seen == frozenset({"A", "B", "C"})

    def test_reentrant_contribute_is_its_own_batch(self, broker):
        recorder = Recorder()

        def consumer(batch):
            recorder(batch)
            if [c.source_id for c in batch] == ["A"]:
                broker.contribute(_contribution("B"))
                broker.contribute(_contribution("C"))
                assert recorder.received == ["A"]

        broker.register_consumer(consumer)
        broker.contribute(_contribution("A"))

        assert [[c.source_id for c in b] for b in recorder.batches] == [["A"], ["B"], ["C"]]
        assert broker.stats.delivered == 3


# ------------------------------------------------------------------ #
# Lifecycle
# ------------------------------------------------------------------ #


class TestLifecycle:
    def test_no_consumer_keeps_buffer(self, broker):
        for name in ["A", "B", "C"]:
            broker.contribute(_contribution(name))
        assert [c.source_id for c in broker.pending] == ["A", "B", "C"]
        assert broker.stats.buffered == 3
        assert broker.has_consumer is False

    def test_close_drops_pending_and_ignores_later_calls(self, broker):
        recorder = Recorder()
        broker.contribute(_contribution("A"))
        broker.close()

        assert broker.closed is True
        assert broker.pending == ()
        assert broker.contribute(_contribution("B")) is ContributeOutcome.CLOSED
        assert broker.register_consumer(recorder) is False
        assert recorder.batches == []

    def test_page_broker_closes_on_exit(self):
        with page_broker(marker="core::marker::Send") as broker:
            broker.contribute(_contribution("A"))
            assert broker.marker == "core::marker::Send"
        assert broker.closed is True

    def test_repr(self, broker):
        broker.contribute(_contribution("A"))
        assert "pending=1" in repr(broker)


# ------------------------------------------------------------------ #
# Global page broker
# ------------------------------------------------------------------ #


class TestGlobalBroker:
    def test_contribute_before_broker_exists(self):
        recorder = Recorder()
        assert contribute(_contribution("A")) is ContributeOutcome.BUFFERED
        assert register_consumer(recorder) is True
        assert recorder.received == ["A"]

    def test_register_before_broker_exists(self):
        recorder = Recorder()
        register_consumer(recorder)
        contribute_payload({"A": [], "B": []})
        assert recorder.received == ["A", "B"]

    def test_invalid_settings_do_not_block_contributions(self, monkeypatch):
        monkeypatch.setenv("IMPLSPINE_MAX_CONCURRENT_LOADS", "0")
        recorder = Recorder()

        assert contribute({"source_id": "A", "records": []}) is ContributeOutcome.BUFFERED
        assert register_consumer(recorder) is True
        assert recorder.received == ["A"]

    def test_get_broker_is_stable(self):
        assert get_broker() is get_broker()

    def test_set_broker(self):
        custom = Broker(marker="custom")
        set_broker(custom)
        assert get_broker() is custom
        set_broker(None)
        assert get_broker() is not custom

    def test_reset_broker_is_navigation_away(self):
        first = get_broker()
        contribute(_contribution("A"))
        reset_broker()

        assert first.closed is True
        second = get_broker()
        assert second is not first
        assert second.seen == frozenset()
