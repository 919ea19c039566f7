"""Application tests for batch synchronization and candidate selection."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from tracking.carrier.fake_adapter import fake_event
from tracking.errors import AdapterUnavailable
from tracking.ledger.event import EventSource
from tracking.services import build_services
from tracking.shipment.shipment import Shipment, ShipmentStatus


def _mark_synced(shipment_id, ago):
    repo = current_domain.repository_for(Shipment)
    shipment = repo.get(shipment_id)
    shipment.record_sync_success("fake", datetime.now(UTC) - ago)
    repo.add(shipment)


class TestSyncBatch:
    def test_failures_stay_local(self, make_shipment, engine, carrier):
        good = make_shipment(tracking_session_id="sess-good")
        bad = make_shipment(tracking_session_id="sess-bad")
        carrier.add_events("sess-good", fake_event("pickup", datetime.now(UTC) - timedelta(hours=1)))
        carrier.fail_session("sess-bad", "502 Bad Gateway")

        result = asyncio.run(engine.sync_batch([good, bad]))

        assert result.successful == [good]
        assert [failure["id"] for failure in result.failed] == [bad]
        assert "502 Bad Gateway" in result.failed[0]["error"]
        assert result.skipped == []
        assert result.total == 2

        repo = current_domain.repository_for(Shipment)
        assert repo.get(good).status == "in-transit"
        assert repo.get(bad).needs_review is True

    def test_groups_are_separated_by_the_batch_delay(self, make_shipment, engine, sleeps):
        ids = [make_shipment(tracking_session_id=f"sess-{n}") for n in range(5)]

        result = asyncio.run(engine.sync_batch(ids, max_concurrency=2))

        assert sorted(result.successful) == sorted(ids)
        assert sleeps == [1.0, 1.0]

    def test_single_group_needs_no_delay(self, make_shipment, engine, sleeps):
        ids = [make_shipment(tracking_session_id=f"sess-{n}") for n in range(3)]
        asyncio.run(engine.sync_batch(ids, max_concurrency=5))
        assert sleeps == []

    def test_duplicate_ids_are_synced_once(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        result = asyncio.run(engine.sync_batch([shipment_id, shipment_id, f" {shipment_id} "]))
        assert result.successful == [shipment_id]
        assert carrier.calls_for("get_tracking_updates") == ["sess-1"]

    def test_unknown_ids_are_failures(self, make_shipment, engine):
        known = make_shipment(tracking_session_id="sess-1")
        result = asyncio.run(engine.sync_batch([known, "missing-shipment"]))
        assert result.successful == [known]
        assert result.failed[0]["id"] == "missing-shipment"

    def test_empty_batch(self, engine):
        result = asyncio.run(engine.sync_batch([]))
        assert result.total == 0

    def test_cancelled_batch_skips_everything_not_started(self, make_shipment, engine, carrier):
        ids = [make_shipment(tracking_session_id=f"sess-{n}") for n in range(3)]
        cancel = asyncio.Event()
        cancel.set()

        result = asyncio.run(engine.sync_batch(ids, max_concurrency=2, cancel=cancel))

        assert result.successful == []
        assert sorted(result.skipped) == sorted(ids)
        assert carrier.calls == []

    def test_unexpected_errors_abort_the_batch(self, make_shipment, engine, monkeypatch):
        ids = [make_shipment(tracking_session_id=f"sess-{n}") for n in range(2)]

        def broken_ingest(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(engine, "ingest", broken_ingest)
        with pytest.raises(RuntimeError, match="ledger unavailable"):
            asyncio.run(engine.sync_batch(ids))

    def test_invalid_concurrency(self, engine):
        with pytest.raises(ValueError):
            asyncio.run(engine.sync_batch([], max_concurrency=-1))

    def test_requires_a_carrier(self, settings, fake_sleep, make_shipment):
        engine = build_services(settings, carrier=None, sleep=fake_sleep).sync
        with pytest.raises(AdapterUnavailable):
            asyncio.run(engine.sync_batch([make_shipment(tracking_session_id="sess-1")]))


class TestCandidateSelection:
    def test_never_synced_first_then_oldest(self, make_shipment, engine):
        old = make_shipment(tracking_session_id="sess-old")
        older = make_shipment(tracking_session_id="sess-older")
        never = make_shipment(tracking_session_id="sess-never")
        _mark_synced(old, timedelta(hours=2))
        _mark_synced(older, timedelta(hours=5))

        candidates = [str(shipment.id) for shipment in engine.select_candidates()]

        assert candidates == [never, older, old]

    def test_recently_synced_excluded_unless_forced(self, make_shipment, engine):
        fresh = make_shipment(tracking_session_id="sess-fresh")
        _mark_synced(fresh, timedelta(minutes=5))

        assert engine.select_candidates() == []
        assert [str(shipment.id) for shipment in engine.select_candidates(force=True)] == [fresh]

    def test_terminal_shipments_excluded(self, make_shipment, engine, services):
        done = make_shipment(tracking_session_id="sess-done")
        services.state_machine.transition(done, ShipmentStatus.CANCELLED, source=EventSource.MANUAL)
        assert engine.select_candidates(force=True) == []

    def test_shipments_without_session_excluded(self, make_shipment, engine):
        make_shipment(carrier_tracking_number="1Z999AA10123456784")
        make_shipment()
        assert engine.select_candidates() == []

    def test_batch_ceiling(self, make_shipment, settings, carrier, fake_sleep):
        for n in range(4):
            make_shipment(tracking_session_id=f"sess-{n}")
        capped = settings.model_copy(update={"sync_batch_ceiling": 3})
        engine = build_services(capped, carrier=carrier, sleep=fake_sleep).sync
        assert len(engine.select_candidates()) == 3

    def test_batch_without_ids_uses_candidates(self, make_shipment, engine, carrier):
        due = make_shipment(tracking_session_id="sess-due")
        fresh = make_shipment(tracking_session_id="sess-fresh")
        _mark_synced(fresh, timedelta(minutes=1))

        result = asyncio.run(engine.sync_batch())

        assert result.successful == [due]
        assert carrier.calls_for("get_tracking_updates") == ["sess-due"]

    def test_forced_batch_includes_fresh_shipments(self, make_shipment, engine):
        fresh = make_shipment(tracking_session_id="sess-fresh")
        _mark_synced(fresh, timedelta(minutes=1))
        result = asyncio.run(engine.sync_batch(force=True))
        assert result.successful == [fresh]
