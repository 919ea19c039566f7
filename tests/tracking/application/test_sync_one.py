"""Application tests for syncing a single shipment with the carrier."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from tracking.carrier.fake_adapter import fake_event
from tracking.errors import (
    AdapterTransportError,
    AdapterUnavailable,
    MissingTrackingReference,
    ShipmentNotFound,
)
from tracking.ledger.event import EventSource, EventType
from tracking.services import build_services
from tracking.shipment.shipment import Shipment, ShipmentStatus

T0 = datetime.now(UTC).replace(microsecond=0) - timedelta(hours=6)


def _at(hours):
    return T0 + timedelta(hours=hours)


def _shipment(shipment_id):
    return current_domain.repository_for(Shipment).get(shipment_id)


def _carrier_events(services, shipment_id):
    return [
        event
        for event in services.ledger.events_for(shipment_id)
        if event.source == "api"
        and event.event_type != "status_change"
        and "carrier_event_type" in (event.details or {})
    ]


class TestSuccessfulSync:
    def test_records_events_and_advances_status(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events(
            "sess-1",
            fake_event("pickup", _at(0), location="Leeds"),
            fake_event("in_transit", _at(1), location="Sheffield"),
            fake_event("out_for_delivery", _at(2), location="London"),
        )

        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.new_events == 3
        assert outcome.transitions == ["in-transit", "out-for-delivery"]
        assert outcome.skipped_status is None

        shipment = _shipment(shipment_id)
        assert shipment.status == "out-for-delivery"
        assert shipment.sync_status == "success"
        assert shipment.api_provider == "fake"
        assert shipment.last_synced_at is not None
        assert shipment.needs_review is False
        assert services.state_machine.projection_consistent(shipment_id)

    def test_carrier_events_are_tagged_and_typed(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events(
            "sess-1",
            fake_event("pickup", _at(0)),
            fake_event("arrival_scan", _at(1), description="Scanned at hub"),
            fake_event("delivery_attempt", _at(2), description="Nobody home"),
        )

        asyncio.run(engine.sync_one(shipment_id))

        recorded = sorted(_carrier_events(services, shipment_id), key=lambda event: event.event_time)
        assert [event.event_type for event in recorded] == ["api_sync", "location_update", "delivery_attempt"]
        assert [event.status for event in recorded] == ["in-transit", None, None]
        assert all(event.source_id == "fake" for event in recorded)
        assert recorded[0].details["carrier_event_type"] == "pickup"

    def test_events_recorded_oldest_first(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events(
            "sess-1",
            fake_event("delivered", _at(3)),
            fake_event("pickup", _at(0)),
            fake_event("in_transit", _at(1)),
        )

        outcome = asyncio.run(engine.sync_one(shipment_id))

        recorded = sorted(_carrier_events(services, shipment_id), key=lambda event: event.sequence)
        assert [event.event_time for event in recorded] == [_at(0), _at(1), _at(3)]
        assert outcome.transitions == ["in-transit", "delivered"]
        assert _shipment(shipment_id).status == "delivered"
        assert _shipment(shipment_id).actual_delivery == _at(3)

    def test_direct_transition_when_legal(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        services.state_machine.transition(shipment_id, ShipmentStatus.IN_TRANSIT, source=EventSource.MANUAL)
        carrier.add_events("sess-1", fake_event("in_transit", _at(0)), fake_event("delivered", _at(1)))

        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.transitions == ["delivered"]

    def test_status_change_events_carry_carrier_time(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", _at(0), location="Leeds"))

        asyncio.run(engine.sync_one(shipment_id))

        [change] = services.ledger.status_history(shipment_id)
        assert change.source == "api"
        assert change.event_time == _at(0)
        assert change.location == "Leeds"
        assert change.details["previous_status"] == "pending"

    def test_location_only_update_keeps_status(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("arrival_scan", _at(0), description="Scanned at hub"))

        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.new_events == 1
        assert outcome.transitions == []
        assert _shipment(shipment_id).status == "pending"
        assert _shipment(shipment_id).sync_status == "success"

    def test_each_carrier_call_is_rate_limited(self, make_shipment, engine, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        asyncio.run(engine.sync_one(shipment_id))
        assert services.rate_limiter.in_window == 1


class TestIdempotency:
    def test_resync_records_nothing_new(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", _at(0)), fake_event("in_transit", _at(1)))

        asyncio.run(engine.sync_one(shipment_id))
        count = len(services.ledger.events_for(shipment_id))
        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.new_events == 0
        assert outcome.transitions == []
        assert len(services.ledger.events_for(shipment_id)) == count

    def test_only_unseen_events_are_added(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", _at(0)))
        asyncio.run(engine.sync_one(shipment_id))

        carrier.add_events("sess-1", fake_event("out_for_delivery", _at(2)))
        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.new_events == 1
        assert outcome.transitions == ["out-for-delivery"]

    def test_duplicates_within_one_response(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", _at(0)), fake_event("pickup", _at(0)))
        assert asyncio.run(engine.sync_one(shipment_id)).new_events == 1


class TestIllegalCarrierStatus:
    def test_skip_is_recorded_and_sync_succeeds(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        services.state_machine.transition(shipment_id, ShipmentStatus.CANCELLED, source=EventSource.MANUAL)
        carrier.add_events("sess-1", fake_event("in_transit", _at(0)))

        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.skipped_status == "in-transit"
        assert outcome.transitions == []
        shipment = _shipment(shipment_id)
        assert shipment.status == "cancelled"
        assert shipment.sync_status == "success"
        assert shipment.needs_review is False

        [skip] = [
            event
            for event in services.ledger.events_for(shipment_id)
            if "skipped_transition" in (event.details or {})
        ]
        assert skip.event_type == EventType.API_SYNC.value
        assert skip.status is None
        assert skip.details["skipped_transition"] == {"from": "cancelled", "to": "in-transit"}
        assert services.state_machine.projection_consistent(shipment_id)

    def test_partial_walk_then_skip(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events(
            "sess-1",
            fake_event("pickup", _at(0)),
            fake_event("out_for_delivery", _at(1)),
            fake_event("pickup", _at(2), description="Returned to depot"),
            fake_event("delivered", _at(3)),
        )

        outcome = asyncio.run(engine.sync_one(shipment_id))

        # pending -> delivered is illegal, each reported step is legal
        assert outcome.transitions == ["in-transit", "out-for-delivery", "in-transit", "delivered"]
        assert outcome.skipped_status is None


class TestFailedSync:
    def test_retries_then_flags_for_review(self, make_shipment, engine, carrier, services, sleeps):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.configure(should_succeed=False, failure_reason="503 Service Unavailable")

        with pytest.raises(AdapterTransportError) as exc:
            asyncio.run(engine.sync_one(shipment_id))

        assert exc.value.attempts == 4
        assert carrier.calls_for("get_tracking_updates") == ["sess-1"] * 4
        assert sleeps == [1.0, 2.0, 4.0]

        shipment = _shipment(shipment_id)
        assert shipment.status == "pending"
        assert shipment.sync_status == "failed"
        assert shipment.needs_review is True
        assert "503 Service Unavailable" in shipment.last_sync_error
        assert shipment.last_synced_at is None

        failure = services.ledger.latest(shipment_id)
        assert failure.event_type == "exception"
        assert failure.source == "api"
        assert failure.status is None
        assert failure.details["sync_failure"] is True
        assert failure.details["error_code"] == "adapter_transport_error"
        assert failure.details["attempts"] == 4
        assert services.state_machine.projection_consistent(shipment_id)

    def test_recovers_within_retries(self, make_shipment, engine, carrier, sleeps):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", _at(0)))
        failures = iter([True, True])
        original = carrier.get_tracking_updates

        async def flaky(session_id):
            if next(failures, False):
                raise ConnectionError("reset by peer")
            return await original(session_id)

        carrier.get_tracking_updates = flaky
        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert outcome.transitions == ["in-transit"]
        assert sleeps == [1.0, 2.0]
        assert _shipment(shipment_id).needs_review is False

    def test_missing_tracking_reference(self, make_shipment, engine, carrier, services):
        shipment_id = make_shipment()

        with pytest.raises(MissingTrackingReference):
            asyncio.run(engine.sync_one(shipment_id))

        assert carrier.calls == []
        shipment = _shipment(shipment_id)
        assert shipment.needs_review is True
        assert services.ledger.latest(shipment_id).details["error_code"] == "missing_tracking_reference"

    def test_unknown_shipment(self, engine):
        with pytest.raises(ShipmentNotFound):
            asyncio.run(engine.sync_one("missing-shipment"))

    def test_no_adapter_fails_fast_without_marking(self, make_shipment, settings, fake_sleep, services):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        engine = build_services(settings, carrier=None, sleep=fake_sleep).sync

        with pytest.raises(AdapterUnavailable):
            asyncio.run(engine.sync_one(shipment_id))

        shipment = _shipment(shipment_id)
        assert shipment.needs_review is False
        assert shipment.sync_status == "pending"
        assert len(services.ledger.events_for(shipment_id)) == 1


class TestSessionRegistration:
    def test_opens_session_from_carrier_number(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(carrier_tracking_number="1Z999AA10123456784")
        carrier.register_number("1Z999AA10123456784", "sess-new")
        carrier.add_events("sess-new", fake_event("pickup", _at(0)))

        outcome = asyncio.run(engine.sync_one(shipment_id))

        assert carrier.calls_for("create_tracking") == ["1Z999AA10123456784"]
        assert carrier.calls_for("get_tracking_updates") == ["sess-new"]
        # The registration response and the update both carry the pickup
        assert outcome.new_events == 1
        shipment = _shipment(shipment_id)
        assert shipment.tracking_session_id == "sess-new"
        assert shipment.status == "in-transit"

    def test_existing_session_is_reused(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(tracking_session_id="sess-1", carrier_tracking_number="1Z999AA10123456784")
        asyncio.run(engine.sync_one(shipment_id))
        assert carrier.calls_for("create_tracking") == []

    def test_session_kept_when_updates_fail(self, make_shipment, engine, carrier):
        shipment_id = make_shipment(carrier_tracking_number="1Z999AA10123456784")
        carrier.register_number("1Z999AA10123456784", "sess-new")
        carrier.fail_session("sess-new", "502 Bad Gateway")

        with pytest.raises(AdapterTransportError):
            asyncio.run(engine.sync_one(shipment_id))

        shipment = _shipment(shipment_id)
        assert shipment.tracking_session_id == "sess-new"
        assert shipment.needs_review is True
