"""Shared BDD fixtures and step definitions for tracking."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from tracking.errors import InvalidTransition
from tracking.ledger.event import EventSource
from tracking.shipment.shipment import Shipment

# Legal paths from pending to each status
_PATHS = {
    "pending": [],
    "in-transit": ["in-transit"],
    "out-for-delivery": ["in-transit", "out-for-delivery"],
    "delivered": ["in-transit", "delivered"],
    "exception": ["in-transit", "exception"],
    "cancelled": ["cancelled"],
}


@pytest.fixture()
def error():
    """Container for captured transition errors."""
    return {"exc": None}


@pytest.fixture()
def outcome():
    """Latest result of a status change or sync."""
    return {"result": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a new shipment", target_fixture="shipment_id")
def new_shipment(make_shipment):
    return make_shipment()


@given(parsers.cfparse('a shipment with status "{status}"'), target_fixture="shipment_id")
def shipment_with_status(make_shipment, services, status):
    shipment_id = make_shipment()
    for step in _PATHS[status]:
        services.state_machine.transition(shipment_id, step, source=EventSource.MANUAL)
    return shipment_id


@given(parsers.cfparse('a shipment the carrier reported as "{status}"'), target_fixture="shipment_id")
def shipment_reported_by_carrier(make_shipment, services, status):
    shipment_id = make_shipment()
    for step in _PATHS[status]:
        services.state_machine.transition(shipment_id, step, source=EventSource.API, source_id="fake")
    return shipment_id


@given(parsers.cfparse('a shipment tracked under session "{session_id}"'), target_fixture="shipment_id")
def tracked_shipment(make_shipment, session_id):
    return make_shipment(tracking_session_id=session_id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the shipment status is "{status}"'))
def shipment_status_is(shipment_id, services, status):
    assert current_domain.repository_for(Shipment).get(shipment_id).status == status
    assert services.state_machine.projection_consistent(shipment_id)


@then("the change is rejected as an invalid transition")
def change_rejected(error):
    assert isinstance(error["exc"], InvalidTransition)
