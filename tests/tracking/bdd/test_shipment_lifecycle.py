"""BDD tests for the shipment status lifecycle."""

from protean import current_domain
from pytest_bdd import parsers, scenarios, then, when

from tracking.errors import InvalidTransition
from tracking.shipment.status import ChangeShipmentStatus

scenarios("features/shipment_lifecycle.feature")


def _change(shipment_id, status):
    return current_domain.process(
        ChangeShipmentStatus(shipment_id=shipment_id, status=status, admin_user_id="admin-bdd"),
        asynchronous=False,
    )


@when(parsers.cfparse('an administrator changes the status to "{status}"'))
def change_status(shipment_id, outcome, status):
    outcome["result"] = _change(shipment_id, status)


@when(parsers.cfparse('an administrator tries to change the status to "{status}"'))
def attempt_change(shipment_id, error, status):
    try:
        _change(shipment_id, status)
    except InvalidTransition as exc:
        error["exc"] = exc


@then(parsers.cfparse('the status history reads "{statuses}"'))
def status_history_reads(shipment_id, services, statuses):
    history = [event.status for event in services.ledger.events_for(shipment_id) if event.status]
    assert history == [status.strip() for status in statuses.split(",")]


@then(parsers.cfparse('the change is flagged as "{conflict}"'))
def change_flagged(outcome, conflict):
    assert conflict in outcome["result"]["conflicts"]
