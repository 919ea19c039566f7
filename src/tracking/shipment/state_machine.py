"""Status state machine: the only writer of a shipment's status.

A transition loads the shipment, checks the move against the adjacency
table, appends the ``status_change`` ledger entry and saves the shipment,
all in one unit of work. An illegal move raises ``InvalidTransition``
before anything is written.
"""

from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from tracking.errors import ShipmentNotFound
from tracking.ledger.event import EventSource, EventType, ShipmentEvent
from tracking.ledger.ledger import EventLedger, atomic
from tracking.shipment.shipment import Shipment, ShipmentStatus

logger = structlog.get_logger(__name__)


def parse_status(value: ShipmentStatus | str) -> ShipmentStatus:
    if isinstance(value, ShipmentStatus):
        return value
    try:
        return ShipmentStatus(value)
    except ValueError as exc:
        raise ValidationError({"status": [f"Unknown shipment status: {value}"]}) from exc


def load_shipment(shipment_id: str) -> Shipment:
    try:
        return current_domain.repository_for(Shipment).get(str(shipment_id))
    except ObjectNotFoundError as exc:
        raise ShipmentNotFound(str(shipment_id)) from exc


class StatusStateMachine:
    def __init__(self, ledger: EventLedger):
        self.ledger = ledger

    def check(self, shipment_id: str, new_status: ShipmentStatus | str) -> Shipment:
        """Raise InvalidTransition if the move is illegal right now."""
        shipment = load_shipment(shipment_id)
        shipment.assert_can_transition(parse_status(new_status))
        return shipment

    def transition(
        self,
        shipment_id: str,
        new_status: ShipmentStatus | str,
        *,
        source: EventSource,
        source_id: str | None = None,
        description: str | None = None,
        location: str | None = None,
        event_time: datetime | None = None,
        details: dict | None = None,
    ) -> ShipmentEvent:
        """Apply a legal transition and return its ledger entry."""
        target = parse_status(new_status)

        with atomic():
            repo = current_domain.repository_for(Shipment)
            shipment = load_shipment(shipment_id)
            previous = shipment.change_status(target, event_time=event_time)

            event = self.ledger.append(
                str(shipment.id),
                EventType.STATUS_CHANGE,
                source=source,
                status=target,
                description=description or f"Status changed from {previous.value} to {target.value}",
                location=location,
                source_id=source_id,
                event_time=event_time,
                details={"previous_status": previous.value, **(details or {})},
            )
            repo.add(shipment)

        logger.info(
            "Shipment status changed",
            shipment_id=str(shipment.id),
            previous_status=previous.value,
            new_status=target.value,
            source=source.value,
        )
        return event

    def projection_consistent(self, shipment_id: str) -> bool:
        """Does the stored status match the latest status event in the ledger?"""
        shipment = load_shipment(shipment_id)
        latest = self.ledger.latest_status_event(str(shipment.id))
        return latest is not None and latest.status == shipment.status
