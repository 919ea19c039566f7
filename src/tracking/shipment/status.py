"""Manual status change: command and handler.

An administrator forcing a status runs the conflict detector first, so any
divergence from recent carrier data is annotated in the ledger, and then
the state machine applies the change. Both happen in the handler's unit of
work; an illegal change rolls the annotations back with it.
"""

from protean import handle
from protean.fields import DateTime, Identifier, String, Text

from tracking.domain import tracking
from tracking.ledger.event import EventSource
from tracking.services import core_services
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import parse_status


@tracking.command(part_of="Shipment")
class ChangeShipmentStatus:
    shipment_id = Identifier(required=True)
    status = String(required=True, max_length=50)
    admin_user_id = String(max_length=100)
    reason = Text()
    location = String(max_length=255)
    event_time = DateTime()


@tracking.command_handler(part_of=Shipment)
class ChangeShipmentStatusHandler:
    @handle(ChangeShipmentStatus)
    def change_status(self, command):
        services = core_services()
        target = parse_status(command.status)
        shipment = services.state_machine.check(command.shipment_id, target)

        conflicts = services.conflicts.inspect(
            str(shipment.id),
            target,
            admin_user_id=command.admin_user_id,
        )
        event = services.state_machine.transition(
            str(shipment.id),
            target,
            source=EventSource.MANUAL,
            source_id=command.admin_user_id,
            description=command.reason or f"Status manually updated to {target.value}",
            location=command.location,
            event_time=command.event_time,
            details={
                "manual_update": True,
                "admin_user_id": command.admin_user_id,
                "previous_status": shipment.status,
                "update_reason": command.reason,
            },
        )
        return {
            "event_id": str(event.id),
            "status": target.value,
            "conflicts": [annotation.details["conflict_type"] for annotation in conflicts],
        }
