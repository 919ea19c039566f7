"""Review acknowledgement: command and handler."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from tracking.domain import tracking
from tracking.ledger.event import EventSource, EventType
from tracking.services import core_services
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import load_shipment


@tracking.command(part_of="Shipment")
class ClearReviewFlag:
    """An administrator has looked at a shipment flagged by a failed sync."""

    shipment_id = Identifier(required=True)
    admin_user_id = String(max_length=100)
    notes = Text()


@tracking.command_handler(part_of=Shipment)
class ClearReviewFlagHandler:
    @handle(ClearReviewFlag)
    def clear_review_flag(self, command):
        shipment = load_shipment(command.shipment_id)
        if not shipment.needs_review:
            raise ValidationError({"needs_review": ["Shipment is not flagged for review"]})

        last_error = shipment.last_sync_error
        shipment.clear_review(cleared_by=command.admin_user_id)
        current_domain.repository_for(Shipment).add(shipment)

        core_services().ledger.append(
            str(shipment.id),
            EventType.STATUS_CHANGE,
            source=EventSource.MANUAL,
            source_id=command.admin_user_id,
            description=command.notes or "Review flag cleared",
            details={"audit_action": "review_cleared", "last_sync_error": last_error},
        )
