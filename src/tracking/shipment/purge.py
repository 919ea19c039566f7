"""Administrative purge: delete a shipment together with its ledger.

This is the only path that removes ledger entries. It is never part of
normal operation.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from tracking.domain import tracking
from tracking.services import core_services
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import load_shipment

logger = structlog.get_logger(__name__)


@tracking.command(part_of="Shipment")
class PurgeShipment:
    shipment_id = Identifier(required=True)
    admin_user_id = String(max_length=100)


@tracking.command_handler(part_of=Shipment)
class PurgeShipmentHandler:
    @handle(PurgeShipment)
    def purge_shipment(self, command):
        shipment = load_shipment(command.shipment_id)
        purged = core_services().ledger.purge(str(shipment.id))
        current_domain.repository_for(Shipment).delete_shipment(shipment)

        logger.warning(
            "Shipment purged",
            shipment_id=str(shipment.id),
            tracking_code=shipment.tracking_code,
            events=purged,
            admin_user_id=command.admin_user_id,
        )
        return purged
