"""Shipment creation: command and handler."""

import structlog
from protean import handle
from protean.fields import DateTime, Dict, String
from protean.utils.globals import current_domain

from tracking.domain import tracking
from tracking.ledger.event import EventSource, EventType
from tracking.services import core_services
from tracking.shipment.carrier_numbers import check_assignable
from tracking.shipment.shipment import (
    Address,
    CustomerContact,
    PackageDetails,
    Shipment,
    ShipmentStatus,
)

logger = structlog.get_logger(__name__)


@tracking.command(part_of="Shipment")
class CreateShipment:
    """Register a shipment and assign it a public tracking code."""

    carrier = String(max_length=100)
    carrier_tracking_number = String(max_length=100)
    tracking_session_id = String(max_length=255)
    customer = Dict()
    package = Dict()
    origin = Dict()
    destination = Dict()
    estimated_delivery = DateTime()
    created_by = String(max_length=100)


def _value_object(cls, data):
    return cls(**data) if data else None


@tracking.command_handler(part_of=Shipment)
class CreateShipmentHandler:
    @handle(CreateShipment)
    def create_shipment(self, command):
        services = core_services()
        carrier_tracking_number = command.carrier_tracking_number
        if carrier_tracking_number:
            carrier_tracking_number = check_assignable(command.carrier, carrier_tracking_number)
        tracking_code = services.codes.generate()

        shipment = Shipment.create(
            tracking_code=tracking_code,
            carrier=command.carrier,
            carrier_tracking_number=carrier_tracking_number,
            tracking_session_id=command.tracking_session_id,
            customer=_value_object(CustomerContact, command.customer),
            package=_value_object(PackageDetails, command.package),
            origin=_value_object(Address, command.origin),
            destination=_value_object(Address, command.destination),
            estimated_delivery=command.estimated_delivery,
            created_by=command.created_by,
        )
        current_domain.repository_for(Shipment).add(shipment)

        services.ledger.append(
            str(shipment.id),
            EventType.SHIPMENT_CREATED,
            source=EventSource.MANUAL,
            status=ShipmentStatus.PENDING,
            source_id=command.created_by,
            description=f"Shipment created with tracking code {tracking_code}",
            event_time=shipment.created_at,
        )

        logger.info("Shipment created", shipment_id=str(shipment.id), tracking_code=tracking_code)
        return str(shipment.id)
