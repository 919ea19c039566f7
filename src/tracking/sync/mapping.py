"""Translation of carrier events into shipment statuses and ledger types.

Pure functions: no I/O and no dependence on shipment state.
"""

from tracking.carrier.port import CarrierEvent
from tracking.ledger.event import EventType
from tracking.shipment.shipment import ShipmentStatus

_STATUS_BY_EVENT_TYPE = {
    "pickup": ShipmentStatus.IN_TRANSIT,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.EXCEPTION,
    "cancelled": ShipmentStatus.CANCELLED,
}

# Checked in order; the first matching phrase wins.
_STATUS_BY_DESCRIPTION = (
    (("delivered", "signed"), ShipmentStatus.DELIVERED),
    (("out for delivery", "loaded for delivery"), ShipmentStatus.OUT_FOR_DELIVERY),
    (("in transit", "departed", "arrived"), ShipmentStatus.IN_TRANSIT),
    (("exception", "delay", "hold"), ShipmentStatus.EXCEPTION),
    (("cancelled", "returned"), ShipmentStatus.CANCELLED),
)


def _normalize_type(event_type: str | None) -> str:
    return (event_type or "").strip().lower().replace("-", "_").replace(" ", "_")


def map_status(event_type: str | None, description: str | None = None) -> ShipmentStatus | None:
    """Status a carrier event implies, or ``None`` for pure location updates.

    The structured event type wins; the free-text description is only
    consulted when the type is missing or unrecognised.
    """
    status = _STATUS_BY_EVENT_TYPE.get(_normalize_type(event_type))
    if status is not None:
        return status

    text = (description or "").lower()
    for phrases, mapped in _STATUS_BY_DESCRIPTION:
        if any(phrase in text for phrase in phrases):
            return mapped
    return None


def map_event_status(event: CarrierEvent) -> ShipmentStatus | None:
    return map_status(event.event_type, event.description)


def ledger_event_type(event: CarrierEvent, status: ShipmentStatus | None) -> EventType:
    """Ledger type used to record a carrier event."""
    carrier_type = _normalize_type(event.event_type)
    if carrier_type == "exception" or status == ShipmentStatus.EXCEPTION:
        return EventType.EXCEPTION
    if carrier_type == "delivery_attempt":
        return EventType.DELIVERY_ATTEMPT
    if status is not None:
        return EventType.API_SYNC
    return EventType.LOCATION_UPDATE
