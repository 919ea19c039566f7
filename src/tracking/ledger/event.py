"""ShipmentEvent: one immutable fact in a shipment's audit trail.

Every status change, carrier scan, sync failure and conflict annotation is
recorded as a ShipmentEvent. ``event_time`` is when the thing happened
(as reported by the carrier or administrator); ``recorded_at`` is when the
ledger accepted it. ``sequence`` is the per-shipment insertion order; it
breaks ties between events recorded in the same instant.
"""

from enum import Enum

from protean.fields import DateTime, Dict, Identifier, Integer, String, Text

from tracking.domain import tracking
from tracking.shipment.shipment import ShipmentStatus


class EventType(Enum):
    SHIPMENT_CREATED = "shipment_created"
    STATUS_CHANGE = "status_change"
    LOCATION_UPDATE = "location_update"
    DELIVERY_ATTEMPT = "delivery_attempt"
    EXCEPTION = "exception"
    API_SYNC = "api_sync"


class EventSource(Enum):
    MANUAL = "manual"
    API = "api"
    WEBHOOK = "webhook"


# Event types whose status (if any) is the shipment's status of record
STATUS_EVENT_TYPES = (EventType.SHIPMENT_CREATED, EventType.STATUS_CHANGE)

CARRIER_SOURCES = (EventSource.API, EventSource.WEBHOOK)


@tracking.aggregate
class ShipmentEvent:
    shipment_id = Identifier(required=True)
    event_type = String(required=True, max_length=50, choices=EventType)
    status = String(max_length=50, choices=ShipmentStatus)
    description = Text()
    location = String(max_length=255)
    source = String(required=True, max_length=20, choices=EventSource)
    source_id = String(max_length=255)
    event_time = DateTime(required=True)
    recorded_at = DateTime(required=True)
    sequence = Integer(default=0)
    details = Dict()

    @property
    def has_status(self) -> bool:
        return bool(self.status)
