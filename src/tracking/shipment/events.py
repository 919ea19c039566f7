"""Shipment domain events: facts raised by the Shipment aggregate.

Published for downstream consumers such as customer notifications. These
are separate from the shipment event ledger, which is the audit trail.
"""

from protean.fields import DateTime, Identifier, String, Text

from tracking.domain import tracking


@tracking.event(part_of="Shipment")
class ShipmentCreated:
    """A shipment was registered with a public tracking code."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    tracking_code = String(required=True)
    carrier = String()
    carrier_tracking_number = String()
    created_by = String()
    created_at = DateTime(required=True)


@tracking.event(part_of="Shipment")
class ShipmentStatusChanged:
    """The shipment moved to a new lifecycle status."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    tracking_code = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@tracking.event(part_of="Shipment")
class CarrierTrackingAssigned:
    """An administrator bound (or rebound) the shipment to a carrier number."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    carrier = String(required=True)
    carrier_tracking_number = String(required=True)
    previous_carrier = String()
    previous_tracking_number = String()
    assigned_at = DateTime(required=True)


@tracking.event(part_of="Shipment")
class ShipmentSyncFailed:
    """Carrier synchronization failed; the shipment now needs review."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    error = Text(required=True)
    failed_at = DateTime(required=True)


@tracking.event(part_of="Shipment")
class ShipmentReviewCleared:
    """An administrator acknowledged a shipment flagged for review."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    cleared_by = String()
    cleared_at = DateTime(required=True)
