"""Shipment aggregate: the tracked logistics unit.

The shipment's ``status`` is a projection of the shipment event ledger: it
is only written by the status state machine, in the same unit of work as the
ledger entry recording the change.

State Machine:
    PENDING → {IN_TRANSIT, CANCELLED}
    IN_TRANSIT → {OUT_FOR_DELIVERY, DELIVERED, EXCEPTION, CANCELLED}
    OUT_FOR_DELIVERY → {DELIVERED, EXCEPTION, IN_TRANSIT}
    EXCEPTION → {IN_TRANSIT, OUT_FOR_DELIVERY, CANCELLED}
    DELIVERED, CANCELLED are terminal
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.fields import Boolean, DateTime, Float, String, Text, ValueObject

from tracking.domain import tracking
from tracking.errors import InvalidTransition
from tracking.shipment.events import (
    CarrierTrackingAssigned,
    ShipmentCreated,
    ShipmentReviewCleared,
    ShipmentStatusChanged,
    ShipmentSyncFailed,
)
from tracking.utils.clock import as_utc


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ShipmentStatus(Enum):
    PENDING = "pending"
    IN_TRANSIT = "in-transit"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"
    CANCELLED = "cancelled"


class SyncStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


_VALID_TRANSITIONS = {
    ShipmentStatus.PENDING: {ShipmentStatus.IN_TRANSIT, ShipmentStatus.CANCELLED},
    ShipmentStatus.IN_TRANSIT: {
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.EXCEPTION,
        ShipmentStatus.CANCELLED,
    },
    ShipmentStatus.OUT_FOR_DELIVERY: {
        ShipmentStatus.DELIVERED,
        ShipmentStatus.EXCEPTION,
        ShipmentStatus.IN_TRANSIT,
    },
    ShipmentStatus.EXCEPTION: {
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.CANCELLED,
    },
    ShipmentStatus.DELIVERED: set(),  # terminal
    ShipmentStatus.CANCELLED: set(),  # terminal
}

ACTIVE_STATUSES = (
    ShipmentStatus.PENDING,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
)

TERMINAL_STATUSES = (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED)


def allowed_transitions(current: ShipmentStatus) -> set[ShipmentStatus]:
    return set(_VALID_TRANSITIONS[current])


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in _VALID_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@tracking.value_object(part_of="Shipment")
class CustomerContact:
    """Who the shipment is for."""

    name = String(max_length=200)
    email = String(max_length=254)
    phone = String(max_length=50)


@tracking.value_object(part_of="Shipment")
class Address:
    line1 = String(max_length=255)
    line2 = String(max_length=255)
    city = String(max_length=100)
    state = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(max_length=100)


@tracking.value_object(part_of="Shipment")
class PackageDetails:
    """Physical characteristics of the package."""

    weight = Float()
    length = Float()
    width = Float()
    height = Float()
    description = String(max_length=500)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@tracking.aggregate
class Shipment:
    tracking_code = String(required=True, max_length=20)
    carrier = String(max_length=100)
    carrier_tracking_number = String(max_length=100)
    status = String(
        choices=ShipmentStatus,
        default=ShipmentStatus.PENDING.value,
    )

    # Informational, populated at intake or by sync
    customer = ValueObject(CustomerContact)
    package = ValueObject(PackageDetails)
    origin = ValueObject(Address)
    destination = ValueObject(Address)
    estimated_delivery = DateTime()
    actual_delivery = DateTime()

    # Carrier API integration state
    tracking_session_id = String(max_length=255)
    api_provider = String(max_length=100)
    sync_status = String(
        choices=SyncStatus,
        default=SyncStatus.PENDING.value,
    )
    last_synced_at = DateTime()
    last_sync_attempt_at = DateTime()
    last_sync_error = Text()
    needs_review = Boolean(default=False)

    created_by = String(max_length=100)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        tracking_code: str,
        carrier: str | None = None,
        carrier_tracking_number: str | None = None,
        tracking_session_id: str | None = None,
        customer: CustomerContact | None = None,
        package: PackageDetails | None = None,
        origin: Address | None = None,
        destination: Address | None = None,
        estimated_delivery: datetime | None = None,
        created_by: str | None = None,
    ):
        """Register a new shipment. It always starts out PENDING."""
        now = datetime.now(UTC)
        shipment = cls(
            tracking_code=tracking_code,
            carrier=carrier,
            carrier_tracking_number=carrier_tracking_number,
            tracking_session_id=tracking_session_id,
            status=ShipmentStatus.PENDING.value,
            sync_status=SyncStatus.PENDING.value,
            customer=customer,
            package=package,
            origin=origin,
            destination=destination,
            estimated_delivery=estimated_delivery,
            needs_review=False,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        shipment.raise_(
            ShipmentCreated(
                shipment_id=str(shipment.id),
                tracking_code=tracking_code,
                carrier=carrier,
                carrier_tracking_number=carrier_tracking_number,
                created_by=created_by,
                created_at=now,
            )
        )
        return shipment

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> ShipmentStatus:
        return ShipmentStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.current_status in ACTIVE_STATUSES

    def assert_can_transition(self, target: ShipmentStatus) -> None:
        if not can_transition(self.current_status, target):
            raise InvalidTransition(self.status, target.value)

    def change_status(self, target: ShipmentStatus, event_time: datetime | None = None) -> ShipmentStatus:
        """Move to ``target``. Only the status state machine calls this.

        Returns the previous status.
        """
        self.assert_can_transition(target)

        previous = self.current_status
        now = datetime.now(UTC)
        if target == ShipmentStatus.DELIVERED:
            self.actual_delivery = as_utc(event_time) or now
        self.status = target.value
        self.updated_at = now
        self.raise_(
            ShipmentStatusChanged(
                shipment_id=str(self.id),
                tracking_code=self.tracking_code,
                previous_status=previous.value,
                new_status=target.value,
                changed_at=now,
            )
        )
        return previous

    # -------------------------------------------------------------------
    # Carrier binding
    # -------------------------------------------------------------------
    def assign_carrier_tracking(self, carrier: str, carrier_tracking_number: str) -> None:
        """Rebind to a carrier number. The next sync registers a new session."""
        now = datetime.now(UTC)
        previous_carrier = self.carrier
        previous_number = self.carrier_tracking_number

        self.carrier = carrier
        self.carrier_tracking_number = carrier_tracking_number
        self.tracking_session_id = None
        self.sync_status = SyncStatus.PENDING.value
        self.last_sync_error = None
        self.updated_at = now
        self.raise_(
            CarrierTrackingAssigned(
                shipment_id=str(self.id),
                carrier=carrier,
                carrier_tracking_number=carrier_tracking_number,
                previous_carrier=previous_carrier,
                previous_tracking_number=previous_number,
                assigned_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Sync bookkeeping
    # -------------------------------------------------------------------
    def record_tracking_session(self, session_id: str, provider: str) -> None:
        self.tracking_session_id = session_id
        self.api_provider = provider
        self.updated_at = datetime.now(UTC)

    def record_sync_success(self, provider: str, synced_at: datetime | None = None) -> None:
        synced_at = as_utc(synced_at) or datetime.now(UTC)
        self.api_provider = provider
        self.sync_status = SyncStatus.SUCCESS.value
        self.last_synced_at = synced_at
        self.last_sync_attempt_at = synced_at
        self.last_sync_error = None
        self.updated_at = synced_at

    def record_sync_failure(self, error: str, failed_at: datetime | None = None) -> None:
        failed_at = as_utc(failed_at) or datetime.now(UTC)
        self.sync_status = SyncStatus.FAILED.value
        self.last_sync_attempt_at = failed_at
        self.last_sync_error = error
        self.needs_review = True
        self.updated_at = failed_at
        self.raise_(
            ShipmentSyncFailed(
                shipment_id=str(self.id),
                error=error,
                failed_at=failed_at,
            )
        )

    def clear_review(self, cleared_by: str | None = None) -> None:
        now = datetime.now(UTC)
        self.needs_review = False
        self.updated_at = now
        self.raise_(
            ShipmentReviewCleared(
                shipment_id=str(self.id),
                cleared_by=cleared_by,
                cleared_at=now,
            )
        )

    def is_stale(self, freshness: timedelta, now: datetime | None = None) -> bool:
        """Never synced successfully, or last success older than ``freshness``."""
        if self.last_synced_at is None:
            return True
        now = now or datetime.now(UTC)
        return as_utc(self.last_synced_at) < now - freshness
