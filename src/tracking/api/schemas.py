"""Pydantic API schemas for the tracking domain.

These are the external API contracts, separate from domain commands.
The API layer translates between these schemas and commands or services.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class CustomerContactSchema(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class AddressSchema(BaseModel):
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class PackageDetailsSchema(BaseModel):
    weight: float | None = None
    length: float | None = None
    width: float | None = None
    height: float | None = None
    description: str | None = None


class CreateShipmentRequest(BaseModel):
    carrier: str | None = None
    carrier_tracking_number: str | None = None
    tracking_session_id: str | None = None
    customer: CustomerContactSchema | None = None
    package: PackageDetailsSchema | None = None
    origin: AddressSchema | None = None
    destination: AddressSchema | None = None
    estimated_delivery: datetime | None = None
    created_by: str | None = None


class ChangeStatusRequest(BaseModel):
    status: str
    admin_user_id: str | None = None
    reason: str | None = None
    location: str | None = None
    event_time: datetime | None = None


class AssignCarrierTrackingRequest(BaseModel):
    carrier: str
    carrier_tracking_number: str = Field(min_length=1)
    admin_user_id: str | None = None


class CarrierAssignmentItem(BaseModel):
    shipment_id: str
    carrier: str
    carrier_tracking_number: str = Field(min_length=1)


class BulkAssignCarrierTrackingRequest(BaseModel):
    assignments: list[CarrierAssignmentItem] = Field(min_length=1)
    admin_user_id: str | None = None


class ClearReviewRequest(BaseModel):
    admin_user_id: str | None = None
    notes: str | None = None


class BatchSyncRequest(BaseModel):
    shipment_ids: list[str] | None = None
    max_concurrency: int | None = Field(default=None, ge=1)
    force: bool = False


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class ShipmentCreatedResponse(BaseModel):
    shipment_id: str
    tracking_code: str


class StatusResponse(BaseModel):
    status: str


class BulkAssignResponse(BaseModel):
    assigned: list[str]


class StatusChangeResponse(BaseModel):
    event_id: str
    status: str
    conflicts: list[str] = []


class PurgeResponse(BaseModel):
    shipment_id: str
    purged_events: int


class ShipmentResponse(BaseModel):
    id: str
    tracking_code: str
    display_code: str
    status: str
    carrier: str | None = None
    carrier_tracking_number: str | None = None
    tracking_session_id: str | None = None
    api_provider: str | None = None
    sync_status: str | None = None
    last_synced_at: datetime | None = None
    last_sync_error: str | None = None
    needs_review: bool = False
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ShipmentEventResponse(BaseModel):
    id: str
    event_type: str
    status: str | None = None
    description: str | None = None
    location: str | None = None
    source: str
    source_id: str | None = None
    event_time: datetime
    recorded_at: datetime
    metadata: dict = {}


class EventPageResponse(BaseModel):
    events: list[ShipmentEventResponse]
    total: int
    page: int
    per_page: int
    total_pages: int
    has_next: bool
    has_prev: bool


class SyncOutcomeResponse(BaseModel):
    shipment_id: str
    new_events: int
    transitions: list[str] = []
    skipped_status: str | None = None


class FailedSync(BaseModel):
    id: str
    error: str


class BatchSyncResponse(BaseModel):
    successful: list[str]
    failed: list[FailedSync]
    skipped: list[str] = []


class SyncStatsResponse(BaseModel):
    total_shipments: int
    with_tracking_session: int
    recently_synced: int
    needing_sync: int
    needing_review: int
    failed_syncs: int
    provider: str | None = None
    health: str
    alerts: list[str] = []


class PublicTrackingEvent(BaseModel):
    status: str | None = None
    description: str | None = None
    location: str | None = None
    event_time: datetime


class PublicTrackingResponse(BaseModel):
    """What a customer sees. Carrier identifiers are never exposed."""

    tracking_code: str
    display_code: str
    status: str
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    events: list[PublicTrackingEvent] = []


class WebhookResponse(BaseModel):
    status: str
    shipment_id: str | None = None
    new_events: int = 0
