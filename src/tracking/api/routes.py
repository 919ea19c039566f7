"""FastAPI routes for the Tracking domain: shipments, sync and webhooks."""

import json
from datetime import datetime

from fastapi import APIRouter, Depends, Header, Query, Request
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from tracking.api.schemas import (
    AssignCarrierTrackingRequest,
    BatchSyncRequest,
    BulkAssignCarrierTrackingRequest,
    BulkAssignResponse,
    BatchSyncResponse,
    ChangeStatusRequest,
    ClearReviewRequest,
    CreateShipmentRequest,
    EventPageResponse,
    FailedSync,
    PublicTrackingEvent,
    PublicTrackingResponse,
    PurgeResponse,
    ShipmentCreatedResponse,
    ShipmentEventResponse,
    ShipmentResponse,
    StatusChangeResponse,
    StatusResponse,
    SyncOutcomeResponse,
    SyncStatsResponse,
    WebhookResponse,
)
from tracking.codes.generator import format_for_display
from tracking.errors import ShipmentNotFound
from tracking.ledger.event import EventSource, EventType, ShipmentEvent
from tracking.ledger.ledger import DEFAULT_PER_PAGE, MAX_PER_PAGE, EventFilters
from tracking.services import TrackingServices
from tracking.shipment.assignment import AssignCarrierTracking, CarrierAssignment, assign_carrier_tracking_bulk
from tracking.shipment.creation import CreateShipment
from tracking.shipment.purge import PurgeShipment
from tracking.shipment.review import ClearReviewFlag
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import load_shipment
from tracking.shipment.status import ChangeShipmentStatus
from tracking.sync.health import sync_health


def get_services(request: Request) -> TrackingServices:
    """Service bundle built by the host at startup."""
    return request.app.state.services


def _enum_values(enum_cls, values: list[str] | None, field: str) -> tuple:
    try:
        return tuple(enum_cls(value) for value in values or ())
    except ValueError as exc:
        raise ValidationError({field: [str(exc)]}) from exc


def _shipment_response(shipment: Shipment) -> ShipmentResponse:
    return ShipmentResponse(
        id=str(shipment.id),
        tracking_code=shipment.tracking_code,
        display_code=format_for_display(shipment.tracking_code),
        status=shipment.status,
        carrier=shipment.carrier,
        carrier_tracking_number=shipment.carrier_tracking_number,
        tracking_session_id=shipment.tracking_session_id,
        api_provider=shipment.api_provider,
        sync_status=shipment.sync_status,
        last_synced_at=shipment.last_synced_at,
        last_sync_error=shipment.last_sync_error,
        needs_review=bool(shipment.needs_review),
        estimated_delivery=shipment.estimated_delivery,
        actual_delivery=shipment.actual_delivery,
        created_at=shipment.created_at,
        updated_at=shipment.updated_at,
    )


def _event_response(event: ShipmentEvent) -> ShipmentEventResponse:
    return ShipmentEventResponse(
        id=str(event.id),
        event_type=event.event_type,
        status=event.status,
        description=event.description,
        location=event.location,
        source=event.source,
        source_id=event.source_id,
        event_time=event.event_time,
        recorded_at=event.recorded_at,
        metadata=event.details or {},
    )


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("", status_code=201, response_model=ShipmentCreatedResponse)
async def create_shipment(body: CreateShipmentRequest) -> ShipmentCreatedResponse:
    fields = body.model_dump(exclude_none=True)
    command = CreateShipment(**fields)
    shipment_id = current_domain.process(command, asynchronous=False)
    shipment = load_shipment(shipment_id)
    return ShipmentCreatedResponse(shipment_id=shipment_id, tracking_code=shipment.tracking_code)


@shipment_router.get("/sync/stats", response_model=SyncStatsResponse)
async def get_sync_stats(services: TrackingServices = Depends(get_services)) -> SyncStatsResponse:
    stats = services.sync.sync_stats()
    health = sync_health(stats)
    return SyncStatsResponse(
        total_shipments=stats.total_shipments,
        with_tracking_session=stats.with_tracking_session,
        recently_synced=stats.recently_synced,
        needing_sync=stats.needing_sync,
        needing_review=stats.needing_review,
        failed_syncs=stats.failed_syncs,
        provider=stats.provider,
        health=health.status.value,
        alerts=health.alerts,
    )


@shipment_router.post("/sync", response_model=BatchSyncResponse)
async def sync_shipments(
    body: BatchSyncRequest,
    services: TrackingServices = Depends(get_services),
) -> BatchSyncResponse:
    result = await services.sync.sync_batch(
        shipment_ids=body.shipment_ids,
        max_concurrency=body.max_concurrency,
        force=body.force,
    )
    return BatchSyncResponse(
        successful=result.successful,
        failed=[FailedSync(**failure) for failure in result.failed],
        skipped=result.skipped,
    )


@shipment_router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: str) -> ShipmentResponse:
    return _shipment_response(load_shipment(shipment_id))


@shipment_router.put("/{shipment_id}/status", response_model=StatusChangeResponse)
async def change_shipment_status(shipment_id: str, body: ChangeStatusRequest) -> StatusChangeResponse:
    command = ChangeShipmentStatus(
        shipment_id=shipment_id,
        status=body.status,
        admin_user_id=body.admin_user_id,
        reason=body.reason,
        location=body.location,
        event_time=body.event_time,
    )
    result = current_domain.process(command, asynchronous=False)
    return StatusChangeResponse(**result)


@shipment_router.get("/{shipment_id}/events", response_model=EventPageResponse)
async def list_shipment_events(
    shipment_id: str,
    event_type: list[str] | None = Query(default=None),
    source: list[str] | None = Query(default=None),
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    services: TrackingServices = Depends(get_services),
) -> EventPageResponse:
    load_shipment(shipment_id)
    filters = EventFilters(
        event_types=_enum_values(EventType, event_type, "event_type"),
        sources=_enum_values(EventSource, source, "source"),
        start=start,
        end=end,
    )
    result = services.ledger.query(shipment_id, filters, page=page, per_page=per_page)
    return EventPageResponse(
        events=[_event_response(event) for event in result.events],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        total_pages=result.total_pages,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@shipment_router.put("/{shipment_id}/carrier-tracking", response_model=StatusResponse)
async def assign_carrier_tracking(shipment_id: str, body: AssignCarrierTrackingRequest) -> StatusResponse:
    command = AssignCarrierTracking(
        shipment_id=shipment_id,
        carrier=body.carrier,
        carrier_tracking_number=body.carrier_tracking_number,
        admin_user_id=body.admin_user_id,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="ok")


@shipment_router.post("/carrier-tracking/bulk", response_model=BulkAssignResponse)
async def assign_carrier_tracking_in_bulk(body: BulkAssignCarrierTrackingRequest) -> BulkAssignResponse:
    assignments = [
        CarrierAssignment(
            shipment_id=item.shipment_id,
            carrier=item.carrier,
            carrier_tracking_number=item.carrier_tracking_number,
        )
        for item in body.assignments
    ]
    assigned = assign_carrier_tracking_bulk(assignments, admin_user_id=body.admin_user_id)
    return BulkAssignResponse(assigned=assigned)


@shipment_router.put("/{shipment_id}/review/clear", response_model=StatusResponse)
async def clear_review_flag(shipment_id: str, body: ClearReviewRequest) -> StatusResponse:
    command = ClearReviewFlag(
        shipment_id=shipment_id,
        admin_user_id=body.admin_user_id,
        notes=body.notes,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="ok")


@shipment_router.delete("/{shipment_id}", response_model=PurgeResponse)
async def purge_shipment(shipment_id: str, admin_user_id: str | None = None) -> PurgeResponse:
    command = PurgeShipment(shipment_id=shipment_id, admin_user_id=admin_user_id)
    purged = current_domain.process(command, asynchronous=False)
    return PurgeResponse(shipment_id=shipment_id, purged_events=purged)


@shipment_router.post("/{shipment_id}/sync", response_model=SyncOutcomeResponse)
async def sync_shipment(
    shipment_id: str,
    services: TrackingServices = Depends(get_services),
) -> SyncOutcomeResponse:
    outcome = await services.sync.sync_one(shipment_id)
    return SyncOutcomeResponse(
        shipment_id=outcome.shipment_id,
        new_events=outcome.new_events,
        transitions=outcome.transitions,
        skipped_status=outcome.skipped_status,
    )


# ---------------------------------------------------------------------------
# Public Tracking Router
# ---------------------------------------------------------------------------
public_router = APIRouter(prefix="/tracking", tags=["tracking"])


@public_router.get("/{code}", response_model=PublicTrackingResponse)
async def track_shipment(
    code: str,
    services: TrackingServices = Depends(get_services),
) -> PublicTrackingResponse:
    shipment = current_domain.repository_for(Shipment).find_by_public_code(code)
    if shipment is None:
        raise ShipmentNotFound(code)

    return PublicTrackingResponse(
        tracking_code=shipment.tracking_code,
        display_code=format_for_display(shipment.tracking_code),
        status=shipment.status,
        estimated_delivery=shipment.estimated_delivery,
        actual_delivery=shipment.actual_delivery,
        events=[
            PublicTrackingEvent(
                status=event.status,
                description=event.description,
                location=event.location,
                event_time=event.event_time,
            )
            for event in services.ledger.public_timeline(str(shipment.id))
        ],
    )


# ---------------------------------------------------------------------------
# Carrier Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/carrier-tracking", response_model=WebhookResponse)
async def carrier_tracking_webhook(
    request: Request,
    x_carrier_signature: str | None = Header(default=None),
    services: TrackingServices = Depends(get_services),
) -> WebhookResponse:
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise ValidationError({"payload": ["Request body is not valid JSON"]}) from exc

    result = services.sync.handle_webhook(payload, raw_body=raw_body, signature=x_carrier_signature)
    if not result.matched:
        return WebhookResponse(status="ignored")
    return WebhookResponse(status="processed", shipment_id=result.shipment_id, new_events=result.new_events)
