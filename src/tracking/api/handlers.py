"""HTTP error mapping for the tracking API.

Protean's integration covers its own exceptions (``ValidationError`` → 400,
``ObjectNotFoundError`` → 404). Tracking-specific failures get their own
status codes on top; Starlette resolves handlers along the exception's MRO,
so ``InvalidTransition`` is answered with 422 even though it is a
``ValidationError``, and ``CarrierTrackingConflict`` with 409.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers

from tracking.errors import (
    AdapterTransportError,
    AdapterUnavailable,
    CarrierTrackingConflict,
    InvalidTransition,
    InvalidWebhookSignature,
    MissingTrackingReference,
    TrackingCodeGenerationExhausted,
    TrackingError,
)

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR = {
    AdapterUnavailable: 503,
    TrackingCodeGenerationExhausted: 503,
    InvalidWebhookSignature: 401,
    AdapterTransportError: 502,
    MissingTrackingReference: 502,
}


async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": exc.messages,
            "current_status": exc.current,
            "requested_status": exc.requested,
        },
    )


async def _carrier_tracking_conflict(request: Request, exc: CarrierTrackingConflict) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "error": exc.messages,
            "carrier_tracking_number": exc.carrier_tracking_number,
            "existing_shipment_id": exc.existing_shipment_id,
            "existing_tracking_code": exc.existing_tracking_code,
        },
    )


async def _tracking_error(request: Request, exc: TrackingError) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    logger.warning(
        "Tracking request failed",
        path=request.url.path,
        error_code=exc.code,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    register_protean_handlers(app)
    app.add_exception_handler(InvalidTransition, _invalid_transition)
    app.add_exception_handler(CarrierTrackingConflict, _carrier_tracking_conflict)
    for error in _STATUS_BY_ERROR:
        app.add_exception_handler(error, _tracking_error)
