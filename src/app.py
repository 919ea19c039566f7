"""ShipStream tracking FastAPI application.

Web server for shipment administration, public tracking lookups and carrier
webhooks. Commands are processed synchronously inside the tracking domain
context, which is pushed for every request.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay; CARRIER_ADAPTER and the SYNC_*
# variables configure the services (see tracking.config).
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from tracking.config import TrackingSettings
from tracking.domain import tracking
from tracking.services import build_services
from tracking.sync.health import sync_health

tracking.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="ShipStream Tracking API",
    description="Shipment status tracking and carrier reconciliation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Invalid settings fail here, at startup
app.state.services = build_services(TrackingSettings.from_env())


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the tracking domain context for each request."""
    with tracking.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from tracking.api import (  # noqa: E402
    public_router,
    register_exception_handlers,
    shipment_router,
    webhook_router,
)

app.include_router(shipment_router)
app.include_router(public_router)
app.include_router(webhook_router)
register_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    stats = app.state.services.sync.sync_stats()
    carrier_health = sync_health(stats)
    return JSONResponse(
        content={
            "status": "ok",
            "domain": {"name": tracking.name},
            "carrier": {
                "provider": stats.provider,
                "health": carrier_health.status.value,
                "alerts": carrier_health.alerts,
            },
        }
    )
