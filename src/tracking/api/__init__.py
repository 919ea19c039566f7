"""Tracking domain API package."""

from tracking.api.handlers import register_exception_handlers
from tracking.api.routes import public_router, shipment_router, webhook_router

__all__ = ["shipment_router", "public_router", "webhook_router", "register_exception_handlers"]
