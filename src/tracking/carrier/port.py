"""Carrier port: abstract interface for carrier tracking APIs.

Every carrier adapter implements this interface. The sync engine programs
against the port; adapters are chosen via configuration. Adapters report
what the carrier said and nothing more: deduplication, ordering and status
mapping all happen in the engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


class CarrierError(Exception):
    """A carrier call failed: network error, timeout or non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CarrierEvent:
    """One tracking event as reported by a carrier."""

    event_time: datetime
    event_type: str | None = None
    description: str | None = None
    location: str | None = None
    carrier_event_id: str | None = None


@dataclass(frozen=True)
class TrackingRequest:
    """What a carrier needs to open a tracking session."""

    shipment_id: str
    carrier_tracking_number: str
    carrier: str | None = None
    origin: dict | None = None
    destination: dict | None = None
    package: dict | None = None


@dataclass(frozen=True)
class TrackingRegistration:
    """Result of opening a tracking session."""

    tracking_session_id: str
    events: list[CarrierEvent] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookNotification:
    """A pushed update: the session (or carrier number) and its events."""

    tracking_reference: str
    events: list[CarrierEvent] = field(default_factory=list)


class CarrierPort(ABC):
    """Abstract interface for carrier adapters."""

    provider_name: str = "unknown"

    @abstractmethod
    async def create_tracking(self, request: TrackingRequest) -> TrackingRegistration:
        """Open a carrier-side tracking session for a shipment."""
        ...

    @abstractmethod
    async def get_tracking_updates(self, tracking_session_id: str) -> list[CarrierEvent]:
        """Return every event the carrier knows for the session."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify that a webhook callback is authentic."""
        ...
