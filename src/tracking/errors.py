"""Error taxonomy for the tracking domain.

Caller errors reuse Protean's exception types so the FastAPI integration
maps them to HTTP responses; operational failures derive from
``TrackingError``.
"""

from protean.exceptions import ObjectNotFoundError, ValidationError


class TrackingError(Exception):
    """Base class for operational failures in tracking."""

    code = "tracking_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class ShipmentNotFound(ObjectNotFoundError):
    """The referenced shipment does not exist. Never retried."""

    def __init__(self, shipment_id: str):
        super().__init__(f"Shipment `{shipment_id}` does not exist")
        self.shipment_id = shipment_id


class InvalidTransition(ValidationError):
    """A status change outside the legal adjacency table."""

    def __init__(self, current: str, requested: str):
        super().__init__({"status": [f"Cannot transition from {current} to {requested}"]})
        self.current = current
        self.requested = requested


class TrackingCodeGenerationExhausted(TrackingError):
    code = "tracking_code_generation_exhausted"


class AdapterUnavailable(TrackingError):
    code = "adapter_unavailable"

    def __init__(self, message: str = "No carrier adapter configured"):
        super().__init__(message)


class AdapterTransportError(TrackingError):
    """A carrier call failed after every retry (network, timeout or non-2xx)."""

    code = "adapter_transport_error"

    def __init__(self, message: str, attempts: int = 1, cause: BaseException | None = None):
        super().__init__(message, attempts=attempts)
        self.attempts = attempts
        self.cause = cause


class MissingTrackingReference(TrackingError):
    """Shipment has neither a tracking session nor a carrier tracking number."""

    code = "missing_tracking_reference"


class InvalidWebhookSignature(TrackingError):
    code = "invalid_webhook_signature"

    def __init__(self, message: str = "Invalid carrier webhook signature"):
        super().__init__(message)


class CarrierTrackingConflict(ValidationError):
    """The carrier tracking number is already bound to another shipment."""

    def __init__(self, carrier_tracking_number: str, existing_shipment_id: str, existing_tracking_code: str):
        super().__init__(
            {
                "carrier_tracking_number": [
                    f"Tracking number {carrier_tracking_number} is already assigned to shipment {existing_tracking_code}"
                ]
            }
        )
        self.carrier_tracking_number = carrier_tracking_number
        self.existing_shipment_id = existing_shipment_id
        self.existing_tracking_code = existing_tracking_code
