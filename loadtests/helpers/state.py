"""Per-user state for the tracking load test scenarios."""

from dataclasses import dataclass, field


@dataclass
class ShipmentState:
    """Tracks a single simulated shipment."""

    shipment_id: str | None = None
    tracking_code: str | None = None
    tracking_session_id: str | None = None
    current_status: str = "pending"


@dataclass
class TrackedCodes:
    """Public codes a simulated customer keeps checking."""

    codes: list[str] = field(default_factory=list)
