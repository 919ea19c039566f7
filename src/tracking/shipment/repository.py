"""Repository for the Shipment aggregate."""

from tracking.codes.generator import normalize
from tracking.domain import tracking
from tracking.shipment.shipment import ACTIVE_STATUSES, Shipment

# Upper bound on rows pulled by a single scan.
SCAN_LIMIT = 10_000


@tracking.repository(part_of=Shipment)
class ShipmentRepository:
    def find_by_tracking_code(self, tracking_code: str) -> Shipment | None:
        return self._dao.query.filter(tracking_code=tracking_code).limit(1).all().first

    def tracking_code_exists(self, tracking_code: str) -> bool:
        return self.find_by_tracking_code(tracking_code) is not None

    def find_by_tracking_session(self, session_id: str) -> Shipment | None:
        return self._dao.query.filter(tracking_session_id=session_id).limit(1).all().first

    def find_by_carrier_tracking_number(self, number: str) -> Shipment | None:
        return self._dao.query.filter(carrier_tracking_number=number).limit(1).all().first

    def find_all_by_carrier_tracking_number(self, number: str) -> list[Shipment]:
        return list(self._dao.query.filter(carrier_tracking_number=number).all().items)

    def find_by_carrier_reference(self, reference: str) -> Shipment | None:
        """Webhook routing: match the tracking session first, then the carrier number."""
        return self.find_by_tracking_session(reference) or self.find_by_carrier_tracking_number(reference)

    def find_all(self) -> list[Shipment]:
        return list(self._dao.query.limit(SCAN_LIMIT).all().items)

    def find_active(self) -> list[Shipment]:
        """Shipments whose status can still change."""
        active = []
        for status in ACTIVE_STATUSES:
            active.extend(self._dao.query.filter(status=status.value).limit(SCAN_LIMIT).all().items)
        return active

    def find_by_public_code(self, value: str) -> Shipment | None:
        """Lookup by customer-entered code; formatted input is accepted."""
        code = normalize(value)
        return self.find_by_tracking_code(code) if code else None

    def delete_shipment(self, shipment: Shipment) -> None:
        self._dao.delete(shipment)
