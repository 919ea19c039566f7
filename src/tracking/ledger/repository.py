"""Repository for ShipmentEvent ledger entries."""

from tracking.domain import tracking
from tracking.ledger.event import ShipmentEvent
from tracking.shipment.repository import SCAN_LIMIT


@tracking.repository(part_of=ShipmentEvent)
class ShipmentEventRepository:
    def for_shipment(self, shipment_id: str) -> list[ShipmentEvent]:
        """Every ledger entry for one shipment, unordered."""
        return list(self._dao.query.filter(shipment_id=shipment_id).limit(SCAN_LIMIT).all().items)

    def delete_event(self, event: ShipmentEvent) -> None:
        self._dao.delete(event)

    def last_sequence(self, shipment_id: str) -> int:
        """Highest stored ``sequence`` for the shipment, 0 when it has none."""
        latest = self._dao.query.filter(shipment_id=shipment_id).order_by("-sequence").limit(1).all().first
        return (latest.sequence or 0) if latest else 0
