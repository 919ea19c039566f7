"""Tracking bounded context: Shipment Status and Carrier Reconciliation.

Owns the shipment status lifecycle, the append-only shipment event ledger,
and synchronization with third-party carrier tracking APIs. Carriers are
unreliable and may disagree with administrators, so every fact is recorded
in the ledger and the current status is only ever changed through the
status state machine.
"""

from protean.domain import Domain

from tracking.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

logger = get_logger(__name__)

# Domain Composition Root
tracking = Domain(name="tracking")
