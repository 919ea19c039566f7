"""Carrier tracking assignment: command, handler and bulk assignment.

Binding a shipment to a (new) carrier tracking number is an explicit
administrative act; sync never changes the carrier binding. The old
tracking session is dropped so the next sync registers a fresh one.
"""

from collections import defaultdict
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from tracking.domain import tracking
from tracking.ledger.event import EventSource, EventType
from tracking.services import core_services
from tracking.shipment.carrier_numbers import check_assignable, clean_number, conflicting_shipment, format_problem
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import load_shipment

logger = structlog.get_logger(__name__)

MAX_BULK_ASSIGNMENTS = 100


@tracking.command(part_of="Shipment")
class AssignCarrierTracking:
    shipment_id = Identifier(required=True)
    carrier = String(required=True, max_length=100)
    carrier_tracking_number = String(required=True, max_length=100)
    admin_user_id = String(max_length=100)


@tracking.command_handler(part_of=Shipment)
class AssignCarrierTrackingHandler:
    @handle(AssignCarrierTracking)
    def assign_carrier_tracking(self, command):
        services = core_services()
        shipment = load_shipment(command.shipment_id)
        number = check_assignable(command.carrier, command.carrier_tracking_number, str(shipment.id))
        previous_carrier = shipment.carrier
        previous_number = shipment.carrier_tracking_number

        shipment.assign_carrier_tracking(command.carrier, number)
        current_domain.repository_for(Shipment).add(shipment)

        services.ledger.append(
            str(shipment.id),
            EventType.STATUS_CHANGE,
            source=EventSource.MANUAL,
            source_id=command.admin_user_id,
            description=f"Carrier tracking assigned: {command.carrier} {shipment.carrier_tracking_number}",
            details={
                "audit_action": "carrier_reassigned",
                "carrier": command.carrier,
                "carrier_tracking_number": shipment.carrier_tracking_number,
                "previous_carrier": previous_carrier,
                "previous_tracking_number": previous_number,
            },
        )
        return str(shipment.id)


@dataclass(frozen=True)
class CarrierAssignment:
    shipment_id: str
    carrier: str
    carrier_tracking_number: str


def bulk_assignment_errors(assignments: list[CarrierAssignment]) -> dict[str, list[str]]:
    """Problems with a batch of assignments, keyed by shipment id.

    Covers unknown shipments, numbers repeated within the batch, malformed
    numbers and numbers already bound to another shipment.
    """
    errors = defaultdict(list)
    repo = current_domain.repository_for(Shipment)

    holders = defaultdict(list)
    for assignment in assignments:
        holders[clean_number(assignment.carrier_tracking_number)].append(assignment.shipment_id)
    for number, shipment_ids in holders.items():
        if len(shipment_ids) > 1:
            for shipment_id in shipment_ids:
                errors[shipment_id].append(f"Duplicate tracking number {number} within batch")

    for assignment in assignments:
        try:
            repo.get(assignment.shipment_id)
        except ObjectNotFoundError:
            errors[assignment.shipment_id].append(f"Shipment `{assignment.shipment_id}` does not exist")
            continue

        number = clean_number(assignment.carrier_tracking_number)
        problem = format_problem(assignment.carrier, number)
        if problem:
            errors[assignment.shipment_id].append(problem)
            continue

        existing = conflicting_shipment(number, assignment.shipment_id)
        if existing is not None:
            errors[assignment.shipment_id].append(
                f"Tracking number {number} is already assigned to shipment {existing.tracking_code}"
            )

    return dict(errors)


def assign_carrier_tracking_bulk(
    assignments: list[CarrierAssignment],
    admin_user_id: str | None = None,
) -> list[str]:
    """Bind several shipments at once.

    The whole batch is validated before anything is written; any problem
    raises ``ValidationError`` with the messages keyed by shipment id.
    """
    if not assignments:
        raise ValidationError({"assignments": ["At least one assignment is required"]})
    if len(assignments) > MAX_BULK_ASSIGNMENTS:
        raise ValidationError({"assignments": [f"At most {MAX_BULK_ASSIGNMENTS} assignments per request"]})
    if len({assignment.shipment_id for assignment in assignments}) != len(assignments):
        raise ValidationError({"assignments": ["Each shipment may appear only once"]})

    errors = bulk_assignment_errors(assignments)
    if errors:
        logger.warning("Bulk carrier assignment rejected", assignments=len(assignments), rejected=len(errors))
        raise ValidationError(errors)

    assigned = [
        current_domain.process(
            AssignCarrierTracking(
                shipment_id=assignment.shipment_id,
                carrier=assignment.carrier,
                carrier_tracking_number=assignment.carrier_tracking_number,
                admin_user_id=admin_user_id,
            ),
            asynchronous=False,
        )
        for assignment in assignments
    ]
    logger.info("Bulk carrier assignment completed", assigned=len(assigned))
    return assigned
