"""Integration health derived from sync statistics."""

from dataclasses import dataclass, field
from enum import Enum

STALE_BACKLOG_WARNING_RATIO = 0.5


class HealthStatus(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SyncStats:
    total_shipments: int = 0
    with_tracking_session: int = 0
    recently_synced: int = 0
    needing_sync: int = 0
    needing_review: int = 0
    failed_syncs: int = 0
    provider: str | None = None


@dataclass(frozen=True)
class SyncHealth:
    status: HealthStatus
    alerts: list[str] = field(default_factory=list)


def sync_health(stats: SyncStats) -> SyncHealth:
    """Classify integration health.

    Critical when no adapter is configured. Warning when shipments await
    review or when more than half of the tracked shipments are overdue for
    a sync.
    """
    if stats.provider is None:
        return SyncHealth(HealthStatus.CRITICAL, ["No carrier adapter configured"])

    alerts = []
    if stats.needing_review:
        alerts.append(f"{stats.needing_review} shipment(s) flagged for review")
    if stats.with_tracking_session and stats.needing_sync / stats.with_tracking_session > STALE_BACKLOG_WARNING_RATIO:
        alerts.append(f"{stats.needing_sync} of {stats.with_tracking_session} tracked shipment(s) are overdue for sync")

    return SyncHealth(HealthStatus.WARNING if alerts else HealthStatus.HEALTHY, alerts)
