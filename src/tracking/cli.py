"""Carrier tracking sync CLI.

Syncs shipments with the configured carrier adapter. Without ``--shipments``
every active shipment with a tracking session that is due for a sync is
selected.

Usage:
    sync-tracking                          # Sync shipments due for a sync
    sync-tracking --force                  # Ignore freshness, sync all active
    sync-tracking --dry-run                # List what would be synced
    sync-tracking --shipments=id1,id2      # Sync specific shipments
    sync-tracking --concurrent=10 --verbose

Exit codes:
    0  every shipment synced, or nothing to do
    1  at least one shipment failed
    2  fatal error before any work started (no adapter, invalid config)
    3  run aborted partway by an unexpected error (e.g. storage failure)
"""

import argparse
import asyncio
import signal
import sys

import structlog

from tracking.config import TrackingSettings
from tracking.errors import AdapterUnavailable
from tracking.services import TrackingServices, build_services
from tracking.utils.logging import configure_logging

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 2
EXIT_ABORTED = 3


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def _shipment_ids(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sync-tracking", description="Sync shipments with the carrier")
    parser.add_argument("--force", action="store_true", help="Sync regardless of when shipments were last synced")
    parser.add_argument("--dry-run", action="store_true", help="List the shipments that would be synced")
    parser.add_argument("--shipments", type=_shipment_ids, help="Comma-separated shipment ids to sync")
    parser.add_argument("--concurrent", type=_positive_int, help="Shipments synced concurrently")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def _dry_run(services: TrackingServices, args) -> int:
    if args.shipments:
        ids = args.shipments
    else:
        ids = [str(shipment.id) for shipment in services.sync.select_candidates(force=args.force)]

    if not ids:
        print("No shipments need syncing.")
        return EXIT_OK

    print(f"Would sync {len(ids)} shipment(s):")
    for shipment_id in ids:
        print(f"  {shipment_id}")
    return EXIT_OK


async def _sync(services: TrackingServices, args, install_signal_handlers: bool) -> int:
    cancel = asyncio.Event()
    if install_signal_handlers:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, cancel.set)

    result = await services.sync.sync_batch(
        shipment_ids=args.shipments,
        max_concurrency=args.concurrent,
        force=args.force,
        cancel=cancel,
    )

    if not result.total:
        print("No shipments need syncing.")
        return EXIT_OK

    print(f"Synced {len(result.successful)} of {result.total} shipment(s).")
    for failure in result.failed:
        print(f"  FAILED {failure['id']}: {failure['error']}")
    if result.skipped:
        print(f"  {len(result.skipped)} shipment(s) skipped after cancellation.")

    return EXIT_FAILURES if result.failed else EXIT_OK


def run(argv: list[str] | None, services: TrackingServices, install_signal_handlers: bool = False) -> int:
    """Run the CLI against an existing service bundle.

    Must be called inside the tracking domain context.
    """
    args = build_parser().parse_args(argv)
    if args.verbose:
        configure_logging("DEBUG")
    logger.debug("Tracking sync requested", force=args.force, dry_run=args.dry_run, shipments=args.shipments)

    if services.carrier is None:
        print(f"error: {AdapterUnavailable()}; set CARRIER_ADAPTER", file=sys.stderr)
        return EXIT_FATAL

    if args.dry_run:
        return _dry_run(services, args)

    try:
        return asyncio.run(_sync(services, args, install_signal_handlers))
    except AdapterUnavailable as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    except Exception as exc:
        logger.exception("Tracking sync aborted", error=str(exc))
        print(f"error: sync aborted: {exc}", file=sys.stderr)
        return EXIT_ABORTED


def main(argv: list[str] | None = None) -> int:
    try:
        settings = TrackingSettings.from_env()
        services = build_services(settings)
    except ValueError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FATAL

    from tracking.domain import tracking

    tracking.init()
    with tracking.domain_context():
        return run(argv, services, install_signal_handlers=True)


if __name__ == "__main__":
    sys.exit(main())
