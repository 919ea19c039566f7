"""Integration tests for the sync-tracking command."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from tracking import cli
from tracking.carrier.fake_adapter import fake_event
from tracking.services import build_services
from tracking.shipment.shipment import Shipment

PICKED_UP_AT = datetime.now(UTC).replace(microsecond=0) - timedelta(hours=2)


def _status(shipment_id):
    return current_domain.repository_for(Shipment).get(shipment_id).status


class TestArguments:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.force is False
        assert args.dry_run is False
        assert args.shipments is None
        assert args.concurrent is None

    def test_shipment_list(self):
        args = cli.build_parser().parse_args(["--shipments", "a, b,,c"])
        assert args.shipments == ["a", "b", "c"]

    @pytest.mark.parametrize("value", ["0", "-2", "many"])
    def test_concurrency_must_be_positive(self, value):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([f"--concurrent={value}"])


class TestRun:
    def test_nothing_to_do(self, services, capsys):
        assert cli.run([], services) == cli.EXIT_OK
        assert "No shipments need syncing." in capsys.readouterr().out

    def test_syncs_due_shipments(self, make_shipment, services, carrier, capsys):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", PICKED_UP_AT))

        assert cli.run([], services) == cli.EXIT_OK

        assert "Synced 1 of 1 shipment(s)." in capsys.readouterr().out
        assert _status(shipment_id) == "in-transit"

    def test_failures_exit_with_one(self, make_shipment, services, carrier, capsys):
        make_shipment(tracking_session_id="sess-good")
        bad = make_shipment(tracking_session_id="sess-bad")
        carrier.fail_session("sess-bad", "502 Bad Gateway")

        assert cli.run(["--concurrent=1"], services) == cli.EXIT_FAILURES

        out = capsys.readouterr().out
        assert "Synced 1 of 2 shipment(s)." in out
        assert f"FAILED {bad}" in out

    def test_explicit_shipments(self, make_shipment, services, carrier):
        chosen = make_shipment(tracking_session_id="sess-chosen")
        make_shipment(tracking_session_id="sess-other")

        assert cli.run([f"--shipments={chosen}"], services) == cli.EXIT_OK
        assert carrier.calls_for("get_tracking_updates") == ["sess-chosen"]

    def test_force_includes_fresh_shipments(self, make_shipment, services, carrier):
        make_shipment(tracking_session_id="sess-1")
        cli.run([], services)

        cli.run([], services)
        assert carrier.calls_for("get_tracking_updates") == ["sess-1"]

        cli.run(["--force"], services)
        assert carrier.calls_for("get_tracking_updates") == ["sess-1", "sess-1"]

    def test_dry_run_changes_nothing(self, make_shipment, services, carrier, capsys):
        shipment_id = make_shipment(tracking_session_id="sess-1")
        carrier.add_events("sess-1", fake_event("pickup", PICKED_UP_AT))

        assert cli.run(["--dry-run"], services) == cli.EXIT_OK

        out = capsys.readouterr().out
        assert "Would sync 1 shipment(s):" in out
        assert shipment_id in out
        assert carrier.calls == []
        assert _status(shipment_id) == "pending"

    def test_dry_run_with_nothing_due(self, services, capsys):
        assert cli.run(["--dry-run"], services) == cli.EXIT_OK
        assert "No shipments need syncing." in capsys.readouterr().out

    def test_no_adapter_is_fatal(self, settings, fake_sleep, make_shipment, capsys):
        make_shipment(tracking_session_id="sess-1")
        services = build_services(settings, carrier=None, sleep=fake_sleep)

        assert cli.run([], services) == cli.EXIT_FATAL
        assert "No carrier adapter configured" in capsys.readouterr().err

    def test_invalid_configuration_is_fatal(self, monkeypatch, capsys):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "lots")
        assert cli.main([]) == cli.EXIT_FATAL
        assert "invalid configuration" in capsys.readouterr().err

    def test_storage_failure_mid_batch_is_reported_as_aborted(self, make_shipment, services, monkeypatch, capsys):
        make_shipment(tracking_session_id="sess-1")

        def broken_ingest(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(services.sync, "ingest", broken_ingest)

        assert cli.run([], services) == cli.EXIT_ABORTED
        assert "sync aborted: ledger unavailable" in capsys.readouterr().err
