"""Tracking load test scenarios.

ShipmentAdminJourney walks one shipment through its lifecycle the way an
operator would. CustomerTrackingUser hammers the public lookup and
CarrierWebhookUser replays carrier notifications, duplicates included.
"""

import random

from locust import HttpUser, SequentialTaskSet, between, task

from loadtests.data_generators import session_id, shipment_data, webhook_payload
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import ShipmentState, TrackedCodes


class ShipmentAdminJourney(SequentialTaskSet):
    """Create -> In transit -> Out for delivery -> Delivered -> Read history."""

    def on_start(self):
        self.state = ShipmentState()

    @task
    def create_shipment(self):
        with self.client.post(
            "/shipments",
            json=shipment_data(),
            catch_response=True,
            name="POST /shipments",
        ) as resp:
            if resp.status_code == 201:
                body = resp.json()
                self.state.shipment_id = body["shipment_id"]
                self.state.tracking_code = body["tracking_code"]
            else:
                resp.failure(f"Create shipment failed: {resp.status_code} {extract_error_detail(resp)}")
                self.interrupt()

    def _change_status(self, status: str):
        with self.client.put(
            f"/shipments/{self.state.shipment_id}/status",
            json={"status": status, "admin_user_id": "lt-admin"},
            catch_response=True,
            name="PUT /shipments/{id}/status",
        ) as resp:
            if resp.status_code == 200:
                self.state.current_status = status
            else:
                resp.failure(f"Status change to {status} failed: {resp.status_code} {extract_error_detail(resp)}")
                self.interrupt()

    @task
    def mark_in_transit(self):
        self._change_status("in-transit")

    @task
    def mark_out_for_delivery(self):
        self._change_status("out-for-delivery")

    @task
    def mark_delivered(self):
        self._change_status("delivered")

    @task
    def read_history(self):
        self.client.get(
            f"/shipments/{self.state.shipment_id}/events",
            params={"per_page": 20},
            name="GET /shipments/{id}/events",
        )

    @task
    def illegal_change_is_rejected(self):
        with self.client.put(
            f"/shipments/{self.state.shipment_id}/status",
            json={"status": "in-transit"},
            catch_response=True,
            name="PUT /shipments/{id}/status [terminal]",
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Delivered shipment accepted a change: {resp.status_code}")
        self.interrupt()


class ShipmentAdminUser(HttpUser):
    wait_time = between(1, 3)
    tasks = [ShipmentAdminJourney]


class CustomerTrackingUser(HttpUser):
    """Customers refreshing the public tracking page."""

    wait_time = between(0.5, 2)

    def on_start(self):
        self.tracked = TrackedCodes()
        for _ in range(3):
            resp = self.client.post("/shipments", json=shipment_data(), name="POST /shipments [seed]")
            if resp.status_code == 201:
                self.tracked.codes.append(resp.json()["tracking_code"])

    @task(10)
    def track(self):
        if not self.tracked.codes:
            return
        self.client.get(f"/tracking/{random.choice(self.tracked.codes)}", name="GET /tracking/{code}")

    @task(1)
    def track_unknown_code(self):
        with self.client.get("/tracking/NOT-A-CODE", catch_response=True, name="GET /tracking/{code} [unknown]") as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Unknown code returned {resp.status_code}")


class CarrierWebhookUser(HttpUser):
    """Carrier pushing scan notifications, with redeliveries."""

    wait_time = between(0.2, 1)

    def on_start(self):
        self.state = ShipmentState(tracking_session_id=session_id())
        resp = self.client.post(
            "/shipments",
            json=shipment_data(tracking_session_id=self.state.tracking_session_id),
            name="POST /shipments [webhook seed]",
        )
        if resp.status_code == 201:
            self.state.shipment_id = resp.json()["shipment_id"]

    @task(5)
    def push_scans(self):
        with self.client.post(
            "/webhooks/carrier-tracking",
            json=webhook_payload(self.state.tracking_session_id),
            catch_response=True,
            name="POST /webhooks/carrier-tracking",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Webhook failed: {resp.status_code} {extract_error_detail(resp)}")

    @task(1)
    def push_for_unknown_session(self):
        self.client.post(
            "/webhooks/carrier-tracking",
            json=webhook_payload(session_id(), scans=1),
            name="POST /webhooks/carrier-tracking [unknown]",
        )

    @task(1)
    def sync_stats(self):
        self.client.get("/shipments/sync/stats", name="GET /shipments/sync/stats")
