"""Tracking load testing entry point.

Usage:
    # All scenarios (web UI):
    locust -f loadtests/locustfile.py

    # Public lookups only:
    locust -f loadtests/locustfile.py CustomerTrackingUser

    # Headless (CI mode):
    locust -f loadtests/locustfile.py --headless -u 50 -r 5 -t 300s --csv=results/loadtest
"""

import logging
import time

from locust import events

from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.tracking import (  # noqa: F401
    CarrierWebhookUser,
    CustomerTrackingUser,
    ShipmentAdminUser,
)

logger = logging.getLogger("loadtest")


@events.request.add_listener
def on_request(request_type, name, response, exception, **_kw):
    """Log the API error body for every failed request."""
    if exception:
        logger.error("[EXCEPTION] %s %s: %s", request_type, name, exception)
    elif response is not None and response.status_code >= 400:
        logger.error("[%s] %s %s: %s", response.status_code, request_type, name, extract_error_detail(response))


@events.test_start.add_listener
def on_test_start(environment, **_kwargs):
    print(f"\n[LOADTEST] Started at {time.strftime('%H:%M:%S')}")
    print(f"[LOADTEST] Target host: {environment.host}\n")


@events.test_stop.add_listener
def on_test_stop(environment, **_kwargs):
    stats = environment.stats.total
    print(f"\n[LOADTEST] Stopped at {time.strftime('%H:%M:%S')}")
    print(f"[LOADTEST] {stats.num_requests} requests, {stats.num_failures} failures\n")
