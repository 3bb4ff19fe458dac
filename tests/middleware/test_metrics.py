"""Prometheus counters cannot be reset between tests, so these assert
on deltas: read before, act, read after."""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth_header


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_endpoint_label_uses_route_template(client: TestClient) -> None:
    labels = {
        "method": "GET",
        "endpoint": "/v1/video/modules/{module_id}/access",
        "status_code": "200",
    }
    before = _get_sample("http_requests_total", labels)
    client.get(f"/v1/video/modules/{uuid.uuid4()}/access", headers=auth_header())
    assert _get_sample("http_requests_total", labels) - before == 1


def test_metrics_endpoint_not_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before


def test_denial_increments_decision_counter(client: TestClient) -> None:
    labels = {"outcome": "denied", "reason": "module_not_found"}
    before = _get_sample("video_access_decisions_total", labels)
    client.post(f"/v1/video/modules/{uuid.uuid4()}/access", headers=auth_header())
    assert _get_sample("video_access_decisions_total", labels) - before == 1
