"""Smoke tests for the pipeline HTTP API.

Quick validation tests to ensure basic functionality works.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from subscription_pipeline.main import create_app
from subscription_pipeline.repositories.dead_letter_store import get_dead_letter_store
from subscription_pipeline.repositories.event_store import get_event_store
from subscription_pipeline.repositories.subscription_store import get_subscription_store
from subscription_pipeline.services.time_controller import get_time_controller, reset_time_controller


@pytest.fixture(autouse=True)
def reset_stores():
    """Clear all stores before and after each test."""
    stores = [get_event_store(), get_subscription_store(), get_dead_letter_store()]
    for store in stores:
        store.clear()
    reset_time_controller()

    yield

    for store in stores:
        store.clear()
    reset_time_controller()


@pytest.fixture
def client():
    """Create test client."""
    app = create_app()
    return TestClient(app)


def payload(**overrides):
    data = {
        "notification_id": "b5c4a1f0-3c2d-4e5f-8a9b-0c1d2e3f4a5b",
        "platform": "apple",
        "notification_type": "SUBSCRIBED",
        "original_transaction_id": "2000000123456789",
        "raw_payload": "eyJhbGciOiJFUzI1NiJ9",
        "user_id": "user-123",
        "product_id": "premium.monthly",
        "status": "active",
    }
    data.update(overrides)
    return data


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "subscription-pipeline"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["dlq_pending"] == 0
    assert data["events"]["total_events"] == 0


def test_request_id_header(client):
    response = client.get("/", headers={"X-Request-ID": "req-abc"})
    assert response.headers["X-Request-ID"] == "req-abc"


def test_pipeline_time_header_follows_virtual_clock(client):
    before = get_time_controller().now()
    client.post("/v1/maintenance/time/advance", json={"days": 2})

    response = client.get("/")

    pipeline_time = datetime.fromisoformat(response.headers["X-Pipeline-Time"])
    assert before + timedelta(days=2) <= pipeline_time <= get_time_controller().now()


def test_request_log_level_follows_status(client):
    with patch("subscription_pipeline.middleware.logger") as mock_logger:
        client.get("/health")
        client.post("/v1/maintenance/dlq/missing/resolve")
        client.get("/")

    assert mock_logger.debug.call_args.args == ("request_completed",)
    assert mock_logger.debug.call_args.kwargs["path"] == "/health"
    assert mock_logger.warning.call_args.kwargs["status_code"] == 404
    assert mock_logger.info.call_args.kwargs["path"] == "/"


def test_process_notification_success(client):
    response = client.post("/v1/notifications", json=payload())

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "success"
    assert data["subscription_id"] is not None


def test_duplicate_notification(client):
    first = client.post("/v1/notifications", json=payload()).json()
    response = client.post("/v1/notifications", json=payload())

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "already_processed"
    assert data["event_id"] == first["event_id"]


def test_rejected_transition_returns_202(client):
    client.post("/v1/notifications", json=payload(notification_id="n-1", status="expired"))

    response = client.post("/v1/notifications", json=payload(notification_id="n-2", status="paused"))

    assert response.status_code == 202
    data = response.json()
    assert data["outcome"] == "failed"
    assert data["error_type"] == "InvalidTransitionError"
    assert data["dlq_entry_id"] is not None


def test_invalid_notification_rejected(client):
    response = client.post("/v1/notifications", json=payload(platform="amazon"))
    assert response.status_code == 422


def test_monitoring_endpoints(client):
    client.post("/v1/notifications", json=payload(notification_id="n-1", status="expired"))
    client.post("/v1/notifications", json=payload(notification_id="n-2", status="paused"))

    subscriptions = client.get("/v1/monitoring/subscriptions").json()
    assert subscriptions[0]["platform"] == "apple"
    assert subscriptions[0]["by_status"] == {"expired": 1}

    dlq = client.get("/v1/monitoring/dlq").json()
    assert dlq[0]["pending"] == 1

    errors = client.get("/v1/monitoring/events/errors", params={"limit": 10}).json()
    assert len(errors) == 1
    assert "expired -> paused" in errors[0]["processing_error"]


def test_process_dlq_endpoint(client):
    response = client.post("/v1/maintenance/dlq/process")

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 0
    assert data["skipped"] is False


def test_resolve_dlq_entry(client):
    client.post("/v1/notifications", json=payload(notification_id="n-1", status="expired"))
    failed = client.post("/v1/notifications", json=payload(notification_id="n-2", status="paused")).json()
    entry_id = failed["dlq_entry_id"]

    response = client.post(f"/v1/maintenance/dlq/{entry_id}/resolve")
    assert response.status_code == 200
    assert response.json()["resolved_by"] == "manual"

    again = client.post(f"/v1/maintenance/dlq/{entry_id}/resolve")
    assert again.status_code == 409


def test_resolve_unknown_dlq_entry(client):
    response = client.post("/v1/maintenance/dlq/missing/resolve")
    assert response.status_code == 404


def test_cleanup_endpoint(client):
    response = client.post("/v1/maintenance/cleanup", json={"retention_days": 30})

    assert response.status_code == 200
    assert response.json()["retention_days"] == 30


def test_advance_and_reset_time(client):
    response = client.post("/v1/maintenance/time/advance", json={"minutes": 2})
    assert response.status_code == 200
    assert response.json()["advanced_seconds"] == 120.0

    empty = client.post("/v1/maintenance/time/advance", json={})
    assert empty.status_code == 400

    reset = client.post("/v1/maintenance/time/reset")
    assert reset.status_code == 200


def test_lifespan_starts_and_stops():
    with TestClient(create_app()) as managed:
        assert managed.get("/health").status_code == 200
