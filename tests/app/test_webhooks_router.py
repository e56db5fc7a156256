"""Tests for the Google push notification endpoint."""

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def channel(world):
    world.webhooks.register(world.connection)
    connection = world.connection
    return {
        "X-Goog-Channel-ID": connection.webhook_channel_id,
        "X-Goog-Resource-ID": connection.webhook_resource_id,
        "X-Goog-Channel-Token": connection.webhook_token,
    }


class TestCalendarWebhook:
    def test_change_notification_queues_scan(self, client: TestClient, world, channel):
        response = client.post(
            "/calendar/webhook", headers={**channel, "X-Goog-Resource-State": "exists"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "accepted"
        assert [job.operation for job in world.orchestrator.queue.queued_jobs()] == ["import_scan"]

    def test_sync_handshake_is_ignored(self, client: TestClient, channel):
        response = client.post(
            "/calendar/webhook", headers={**channel, "X-Goog-Resource-State": "sync"}
        )
        assert response.json() == {"status": "ignored", "job_id": None}

    def test_wrong_token_is_acknowledged_but_ignored(self, client: TestClient, world, channel):
        response = client.post(
            "/calendar/webhook",
            headers={**channel, "X-Goog-Channel-Token": "forged", "X-Goog-Resource-State": "exists"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert world.orchestrator.queue.queued_jobs() == []

    def test_unknown_channel(self, client: TestClient):
        response = client.post(
            "/calendar/webhook",
            headers={"X-Goog-Channel-ID": "unknown", "X-Goog-Resource-State": "exists"},
        )
        assert response.json()["status"] == "ignored"
