"""
test_api.py — HTTP surface tests.

The service container is replaced through ``app.dependency_overrides`` so
every test runs against in-memory stores and scripted senders.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.models import Channel, Recipient
from backend.app.api.deps import build_container, get_container
from backend.app.core.auth import TokenAuthenticator
from backend.app.core.enums import Parish
from backend.app.main import app
from backend.app.storage.memory import InMemoryRecipientDirectory


TOKENS = {
    "admin-token": {"id": "a1", "email": "admin@jamalert.com", "role": "ADMIN"},
    "mod-token": {"id": "m1", "email": "mod@jamalert.com", "role": "MODERATOR"},
    "user-token": {"id": "u1", "email": "viewer@jamalert.com", "role": "USER"},
}


def _auth(token: str = "admin-token") -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _no_sleep(_seconds: float) -> None:
    return None


def _recipients(n: int) -> InMemoryRecipientDirectory:
    return InMemoryRecipientDirectory(
        Recipient(
            id=f"U{i:03d}", parish=Parish.KINGSTON,
            email=f"u{i}@example.com", email_alerts=True,
        )
        for i in range(n)
    )


@pytest.fixture
def container(senders):
    c = build_container(
        recipients=_recipients(4),
        senders=senders,
        authenticator=TokenAuthenticator(TOKENS),
        sleep=_no_sleep,
    )
    app.dependency_overrides[get_container] = lambda: c
    yield c
    app.dependency_overrides.clear()


@pytest.fixture
def client(container):
    return TestClient(app)


def _create_alert(client: TestClient, send: bool = True) -> dict:
    response = client.post("/api/alerts", headers=_auth(), json={
        "type": "FLOOD_WARNING",
        "severity": "HIGH",
        "title": "Flash Flood Warning",
        "message": "Hope River rising fast. Move to high ground.",
        "parishes": ["KINGSTON"],
        "sendImmediately": send,
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _report_body(**overrides) -> dict:
    body = {
        "incidentType": "FLOOD",
        "severity": "HIGH",
        "parish": "ST_CATHERINE",
        "description": "Water over the road at Bog Walk gorge",
        "incidentDate": datetime.now(timezone.utc).date().isoformat(),
        "community": "Bog Walk",
        "reporterId": "R1",
    }
    body.update(overrides)
    return body


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertRoutes:
    """Test alert creation, retry and read-outs over HTTP."""

    def test_create_and_send(self, client):
        alert = _create_alert(client)
        assert alert["deliveryStatus"] == "COMPLETED"
        assert alert["recipientCount"] == 4
        assert alert["createdBy"] == "a1"
        assert alert["deliveryStats"]["email"] == {"sent": 4, "failed": 0}

    def test_create_without_sending(self, client):
        alert = _create_alert(client, send=False)
        assert alert["deliveryStatus"] == "PENDING"
        assert alert["deliveryStats"] is None

        response = client.post(f"/api/alerts/{alert['id']}/dispatch", headers=_auth())
        assert response.status_code == 200
        assert response.json()["data"]["deliveredCount"] == 4

        again = client.post(f"/api/alerts/{alert['id']}/dispatch", headers=_auth())
        assert again.status_code == 409

    def test_create_rejects_unknown_parish(self, client):
        response = client.post("/api/alerts", headers=_auth(), json={
            "type": "WEATHER", "severity": "LOW", "title": "t", "message": "m",
            "parishes": ["ATLANTIS"],
        })
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body(self, client):
        response = client.post("/api/alerts", headers=_auth(), json={"title": "only"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_retry_with_nothing_failed(self, client):
        alert = _create_alert(client)
        response = client.post(f"/api/alerts/retry/{alert['id']}", headers=_auth())
        assert response.status_code == 400
        assert response.json()["error"] == "No failed deliveries to retry for this alert."

    def test_retry_recovers_failures(self, client, senders):
        senders[Channel.EMAIL].fail_for = {"U001", "U002"}
        alert = _create_alert(client)
        assert alert["failedCount"] == 2

        senders[Channel.EMAIL].fail_for = {"U002"}
        response = client.post(f"/api/alerts/retry/{alert['id']}", headers=_auth("mod-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Retry completed: 1 of 2 deliveries succeeded"
        assert body["data"]["alertId"] == alert["id"]
        assert body["data"]["retryResult"] == {
            "totalRetried": 2,
            "successCount": 1,
            "failureCount": 1,
            "deliveryStats": {
                "email": {"sent": 1, "failed": 1},
                "sms": {"sent": 0, "failed": 0},
                "push": {"sent": 0, "failed": 0},
            },
        }

        analytics = client.get(f"/api/alerts/{alert['id']}/analytics", headers=_auth()).json()
        assert analytics["data"]["deliveredCount"] == 3
        assert analytics["data"]["failedCount"] == 1
        assert analytics["data"]["deliveryRate"] == 75.0

    def test_retry_provider_outage(self, client, senders):
        senders[Channel.EMAIL].fail_for = {"U000"}
        alert = _create_alert(client)
        senders[Channel.EMAIL].outage = True
        response = client.post(f"/api/alerts/retry/{alert['id']}", headers=_auth())
        assert response.status_code == 500
        assert response.json()["code"] == "PROVIDER_ERROR"

    def test_retry_invalid_id(self, client):
        response = client.post("/api/alerts/retry/not-a-uuid", headers=_auth())
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid alert ID format"

    def test_retry_missing_id(self, client):
        response = client.post("/api/alerts/retry", headers=_auth())
        assert response.status_code == 400
        assert response.json()["error"] == "Alert ID is required"

    def test_retry_unknown_alert(self, client):
        response = client.post(f"/api/alerts/retry/{uuid.uuid4()}", headers=_auth())
        assert response.status_code == 404

    def test_retry_wrong_method(self, client):
        response = client.get(f"/api/alerts/retry/{uuid.uuid4()}", headers=_auth())
        assert response.status_code == 405
        body = response.json()
        assert body["error"] == "Method not allowed"
        assert body["code"] == "METHOD_NOT_ALLOWED"
        assert body["details"] == {"method": "GET"}

    def test_requires_token(self, client):
        response = client.post(f"/api/alerts/retry/{uuid.uuid4()}")
        assert response.status_code == 401

    def test_user_role_is_not_enough(self, client):
        response = client.post(f"/api/alerts/retry/{uuid.uuid4()}", headers=_auth("user-token"))
        assert response.status_code == 401
        assert response.json()["error"] == "Admin access required"

    def test_get_alert(self, client):
        alert = _create_alert(client)
        response = client.get(f"/api/alerts/{alert['id']}", headers=_auth())
        assert response.status_code == 200
        assert response.json()["data"]["id"] == alert["id"]
        assert client.get(f"/api/alerts/{uuid.uuid4()}", headers=_auth()).status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Incidents
# ═══════════════════════════════════════════════════════════════════════════

class TestIncidentRoutes:
    """Test public reporting and admin moderation."""

    def test_submit_and_corroborate(self, client):
        first = client.post("/api/incidents/report", json=_report_body())
        assert first.status_code == 201
        assert first.json()["data"]["corroborated"] is False

        second = client.post("/api/incidents/report", json=_report_body(reporterId="R2"))
        data = second.json()["data"]
        assert data["corroborated"] is True
        assert data["id"] == first.json()["data"]["id"]
        assert data["reportCount"] == 2
        assert data["verificationStatus"] == "COMMUNITY_CONFIRMED"

    def test_submit_invalid(self, client):
        response = client.post("/api/incidents/report", json=_report_body(description="short"))
        assert response.status_code == 400

    def test_list_unfiltered(self, client):
        client.post("/api/incidents/report", json=_report_body())
        client.post("/api/incidents/report", json=_report_body(parish="KINGSTON"))
        response = client.get("/api/admin/incidents", headers=_auth("user-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]) == 2
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 2, "totalPages": 1}

    def test_list_ignores_bad_filters(self, client):
        client.post("/api/incidents/report", json=_report_body())
        response = client.get(
            "/api/admin/incidents?parish=NARNIA&limit=abc&page=-1", headers=_auth(),
        )
        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1

    def test_list_filters_by_parish(self, client):
        client.post("/api/incidents/report", json=_report_body())
        client.post("/api/incidents/report", json=_report_body(parish="KINGSTON"))
        response = client.get("/api/admin/incidents?parish=KINGSTON", headers=_auth())
        assert [r["parish"] for r in response.json()["data"]] == ["KINGSTON"]

    def test_list_requires_token(self, client):
        assert client.get("/api/admin/incidents").status_code == 401

    def test_moderator_can_approve(self, client):
        report_id = client.post("/api/incidents/report", json=_report_body()).json()["data"]["id"]
        response = client.put(f"/api/admin/incidents/{report_id}/approve", headers=_auth("mod-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Incident report approved successfully"
        assert body["data"]["status"] == "APPROVED"
        assert body["data"]["verificationStatus"] == "UNVERIFIED"

    def test_verify_then_reverify(self, client):
        report_id = client.post("/api/incidents/report", json=_report_body()).json()["data"]["id"]
        first = client.put(f"/api/admin/incidents/{report_id}/verify", headers=_auth())
        assert first.status_code == 200
        assert first.json()["data"]["verificationStatus"] == "ODPEM_VERIFIED"
        second = client.put(f"/api/admin/incidents/{report_id}/verify", headers=_auth())
        assert second.status_code == 409

    def test_user_role_forbidden_without_side_effects(self, client, container):
        container.review = MagicMock()
        container.review.apply_action = AsyncMock()
        response = client.put("/api/admin/incidents/abc/approve", headers=_auth("user-token"))
        assert response.status_code == 403
        container.review.apply_action.assert_not_called()

    def test_unknown_action(self, client):
        response = client.put("/api/admin/incidents/abc/delete", headers=_auth())
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid action: delete")

    @pytest.mark.parametrize("path", ["abc", "abc/approve/extra"])
    def test_bad_path(self, client, path):
        response = client.put(f"/api/admin/incidents/{path}", headers=_auth())
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request path. Expected /{reportId}/{action}"

    def test_unknown_report(self, client):
        response = client.put("/api/admin/incidents/missing/approve", headers=_auth())
        assert response.status_code == 404

    def test_wrong_method(self, client):
        response = client.delete("/api/admin/incidents/abc/approve", headers=_auth())
        assert response.status_code == 405
        assert response.json()["details"] == {"method": "DELETE"}


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:
    """Test probes."""

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        names = [c["name"] for c in body["components"]]
        assert names == ["storage", "channels"]

    def test_senders_closed_by_container(self, container, senders):
        asyncio.run(container.aclose())
        assert all(s.closed for s in senders.values())
