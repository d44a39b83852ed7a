"""
Integration tests for API → lifecycle → database flow.

Requests go through the ASGI app against the test database, with the
PIN validator and notification dispatcher mocked.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from gatepass.domain.errors import DependencyError
from gatepass.domain.models import PinValidation
from gatepass.infrastructure.db.repository import VisitRequestRepository

ID_PHOTO = ("id.jpg", b"\xff\xd8\xff\xe0 identity photo", "image/jpeg")
DISC_PHOTO = ("disc.jpg", b"\xff\xd8\xff\xe0 licence disc", "image/jpeg")


def visit_form(**overrides) -> dict:
    form = {
        "mode": "qr",
        "travel_type": "pedestrian",
        "estate_reference": "EST-001",
        "unit_reference": "U12",
        "guest_name": "Lerato Nkosi",
        "guest_contact": "+27821234567",
    }
    form.update(overrides)
    return form


def stored_documents(tmp_path) -> list:
    return sorted((tmp_path / "documents").rglob("*.bin"))


async def submit(client, files=None, **overrides):
    return await client.post(
        "/api/v1/visits",
        data=visit_form(**overrides),
        files=files if files is not None else {"identity_document": ID_PHOTO},
    )


class TestHealthEndpoints:
    """Tests for health and readiness probes."""

    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_ready(self, async_client):
        with patch("gatepass.main.ping_db", AsyncMock(return_value=True)):
            response = await async_client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "database_connected": True,
            "expiry_sweep_running": False,
        }

    @pytest.mark.asyncio
    async def test_not_ready_when_database_down(self, async_client):
        """Test readiness reports 503 when the database does not answer."""
        failing_ping = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))
        with patch("gatepass.main.ping_db", failing_ping):
            response = await async_client.get("/ready")

        assert response.status_code == 503
        assert response.json()["database_connected"] is False


class TestAuthentication:
    """Tests for API key enforcement."""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, async_client):
        response = await async_client.get(
            "/api/v1/visits/anything/status",
            headers={"X-API-Key": ""},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_api_key(self, async_client):
        response = await async_client.post(
            "/api/v1/gate/present",
            json={"token": "x"},
            headers={"X-API-Key": "not-the-key"},
        )

        assert response.status_code == 401


class TestSubmitVisit:
    """Tests for POST /api/v1/visits."""

    @pytest.mark.asyncio
    async def test_pedestrian_qr_request(self, async_client, tmp_path):
        """Test a pedestrian with an ID photo gets a pending request."""
        response = await submit(async_client)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["resident_name"] == "Thandi Mokoena"
        assert data["travel_type"] == "pedestrian"
        assert len(stored_documents(tmp_path)) == 1

    @pytest.mark.asyncio
    async def test_driver_qr_request(self, async_client, tmp_path):
        response = await submit(
            async_client,
            files={"identity_document": ID_PHOTO, "vehicle_document": DISC_PHOTO},
            travel_type="driver",
        )

        assert response.status_code == 201
        assert len(stored_documents(tmp_path)) == 2

    @pytest.mark.asyncio
    async def test_driver_without_disc_is_refused(self, async_client, tmp_path):
        """Test the missing disc is reported and the ID upload is removed."""
        response = await submit(async_client, travel_type="driver")

        assert response.status_code == 422
        assert response.json()["code"] == "missing_document"
        assert stored_documents(tmp_path) == []

    @pytest.mark.asyncio
    async def test_pedestrian_with_disc_is_refused(self, async_client, tmp_path):
        response = await submit(
            async_client,
            files={"identity_document": ID_PHOTO, "vehicle_document": DISC_PHOTO},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "unexpected_document"
        assert stored_documents(tmp_path) == []

    @pytest.mark.asyncio
    async def test_pin_request_uses_validated_guest(self, async_client, pin_validator):
        """Test the PIN service's guest details replace the form values."""
        response = await submit(async_client, mode="pin", pin="4821", guest_name="")

        assert response.status_code == 201
        assert response.json()["guest_name"] == "Sipho Dlamini"
        assert response.json()["guest_purpose"] == "Plumbing repair"
        pin_validator.validate.assert_awaited_once_with("4821", "EST-001")

    @pytest.mark.asyncio
    async def test_rejected_pin(self, async_client, pin_validator):
        pin_validator.validate.return_value = PinValidation(valid=False)

        response = await submit(async_client, mode="pin", pin="0000")

        assert response.status_code == 422
        assert response.json()["code"] == "invalid_pin"

    @pytest.mark.asyncio
    async def test_pin_service_down(self, async_client, pin_validator, tmp_path):
        """Test an unreachable PIN service maps to 503."""
        pin_validator.validate.side_effect = DependencyError("PIN service unreachable")

        response = await submit(async_client, mode="pin", pin="4821")

        assert response.status_code == 503
        assert response.json()["code"] == "dependency_unavailable"
        assert stored_documents(tmp_path) == []

    @pytest.mark.asyncio
    async def test_database_failure_discards_uploads(self, async_client, document_storage):
        """Test a failed insert removes every stored document and maps to 503."""
        from gatepass.api.deps import get_document_storage
        from gatepass.main import app

        document_storage.store.side_effect = [
            "identity/2026-03-02/id.bin",
            "vehicle/2026-03-02/disc.bin",
        ]
        app.dependency_overrides[get_document_storage] = lambda: document_storage
        failing_insert = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")))

        with patch.object(VisitRequestRepository, "create", failing_insert):
            response = await submit(
                async_client,
                files={"identity_document": ID_PHOTO, "vehicle_document": DISC_PHOTO},
                travel_type="driver",
            )

        assert response.status_code == 503
        assert response.json()["code"] == "dependency_unavailable"
        deleted = [call.args[0] for call in document_storage.delete.await_args_list]
        assert deleted == ["identity/2026-03-02/id.bin", "vehicle/2026-03-02/disc.bin"]

    @pytest.mark.asyncio
    async def test_unknown_unit(self, async_client):
        response = await submit(async_client, unit_reference="U99")

        assert response.status_code == 404
        assert response.json()["code"] == "unit_not_found"

    @pytest.mark.asyncio
    async def test_invalid_mode_rejected_by_schema(self, async_client):
        response = await submit(async_client, mode="teleport")

        assert response.status_code == 422


class TestDecideVisit:
    """Tests for POST /api/v1/visits/{id}/decision."""

    @pytest.mark.asyncio
    async def test_grant_then_poll(self, async_client, notifier):
        """Test a grant is visible to the polling visitor with a pass."""
        visit_id = (await submit(async_client)).json()["id"]

        pending = await async_client.get(f"/api/v1/visits/{visit_id}/status")
        assert pending.json()["status"] == "pending"
        assert pending.json()["poll_after_seconds"] > 0
        assert pending.json()["credential"] is None

        decision = await async_client.post(
            f"/api/v1/visits/{visit_id}/decision",
            json={"decision": "granted", "resident_reference": "res-thandi"},
        )
        assert decision.status_code == 200
        assert decision.json()["status"] == "granted"

        granted = (await async_client.get(f"/api/v1/visits/{visit_id}/status")).json()
        assert granted["status"] == "granted"
        assert granted["poll_after_seconds"] is None
        assert granted["credential"]["state"] == "issued"
        assert granted["credential"]["token"].count(".") == 2

    @pytest.mark.asyncio
    async def test_wrong_resident(self, async_client):
        visit_id = (await submit(async_client)).json()["id"]

        response = await async_client.post(
            f"/api/v1/visits/{visit_id}/decision",
            json={"decision": "granted", "resident_reference": "res-pieter"},
        )

        assert response.status_code == 403
        assert response.json()["code"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_second_decision_conflicts(self, async_client):
        visit_id = (await submit(async_client)).json()["id"]
        url = f"/api/v1/visits/{visit_id}/decision"

        first = await async_client.post(url, json={"decision": "denied", "resident_reference": "res-thandi"})
        second = await async_client.post(url, json={"decision": "granted", "resident_reference": "res-thandi"})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["code"] == "already_decided"

    @pytest.mark.asyncio
    async def test_unknown_visit(self, async_client):
        decision = await async_client.post(
            "/api/v1/visits/missing/decision",
            json={"decision": "granted", "resident_reference": "res-thandi"},
        )
        status_response = await async_client.get("/api/v1/visits/missing/status")

        assert decision.status_code == 404
        assert status_response.status_code == 404
        assert status_response.json()["code"] == "visit_request_not_found"

    @pytest.mark.asyncio
    async def test_decision_schema(self, async_client):
        response = await async_client.post(
            "/api/v1/visits/anything/decision",
            json={"decision": "maybe", "resident_reference": "res-thandi"},
        )

        assert response.status_code == 422


class TestGate:
    """Tests for the gate scanner endpoints."""

    @pytest.mark.asyncio
    async def test_present_admits_once(self, async_client):
        """Test the first scan admits and the second is refused."""
        visit_id = (await submit(async_client)).json()["id"]
        await async_client.post(
            f"/api/v1/visits/{visit_id}/decision",
            json={"decision": "granted", "resident_reference": "res-thandi"},
        )
        token = (await async_client.get(f"/api/v1/visits/{visit_id}/status")).json()["credential"]["token"]

        first = await async_client.post("/api/v1/gate/present", json={"token": token, "scanner_id": "GATE-1"})
        second = await async_client.post("/api/v1/gate/present", json={"token": token, "scanner_id": "GATE-1"})

        assert first.status_code == 200
        assert first.json()["admitted"] is True
        assert first.json()["guest_name"] == "Lerato Nkosi"
        assert first.json()["unit_reference"] == "U12"
        assert second.status_code == 200
        assert second.json()["admitted"] is False
        assert second.json()["reason"] == "already_used"
        assert second.json()["message"] == "Pass has already been used"

        events = (await async_client.get("/api/v1/gate/events", params={"visit_request_id": visit_id})).json()
        assert events["count"] == 2
        assert [e["admitted"] for e in events["events"]] == [False, True]

    @pytest.mark.asyncio
    async def test_garbage_token(self, async_client):
        response = await async_client.post("/api/v1/gate/present", json={"token": "not-a-pass"})

        assert response.status_code == 200
        assert response.json()["admitted"] is False
        assert response.json()["reason"] == "malformed"
        assert response.json()["message"] == "Pass not recognised"

    @pytest.mark.asyncio
    async def test_events_filter_by_scanner(self, async_client):
        await async_client.post("/api/v1/gate/present", json={"token": "junk", "scanner_id": "GATE-1"})
        await async_client.post("/api/v1/gate/present", json={"token": "junk", "scanner_id": "GATE-2"})

        response = await async_client.get("/api/v1/gate/events", params={"scanner_id": "GATE-2"})

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert response.json()["events"][0]["reason"] == "malformed"


class TestListings:
    """Tests for resident inbox and estate history endpoints."""

    @pytest.mark.asyncio
    async def test_resident_inbox(self, async_client):
        mine = (await submit(async_client)).json()["id"]
        await submit(async_client, unit_reference="U14")

        response = await async_client.get(
            "/api/v1/residents/res-thandi/visits",
            params={"estate_reference": "EST-001"},
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert response.json()["visits"][0]["visit_request_id"] == mine

    @pytest.mark.asyncio
    async def test_inbox_requires_estate(self, async_client):
        response = await async_client.get("/api/v1/residents/res-thandi/visits")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_estate_history(self, async_client):
        denied = (await submit(async_client)).json()["id"]
        await async_client.post(
            f"/api/v1/visits/{denied}/decision",
            json={"decision": "denied", "resident_reference": "res-thandi"},
        )
        await submit(async_client, unit_reference="U14")

        response = await async_client.get("/api/v1/estates/EST-001/visits")

        statuses = {v["visit_request_id"]: v["status"] for v in response.json()["visits"]}
        assert response.json()["count"] == 2
        assert statuses[denied] == "denied"
