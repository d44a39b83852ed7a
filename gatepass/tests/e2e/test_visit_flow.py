"""
End-to-end visit flows over HTTP.

Walks a visitor, a resident and a gate operator through complete
scenarios with only the PIN service and notification channel mocked.
"""

import pytest

from gatepass.domain.models import NotificationKind

ID_PHOTO = ("id.jpg", b"\xff\xd8\xff\xe0 identity photo", "image/jpeg")
DISC_PHOTO = ("disc.jpg", b"\xff\xd8\xff\xe0 licence disc", "image/jpeg")


class TestVisitFlow:
    """Full visitor to gate flows."""

    @pytest.mark.asyncio
    async def test_driver_granted_and_admitted_once(self, async_client, relay, notifier, tmp_path):
        """Test submit, inbox, grant, poll, admit and the refused replay."""
        submitted = await async_client.post(
            "/api/v1/visits",
            data={
                "mode": "qr",
                "travel_type": "driver",
                "estate_reference": "EST-001",
                "unit_reference": "U12",
                "guest_name": "Lerato Nkosi",
                "guest_contact": "+27821234567",
                "guest_purpose": "Visiting family",
            },
            files={"identity_document": ID_PHOTO, "vehicle_document": DISC_PHOTO},
        )
        assert submitted.status_code == 201
        visit_id = submitted.json()["id"]

        inbox = await async_client.get(
            "/api/v1/residents/res-thandi/visits",
            params={"estate_reference": "EST-001"},
        )
        assert [v["visit_request_id"] for v in inbox.json()["visits"]] == [visit_id]

        decided = await async_client.post(
            f"/api/v1/visits/{visit_id}/decision",
            json={"decision": "granted", "resident_reference": "res-thandi"},
        )
        assert decided.status_code == 200

        # Documents are gone once the request is decided
        assert list((tmp_path / "documents").rglob("*.bin")) == []

        snapshot = (await async_client.get(f"/api/v1/visits/{visit_id}/status")).json()
        assert snapshot["status"] == "granted"
        token = snapshot["credential"]["token"]

        admitted = await async_client.post(
            "/api/v1/gate/present",
            json={"token": token, "scanner_id": "GATE-NORTH-1"},
        )
        replay = await async_client.post(
            "/api/v1/gate/present",
            json={"token": token, "scanner_id": "GATE-SOUTH-1"},
        )
        assert admitted.json()["admitted"] is True
        assert admitted.json()["message"] == "Admit Lerato Nkosi to unit U12"
        assert replay.json()["reason"] == "already_used"

        after = (await async_client.get(f"/api/v1/visits/{visit_id}/status")).json()
        assert after["credential"]["consumed"] is True
        assert after["credential"]["state"] == "consumed"

        empty_inbox = await async_client.get(
            "/api/v1/residents/res-thandi/visits",
            params={"estate_reference": "EST-001"},
        )
        assert empty_inbox.json()["count"] == 0

        await relay.drain()
        kinds = [call.args[1] for call in notifier.notify.await_args_list]
        targets = [call.args[0] for call in notifier.notify.await_args_list]
        assert kinds == [NotificationKind.NEW_REQUEST, NotificationKind.DECISION]
        assert targets == ["res-thandi", "+27821234567"]

    @pytest.mark.asyncio
    async def test_pin_visitor_denied(self, async_client, relay, notifier):
        """Test a PIN visitor learns of a denial and has no pass."""
        submitted = await async_client.post(
            "/api/v1/visits",
            data={
                "mode": "pin",
                "travel_type": "pedestrian",
                "estate_reference": "EST-001",
                "unit_reference": "U14",
                "guest_contact": "+27829876543",
                "pin": "4821",
            },
            files={"identity_document": ID_PHOTO},
        )
        assert submitted.status_code == 201
        visit_id = submitted.json()["id"]

        await async_client.post(
            f"/api/v1/visits/{visit_id}/decision",
            json={"decision": "denied", "resident_reference": "res-pieter"},
        )

        snapshot = (await async_client.get(f"/api/v1/visits/{visit_id}/status")).json()
        assert snapshot["status"] == "denied"
        assert snapshot["credential"] is None
        assert snapshot["resident_name"] == "Pieter van Wyk"

        await relay.drain()
        decision_call = notifier.notify.await_args_list[-1]
        assert decision_call.args[1] == NotificationKind.DECISION
        assert decision_call.args[2]["status"] == "denied"
        assert "token" not in decision_call.args[2]
