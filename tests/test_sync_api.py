import json
import uuid
from datetime import timedelta

import pytest

from ehrsync.config import settings
from ehrsync.core.security import create_access_token
from ehrsync.models import Encounter

from conftest import NINE_AM, auth_headers

QUEUE_URL = "/api/v1/sync/queue"


def encounter_update(encounter_id, **body):
    return {
        "id": "u1",
        "resource_type": "encounter",
        "method": "PUT",
        "body": {"encounter_id": str(encounter_id), **body},
        "local_updated_at": NINE_AM.isoformat(),
    }


@pytest.fixture
def stale_encounter(db, encounter):
    encounter.chief_complaint = "Server edit"
    encounter.updated_at = NINE_AM + timedelta(minutes=5)
    return encounter


async def post_conflict(client, db, encounter, user):
    await db.commit()
    resp = await client.post(
        QUEUE_URL,
        json={"items": [encounter_update(encounter.id, chief_complaint="Client edit")]},
        headers=auth_headers(user),
    )
    assert resp.status_code == 200
    return resp.json()["data"]["results"][0]["conflict_id"]


class TestAuth:
    @pytest.mark.asyncio
    async def test_queue_requires_token(self, client):
        resp = await client.post(QUEUE_URL, json={"items": []})
        assert resp.status_code == 401
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "HTTP_401"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_garbage_token_is_rejected(self, client):
        resp = await client.get(
            "/api/v1/sync/status", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, client, provider):
        token = create_access_token(provider.id, expires_delta=timedelta(seconds=-5))
        resp = await client.get(
            "/api/v1/sync/status", headers={"Authorization": f"Bearer {token}"}
        )
        assert resp.status_code == 401
        assert "expired" in resp.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_review_only_role_cannot_sync(self, client, privacy_officer):
        resp = await client.post(
            QUEUE_URL, json={"items": []}, headers=auth_headers(privacy_officer)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_cookie_authenticates(self, client, provider):
        token = create_access_token(provider.id)
        resp = await client.get(
            "/api/v1/sync/status",
            headers={"Cookie": f"{settings.AUTH_COOKIE_NAME}={token}"},
        )
        assert resp.status_code == 200


class TestQueue:
    @pytest.mark.asyncio
    async def test_mixed_batch(self, client, provider, patient):
        encounter_id = uuid.uuid4()
        resp = await client.post(
            QUEUE_URL,
            json={
                "device_id": "tablet-7",
                "items": [
                    {
                        "id": 1,
                        "resource_type": "encounter",
                        "method": "POST",
                        "body": {
                            "encounter_id": str(encounter_id),
                            "patient_id": str(patient.id),
                            "encounter_type": "clinic",
                            "occurred_on": "2026-10-19T08:00:00Z",
                        },
                    },
                    {"id": 2, "resource_type": "invoice", "body": {}},
                ],
            },
            headers=auth_headers(provider),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert (data["total"], data["applied"], data["conflicts"], data["errors"]) == (2, 1, 0, 1)

        created, rejected = data["results"]
        assert created == {
            "id": "1",
            "success": True,
            "resource_id": str(encounter_id),
            "action": "created",
        }
        assert rejected["id"] == "2"
        assert rejected["success"] is False
        assert rejected["error_code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_conflict_outcome_shape(self, client, db, provider, stale_encounter):
        await db.commit()
        resp = await client.post(
            QUEUE_URL,
            json={"items": [encounter_update(stale_encounter.id, chief_complaint="Client edit")]},
            headers={**auth_headers(provider), "X-Device-ID": "tablet-9"},
        )

        outcome = resp.json()["data"]["results"][0]
        assert outcome["conflict"] is True
        assert outcome["success"] is False
        assert outcome["server_version"]["chief_complaint"] == "Server edit"
        assert outcome["client_version"]["chief_complaint"] == "Client edit"
        assert "error" not in outcome

        detail = await client.get(
            f"/api/v1/sync/conflicts/{outcome['conflict_id']}", headers=auth_headers(provider)
        )
        assert detail.json()["data"]["device_id"] == "tablet-9"

    @pytest.mark.asyncio
    async def test_device_id_falls_back_to_token_claim(self, client, db, provider, stale_encounter):
        await db.commit()
        token = create_access_token(provider.id, device_id="tablet-3")
        resp = await client.post(
            QUEUE_URL,
            json={"items": [encounter_update(stale_encounter.id)]},
            headers={"Authorization": f"Bearer {token}"},
        )

        conflict_id = resp.json()["data"]["results"][0]["conflict_id"]
        detail = await client.get(
            f"/api/v1/sync/conflicts/{conflict_id}", headers=auth_headers(provider)
        )
        assert detail.json()["data"]["device_id"] == "tablet-3"

    @pytest.mark.asyncio
    async def test_oversized_batch_is_rejected(self, client, provider):
        items = [{"resource_type": "encounter"}] * (settings.SYNC_MAX_BATCH_SIZE + 1)
        resp = await client.post(QUEUE_URL, json={"items": items}, headers=auth_headers(provider))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_non_object_items_fail_alone(self, client, session_factory, provider, patient):
        encounter_id = uuid.uuid4()
        good = {
            "id": "g1",
            "resource_type": "encounter",
            "body": {
                "encounter_id": str(encounter_id),
                "patient_id": str(patient.id),
                "encounter_type": "clinic",
                "occurred_on": "2026-10-19T08:00:00Z",
            },
        }
        resp = await client.post(
            QUEUE_URL, json={"items": [good, None, "junk"]}, headers=auth_headers(provider)
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert (data["total"], data["applied"], data["errors"]) == (3, 1, 2)
        assert data["results"][0]["action"] == "created"
        assert [r["error_code"] for r in data["results"][1:]] == ["VALIDATION_ERROR"] * 2
        async with session_factory() as session:
            assert await session.get(Encounter, encounter_id) is not None

    @pytest.mark.asyncio
    async def test_request_type_key_is_accepted(self, client, provider):
        patient_id = uuid.uuid4()
        item = {
            "id": "1",
            "request_type": "patient",
            "method": "POST",
            "body": json.dumps(
                {
                    "patient_id": str(patient_id),
                    "legal_first_name": "Ana",
                    "legal_last_name": "Silva",
                    "dob": "1988-04-12",
                    "sex_assigned_at_birth": "F",
                }
            ),
        }
        resp = await client.post(QUEUE_URL, json={"items": [item]}, headers=auth_headers(provider))

        assert resp.json()["data"]["results"][0] == {
            "id": "1",
            "success": True,
            "resource_id": str(patient_id),
            "action": "created",
        }


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_then_resolve_again(self, client, db, session_factory, provider, stale_encounter):
        conflict_id = await post_conflict(client, db, stale_encounter, provider)

        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": conflict_id, "resolution": "use_client"},
            headers=auth_headers(provider),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Conflict resolved successfully"
        assert body["data"]["status"] == "resolved"
        assert body["data"]["resolution"] == "use_client"

        async with session_factory() as session:
            stored = await session.get(Encounter, stale_encounter.id)
        assert stored.chief_complaint == "Client edit"

        again = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": conflict_id, "resolution": "use_server"},
            headers=auth_headers(provider),
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "CONFLICT_ALREADY_RESOLVED"

    @pytest.mark.asyncio
    async def test_merge_returns_501(self, client, db, provider, stale_encounter):
        conflict_id = await post_conflict(client, db, stale_encounter, provider)

        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": conflict_id, "resolution": "merge"},
            headers=auth_headers(provider),
        )
        assert resp.status_code == 501
        assert resp.json()["error"]["code"] == "RESOLUTION_NOT_SUPPORTED"

    @pytest.mark.asyncio
    async def test_unknown_resolution_is_422(self, client, provider):
        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": str(uuid.uuid4()), "resolution": "coin_flip"},
            headers=auth_headers(provider),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_conflict_is_404(self, client, provider):
        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": str(uuid.uuid4()), "resolution": "use_server"},
            headers=auth_headers(provider),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "CONFLICT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_other_users_conflict_is_hidden(self, client, db, provider, technician, stale_encounter):
        conflict_id = await post_conflict(client, db, stale_encounter, provider)

        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": conflict_id, "resolution": "use_server"},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 404

        resp = await client.get(
            f"/api/v1/sync/conflicts/{conflict_id}", headers=auth_headers(technician)
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_reviewer_can_resolve_others_conflicts(self, client, db, provider, manager, stale_encounter):
        conflict_id = await post_conflict(client, db, stale_encounter, provider)

        resp = await client.post(
            "/api/v1/sync/resolve-conflict",
            json={"conflict_id": conflict_id, "resolution": "use_server"},
            headers=auth_headers(manager),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["resolved_by"] == str(manager.id)


class TestBeacon:
    @pytest.mark.asyncio
    async def test_beacon_with_cookie(self, client, session_factory, provider, patient):
        encounter_id = uuid.uuid4()
        payload = [
            {
                "resource_type": "encounter",
                "body": {
                    "encounter_id": str(encounter_id),
                    "patient_id": str(patient.id),
                    "encounter_type": "ems",
                    "occurred_on": "2026-10-19T08:00:00Z",
                },
            }
        ]
        token = create_access_token(provider.id)
        resp = await client.post(
            "/api/v1/sync/beacon",
            content=json.dumps(payload),
            headers={
                "Content-Type": "text/plain",
                "Cookie": f"{settings.AUTH_COOKIE_NAME}={token}",
            },
        )

        assert resp.status_code == 204
        assert resp.content == b""
        async with session_factory() as session:
            assert await session.get(Encounter, encounter_id) is not None

    @pytest.mark.asyncio
    async def test_unreadable_beacon_still_204(self, client, provider):
        resp = await client.post(
            "/api/v1/sync/beacon",
            content=b"{not json",
            headers={**auth_headers(provider), "Content-Type": "text/plain"},
        )
        assert resp.status_code == 204

    @pytest.mark.asyncio
    async def test_beacon_requires_auth(self, client):
        resp = await client.post("/api/v1/sync/beacon", content=b"[]")
        assert resp.status_code == 401


class TestStatusAndListing:
    @pytest.mark.asyncio
    async def test_status(self, client, db, provider, stale_encounter):
        resp = await client.get("/api/v1/sync/status", headers=auth_headers(provider))
        data = resp.json()["data"]
        assert data["user_id"] == str(provider.id)
        assert data["pending_conflict_count"] == 0
        assert data["last_sync_timestamp"] is None

        await post_conflict(client, db, stale_encounter, provider)

        data = (await client.get("/api/v1/sync/status", headers=auth_headers(provider))).json()["data"]
        assert data["pending_conflict_count"] == 1
        assert data["last_sync_timestamp"] is not None

    @pytest.mark.asyncio
    async def test_listing_scopes(self, client, db, provider, technician, manager, stale_encounter):
        await post_conflict(client, db, stale_encounter, provider)
        await post_conflict(client, db, stale_encounter, technician)

        own = (await client.get("/api/v1/sync/conflicts", headers=auth_headers(provider))).json()
        assert own["meta"]["total"] == 1
        assert own["data"][0]["detected_by"] == str(provider.id)

        # all_users is ignored for non-reviewers
        own = (
            await client.get(
                "/api/v1/sync/conflicts?all_users=true", headers=auth_headers(technician)
            )
        ).json()
        assert own["meta"]["total"] == 1

        everyone = (
            await client.get(
                "/api/v1/sync/conflicts?all_users=true&status=pending&resource_type=encounter",
                headers=auth_headers(manager),
            )
        ).json()
        assert everyone["meta"]["total"] == 2
        assert everyone["meta"]["total_pages"] == 1

        resolved = (
            await client.get(
                "/api/v1/sync/conflicts?all_users=true&status=resolved",
                headers=auth_headers(manager),
            )
        ).json()
        assert resolved["data"] == []
