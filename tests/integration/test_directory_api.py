"""Integration tests for /api/v1/users and /api/v1/audit endpoints."""

import uuid

import pytest
from sqlalchemy import select

from src.kernel.models.audit_log import AuditAction, AuditLog

USERS = "/api/v1/users"


async def denial_count(api):
    async with api.session_maker() as session:
        result = await session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ACCESS_DENIED))
        return len(result.scalars().all())


@pytest.mark.asyncio
class TestListing:
    """GET /users and lookups."""

    async def test_admin_list_is_scoped_and_paginated(self, api):
        response = await api.client.get(USERS, params={"limit": 2, "sort_by": "email", "sort_order": "ASC"},
                                        headers=api.auth("admin"))

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["meta"] == {"total": 5, "page": 1, "limit": 2, "total_pages": 3}
        assert [u["email"] for u in body["data"]] == ["alice@example.com", "carol@example.com"]

    async def test_page_size_default_and_ceiling(self, api):
        default = await api.client.get(USERS, headers=api.auth("admin"))
        too_big = await api.client.get(USERS, params={"limit": 101}, headers=api.auth("admin"))

        assert default.json()["meta"]["limit"] == 20
        assert too_big.status_code == 422

    async def test_supervisor_search_stays_in_scope(self, api):
        response = await api.client.get(USERS, params={"search": "example.com"}, headers=api.auth("supervisor"))
        assert [u["email"] for u in response.json()["data"]] == ["alice@example.com"]

    async def test_out_of_scope_role_filter_is_empty(self, api):
        response = await api.client.get(USERS, params={"role": "SUPER_ADMIN"}, headers=api.auth("admin"))
        assert response.status_code == 200
        assert response.json()["data"] == []

    async def test_status_filter(self, api):
        response = await api.client.get(USERS, params={"status": "INACTIVE"}, headers=api.auth("admin"))
        assert response.json()["meta"]["total"] == 0

    async def test_agent_is_forbidden_and_denial_is_kept(self, api):
        response = await api.client.get(USERS, headers=api.auth("own_agent"))

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"
        assert await denial_count(api) == 1

    async def test_unauthenticated(self, api):
        response = await api.client.get(USERS)
        assert response.status_code == 401

    async def test_lookup_by_email(self, api):
        response = await api.client.get(f"{USERS}/search", params={"email": "carol@example.com"},
                                        headers=api.auth("admin"))
        assert response.status_code == 200
        assert response.json()["id"] == str(api.people.client.id)

    async def test_get_out_of_scope_is_404(self, api):
        foreign = api.people.foreign_agent.id
        out_of_scope = await api.client.get(f"{USERS}/{foreign}", headers=api.auth("supervisor"))
        missing = await api.client.get(f"{USERS}/{uuid.uuid4()}", headers=api.auth("supervisor"))

        assert out_of_scope.status_code == missing.status_code == 404
        assert out_of_scope.json()["code"] == missing.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
class TestWrites:
    """Create, update, archive and restore over HTTP."""

    async def test_create_returns_redacted_record(self, api):
        response = await api.client.post(
            USERS,
            json={"email": "new@example.com", "password": "Sup3rSecret!", "role": "AGENT"},
            headers=api.auth("admin"),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["status"] == "ACTIVE"
        assert "password" not in body and "password_hash" not in body
        assert api.notifier.templates() == ["welcome"]

    async def test_create_duplicate_is_409(self, api):
        response = await api.client.post(
            USERS,
            json={"email": "alice@example.com", "password": "Sup3rSecret!"},
            headers=api.auth("admin"),
        )
        assert response.status_code == 409

    async def test_create_archived_is_422(self, api):
        response = await api.client.post(
            USERS,
            json={"email": "z@example.com", "password": "Sup3rSecret!", "status": "ARCHIVED"},
            headers=api.auth("admin"),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_FAILED"
        assert body["errors"][0]["field"] == "body.status"

    async def test_update_rejects_unknown_fields(self, api):
        response = await api.client.patch(
            f"{USERS}/{api.people.own_agent.id}",
            json={"password_hash": "x"},
            headers=api.auth("admin"),
        )
        assert response.status_code == 422

    async def test_escalation_is_403(self, api):
        response = await api.client.patch(
            f"{USERS}/{api.people.own_agent.id}",
            json={"role": "ADMIN"},
            headers=api.auth("admin"),
        )
        assert response.status_code == 403
        assert await denial_count(api) == 1

    async def test_archive_then_restore(self, api):
        target = api.people.own_agent.id
        headers = api.auth("admin")

        archived = await api.client.delete(f"{USERS}/{target}", headers=headers)
        assert archived.status_code == 200
        assert archived.json()["status"] == "ARCHIVED"
        assert archived.json()["deleted_at"] is not None

        again = await api.client.delete(f"{USERS}/{target}", headers=headers)
        assert again.status_code == 409

        with_deleted = await api.client.get(f"{USERS}/{target}", params={"include_deleted": "true"}, headers=headers)
        assert with_deleted.status_code == 200

        restored = await api.client.post(f"{USERS}/{target}/restore", headers=headers)
        assert restored.status_code == 200
        assert restored.json()["status"] == "INACTIVE"
        assert restored.json()["deleted_at"] is None

    async def test_reset_password_temp(self, api):
        response = await api.client.post(
            f"{USERS}/{api.people.own_agent.id}/reset-password",
            json={"mode": "temp"},
            headers=api.auth("admin"),
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["mode"] == "temp"
        assert body["temporary_password"]

    async def test_reset_password_defaults_to_link(self, api):
        response = await api.client.post(
            f"{USERS}/{api.people.own_agent.id}/reset-password", headers=api.auth("admin")
        )
        assert response.status_code == 200
        assert response.json()["temporary_password"] is None
        assert api.notifier.templates() == ["password_reset"]

    async def test_verify_email(self, api):
        target = api.people.client.id
        first = await api.client.post(f"{USERS}/{target}/verify-email", headers=api.auth("admin"))
        second = await api.client.post(f"{USERS}/{target}/verify-email", headers=api.auth("admin"))

        assert "verified successfully" in first.json()["message"]
        assert "already verified" in second.json()["message"]


@pytest.mark.asyncio
class TestBatchEndpoints:
    """Batch routes report per-item outcomes with 200."""

    async def test_batch_delete_partial(self, api):
        ids = [str(api.people.own_agent.id), str(uuid.uuid4()), str(api.people.client.id)]
        response = await api.client.post(f"{USERS}/batch/delete", json={"ids": ids}, headers=api.auth("admin"))

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success_count"] == 2
        assert body["error_count"] == 1
        assert body["errors"][0]["key"] == ids[1]
        assert body["errors"][0]["code"] == "NOT_FOUND"

    async def test_batch_deactivate_then_activate(self, api):
        ids = [str(api.people.own_agent.id), str(api.people.foreign_agent.id)]
        headers = api.auth("admin")

        off = await api.client.post(f"{USERS}/batch/deactivate", json={"ids": ids}, headers=headers)
        again = await api.client.post(f"{USERS}/batch/deactivate", json={"ids": ids}, headers=headers)
        on = await api.client.post(f"{USERS}/batch/activate", json={"ids": ids}, headers=headers)

        assert off.json()["success_count"] == 2
        assert again.json()["error_count"] == 2
        assert {e["code"] for e in again.json()["errors"]} == {"CONFLICT"}
        assert on.json()["success_count"] == 2

    async def test_batch_create(self, api):
        response = await api.client.post(
            f"{USERS}/batch",
            json={"users": [
                {"email": "b1@example.com", "password": "Sup3rSecret!"},
                {"email": "alice@example.com", "password": "Sup3rSecret!"},
            ]},
            headers=api.auth("admin"),
        )
        body = response.json()
        assert body["success_count"] == 1
        assert body["errors"][0]["key"] == "alice@example.com"

    async def test_batch_update(self, api):
        response = await api.client.patch(
            f"{USERS}/batch/update",
            json={"updates": [
                {"id": str(api.people.own_agent.id), "data": {"first_name": "Ally"}},
                {"id": str(api.people.admin.id), "data": {"first_name": "Nope"}},
            ]},
            headers=api.auth("admin"),
        )
        body = response.json()
        assert body["success_count"] == 1
        assert body["succeeded"][0]["first_name"] == "Ally"

    async def test_batch_assign_supervisor(self, api):
        response = await api.client.post(
            f"{USERS}/batch/assign-supervisor",
            json={"ids": [str(api.people.foreign_agent.id)], "supervisor_id": str(api.people.supervisor.id)},
            headers=api.auth("admin"),
        )
        assert response.json()["success_count"] == 1

        listing = await api.client.get(USERS, headers=api.auth("supervisor"))
        assert {u["email"] for u in listing.json()["data"]} == {"alice@example.com", "frank@example.com"}

    async def test_batch_verification(self, api):
        ids = [str(api.people.own_agent.id), str(api.people.client.id)]
        sent = await api.client.post(f"{USERS}/batch/send-verification", json={"ids": ids}, headers=api.auth("admin"))
        verified = await api.client.post(f"{USERS}/batch/verify-email", json={"ids": ids}, headers=api.auth("admin"))

        assert sent.json()["success_count"] == 2
        assert verified.json()["success_count"] == 2
        assert api.notifier.templates() == ["verification", "verification"]

    async def test_batch_is_admin_only(self, api):
        response = await api.client.post(
            f"{USERS}/batch/delete",
            json={"ids": [str(api.people.own_agent.id)]},
            headers=api.auth("supervisor"),
        )
        assert response.status_code == 403

    async def test_empty_batch_is_422(self, api):
        response = await api.client.post(f"{USERS}/batch/delete", json={"ids": []}, headers=api.auth("admin"))
        assert response.status_code == 422


@pytest.mark.asyncio
class TestAuditEndpoints:
    """/audit reads."""

    async def test_user_trail(self, api):
        target = api.people.own_agent.id
        await api.client.delete(f"{USERS}/{target}", headers=api.auth("admin"))

        response = await api.client.get(f"/api/v1/audit/user/{target}", headers=api.auth("admin"))
        assert response.status_code == 200
        assert [e["action"] for e in response.json()] == ["ARCHIVE"]

    async def test_recent_requires_super_admin(self, api):
        assert (await api.client.get("/api/v1/audit", headers=api.auth("admin"))).status_code == 403
        response = await api.client.get("/api/v1/audit", headers=api.auth("super_admin"))
        assert response.status_code == 200
        assert response.json()[0]["action"] == "ACCESS_DENIED"

    async def test_actor_trail(self, api):
        await api.client.delete(f"{USERS}/{api.people.client.id}", headers=api.auth("admin"))
        response = await api.client.get(f"/api/v1/audit/actor/{api.people.admin.id}", headers=api.auth("super_admin"))
        assert [e["action"] for e in response.json()] == ["ARCHIVE"]


@pytest.mark.asyncio
async def test_health(api):
    response = await api.client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["database"] == "connected"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_request_id_is_echoed_when_safe(api):
    kept = await api.client.get("/health", headers={"X-Request-ID": "job-42.retry_1"})
    replaced = await api.client.get("/health", headers={"X-Request-ID": "bad id; DROP"})

    assert kept.headers["X-Request-ID"] == "job-42.retry_1"
    assert replaced.headers["X-Request-ID"] != "bad id; DROP"
    assert len(replaced.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_error_body_carries_request_id(api):
    response = await api.client.get(f"{USERS}/{uuid.uuid4()}", headers={**api.auth("admin"), "X-Request-ID": "trace-7"})
    assert response.status_code == 404
    assert response.json()["request_id"] == "trace-7"
