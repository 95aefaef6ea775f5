"""Report store endpoint tests."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from draftflow.services.reports import expire_drafts

from conftest import ATTENDANCE, BASIC_INFO, ENROLMENT, FINANCE, RESOURCES, STAFFING

OWNER = "teacher-1"


async def _create(client: AsyncClient, owner_key: str = OWNER, **extra) -> str:
    resp = await client.post(
        "/api/reports/",
        json={"owner_key": owner_key, "basic_info": BASIC_INFO, **extra},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["report_key"]


async def _confirm(client: AsyncClient, key: str, index: int, data: dict):
    return await client.put(
        f"/api/reports/{key}/sections/{index}",
        params={"complete": "true"},
        json={"data": data},
    )


@pytest.mark.api
@pytest.mark.asyncio
class TestReportLifecycle:
    """Create, find, finalize."""

    async def test_no_report_yet(self, client: AsyncClient):
        resp = await client.get("/api/reports/existing", params={"owner_key": OWNER})
        assert resp.status_code == 200
        assert resp.json()["status"] == "none"
        assert resp.json()["report_key"] is None

    async def test_create_confirms_basic_info(self, client: AsyncClient):
        key = await _create(client)

        resp = await client.get("/api/reports/existing", params={"owner_key": OWNER})
        body = resp.json()
        assert body["status"] == "in_progress"
        assert body["report_key"] == key
        assert body["completed_sections"] == [0]
        assert "0" in body["section_saved_at"]

    async def test_create_requires_basic_info(self, client: AsyncClient):
        resp = await client.post(
            "/api/reports/",
            json={"owner_key": OWNER, "basic_info": {"school_name": "Hillview"}},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "SECTION_INVALID"
        assert {e["field"] for e in error["details"]["errors"]} == {"school_level", "school_grade"}

    async def test_one_live_draft_per_owner(self, client: AsyncClient):
        await _create(client)
        resp = await client.post(
            "/api/reports/", json={"owner_key": OWNER, "basic_info": BASIC_INFO}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"

        # Other owners are unaffected
        await _create(client, owner_key="teacher-2")

    async def test_finalize_full_report(self, client: AsyncClient):
        key = await _create(client)
        for index, data in enumerate([ENROLMENT, ATTENDANCE, STAFFING, FINANCE, RESOURCES], start=1):
            resp = await _confirm(client, key, index, data)
            assert resp.status_code == 200, resp.text

        resp = await client.post(f"/api/reports/{key}/finalize")
        assert resp.status_code == 200
        assert resp.json()["status"] == "submitted"

        resp = await client.get("/api/reports/existing", params={"owner_key": OWNER})
        assert resp.json()["status"] == "submitted"

        again = await client.post(f"/api/reports/{key}/finalize")
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_SUBMITTED"

    async def test_finalize_incomplete_report(self, client: AsyncClient):
        key = await _create(client)
        await _confirm(client, key, 1, ENROLMENT)

        resp = await client.post(f"/api/reports/{key}/finalize")
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "DRAFT_INCOMPLETE"
        assert error["details"]["missing_sections"] == [2, 3, 4, 5]

    async def test_unknown_report(self, client: AsyncClient):
        resp = await client.post("/api/reports/nope/finalize")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


@pytest.mark.api
@pytest.mark.asyncio
class TestSectionEndpoints:
    async def test_draft_save_never_completes_a_section(self, client: AsyncClient):
        key = await _create(client)
        resp = await client.put(
            f"/api/reports/{key}/sections/1",
            json={"data": {"total_students": 10, "boys": 4}},
        )
        assert resp.status_code == 200
        assert resp.json()["completed_sections"] == [0]

        loaded = await client.get(f"/api/reports/{key}/sections/1")
        assert loaded.status_code == 200
        assert loaded.json()["data"] == {"total_students": 10, "boys": 4}
        assert loaded.json()["confirmed"] is False

    async def test_draft_save_accepts_inconsistent_values(self, client: AsyncClient):
        """Partial work is kept even when it would not pass confirmation."""
        key = await _create(client)
        resp = await client.put(
            f"/api/reports/{key}/sections/1",
            json={"data": {"total_students": 10, "boys": 4, "girls": 3}},
        )
        assert resp.status_code == 200

    async def test_confirm_validates_section(self, client: AsyncClient):
        key = await _create(client)
        resp = await _confirm(client, key, 1, {"total_students": 10, "boys": 4, "girls": 3})
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["section_index"] == 1

    async def test_confirm_replaces_draft_data(self, client: AsyncClient):
        key = await _create(client)
        await client.put(f"/api/reports/{key}/sections/1", json={"data": {"boys": 1}})
        resp = await _confirm(client, key, 1, ENROLMENT)
        assert resp.json()["completed_sections"] == [0, 1]

        loaded = await client.get(f"/api/reports/{key}/sections/1")
        assert loaded.json()["data"] == ENROLMENT
        assert loaded.json()["confirmed"] is True

    async def test_newer_draft_wins_over_confirmed_data(self, client: AsyncClient):
        key = await _create(client)
        await _confirm(client, key, 1, ENROLMENT)
        await client.put(f"/api/reports/{key}/sections/1", json={"data": {"total_students": 11}})

        loaded = await client.get(f"/api/reports/{key}/sections/1")
        assert loaded.json()["data"] == {"total_students": 11}

        progress = await client.get(f"/api/reports/{key}")
        assert progress.json()["completed_sections"] == [0, 1]

    async def test_missing_section_is_404(self, client: AsyncClient):
        key = await _create(client)
        assert (await client.get(f"/api/reports/{key}/sections/3")).status_code == 404
        assert (await client.get(f"/api/reports/{key}/sections/9")).status_code == 404

    async def test_saving_into_submitted_report_conflicts(self, client: AsyncClient):
        key = await _create(client)
        for index, data in enumerate([ENROLMENT, ATTENDANCE, STAFFING, FINANCE, RESOURCES], start=1):
            await _confirm(client, key, index, data)
        await client.post(f"/api/reports/{key}/finalize")

        resp = await client.put(f"/api/reports/{key}/sections/2", json={"data": ATTENDANCE})
        assert resp.status_code == 409

    async def test_malformed_body(self, client: AsyncClient):
        key = await _create(client)
        resp = await client.put(f"/api/reports/{key}/sections/1", json={"values": {}})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.api
@pytest.mark.asyncio
class TestDraftExpiry:
    async def test_expired_draft_is_ignored(self, client: AsyncClient, session_factory):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        key = await _create(client, submission_deadline=past.isoformat())

        async with session_factory() as db:
            summary = await expire_drafts(db)
            await db.commit()
        assert summary.expired == 1

        resp = await client.get("/api/reports/existing", params={"owner_key": OWNER})
        assert resp.json()["status"] == "none"

        resp = await client.put(f"/api/reports/{key}/sections/1", json={"data": ENROLMENT})
        assert resp.status_code == 409

        # A fresh draft can be started
        await _create(client)

    async def test_drafts_before_deadline_survive(self, client: AsyncClient):
        future = datetime.now(timezone.utc) + timedelta(days=7)
        await _create(client, submission_deadline=future.isoformat())
        await _create(client, owner_key="teacher-2")

        resp = await client.post("/api/reports/expire")
        assert resp.status_code == 200
        assert resp.json()["expired"] == 0


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_ready_checks_database(self, client: AsyncClient):
        resp = await client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"]["database"] == "ok"
