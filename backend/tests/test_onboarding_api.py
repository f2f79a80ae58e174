"""Tests for the onboarding and analytics endpoints."""

import pytest
from httpx import AsyncClient

from medstint.middleware.exceptions import CollaboratorError
from medstint.onboarding.types import EventKind
from conftest import STUDENT_STEPS, auth_headers_for


async def start_session(client: AsyncClient, headers: dict) -> str:
    response = await client.post("/onboarding/session", headers=headers)
    assert response.status_code == 200
    return response.json()["session_id"]


async def submit(client: AsyncClient, headers: dict, session_id: str, step, data: dict, **extra):
    return await client.post(
        f"/onboarding/session/{session_id}/step",
        headers=headers,
        json={"step": step.value if hasattr(step, "value") else step, "data": data, **extra},
    )


@pytest.mark.api
@pytest.mark.asyncio
class TestSessionEndpoints:
    async def test_start_session(self, client: AsyncClient, auth_headers):
        """A first call creates a session at the welcome step."""
        response = await client.post("/onboarding/session", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["current_step"] == "welcome"
        assert data["status"] == "active"
        assert data["progress"] == 0
        assert data["resumed"] is False

    async def test_second_start_resumes(self, client: AsyncClient, auth_headers):
        first = await start_session(client, auth_headers)
        response = await client.post("/onboarding/session", headers=auth_headers, json={"restart": False})
        assert response.json()["session_id"] == first
        assert response.json()["resumed"] is True

    async def test_restart(self, client: AsyncClient, auth_headers):
        first = await start_session(client, auth_headers)
        response = await client.post("/onboarding/session", headers=auth_headers, json={"restart": True})
        assert response.json()["session_id"] != first

    async def test_requires_token(self, client: AsyncClient):
        response = await client.post("/onboarding/session")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    async def test_rejects_bad_token(self, client: AsyncClient):
        response = await client.post(
            "/onboarding/session", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_get_session(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await client.get(f"/onboarding/session/{sid}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["session_id"] == sid

    async def test_other_principal_gets_404(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await client.get(
            f"/onboarding/session/{sid}", headers=auth_headers_for("student-2")
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_pause(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await client.post(f"/onboarding/session/{sid}/pause", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "paused"

    async def test_preset_claims_in_session(self, client: AsyncClient):
        headers = auth_headers_for("pre-1", role="clinical-preceptor", school_id="school-1")
        response = await client.post("/onboarding/session", headers=headers)
        assert response.json()["selected_role"] == "clinical-preceptor"


@pytest.mark.api
@pytest.mark.asyncio
class TestStepEndpoints:
    async def test_student_onboarding_end_to_end(self, client: AsyncClient, auth_headers, recorder):
        """Walk every student step; the last one finalizes."""
        sid = await start_session(client, auth_headers)

        for step, data in STUDENT_STEPS:
            response = await submit(client, auth_headers, sid, step, data)
            assert response.status_code == 200, response.text
            assert response.json()["ok"] is True

        body = response.json()
        assert body["next_step"] == "complete"
        assert body["status"] == "completed"
        assert body["progress"] == 100
        assert len(recorder.plans) == 1

        response = await client.post(f"/onboarding/session/{sid}/complete", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["redirect_to"] == "/dashboard/student"
        assert len(recorder.plans) == 1

    async def test_invalid_step_data_returns_field_errors(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        for step, data in STUDENT_STEPS[:3]:
            await submit(client, auth_headers, sid, step, data)

        response = await submit(client, auth_headers, sid, "contact-info", {"email": "not-an-email"})

        assert response.status_code == 422
        body = response.json()
        assert body["ok"] is False
        assert body["field_errors"] == {"email": "Please enter a valid email address"}
        assert "contact-info" not in body["completed_steps"]

        session = (await client.get(f"/onboarding/session/{sid}", headers=auth_headers)).json()
        assert session["current_step"] == "contact-info"

    async def test_missing_names_all_reported(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        for step, data in STUDENT_STEPS[:2]:
            await submit(client, auth_headers, sid, step, data)

        response = await submit(client, auth_headers, sid, "basic-info", {})

        assert response.status_code == 422
        assert response.json()["field_errors"] == {
            "first_name": "First name is required",
            "last_name": "Last name is required",
        }

    async def test_out_of_order_step_conflict(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await submit(client, auth_headers, sid, "school-selection", {"school_id": "school-1"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DEPENDENCY_VIOLATION"

    async def test_unknown_step_rejected(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await submit(client, auth_headers, sid, "payment", {})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_version_conflict(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await submit(client, auth_headers, sid, "welcome", {}, expected_version=5)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "VERSION_CONFLICT"

    async def test_expired_session_returns_410(self, client: AsyncClient, auth_headers, clock):
        sid = await start_session(client, auth_headers)
        clock.advance(hours=25)

        response = await submit(client, auth_headers, sid, "welcome", {})

        assert response.status_code == 410
        error = response.json()["error"]
        assert error["code"] == "SESSION_EXPIRED"
        assert error["details"]["expired_session_id"] == sid
        assert error["details"]["session_id"] != sid
        assert error["details"]["current_step"] == "welcome"

    async def test_skip_required_step_conflict(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await client.post(
            f"/onboarding/session/{sid}/skip", headers=auth_headers, json={"step": "welcome"}
        )
        assert response.status_code == 409

    async def test_complete_too_early(self, client: AsyncClient, auth_headers):
        sid = await start_session(client, auth_headers)
        response = await client.post(f"/onboarding/session/{sid}/complete", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["error"]["details"]["missing_steps"] == ["welcome", "role-selection"]

    async def test_completion_failure_then_retry(self, client: AsyncClient, auth_headers, seats):
        sid = await start_session(client, auth_headers)
        seats.fail_with = CollaboratorError("No school-paid seats are available", collaborator="seat_assigner")
        for step, data in STUDENT_STEPS:
            response = await submit(client, auth_headers, sid, step, data)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "COMPLETION_FAILED"

        seats.fail_with = None
        response = await client.post(f"/onboarding/session/{sid}/complete", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"


@pytest.mark.api
@pytest.mark.asyncio
class TestAnalyticsEndpoints:
    async def test_track_event(self, client: AsyncClient, auth_headers, sink):
        response = await client.post(
            "/analytics/track",
            headers=auth_headers,
            json={"event_kind": "step_started", "step": "basic-info", "duration_ms": 1200},
        )
        assert response.status_code == 200
        assert response.json() == {"accepted": True}
        assert sink.events[-1].event_kind is EventKind.STEP_STARTED
        assert sink.events[-1].principal_id == "student-1"

    async def test_malformed_event_still_accepted(self, client: AsyncClient, auth_headers, sink):
        response = await client.post(
            "/analytics/track", headers=auth_headers, json={"event_kind": "clicked"}
        )
        assert response.status_code == 200
        assert response.json() == {"accepted": True}
        assert sink.events == []

    async def test_funnel_requires_platform_admin(self, client: AsyncClient, auth_headers):
        response = await client.get("/analytics/onboarding/funnel", headers=auth_headers)
        assert response.status_code == 403

    async def test_funnel(self, client: AsyncClient, auth_headers, admin_headers):
        await start_session(client, auth_headers)
        response = await client.get("/analytics/onboarding/funnel", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_sessions"] == 1
        assert data["by_status"] == {"active": 1}


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_ready_without_external_backends(self, client: AsyncClient):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "skipped"
