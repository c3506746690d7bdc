"""
Case intake and status endpoint tests.

Extraction is mocked at the router; the service graph runs against in-memory
fakes injected through the get_services dependency override.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.auth import get_current_user
from app.main import app
from app.services.case_intake import check_missing_fields
from app.services.case_normalizer import normalize_case
from app.services.case_store import AUDIT_LOGS
from app.services.runtime import build_services, get_services
from conftest import FakeCaseStore, FakeGateway, make_case_row

FULL_EXTRACTION = {
    "violator_information": {"FIRST": "Jane", "MIDDLE": "Q", "LAST_NAME": "Doe", "PHONE": "512-555-0100"},
    "ticket_header": {"County": "Travis", "CITATION_NUMBER": "TX-1"},
    "violation": {"CITATION": "Speeding"},
    "is_jp": "N",
}

PARTIAL_EXTRACTION = {
    "violator_information": {"FIRST": "Jane", "LAST_NAME": "Doe"},
    "ticket_header": {"County": "Travis"},
    "violation": {"CITATION": "Speeding"},
}


def _image(name="ticket.jpg", content_type="image/jpeg"):
    return ("images", (name, b"\xff\xd8\xff fake image bytes", content_type))


@pytest.fixture()
def services():
    return build_services(FakeCaseStore(), FakeGateway(), retry_base_delay=0)


@pytest.fixture()
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def staff_client(client):
    app.dependency_overrides[get_current_user] = lambda: "staff-1"
    return client


# ===========================================================================
# POST /api/cases/extract
# ===========================================================================

class TestExtract:

    def test_extracts_and_saves_case(self, client, services):
        with patch("app.routers.cases.extract_citation", new=AsyncMock(return_value=(FULL_EXTRACTION, "{...}"))):
            response = client.post(
                "/api/cases/extract",
                files=[_image(), _image("back.png", "image/png")],
                data={"session_id": "sess-1", "email": "jane@example.com", "user_id": "user-1"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["case_id"] == "sess-1"
        assert body["saved"] is True
        assert body["images_processed"] == 2
        assert body["missing_fields"] == []
        assert body["is_complete"] is True

        row = services.store.cases["sess-1"]
        assert row["status"] == "extracted"
        assert row["case_status"] == "approval_pending"
        assert row["payment_status"] == "pending"
        assert row["file_name"] == "ticket.jpg"
        assert row["email"] == "jane@example.com"
        assert len(row["status_history"]) == 1
        assert set(row["client_messages"]) == {
            "approval_pending", "case_approved", "case_in_progress",
            "case_dismissed", "case_appealed", "requires_attention",
        }
        audits = [r["type"] for r in services.store.records_in(AUDIT_LOGS)]
        assert audits == ["ticket_created"]

    def test_reports_missing_fields(self, client):
        with patch("app.routers.cases.extract_citation", new=AsyncMock(return_value=(PARTIAL_EXTRACTION, ""))):
            response = client.post("/api/cases/extract", files=[_image()], data={"session_id": "sess-2"})

        body = response.json()
        assert body["is_complete"] is False
        assert body["missing_fields"] == ["email", "middle_name", "phone_number", "is_jp"]

    def test_rejects_unsupported_image_type(self, client):
        mock_extract = AsyncMock()
        with patch("app.routers.cases.extract_citation", new=mock_extract):
            response = client.post(
                "/api/cases/extract",
                files=[_image("ticket.pdf", "application/pdf")],
                data={"session_id": "sess-3"},
            )

        assert response.status_code == 400
        assert "Unsupported image type" in response.json()["detail"]
        mock_extract.assert_not_called()

    def test_rejects_too_many_images(self, client):
        response = client.post(
            "/api/cases/extract",
            files=[_image(f"p{i}.jpg") for i in range(6)],
            data={"session_id": "sess-4"},
        )
        assert response.status_code == 400

    def test_rejects_completed_session(self, client, services):
        services.store.cases["sess-5"] = make_case_row(status="completed")

        response = client.post("/api/cases/extract", files=[_image()], data={"session_id": "sess-5"})

        assert response.status_code == 400
        assert "already been processed" in response.json()["detail"]

    def test_extraction_failure_returns_500(self, client, services):
        with patch("app.routers.cases.extract_citation", new=AsyncMock(side_effect=RuntimeError("model overloaded"))):
            response = client.post("/api/cases/extract", files=[_image()], data={"session_id": "sess-6"})

        assert response.status_code == 500
        assert "model overloaded" in response.json()["detail"]
        assert "sess-6" not in services.store.cases

    def test_save_failure_is_reported_not_raised(self, client, services):
        services.store.fail_case_writes = True
        with patch("app.routers.cases.extract_citation", new=AsyncMock(return_value=(FULL_EXTRACTION, ""))):
            response = client.post("/api/cases/extract", files=[_image()], data={"session_id": "sess-7"})

        assert response.status_code == 200
        assert response.json()["saved"] is False
        audits = [r["type"] for r in services.store.records_in(AUDIT_LOGS)]
        assert audits == ["ticket_creation_failed"]


# ===========================================================================
# POST /api/cases/extract-from-url
# ===========================================================================

class TestExtractFromUrl:

    def test_extracts_mobile_upload(self, client, services):
        extract = AsyncMock(return_value=(PARTIAL_EXTRACTION, "{...}"))
        with patch("app.routers.cases.extract_citation_from_url", new=extract):
            response = client.post("/api/cases/extract-from-url", json={
                "image_url": "https://cdn.example.com/uploads/ticket.jpg",
                "session_id": "sess-m1",
                "user_id": "user-1",
                "email": "jane@example.com",
            })

        assert response.status_code == 200
        body = response.json()
        assert body["case_id"] == "sess-m1"
        assert body["saved"] is True
        assert body["missing_fields"] == ["middle_name", "phone_number", "is_jp"]
        extract.assert_awaited_once_with("https://cdn.example.com/uploads/ticket.jpg")

        row = services.store.cases["sess-m1"]
        assert row["status"] == "extracted"
        assert row["file_name"] == "mobile_upload"
        assert row["data_source"] == "ai_extraction"

    def test_missing_url_returns_400(self, client):
        response = client.post("/api/cases/extract-from-url", json={"session_id": "sess-m2"})

        assert response.status_code == 400
        assert response.json()["detail"] == "No image URL provided"

    def test_rejects_completed_session(self, client, services):
        services.store.cases["sess-m3"] = make_case_row(status="completed")

        response = client.post("/api/cases/extract-from-url", json={
            "image_url": "https://cdn.example.com/t.jpg",
            "session_id": "sess-m3",
        })

        assert response.status_code == 400
        assert "already been processed" in response.json()["detail"]

    def test_download_failure_returns_500(self, client, services):
        extract = AsyncMock(side_effect=ValueError("Unsupported image type: text/html"))
        with patch("app.routers.cases.extract_citation_from_url", new=extract):
            response = client.post("/api/cases/extract-from-url", json={
                "image_url": "https://cdn.example.com/not-an-image",
                "session_id": "sess-m4",
            })

        assert response.status_code == 500
        assert "Unsupported image type" in response.json()["detail"]
        assert "sess-m4" not in services.store.cases


# ===========================================================================
# POST /api/cases/manual-form and POST /api/cases/no-ticket-form
# ===========================================================================

MANUAL_FORM = {
    "email": "jane@example.com",
    "firstname": "Jane",
    "middlename": "Q",
    "lastname": "Doe",
    "mobileno": "512-555-0100",
    "citationnumber": "TX-77",
    "citation": "Speeding 45/30",
    "issue-datetime": "01/05/2026 10:14",
    "county": "Travis",
    "is_jp": "N",
    "carYear": "2019",
}

NO_TICKET_FORM = {
    "email": "sam@example.com",
    "first_name": "Sam",
    "last_name": "Lee",
    "infraction_violation": "Ran a red light",
    "phone_number": "5125550199",
    "county": "Hays",
    "is_jp": "N",
}


class TestManualForm:

    def test_saves_completed_case(self, client, services):
        response = client.post("/api/cases/manual-form", json=MANUAL_FORM)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "completed"

        row = services.store.cases[body["case_id"]]
        assert row["status"] == "completed"
        assert row["data_source"] == "manual_form"
        assert row["email"] == "jane@example.com"
        assert row["case_status"] == "approval_pending"
        data = row["extracted_data"]
        assert data["first_name"] == "Jane"
        assert data["phone_number"] == "512-555-0100"
        assert data["infraction_violation"] == "Speeding 45/30"
        assert data["issue_date_time"] == "01/05/2026 10:14"
        assert data["vehicle_year"] == "2019"
        assert data["manually_entered"] is True

    def test_saved_case_reads_back_as_manual_form(self, client, services):
        case_id = client.post("/api/cases/manual-form", json=MANUAL_FORM).json()["case_id"]

        case = normalize_case(case_id, services.store.cases[case_id])

        assert case.citation.schema_version == "manual_form"
        assert case.citation.first_name == "Jane"
        assert case.citation.violation == "Speeding 45/30"
        assert check_missing_fields(case.citation, case.email) == []

    def test_each_submission_gets_its_own_case(self, client, services):
        first = client.post("/api/cases/manual-form", json=MANUAL_FORM).json()["case_id"]
        second = client.post("/api/cases/manual-form", json=MANUAL_FORM).json()["case_id"]

        assert first != second
        assert len(services.store.cases) == 2

    def test_email_required(self, client, services):
        response = client.post("/api/cases/manual-form", json={**MANUAL_FORM, "email": " "})

        assert response.status_code == 400
        assert response.json()["detail"] == "Email is required"
        assert services.store.cases == {}

    def test_save_failure_returns_500(self, client, services):
        services.store.fail_case_writes = True

        response = client.post("/api/cases/manual-form", json=MANUAL_FORM)

        assert response.status_code == 500
        audits = [r["type"] for r in services.store.records_in(AUDIT_LOGS)]
        assert audits == ["ticket_creation_failed"]


class TestNoTicketForm:

    def test_saves_completed_case(self, client, services):
        response = client.post("/api/cases/no-ticket-form", json={**NO_TICKET_FORM, "precinct_number": "2"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["case_status"] == "approval_pending"

        row = services.store.cases[body["case_id"]]
        assert row["data_source"] == "no_ticket_form"
        assert row["status"] == "completed"
        assert row["email"] == "sam@example.com"
        data = row["extracted_data"]
        assert data["has_physical_ticket"] is False
        assert data["middle_name"] == ""
        assert "precinct_number" not in data

    def test_missing_required_fields_listed(self, client, services):
        form = {**NO_TICKET_FORM, "county": "", "phone_number": None}
        del form["email"]

        response = client.post("/api/cases/no-ticket-form", json=form)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Missing required fields"
        assert detail["missing_fields"] == ["email", "phone_number", "county"]
        assert services.store.cases == {}

    def test_jp_court_requires_precinct(self, client, services):
        response = client.post("/api/cases/no-ticket-form", json={**NO_TICKET_FORM, "is_jp": "Y"})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Precinct number required for JP cases"
        assert detail["missing_fields"] == ["precinct_number"]

    def test_jp_precinct_is_stored(self, client, services):
        response = client.post(
            "/api/cases/no-ticket-form",
            json={**NO_TICKET_FORM, "is_jp": "Y", "precinct_number": "4"},
        )

        row = services.store.cases[response.json()["case_id"]]
        assert row["extracted_data"]["precinct_number"] == "4"


# ===========================================================================
# GET /api/cases/{id}/check and POST /api/cases/{id}/missing-fields
# ===========================================================================

class TestMissingFields:

    def test_check_unknown_case(self, client):
        response = client.get("/api/cases/nope/check")
        assert response.status_code == 200
        assert response.json()["exists"] is False

    def test_check_lists_missing_fields(self, client, services):
        services.store.cases["c1"] = make_case_row()

        body = client.get("/api/cases/c1/check").json()

        assert body["exists"] is True
        assert body["status"] == "completed"
        assert body["missing_fields"] == ["middle_name", "phone_number", "is_jp"]
        assert body["is_complete"] is False

    def test_submit_completes_case(self, client, services):
        services.store.cases["c2"] = make_case_row(status="extracted", email=None)

        response = client.post("/api/cases/c2/missing-fields", json={"fields": {
            "email": " jane@example.com ",
            "middle_name": "Q",
            "phone_number": "5125550100",
            "is_jp": "Y",
        }})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["missing_fields"] == ["precinct_number"]

        row = services.store.cases["c2"]
        assert row["status"] == "completed"
        assert row["email"] == "jane@example.com"
        assert row["extracted_data"]["email"] == "jane@example.com"
        assert row["extracted_data"]["middle_name"] == "Q"

    def test_submit_to_completed_case_rejected(self, client, services):
        services.store.cases["c3"] = make_case_row(status="completed")

        response = client.post("/api/cases/c3/missing-fields", json={"fields": {"county": "Hays"}})

        assert response.status_code == 400

    def test_submit_to_unknown_case_returns_404(self, client):
        response = client.post("/api/cases/nope/missing-fields", json={"fields": {"county": "Hays"}})
        assert response.status_code == 404

    def test_submit_empty_fields_rejected(self, client):
        response = client.post("/api/cases/c4/missing-fields", json={"fields": {}})
        assert response.status_code == 400


# ===========================================================================
# POST /api/cases/{id}/status
# ===========================================================================

class TestStatusUpdate:

    def test_requires_auth(self, client):
        response = client.post("/api/cases/c1/status", json={"status": "case_approved"})
        assert response.status_code == 401

    def test_updates_status_and_history(self, staff_client, services):
        services.store.cases["c1"] = make_case_row(case_status="approval_pending")

        response = staff_client.post("/api/cases/c1/status", json={"status": "case_approved", "note": "Looks good"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "case_id": "c1", "case_status": "case_approved", "history_length": 2,
        }
        row = services.store.cases["c1"]
        assert row["case_status"] == "case_approved"
        assert row["status_history"][-1]["status"] == "case_approved"
        assert row["status_history"][-1]["updated_by"] == "staff-1"
        assert row["status_history"][-1]["note"] == "Looks good"

        audit = services.store.records_in(AUDIT_LOGS)[-1]
        assert audit["type"] == "status_updated"
        assert audit["metadata"]["old_status"] == "approval_pending"

    def test_same_status_returns_409(self, staff_client, services):
        services.store.cases["c1"] = make_case_row(case_status="case_approved")

        response = staff_client.post("/api/cases/c1/status", json={"status": "case_approved"})

        assert response.status_code == 409

    def test_unknown_status_rejected(self, staff_client, services):
        services.store.cases["c1"] = make_case_row()

        response = staff_client.post("/api/cases/c1/status", json={"status": "bogus_status"})

        assert response.status_code == 422

    def test_unknown_case_returns_404(self, staff_client):
        response = staff_client.post("/api/cases/nope/status", json={"status": "case_approved"})
        assert response.status_code == 404
