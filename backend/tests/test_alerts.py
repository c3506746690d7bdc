"""
Unit tests for AlertService.
"""

import re

import pytest

from app.services.alerts import AlertService, new_alert_id
from app.services.case_normalizer import normalize_case
from app.services.case_store import ADMIN_ALERTS, AUDIT_LOGS
from conftest import FakeCaseStore, make_case_row


def test_alert_id_format():
    assert re.fullmatch(r"alert_\d{13}_[0-9a-f]{8}", new_alert_id())
    assert new_alert_id() != new_alert_id()


class TestCreateAlerts:

    @pytest.mark.asyncio
    async def test_notification_failure_alert(self):
        store = FakeCaseStore()
        case = normalize_case("c1", make_case_row(case_status="case_approved", payment_amount=149))

        result = await AlertService(store).create_notification_failure_alert(
            "c1", "HTTP 503", case=case, retry_count=3,
        )

        assert result["success"] is True
        alert = store.records_in(ADMIN_ALERTS)[0]
        assert alert["id"] == result["alert_id"]
        assert alert["type"] == "status_notification_failed"
        assert alert["status"] == "open"
        assert alert["priority"] == "high"
        assert alert["client_info"]["first_name"] == "Jane"
        assert alert["client_info"]["phone"] == "Not provided"
        assert alert["case_info"]["citation_number"] == "TX-1001"
        assert alert["case_info"]["amount"] == 149.0
        assert alert["error_details"]["reason"] == "HTTP 503"
        assert alert["error_details"]["retry_count"] == 3
        assert isinstance(alert["created_at"], str)

    @pytest.mark.asyncio
    async def test_alert_without_case_details(self):
        store = FakeCaseStore()

        await AlertService(store).create_notification_failure_alert("c1", RuntimeError("boom"))

        alert = store.records_in(ADMIN_ALERTS)[0]
        assert alert["client_info"] == {}
        assert alert["case_info"] == {"case_id": "c1"}
        assert alert["error_details"]["reason"] == "boom"

    @pytest.mark.asyncio
    async def test_payment_failed_alert_carries_event(self):
        store = FakeCaseStore()
        case = normalize_case("c1", make_case_row())

        await AlertService(store).create_payment_failed_alert(
            case, reason="Card declined", event_type="payment_intent.payment_failed", payment_intent_id="pi_1",
        )

        alert = store.records_in(ADMIN_ALERTS)[0]
        assert alert["type"] == "payment_failed"
        assert alert["case_info"]["event_type"] == "payment_intent.payment_failed"
        assert alert["case_info"]["payment_intent_id"] == "pi_1"

    @pytest.mark.asyncio
    async def test_creation_writes_audit_entry(self):
        store = FakeCaseStore()

        result = await AlertService(store).create_notification_failure_alert("c1", "HTTP 500")

        audit = store.records_in(AUDIT_LOGS)[0]
        assert audit["type"] == "status_notification_failed_alert"
        assert audit["metadata"]["alert_id"] == result["alert_id"]

    @pytest.mark.asyncio
    async def test_store_failure_returns_error_result(self):
        store = FakeCaseStore()
        store.failing_collections = {ADMIN_ALERTS}

        result = await AlertService(store).create_notification_failure_alert("c1", "HTTP 500")

        assert result == {"success": False, "error": "admin_alerts unavailable"}
        assert store.records_in(AUDIT_LOGS) == []


class TestMaintainAlerts:

    @pytest.mark.asyncio
    async def test_update_sets_timestamps(self):
        store = FakeCaseStore()
        service = AlertService(store)
        alert_id = (await service.create_notification_failure_alert("c1", "x"))["alert_id"]

        assert (await service.update_alert(alert_id, {"status": "resolved"}))["success"] is True

        alert = store.records_in(ADMIN_ALERTS)[0]
        assert alert["status"] == "resolved"
        assert alert["resolved_at"] is not None

    @pytest.mark.asyncio
    async def test_add_note_to_missing_alert(self):
        result = await AlertService(FakeCaseStore()).add_alert_note("alert_missing", "hello")
        assert result == {"success": False, "error": "Alert not found"}

    @pytest.mark.asyncio
    async def test_audit_failure_is_swallowed(self):
        store = FakeCaseStore()
        store.failing_collections = {AUDIT_LOGS}

        await AlertService(store).log_audit("ticket_created", "c1")

        assert store.records_in(AUDIT_LOGS) == []
