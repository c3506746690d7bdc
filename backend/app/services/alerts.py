"""
Admin alert service.

Creates operator-facing records in admin_alerts when automated handling
cannot finish: notification delivery exhaustion, payment failures, and
payment-notification failures. Alert writes never raise; callers get a
result dict:

  {"success": True, "alert_id": "...", "data": {...}}
  {"success": False, "error": "..."}
"""

import logging
import secrets
import time
from typing import Any, Optional

from app.models.case import Case, utc_now
from app.models.notifications import AdminAlert, AlertNote, AlertType
from app.services.case_store import ADMIN_ALERTS, AUDIT_LOGS
from app.services.sanitize import mask_email

logger = logging.getLogger(__name__)


def new_alert_id() -> str:
    """alert_<epoch ms>_<random suffix>"""
    return f"alert_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _client_info(case: Optional[Case]) -> dict:
    if case is None:
        return {}
    return {
        "email": case.email,
        "first_name": case.citation.first_name or "Unknown",
        "last_name": case.citation.last_name or "Unknown",
        "phone": case.phone or "Not provided",
    }


def _case_info(case: Optional[Case], case_id: Optional[str]) -> dict:
    info: dict = {"case_id": case_id}
    if case is not None:
        info.update({
            "case_status": case.case_status,
            "payment_status": case.payment_status,
            "citation_number": case.citation.citation_number or "N/A",
            "county": case.citation.county or "N/A",
            "amount": case.payment_amount,
            "payment_intent_id": case.payment_intent_id or "N/A",
        })
    return info


class AlertService:
    """Writes and maintains admin alerts through the case store."""

    def __init__(self, store):
        self.store = store

    async def _create(
        self,
        alert_type: AlertType,
        case_id: Optional[str],
        reason: str,
        case: Optional[Case] = None,
        extra_case_info: Optional[dict] = None,
        retry_count: int = 0,
    ) -> dict:
        alert = AdminAlert(
            id=new_alert_id(),
            type=alert_type,
            case_id=case_id,
            client_info=_client_info(case),
            case_info={**_case_info(case, case_id), **(extra_case_info or {})},
            error_details={
                "reason": reason,
                "timestamp": utc_now(),
                "retry_count": retry_count,
            },
        )
        data = alert.model_dump(mode="json")
        try:
            await self.store.add_record(ADMIN_ALERTS, data)
        except Exception as e:
            logger.error("Failed to create %s alert for case %s: %s", alert_type.value, case_id, e)
            return {"success": False, "error": str(e)}

        logger.warning(
            "Admin alert %s created (%s) for case %s, client %s",
            alert.id, alert_type.value, case_id, mask_email(case.email if case else None),
        )
        await self.log_audit(f"{alert_type.value}_alert", case_id, {"alert_id": alert.id, "reason": reason})
        return {"success": True, "alert_id": alert.id, "data": data}

    async def create_notification_failure_alert(
        self,
        case_id: str,
        error: BaseException | str,
        case: Optional[Case] = None,
        retry_count: int = 0,
    ) -> dict:
        """Alert for a status-change notification that could not be delivered."""
        return await self._create(
            AlertType.STATUS_NOTIFICATION_FAILED,
            case_id,
            str(error),
            case=case,
            retry_count=retry_count,
        )

    async def create_payment_failed_alert(
        self,
        case: Case,
        reason: str = "Unknown error",
        event_type: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ) -> dict:
        """Alert for a failed or abandoned payment. Always raised on payment failure."""
        return await self._create(
            AlertType.PAYMENT_FAILED,
            case.case_id,
            reason,
            case=case,
            extra_case_info={
                "event_type": event_type,
                "payment_intent_id": payment_intent_id or case.payment_intent_id or "N/A",
            },
        )

    async def create_payment_notification_alert(
        self,
        case: Case,
        error: BaseException | str,
        kind: str,
        retry_count: int = 0,
    ) -> dict:
        """Alert for a payment email that exhausted its retries."""
        return await self._create(
            AlertType.PAYMENT_NOTIFICATION_FAILED,
            case.case_id,
            str(error),
            case=case,
            extra_case_info={"notification": kind},
            retry_count=retry_count,
        )

    async def update_alert(self, alert_id: str, updates: dict) -> dict:
        """Apply admin updates (status, assignee, ...) to an alert."""
        fields = dict(updates)
        fields["updated_at"] = utc_now()
        if fields.get("status") == "resolved" and "resolved_at" not in fields:
            fields["resolved_at"] = utc_now()
        try:
            await self.store.update_record(ADMIN_ALERTS, alert_id, fields)
        except Exception as e:
            logger.error("Failed to update alert %s: %s", alert_id, e)
            return {"success": False, "error": str(e)}
        logger.info("Alert %s updated", alert_id)
        return {"success": True}

    async def add_alert_note(self, alert_id: str, note: str, author: str = "system") -> dict:
        """Append a note to an alert's notes list."""
        try:
            alert = await self.store.get_record(ADMIN_ALERTS, alert_id)
            if alert is None:
                return {"success": False, "error": "Alert not found"}
            notes = list(alert.get("notes") or [])
            notes.append(AlertNote(note=note, author=author).model_dump(mode="json"))
            await self.store.update_record(
                ADMIN_ALERTS, alert_id, {"notes": notes, "updated_at": utc_now()}
            )
        except Exception as e:
            logger.error("Failed to add note to alert %s: %s", alert_id, e)
            return {"success": False, "error": str(e)}
        logger.info("Note added to alert %s", alert_id)
        return {"success": True}

    async def log_audit(self, action: str, case_id: Optional[str], metadata: Optional[dict[str, Any]] = None) -> None:
        """Record an audit entry; failures are logged and swallowed."""
        try:
            await self.store.add_record(AUDIT_LOGS, {
                "type": action,
                "case_id": case_id,
                "metadata": metadata or {},
                "timestamp": utc_now(),
                "source": "alert_service",
            })
        except Exception as e:
            logger.error("Audit log failed for %s: %s", action, e)
