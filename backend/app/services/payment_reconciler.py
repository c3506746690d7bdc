"""
Payment reconciler.

Maps verified payment-provider events onto case rows and sends the
payment-specific email/SMS.

  checkout.session.completed              pending -> paid
  checkout.session.async_payment_failed   pending -> failed
  payment_intent.payment_failed           pending -> failed
  checkout.session.expired                pending -> failed

Success advances case_status to the submitted-for-review status and appends
a status_history entry. Failure resolves a contact email from the row, the
extracted data or the provider's billing email (first non-empty wins),
stores it on the row when the row had none, and always raises a
payment_failed admin alert.

Event signatures are checked before events reach this module. Events whose
case reference is missing or unknown are logged and dropped. A failed write
while marking a case paid is reported back as unhandled.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from app.models.case import Case, PaymentStatus, StatusHistoryEntry, SUBMITTED_FOR_REVIEW, utc_now
from app.models.payment import FAILURE_EVENT_TYPES, PaymentEvent, PaymentEventType, PaymentObject
from app.services.case_normalizer import normalize_case
from app.services.phone import format_for_sms
from app.services.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, send_with_retry
from app.services.sanitize import is_valid_email, mask_email, sanitize_case_data
from app.services.templates import build_payment_params, render_payment_message

logger = logging.getLogger(__name__)

_FAILURE_REASONS = {
    PaymentEventType.ASYNC_PAYMENT_FAILED.value: "Asynchronous payment failed",
    PaymentEventType.PAYMENT_INTENT_FAILED.value: "Payment intent failed",
    PaymentEventType.CHECKOUT_EXPIRED.value: "Checkout session expired",
}


def resolve_contact_email(case: Case, payment: PaymentObject) -> Optional[str]:
    """Root email, then extracted-data email, then the provider's billing email."""
    for candidate in (case.email, case.citation.email, payment.billing_email):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def _stored_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def failure_reason(event: PaymentEvent) -> str:
    error = event.data.object.last_payment_error
    if error is not None and error.message:
        return error.message
    return _FAILURE_REASONS.get(event.type, "Unknown error")


class PaymentReconciler:
    """Applies payment events to cases and sends payment notifications."""

    def __init__(
        self,
        store,
        gateway,
        alerts,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
    ):
        self.store = store
        self.gateway = gateway
        self.alerts = alerts
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    async def handle_event(self, event: PaymentEvent) -> dict:
        """
        Route an event to its handler.

        Returns a small summary dict: {"handled": bool, "case_id": ..., ...}.
        """
        if event.type == PaymentEventType.CHECKOUT_COMPLETED.value:
            return await self.handle_payment_succeeded(event)
        if event.type in FAILURE_EVENT_TYPES:
            return await self.handle_payment_failed(event)
        logger.info("Ignoring payment event type %s", event.type)
        return {"handled": False, "reason": "unhandled_event_type"}

    async def _load_case(self, event: PaymentEvent) -> Tuple[Optional[Case], Dict[str, Any]]:
        """Return the normalized case and its stored row, or (None, {}) when unroutable."""
        case_id = event.data.object.case_reference
        if not case_id:
            logger.error("Payment event %s (%s) has no case reference; dropping", event.id, event.type)
            return None, {}
        raw = await self.store.get_case(case_id)
        if raw is None:
            logger.error("Payment event %s references unknown case %s; dropping", event.id, case_id)
            return None, {}
        return normalize_case(case_id, raw), raw

    # ------------------------------------------------------------------
    # Success
    # ------------------------------------------------------------------

    async def handle_payment_succeeded(self, event: PaymentEvent) -> dict:
        case, _ = await self._load_case(event)
        if case is None:
            return {"handled": False, "reason": "case_not_found"}

        payment = event.data.object
        entry = StatusHistoryEntry(
            status=SUBMITTED_FOR_REVIEW.value,
            note="Payment received; case submitted for review",
            updated_by="payment_webhook",
        )
        history = [h.model_dump() for h in case.status_history] + [entry.model_dump()]
        fields = {
            "payment_status": PaymentStatus.PAID.value,
            "case_status": SUBMITTED_FOR_REVIEW.value,
            "status_history": history,
            "paid_at": utc_now(),
            "last_updated": utc_now(),
        }
        if payment.payment_intent_id:
            fields["payment_intent_id"] = payment.payment_intent_id
        if payment.amount_dollars is not None:
            fields["payment_amount"] = payment.amount_dollars
        if payment.id:
            fields["checkout_session_id"] = payment.id

        try:
            await self.store.update_case(case.case_id, fields)
        except Exception as e:
            logger.error("Failed to mark case %s as paid: %s", case.case_id, e)
            return {"handled": False, "case_id": case.case_id, "reason": "case_update_failed", "error": str(e)}
        logger.info("Case %s marked paid", case.case_id)

        case = case.model_copy(update={
            "payment_status": PaymentStatus.PAID.value,
            "case_status": SUBMITTED_FOR_REVIEW.value,
            "payment_intent_id": payment.payment_intent_id or case.payment_intent_id,
            "payment_amount": payment.amount_dollars if payment.amount_dollars is not None else case.payment_amount,
        })

        email = resolve_contact_email(case, payment)
        sent = await self._notify(case, email, "payment_paid")
        return {"handled": True, "case_id": case.case_id, "payment_status": "paid", "email_sent": sent}

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    async def handle_payment_failed(self, event: PaymentEvent) -> dict:
        case, raw = await self._load_case(event)
        if case is None:
            return {"handled": False, "reason": "case_not_found"}

        payment = event.data.object
        reason = failure_reason(event)
        email = resolve_contact_email(case, payment)

        fields = {
            "payment_status": PaymentStatus.FAILED.value,
            "payment_failure_reason": reason,
            "last_updated": utc_now(),
        }
        # Case.email already falls back to the nested email, so check the stored columns
        if email and not _stored_text(raw.get("email")):
            fields["email"] = email
            logger.info("Stored recovered email %s on case %s", mask_email(email), case.case_id)
        if email and case.extracted_data and not _stored_text(case.extracted_data.get("email")):
            fields["extracted_data"] = {**case.extracted_data, "email": email}

        try:
            await self.store.update_case(case.case_id, fields)
        except Exception as e:
            logger.error("Failed to mark case %s as payment failed: %s", case.case_id, e)

        case = case.model_copy(update={"payment_status": PaymentStatus.FAILED.value, "email": email})

        sent = await self._notify(case, email, "payment_failed", alert_on_failure=False)

        alert = await self.alerts.create_payment_failed_alert(
            case,
            reason=reason,
            event_type=event.type,
            payment_intent_id=payment.payment_intent_id,
        )
        return {
            "handled": True,
            "case_id": case.case_id,
            "payment_status": "failed",
            "email_sent": sent,
            "alert_id": alert.get("alert_id"),
        }

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _notify(self, case: Case, email: Optional[str], kind: str, alert_on_failure: bool = True) -> bool:
        """Send the payment email (and SMS when eligible); returns whether the email went out."""
        params = sanitize_case_data(build_payment_params(case))
        message = render_payment_message(kind, params)
        sent = False

        if not is_valid_email(email):
            logger.warning("No valid email for case %s; skipping %s email", case.case_id, kind)
        else:
            async def _send_email() -> dict:
                return await self.gateway.send_email(
                    to=email,
                    subject=message.subject,
                    html_content=message.html_body,
                    to_name=case.first_name or None,
                    tags=["payment", kind],
                )

            try:
                result = await send_with_retry(
                    _send_email,
                    max_attempts=self.max_attempts,
                    base_delay=self.retry_base_delay,
                    description=f"{kind} email to {mask_email(email)}",
                )
                sent = True
                await self._record_send(case.case_id, kind, "email", True, message_id=result.get("message_id"))
            except Exception as e:
                logger.error("%s email failed for case %s: %s", kind, case.case_id, e)
                await self._record_send(case.case_id, kind, "email", False, error=str(e))
                if alert_on_failure:
                    await self.alerts.create_payment_notification_alert(
                        case, e, kind, retry_count=self.max_attempts
                    )

        if case.sms_opt_in and case.phone:
            await self._send_sms(case, kind, message.sms_body)

        return sent

    async def _send_sms(self, case: Case, kind: str, content: str) -> None:
        recipient = format_for_sms(case.phone)
        if not recipient:
            return

        async def _send() -> dict:
            return await self.gateway.send_sms(recipient=recipient, content=content, tag="payment_notification")

        try:
            result = await send_with_retry(
                _send,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                description=f"{kind} SMS for {case.case_id}",
            )
        except Exception as e:
            logger.error("%s SMS failed for case %s: %s", kind, case.case_id, e)
            await self._record_send(case.case_id, kind, "sms", False, error=str(e))
            return

        if result.get("disabled"):
            await self._record_send(case.case_id, kind, "sms", False, error="disabled")
        else:
            await self._record_send(case.case_id, kind, "sms", True, message_id=result.get("message_id"))

    async def _record_send(
        self,
        case_id: str,
        kind: str,
        channel: str,
        success: bool,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Append a send outcome to the case's notification_log."""
        entry = {
            "type": kind,
            "channel": channel,
            "success": success,
            "message_id": message_id,
            "error": error,
            "timestamp": utc_now(),
        }
        try:
            raw = await self.store.get_case(case_id) or {}
            log = list(normalize_case(case_id, raw).notification_log)
            log.append(entry)
            await self.store.update_case(case_id, {"notification_log": log})
        except Exception as e:
            logger.error("Failed to record %s %s outcome for case %s: %s", kind, channel, case_id, e)
