"""
Status-change notifier.

``StatusNotifier.notify(status, case, case_id)`` delivers the client message
for a case status change:

  1. validate status and recipient email
  2. derive the status note from client_messages
  3. sanitise the data used for interpolation
  4. render the template (unknown status fails before anything is sent)
  5. send the email with retry
  6. send the SMS when the client opted in and has a phone number
  7. schedule a review request 24h after a dismissal
  8. record a notification-log entry with the masked address

Steps 1-4 are fatal for the call. Exhausting step 5 raises
NotificationDeliveryError. Failures in steps 6-8 are logged only.
"""

import logging
from datetime import timedelta
from typing import Optional

from app.models.case import Case, CaseStatus, VALID_STATUSES, utc_now
from app.models.notifications import NotificationLogEntry, RenderedMessage, ScheduledReviewEmail
from app.services.case_store import NOTIFICATION_LOGS, SCHEDULED_REVIEW_EMAILS
from app.services.phone import format_for_sms
from app.services.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, send_with_retry
from app.services.sanitize import is_valid_email, mask_email, sanitize_case_data, status_note
from app.services.templates import TemplateNotFoundError, build_status_params, render_status_message

logger = logging.getLogger(__name__)

REVIEW_REQUEST_DELAY = timedelta(hours=24)


class NotificationValidationError(ValueError):
    """The status change cannot produce a notification (bad status, email or template)."""


class NotificationDeliveryError(Exception):
    """Every delivery attempt for a notification failed."""

    def __init__(self, case_id: str, channel: str, last_error: BaseException | str, attempts: int):
        self.case_id = case_id
        self.channel = channel
        self.last_error = str(last_error)
        self.attempts = attempts
        super().__init__(
            f"{channel} delivery failed for case {case_id} after {attempts} attempts: {self.last_error}"
        )


def validate_notification(status: Optional[str], email: Optional[str]) -> None:
    """Raise NotificationValidationError unless status and email are usable."""
    if not status or status not in VALID_STATUSES:
        raise NotificationValidationError(f"Invalid status: {status}")
    if not email:
        raise NotificationValidationError("Email required")
    if not is_valid_email(email):
        raise NotificationValidationError("Invalid email format")


class StatusNotifier:
    """Sends status-change email/SMS for a case and records what was sent."""

    def __init__(
        self,
        store,
        gateway,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
    ):
        self.store = store
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    async def notify(self, status: str, case: Case, case_id: str) -> None:
        validate_notification(status, case.email)

        note = status_note(case.client_messages, status)
        params = sanitize_case_data(build_status_params(case, case_id, note))
        try:
            message = render_status_message(status, params)
        except TemplateNotFoundError as e:
            raise NotificationValidationError(str(e)) from e

        await self._send_email(case, case_id, message)
        logger.info("Email sent for %s -> %s", case_id, status)

        if case.sms_opt_in and case.phone:
            await self._send_sms(case, case_id, status, message)

        if status == CaseStatus.CASE_DISMISSED.value:
            await self._schedule_review_request(case, case_id)

        await self._log_notification("email_sent", case_id, status, case.email)

    async def _send_email(self, case: Case, case_id: str, message: RenderedMessage) -> dict:
        async def _send() -> dict:
            return await self.gateway.send_email(
                to=case.email,
                subject=message.subject,
                html_content=message.html_body,
                to_name=case.first_name or "Customer",
                tags=["case-status"],
            )

        try:
            return await send_with_retry(
                _send,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                description=f"Status email to {mask_email(case.email)}",
            )
        except Exception as e:
            raise NotificationDeliveryError(case_id, "email", e, self.max_attempts) from e

    async def _send_sms(self, case: Case, case_id: str, status: str, message: RenderedMessage) -> None:
        recipient = format_for_sms(case.phone)
        if not recipient or not message.sms_body:
            return

        async def _send() -> dict:
            return await self.gateway.send_sms(recipient=recipient, content=message.sms_body)

        try:
            result = await send_with_retry(
                _send,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                description=f"Status SMS for {case_id}",
            )
        except Exception as e:
            logger.error("SMS failed for %s: %s", case_id, e)
            return

        if result.get("disabled"):
            logger.info("SMS skipped for %s: SMS disabled", case_id)
            await self._log_notification("sms_skipped", case_id, status, case.email, outcome="disabled")

    async def _schedule_review_request(self, case: Case, case_id: str) -> None:
        record = ScheduledReviewEmail(
            case_id=case_id,
            email=case.email,
            first_name=case.first_name,
            scheduled_for=utc_now() + REVIEW_REQUEST_DELAY,
        )
        try:
            await self.store.add_record(SCHEDULED_REVIEW_EMAILS, record.model_dump())
            logger.info("Review request scheduled for %s", case_id)
        except Exception as e:
            logger.error("Failed to schedule review request for %s: %s", case_id, e)

    async def _log_notification(
        self,
        entry_type: str,
        case_id: str,
        status: str,
        email: Optional[str],
        outcome: str = "sent",
    ) -> None:
        entry = NotificationLogEntry(
            type=entry_type,
            case_id=case_id,
            status=status,
            masked_email=mask_email(email),
            outcome=outcome,
        )
        try:
            await self.store.add_record(NOTIFICATION_LOGS, entry.model_dump())
        except Exception as e:
            logger.error("Failed to write notification log for %s: %s", case_id, e)
