"""
Brevo transactional email and SMS gateway.

Every call returns a result dict instead of raising for provider-side
problems:

  {"success": True,  "message_id": "...", "data": {...}}
  {"success": False, "error": "..."}
  {"success": False, "error": "...", "disabled": True}   # SMS switched off

Environment variables
---------------------
BREVO_API_KEY        API key (required for any send).
BREVO_SENDER_EMAIL   From address for email.
BREVO_SENDER_NAME    From name (default: "Ticket Guys").
BREVO_SMS_ENABLED    "true" to enable SMS sending (default: off).
BREVO_SMS_SENDER     Alphanumeric SMS sender (default: "TicketGuys").
"""

import logging
import os
from typing import Optional

import httpx

from app.services.sanitize import mask_email

logger = logging.getLogger(__name__)

BREVO_BASE_URL = "https://api.brevo.com/v3"
DEFAULT_TAGS = ["ticket-guys"]
REQUEST_TIMEOUT = 15.0


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


class BrevoGateway:
    """Sends transactional email and SMS through the Brevo HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = None,
        sms_enabled: Optional[bool] = None,
        sms_sender: Optional[str] = None,
        base_url: str = BREVO_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("BREVO_API_KEY")
        self.sender_email = sender_email or os.getenv("BREVO_SENDER_EMAIL")
        self.sender_name = sender_name or os.getenv("BREVO_SENDER_NAME", "Ticket Guys")
        self.sms_enabled = sms_enabled if sms_enabled is not None else _env_flag("BREVO_SMS_ENABLED")
        self.sms_sender = sms_sender or os.getenv("BREVO_SMS_SENDER", "TicketGuys")
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "accept": "application/json",
            "api-key": self.api_key or "",
            "content-type": "application/json",
        }

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT) as client:
            return await client.post(f"{self.base_url}{path}", json=payload, headers=self._headers())

    async def send_email(
        self,
        to: str,
        subject: str,
        html_content: str,
        params: Optional[dict] = None,
        tags: Optional[list] = None,
        to_name: Optional[str] = None,
    ) -> dict:
        """Send a transactional email."""
        if not self.api_key:
            logger.error("Brevo API key missing; cannot send email")
            return {"success": False, "error": "Brevo API key not configured"}

        if not to or not subject or not html_content:
            logger.error("Brevo email missing required fields")
            return {"success": False, "error": "Missing required fields"}

        recipient = {"email": to}
        if to_name:
            recipient["name"] = to_name

        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [recipient],
            "subject": subject,
            "htmlContent": html_content,
            "tags": DEFAULT_TAGS + list(tags or []),
        }
        # Brevo rejects an empty params object
        if params:
            payload["params"] = params

        try:
            logger.info("Sending email to %s", mask_email(to))
            response = await self._post("/smtp/email", payload)
            result = response.json() if response.content else {}
        except httpx.HTTPError as e:
            logger.error("Brevo email network error: %s", e)
            return {"success": False, "error": f"Network error: {e}"}
        except ValueError as e:
            logger.error("Brevo email returned invalid JSON: %s", e)
            return {"success": False, "error": "Invalid response from Brevo"}

        if response.is_success:
            logger.info("Email sent, message id %s", result.get("messageId"))
            return {"success": True, "data": result, "message_id": result.get("messageId")}

        logger.error("Brevo email failed (%s): %s", response.status_code, result)
        return {
            "success": False,
            "error": result.get("message") or f"HTTP {response.status_code}",
            "details": result,
        }

    async def send_sms(
        self,
        recipient: str,
        content: str,
        sender: Optional[str] = None,
        web_url: Optional[str] = None,
        tag: str = "case_notification",
    ) -> dict:
        """Send a transactional SMS. A no-op result while SMS is disabled."""
        if not self.sms_enabled:
            logger.info("SMS disabled; set BREVO_SMS_ENABLED=true to enable")
            return {"success": False, "error": "SMS service not enabled", "disabled": True}

        if not self.api_key:
            logger.error("Brevo API key missing; cannot send SMS")
            return {"success": False, "error": "Brevo API key not configured"}

        if not recipient or not content:
            logger.error("Brevo SMS missing recipient or content")
            return {"success": False, "error": "Missing recipient or content"}

        formatted = recipient if recipient.startswith("+") else f"+1{recipient}"
        payload = {
            "recipient": formatted,
            "content": content,
            "sender": sender or self.sms_sender,
            "type": "transactional",
            "tag": tag,
        }
        if web_url:
            payload["webUrl"] = web_url

        try:
            response = await self._post("/transactionalSMS/sms", payload)
            result = response.json() if response.content else {}
        except httpx.HTTPError as e:
            logger.error("Brevo SMS network error: %s", e)
            return {"success": False, "error": f"SMS network error: {e}"}
        except ValueError as e:
            logger.error("Brevo SMS returned invalid JSON: %s", e)
            return {"success": False, "error": "Invalid response from Brevo"}

        if response.is_success:
            logger.info("SMS sent, message id %s", result.get("messageId"))
            return {"success": True, "data": result, "message_id": result.get("messageId")}

        logger.error("Brevo SMS failed (%s): %s", response.status_code, result)
        return {
            "success": False,
            "error": result.get("message") or "SMS send failed",
            "details": result,
        }
