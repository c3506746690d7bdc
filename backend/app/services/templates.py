"""
Email and SMS templates for client notifications.

Templates use ``{{name}}`` placeholders and are rendered locally by
``render_text``; unknown placeholders render as empty strings. Rendering is a
pure function of the template and its params.

Public API:
  get_status_template(status) -> dict
  build_status_params(case, case_id, note) -> dict
  render_status_message(status, params) -> RenderedMessage
  build_payment_params(case) -> dict
  render_payment_message(kind, params) -> RenderedMessage

Environment variables
---------------------
PORTAL_BASE_URL           Base URL for case tracking links.
PAYMENT_UPDATE_BASE_URL   Base URL for payment update links.
FRONTEND_URL              Fallback for both of the above.
SUPPORT_PHONE             Support phone shown in messages.
BUSINESS_HOURS            Support hours shown in messages.
"""

import os
import re
from typing import Any, Mapping

from app.models.case import Case, CaseStatus
from app.models.notifications import RenderedMessage

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_BASE_URL = "https://your-portal.com"


class TemplateNotFoundError(ValueError):
    """No template is registered under the requested key."""


# ---------------------------------------------------------------------------
# Environment-derived values
# ---------------------------------------------------------------------------

def portal_url(case_id: str) -> str:
    base = os.getenv("PORTAL_BASE_URL") or os.getenv("FRONTEND_URL") or DEFAULT_BASE_URL
    return f"{base.rstrip('/')}/case/{case_id}"


def payment_update_url(case_id: str) -> str:
    base = os.getenv("PAYMENT_UPDATE_BASE_URL") or os.getenv("FRONTEND_URL") or DEFAULT_BASE_URL
    return f"{base.rstrip('/')}/payment/{case_id}"


def support_phone() -> str:
    return os.getenv("SUPPORT_PHONE", "(555) 123-4567")


def business_hours() -> str:
    return os.getenv("BUSINESS_HOURS", "Mon-Fri 9am-6pm CT")


def render_text(template: str, params: Mapping[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders from params."""
    def _replace(match: re.Match) -> str:
        value = params.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


# ---------------------------------------------------------------------------
# Status-change templates
# ---------------------------------------------------------------------------

STATUS_TEMPLATES = {
    CaseStatus.APPROVAL_PENDING.value: {
        "subject": "Update: Case Now Approval Pending",
        "html": (
            "Hi {{first_name}},<br><br>"
            "Update: your case status is now <strong>Approval Pending</strong>.<br><br>"
            "What this means:<br>"
            "&bull; We've received your submission<br>"
            "&bull; Our team is reviewing it for acceptance<br>"
            "Track your case: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys<br>"
            "{{support_phone}}"
        ),
        "sms": "Ticket Guys: Case {{case_id}} is now Approval Pending. Track: {{portal_url}} Reply STOP to opt out.",
    },
    CaseStatus.CASE_APPROVED.value: {
        "subject": "Approved - Moving Forward!",
        "html": (
            "Hi {{first_name}},<br><br>"
            "<strong>Good news</strong>: your case is now <strong>Approved</strong>!<br><br>"
            "&bull; Case accepted by our team<br>"
            "&bull; Moving into active handling<br>"
            "Track updates: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys"
        ),
        "sms": "Ticket Guys: Good news, case {{case_id}} is approved. Track: {{portal_url}} Reply STOP to opt out.",
    },
    CaseStatus.CASE_IN_PROGRESS.value: {
        "subject": "Case Now In Progress",
        "html": (
            "Hi {{first_name}},<br><br>"
            "<strong>Update:</strong> Case {{case_id}} is now <strong>In Progress</strong>.<br><br>"
            "Our team is actively working your case.<br>"
            "We'll notify you if anything is needed.<br><br>"
            "Track: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys"
        ),
        "sms": "Ticket Guys: Case {{case_id}} is now in progress. Track: {{portal_url}} Reply STOP to opt out.",
    },
    CaseStatus.CASE_APPEALED.value: {
        "subject": "Case Now Appealed",
        "html": (
            "Hi {{first_name}},<br><br>"
            "<strong>Update:</strong> Case {{case_id}} is now <strong>Appealed</strong>.<br><br>"
            "Your case has moved to the appeal process.<br>"
            "Check the portal for updates: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys"
        ),
        "sms": "Ticket Guys: Case {{case_id}} has been appealed. Updates: {{portal_url}} Reply STOP to opt out.",
    },
    CaseStatus.REQUIRES_ATTENTION.value: {
        "subject": "Action Needed: {{case_id}}",
        "html": (
            "Hi {{first_name}},<br><br>"
            "<strong>Requires Attention</strong>: we need one detail for case {{case_id}}.<br><br>"
            "{{status_note}}<br><br>"
            "<strong>Fastest fix:</strong><br>"
            "&bull; Reply to this email, or<br>"
            "&bull; Update here: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys | {{support_phone}}"
        ),
        "sms": "Ticket Guys: We need one detail for case {{case_id}}. Update: {{portal_url}} or call {{support_phone}}. Reply STOP to opt out.",
    },
    CaseStatus.CASE_DISMISSED.value: {
        "subject": "Case {{case_id}} DISMISSED!",
        "html": (
            "Hi {{first_name}},<br><br>"
            "<strong>GREAT NEWS!</strong> Case {{case_id}} is now <strong>Dismissed</strong>.<br><br>"
            "Details: {{status_note}}<br><br>"
            "Save for records: {{portal_url}}<br><br>"
            "&mdash; Ticket Guys"
        ),
        "sms": "Ticket Guys: Great news! Case {{case_id}} has been dismissed. Details: {{portal_url}} Reply STOP to opt out.",
    },
}


def get_status_template(status: str) -> dict:
    """Return the template for status, raising TemplateNotFoundError if unknown."""
    template = STATUS_TEMPLATES.get(status)
    if template is None:
        raise TemplateNotFoundError(f"No template for {status}")
    return template


def build_status_params(case: Case, case_id: str, note: str = "") -> dict:
    """Interpolation params for a status-change message."""
    return {
        "first_name": case.first_name,
        "case_id": case_id,
        "citation_number": case.citation.citation_number or "",
        "county": case.citation.county or "",
        "court_name": case.citation.court_name or "",
        "portal_url": portal_url(case_id),
        "status_note": note,
        "support_phone": support_phone(),
        "business_hours": business_hours(),
    }


def render_status_message(status: str, params: Mapping[str, Any]) -> RenderedMessage:
    """Render subject, HTML body and SMS body for a status change."""
    template = get_status_template(status)
    return RenderedMessage(
        subject=render_text(template["subject"], params),
        html_body=render_text(template["html"], params),
        sms_body=render_text(template["sms"], params),
    )


# ---------------------------------------------------------------------------
# Payment templates
# ---------------------------------------------------------------------------

_PAYMENT_STYLE = (
    "body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; "
    "max-width: 600px; margin: 0 auto; padding: 20px; }"
    ".footer { margin-top: 30px; font-size: 12px; color: #666; "
    "border-top: 1px solid #eee; padding-top: 15px; }"
    ".button { display: inline-block; color: white; padding: 10px 20px; "
    "text-decoration: none; border-radius: 5px; margin: 10px 0; }"
    ".box { padding: 15px; margin: 15px 0; }"
)

_PAYMENT_FOOTER = (
    '<div class="footer">'
    "<p>&mdash; Ticket Guys</p>"
    "<p>{{business_hours}}</p>"
    "<p><em>Note: This message is informational and not legal advice.</em></p>"
    "</div>"
)

PAYMENT_TEMPLATES = {
    "payment_paid": {
        "subject": "Payment Received - Your Ticket Guys Case is Active",
        "html": (
            "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
            "<title>Payment Received - Ticket Guys</title>"
            f"<style>{_PAYMENT_STYLE}</style></head><body>"
            "<h2>Payment Received</h2>"
            "<p>Hi {{first_name}},</p>"
            "<p>Payment received. Your Ticket Guys case is now active.</p>"
            '<div class="box" style="background-color: #e7f3ff; border-left: 4px solid #007bff;">'
            "<p><strong>Case ID:</strong> {{case_id}}</p>"
            "<p><strong>Citation:</strong> {{citation_number}}</p>"
            "<p><strong>County/Court:</strong> {{county}}</p>"
            "</div>"
            "<h4>What happens next:</h4>"
            "<ul>"
            "<li>We review your citation details</li>"
            "<li>We begin the next steps for your case</li>"
            "<li>You'll receive automatic updates when your case status changes</li>"
            "</ul>"
            '<p><a href="{{portal_url}}" class="button" style="background-color: #007bff;">Track Your Case Here</a></p>'
            "<p>Questions? Reply to this email or call/text {{support_phone}}.</p>"
            f"{_PAYMENT_FOOTER}"
            "</body></html>"
        ),
        "sms": (
            "Ticket Guys: Payment received for case {{case_id}}. We're getting to work now. "
            "Track updates: {{portal_url}} Reply STOP to opt out."
        ),
    },
    "payment_failed": {
        "subject": "Payment Failed - Action Required for Your Ticket",
        "html": (
            "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
            "<title>Payment Failed - Ticket Guys</title>"
            f"<style>{_PAYMENT_STYLE}</style></head><body>"
            '<h2 style="color: #dc3545;">Payment Failed</h2>'
            "<p>Hi {{first_name}},</p>"
            "<p>Your payment didn't go through, so your case isn't fully active yet.</p>"
            '<div class="box" style="background-color: #fff3cd; border-left: 4px solid #ffc107;">'
            "<p>In Texas, waiting can create avoidable problems (warrants, added fees and even "
            "driver's license renewal issues in some situations).</p>"
            "<p>If you want us to move forward, fix this now:</p>"
            "</div>"
            '<p><a href="{{payment_update_url}}" class="button" style="background-color: #dc3545;">'
            "Update Payment Information</a></p>"
            "<p><strong>Case ID:</strong> {{case_id}}<br>"
            "<strong>Citation:</strong> {{citation_number}}</p>"
            "<p>If you want help by phone, call/text {{support_phone}} and we'll help immediately.</p>"
            f"{_PAYMENT_FOOTER}"
            "</body></html>"
        ),
        "sms": (
            "Ticket Guys: Your payment didn't go through for case {{case_id}}. "
            "Update here: {{payment_update_url}} Need help? {{support_phone}} Reply STOP to opt out."
        ),
    },
}


def build_payment_params(case: Case) -> dict:
    """Interpolation params for payment messages."""
    return {
        "first_name": case.first_name or "there",
        "case_id": case.case_id,
        "citation_number": case.citation.citation_number or "N/A",
        "county": case.citation.county or "N/A",
        "portal_url": portal_url(case.case_id),
        "payment_update_url": payment_update_url(case.case_id),
        "support_phone": support_phone(),
        "business_hours": business_hours(),
    }


def render_payment_message(kind: str, params: Mapping[str, Any]) -> RenderedMessage:
    """Render a payment message; kind is "payment_paid" or "payment_failed"."""
    template = PAYMENT_TEMPLATES.get(kind)
    if template is None:
        raise TemplateNotFoundError(f"No template for {kind}")
    return RenderedMessage(
        subject=render_text(template["subject"], params),
        html_body=render_text(template["html"], params),
        sms_body=render_text(template["sms"], params),
    )
