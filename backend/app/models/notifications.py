"""
Pydantic models for the status-change notification pipeline.

Models:
  DocumentChange        - one entry of a change-feed batch
  RenderedMessage       - subject / html / sms produced by a template
  AuditLogEntry         - row in audit-logs
  NotificationLogEntry  - row in notification_logs (masked recipient only)
  ScheduledReviewEmail  - row in scheduled_review_emails
  AdminAlert            - row in admin_alerts
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.case import utc_now


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class DocumentChange(BaseModel):
    """
    A single row change from the case store's change feed.

    previous is the row as it was before the change, when the store can
    provide it.
    """
    type: ChangeType
    case_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    previous: Optional[Dict[str, Any]] = None


class RenderedMessage(BaseModel):
    subject: str
    html_body: str
    sms_body: str = ""


# ---------------------------------------------------------------------------
# Records written by the pipeline
# ---------------------------------------------------------------------------

class AuditLogEntry(BaseModel):
    type: str = "status_change"
    case_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    source: str = "status_service"


class NotificationLogEntry(BaseModel):
    type: str
    case_id: str
    status: str
    masked_email: str
    outcome: str = "sent"
    timestamp: datetime = Field(default_factory=utc_now)


class ScheduledReviewEmail(BaseModel):
    case_id: str
    email: str
    first_name: str = ""
    scheduled_for: datetime
    status: str = "pending"
    created_at: datetime = Field(default_factory=utc_now)


class AlertStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class AlertType(str, Enum):
    STATUS_NOTIFICATION_FAILED = "status_notification_failed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_NOTIFICATION_FAILED = "payment_notification_failed"


class AlertNote(BaseModel):
    note: str
    author: str = "system"
    timestamp: datetime = Field(default_factory=utc_now)


class AdminAlert(BaseModel):
    """An operator-facing record created when automated handling fails."""
    id: str
    type: AlertType
    case_id: Optional[str] = None
    status: AlertStatus = AlertStatus.OPEN
    priority: str = "high"
    client_info: Dict[str, Any] = Field(default_factory=dict)
    case_info: Dict[str, Any] = Field(default_factory=dict)
    error_details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: List[AlertNote] = Field(default_factory=list)


class AlertUpdateRequest(BaseModel):
    """Request body for PATCH /api/admin/alerts/{alert_id}."""
    status: Optional[AlertStatus] = None
    assigned_to: Optional[str] = None


class AlertNoteRequest(BaseModel):
    """Request body for POST /api/admin/alerts/{alert_id}/notes."""
    note: str
