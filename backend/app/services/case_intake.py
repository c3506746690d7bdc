"""
Case intake service.

Creates case rows from extracted or manually entered citation data, reports
which required fields are still missing, merges client-supplied fields, and
builds the status-change writes that the status monitor reacts to.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from app.models.case import (
    Case,
    CaseStatus,
    CitationDetails,
    DataSource,
    PaymentStatus,
    StatusHistoryEntry,
    utc_now,
)
from app.services.alerts import AlertService
from app.services.case_normalizer import normalize_case

logger = logging.getLogger(__name__)

# Shown to clients on the dashboard, keyed by case status.
CLIENT_MESSAGES = {
    CaseStatus.APPROVAL_PENDING.value: (
        "We need more information before approving your case. You will receive a call or email "
        "requesting additional information. If you have already been contacted by our team, "
        "please upload the requested documents below."
    ),
    CaseStatus.CASE_APPROVED.value: (
        "Congratulations! Your case is approved. You'll receive an email when the status of your "
        "case changes or if we need any communications from you."
    ),
    CaseStatus.CASE_IN_PROGRESS.value: (
        "Your case is in progress. If you have not received any calls or emails from us, it means "
        "our legal team is working on your case. You'll receive an email when the status of your "
        "case changes."
    ),
    CaseStatus.CASE_DISMISSED.value: (
        "Congratulations. Our legal team has won your case. No further action is needed unless "
        "our legal team contacts you."
    ),
    CaseStatus.CASE_APPEALED.value: (
        "Your case has been appealed. Our legal team is working on the next steps. "
        "You'll receive updates via email."
    ),
    CaseStatus.REQUIRES_ATTENTION.value: (
        "Your case requires additional attention. Our team will contact you shortly with more "
        "information."
    ),
}

PROCESSING_EXTRACTED = "extracted"
PROCESSING_COMPLETED = "completed"

# Required field -> attribute on CitationDetails
_REQUIRED_CITATION_FIELDS = (
    ("first_name", "first_name"),
    ("middle_name", "middle_name"),
    ("last_name", "last_name"),
    ("infraction_violation", "violation"),
    ("phone_number", "phone"),
    ("county", "county"),
    ("is_jp", "is_jp"),
)

# Required for clients without a physical ticket; middle name is optional there.
NO_TICKET_REQUIRED_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "infraction_violation",
    "phone_number",
    "county",
    "is_jp",
)


class CaseAlreadyCompletedError(ValueError):
    """The case has already been completed and can no longer be edited by the client."""


async def create_case_record(
    store,
    case_id: str,
    user_id: Optional[str],
    extracted_data: Dict[str, Any],
    filename: Optional[str],
    email: Optional[str],
    data_source: str = DataSource.AI_EXTRACTION.value,
    alerts: Optional[AlertService] = None,
) -> bool:
    """
    Write a new case row with its dashboard fields.

    Manual submissions are complete on arrival; AI extractions wait for the
    client to confirm missing fields. Returns False when the write failed.
    """
    if data_source == DataSource.AI_EXTRACTION.value:
        processing_status = PROCESSING_EXTRACTED
        note = "Ticket uploaded and AI extraction completed"
    else:
        processing_status = PROCESSING_COMPLETED
        note = "Manual form submitted with complete information"

    now = utc_now()
    history = [StatusHistoryEntry(status=CaseStatus.APPROVAL_PENDING.value, note=note, timestamp=now)]
    fields = {
        "status": processing_status,
        "extracted_data": extracted_data,
        "extracted_at": now,
        "user_id": user_id,
        "email": email,
        "file_name": filename,
        "data_source": data_source,
        "case_status": CaseStatus.APPROVAL_PENDING.value,
        "payment_status": PaymentStatus.PENDING.value,
        "status_history": [h.model_dump() for h in history],
        "client_messages": CLIENT_MESSAGES,
        "created_at": now,
        "last_updated": now,
    }
    alerts = alerts or AlertService(store)

    try:
        await store.set_case(case_id, fields, merge=True)
    except Exception as e:
        logger.error("Error saving case %s: %s", case_id, e)
        await alerts.log_audit("ticket_creation_failed", case_id, {
            "error": str(e),
            "data_source": data_source,
        })
        return False

    logger.info("Case %s saved (%s)", case_id, data_source)
    await alerts.log_audit("ticket_created", case_id, {
        "user_id": user_id,
        "data_source": data_source,
    })
    return True


def check_missing_fields(citation: CitationDetails, email: Optional[str]) -> List[str]:
    """
    List the required fields that are still empty.

    The precinct is required only for justice-of-the-peace courts.
    """
    missing = []
    if not email or not email.strip():
        missing.append("email")
    for field, attr in _REQUIRED_CITATION_FIELDS:
        if not getattr(citation, attr):
            missing.append(field)
    if citation.is_jp == "Y" and not citation.precinct_number:
        missing.append("precinct_number")
    return missing


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_no_ticket_fields(form: Dict[str, Any]) -> List[str]:
    """
    Required fields missing from a no-ticket submission.

    Only reports the precinct once every other required field is present.
    """
    missing = [field for field in NO_TICKET_REQUIRED_FIELDS if _blank(form.get(field))]
    if missing:
        return missing
    if form.get("is_jp") == "Y" and _blank(form.get("precinct_number")):
        return ["precinct_number"]
    return []


async def create_form_case(
    store,
    form: Dict[str, Any],
    email: str,
    user_id: Optional[str] = None,
    data_source: str = DataSource.MANUAL_FORM.value,
    alerts: Optional[AlertService] = None,
) -> Tuple[str, bool]:
    """
    Save a form submission as a new, already completed case.

    A fresh case id is generated for every submission. Returns
    (case_id, saved).
    """
    data = {key: value for key, value in form.items() if value is not None}
    data["manually_entered"] = True
    if data_source == DataSource.NO_TICKET_FORM.value:
        data["has_physical_ticket"] = False
        data.setdefault("middle_name", "")
        if data.get("is_jp") != "Y":
            data.pop("precinct_number", None)

    case_id = str(uuid.uuid4())
    saved = await create_case_record(
        store,
        case_id,
        user_id,
        data,
        data_source,
        email,
        data_source=data_source,
        alerts=alerts,
    )
    return case_id, saved


async def apply_missing_fields(store, case_id: str, fields: Dict[str, Any]) -> Case:
    """
    Merge client-supplied fields into the case's extracted data and mark it completed.

    The root email and the extracted-data email are kept in sync.

    Raises:
        LookupError: the case does not exist
        CaseAlreadyCompletedError: the case was already completed
    """
    raw = await store.get_case(case_id)
    if raw is None:
        raise LookupError(f"Case {case_id} not found")

    case = normalize_case(case_id, raw)
    if case.status == PROCESSING_COMPLETED:
        raise CaseAlreadyCompletedError(f"Case {case_id} has already been completed")

    extracted = {**case.extracted_data, **fields}
    updates: Dict[str, Any] = {
        "extracted_data": extracted,
        "status": PROCESSING_COMPLETED,
        "completed_at": utc_now(),
        "last_updated": utc_now(),
    }
    email = fields.get("email")
    if isinstance(email, str) and email.strip():
        updates["email"] = email.strip()
        extracted["email"] = email.strip()

    await store.update_case(case_id, updates)
    logger.info("Case %s completed with %d client-supplied fields", case_id, len(fields))
    return normalize_case(case_id, {**raw, **updates})


def build_status_update(
    case: Case,
    new_status: CaseStatus,
    note: str = "",
    updated_by: str = "system",
) -> Dict[str, Any]:
    """
    Fields that move a case to new_status.

    History is append-only and the last entry always matches case_status.
    """
    entry = StatusHistoryEntry(status=new_status.value, note=note, updated_by=updated_by)
    history = [h.model_dump() for h in case.status_history] + [entry.model_dump()]
    return {
        "case_status": new_status.value,
        "status_history": history,
        "last_updated": entry.timestamp,
    }
