"""
Pydantic models for case records.

A case is one ticket-defense submission tracked from intake to resolution.
Rows in the cases table are normalised into ``Case`` by
app.services.case_normalizer before business logic reads them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CaseStatus(str, Enum):
    APPROVAL_PENDING = "approval_pending"
    CASE_APPROVED = "case_approved"
    CASE_IN_PROGRESS = "case_in_progress"
    CASE_APPEALED = "case_appealed"
    REQUIRES_ATTENTION = "requires_attention"
    CASE_DISMISSED = "case_dismissed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DataSource(str, Enum):
    AI_EXTRACTION = "ai_extraction"
    MANUAL_FORM = "manual_form"
    NO_TICKET_FORM = "no_ticket_form"


VALID_STATUSES = frozenset(s.value for s in CaseStatus)

# Status a case returns to once payment clears: submitted and awaiting review.
SUBMITTED_FOR_REVIEW = CaseStatus.APPROVAL_PENDING


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StatusHistoryEntry(BaseModel):
    """One append-only entry in a case's status history."""
    status: str
    timestamp: datetime = Field(default_factory=utc_now)
    note: str = ""
    updated_by: str = "system"


class CitationDetails(BaseModel):
    """
    Canonical view of the data extracted from a citation.

    schema_version records which historical shape the data was read from:
    "v1_upper", "v2_lower", "manual_form" or "empty".
    """
    schema_version: str = "empty"
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    citation_number: Optional[str] = None
    violation: Optional[str] = None
    county: Optional[str] = None
    court_name: Optional[str] = None
    is_jp: Optional[str] = None
    precinct_number: Optional[str] = None


class Case(BaseModel):
    """
    Canonical internal representation of a case row.

    case_status is kept as the raw stored string so that validation can see
    (and reject) values outside CaseStatus.
    """
    case_id: str
    case_status: Optional[str] = None
    payment_status: str = PaymentStatus.PENDING.value
    status: Optional[str] = None  # intake processing status: extracted / completed
    email: Optional[str] = None
    phone: Optional[str] = None
    sms_opt_in: bool = False
    user_id: Optional[str] = None
    data_source: Optional[str] = None
    citation: CitationDetails = Field(default_factory=CitationDetails)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    client_messages: Dict[str, str] = Field(default_factory=dict)
    payment_amount: Optional[float] = None
    payment_intent_id: Optional[str] = None
    notification_log: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def first_name(self) -> str:
        return self.citation.first_name or ""

    @property
    def has_known_status(self) -> bool:
        return self.case_status in VALID_STATUSES


class StatusUpdateRequest(BaseModel):
    """Request body for POST /api/cases/{case_id}/status."""
    status: CaseStatus
    note: str = ""


class MissingFieldsRequest(BaseModel):
    """Request body for POST /api/cases/{case_id}/missing-fields."""
    fields: Dict[str, Any]


class ManualFormRequest(BaseModel):
    """
    Request body for POST /api/cases/manual-form.

    The web form posts its own field names (firstname, mobileno, ...); they
    are accepted as aliases and stored under the snake_case names.
    """
    model_config = {"extra": "ignore", "populate_by_name": True}

    email: Optional[str] = None
    user_id: Optional[str] = None

    first_name: Optional[str] = Field(None, alias="firstname")
    middle_name: Optional[str] = Field(None, alias="middlename")
    last_name: Optional[str] = Field(None, alias="lastname")
    phone_number: Optional[str] = Field(None, alias="mobileno")

    residence_address: Optional[str] = Field(None, alias="residenceaddress")
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(None, alias="zipcodeno")

    driving_license_no: Optional[str] = Field(None, alias="drivinglicenseno")
    dl_class: Optional[str] = Field(None, alias="dlClass")
    date_of_birth: Optional[str] = Field(None, alias="dob")

    license_plate: Optional[str] = Field(None, alias="licenseplate")
    vehicle_make: Optional[str] = Field(None, alias="make")
    vehicle_model: Optional[str] = Field(None, alias="model")
    vehicle_year: Optional[str] = Field(None, alias="carYear")
    vehicle_color: Optional[str] = Field(None, alias="colorvehicle")

    citation_number: Optional[str] = Field(None, alias="citationnumber")
    issuing_authority: Optional[str] = Field(None, alias="issuingauthority")
    issue_date_time: Optional[str] = Field(None, alias="issue-datetime")
    infraction_violation: Optional[str] = Field(None, alias="citation")
    alleged_speed: Optional[str] = Field(None, alias="allegedspeed")
    posted_speed: Optional[str] = Field(None, alias="postedspeed")
    case_no: Optional[str] = Field(None, alias="caseno")

    county: Optional[str] = None
    court_information: Optional[str] = Field(None, alias="courtinformation")
    officer_name: Optional[str] = Field(None, alias="officername")
    is_jp: Optional[str] = None
    precinct_number: Optional[str] = None


class NoTicketFormRequest(BaseModel):
    """Request body for POST /api/cases/no-ticket-form (client has no physical ticket)."""
    model_config = {"extra": "ignore"}

    email: Optional[str] = None
    user_id: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    infraction_violation: Optional[str] = None
    county: Optional[str] = None
    is_jp: Optional[str] = None
    precinct_number: Optional[str] = None


class ExtractFromUrlRequest(BaseModel):
    """Request body for POST /api/cases/extract-from-url (mobile uploads)."""
    image_url: Optional[str] = None
    session_id: str
    user_id: Optional[str] = None
    email: Optional[str] = None


class CaseCheckResponse(BaseModel):
    exists: bool
    status: Optional[str] = None
    missing_fields: List[str] = []
    is_complete: bool = False
