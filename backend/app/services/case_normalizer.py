"""
Normalization service for stored case rows.

Case rows have been written by several generations of the intake code:
snake_case columns, legacy camelCase documents, and three different shapes
of extracted citation data. This module maps any of them into the canonical
``Case`` / ``CitationDetails`` models so business logic never branches on
raw key casing.

Extracted-data schema versions
------------------------------
v1_upper     violator_information.{FIRST, MIDDLE, LAST_NAME, PHONE},
             ticket_header.County, violation.CITATION
v2_lower     violator_information.{first, middle, last_name, phone},
             ticket_header.{citation_number, county, court_name}
manual_form  flat first_name / last_name / phone_number / county / ...

Adding a new shape:
  1. Write a _from_<shape>(data: dict) -> CitationDetails function.
  2. Teach detect_schema_version to recognise it.
  3. Register it in _NORMALIZERS.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from app.models.case import Case, CitationDetails, StatusHistoryEntry
from app.services.phone import first_valid_phone

logger = logging.getLogger(__name__)

# Canonical field -> every key it has been stored under, preferred first.
_CASE_FIELD_ALIASES: Dict[str, tuple] = {
    "case_status": ("case_status", "caseStatus"),
    "payment_status": ("payment_status", "paymentStatus"),
    "status": ("status",),
    "email": ("email",),
    "user_id": ("user_id", "userId"),
    "data_source": ("data_source", "dataSource"),
    "extracted_data": ("extracted_data", "extractedData"),
    "status_history": ("status_history", "statusHistory"),
    "client_messages": ("client_messages", "clientMessages"),
    "payment_amount": ("payment_amount", "paymentAmount"),
    "payment_intent_id": ("payment_intent_id", "stripe_payment_intent_id", "stripePaymentIntentId"),
    "notification_log": ("notification_log", "notificationLog"),
    "form_data": ("form_data", "formData"),
    "phone_number": ("phone_number", "phoneNumber"),
}

_SMS_OPT_IN_KEYS = (
    "sms_opt_in",
    "smsOptIn",
    "smsOptedIn",
    "receive_sms",
    "receiveSms",
    "sms_notifications",
    "smsNotifications",
    "text_opt_in",
    "textOptIn",
    "allow_sms",
    "allowSms",
)

# Older rows stored the attention message under a different key.
_CLIENT_MESSAGE_ALIASES = {"case_requires_attention": "requires_attention"}

_V1_PERSON_KEYS = ("FIRST", "MIDDLE", "LAST_NAME", "PHONE")


def _pick(raw: Mapping[str, Any], field: str, default: Any = None) -> Any:
    for key in _CASE_FIELD_ALIASES[field]:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def _text(value: Any) -> Optional[str]:
    """Strip strings, stringify numbers, and map empty values to None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


# ---------------------------------------------------------------------------
# Extracted-data shapes
# ---------------------------------------------------------------------------

def detect_schema_version(data: Mapping[str, Any]) -> str:
    """Identify which historical extraction shape ``data`` uses."""
    if not data:
        return "empty"

    person = _section(data, "violator_information")
    header = _section(data, "ticket_header")
    violation = _section(data, "violation")

    if any(k in person for k in _V1_PERSON_KEYS) or "County" in header or "CITATION" in violation:
        return "v1_upper"
    if person or header:
        return "v2_lower"
    if any(k in data for k in ("first_name", "last_name", "phone_number", "county", "citation_number")):
        return "manual_form"
    return "empty"


def _from_v1_upper(data: Mapping[str, Any]) -> CitationDetails:
    person = _section(data, "violator_information")
    header = _section(data, "ticket_header")
    violation = _section(data, "violation")
    return CitationDetails(
        schema_version="v1_upper",
        first_name=_text(person.get("FIRST")),
        middle_name=_text(person.get("MIDDLE")),
        last_name=_text(person.get("LAST_NAME")),
        phone=_text(person.get("PHONE")),
        email=_text(data.get("email")),
        citation_number=_text(
            header.get("Citation_Number") or header.get("CITATION_NUMBER") or header.get("citation_number")
        ),
        county=_text(header.get("County")),
        court_name=_text(header.get("COURT") or header.get("court_name")),
        violation=_text(violation.get("CITATION")),
        is_jp=_text(data.get("is_jp")),
        precinct_number=_text(data.get("precinct_number")),
    )


def _from_v2_lower(data: Mapping[str, Any]) -> CitationDetails:
    person = _section(data, "violator_information")
    header = _section(data, "ticket_header")
    violation = _section(data, "violation")
    return CitationDetails(
        schema_version="v2_lower",
        first_name=_text(person.get("first") or person.get("first_name")),
        middle_name=_text(person.get("middle") or person.get("middle_name")),
        last_name=_text(person.get("last_name") or person.get("last")),
        phone=_text(person.get("phone")),
        email=_text(data.get("email") or person.get("email")),
        citation_number=_text(header.get("citation_number")),
        county=_text(header.get("county")),
        court_name=_text(header.get("court_name")),
        violation=_text(violation.get("citation") or violation.get("description")),
        is_jp=_text(data.get("is_jp")),
        precinct_number=_text(data.get("precinct_number")),
    )


def _from_manual_form(data: Mapping[str, Any]) -> CitationDetails:
    return CitationDetails(
        schema_version="manual_form",
        first_name=_text(data.get("first_name")),
        middle_name=_text(data.get("middle_name")),
        last_name=_text(data.get("last_name")),
        phone=_text(data.get("phone_number")),
        email=_text(data.get("email")),
        citation_number=_text(data.get("citation_number")),
        county=_text(data.get("county")),
        court_name=_text(data.get("court_name")),
        violation=_text(data.get("infraction_violation") or data.get("violation")),
        is_jp=_text(data.get("is_jp")),
        precinct_number=_text(data.get("precinct_number")),
    )


def _from_empty(data: Mapping[str, Any]) -> CitationDetails:
    return CitationDetails(email=_text(data.get("email")) if data else None)


_NORMALIZERS: Dict[str, Callable[[Mapping[str, Any]], CitationDetails]] = {
    "v1_upper": _from_v1_upper,
    "v2_lower": _from_v2_lower,
    "manual_form": _from_manual_form,
    "empty": _from_empty,
}


def normalize_extracted_data(data: Optional[Mapping[str, Any]]) -> CitationDetails:
    """Map any historical extraction payload to CitationDetails."""
    data = data if isinstance(data, Mapping) else {}
    version = detect_schema_version(data)
    details = _NORMALIZERS[version](data)
    if version in ("v1_upper", "v2_lower"):
        # Fields the client filled in after extraction are stored flat.
        flat = _from_manual_form(data).model_dump(exclude={"schema_version"}, exclude_none=True)
        missing = {k: v for k, v in flat.items() if getattr(details, k) is None}
        if missing:
            details = details.model_copy(update=missing)
    return details


# ---------------------------------------------------------------------------
# Case rows
# ---------------------------------------------------------------------------

def find_phone_number(raw: Mapping[str, Any], citation: Optional[CitationDetails] = None) -> Optional[str]:
    """
    Find the client's phone number wherever this row happens to store it.

    Locations are checked in priority order and the first valid number wins.
    """
    extracted = _pick(raw, "extracted_data", {}) or {}
    form = _pick(raw, "form_data", {}) or {}
    person = _section(extracted, "violator_information") if isinstance(extracted, Mapping) else {}
    contact = _section(raw, "contact")
    user = _section(raw, "user")
    return first_valid_phone(
        _pick(raw, "phone_number"),
        extracted.get("phone_number") if isinstance(extracted, Mapping) else None,
        person.get("phone") or person.get("PHONE"),
        citation.phone if citation else None,
        form.get("phone") if isinstance(form, Mapping) else None,
        form.get("phone_number") if isinstance(form, Mapping) else None,
        form.get("mobileno") if isinstance(form, Mapping) else None,
        raw.get("phone"),
        contact.get("phone"),
        user.get("phone"),
    )


def sms_opted_in(raw: Mapping[str, Any]) -> bool:
    """True when any known opt-in flag is explicitly True."""
    return any(raw.get(key) is True for key in _SMS_OPT_IN_KEYS)


def _history(entries: Any) -> list:
    if not isinstance(entries, list):
        return []
    history = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not entry.get("status"):
            continue
        fields = {
            "status": entry["status"],
            "note": entry.get("note") or entry.get("notes") or "",
            "updated_by": entry.get("updated_by") or entry.get("updatedBy") or "system",
        }
        if entry.get("timestamp") is not None:
            fields["timestamp"] = entry["timestamp"]
        try:
            history.append(StatusHistoryEntry(**fields))
        except ValidationError as e:
            logger.warning("Skipping malformed status history entry: %s", e)
    return history


def _client_messages(messages: Any) -> Dict[str, str]:
    if not isinstance(messages, Mapping):
        return {}
    normalized: Dict[str, str] = {}
    for key, value in messages.items():
        if value is None:
            continue
        normalized.setdefault(_CLIENT_MESSAGE_ALIASES.get(key, key), str(value))
    return normalized


def _amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_case(case_id: str, raw: Optional[Mapping[str, Any]]) -> Case:
    """
    Convert a stored case row (any historical shape) into a Case.

    The root-level email wins; the nested extracted-data email is used only
    when the root one is missing.
    """
    raw = raw or {}
    extracted = _pick(raw, "extracted_data", {})
    extracted = dict(extracted) if isinstance(extracted, Mapping) else {}
    citation = normalize_extracted_data(extracted)

    email = _text(_pick(raw, "email")) or citation.email
    notification_log = _pick(raw, "notification_log", [])

    return Case(
        case_id=case_id,
        case_status=_text(_pick(raw, "case_status")),
        payment_status=_text(_pick(raw, "payment_status")) or "pending",
        status=_text(_pick(raw, "status")),
        email=email,
        phone=find_phone_number(raw, citation),
        sms_opt_in=sms_opted_in(raw),
        user_id=_text(_pick(raw, "user_id")),
        data_source=_text(_pick(raw, "data_source")),
        citation=citation,
        extracted_data=extracted,
        status_history=_history(_pick(raw, "status_history")),
        client_messages=_client_messages(_pick(raw, "client_messages")),
        payment_amount=_amount(_pick(raw, "payment_amount")),
        payment_intent_id=_text(_pick(raw, "payment_intent_id")),
        notification_log=notification_log if isinstance(notification_log, list) else [],
    )
