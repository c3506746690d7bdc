"""
Case intake and status API endpoints.

Endpoints:
  POST /extract                   - upload citation images, extract and save (public)
  POST /extract-from-url          - extract from an uploaded image URL (public, mobile)
  POST /manual-form               - client typed in the whole citation (public)
  POST /no-ticket-form            - client has no physical ticket (public)
  GET  /{case_id}/check           - which required fields are still missing (public)
  POST /{case_id}/missing-fields  - client fills in missing fields (public)
  POST /{case_id}/status          - staff status change (auth: JWT)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from app.auth import get_current_user
from app.models.case import (
    CaseCheckResponse,
    CaseStatus,
    DataSource,
    ExtractFromUrlRequest,
    ManualFormRequest,
    MissingFieldsRequest,
    NoTicketFormRequest,
    StatusUpdateRequest,
)
from app.services.case_intake import (
    PROCESSING_COMPLETED,
    CaseAlreadyCompletedError,
    apply_missing_fields,
    build_status_update,
    check_missing_fields,
    check_no_ticket_fields,
    create_case_record,
    create_form_case,
)
from app.services.case_normalizer import normalize_case, normalize_extracted_data
from app.services.extractor import SUPPORTED_MEDIA_TYPES, extract_citation, extract_citation_from_url
from app.services.runtime import Services, get_services

router = APIRouter()

logger = logging.getLogger(__name__)

MAX_IMAGES = 5


async def _reject_completed_session(services: Services, session_id: str) -> None:
    existing = await services.store.get_case(session_id)
    if existing is not None and normalize_case(session_id, existing).status == PROCESSING_COMPLETED:
        raise HTTPException(
            status_code=400,
            detail="This ticket has already been processed. Please start a new session.",
        )


@router.post("/extract", response_model=dict)
async def extract_case(
    images: List[UploadFile] = File(...),
    session_id: str = Form(...),
    email: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None),
    services: Services = Depends(get_services),
):
    """
    Extract citation data from up to five images and save it as a new case.

    The session id becomes the case id. A session whose case is already
    completed is rejected so the client starts a new one.
    """
    logger.info("Extract request received for %s (%d images)", session_id, len(images))

    if not images:
        raise HTTPException(status_code=400, detail="No image files uploaded")
    if len(images) > MAX_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES} images are allowed")

    await _reject_completed_session(services, session_id)

    payload = []
    for image in images:
        content_type = (image.content_type or "").lower()
        if content_type not in SUPPORTED_MEDIA_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported image type: {content_type or 'unknown'}")
        payload.append((await image.read(), content_type))

    try:
        extracted_data, raw_text = await extract_citation(payload)
    except Exception as e:
        logger.error("Citation extraction failed for %s: %s", session_id, e)
        raise HTTPException(status_code=500, detail=f"Extraction failed: {str(e)}")

    saved = await create_case_record(
        services.store,
        session_id,
        user_id,
        extracted_data,
        images[0].filename,
        email,
        data_source=DataSource.AI_EXTRACTION.value,
        alerts=services.alerts,
    )

    missing_fields = check_missing_fields(normalize_extracted_data(extracted_data), email)
    return {
        "success": True,
        "case_id": session_id,
        "saved": saved,
        "images_processed": len(payload),
        "extracted_data": extracted_data,
        "raw_text": raw_text,
        "missing_fields": missing_fields,
        "is_complete": not missing_fields,
    }


@router.post("/extract-from-url", response_model=dict)
async def extract_case_from_url(
    body: ExtractFromUrlRequest,
    services: Services = Depends(get_services),
):
    """Extract citation data from an image the mobile app already uploaded."""
    await _reject_completed_session(services, body.session_id)

    if not body.image_url or not body.image_url.strip():
        raise HTTPException(status_code=400, detail="No image URL provided")

    try:
        extracted_data, raw_text = await extract_citation_from_url(body.image_url.strip())
    except Exception as e:
        logger.error("Extraction from URL failed for %s: %s", body.session_id, e)
        raise HTTPException(status_code=500, detail=f"Failed to process image from URL: {str(e)}")

    saved = await create_case_record(
        services.store,
        body.session_id,
        body.user_id,
        extracted_data,
        "mobile_upload",
        body.email,
        data_source=DataSource.AI_EXTRACTION.value,
        alerts=services.alerts,
    )

    missing_fields = check_missing_fields(normalize_extracted_data(extracted_data), body.email)
    return {
        "success": True,
        "case_id": body.session_id,
        "saved": saved,
        "extracted_data": extracted_data,
        "raw_text": raw_text,
        "missing_fields": missing_fields,
        "is_complete": not missing_fields,
    }


@router.post("/manual-form", response_model=dict)
async def submit_manual_form(
    body: ManualFormRequest,
    services: Services = Depends(get_services),
):
    """Save a citation the client typed in by hand as a completed case."""
    if not body.email or not body.email.strip():
        raise HTTPException(status_code=400, detail="Email is required")

    form = body.model_dump(exclude={"user_id"}, exclude_none=True)
    form["email"] = body.email.strip()
    logger.info("Manual form received (%d fields)", len(form))

    case_id, saved = await create_form_case(
        services.store,
        form,
        form["email"],
        user_id=body.user_id,
        data_source=DataSource.MANUAL_FORM.value,
        alerts=services.alerts,
    )
    if not saved:
        raise HTTPException(status_code=500, detail="Failed to submit manual form")

    return {
        "success": True,
        "case_id": case_id,
        "user_id": body.user_id,
        "status": PROCESSING_COMPLETED,
    }


@router.post("/no-ticket-form", response_model=dict)
async def submit_no_ticket_form(
    body: NoTicketFormRequest,
    services: Services = Depends(get_services),
):
    """
    Save the details of a client who has no physical ticket.

    Missing required fields are reported back as a 400 listing them.
    """
    form = body.model_dump(exclude={"user_id"})
    missing_fields = check_no_ticket_fields(form)
    if missing_fields:
        if missing_fields == ["precinct_number"]:
            error = "Precinct number required for JP cases"
        else:
            error = "Missing required fields"
        raise HTTPException(status_code=400, detail={"error": error, "missing_fields": missing_fields})

    form["email"] = form["email"].strip()
    case_id, saved = await create_form_case(
        services.store,
        form,
        form["email"],
        user_id=body.user_id,
        data_source=DataSource.NO_TICKET_FORM.value,
        alerts=services.alerts,
    )
    if not saved:
        raise HTTPException(status_code=500, detail="Failed to submit information")

    return {
        "success": True,
        "case_id": case_id,
        "user_id": body.user_id,
        "status": PROCESSING_COMPLETED,
        "case_status": CaseStatus.APPROVAL_PENDING.value,
    }


@router.get("/{case_id}/check", response_model=CaseCheckResponse)
async def check_case(case_id: str, services: Services = Depends(get_services)):
    """Report whether a case exists and which required fields it still lacks."""
    raw = await services.store.get_case(case_id)
    if raw is None:
        return CaseCheckResponse(exists=False)

    case = normalize_case(case_id, raw)
    missing_fields = check_missing_fields(case.citation, case.email)
    return CaseCheckResponse(
        exists=True,
        status=case.status,
        missing_fields=missing_fields,
        is_complete=not missing_fields,
    )


@router.post("/{case_id}/missing-fields", response_model=dict)
async def submit_missing_fields(
    case_id: str,
    body: MissingFieldsRequest,
    services: Services = Depends(get_services),
):
    """Merge client-supplied fields into the case and mark it completed."""
    if not body.fields:
        raise HTTPException(status_code=400, detail="No fields provided")

    try:
        case = await apply_missing_fields(services.store, case_id, body.fields)
    except LookupError:
        raise HTTPException(status_code=404, detail="Case not found")
    except CaseAlreadyCompletedError:
        raise HTTPException(
            status_code=400,
            detail="This ticket has already been processed. Please start a new session.",
        )

    return {
        "success": True,
        "case_id": case_id,
        "status": case.status,
        "missing_fields": check_missing_fields(case.citation, case.email),
    }


@router.post("/{case_id}/status", response_model=dict)
async def update_case_status(
    case_id: str,
    body: StatusUpdateRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    Move a case to a new status.

    The write appends to status_history; the status monitor picks up the row
    change and notifies the client.
    """
    raw = await services.store.get_case(case_id)
    if raw is None:
        raise HTTPException(status_code=404, detail="Case not found")

    case = normalize_case(case_id, raw)
    if case.case_status == body.status.value:
        raise HTTPException(status_code=409, detail=f"Case is already {body.status.value}")

    fields = build_status_update(case, body.status, note=body.note, updated_by=user_id)
    await services.store.update_case(case_id, fields)
    await services.alerts.log_audit("status_updated", case_id, {
        "old_status": case.case_status,
        "new_status": body.status.value,
        "updated_by": user_id,
    })
    logger.info("Case %s status %s -> %s by %s", case_id, case.case_status, body.status.value, user_id)

    return {
        "success": True,
        "case_id": case_id,
        "case_status": body.status.value,
        "history_length": len(fields["status_history"]),
    }
