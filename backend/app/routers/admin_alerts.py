"""
Admin alert API endpoints.

Endpoints:
  PATCH /{alert_id}         - change status / assignee (auth: JWT)
  POST  /{alert_id}/notes   - append a note (auth: JWT)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user
from app.models.notifications import AlertNoteRequest, AlertUpdateRequest
from app.services.runtime import Services, get_services

router = APIRouter()

logger = logging.getLogger(__name__)


@router.patch("/{alert_id}", response_model=dict)
async def update_alert(
    alert_id: str,
    body: AlertUpdateRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    updates = body.model_dump(mode="json", exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    result = await services.alerts.update_alert(alert_id, updates)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"Failed to update alert: {result['error']}")

    logger.info("Alert %s updated by %s: %s", alert_id, user_id, updates)
    return {"success": True, "alert_id": alert_id, **updates}


@router.post("/{alert_id}/notes", response_model=dict)
async def add_alert_note(
    alert_id: str,
    body: AlertNoteRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    note = body.note.strip()
    if not note:
        raise HTTPException(status_code=400, detail="Note cannot be empty")

    result = await services.alerts.add_alert_note(alert_id, note, author=user_id)
    if not result["success"]:
        if result.get("error") == "Alert not found":
            raise HTTPException(status_code=404, detail="Alert not found")
        raise HTTPException(status_code=500, detail=f"Failed to add note: {result['error']}")

    return {"success": True, "alert_id": alert_id}
