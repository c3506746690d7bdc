"""
Payments router.

Receives payment-provider events that have already been verified by the
checkout integration and forwards them to the payment reconciler.

Environment variables
---------------------
PAYMENT_WEBHOOK_SECRET    Shared secret checked in the X-Webhook-Secret header.

Endpoints:
  POST /webhook   - payment event (auth: X-Webhook-Secret)
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from pydantic import ValidationError

from app.models.case import PaymentStatus
from app.models.payment import FAILURE_EVENT_TYPES, PaymentEvent, PaymentEventType
from app.services.case_normalizer import normalize_case
from app.services.runtime import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

HANDLED_EVENT_TYPES = FAILURE_EVENT_TYPES | {PaymentEventType.CHECKOUT_COMPLETED.value}


def _verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """
    Verify that the webhook request carries the configured shared secret.

    Raises 401 if the secret is missing, unconfigured, or does not match.
    """
    expected = os.getenv("PAYMENT_WEBHOOK_SECRET", "")
    if not expected:
        logger.warning(
            "PAYMENT_WEBHOOK_SECRET is not configured; all payment webhook requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    if not x_webhook_secret or x_webhook_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.post("/webhook")
async def payment_webhook(
    payload: dict = Body(...),
    _: None = Depends(_verify_webhook_secret),
    services: Services = Depends(get_services),
):
    """
    Apply a payment event to its case.

    A second checkout completion for a case that is already paid is
    acknowledged without being applied again. Event types the reconciler does
    not handle are acknowledged so the provider stops redelivering them.
    """
    try:
        event = PaymentEvent(**payload)
    except ValidationError as e:
        logger.warning("Malformed payment event: %s", e)
        raise HTTPException(status_code=400, detail="Malformed payment event")

    logger.info("Payment event received: %s (%s)", event.type, event.id)

    if event.type not in HANDLED_EVENT_TYPES:
        return {"received": True, "handled": False, "event_type": event.type}

    if event.type == PaymentEventType.CHECKOUT_COMPLETED.value:
        case_id = event.data.object.case_reference
        if case_id:
            raw = await services.store.get_case(case_id)
            if raw is not None and normalize_case(case_id, raw).payment_status == PaymentStatus.PAID.value:
                logger.info("Case %s already paid; ignoring duplicate completion", case_id)
                return {"received": True, "handled": False, "status": "already_processed", "case_id": case_id}

    result = await services.reconciler.handle_event(event)
    if result.get("reason") == "case_update_failed":
        # 5xx so the provider redelivers the event
        raise HTTPException(status_code=500, detail="Failed to record payment")
    return {"received": True, **result}
