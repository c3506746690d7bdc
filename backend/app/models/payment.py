"""
Pydantic models for payment-provider events.

Only the subset of the provider's event JSON that reconciliation needs is
modelled; unknown fields are ignored.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class PaymentEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHECKOUT_EXPIRED = "checkout.session.expired"


FAILURE_EVENT_TYPES = frozenset({
    PaymentEventType.ASYNC_PAYMENT_FAILED.value,
    PaymentEventType.PAYMENT_INTENT_FAILED.value,
    PaymentEventType.CHECKOUT_EXPIRED.value,
})


class CustomerDetails(BaseModel):
    model_config = {"extra": "ignore"}

    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None


class PaymentError(BaseModel):
    model_config = {"extra": "ignore"}

    message: Optional[str] = None
    code: Optional[str] = None


class PaymentObject(BaseModel):
    """A checkout session or payment intent carried by an event."""
    model_config = {"extra": "ignore"}

    id: Optional[str] = None
    client_reference_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    receipt_email: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_total: Optional[int] = None
    amount: Optional[int] = None
    metadata: Dict[str, Any] = {}
    last_payment_error: Optional[PaymentError] = None

    @property
    def case_reference(self) -> Optional[str]:
        """
        The case ID this payment belongs to.

        Checkout sessions carry it as client_reference_id; payment intents
        only carry metadata.
        """
        if self.client_reference_id:
            return self.client_reference_id
        for key in ("case_id", "session_id", "client_reference_id"):
            value = self.metadata.get(key)
            if value:
                return str(value)
        return None

    @property
    def billing_email(self) -> Optional[str]:
        if self.customer_email:
            return self.customer_email
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.receipt_email or None

    @property
    def payment_intent_id(self) -> Optional[str]:
        if self.payment_intent:
            return self.payment_intent
        if self.id and self.id.startswith("pi_"):
            return self.id
        return None

    @property
    def amount_dollars(self) -> Optional[float]:
        cents = self.amount_total if self.amount_total is not None else self.amount
        if cents is None:
            return None
        return cents / 100


class PaymentEventData(BaseModel):
    model_config = {"extra": "ignore"}

    object: PaymentObject


class PaymentEvent(BaseModel):
    """A payment-provider event whose signature has already been verified."""
    model_config = {"extra": "ignore"}

    id: Optional[str] = None
    type: str
    data: PaymentEventData
