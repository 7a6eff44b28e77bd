# billing_app/events.py
"""
Event ingress: verify a Stripe webhook delivery and turn it into a typed event.

Known event types are a pydantic discriminated union on ``type``; anything
else becomes an ``UnrecognizedEvent`` so the reconciler can log and ignore it.
"""
import json
import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from billing_app.exceptions import AuthenticationError, ValidationError
from billing_app.payments import verify_webhook_signature

log = logging.getLogger("billing_app.events")


def _customer_id(value: Any) -> Any:
    # expanded customer objects carry the id we need
    if isinstance(value, dict):
        return value.get("id")
    return value


# =====================================================
# STRIPE OBJECTS (only the fields we read)
# =====================================================

class StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None


class PaymentError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[str] = None
    code: Optional[str] = None


class PaymentIntentObject(StripeObject):
    amount: int
    currency: str = "usd"
    customer: Optional[str] = None
    last_payment_error: Optional[PaymentError] = None

    @field_validator("customer", mode="before")
    @classmethod
    def normalize_customer(cls, value: Any) -> Any:
        return _customer_id(value)

    @property
    def failure_message(self) -> Optional[str]:
        return self.last_payment_error.message if self.last_payment_error else None


class InvoiceObject(StripeObject):
    amount_paid: int
    subscription: Optional[str] = None
    customer: Optional[str] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def normalize_customer(cls, value: Any) -> Any:
        return _customer_id(value)

    @model_validator(mode="before")
    @classmethod
    def subscription_from_parent(cls, data: Any) -> Any:
        # newer API versions move invoice.subscription under parent.subscription_details
        if isinstance(data, dict) and not data.get("subscription"):
            parent = data.get("parent") or {}
            details = parent.get("subscription_details") or {}
            if details.get("subscription"):
                data = {**data, "subscription": details["subscription"]}
        return data


class SubscriptionObject(StripeObject):
    id: str
    customer: Optional[str] = None
    status: Optional[str] = None

    @field_validator("customer", mode="before")
    @classmethod
    def normalize_customer(cls, value: Any) -> Any:
        return _customer_id(value)


class PaymentIntentData(BaseModel):
    object: PaymentIntentObject


class InvoiceData(BaseModel):
    object: InvoiceObject


class SubscriptionData(BaseModel):
    object: SubscriptionObject


# =====================================================
# EVENTS
# =====================================================

class ProcessorEventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    created: Optional[int] = None
    livemode: bool = False

    @property
    def dedup_key(self) -> Optional[str]:
        """Processor event id, else object id plus event time. None when neither is known."""
        if self.id:
            return self.id
        obj = getattr(getattr(self, "data", None), "object", None)
        object_id = getattr(obj, "id", None)
        if object_id and self.created is not None:
            return f"{object_id}:{self.created}"
        return None


class PaymentSucceededEvent(ProcessorEventBase):
    type: Literal["payment_intent.succeeded"]
    data: PaymentIntentData


class PaymentFailedEvent(ProcessorEventBase):
    type: Literal["payment_intent.payment_failed"]
    data: PaymentIntentData


class InvoicePaidEvent(ProcessorEventBase):
    type: Literal["invoice.payment_succeeded"]
    data: InvoiceData


class SubscriptionCreatedEvent(ProcessorEventBase):
    type: Literal["customer.subscription.created"]
    data: SubscriptionData


class SubscriptionUpdatedEvent(ProcessorEventBase):
    type: Literal["customer.subscription.updated"]
    data: SubscriptionData


class SubscriptionDeletedEvent(ProcessorEventBase):
    type: Literal["customer.subscription.deleted"]
    data: SubscriptionData


class UnrecognizedEvent(ProcessorEventBase):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[
        PaymentSucceededEvent,
        PaymentFailedEvent,
        InvoicePaidEvent,
        SubscriptionCreatedEvent,
        SubscriptionUpdatedEvent,
        SubscriptionDeletedEvent,
    ],
    Field(discriminator="type"),
]
ProcessorEvent = Union[KnownEvent, UnrecognizedEvent]

KNOWN_EVENT_TYPES = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "invoice.payment_succeeded",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})

_known_adapter = TypeAdapter(KnownEvent)


def parse_event(raw: Union[bytes, str, Dict[str, Any]]) -> ProcessorEvent:
    """Parse a webhook body into a typed event. Raises ValidationError on malformed input."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("Webhook body is not valid UTF-8")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Webhook body is not valid JSON: {exc.msg}")

    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise ValidationError("Webhook body is not a Stripe event")

    try:
        if raw["type"] in KNOWN_EVENT_TYPES:
            return _known_adapter.validate_python(raw)
        return UnrecognizedEvent.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Malformed {raw['type']} event",
            details=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()],
        )


class EventIngress:
    """
    Verifies webhook deliveries against the signing secret. Without a secret
    it accepts unsigned JSON (development mode).
    """

    def __init__(self, webhook_secret: str = "", tolerance: int = 300):
        self.webhook_secret = webhook_secret or ""
        self.tolerance = tolerance

    @property
    def signed(self) -> bool:
        return bool(self.webhook_secret)

    def verify_and_parse(self, body: bytes, signature: Optional[str]) -> ProcessorEvent:
        if self.signed:
            if not signature:
                raise AuthenticationError("Missing stripe-signature header")
            if not verify_webhook_signature(body, signature, self.webhook_secret, self.tolerance):
                log.warning("Webhook signature verification failed.")
                raise AuthenticationError("Webhook signature verification failed")
        else:
            log.warning("STRIPE_WEBHOOK_SECRET not set; accepting unsigned webhook (development mode)")

        return parse_event(body)
