# -----------------------------------------------------------
# billing_app/api/payment_routes.py
# Stripe checkout helpers: one-time payment intents and the
# plan-subscribe flow that creates local Subscription records
# -----------------------------------------------------------
import logging

from fastapi import APIRouter, Depends

from billing_app.deps import get_processor, get_storage
from billing_app.exceptions import ProcessorNotConfigured, ValidationError
from billing_app.payments import StripeGateway, map_processor_status
from billing_app.schemas import (
    CreateSubscriptionOut,
    CreateSubscriptionRequest,
    PaymentIntentOut,
    PaymentIntentRequest,
)
from billing_app.storage import Storage

log = logging.getLogger("billing_app.payment_routes")

router = APIRouter(prefix="", tags=["payment"])


# ---------------------------------------------------------
# ONE-TIME PAYMENT INTENT
# ---------------------------------------------------------
@router.post("/create-payment-intent", response_model=PaymentIntentOut)
def create_payment_intent(
    payload: PaymentIntentRequest,
    processor: StripeGateway = Depends(get_processor),
):
    intent = processor.create_payment_intent(payload.amount, currency=payload.currency)
    return PaymentIntentOut(client_secret=intent["client_secret"])


# ---------------------------------------------------------
# SUBSCRIBE TO PLAN
# ---------------------------------------------------------
@router.post("/create-subscription", response_model=CreateSubscriptionOut)
def create_subscription(
    payload: CreateSubscriptionRequest,
    processor: StripeGateway = Depends(get_processor),
    storage: Storage = Depends(get_storage),
):
    if not processor.configured:
        raise ProcessorNotConfigured()

    plan = storage.get_subscription_plan(payload.plan_id)
    if plan is None or not plan.stripe_price_id or not plan.is_active:
        raise ValidationError("Invalid plan or Stripe price not configured")

    user = storage.get_user_by_email(payload.email)
    if user is not None and user.stripe_customer_id:
        # keep one Stripe customer per user so earlier subscriptions still map back
        customer_id = user.stripe_customer_id
    else:
        customer_id = processor.create_customer(payload.email, payload.name)
    remote = processor.create_subscription(customer_id, plan.stripe_price_id)

    if user is None:
        user = storage.create_user(username=payload.email, email=payload.email)
    storage.update_user_stripe_info(user.id, customer_id, remote["id"])

    local = storage.create_subscription({
        "user_id": user.id,
        "plan_id": plan.id,
        "status": map_processor_status(remote.get("status")),
        "stripe_subscription_id": remote["id"],
    })
    log.info("Subscription %s (stripe %s) created for user %s", local.id, remote["id"], user.id)

    return CreateSubscriptionOut(
        subscription_id=remote["id"],
        client_secret=remote.get("client_secret"),
        local_subscription_id=local.id,
    )
