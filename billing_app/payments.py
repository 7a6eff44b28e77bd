# -----------------------------------------------------------
# billing_app/payments.py
# Stripe gateway + webhook signature verification
# -----------------------------------------------------------

import logging
from typing import Any, Dict, Optional, Union

import stripe

from billing_app.exceptions import ProcessorError, ProcessorNotConfigured

log = logging.getLogger("billing_app.payments")

# Stripe subscription status -> local Subscription.status
_STATUS_MAP = {
    "active": "active",
    "trialing": "trial",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "cancelled",
    "incomplete_expired": "cancelled",
}


def map_processor_status(status: Optional[str]) -> str:
    """Incomplete and unknown statuses count as trial until the first invoice is paid."""
    return _STATUS_MAP.get(status or "", "trial")


def to_major_units(amount_minor: int) -> float:
    return amount_minor / 100


# -----------------------------------------------------------
# Verify Stripe Webhook Signature
# -----------------------------------------------------------
def verify_webhook_signature(
    payload: Union[bytes, str],
    sig_header: str,
    secret: str,
    tolerance: int = 300,
) -> bool:
    """
    Check the ``stripe-signature`` header (``t=...,v1=...``) against the
    exact request bytes. Returns False instead of raising.
    """
    if not secret or not sig_header:
        return False
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return False
    try:
        stripe.WebhookSignature.verify_header(payload, sig_header, secret, tolerance)
        return True
    except stripe.SignatureVerificationError as exc:
        log.info("Stripe signature rejected: %s", exc.user_message or exc)
        return False


# -----------------------------------------------------------
# Stripe Gateway
# -----------------------------------------------------------
class StripeGateway:
    """Thin wrapper over the Stripe API calls the checkout routes need."""

    def __init__(self, secret_key: str = "", api_version: str = ""):
        self.secret_key = secret_key or ""
        self.api_version = api_version or None
        if not self.secret_key:
            log.warning("STRIPE_SECRET_KEY not found. Stripe functionality will be limited.")

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def _request_options(self) -> Dict[str, Any]:
        if not self.configured:
            raise ProcessorNotConfigured()
        options = {"api_key": self.secret_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    def create_payment_intent(self, amount: float, currency: str = "usd") -> Dict[str, Any]:
        options = self._request_options()
        try:
            intent = stripe.PaymentIntent.create(
                amount=int(round(amount * 100)),  # cents
                currency=currency,
                **options,
            )
        except stripe.StripeError as exc:
            log.exception("Error creating payment intent")
            raise ProcessorError("Error creating payment intent: " + (exc.user_message or str(exc)))
        return {"id": intent.id, "client_secret": intent.client_secret}

    def create_customer(self, email: str, name: Optional[str] = None) -> str:
        options = self._request_options()
        try:
            customer = stripe.Customer.create(email=email, name=name, **options)
        except stripe.StripeError as exc:
            log.exception("Error creating Stripe customer for %s", email)
            raise ProcessorError("Error creating customer: " + (exc.user_message or str(exc)))
        return customer.id

    def create_subscription(self, customer_id: str, price_id: str) -> Dict[str, Any]:
        options = self._request_options()
        try:
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                payment_behavior="default_incomplete",
                expand=["latest_invoice.payment_intent"],
                **options,
            )
        except stripe.StripeError as exc:
            log.exception("Error creating Stripe subscription for %s", customer_id)
            raise ProcessorError("Error creating subscription: " + (exc.user_message or str(exc)))

        return {
            "id": subscription.id,
            "status": getattr(subscription, "status", None),
            "client_secret": _latest_invoice_client_secret(subscription),
        }


def _latest_invoice_client_secret(subscription: Any) -> Optional[str]:
    invoice = getattr(subscription, "latest_invoice", None)
    if invoice is None or isinstance(invoice, str):
        return None
    intent = getattr(invoice, "payment_intent", None)
    if intent is not None and not isinstance(intent, str):
        return getattr(intent, "client_secret", None)
    secret = getattr(invoice, "confirmation_secret", None)
    if secret is not None:
        return getattr(secret, "client_secret", None)
    return None
