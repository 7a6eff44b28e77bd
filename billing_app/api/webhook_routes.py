# billing_app/api/webhook_routes.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from billing_app.deps import get_ingress, get_processor, get_reconciler
from billing_app.events import EventIngress
from billing_app.exceptions import AppException, ProcessorNotConfigured
from billing_app.payments import StripeGateway
from billing_app.reconciler import Reconciler
from billing_app.schemas import WebhookAck

log = logging.getLogger("billing_app.webhook_routes")

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    ingress: EventIngress = Depends(get_ingress),
    reconciler: Reconciler = Depends(get_reconciler),
    processor: StripeGateway = Depends(get_processor),
):
    """
    Stripe webhook receiver. The body is read raw so the signature is checked
    against the exact bytes Stripe signed.

    400: bad signature or payload. 500: processing failed; Stripe redelivers.
    """
    if not processor.configured:
        raise ProcessorNotConfigured(status_code=400)

    body = await request.body()
    event = ingress.verify_and_parse(body, request.headers.get("stripe-signature"))
    log.info("Stripe webhook received: %s (%s)", event.type, event.id)

    try:
        await reconciler.dispatch(event)
    except AppException:
        raise
    except Exception:
        log.exception("Error processing webhook %s", event.id)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return WebhookAck(received=True)
