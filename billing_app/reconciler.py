# billing_app/reconciler.py
"""
Reconciler: turns verified Stripe events into local state changes and
dashboard broadcasts.

Handlers are registered per event type, so each one can be exercised on its
own. Stripe delivers at least once and in no particular order; handlers must
tolerate redelivery and must not assume one event for a subscription arrives
before another. The only write today, payment-issue creation, is keyed by the
event's dedup key.

A storage failure propagates (the webhook answers 5xx and Stripe redelivers).
Nothing here retries.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from billing_app.events import (
    InvoicePaidEvent,
    PaymentFailedEvent,
    PaymentSucceededEvent,
    ProcessorEvent,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
)
from billing_app.models import utcnow
from billing_app.payments import to_major_units
from billing_app.storage import Storage
from billing_app.ws_broadcast import BroadcastEvent, BroadcastHub

log = logging.getLogger("billing_app.reconciler")

DEFAULT_FAILURE_REASON = "Payment failed"

Handler = Callable[[ProcessorEvent, datetime], Awaitable[Optional[BroadcastEvent]]]


# =================================================
# CUSTOMER MAPPING
# =================================================
@dataclass(frozen=True)
class CustomerMapping:
    user_id: int
    subscription_id: int


class CustomerResolver(Protocol):
    async def resolve(self, customer_id: str) -> Optional[CustomerMapping]:
        ...


class StorageCustomerResolver:
    """
    Maps a Stripe customer id to the local user holding it and that user's
    current subscription. ``fallback`` is used for customers we cannot map;
    without one the caller gets None.
    """

    def __init__(self, storage: Storage, fallback: Optional[CustomerMapping] = None):
        self._storage = storage
        self.fallback = fallback

    async def resolve(self, customer_id: str) -> Optional[CustomerMapping]:
        user = await run_in_threadpool(self._storage.get_user_by_stripe_customer, customer_id)
        if user is not None:
            sub = await run_in_threadpool(self._storage.get_customer_subscription, user.id)
            if sub is not None:
                return CustomerMapping(user_id=user.id, subscription_id=sub.id)
            log.warning("Stripe customer %s maps to user %s with no subscription", customer_id, user.id)

        if self.fallback is not None:
            log.warning("Unmapped Stripe customer %s; using placeholder %s", customer_id, self.fallback)
        return self.fallback


def build_customer_resolver(
    storage: Storage,
    policy: str = "skip",
    placeholder_user_id: Optional[int] = None,
    placeholder_subscription_id: Optional[int] = None,
) -> StorageCustomerResolver:
    if policy == "skip":
        return StorageCustomerResolver(storage)
    if policy == "placeholder":
        if placeholder_user_id is None or placeholder_subscription_id is None:
            raise ValueError(
                "UNMAPPED_CUSTOMER_POLICY=placeholder needs PLACEHOLDER_USER_ID and PLACEHOLDER_SUBSCRIPTION_ID"
            )
        return StorageCustomerResolver(
            storage, fallback=CustomerMapping(placeholder_user_id, placeholder_subscription_id)
        )
    raise ValueError(f"Unknown UNMAPPED_CUSTOMER_POLICY: {policy!r}")


# =================================================
# RECONCILER
# =================================================
class Reconciler:
    def __init__(
        self,
        storage: Storage,
        hub: BroadcastHub,
        resolver: CustomerResolver,
        retry_after: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._hub = hub
        self._resolver = resolver
        self.retry_after = retry_after
        self._clock = clock
        self._handlers: Dict[str, Handler] = {}

        self.register("payment_intent.succeeded", self.handle_payment_succeeded)
        self.register("payment_intent.payment_failed", self.handle_payment_failed)
        self.register("invoice.payment_succeeded", self.handle_invoice_paid)
        self.register("customer.subscription.created", self.handle_subscription_created)
        self.register("customer.subscription.updated", self.handle_subscription_updated)
        self.register("customer.subscription.deleted", self.handle_subscription_deleted)

    def register(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type] = handler

    def handler_for(self, event_type: str) -> Optional[Handler]:
        return self._handlers.get(event_type)

    @property
    def event_types(self):
        return frozenset(self._handlers)

    async def dispatch(self, event: ProcessorEvent) -> Optional[BroadcastEvent]:
        handler = self._handlers.get(event.type)
        if handler is None:
            log.info("Unhandled event type %s", event.type)
            return None
        return await handler(event, self._clock())

    # -------------------------------------------------
    # PAYMENTS
    # -------------------------------------------------
    async def handle_payment_succeeded(self, event: PaymentSucceededEvent, received_at: datetime):
        intent = event.data.object
        log.info("Payment for %s succeeded!", intent.amount)
        return self._hub.broadcast("payment_success", {
            "amount": to_major_units(intent.amount),
            "currency": intent.currency,
            "customerId": intent.customer,
        })

    async def handle_payment_failed(self, event: PaymentFailedEvent, received_at: datetime):
        intent = event.data.object
        log.info("Payment for %s failed!", intent.amount)

        if intent.customer:
            await self._record_payment_issue(event, received_at)

        return self._hub.broadcast("payment_failed", {
            "amount": to_major_units(intent.amount),
            "reason": intent.failure_message,
            "customerId": intent.customer,
        })

    async def _record_payment_issue(self, event: PaymentFailedEvent, received_at: datetime) -> None:
        intent = event.data.object
        key = event.dedup_key

        if key:
            existing = await run_in_threadpool(self._storage.get_payment_issue_by_event, key)
            if existing is not None:
                log.info("Duplicate delivery of %s; payment issue %s already recorded", key, existing.id)
                return

        target = await self._resolver.resolve(intent.customer)
        if target is None:
            log.warning("No local user for Stripe customer %s; payment issue not recorded", intent.customer)
            return

        issue, created = await run_in_threadpool(
            self._storage.create_payment_issue,
            subscription_id=target.subscription_id,
            user_id=target.user_id,
            reason=intent.failure_message or DEFAULT_FAILURE_REASON,
            amount=Decimal(intent.amount) / Decimal(100),
            status="pending",
            retry_date=received_at + self.retry_after,
            processor_event_id=key,
        )
        if created:
            log.info("Payment issue %s opened for user %s", issue.id, target.user_id)

    async def handle_invoice_paid(self, event: InvoicePaidEvent, received_at: datetime):
        invoice = event.data.object
        log.info("Invoice payment succeeded for %s", invoice.amount_paid)
        return self._hub.broadcast("invoice_paid", {
            "amount": to_major_units(invoice.amount_paid),
            "subscriptionId": invoice.subscription,
            "customerId": invoice.customer,
        })

    # -------------------------------------------------
    # SUBSCRIPTIONS
    # -------------------------------------------------
    async def handle_subscription_created(self, event: SubscriptionCreatedEvent, received_at: datetime):
        sub = event.data.object
        log.info("Subscription created: %s", sub.id)
        return self._hub.broadcast("subscription_created", {
            "subscriptionId": sub.id,
            "customerId": sub.customer,
            "status": sub.status,
        })

    async def handle_subscription_updated(self, event: SubscriptionUpdatedEvent, received_at: datetime):
        sub = event.data.object
        log.info("Subscription updated: %s", sub.id)
        return self._hub.broadcast("subscription_updated", {
            "subscriptionId": sub.id,
            "customerId": sub.customer,
            "status": sub.status,
        })

    async def handle_subscription_deleted(self, event: SubscriptionDeletedEvent, received_at: datetime):
        sub = event.data.object
        log.info("Subscription cancelled: %s", sub.id)
        return self._hub.broadcast("subscription_cancelled", {
            "subscriptionId": sub.id,
            "customerId": sub.customer,
        })
