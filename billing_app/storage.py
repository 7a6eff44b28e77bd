# billing_app/storage.py
"""
State store for users, plans, subscriptions and payment issues.

Every operation opens its own session from the injected factory and closes it
before returning; rows come back detached (the factory is built with
``expire_on_commit=False``) with the relationships each caller needs already
loaded. Any SQLAlchemy failure is re-raised as ``StorageError`` so the HTTP
layer answers 5xx and Stripe redelivers the webhook.

Calls are blocking. Async callers run them through
``starlette.concurrency.run_in_threadpool``.
"""
import logging
import math
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from billing_app import models
from billing_app.db import init_db
from billing_app.exceptions import NotFoundError, StorageError, ValidationError
from billing_app.models import PaymentIssue, Subscription, SubscriptionPlan, User, utcnow

log = logging.getLogger("billing_app.storage")

DEFAULT_PLANS = [
    {
        "name": "Basic Plan",
        "description": "Perfect for small teams and individuals",
        "price": Decimal("29"),
        "billing_cycle": "monthly",
        "features": ["Up to 5 team members", "Basic analytics", "Email support"],
    },
    {
        "name": "Professional",
        "description": "Advanced features for growing businesses",
        "price": Decimal("99"),
        "billing_cycle": "monthly",
        "features": ["Up to 25 team members", "Advanced analytics", "Priority support"],
    },
    {
        "name": "Enterprise",
        "description": "Complete solution for large organizations",
        "price": Decimal("299"),
        "billing_cycle": "monthly",
        "features": ["Unlimited team members", "Custom integrations", "Dedicated support"],
    },
]

_PLAN_FIELDS = {"name", "description", "price", "billing_cycle", "features", "stripe_price_id", "is_active"}
_SUBSCRIPTION_FIELDS = {
    "user_id", "plan_id", "status", "stripe_subscription_id",
    "current_period_start", "current_period_end", "cancelled_at",
}


def _pick(data: Dict[str, Any], allowed) -> Dict[str, Any]:
    unknown = set(data) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return dict(data)


class Storage:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def init_schema(self) -> None:
        init_db(self._session_factory.kw.get("bind"))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            log.exception("Storage operation failed")
            raise StorageError(f"Database error: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    # -------------------------------------------------
    # USERS
    # -------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        with self._session() as session:
            return session.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._session() as session:
            return session.execute(select(User).where(User.username == username)).scalars().first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            return session.execute(select(User).where(User.email == email)).scalars().first()

    def get_user_by_stripe_customer(self, stripe_customer_id: str) -> Optional[User]:
        with self._session() as session:
            stmt = (
                select(User)
                .where(User.stripe_customer_id == stripe_customer_id)
                .order_by(desc(User.id))
            )
            return session.execute(stmt).scalars().first()

    def create_user(
        self,
        username: str,
        email: str,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> User:
        with self._session() as session:
            user = User(
                username=username,
                email=email,
                stripe_customer_id=stripe_customer_id,
                stripe_subscription_id=stripe_subscription_id,
                created_at=utcnow(),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ValidationError("A user with this username or email already exists")
            session.refresh(user)
            return user

    def update_user_stripe_info(
        self,
        user_id: int,
        stripe_customer_id: str,
        stripe_subscription_id: Optional[str] = None,
    ) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            user.stripe_customer_id = stripe_customer_id
            if stripe_subscription_id:
                user.stripe_subscription_id = stripe_subscription_id
            session.commit()
            session.refresh(user)
            return user

    # -------------------------------------------------
    # SUBSCRIPTION PLANS
    # -------------------------------------------------
    def get_subscription_plans(self) -> List[SubscriptionPlan]:
        """Active plans only; soft-deleted plans stay readable through get_subscription_plan."""
        with self._session() as session:
            stmt = select(SubscriptionPlan).where(SubscriptionPlan.is_active.is_(True)).order_by(SubscriptionPlan.id)
            return list(session.execute(stmt).scalars().all())

    def get_subscription_plan(self, plan_id: int) -> Optional[SubscriptionPlan]:
        with self._session() as session:
            return session.get(SubscriptionPlan, plan_id)

    def create_subscription_plan(self, data: Dict[str, Any]) -> SubscriptionPlan:
        values = _pick(data, _PLAN_FIELDS)
        if values.get("billing_cycle") not in models.PLAN_BILLING_CYCLES:
            raise ValidationError("billing_cycle must be monthly, quarterly or annually")
        values.setdefault("features", [])
        values.setdefault("is_active", True)
        with self._session() as session:
            plan = SubscriptionPlan(created_at=utcnow(), **values)
            session.add(plan)
            session.commit()
            session.refresh(plan)
            return plan

    def update_subscription_plan(self, plan_id: int, changes: Dict[str, Any]) -> Optional[SubscriptionPlan]:
        values = _pick(changes, _PLAN_FIELDS)
        if "billing_cycle" in values and values["billing_cycle"] not in models.PLAN_BILLING_CYCLES:
            raise ValidationError("billing_cycle must be monthly, quarterly or annually")
        with self._session() as session:
            plan = session.get(SubscriptionPlan, plan_id)
            if plan is None:
                return None
            for key, value in values.items():
                setattr(plan, key, value)
            session.commit()
            session.refresh(plan)
            return plan

    def delete_subscription_plan(self, plan_id: int) -> bool:
        with self._session() as session:
            plan = session.get(SubscriptionPlan, plan_id)
            if plan is None:
                return False
            plan.is_active = False
            session.commit()
            log.info("Plan %s soft-deleted", plan_id)
            return True

    def seed_default_plans(self) -> int:
        with self._session() as session:
            existing = session.execute(select(func.count(SubscriptionPlan.id))).scalar_one()
            if existing:
                return 0
            now = utcnow()
            for plan_data in DEFAULT_PLANS:
                session.add(SubscriptionPlan(is_active=True, created_at=now, **plan_data))
            session.commit()
            log.info("Seeded %d default plans", len(DEFAULT_PLANS))
            return len(DEFAULT_PLANS)

    # -------------------------------------------------
    # SUBSCRIPTIONS
    # -------------------------------------------------
    def _detailed_subscriptions(self, session: Session, stmt) -> List[Subscription]:
        stmt = stmt.options(joinedload(Subscription.user), joinedload(Subscription.plan))
        rows = session.execute(stmt).unique().scalars().all()
        return [s for s in rows if s.user is not None and s.plan is not None]

    def get_subscriptions(self) -> List[Subscription]:
        with self._session() as session:
            return self._detailed_subscriptions(session, select(Subscription).order_by(Subscription.id))

    def get_recent_subscriptions(self, limit: int = 5) -> List[Subscription]:
        with self._session() as session:
            stmt = select(Subscription).order_by(desc(Subscription.created_at), desc(Subscription.id))
            return self._detailed_subscriptions(session, stmt)[:limit]

    def get_user_subscriptions(self, user_id: int) -> List[Subscription]:
        with self._session() as session:
            stmt = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(desc(Subscription.created_at), desc(Subscription.id))
            )
            return self._detailed_subscriptions(session, stmt)

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._session() as session:
            found = self._detailed_subscriptions(
                session, select(Subscription).where(Subscription.id == subscription_id)
            )
            return found[0] if found else None

    def create_subscription(self, data: Dict[str, Any]) -> Subscription:
        values = _pick(data, _SUBSCRIPTION_FIELDS)
        if values.get("status") not in models.SUBSCRIPTION_STATUSES:
            raise ValidationError("status must be one of: " + ", ".join(models.SUBSCRIPTION_STATUSES))
        with self._session() as session:
            if session.get(User, values.get("user_id")) is None:
                raise NotFoundError("User not found")
            if session.get(SubscriptionPlan, values.get("plan_id")) is None:
                raise NotFoundError("Plan not found")
            now = utcnow()
            if values["status"] == "cancelled" and not values.get("cancelled_at"):
                values["cancelled_at"] = now
            sub = Subscription(created_at=now, updated_at=now, **values)
            session.add(sub)
            session.commit()
            session.refresh(sub)
            return sub

    def update_subscription(self, subscription_id: int, changes: Dict[str, Any]) -> Optional[Subscription]:
        """
        Apply a partial update. A cancelled subscription can only stay
        cancelled; re-subscribing creates a new row.
        """
        values = _pick(changes, _SUBSCRIPTION_FIELDS)
        new_status = values.get("status")
        if new_status is not None and new_status not in models.SUBSCRIPTION_STATUSES:
            raise ValidationError("status must be one of: " + ", ".join(models.SUBSCRIPTION_STATUSES))
        with self._session() as session:
            sub = session.get(Subscription, subscription_id)
            if sub is None:
                return None
            if sub.status == "cancelled" and new_status not in (None, "cancelled"):
                raise ValidationError("Cancelled subscriptions cannot be reactivated; create a new subscription")
            if "plan_id" in values and session.get(SubscriptionPlan, values["plan_id"]) is None:
                raise NotFoundError("Plan not found")
            now = utcnow()
            if new_status == "cancelled" and sub.cancelled_at is None and not values.get("cancelled_at"):
                values["cancelled_at"] = now
            for key, value in values.items():
                setattr(sub, key, value)
            sub.updated_at = now
            session.commit()
            session.refresh(sub)
            return sub

    def get_customer_subscription(self, user_id: int) -> Optional[Subscription]:
        """Newest non-cancelled subscription for the user, else the newest of any status."""
        with self._session() as session:
            stmt = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(desc(Subscription.created_at), desc(Subscription.id))
            )
            rows = list(session.execute(stmt).scalars().all())
        for sub in rows:
            if sub.status != "cancelled":
                return sub
        return rows[0] if rows else None

    # -------------------------------------------------
    # PAYMENT ISSUES
    # -------------------------------------------------
    def get_payment_issues(self) -> List[PaymentIssue]:
        with self._session() as session:
            stmt = (
                select(PaymentIssue)
                .options(joinedload(PaymentIssue.user), joinedload(PaymentIssue.subscription))
                .order_by(PaymentIssue.id)
            )
            rows = session.execute(stmt).unique().scalars().all()
            return [i for i in rows if i.user is not None and i.subscription is not None]

    def get_payment_issue(self, issue_id: int) -> Optional[PaymentIssue]:
        with self._session() as session:
            return session.get(PaymentIssue, issue_id)

    def get_payment_issue_by_event(self, processor_event_id: str) -> Optional[PaymentIssue]:
        with self._session() as session:
            stmt = select(PaymentIssue).where(PaymentIssue.processor_event_id == processor_event_id)
            return session.execute(stmt).scalars().first()

    def create_payment_issue(
        self,
        subscription_id: int,
        user_id: int,
        reason: str,
        amount: Decimal,
        status: str = "pending",
        retry_date: Optional[datetime] = None,
        processor_event_id: Optional[str] = None,
    ) -> Tuple[PaymentIssue, bool]:
        """
        Insert a payment issue unless one already exists for
        ``processor_event_id``. Returns ``(issue, created)``.
        """
        if status not in models.PAYMENT_ISSUE_STATUSES:
            raise ValidationError("status must be one of: " + ", ".join(models.PAYMENT_ISSUE_STATUSES))
        with self._session() as session:
            if processor_event_id:
                existing = session.execute(
                    select(PaymentIssue).where(PaymentIssue.processor_event_id == processor_event_id)
                ).scalars().first()
                if existing is not None:
                    return existing, False

            issue = PaymentIssue(
                subscription_id=subscription_id,
                user_id=user_id,
                reason=reason,
                amount=amount,
                status=status,
                retry_date=retry_date,
                processor_event_id=processor_event_id,
                created_at=utcnow(),
            )
            session.add(issue)
            try:
                session.commit()
            except IntegrityError:
                # lost the race against a concurrent redelivery of the same event
                session.rollback()
                if not processor_event_id:
                    raise
                existing = session.execute(
                    select(PaymentIssue).where(PaymentIssue.processor_event_id == processor_event_id)
                ).scalars().first()
                if existing is None:
                    raise
                return existing, False
            session.refresh(issue)
            return issue, True

    def resolve_payment_issue(self, issue_id: int) -> Optional[PaymentIssue]:
        with self._session() as session:
            issue = session.get(PaymentIssue, issue_id)
            if issue is None:
                return None
            issue.status = "resolved"
            issue.resolved_at = utcnow()
            session.commit()
            session.refresh(issue)
            return issue

    # -------------------------------------------------
    # ANALYTICS
    # -------------------------------------------------
    def get_dashboard_metrics(self) -> Dict[str, Any]:
        with self._session() as session:
            subscriptions = session.execute(select(Subscription)).scalars().all()
            prices = {p.id: p.price for p in session.execute(select(SubscriptionPlan)).scalars().all()}
            pending_issues = session.execute(
                select(func.count(PaymentIssue.id)).where(PaymentIssue.status == "pending")
            ).scalar_one()

        active = [s for s in subscriptions if s.status == "active"]
        total_revenue = sum((Decimal(prices[s.plan_id]) for s in active if s.plan_id in prices), Decimal("0"))
        cancelled = sum(1 for s in subscriptions if s.status == "cancelled")
        churn = cancelled / (len(subscriptions) or 1) * 100

        return {
            "total_revenue": float(total_revenue),
            "active_subscriptions": len(active),
            "churn_rate": math.floor(churn * 10 + 0.5) / 10,
            "failed_payments": pending_issues,
        }
