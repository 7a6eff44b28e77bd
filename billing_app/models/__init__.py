# billing_app/models/__init__.py
"""
Models aggregator.

Importing this package registers every table on ``billing_app.db.Base`` so
``init_db()`` can create them, and lets callers do
``from billing_app.models import Subscription, PaymentIssue``.
"""
from billing_app.models.base import (  # noqa: F401
    PAYMENT_ISSUE_STATUSES,
    PLAN_BILLING_CYCLES,
    SUBSCRIPTION_STATUSES,
    utcnow,
)
from billing_app.models.users_model import User  # noqa: F401
from billing_app.models.plans_model import SubscriptionPlan  # noqa: F401
from billing_app.models.subscriptions_model import Subscription  # noqa: F401
from billing_app.models.payment_issues_model import PaymentIssue  # noqa: F401

__all__ = [
    "User",
    "SubscriptionPlan",
    "Subscription",
    "PaymentIssue",
    "PLAN_BILLING_CYCLES",
    "SUBSCRIPTION_STATUSES",
    "PAYMENT_ISSUE_STATUSES",
    "utcnow",
]
