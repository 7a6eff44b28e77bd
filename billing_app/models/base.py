# billing_app/models/base.py
from datetime import datetime, timezone

# Columns store naive UTC timestamps.
PLAN_BILLING_CYCLES = ("monthly", "quarterly", "annually")
SUBSCRIPTION_STATUSES = ("active", "trial", "cancelled", "past_due")
PAYMENT_ISSUE_STATUSES = ("pending", "resolved", "failed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
