# billing_app/schemas.py

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

BillingCycle = Literal["monthly", "quarterly", "annually"]
SubscriptionStatus = Literal["active", "trial", "cancelled", "past_due"]
PaymentIssueStatus = Literal["pending", "resolved", "failed"]


class ApiModel(BaseModel):
    """Dashboard clients speak camelCase; snake_case is accepted on input too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# =====================================================
# USERS
# =====================================================

class UserOut(ApiModel):
    id: int
    username: str
    email: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: datetime


# =====================================================
# SUBSCRIPTION PLANS
# =====================================================

class PlanCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    billing_cycle: BillingCycle
    features: List[str] = Field(default_factory=list)
    stripe_price_id: Optional[str] = None
    is_active: bool = True


class PlanUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    billing_cycle: Optional[BillingCycle] = None
    features: Optional[List[str]] = None
    stripe_price_id: Optional[str] = None
    is_active: Optional[bool] = None


class PlanOut(ApiModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    billing_cycle: str
    features: List[str]
    stripe_price_id: Optional[str] = None
    is_active: bool
    created_at: datetime


# =====================================================
# SUBSCRIPTIONS
# =====================================================

class SubscriptionCreate(ApiModel):
    user_id: int
    plan_id: int
    status: SubscriptionStatus
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class SubscriptionUpdate(ApiModel):
    plan_id: Optional[int] = None
    status: Optional[SubscriptionStatus] = None
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class SubscriptionOut(ApiModel):
    id: int
    user_id: int
    plan_id: int
    status: str
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class SubscriptionDetailOut(SubscriptionOut):
    user: UserOut
    plan: PlanOut


# =====================================================
# PAYMENT ISSUES
# =====================================================

class PaymentIssueOut(ApiModel):
    id: int
    subscription_id: int
    user_id: int
    reason: str
    amount: Decimal
    status: str
    retry_date: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    processor_event_id: Optional[str] = None
    created_at: datetime


class PaymentIssueDetailOut(PaymentIssueOut):
    user: UserOut
    subscription: SubscriptionOut


# =====================================================
# DASHBOARD / REALTIME
# =====================================================

class DashboardMetrics(ApiModel):
    total_revenue: float
    active_subscriptions: int
    churn_rate: float
    failed_payments: int


class RealtimeFeatures(ApiModel):
    real_time_payments: bool
    webhook_processing: bool
    live_metrics: bool = True
    instant_notifications: bool = True


class RealtimeStatus(ApiModel):
    stripe_configured: bool
    webhook_endpoint: str
    active_connections: int
    features: RealtimeFeatures


class WebhookAck(ApiModel):
    received: bool = True


# =====================================================
# STRIPE CHECKOUT
# =====================================================

class PaymentIntentRequest(ApiModel):
    amount: float = Field(..., gt=0)
    currency: str = "usd"


class PaymentIntentOut(ApiModel):
    client_secret: Optional[str] = None


class CreateSubscriptionRequest(ApiModel):
    plan_id: int
    email: EmailStr
    name: Optional[str] = None


class CreateSubscriptionOut(ApiModel):
    subscription_id: str
    client_secret: Optional[str] = None
    local_subscription_id: int
