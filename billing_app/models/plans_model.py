# billing_app/models/plans_model.py
from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship

from billing_app.db import Base
from billing_app.models.base import utcnow


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    billing_cycle = Column(String(16), nullable=False)  # monthly / quarterly / annually
    features = Column(JSON, nullable=False, default=list)
    stripe_price_id = Column(String(128), nullable=True)
    # soft delete flag; subscriptions keep pointing at inactive plans
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    subscriptions = relationship("Subscription", back_populates="plan")
