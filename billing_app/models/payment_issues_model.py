# billing_app/models/payment_issues_model.py
from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from billing_app.db import Base
from billing_app.models.base import utcnow


class PaymentIssue(Base):
    __tablename__ = "payment_issues"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(16), nullable=False, default="pending")  # pending / resolved / failed
    retry_date = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    # Stripe event id (or payment intent id + event time); one issue per failure notification
    processor_event_id = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="payment_issues")
    subscription = relationship("Subscription", back_populates="payment_issues")
