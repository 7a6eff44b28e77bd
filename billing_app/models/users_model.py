# billing_app/models/users_model.py
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from billing_app.db import Base
from billing_app.models.base import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    stripe_customer_id = Column(String(128), nullable=True, index=True)
    stripe_subscription_id = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    subscriptions = relationship("Subscription", back_populates="user")
    payment_issues = relationship("PaymentIssue", back_populates="user")
