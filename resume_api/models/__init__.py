"""
SQLAlchemy models for the credit ledger.
"""
from __future__ import annotations

import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_subscriptions_credits_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, unique=True, index=True)
    plan = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="active")
    credits = Column(Integer, nullable=False, default=0)
    provider_subscription_id = Column(Text)
    provider_customer_id = Column(Text)
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False, index=True)
    canceled_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CreditEvent(Base):
    """Append-only record of one successful credit debit."""

    __tablename__ = "credit_events"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_events_amount_positive"),
        Index("ix_credit_events_user_created", "user_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    feature = Column(Text, nullable=False)
    amount = Column(Integer, nullable=False)
    remaining_credits = Column(Integer, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SubscriptionEvent(Base):
    """Append-only audit record of a subscription lifecycle change."""

    __tablename__ = "subscription_events"
    __table_args__ = (
        Index("ix_subscription_events_user_created", "user_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    event_type = Column(Text, nullable=False)
    plan = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    credits_before = Column(Integer)
    credits_after = Column(Integer, nullable=False)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
