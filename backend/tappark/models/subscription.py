"""Purchased block of hours. hours_remaining + hours_used == hours_purchased; hours_remaining >= 0."""
from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func

from tappark.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purchase_date = Column(DateTime(timezone=True), nullable=False)
    hours_purchased = Column(Float, nullable=False)
    hours_remaining = Column(Float, nullable=False)
    hours_used = Column(Float, nullable=False, server_default="0", default=0.0)
    status = Column(String(16), nullable=False, server_default="active", default="active")  # active | exhausted
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("hours_remaining >= 0", name="ck_subscription_remaining_nonneg"),
        Index("ix_subscriptions_user_status_purchase", "user_id", "status", "purchase_date"),
    )
