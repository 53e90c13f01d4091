"""Hours of a penalty paid out of a newly purchased subscription. Append-only."""
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer
from sqlalchemy.sql import func

from tappark.db.base import Base


class PenaltySettlement(Base):
    __tablename__ = "penalty_settlements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    penalty_id = Column(Integer, ForeignKey("penalties.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False)
    hours = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
