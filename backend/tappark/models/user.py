"""Account holder. hour_balance caches SUM(hours_remaining) over active subscriptions."""
from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from tappark.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(String(16), nullable=False, server_default="user")  # user | attendant | admin | guest
    hour_balance = Column(Float, nullable=False, server_default="0", default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
