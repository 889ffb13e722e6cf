"""
Subscription model - durable per-user subscription state (subscriptions table)
"""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from socialpulse.utils.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # One subscription row per user; every write is an upsert on this column
    user_id = Column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False)
    external_id = Column(String(100), index=True)

    plan_id = Column(String(20), nullable=False, default="free")
    status = Column(String(30), nullable=False)
    current_period_start = Column(DateTime(timezone=True))
    current_period_end = Column(DateTime(timezone=True))
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    profile = relationship("Profile", back_populates="subscription")

    def __repr__(self):
        return (
            f"<Subscription(user_id='{self.user_id}', external_id='{self.external_id}', "
            f"plan='{self.plan_id}', status='{self.status}')>"
        )
