"""
Profile model - one row per application user
"""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from socialpulse.utils.database import Base
import enum


class PlanTier(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class SubscriptionStatus(str, enum.Enum):
    # The processor may send other active-equivalent values (e.g. "on_trial");
    # those are stored verbatim.
    ACTIVE = "active"
    ON_TRIAL = "on_trial"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, index=True)

    # Denormalized copy of the subscription state, kept in sync by the webhook handler
    subscription_tier = Column(String(20), nullable=False, default=PlanTier.FREE.value, server_default=PlanTier.FREE.value)
    subscription_status = Column(String(30))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subscription = relationship("Subscription", back_populates="profile", uselist=False)

    def __repr__(self):
        return f"<Profile(id='{self.id}', tier='{self.subscription_tier}', status='{self.subscription_status}')>"
