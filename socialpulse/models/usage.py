"""
Usage tracking model - per-user, per-feature, per-period counters (usage table)
"""

from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint, Index
from sqlalchemy.sql import func
from socialpulse.utils.database import Base


class UsageRecord(Base):
    __tablename__ = "usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    feature_key = Column(String(50), nullable=False)

    # Period bounds: [period_start, period_end)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    count = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "feature_key", "period_start", name="uq_usage_user_feature_period"),
        Index("ix_usage_user_period", "user_id", "period_start"),
    )

    def __repr__(self):
        return f"<UsageRecord(user_id='{self.user_id}', feature='{self.feature_key}', period={self.period_start}, count={self.count})>"
