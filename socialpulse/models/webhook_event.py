"""
Webhook event audit log - one row per received processor event
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, JSON
from sqlalchemy.sql import func, false
from socialpulse.utils.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(String(100), index=True)
    payload = Column(JSON, nullable=False)

    processed = Column(Boolean, nullable=False, default=False, server_default=false())
    error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<WebhookEvent(event_id='{self.event_id}', type='{self.event_type}', processed={self.processed})>"
