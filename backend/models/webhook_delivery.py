from sqlalchemy import Column, DateTime, String

from database import Base
from utils.clock import utcnow


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    delivery_id = Column(String(128), primary_key=True)
    received_at = Column(DateTime(timezone=True), default=utcnow, index=True)
