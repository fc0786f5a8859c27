from sqlalchemy import Column, DateTime, String

from database import Base
from utils.clock import utcnow


class AppSetting(Base):
    """Ad hoc key/value overrides editable at runtime by admins"""

    __tablename__ = "app_settings"

    key = Column(String(128), primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
