from sqlalchemy import Column, DateTime, Integer, String

from database import Base
from utils.clock import utcnow


class TicketThread(Base):
    """One Discord thread per Zammad ticket. Closed tickets keep their row."""

    __tablename__ = "ticket_threads"

    ticket_id = Column(Integer, primary_key=True, autoincrement=False)
    ticket_number = Column(String(50), nullable=False)
    thread_id = Column(String(32), unique=True, nullable=False, index=True)
    header_message_id = Column(String(32), nullable=False)
    channel_id = Column(String(32), nullable=False)
    title = Column(String, nullable=True)
    state = Column(String(64), nullable=False, default="open")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
