import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String

from database import Base
from utils.clock import utcnow


class SyncDirection(enum.Enum):
    REMOTE_TO_LOCAL = "remote_to_local"
    LOCAL_TO_REMOTE = "local_to_remote"


class SyncedArticle(Base):
    """Dedup ledger for article replication, one row per Zammad article"""

    __tablename__ = "synced_articles"

    article_id = Column(Integer, primary_key=True, autoincrement=False)
    ticket_id = Column(Integer, nullable=False, index=True)
    thread_id = Column(String(32), nullable=False)
    local_message_id = Column(String(32), nullable=True)
    direction = Column(
        Enum(SyncDirection),
        nullable=False,
        default=SyncDirection.REMOTE_TO_LOCAL,
    )
    synced_at = Column(DateTime(timezone=True), default=utcnow, index=True)
