from sqlalchemy import Column, Integer, String

from database import Base


class ActorMap(Base):
    """Links a Discord user to the Zammad agent they act as"""

    __tablename__ = "actor_map"

    local_actor_id = Column(String(32), primary_key=True)
    remote_email = Column(String, nullable=False)
    remote_id = Column(Integer, nullable=True, index=True)
