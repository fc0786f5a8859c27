from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CommandName(str, Enum):
    CLOSE = "close"
    STATE = "state"
    LOCK = "lock"
    ASSIGN = "assign"
    PRIORITY = "priority"
    TIME = "time"
    MERGE = "merge"
    TAG_ADD = "tag_add"
    TAG_REMOVE = "tag_remove"
    MAP_USER = "map_user"
    LIMIT_SET = "attachment_limit_set"
    LIMIT_CLEAR = "attachment_limit_clear"


class CommandRequest(BaseModel):
    """A parsed command relayed from Discord"""

    command: CommandName
    actor_id: str = Field(..., description="Discord user running the command")
    thread_id: Optional[str] = None

    state: Optional[str] = None
    until: Optional[datetime] = None
    assignee_id: Optional[str] = None
    priority: Optional[str] = None
    minutes: Optional[float] = None
    target_number: Optional[str] = None
    tag: Optional[str] = None
    target_actor_id: Optional[str] = None
    email: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None


class CommandResponse(BaseModel):
    reply: str
