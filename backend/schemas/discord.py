from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field


@dataclass
class OutgoingFile:
    data: bytes
    filename: str


@dataclass
class ThreadInfo:
    id: str
    name: str
    archived: bool = False
    locked: bool = False


class LocalAttachment(BaseModel):
    url: str
    filename: str = "attachment"
    size: int = 0
    content_type: Optional[str] = None


class LocalMessage(BaseModel):
    """A message a human posted in a Discord ticket thread"""

    message_id: str
    channel_id: str
    author_id: str
    author_name: Optional[str] = None
    author_is_bot: bool = False
    content: str = ""
    attachments: List[LocalAttachment] = Field(default_factory=list)
