from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ZammadModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ZammadTicket(ZammadModel):
    id: int
    number: str
    title: str = ""
    state: str = "open"
    state_id: Optional[int] = None
    priority: Optional[str] = None
    priority_id: Optional[int] = None
    group: Optional[str] = None
    group_id: Optional[int] = None
    owner_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    escalation_at: Optional[str] = None
    pending_time: Optional[str] = None

    @field_validator("number", mode="before")
    @classmethod
    def coerce_number(cls, value):
        return str(value)

    @field_validator("title", mode="before")
    @classmethod
    def coerce_title(cls, value):
        return value or ""


class ZammadAttachment(ZammadModel):
    id: int
    filename: str = "attachment"
    size: int = 0
    preferences: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("size", mode="before")
    @classmethod
    def coerce_size(cls, value):
        # Zammad reports size as a string for some storage backends
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @property
    def content_type(self) -> Optional[str]:
        return self.preferences.get("Content-Type") or self.preferences.get(
            "Mime-Type"
        )


class ZammadArticle(ZammadModel):
    id: int
    ticket_id: int
    sender: str = "Customer"
    type: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    subject: Optional[str] = None
    body: str = ""
    content_type: Optional[str] = None
    internal: bool = False
    created_at: Optional[str] = None
    attachments: List[ZammadAttachment] = Field(default_factory=list)

    @property
    def is_system(self) -> bool:
        return self.sender == "System"


class ZammadUser(ZammadModel):
    id: int
    login: Optional[str] = None
    firstname: Optional[str] = ""
    lastname: Optional[str] = ""
    email: Optional[str] = ""
    active: bool = True
    role_ids: List[int] = Field(default_factory=list)

    @property
    def full_name(self) -> Optional[str]:
        name = f"{self.firstname or ''} {self.lastname or ''}".strip()
        return name or None


class ZammadState(ZammadModel):
    id: int
    name: str


class ZammadHistoryEntry(ZammadModel):
    id: int
    created_at: Optional[str] = None
    object: Optional[str] = None
    type: Optional[str] = None
    attribute: Optional[str] = None
    value_from: Optional[str] = None
    value_to: Optional[str] = None
    created_by_id: Optional[int] = None


class DownloadedFile(BaseModel):
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"
