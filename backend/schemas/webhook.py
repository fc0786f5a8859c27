from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class WebhookEventKind(str, Enum):
    TICKET_UPDATE = "ticket_update"
    ARTICLE_CREATED = "article_created"


class WebhookAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    filename: str = "attachment"
    size: int = 0
    url: Optional[str] = None


class WebhookArticle(BaseModel):
    """Article block of a Zammad trigger webhook (optional)"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int = Field(..., gt=0)
    ticket_id: Optional[int] = None
    body: str = ""
    sender: Optional[str] = Field(
        None, description="Resolved sender name: Customer, Agent or System"
    )
    type: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    subject: Optional[str] = None
    internal: bool = False
    content_type: Optional[str] = None
    created_at: Optional[str] = None
    attachments: List[WebhookAttachment] = Field(default_factory=list)


class WebhookTicket(BaseModel):
    """Ticket block of a Zammad trigger webhook. Only `id` is load-bearing,
    everything else is re-fetched from the API before use."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., gt=0)
    number: Optional[str] = None
    title: Optional[str] = None
    state: Optional[str] = None
    priority: Optional[str] = None
    group: Optional[str] = None
    owner_id: Optional[int] = None
    customer_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("number", mode="before")
    @classmethod
    def coerce_number(cls, value):
        if value is None:
            return value
        return str(value)


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ticket: WebhookTicket
    article: Optional[WebhookArticle] = None

    @model_validator(mode="after")
    def article_belongs_to_ticket(self):
        if (
            self.article is not None
            and self.article.ticket_id is not None
            and self.article.ticket_id != self.ticket.id
        ):
            raise ValueError(
                f"article {self.article.id} belongs to ticket "
                f"{self.article.ticket_id}, not {self.ticket.id}"
            )
        return self

    @property
    def kind(self) -> WebhookEventKind:
        if self.article is not None:
            return WebhookEventKind.ARTICLE_CREATED
        return WebhookEventKind.TICKET_UPDATE

    @property
    def article_sender(self) -> Optional[str]:
        return self.article.sender if self.article else None
