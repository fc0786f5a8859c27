from .discord import LocalAttachment, LocalMessage, OutgoingFile, ThreadInfo
from .ticket import TicketView
from .webhook import WebhookArticle, WebhookEventKind, WebhookPayload
from .zammad import (
    ZammadArticle,
    ZammadAttachment,
    ZammadState,
    ZammadTicket,
    ZammadUser,
)

__all__ = [
    "LocalAttachment",
    "LocalMessage",
    "OutgoingFile",
    "ThreadInfo",
    "TicketView",
    "WebhookArticle",
    "WebhookEventKind",
    "WebhookPayload",
    "ZammadArticle",
    "ZammadAttachment",
    "ZammadState",
    "ZammadTicket",
    "ZammadUser",
]
