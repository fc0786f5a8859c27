from .actor_map import ActorMap
from .app_setting import AppSetting
from .synced_article import SyncDirection, SyncedArticle
from .ticket_thread import TicketThread
from .webhook_delivery import WebhookDelivery
from database import Base

__all__ = [
    "ActorMap",
    "AppSetting",
    "SyncDirection",
    "SyncedArticle",
    "TicketThread",
    "WebhookDelivery",
    "Base",
]
