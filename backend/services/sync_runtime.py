import logging
from typing import Any, Awaitable, Optional

from fastapi import Request

from config import settings
from database import SessionLocal
from schemas.webhook import WebhookPayload
from services.article_sync_service import ArticleSyncService
from services.attachment_limit_service import AttachmentLimitService
from services.discord_service import DiscordService
from services.health_service import HealthMonitor
from services.reconciliation_service import ReconciliationService
from services.state_store import StateStore
from services.task_queue import BackgroundTasks, EgressQueue, ResourceQueue
from services.thread_service import ThreadLifecycleManager
from services.ticket_command_service import TicketCommandService
from services.ticket_sync_service import TicketSyncService
from services.webhook_service import WebhookService
from services.zammad_service import ZammadService

logger = logging.getLogger(__name__)


class SyncRuntime:
    """Wires the sync engine together. One instance per process."""

    def __init__(
        self,
        store: StateStore,
        zammad: ZammadService,
        discord: DiscordService,
        tasks: Optional[BackgroundTasks] = None,
        queue: Optional[ResourceQueue] = None,
    ):
        self.store = store
        self.zammad = zammad
        self.discord = discord
        self.tasks = tasks or BackgroundTasks()
        self.queue = queue or ResourceQueue("ticket")
        self.limits = AttachmentLimitService(store)
        self.threads = ThreadLifecycleManager(discord, store, self.tasks)
        self.articles = ArticleSyncService(
            zammad, discord, store, self.threads, self.limits, self.queue
        )
        self.ticket_sync = TicketSyncService(
            zammad, store, self.threads, self.articles, self.queue
        )
        self.webhooks = WebhookService(store, self.ticket_sync)
        self.reconciler = ReconciliationService(
            zammad, store, self.ticket_sync, self.queue
        )
        self.health = HealthMonitor(zammad, discord)
        self.commands = TicketCommandService(
            zammad, store, self.ticket_sync, self.limits, self.queue
        )

    def spawn(self, coro: Awaitable[Any], name: Optional[str] = None):
        return self.tasks.spawn(coro, name=name)

    def submit_webhook(
        self, payload: WebhookPayload, delivery_id: Optional[str] = None
    ):
        """Queue a webhook for processing without waiting on it"""
        return self.spawn(
            self.webhooks.handle_delivery(payload, delivery_id),
            name=f"webhook-{delivery_id or payload.ticket.id}",
        )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        return await self.tasks.drain(
            timeout if timeout is not None else settings.shutdown_drain_seconds
        )

    async def aclose(self) -> None:
        await self.zammad.aclose()
        await self.discord.aclose()


def build_runtime() -> SyncRuntime:
    egress = EgressQueue(
        concurrency=settings.egress_concurrency,
        rate_limit=settings.egress_rate_limit,
        interval=settings.egress_interval_seconds,
    )
    runtime = SyncRuntime(
        store=StateStore(SessionLocal),
        zammad=ZammadService(),
        discord=DiscordService(egress),
    )
    logger.info("✓ Sync runtime built")
    return runtime


def get_runtime(request: Request) -> SyncRuntime:
    """FastAPI dependency: the runtime created in the app lifespan"""
    return request.app.state.runtime
