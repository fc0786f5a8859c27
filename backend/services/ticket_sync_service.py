import logging
from typing import Optional

import httpx

from config import settings
from models.ticket_thread import TicketThread
from schemas.ticket import TicketView, ticket_url
from schemas.zammad import ZammadTicket
from services.article_sync_service import ArticleSyncService
from services.discord_service import DiscordAPIError
from services.state_store import StateStore, mapping_age_seconds
from services.task_queue import ResourceQueue
from services.thread_service import ThreadLifecycleManager
from services.zammad_service import ZammadService
from utils.states import (
    WAITING_FOR_REPLY,
    StateClass,
    classify_state,
    is_closed_state,
    normalize_state,
    plan_transition,
)

logger = logging.getLogger(__name__)

CUSTOMER_REPLIED_NOTICE = (
    "**Customer replied** - ticket moved from _waiting for reply_ to _open_."
)


class TicketSyncService:
    """
    Brings one ticket's thread in line with Zammad: creates the thread on
    first sight, applies state transitions, renames, refreshes the header
    and replicates new articles.

    Methods without the `process_` prefix expect to run inside the
    ticket's ResourceQueue lane.
    """

    def __init__(
        self,
        zammad: ZammadService,
        store: StateStore,
        threads: ThreadLifecycleManager,
        articles: ArticleSyncService,
        queue: ResourceQueue,
    ):
        self.zammad = zammad
        self.store = store
        self.threads = threads
        self.articles = articles
        self.queue = queue

    async def build_view(self, ticket: ZammadTicket) -> TicketView:
        owner = await self.zammad.get_user_name(ticket.owner_id)
        customer = await self.zammad.get_user_name(ticket.customer_id)
        return TicketView(
            id=ticket.id,
            number=ticket.number,
            title=ticket.title,
            state=ticket.state,
            url=ticket_url(settings.zammad_link_base, ticket.id),
            priority=ticket.priority,
            customer=customer or ticket.customer,
            owner=owner,
            owner_id=ticket.owner_id,
            owner_mention=self._owner_mention(ticket.owner_id),
            group=ticket.group,
            created_at=ticket.created_at,
            escalation_at=ticket.escalation_at,
        )

    def _owner_mention(self, owner_id: Optional[int]) -> Optional[str]:
        if not owner_id or owner_id == 1:
            return None
        actor = self.store.get_actor_by_remote_id(owner_id)
        return f"<@{actor.local_actor_id}>" if actor else None

    async def process_ticket(
        self,
        ticket_id: int,
        article_sender: Optional[str] = None,
        has_article: bool = False,
    ) -> Optional[TicketThread]:
        return await self.queue.run(
            ticket_id,
            lambda: self.sync_ticket(
                ticket_id,
                article_sender=article_sender,
                has_article=has_article,
            ),
        )

    async def sync_ticket(
        self,
        ticket_id: int,
        ticket: Optional[ZammadTicket] = None,
        article_sender: Optional[str] = None,
        sync_articles: bool = True,
        enforce: bool = False,
        has_article: bool = False,
    ) -> TicketThread:
        if ticket is None:
            ticket = await self.zammad.get_ticket(ticket_id)
        view = await self.build_view(ticket)

        mapping = self.store.get_thread_by_ticket(ticket_id)
        if mapping is None:
            mapping = await self.threads.create_thread(view)
        else:
            old_state = mapping.state
            mapping = await self.apply_state_change(
                mapping, view.state, article_sender=article_sender
            )
            if has_article and mapping.state == old_state:
                await self._show_activity(mapping)
            # A suppressed transition keeps the thread's recorded state
            view.state = mapping.state
            await self._refresh_presentation(mapping, view)
            if enforce:
                await self.threads.enforce_state(
                    mapping.thread_id, mapping.state
                )

        if sync_articles:
            await self.articles.sync_remote_articles(mapping)
        return mapping

    async def _show_activity(self, mapping: TicketThread) -> None:
        """New activity on a pending-close ticket brings the team back in"""
        if classify_state(mapping.state) is not StateClass.HIDDEN:
            return
        try:
            await self.threads.sync_members(mapping.thread_id, present=True)
        except (DiscordAPIError, httpx.HTTPError) as e:
            logger.warning(
                f"Ticket {mapping.ticket_id}: re-adding members failed: {e}"
            )
            return
        logger.info(
            f"Ticket {mapping.ticket_id}: activity while {mapping.state}, "
            f"members re-added"
        )

    async def _refresh_presentation(
        self, mapping: TicketThread, view: TicketView
    ) -> None:
        try:
            await self.threads.refresh_header(mapping, view)
        except (DiscordAPIError, httpx.HTTPError) as e:
            logger.warning(
                f"Ticket {mapping.ticket_id}: header refresh failed: {e}"
            )
        if view.title != mapping.title:
            mapping = self.store.update_thread_title(
                mapping.ticket_id, view.title
            ) or mapping
        try:
            await self.threads.rename(mapping, view.title, view.owner)
        except (DiscordAPIError, httpx.HTTPError) as e:
            logger.warning(f"Ticket {mapping.ticket_id}: rename failed: {e}")

    async def apply_state_change(
        self,
        mapping: TicketThread,
        new_state: str,
        article_sender: Optional[str] = None,
    ) -> TicketThread:
        """
        Move the thread from its recorded state to `new_state`.

        Leaving CLOSED is only trusted once the mapping is older than the
        reopen grace window and a fresh point read agrees the ticket is no
        longer closed.
        """
        old_state = mapping.state
        new_state = normalize_state(new_state)
        if new_state == old_state:
            return mapping

        plan = plan_transition(old_state, new_state)
        if plan.requires_confirmation:
            age = mapping_age_seconds(mapping)
            if age < settings.reopen_grace_seconds:
                logger.info(
                    f"Ticket {mapping.ticket_id}: ignoring {old_state} -> "
                    f"{new_state}, closed {age:.0f}s ago"
                )
                return mapping
            fresh = await self.zammad.get_ticket(mapping.ticket_id)
            fresh_state = normalize_state(fresh.state)
            if is_closed_state(fresh_state):
                logger.info(
                    f"Ticket {mapping.ticket_id}: fresh read says "
                    f"{fresh_state}, not reopening"
                )
                if fresh_state != old_state:
                    mapping = self.store.update_thread_state(
                        mapping.ticket_id, fresh_state
                    ) or mapping
                return mapping
            new_state = fresh_state

        return await self.transition(
            mapping,
            new_state,
            reason=f"Ticket {old_state} -> {new_state} in Zammad",
            article_sender=article_sender,
        )

    async def transition(
        self,
        mapping: TicketThread,
        new_state: str,
        reason: Optional[str] = None,
        article_sender: Optional[str] = None,
    ) -> TicketThread:
        """Record `new_state` and apply the thread effects, unconditionally"""
        old_state = mapping.state
        new_state = normalize_state(new_state)
        plan = plan_transition(old_state, new_state)

        # Recorded before touching the thread so the grace window starts now
        mapping = self.store.update_thread_state(
            mapping.ticket_id, new_state
        ) or mapping
        await self.threads.apply_plan(mapping.thread_id, plan, reason=reason)
        logger.info(
            f"Ticket {mapping.ticket_id}: state {old_state} -> {new_state}"
        )

        if (
            old_state == WAITING_FOR_REPLY
            and new_state == "open"
            and article_sender == "Customer"
        ):
            try:
                await self.threads.send_to_thread(
                    mapping.thread_id, CUSTOMER_REPLIED_NOTICE
                )
            except (DiscordAPIError, httpx.HTTPError) as e:
                logger.warning(
                    f"Ticket {mapping.ticket_id}: customer-replied notice "
                    f"failed: {e}"
                )
        return mapping
