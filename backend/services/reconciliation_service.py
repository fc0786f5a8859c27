"""
Periodic reconciliation between the Zammad open-ticket listing and the
local thread mappings. Runs independently of webhook delivery.
"""

import logging
from dataclasses import dataclass

import httpx

from config import settings
from models.ticket_thread import TicketThread
from schemas.zammad import ZammadTicket
from services.state_store import StateStore, mapping_age_seconds
from services.task_queue import ResourceQueue
from services.ticket_sync_service import TicketSyncService
from services.zammad_service import ZammadAPIError, ZammadService
from utils.states import is_closed_state, normalize_state

logger = logging.getLogger(__name__)


@dataclass
class PassStats:
    open_tickets: int = 0
    synced: int = 0
    closed: int = 0
    failed: int = 0
    skipped: bool = False


class ReconciliationService:
    def __init__(
        self,
        zammad: ZammadService,
        store: StateStore,
        ticket_sync: TicketSyncService,
        queue: ResourceQueue,
    ):
        self.zammad = zammad
        self.store = store
        self.ticket_sync = ticket_sync
        self.queue = queue
        self.running = False
        self.pass_count = 0

    def _is_catch_up_pass(self) -> bool:
        every = max(settings.article_catchup_every, 1)
        return (self.pass_count - 1) % every == 0

    async def run_pass(self) -> PassStats:
        """One full pass. Skipped entirely while a previous pass runs."""
        if self.running:
            logger.debug("Reconciliation pass still running, skipping")
            return PassStats(skipped=True)
        self.running = True
        self.pass_count += 1
        stats = PassStats()
        try:
            try:
                open_tickets = await self.zammad.list_open_tickets()
            except (ZammadAPIError, httpx.HTTPError) as e:
                logger.warning(f"Reconciliation: open ticket listing failed: {e}")
                stats.failed += 1
                return stats
            stats.open_tickets = len(open_tickets)
            catch_up = self._is_catch_up_pass()

            open_ids = set()
            for ticket in open_tickets:
                open_ids.add(ticket.id)
                if await self._run_for_ticket(
                    ticket.id, self._reconcile_open, ticket, catch_up
                ):
                    stats.synced += 1
                else:
                    stats.failed += 1

            for mapping in self.store.list_threads():
                if mapping.ticket_id in open_ids or is_closed_state(
                    mapping.state
                ):
                    continue
                closed = await self._run_for_ticket(
                    mapping.ticket_id, self._reconcile_missing, mapping
                )
                if closed:
                    stats.closed += 1

            logger.debug(
                f"Reconciliation pass {self.pass_count}: "
                f"{stats.open_tickets} open, {stats.closed} closed, "
                f"{stats.failed} failed"
            )
            return stats
        finally:
            self.running = False

    async def _run_for_ticket(self, ticket_id: int, func, *args) -> bool:
        try:
            return await self.queue.run(ticket_id, lambda: func(*args))
        except Exception as e:
            # Already logged by the queue; the next pass retries
            logger.warning(f"Reconciliation of ticket {ticket_id} failed: {e}")
            return False

    async def _reconcile_open(
        self, ticket: ZammadTicket, catch_up: bool
    ) -> bool:
        await self.ticket_sync.sync_ticket(
            ticket.id,
            ticket=ticket,
            sync_articles=catch_up,
            enforce=catch_up,
        )
        return True

    async def _reconcile_missing(self, stale: TicketThread) -> bool:
        """
        A tracked, non-closed ticket is missing from the open listing.
        Close only when a point read confirms it and the mapping is older
        than the close grace window.
        """
        mapping = self.store.get_thread_by_ticket(stale.ticket_id)
        if mapping is None or is_closed_state(mapping.state):
            return False
        age = mapping_age_seconds(mapping)
        if age < settings.close_grace_seconds:
            logger.debug(
                f"Ticket {mapping.ticket_id} missing from listing but touched "
                f"{age:.0f}s ago, waiting"
            )
            return False

        try:
            fresh = await self.zammad.get_ticket(mapping.ticket_id)
        except ZammadAPIError as e:
            if not e.is_not_found:
                raise
            logger.info(f"Ticket {mapping.ticket_id} no longer exists")
            await self.ticket_sync.apply_state_change(mapping, "removed")
            return True

        # Open here means listing lag or a ticket beyond the page limit
        await self.ticket_sync.sync_ticket(
            fresh.id, ticket=fresh, sync_articles=False
        )
        fresh_state = normalize_state(fresh.state)
        if not is_closed_state(fresh_state):
            return False
        logger.info(
            f"Reconciliation closed ticket {mapping.ticket_id} ({fresh_state})"
        )
        return True
