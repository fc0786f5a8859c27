"""
Core side of the human command surface.

Every command runs in the ticket's resource lane, needs a mapped thread and
a mapped actor, and answers with a readable reply or raises CommandError.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple

import httpx

from models.actor_map import ActorMap
from models.ticket_thread import TicketThread
from services.attachment_limit_service import (
    LIMIT_KEYS,
    AttachmentLimitService,
)
from services.discord_service import DiscordAPIError
from services.state_store import StateStore
from services.task_queue import ResourceQueue
from services.ticket_sync_service import TicketSyncService
from services.zammad_service import ZammadAPIError, ZammadService
from utils.states import normalize_state

logger = logging.getLogger(__name__)

PRIORITIES = {"low": 1, "normal": 2, "high": 3}


class CommandError(Exception):
    """Readable failure returned to the actor who ran the command"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TicketCommandService:
    def __init__(
        self,
        zammad: ZammadService,
        store: StateStore,
        ticket_sync: TicketSyncService,
        limits: AttachmentLimitService,
        queue: ResourceQueue,
    ):
        self.zammad = zammad
        self.store = store
        self.ticket_sync = ticket_sync
        self.limits = limits
        self.queue = queue

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _context(
        self, thread_id: str, actor_id: str
    ) -> Tuple[TicketThread, ActorMap]:
        mapping = self.store.get_thread_by_thread(thread_id)
        if mapping is None:
            raise CommandError("This channel is not a ticket thread.")
        actor = self.store.get_actor(actor_id)
        if actor is None:
            raise CommandError(
                "Your Discord account is not linked to a Zammad user. "
                "Ask an admin to map it first."
            )
        return mapping, actor

    async def _run(
        self,
        thread_id: str,
        actor_id: str,
        command: Callable[[TicketThread, ActorMap], Awaitable[str]],
        name: str,
    ) -> str:
        mapping, actor = self._context(thread_id, actor_id)

        async def locked():
            # Re-read inside the lane, a queued update may have changed it
            current = self.store.get_thread_by_ticket(mapping.ticket_id)
            # Rejections leave the lane as values so the queue does not log
            # them as task failures
            try:
                return await command(current or mapping, actor)
            except CommandError as e:
                return e
            except (ZammadAPIError, DiscordAPIError) as e:
                logger.warning(
                    f"Command {name} on ticket {mapping.ticket_id}: {e}"
                )
                return CommandError(
                    f"{name} failed: {e.status_code} from the API."
                )
            except httpx.HTTPError as e:
                logger.warning(
                    f"Command {name} on ticket {mapping.ticket_id}: {e}"
                )
                return CommandError(f"{name} failed: {e}")

        reply = await self.queue.run(mapping.ticket_id, locked)
        if isinstance(reply, CommandError):
            logger.info(
                f"Command {name} by {actor_id} on ticket "
                f"{mapping.ticket_id} rejected: {reply.message}"
            )
            raise reply
        logger.info(
            f"Command {name} by {actor_id} on ticket {mapping.ticket_id}"
        )
        return reply

    async def _state_id(self, name: str) -> int:
        state = await self.zammad.get_state_by_name(name)
        if state is None:
            raise CommandError(f"Unknown ticket state '{name}'.")
        return state.id

    async def _set_remote_state(
        self,
        mapping: TicketThread,
        state_name: str,
        pending_time: Optional[str] = None,
    ) -> TicketThread:
        state_id = await self._state_id(state_name)
        await self.zammad.update_ticket(
            mapping.ticket_id, state_id=state_id, pending_time=pending_time
        )
        return await self.ticket_sync.transition(
            mapping, state_name, reason=f"Ticket set to {state_name}"
        )

    # ------------------------------------------------------------------
    # Ticket commands
    # ------------------------------------------------------------------

    async def close(self, thread_id: str, actor_id: str) -> str:
        async def command(mapping, actor):
            await self._set_remote_state(mapping, "closed")
            return f"Closed ticket #{mapping.ticket_number}."

        return await self._run(thread_id, actor_id, command, "close")

    async def set_state(
        self, thread_id: str, actor_id: str, state_name: str
    ) -> str:
        state_name = normalize_state(state_name)

        async def command(mapping, actor):
            await self._set_remote_state(mapping, state_name)
            return (
                f"Ticket #{mapping.ticket_number} state set to "
                f"**{state_name}**."
            )

        return await self._run(thread_id, actor_id, command, "state")

    async def lock(
        self,
        thread_id: str,
        actor_id: str,
        until: Optional[datetime] = None,
    ) -> str:
        async def command(mapping, actor):
            if until is None:
                await self._set_remote_state(mapping, "closed (locked)")
                return f"Ticket #{mapping.ticket_number} locked."
            await self._set_remote_state(
                mapping, "closed (locked until)", pending_time=until.isoformat()
            )
            return (
                f"Ticket #{mapping.ticket_number} locked until "
                f"<t:{int(until.timestamp())}:f>."
            )

        return await self._run(thread_id, actor_id, command, "lock")

    async def assign(
        self,
        thread_id: str,
        actor_id: str,
        assignee_actor_id: Optional[str] = None,
    ) -> str:
        async def command(mapping, actor):
            assignee = actor
            if assignee_actor_id and assignee_actor_id != actor_id:
                assignee = self.store.get_actor(assignee_actor_id)
                if assignee is None:
                    raise CommandError(
                        "That user is not linked to a Zammad account."
                    )
            if not assignee.remote_id:
                raise CommandError(
                    f"{assignee.remote_email} has no Zammad user id on file."
                )
            await self.zammad.update_ticket(
                mapping.ticket_id, owner_id=assignee.remote_id
            )
            return (
                f"Ticket #{mapping.ticket_number} assigned to "
                f"{assignee.remote_email}."
            )

        return await self._run(thread_id, actor_id, command, "assign")

    async def set_priority(
        self, thread_id: str, actor_id: str, priority: str
    ) -> str:
        key = priority.strip().lower()
        # Accept "high" as well as Zammad's "3 high"
        key = key.split(" ", 1)[-1]
        if key not in PRIORITIES:
            raise CommandError(
                f"Unknown priority '{priority}'. "
                f"Use one of: {', '.join(PRIORITIES)}."
            )

        async def command(mapping, actor):
            await self.zammad.update_ticket(
                mapping.ticket_id, priority_id=PRIORITIES[key]
            )
            return f"Ticket #{mapping.ticket_number} priority set to {key}."

        return await self._run(thread_id, actor_id, command, "priority")

    async def log_time(
        self, thread_id: str, actor_id: str, minutes: float
    ) -> str:
        if minutes <= 0:
            raise CommandError("Time must be a positive number of minutes.")

        async def command(mapping, actor):
            await self.zammad.add_time_accounting(
                mapping.ticket_id, time_unit=minutes
            )
            return (
                f"Logged {minutes:g} minute(s) on ticket "
                f"#{mapping.ticket_number}."
            )

        return await self._run(thread_id, actor_id, command, "time")

    async def merge_into(
        self, thread_id: str, actor_id: str, target_number: str
    ) -> str:
        target_number = target_number.strip().lstrip("#")

        async def command(mapping, actor):
            target = await self.zammad.get_ticket_by_number(target_number)
            if target is None:
                raise CommandError(f"Could not find ticket #{target_number}.")
            if target.id == mapping.ticket_id:
                raise CommandError("Cannot merge a ticket into itself.")
            await self.zammad.merge_tickets(mapping.ticket_id, target.id)
            await self.ticket_sync.transition(
                mapping, "merged", reason=f"Merged into #{target_number}"
            )
            return (
                f"Ticket #{mapping.ticket_number} merged into "
                f"#{target_number}. Thread closed."
            )

        return await self._run(thread_id, actor_id, command, "merge")

    async def add_tag(self, thread_id: str, actor_id: str, tag: str) -> str:
        tag = tag.strip()
        if not tag:
            raise CommandError("Tag must not be empty.")

        async def command(mapping, actor):
            await self.zammad.add_tag(mapping.ticket_id, tag)
            return f"Tag **{tag}** added to ticket #{mapping.ticket_number}."

        return await self._run(thread_id, actor_id, command, "tag add")

    async def remove_tag(self, thread_id: str, actor_id: str, tag: str) -> str:
        tag = tag.strip()

        async def command(mapping, actor):
            tags = await self.zammad.get_tags(mapping.ticket_id)
            if tag not in tags:
                raise CommandError(
                    f"Ticket #{mapping.ticket_number} has no tag **{tag}**."
                )
            await self.zammad.remove_tag(mapping.ticket_id, tag)
            return (
                f"Tag **{tag}** removed from ticket #{mapping.ticket_number}."
            )

        return await self._run(thread_id, actor_id, command, "tag remove")

    # ------------------------------------------------------------------
    # Admin commands (no ticket lane)
    # ------------------------------------------------------------------

    async def map_actor(self, local_actor_id: str, email: str) -> str:
        email = email.strip()
        try:
            user = await self.zammad.find_user_by_email(email)
        except (ZammadAPIError, httpx.HTTPError) as e:
            raise CommandError(f"Zammad user lookup failed: {e}") from e
        if user is None:
            raise CommandError(f"No Zammad user with email {email}.")
        self.store.set_actor(local_actor_id, user.email or email, user.id)
        logger.info(f"Mapped actor {local_actor_id} -> Zammad user {user.id}")
        name = user.full_name or user.email
        return f"Linked <@{local_actor_id}> to Zammad user {name} ({user.id})."

    def set_attachment_limit(self, key: str, value: str) -> str:
        key = _limit_key(key)
        try:
            limits = self.limits.set_limit(key, value)
        except ValueError as e:
            raise CommandError(str(e)) from e
        return f"{key} set to {value}. {_describe(limits)}"

    def clear_attachment_limit(self, key: str) -> str:
        key = _limit_key(key)
        limits = self.limits.clear_limit(key)
        return f"{key} reset. {_describe(limits)}"


def _limit_key(key: str) -> str:
    key = key.strip().upper()
    if not key.startswith("ATTACHMENT_"):
        key = f"ATTACHMENT_{key}"
    if key not in LIMIT_KEYS:
        raise CommandError(
            f"Unknown limit. Use one of: {', '.join(LIMIT_KEYS)}."
        )
    return key


def _describe(limits) -> str:
    return (
        f"Now: {limits.per_file_mb:g} MB per file, "
        f"{limits.total_mb:g} MB per message, {limits.max_count} files, "
        f"{limits.download_cap_mb:g} MB download cap."
    )
