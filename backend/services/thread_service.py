"""
Thread lifecycle for ticket threads in the Discord tickets channel.

Creates threads, renames them, keeps the header embed current and applies
the state-class transition plans from utils.states. All Discord calls go
through DiscordService and therefore through the egress queue.
"""

import asyncio
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Sequence, Set

from config import settings
from models.ticket_thread import TicketThread
from schemas.discord import OutgoingFile
from schemas.ticket import TicketView
from services.discord_service import DiscordService
from services.state_store import StateStore
from services.task_queue import BackgroundTasks
from utils.cache import CachedLoader
from utils.clock import utcnow
from utils.states import (
    CLOSED_STATES,
    Effect,
    StateClass,
    TransitionPlan,
    classify_state,
    plan_for_new_thread,
)
from utils.text import short_owner_label, truncate

logger = logging.getLogger(__name__)

COLOR_NEW = 0x3498DB
COLOR_OPEN = 0x2ECC71
COLOR_PENDING = 0xF39C12
COLOR_CLOSED = 0x95A5A6
COLOR_DEFAULT = 0x7289DA
COLOR_OVERDUE = 0xE74C3C

EMBED_TITLE_MAX = 256


def state_color(state: str) -> int:
    state = (state or "").lower()
    if state == "new":
        return COLOR_NEW
    if state == "open":
        return COLOR_OPEN
    if state in ("pending reminder", "pending close"):
        return COLOR_PENDING
    if state in CLOSED_STATES:
        return COLOR_CLOSED
    return COLOR_DEFAULT


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def is_overdue(view: TicketView, now: Optional[datetime] = None) -> bool:
    deadline = parse_timestamp(view.escalation_at)
    if deadline is None or deadline.tzinfo is None:
        return False
    if classify_state(view.state) is StateClass.CLOSED:
        return False
    return deadline < (now or utcnow())


def assigned_label(view: TicketView) -> Optional[str]:
    if view.owner and view.owner_mention:
        return f"{view.owner} ({view.owner_mention})"
    return view.owner or view.owner_mention


def build_header_embed(
    view: TicketView, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Discord embed for the thread's header message"""
    fields = [{"name": "State", "value": view.state, "inline": True}]
    for name, value in (
        ("Priority", view.priority),
        ("Customer", view.customer),
        ("Assigned", assigned_label(view)),
        ("Group", view.group),
    ):
        if value:
            fields.append({"name": name, "value": value, "inline": True})
    deadline = parse_timestamp(view.escalation_at)
    if deadline is not None:
        fields.append({
            "name": "Deadline",
            "value": f"<t:{int(deadline.timestamp())}:R>",
            "inline": True,
        })
    fields.append({
        "name": "Zammad",
        "value": f"[Open ticket]({view.url})",
        "inline": False,
    })
    embed = {
        "title": truncate(f"#{view.number} - {view.title}", EMBED_TITLE_MAX),
        "url": view.url,
        "color": (
            COLOR_OVERDUE if is_overdue(view, now) else state_color(view.state)
        ),
        "fields": fields,
    }
    if view.created_at:
        embed["timestamp"] = view.created_at
    return embed


def embed_digest(embed: Dict[str, Any]) -> str:
    raw = json.dumps(embed, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(raw.encode()).hexdigest()


def thread_name(
    number: str, title: str, owner_name: Optional[str] = None
) -> str:
    label = short_owner_label(owner_name)
    prefix = f"#{number} [{label}]" if label else f"#{number}"
    return truncate(f"{prefix} {title}".strip(), settings.thread_name_max_length)


class ThreadLifecycleManager:
    def __init__(
        self,
        discord: DiscordService,
        store: StateStore,
        tasks: BackgroundTasks,
        channel_id: Optional[str] = None,
        role_id: Optional[str] = None,
    ):
        self.discord = discord
        self.store = store
        self.tasks = tasks
        self.channel_id = channel_id or settings.discord_tickets_channel_id
        self.role_id = (
            role_id if role_id is not None else settings.discord_ticket_role_id
        )
        self.role_members = CachedLoader(
            self._load_role_members, settings.role_members_ttl
        )
        # Last rendered header digest and thread name per ticket. Lost on
        # restart, which only costs one redundant edit.
        self._header_digests: Dict[int, str] = {}
        self._thread_names: Dict[str, str] = {}

    async def _load_role_members(self) -> Set[str]:
        if not self.role_id:
            return set()
        return await self.discord.get_role_member_ids(self.role_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_thread(self, view: TicketView) -> TicketThread:
        embed = build_header_embed(view)
        header_message_id = await self.discord.send_message(
            self.channel_id, embeds=[embed]
        )
        name = thread_name(view.number, view.title, view.owner)
        thread_id = await self.discord.start_thread(
            self.channel_id,
            header_message_id,
            name,
            reason=f"Zammad ticket {view.id}",
        )
        mapping = self.store.create_thread(
            ticket_id=view.id,
            ticket_number=view.number,
            thread_id=thread_id,
            header_message_id=header_message_id,
            channel_id=self.channel_id,
            title=view.title,
            state=view.state,
        )
        self._header_digests[view.id] = embed_digest(embed)
        self._thread_names[thread_id] = name
        logger.info(
            f"✓ Created thread {thread_id} for ticket {view.id} "
            f"(#{view.number}, {view.state})"
        )

        plan = plan_for_new_thread(view.state)
        if plan.new is StateClass.OPEN:
            self.tasks.spawn(
                self.sync_members(thread_id, present=True),
                name=f"add-members-{thread_id}",
            )
        else:
            await self.apply_plan(
                thread_id, plan, reason=f"Ticket created as {view.state}"
            )
        return mapping

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply_plan(
        self,
        thread_id: str,
        plan: TransitionPlan,
        reason: Optional[str] = None,
    ) -> None:
        """Opening edits first, then member changes, then closing edits"""
        if plan.is_noop:
            return
        reason = reason or f"Ticket {plan.old.value} -> {plan.new.value}"

        opening = {}
        if plan.has(Effect.UNLOCK):
            opening["locked"] = False
        if plan.has(Effect.UNARCHIVE):
            opening["archived"] = False
        if opening:
            await self.discord.edit_thread(thread_id, reason=reason, **opening)

        if plan.has(Effect.ADD_MEMBERS):
            await self.sync_members(thread_id, present=True)
        elif plan.has(Effect.REMOVE_MEMBERS):
            await self.sync_members(thread_id, present=False)

        closing = {}
        if plan.has(Effect.LOCK):
            closing["locked"] = True
        if plan.has(Effect.ARCHIVE):
            closing["archived"] = True
        if closing:
            await self.discord.edit_thread(thread_id, reason=reason, **closing)

        logger.info(
            f"Thread {thread_id}: {plan.old.value} -> {plan.new.value} "
            f"({', '.join(e.value for e in plan.effects)})"
        )

    async def enforce_state(self, thread_id: str, state: str) -> bool:
        """Bring archive/lock flags and membership in line with the state
        class. Returns True when anything had to change."""
        state_class = classify_state(state)
        info = await self.discord.get_thread(thread_id)
        want_locked = state_class is StateClass.CLOSED
        want_archived = state_class in (
            StateClass.CLOSED,
            StateClass.HIDDEN_ARCHIVED,
        )
        changed = False
        if info.locked != want_locked or (
            info.archived and not want_archived
        ):
            # Membership edits need an unarchived thread
            await self.discord.edit_thread(
                thread_id,
                locked=want_locked if info.locked != want_locked else None,
                archived=False if info.archived else None,
                reason="Reconcile thread with Zammad state",
            )
            info.archived = False
            changed = True
        # Pending-close membership follows ticket activity, not the state
        if state_class is not StateClass.HIDDEN:
            changed |= await self.sync_members(
                thread_id, present=state_class is StateClass.OPEN,
                thread_archived=info.archived,
            )
        if want_archived and not info.archived:
            await self.discord.edit_thread(
                thread_id,
                archived=True,
                reason="Reconcile thread with Zammad state",
            )
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def sync_members(
        self,
        thread_id: str,
        present: bool,
        thread_archived: bool = False,
    ) -> bool:
        """Add (present=True) or remove role members, diffing against the
        current thread members. Returns True when a change was attempted."""
        role_members = await self.role_members.get()
        if not role_members:
            return False
        if thread_archived and not present:
            # Archived threads are already out of member thread lists
            return False
        current = await self.discord.list_thread_member_ids(thread_id)
        if present:
            targets = role_members - current
            action = self.discord.add_thread_member
        else:
            targets = role_members & current
            action = self.discord.remove_thread_member
        if not targets:
            return False
        await self._apply_member_changes(thread_id, targets, action, present)
        return True

    async def _apply_member_changes(
        self, thread_id: str, member_ids: Iterable[str], action, present: bool
    ) -> None:
        member_ids = sorted(member_ids)
        results = await asyncio.gather(
            *(action(thread_id, member_id) for member_id in member_ids),
            return_exceptions=True,
        )
        failed = [
            (member_id, result)
            for member_id, result in zip(member_ids, results)
            if isinstance(result, Exception)
        ]
        verb = "add" if present else "remove"
        for member_id, error in failed:
            logger.warning(
                f"Failed to {verb} member {member_id} on thread "
                f"{thread_id}: {error}"
            )
        logger.debug(
            f"Thread {thread_id}: {verb}ed "
            f"{len(member_ids) - len(failed)}/{len(member_ids)} members"
        )

    # ------------------------------------------------------------------
    # Rename and header
    # ------------------------------------------------------------------

    async def rename(
        self,
        mapping: TicketThread,
        title: str,
        owner_name: Optional[str] = None,
    ) -> bool:
        name = thread_name(mapping.ticket_number, title, owner_name)
        current = self._thread_names.get(mapping.thread_id)
        if current is None:
            current = (await self.discord.get_thread(mapping.thread_id)).name
            self._thread_names[mapping.thread_id] = current
        if current == name:
            return False
        await self.discord.edit_thread(
            mapping.thread_id,
            name=name,
            reason="Ticket title or owner updated in Zammad",
        )
        self._thread_names[mapping.thread_id] = name
        logger.info(
            f"Renamed thread {mapping.thread_id}: {current!r} -> {name!r}"
        )
        return True

    async def refresh_header(
        self, mapping: TicketThread, view: TicketView
    ) -> bool:
        embed = build_header_embed(view)
        digest = embed_digest(embed)
        if self._header_digests.get(mapping.ticket_id) == digest:
            return False
        await self.discord.edit_message(
            mapping.channel_id, mapping.header_message_id, embeds=[embed]
        )
        self._header_digests[mapping.ticket_id] = digest
        logger.debug(f"Refreshed header for ticket {mapping.ticket_id}")
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_to_thread(
        self,
        thread_id: str,
        content: str,
        files: Sequence[OutgoingFile] = (),
    ) -> str:
        return await self.discord.send_message(
            thread_id,
            content=truncate(content, settings.message_max_length),
            files=files,
        )
