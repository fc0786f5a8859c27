"""
Article replication between Zammad tickets and Discord threads.

Zammad -> Discord: every unsynced article is posted in article-id order.
A failed post stops the pass for that ticket so nothing is skipped ahead.

Discord -> Zammad: messages from mapped agents become internal notes. The
new article id is ledgered immediately so Zammad's echo webhook is a no-op.
"""

import base64
import logging
from typing import Dict, List, Optional, Tuple

import httpx

from config import settings
from models.synced_article import SyncDirection
from models.ticket_thread import TicketThread
from schemas.discord import LocalMessage, OutgoingFile
from schemas.ticket import article_url
from schemas.zammad import ZammadArticle
from services.attachment_limit_service import (
    MB,
    AttachmentLimits,
    AttachmentLimitService,
)
from services.discord_service import DiscordAPIError, DiscordService
from services.state_store import StateStore
from services.task_queue import ResourceQueue
from services.thread_service import ThreadLifecycleManager
from services.zammad_service import (
    AttachmentTooLarge,
    ZammadAPIError,
    ZammadService,
)
from utils.text import (
    ensure_file_extension,
    extract_display_name,
    format_megabytes,
    strip_html,
    strip_quoted_email,
    truncate,
)

logger = logging.getLogger(__name__)

# Zammad stores some inline images as tiny stubs
PLACEHOLDER_MAX_BYTES = 10
ATTACHMENTS_HEADER = "\n📎 **Attachments in Zammad:**\n"


class AttachmentBudget:
    """
    Per-message transfer budget: per-file cap, cumulative cap, file count
    and a hard cap on any single download. `download_cap` returns how many
    bytes a file may use, or 0 when it must become a link.
    """

    def __init__(self, limits: AttachmentLimits, hard_cap: Optional[int] = None):
        self.limits = limits
        self.hard_cap = hard_cap or limits.download_cap_bytes
        self.used = 0
        self.count = 0

    @property
    def remaining(self) -> int:
        return max(self.limits.total_bytes - self.used, 0)

    @staticmethod
    def is_placeholder(size: int) -> bool:
        return 0 < size < PLACEHOLDER_MAX_BYTES

    def download_cap(self, size: int) -> int:
        if size > self.limits.per_file_bytes:
            return 0
        if self.count >= self.limits.max_count:
            return 0
        if size > self.remaining:
            return 0
        return min(self.hard_cap, self.remaining, self.limits.per_file_bytes)

    def record(self, size: int) -> None:
        self.used += size
        self.count += 1


def sender_label(article: ZammadArticle) -> str:
    name = extract_display_name(article.from_)
    return f"{name} ({article.sender})" if name else article.sender


def render_article(article: ZammadArticle, strip_quotes: bool) -> str:
    body = article.body or ""
    if strip_quotes:
        body = strip_quoted_email(body)
    if article.content_type != "text/plain":
        body = strip_html(body)
    prefix = "**[Internal]** " if article.internal else ""
    return f"**{sender_label(article)}:** {prefix}{body.strip()}"


def compose_message(content: str, links: List[str], max_length: int) -> str:
    """Append the link list, trimming the body first so links survive"""
    if not links:
        return truncate(content, max_length)
    footer = ATTACHMENTS_HEADER + "\n".join(links)
    room = max_length - len(footer)
    if room < 1:
        return truncate(content + footer, max_length)
    return truncate(content, room) + footer


class ArticleSyncService:
    def __init__(
        self,
        zammad: ZammadService,
        discord: DiscordService,
        store: StateStore,
        threads: ThreadLifecycleManager,
        limits: AttachmentLimitService,
        queue: ResourceQueue,
    ):
        self.zammad = zammad
        self.discord = discord
        self.store = store
        self.threads = threads
        self.limits = limits
        self.queue = queue

    # ------------------------------------------------------------------
    # Zammad -> Discord
    # ------------------------------------------------------------------

    async def sync_remote_articles(self, mapping: TicketThread) -> int:
        """Post every unsynced article of the ticket in id order. Must run
        inside the ticket's resource queue. Returns the number posted."""
        ticket_id = mapping.ticket_id
        articles = sorted(
            await self.zammad.list_articles(ticket_id), key=lambda a: a.id
        )
        synced = self.store.synced_article_ids(ticket_id)
        seen_human_article = False
        posted = 0

        for article in articles:
            if article.id in synced:
                if not article.is_system:
                    seen_human_article = True
                continue

            if article.is_system:
                self.store.mark_article_synced(
                    article.id,
                    ticket_id,
                    mapping.thread_id,
                    None,
                    SyncDirection.REMOTE_TO_LOCAL,
                )
                continue

            content = render_article(article, strip_quotes=seen_human_article)
            seen_human_article = True
            files, links = await self._collect_remote_attachments(
                ticket_id, article
            )
            message = compose_message(
                content, links, settings.message_max_length
            )
            try:
                message_id = await self.threads.send_to_thread(
                    mapping.thread_id, message, files
                )
            except (DiscordAPIError, httpx.HTTPError) as e:
                logger.warning(
                    f"Ticket {ticket_id}: posting article {article.id} "
                    f"failed, will retry next pass: {e}"
                )
                break

            self.store.mark_article_synced(
                article.id,
                ticket_id,
                mapping.thread_id,
                message_id,
                SyncDirection.REMOTE_TO_LOCAL,
            )
            posted += 1
            logger.info(
                f"Synced article {article.id} of ticket {ticket_id} "
                f"to message {message_id}"
            )
        return posted

    async def _collect_remote_attachments(
        self, ticket_id: int, article: ZammadArticle
    ) -> Tuple[List[OutgoingFile], List[str]]:
        budget = AttachmentBudget(self.limits.get_limits())
        files: List[OutgoingFile] = []
        links: List[str] = []
        target = article_url(settings.zammad_link_base, ticket_id, article.id)

        for attachment in article.attachments:
            size = attachment.size
            if budget.is_placeholder(size):
                continue
            link = (
                f"[{attachment.filename} ({format_megabytes(size)})]({target})"
            )
            cap = budget.download_cap(size)
            if not cap:
                links.append(link)
                continue
            try:
                downloaded = await self.zammad.download_attachment(
                    ticket_id, article.id, attachment.id, max_bytes=cap
                )
            except (ZammadAPIError, AttachmentTooLarge, httpx.HTTPError) as e:
                logger.warning(
                    f"Article {article.id}: attachment {attachment.id} "
                    f"linked instead of uploaded: {e}"
                )
                links.append(link)
                continue
            filename = ensure_file_extension(
                attachment.filename,
                downloaded.content_type or attachment.content_type,
            )
            files.append(OutgoingFile(data=downloaded.data, filename=filename))
            budget.record(len(downloaded.data))

        if links:
            logger.info(
                f"Article {article.id}: {len(files)} attachment(s) uploaded, "
                f"{len(links)} linked"
            )
        return files, links

    # ------------------------------------------------------------------
    # Discord -> Zammad
    # ------------------------------------------------------------------

    async def forward_local_message(
        self, message: LocalMessage
    ) -> Optional[int]:
        """Forward a thread message as an internal note. Returns the new
        article id, or None when the message is not forwarded."""
        if message.author_is_bot:
            return None
        mapping = self.store.get_thread_by_thread(message.channel_id)
        if mapping is None:
            logger.debug(f"Message in untracked channel {message.channel_id}")
            return None
        actor = self.store.get_actor(message.author_id)
        if actor is None:
            logger.warning(
                f"User {message.author_id} ({message.author_name}) has no "
                f"Zammad mapping, ignoring message on ticket "
                f"{mapping.ticket_id}"
            )
            return None

        return await self.queue.run(
            mapping.ticket_id,
            lambda: self._create_remote_article(message, mapping, actor),
        )

    async def _create_remote_article(
        self, message: LocalMessage, mapping: TicketThread, actor
    ) -> Optional[int]:
        attachments, links = await self._collect_local_attachments(message)
        body = message.content or ""
        if links:
            body = (body + "\n\nAttachments in Discord:\n" + "\n".join(links))
        if not body.strip() and not attachments:
            return None

        article = await self.zammad.create_article(
            ticket_id=mapping.ticket_id,
            body=body.strip(),
            internal=True,
            type="note",
            sender="Agent",
            attachments=attachments,
            **{"from": actor.remote_email, "created_by_id": actor.remote_id},
        )
        self.store.mark_article_synced(
            article.id,
            mapping.ticket_id,
            mapping.thread_id,
            message.message_id,
            SyncDirection.LOCAL_TO_REMOTE,
        )
        logger.info(
            f"Forwarded message {message.message_id} to ticket "
            f"{mapping.ticket_id} as article {article.id} "
            f"({len(attachments)} attachment(s))"
        )
        return article.id

    async def _collect_local_attachments(
        self, message: LocalMessage
    ) -> Tuple[List[Dict[str, str]], List[str]]:
        limits = self.limits.get_limits()
        local_cap = int(settings.attachment_local_max_mb * MB)
        # Per-file limit here is the Discord upload cap
        budget = AttachmentBudget(
            AttachmentLimits(
                per_file_mb=settings.attachment_local_max_mb,
                total_mb=max(limits.total_mb, settings.attachment_local_max_mb),
                max_count=limits.max_count,
                download_cap_mb=settings.attachment_local_max_mb,
            ),
            hard_cap=local_cap,
        )
        attachments: List[Dict[str, str]] = []
        links: List[str] = []
        for attachment in message.attachments:
            link = f"{attachment.filename}: {attachment.url}"
            cap = budget.download_cap(attachment.size)
            if not cap:
                links.append(link)
                continue
            try:
                data = await self.discord.download_attachment(
                    attachment.url, max_bytes=cap
                )
            except (DiscordAPIError, httpx.HTTPError) as e:
                logger.warning(
                    f"Message {message.message_id}: could not download "
                    f"{attachment.filename}: {e}"
                )
                links.append(link)
                continue
            attachments.append({
                "filename": attachment.filename,
                "data": base64.b64encode(data).decode("ascii"),
                "mime-type": (
                    attachment.content_type or "application/octet-stream"
                ),
            })
            budget.record(len(data))
        return attachments, links
