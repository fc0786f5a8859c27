"""
StateStore - the only writer of persisted sync state.

Owns four core tables (ticket_threads, synced_articles, webhook_deliveries,
actor_map) plus the app_settings overrides. Every method opens its own
short session so callers never hold a session across network awaits.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.actor_map import ActorMap
from models.app_setting import AppSetting
from models.synced_article import SyncDirection, SyncedArticle
from models.ticket_thread import TicketThread
from models.webhook_delivery import WebhookDelivery
from utils.clock import seconds_since, utcnow
from utils.states import CLOSED_STATES

logger = logging.getLogger(__name__)


class StateStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # ticket_threads
    # ------------------------------------------------------------------

    def get_thread_by_ticket(self, ticket_id: int) -> Optional[TicketThread]:
        with self._session() as db:
            return db.get(TicketThread, ticket_id)

    def get_thread_by_thread(self, thread_id: str) -> Optional[TicketThread]:
        with self._session() as db:
            return (
                db.query(TicketThread)
                .filter(TicketThread.thread_id == thread_id)
                .first()
            )

    def list_threads(self) -> List[TicketThread]:
        with self._session() as db:
            return db.query(TicketThread).order_by(TicketThread.ticket_id).all()

    def create_thread(
        self,
        ticket_id: int,
        ticket_number: str,
        thread_id: str,
        header_message_id: str,
        channel_id: str,
        title: Optional[str],
        state: str,
    ) -> TicketThread:
        with self._session() as db:
            mapping = TicketThread(
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                thread_id=thread_id,
                header_message_id=header_message_id,
                channel_id=channel_id,
                title=title,
                state=state,
            )
            db.add(mapping)
            db.commit()
            db.refresh(mapping)
            logger.info(
                f"Stored mapping ticket {ticket_id} -> thread {thread_id}"
            )
            return mapping

    def update_thread_state(
        self, ticket_id: int, state: str
    ) -> Optional[TicketThread]:
        with self._session() as db:
            mapping = db.get(TicketThread, ticket_id)
            if not mapping:
                return None
            mapping.state = state
            mapping.updated_at = utcnow()
            db.commit()
            db.refresh(mapping)
            return mapping

    def update_thread_title(
        self, ticket_id: int, title: str
    ) -> Optional[TicketThread]:
        with self._session() as db:
            mapping = db.get(TicketThread, ticket_id)
            if not mapping:
                return None
            mapping.title = title
            mapping.updated_at = utcnow()
            db.commit()
            db.refresh(mapping)
            return mapping

    # ------------------------------------------------------------------
    # synced_articles
    # ------------------------------------------------------------------

    def is_article_synced(self, article_id: int) -> bool:
        with self._session() as db:
            return db.get(SyncedArticle, article_id) is not None

    def synced_article_ids(self, ticket_id: int) -> Set[int]:
        with self._session() as db:
            rows = (
                db.query(SyncedArticle.article_id)
                .filter(SyncedArticle.ticket_id == ticket_id)
                .all()
            )
            return {row[0] for row in rows}

    def mark_article_synced(
        self,
        article_id: int,
        ticket_id: int,
        thread_id: str,
        local_message_id: Optional[str],
        direction: SyncDirection,
    ) -> bool:
        """Idempotent insert. Returns False when the article was already
        in the ledger."""
        with self._session() as db:
            if db.get(SyncedArticle, article_id) is not None:
                return False
            db.add(
                SyncedArticle(
                    article_id=article_id,
                    ticket_id=ticket_id,
                    thread_id=thread_id,
                    local_message_id=local_message_id,
                    direction=direction,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def prune_synced_articles(self, older_than: datetime) -> int:
        """Drop old ledger rows. Rows of tickets with a thread that is not
        closed are kept: replication re-posts anything missing here."""
        live_tickets = select(TicketThread.ticket_id).where(
            TicketThread.state.notin_(sorted(CLOSED_STATES))
        )
        with self._session() as db:
            pruned = (
                db.query(SyncedArticle)
                .filter(
                    SyncedArticle.synced_at < older_than,
                    SyncedArticle.ticket_id.notin_(live_tickets),
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        if pruned:
            logger.debug(f"Pruned {pruned} synced article entries")
        return pruned

    # ------------------------------------------------------------------
    # webhook_deliveries
    # ------------------------------------------------------------------

    def is_delivery_processed(self, delivery_id: str) -> bool:
        with self._session() as db:
            return db.get(WebhookDelivery, delivery_id) is not None

    def mark_delivery_processed(self, delivery_id: str) -> bool:
        """Insert the delivery id. False means it was already recorded."""
        with self._session() as db:
            if db.get(WebhookDelivery, delivery_id) is not None:
                return False
            db.add(WebhookDelivery(delivery_id=delivery_id))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def unmark_delivery_processed(self, delivery_id: str) -> None:
        with self._session() as db:
            db.query(WebhookDelivery).filter(
                WebhookDelivery.delivery_id == delivery_id
            ).delete(synchronize_session=False)
            db.commit()

    def prune_deliveries(self, older_than: datetime) -> int:
        with self._session() as db:
            pruned = (
                db.query(WebhookDelivery)
                .filter(WebhookDelivery.received_at < older_than)
                .delete(synchronize_session=False)
            )
            db.commit()
        if pruned:
            logger.debug(f"Pruned {pruned} webhook delivery entries")
        return pruned

    # ------------------------------------------------------------------
    # actor_map
    # ------------------------------------------------------------------

    def get_actor(self, local_actor_id: str) -> Optional[ActorMap]:
        with self._session() as db:
            return db.get(ActorMap, local_actor_id)

    def get_actor_by_remote_id(self, remote_id: int) -> Optional[ActorMap]:
        with self._session() as db:
            return (
                db.query(ActorMap)
                .filter(ActorMap.remote_id == remote_id)
                .first()
            )

    def set_actor(
        self,
        local_actor_id: str,
        remote_email: str,
        remote_id: Optional[int] = None,
    ) -> ActorMap:
        with self._session() as db:
            actor = db.get(ActorMap, local_actor_id)
            if actor is None:
                actor = ActorMap(local_actor_id=local_actor_id)
                db.add(actor)
            actor.remote_email = remote_email
            actor.remote_id = remote_id
            db.commit()
            db.refresh(actor)
            return actor

    # ------------------------------------------------------------------
    # app_settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> Optional[str]:
        with self._session() as db:
            row = db.get(AppSetting, key)
            return row.value if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self._session() as db:
            row = db.get(AppSetting, key)
            if row is None:
                db.add(AppSetting(key=key, value=value))
            else:
                row.value = value
            db.commit()

    def delete_setting(self, key: str) -> None:
        with self._session() as db:
            db.query(AppSetting).filter(AppSetting.key == key).delete(
                synchronize_session=False
            )
            db.commit()


def mapping_age_seconds(mapping: TicketThread, now: datetime = None) -> float:
    """Seconds since the mapping was last touched (state/title change)."""
    age = seconds_since(mapping.updated_at or mapping.created_at, now)
    return float("inf") if age is None else age
