"""
Test Configuration and Fixtures

No test may reach Zammad or Discord. Two layers keep it that way:

1. TESTING=true switches config.py to config.test.json and database.py to
   an in-memory SQLite database, and stops main.py from starting the
   scheduler or the initial reconciliation pass.
2. Every service under test talks to MockZammadService / MockDiscordService
   below (in-memory fakes with the same async interface), or to the real
   clients wired to an httpx.MockTransport.
"""

import os

# Must be set before config/database are imported
os.environ["TESTING"] = "true"
os.environ["TEST"] = "true"

from datetime import timedelta  # noqa: E402
from itertools import count  # noqa: E402
from typing import Dict, List, Optional, Set  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import models  # noqa: E402,F401
from config import settings  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from models.ticket_thread import TicketThread  # noqa: E402
from schemas.discord import ThreadInfo  # noqa: E402
from schemas.zammad import (  # noqa: E402
    DownloadedFile,
    ZammadArticle,
    ZammadState,
    ZammadTicket,
    ZammadUser,
)
from services.discord_service import DiscordAPIError  # noqa: E402
from services.state_store import StateStore  # noqa: E402
from services.sync_runtime import SyncRuntime, get_runtime  # noqa: E402
from services.zammad_service import (  # noqa: E402
    AttachmentTooLarge,
    ZammadAPIError,
)
from utils.clock import utcnow  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"
TICKETS_CHANNEL_ID = "900"
TICKET_ROLE_ID = "777"
RELAY_TOKEN = "test-relay-token"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "zammad_base_url", "https://zammad.test")
    monkeypatch.setattr(
        settings, "zammad_public_url", "https://support.example.com"
    )
    monkeypatch.setattr(settings, "zammad_api_token", "zammad-token")
    monkeypatch.setattr(settings, "zammad_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "discord_token", "discord-token")
    monkeypatch.setattr(settings, "discord_guild_id", "1")
    monkeypatch.setattr(
        settings, "discord_tickets_channel_id", TICKETS_CHANNEL_ID
    )
    monkeypatch.setattr(settings, "discord_ticket_role_id", TICKET_ROLE_ID)
    monkeypatch.setattr(settings, "relay_token", RELAY_TOKEN)
    for key in (
        "ATTACHMENT_PER_FILE_MB",
        "ATTACHMENT_TOTAL_MB",
        "ATTACHMENT_MAX_COUNT",
        "ATTACHMENT_DOWNLOAD_CAP_MB",
    ):
        monkeypatch.delenv(key, raising=False)
    return settings


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    return StateStore(SessionLocal)


@pytest.fixture
def age_mapping(db_session):
    """Pretend a mapping was last touched `seconds` ago"""

    def age(ticket_id: int, seconds: float) -> None:
        db_session.query(TicketThread).filter(
            TicketThread.ticket_id == ticket_id
        ).update({"updated_at": utcnow() - timedelta(seconds=seconds)})
        db_session.commit()

    return age


# ----------------------------------------------------------------------
# In-memory collaborators
# ----------------------------------------------------------------------


class MockDiscordService:
    """Records every call. Thread and member state lives in dicts."""

    def __init__(self):
        self._ids = count(1000)
        self.messages: List[dict] = []
        self.edited_messages: List[dict] = []
        self.threads: Dict[str, ThreadInfo] = {}
        self.thread_members: Dict[str, Set[str]] = {}
        self.thread_edits: List[dict] = []
        self.role_members: Set[str] = {"u1", "u2"}
        self.role_member_fetches = 0
        self.presence: List[str] = []
        self.downloads: Dict[str, bytes] = {}
        self.fail_sends_to: Set[str] = set()
        self.fail_send_after: Optional[int] = None
        self.closed = False

    def _next_id(self) -> str:
        return str(next(self._ids))

    def thread_messages(self, thread_id: str) -> List[dict]:
        return [m for m in self.messages if m["channel_id"] == thread_id]

    async def send_message(self, channel_id, content=None, files=(), embeds=None):
        if channel_id in self.fail_sends_to or (
            self.fail_send_after is not None
            and len(self.messages) >= self.fail_send_after
        ):
            raise DiscordAPIError(500, f"/channels/{channel_id}/messages")
        message_id = self._next_id()
        self.messages.append({
            "id": message_id,
            "channel_id": channel_id,
            "content": content,
            "files": list(files),
            "embeds": embeds,
        })
        return message_id

    async def edit_message(self, channel_id, message_id, content=None, embeds=None):
        self.edited_messages.append({
            "channel_id": channel_id,
            "message_id": message_id,
            "content": content,
            "embeds": embeds,
        })

    async def start_thread(
        self, channel_id, message_id, name, auto_archive_minutes=None, reason=None
    ):
        thread_id = self._next_id()
        self.threads[thread_id] = ThreadInfo(id=thread_id, name=name)
        self.thread_members[thread_id] = set()
        return thread_id

    async def get_thread(self, thread_id):
        info = self.threads[thread_id]
        return ThreadInfo(
            id=info.id, name=info.name,
            archived=info.archived, locked=info.locked,
        )

    async def edit_thread(
        self, thread_id, name=None, archived=None, locked=None, reason=None
    ):
        info = self.threads[thread_id]
        edit = {"thread_id": thread_id}
        if name is not None:
            info.name = name
            edit["name"] = name
        if archived is not None:
            info.archived = archived
            edit["archived"] = archived
        if locked is not None:
            info.locked = locked
            edit["locked"] = locked
        self.thread_edits.append(edit)

    async def add_thread_member(self, thread_id, user_id):
        self.thread_members[thread_id].add(user_id)

    async def remove_thread_member(self, thread_id, user_id):
        self.thread_members[thread_id].discard(user_id)

    async def list_thread_member_ids(self, thread_id):
        return set(self.thread_members.get(thread_id, set()))

    async def get_role_member_ids(self, role_id):
        self.role_member_fetches += 1
        return set(self.role_members)

    async def set_presence(self, status):
        self.presence.append(status)

    async def download_attachment(self, url, max_bytes):
        if url not in self.downloads:
            raise DiscordAPIError(404, url)
        data = self.downloads[url]
        if len(data) > max_bytes:
            raise DiscordAPIError(413, url)
        return data

    async def aclose(self):
        self.closed = True


class MockZammadService:
    """Zammad stand-in. `tickets` answers point reads; `listing`, when
    set, answers the open-ticket listing (to simulate a stale list)."""

    def __init__(self):
        self._ids = count(5000)
        self.tickets: Dict[int, ZammadTicket] = {}
        self.listing: Optional[List[ZammadTicket]] = None
        self.articles: Dict[int, List[ZammadArticle]] = {}
        self.users: Dict[int, ZammadUser] = {}
        self.files: Dict[tuple, DownloadedFile] = {}
        self.states = [
            ZammadState(id=i, name=name)
            for i, name in enumerate(
                [
                    "new",
                    "open",
                    "pending reminder",
                    "closed",
                    "merged",
                    "pending close",
                    "closed (locked)",
                    "closed (locked until)",
                    "waiting for reply",
                ],
                start=1,
            )
        ]
        self.tags: Dict[int, List[str]] = {}
        self.created_articles: List[dict] = []
        self.updates: List[dict] = []
        self.merges: List[tuple] = []
        self.time_entries: List[dict] = []
        self.point_reads: List[int] = []
        self.healthy = True
        self.fail_listing = False
        self.closed = False

    # helpers for tests
    def add_ticket(self, ticket_id=100, number=None, title="Printer on fire",
                   state="new", **fields):
        ticket = ZammadTicket(
            id=ticket_id,
            number=number or str(ticket_id),
            title=title,
            state=state,
            **fields,
        )
        self.tickets[ticket_id] = ticket
        self.articles.setdefault(ticket_id, [])
        return ticket

    def set_state(self, ticket_id, state):
        self.tickets[ticket_id] = self.tickets[ticket_id].model_copy(
            update={"state": state}
        )

    def add_article(self, ticket_id, article_id, body="Hello",
                    sender="Customer", **fields):
        article = ZammadArticle(
            id=article_id, ticket_id=ticket_id, body=body, sender=sender,
            content_type=fields.pop("content_type", "text/html"), **fields,
        )
        self.articles.setdefault(ticket_id, []).append(article)
        return article

    # ZammadService interface
    async def get_ticket(self, ticket_id, expand=True):
        self.point_reads.append(ticket_id)
        if ticket_id not in self.tickets:
            raise ZammadAPIError(404, f"/tickets/{ticket_id}")
        return self.tickets[ticket_id]

    async def list_open_tickets(self, max_pages=None):
        if self.fail_listing:
            raise ZammadAPIError(502, "/tickets")
        source = self.listing if self.listing is not None else list(
            self.tickets.values()
        )
        from utils.states import is_closed_state

        return [t for t in source if not is_closed_state(t.state)]

    async def update_ticket(self, ticket_id, **fields):
        data = {k: v for k, v in fields.items() if v is not None}
        self.updates.append({"ticket_id": ticket_id, **data})
        return self.tickets.get(ticket_id)

    async def list_articles(self, ticket_id):
        # Zammad does not promise id order
        return list(reversed(self.articles.get(ticket_id, [])))

    async def create_article(self, ticket_id, body, internal=False, type="note",
                             sender="Agent", content_type="text/plain",
                             attachments=None, preferences=None, **extra):
        article_id = next(self._ids)
        record = {
            "id": article_id,
            "ticket_id": ticket_id,
            "body": body,
            "internal": internal,
            "type": type,
            "sender": sender,
            "attachments": attachments or [],
            **extra,
        }
        self.created_articles.append(record)
        article = ZammadArticle(
            id=article_id, ticket_id=ticket_id, body=body, sender=sender,
            internal=internal, content_type=content_type,
        )
        self.articles.setdefault(ticket_id, []).append(article)
        return article

    async def download_attachment(self, ticket_id, article_id, attachment_id,
                                  max_bytes):
        key = (ticket_id, article_id, attachment_id)
        if key not in self.files:
            raise ZammadAPIError(404, "/ticket_attachment")
        downloaded = self.files[key]
        if len(downloaded.data) > max_bytes:
            raise AttachmentTooLarge(max_bytes)
        return downloaded

    async def get_user_name(self, user_id):
        user = self.users.get(user_id)
        return user.full_name if user else None

    async def find_user_by_email(self, email):
        for user in self.users.values():
            if (user.email or "").lower() == email.lower():
                return user
        return None

    async def get_state_by_name(self, name):
        for state in self.states:
            if state.name == name.lower():
                return state
        return None

    async def get_ticket_by_number(self, number):
        for ticket in self.tickets.values():
            if ticket.number == number:
                return ticket
        return None

    async def merge_tickets(self, source_id, target_id):
        self.merges.append((source_id, target_id))

    async def add_time_accounting(self, ticket_id, time_unit, type_id=None):
        self.time_entries.append(
            {"ticket_id": ticket_id, "time_unit": time_unit}
        )

    async def get_tags(self, ticket_id):
        return list(self.tags.get(ticket_id, []))

    async def add_tag(self, ticket_id, tag):
        self.tags.setdefault(ticket_id, []).append(tag)

    async def remove_tag(self, ticket_id, tag):
        self.tags.get(ticket_id, []).remove(tag)

    async def health_check(self, timeout=None):
        return self.healthy

    async def aclose(self):
        self.closed = True


@pytest.fixture
def discord():
    return MockDiscordService()


@pytest.fixture
def zammad():
    return MockZammadService()


@pytest.fixture
def runtime(store, zammad, discord):
    return SyncRuntime(store=store, zammad=zammad, discord=discord)


@pytest.fixture
def client(runtime):
    from main import app

    app.dependency_overrides[get_runtime] = lambda: runtime
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
