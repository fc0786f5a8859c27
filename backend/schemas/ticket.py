from dataclasses import dataclass
from typing import Optional

from utils.states import normalize_state


@dataclass
class TicketView:
    """Ticket as rendered in Discord: state normalized, names resolved"""

    id: int
    number: str
    title: str
    state: str
    url: str
    priority: Optional[str] = None
    customer: Optional[str] = None
    owner: Optional[str] = None
    owner_id: Optional[int] = None
    owner_mention: Optional[str] = None
    group: Optional[str] = None
    created_at: Optional[str] = None
    escalation_at: Optional[str] = None

    def __post_init__(self):
        self.state = normalize_state(self.state)


def ticket_url(base_url: str, ticket_id: int) -> str:
    # Path form without a fragment, Discord embeds reject "#" URLs
    return f"{base_url.rstrip('/')}/ticket/zoom/{ticket_id}"


def article_url(base_url: str, ticket_id: int, article_id: int) -> str:
    return f"{base_url.rstrip('/')}/#ticket/zoom/{ticket_id}/{article_id}"
