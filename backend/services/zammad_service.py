import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from schemas.zammad import (
    DownloadedFile,
    ZammadArticle,
    ZammadHistoryEntry,
    ZammadState,
    ZammadTicket,
    ZammadUser,
)
from utils.cache import CachedLoader
from utils.states import is_closed_state

logger = logging.getLogger(__name__)

PER_PAGE = 100
USER_SEARCH_MAX_PAGES = 50


class ZammadAPIError(Exception):
    """Non-2xx response from the Zammad REST API"""

    def __init__(self, status_code: int, path: str, body: str = ""):
        self.status_code = status_code
        self.path = path
        self.body = body
        super().__init__(f"Zammad API {status_code}: {path} - {body[:200]}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class AttachmentTooLarge(Exception):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Attachment exceeds download cap of {limit} bytes")


class ZammadService:
    """
    Async client for the Zammad REST API (/api/v1).

    All calls share one httpx.AsyncClient with bearer auth and a bounded
    timeout. States and user display names are cached briefly; the cache
    is never used for decisions about closing or reopening threads.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.zammad_base_url).rstrip("/")
        self.api_token = api_token or settings.zammad_api_token
        self.timeout = timeout or settings.remote_timeout
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            headers={"Authorization": f"Bearer {self.api_token}"},
            timeout=self.timeout,
            transport=transport,
        )
        self._states = CachedLoader(self._fetch_states, settings.states_ttl)
        self._user_names = CachedLoader(
            self._fetch_user_name, settings.user_names_ttl
        )
        if not self.base_url or not self.api_token:
            logger.warning(
                "[ZammadService] ZAMMAD_BASE_URL or ZAMMAD_API_TOKEN not set"
            )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        response = await self._client.request(
            method, path, params=params, json=json
        )
        if response.status_code >= 400:
            logger.error(
                f"[ZammadService] {method} {path} -> "
                f"{response.status_code}: {response.text[:500]}"
            )
            raise ZammadAPIError(response.status_code, path, response.text)
        return response

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_ticket(
        self, ticket_id: int, expand: bool = True
    ) -> ZammadTicket:
        params = {"expand": "true"} if expand else None
        response = await self._request(
            "GET", f"/tickets/{ticket_id}", params=params
        )
        return ZammadTicket.model_validate(response.json())

    async def list_tickets(
        self, page: int = 1, per_page: int = PER_PAGE
    ) -> List[ZammadTicket]:
        response = await self._request(
            "GET",
            "/tickets",
            params={"expand": "true", "page": page, "per_page": per_page},
        )
        return [ZammadTicket.model_validate(t) for t in response.json()]

    async def list_open_tickets(
        self, max_pages: Optional[int] = None
    ) -> List[ZammadTicket]:
        """Every ticket not in a closed variant. The listing endpoint can
        lag behind point reads, callers must not treat absence as closed."""
        max_pages = max_pages or settings.open_tickets_max_pages
        tickets: List[ZammadTicket] = []
        for page in range(1, max_pages + 1):
            batch = await self.list_tickets(page=page, per_page=PER_PAGE)
            tickets.extend(t for t in batch if not is_closed_state(t.state))
            if len(batch) < PER_PAGE:
                break
        else:
            logger.warning(
                f"[ZammadService] Open ticket listing stopped at "
                f"{max_pages} pages"
            )
        return tickets

    async def update_ticket(
        self, ticket_id: int, **fields: Any
    ) -> ZammadTicket:
        data = {k: v for k, v in fields.items() if v is not None}
        response = await self._request(
            "PUT", f"/tickets/{ticket_id}", json=data
        )
        return ZammadTicket.model_validate(response.json())

    async def search_tickets(
        self, query: str, limit: int = 10
    ) -> List[ZammadTicket]:
        response = await self._request(
            "GET",
            "/tickets/search",
            params={"query": query, "limit": limit, "expand": "true"},
        )
        data = response.json()
        # Without expand Zammad answers {"tickets": [...], "assets": {...}}
        if isinstance(data, dict):
            data = list(
                data.get("assets", {}).get("Ticket", {}).values()
            )
        return [ZammadTicket.model_validate(t) for t in data]

    async def get_ticket_by_number(
        self, ticket_number: str
    ) -> Optional[ZammadTicket]:
        results = await self.search_tickets(f"number:{ticket_number}", limit=1)
        for ticket in results:
            if ticket.number == str(ticket_number):
                return ticket
        return None

    async def merge_tickets(
        self, source_ticket_id: int, target_ticket_id: int
    ) -> None:
        await self._request(
            "PUT", f"/ticket_merge/{source_ticket_id}/{target_ticket_id}"
        )

    async def get_history(self, ticket_id: int) -> List[ZammadHistoryEntry]:
        response = await self._request("GET", f"/ticket_history/{ticket_id}")
        history = response.json().get("history") or []
        return [ZammadHistoryEntry.model_validate(h) for h in history]

    async def add_time_accounting(
        self, ticket_id: int, time_unit: float, type_id: Optional[int] = None
    ) -> None:
        data: Dict[str, Any] = {"ticket_id": ticket_id, "time_unit": time_unit}
        if type_id is not None:
            data["type_id"] = type_id
        await self._request("POST", "/ticket_time_accountings", json=data)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def get_tags(self, ticket_id: int) -> List[str]:
        response = await self._request(
            "GET", "/tags", params={"object": "Ticket", "o_id": ticket_id}
        )
        return response.json().get("tags") or []

    async def add_tag(self, ticket_id: int, tag: str) -> None:
        await self._request(
            "POST",
            "/tags/add",
            json={"object": "Ticket", "o_id": ticket_id, "item": tag},
        )

    async def remove_tag(self, ticket_id: int, tag: str) -> None:
        await self._request(
            "DELETE",
            "/tags/remove",
            json={"object": "Ticket", "o_id": ticket_id, "item": tag},
        )

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    async def list_articles(self, ticket_id: int) -> List[ZammadArticle]:
        response = await self._request(
            "GET",
            f"/ticket_articles/by_ticket/{ticket_id}",
            params={"expand": "true"},
        )
        return [ZammadArticle.model_validate(a) for a in response.json()]

    async def create_article(
        self,
        ticket_id: int,
        body: str,
        internal: bool = False,
        type: str = "note",
        sender: str = "Agent",
        content_type: str = "text/plain",
        attachments: Optional[List[Dict[str, str]]] = None,
        preferences: Optional[Dict[str, Any]] = None,
        **extra: Any,
    ) -> ZammadArticle:
        """
        Create an article. `attachments` items are
        {"filename", "data" (base64), "mime-type"}.

        preferences.discord.synced is always set so the echo webhook can be
        recognised as ours.
        """
        payload: Dict[str, Any] = {
            "ticket_id": ticket_id,
            "body": body,
            "type": type,
            "sender": sender,
            "internal": internal,
            "content_type": content_type,
            **{k: v for k, v in extra.items() if v is not None},
        }
        if attachments:
            payload["attachments"] = attachments
        payload["preferences"] = {
            **(preferences or {}),
            "discord": {"synced": True},
        }
        response = await self._request(
            "POST", "/ticket_articles", json=payload
        )
        return ZammadArticle.model_validate(response.json())

    async def download_attachment(
        self,
        ticket_id: int,
        article_id: int,
        attachment_id: int,
        max_bytes: int,
    ) -> DownloadedFile:
        """Stream an attachment, aborting once `max_bytes` is exceeded."""
        path = f"/ticket_attachment/{ticket_id}/{article_id}/{attachment_id}"
        async with self._client.stream(
            "GET", path, timeout=settings.attachment_timeout
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode(errors="replace")
                raise ZammadAPIError(response.status_code, path, body)
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise AttachmentTooLarge(max_bytes)
            chunks = bytearray()
            async for chunk in response.aiter_bytes():
                chunks.extend(chunk)
                if len(chunks) > max_bytes:
                    raise AttachmentTooLarge(max_bytes)
            content_type = response.headers.get(
                "content-type", "application/octet-stream"
            )
        return DownloadedFile(
            data=bytes(chunks),
            filename=f"attachment_{attachment_id}",
            content_type=content_type,
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> ZammadUser:
        response = await self._request("GET", f"/users/{user_id}")
        return ZammadUser.model_validate(response.json())

    async def _fetch_user_name(self, user_id: int) -> Optional[str]:
        user = await self.get_user(user_id)
        return user.full_name or user.email or None

    async def get_user_name(self, user_id: Optional[int]) -> Optional[str]:
        # Zammad uses id 1 for the unassigned "-" system user
        if not user_id or user_id == 1:
            return None
        try:
            return await self._user_names.get(user_id)
        except (ZammadAPIError, httpx.HTTPError) as e:
            logger.warning(
                f"[ZammadService] Could not resolve user {user_id}: {e}"
            )
            return None

    async def search_users(
        self, query: str, limit: int = 10
    ) -> List[ZammadUser]:
        response = await self._request(
            "GET", "/users/search", params={"query": query, "limit": limit}
        )
        return [ZammadUser.model_validate(u) for u in response.json()]

    async def find_user_by_email(self, email: str) -> Optional[ZammadUser]:
        """Exact email match. The search index can be missing or broken,
        so fall back to paging through the user list."""
        wanted = email.strip().lower()
        try:
            for user in await self.search_users(email):
                if (user.email or "").lower() == wanted:
                    return user
        except (ZammadAPIError, httpx.HTTPError) as e:
            logger.warning(
                f"[ZammadService] User search failed, paging instead: {e}"
            )
        for page in range(1, USER_SEARCH_MAX_PAGES + 1):
            response = await self._request(
                "GET",
                "/users",
                params={"page": page, "per_page": PER_PAGE, "expand": "true"},
            )
            users = response.json()
            for raw in users:
                user = ZammadUser.model_validate(raw)
                if (user.email or "").lower() == wanted:
                    return user
            if len(users) < PER_PAGE:
                break
        return None

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _fetch_states(self) -> List[ZammadState]:
        response = await self._request("GET", "/ticket_states")
        return [ZammadState.model_validate(s) for s in response.json()]

    async def get_states(self) -> List[ZammadState]:
        return await self._states.get()

    async def get_state_by_name(self, name: str) -> Optional[ZammadState]:
        wanted = name.strip().lower()
        for state in await self.get_states():
            if state.name.lower() == wanted:
                return state
        return None

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self, timeout: Optional[float] = None) -> bool:
        try:
            response = await self._client.get(
                "/monitoring/health_check",
                timeout=timeout or settings.health_check_timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"[ZammadService] Health check error: {e}")
            return False
        return response.is_success

