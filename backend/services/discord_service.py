import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

import httpx

from config import settings
from schemas.discord import OutgoingFile, ThreadInfo
from services.task_queue import EgressQueue

logger = logging.getLogger(__name__)

# Never ping anyone from replicated content
NO_MENTIONS = {"parse": []}
MAX_RATE_LIMIT_RETRIES = 3
GUILD_MEMBERS_PAGE = 1000


class DiscordAPIError(Exception):
    """Non-2xx response from the Discord REST API"""

    def __init__(self, status_code: int, path: str, body: str = ""):
        self.status_code = status_code
        self.path = path
        self.body = body
        super().__init__(f"Discord API {status_code}: {path} - {body[:200]}")


class DiscordService:
    """
    Discord REST (v10) client used by the sync engine.

    Every call is funnelled through the shared EgressQueue so the
    aggregate request rate stays under the platform limit no matter which
    ticket lane issued it.
    """

    def __init__(
        self,
        egress: EgressQueue,
        token: Optional[str] = None,
        guild_id: Optional[str] = None,
        tickets_channel_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.egress = egress
        self.token = token or settings.discord_token
        self.guild_id = guild_id or settings.discord_guild_id
        self.tickets_channel_id = (
            tickets_channel_id or settings.discord_tickets_channel_id
        )
        self._client = httpx.AsyncClient(
            base_url=settings.discord_api_base_url,
            headers={"Authorization": f"Bot {self.token}"},
            timeout=settings.remote_timeout,
            transport=transport,
        )
        # CDN downloads must not carry the bot token
        self._cdn = httpx.AsyncClient(
            timeout=settings.attachment_timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._cdn.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        reason: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if reason:
            headers["X-Audit-Log-Reason"] = reason

        async def call() -> httpx.Response:
            for _ in range(MAX_RATE_LIMIT_RETRIES):
                response = await self._client.request(
                    method, path, headers=headers, **kwargs
                )
                if response.status_code != 429:
                    return response
                retry_after = float(
                    response.headers.get("retry-after")
                    or _json_field(response, "retry_after")
                    or 1
                )
                logger.warning(
                    f"[DiscordService] Rate limited on {method} {path}, "
                    f"retrying in {retry_after}s"
                )
                await asyncio.sleep(retry_after)
            return response

        response = await self.egress.run(call)
        if response.status_code >= 400:
            logger.error(
                f"[DiscordService] {method} {path} -> "
                f"{response.status_code}: {response.text[:500]}"
            )
            raise DiscordAPIError(response.status_code, path, response.text)
        return response

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        channel_id: str,
        content: Optional[str] = None,
        files: Sequence[OutgoingFile] = (),
        embeds: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        payload: Dict[str, Any] = {"allowed_mentions": NO_MENTIONS}
        if content:
            payload["content"] = content
        if embeds:
            payload["embeds"] = embeds
        path = f"/channels/{channel_id}/messages"
        if files:
            payload["attachments"] = [
                {"id": index, "filename": f.filename}
                for index, f in enumerate(files)
            ]
            multipart = {
                f"files[{index}]": (f.filename, f.data)
                for index, f in enumerate(files)
            }
            response = await self._request(
                "POST",
                path,
                data={"payload_json": json.dumps(payload)},
                files=multipart,
            )
        else:
            response = await self._request("POST", path, json=payload)
        return str(response.json()["id"])

    async def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: Optional[str] = None,
        embeds: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        payload: Dict[str, Any] = {"allowed_mentions": NO_MENTIONS}
        if content is not None:
            payload["content"] = content
        if embeds is not None:
            payload["embeds"] = embeds
        await self._request(
            "PATCH", f"/channels/{channel_id}/messages/{message_id}",
            json=payload,
        )

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def start_thread(
        self,
        channel_id: str,
        message_id: str,
        name: str,
        auto_archive_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> str:
        response = await self._request(
            "POST",
            f"/channels/{channel_id}/messages/{message_id}/threads",
            reason=reason,
            json={
                "name": name,
                "auto_archive_duration": (
                    auto_archive_minutes or settings.thread_auto_archive_minutes
                ),
            },
        )
        return str(response.json()["id"])

    async def get_thread(self, thread_id: str) -> ThreadInfo:
        response = await self._request("GET", f"/channels/{thread_id}")
        data = response.json()
        metadata = data.get("thread_metadata") or {}
        return ThreadInfo(
            id=str(data["id"]),
            name=data.get("name", ""),
            archived=bool(metadata.get("archived")),
            locked=bool(metadata.get("locked")),
        )

    async def edit_thread(
        self,
        thread_id: str,
        name: Optional[str] = None,
        archived: Optional[bool] = None,
        locked: Optional[bool] = None,
        reason: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {}
        if name is not None:
            payload["name"] = name
        if archived is not None:
            payload["archived"] = archived
        if locked is not None:
            payload["locked"] = locked
        if not payload:
            return
        await self._request(
            "PATCH", f"/channels/{thread_id}", reason=reason, json=payload
        )

    async def add_thread_member(self, thread_id: str, user_id: str) -> None:
        await self._request(
            "PUT", f"/channels/{thread_id}/thread-members/{user_id}"
        )

    async def remove_thread_member(self, thread_id: str, user_id: str) -> None:
        await self._request(
            "DELETE", f"/channels/{thread_id}/thread-members/{user_id}"
        )

    async def list_thread_member_ids(self, thread_id: str) -> Set[str]:
        response = await self._request(
            "GET", f"/channels/{thread_id}/thread-members"
        )
        return {str(m["user_id"]) for m in response.json()}

    # ------------------------------------------------------------------
    # Guild
    # ------------------------------------------------------------------

    async def get_role_member_ids(self, role_id: str) -> Set[str]:
        members: Set[str] = set()
        after = "0"
        while True:
            response = await self._request(
                "GET",
                f"/guilds/{self.guild_id}/members",
                params={"limit": GUILD_MEMBERS_PAGE, "after": after},
            )
            page = response.json()
            for member in page:
                user = member.get("user") or {}
                if user.get("bot"):
                    continue
                if role_id in {str(r) for r in member.get("roles", [])}:
                    members.add(str(user["id"]))
            if len(page) < GUILD_MEMBERS_PAGE:
                break
            after = str(page[-1]["user"]["id"])
        return members

    async def set_presence(self, status: str) -> None:
        """Render bot health as the tickets channel topic"""
        topic = (
            "Watching Zammad tickets"
            if status == "ok"
            else "ZAMMAD UNREACHABLE - ticket sync paused"
        )
        await self._request(
            "PATCH",
            f"/channels/{self.tickets_channel_id}",
            reason=f"Zammad health: {status}",
            json={"topic": topic},
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def download_attachment(self, url: str, max_bytes: int) -> bytes:
        async def call() -> bytes:
            async with self._cdn.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise DiscordAPIError(response.status_code, url)
                data = bytearray()
                async for chunk in response.aiter_bytes():
                    data.extend(chunk)
                    if len(data) > max_bytes:
                        raise DiscordAPIError(
                            413, url, f"exceeds {max_bytes} bytes"
                        )
                return bytes(data)

        return await self.egress.run(call)


def _json_field(response: httpx.Response, field: str) -> Optional[Any]:
    try:
        return response.json().get(field)
    except ValueError:
        return None
