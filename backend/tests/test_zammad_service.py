"""
Tests for the Zammad REST client against an httpx.MockTransport
"""

import json

import httpx
import pytest

from services.zammad_service import (
    PER_PAGE,
    AttachmentTooLarge,
    ZammadAPIError,
    ZammadService,
)


def _service(handler):
    return ZammadService(
        base_url="https://zammad.test",
        api_token="secret",
        transport=httpx.MockTransport(handler),
    )


def _ticket(ticket_id, state="open"):
    return {"id": ticket_id, "number": 30000 + ticket_id, "title": "t",
            "state": state}


class TestTickets:
    @pytest.mark.asyncio
    async def test_get_ticket_sends_auth_and_expand(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json=_ticket(5))

        zammad = _service(handler)
        ticket = await zammad.get_ticket(5)
        await zammad.aclose()

        assert ticket.number == "30005"
        assert seen["auth"] == "Bearer secret"
        assert seen["url"] == (
            "https://zammad.test/api/v1/tickets/5?expand=true"
        )

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        zammad = _service(lambda request: httpx.Response(404, text="nope"))

        with pytest.raises(ZammadAPIError) as exc:
            await zammad.get_ticket(5)
        await zammad.aclose()

        assert exc.value.is_not_found
        assert exc.value.path == "/tickets/5"

    @pytest.mark.asyncio
    async def test_list_open_tickets_pages_and_filters(self):
        pages = {
            "1": [_ticket(i) for i in range(1, PER_PAGE)]
            + [_ticket(PER_PAGE, state="closed")],
            "2": [_ticket(500), _ticket(501, state="merged")],
        }

        def handler(request):
            return httpx.Response(
                200, json=pages[request.url.params["page"]]
            )

        zammad = _service(handler)
        tickets = await zammad.list_open_tickets()
        await zammad.aclose()

        ids = [t.id for t in tickets]
        assert len(ids) == PER_PAGE
        assert PER_PAGE not in ids
        assert 500 in ids and 501 not in ids

    @pytest.mark.asyncio
    async def test_list_open_tickets_stops_at_page_limit(self):
        calls = []

        def handler(request):
            calls.append(request.url.params["page"])
            return httpx.Response(
                200, json=[_ticket(i) for i in range(PER_PAGE)]
            )

        zammad = _service(handler)
        await zammad.list_open_tickets(max_pages=2)
        await zammad.aclose()

        assert calls == ["1", "2"]

    @pytest.mark.asyncio
    async def test_update_ticket_drops_none_fields(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_ticket(5))

        zammad = _service(handler)
        await zammad.update_ticket(5, state_id=4, pending_time=None)
        await zammad.aclose()

        assert seen["body"] == {"state_id": 4}

    @pytest.mark.asyncio
    async def test_ticket_by_number_from_search_assets(self):
        def handler(request):
            return httpx.Response(200, json={
                "tickets": [5],
                "assets": {"Ticket": {"5": _ticket(5)}},
            })

        zammad = _service(handler)
        ticket = await zammad.get_ticket_by_number("30005")
        missing = await zammad.get_ticket_by_number("99999")
        await zammad.aclose()

        assert ticket.id == 5
        assert missing is None

    @pytest.mark.asyncio
    async def test_history_entries(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json={"history": [
                {"id": 1, "object": "Ticket", "type": "updated",
                 "attribute": "state", "value_from": "open",
                 "value_to": "closed", "created_by_id": 7},
            ]})

        zammad = _service(handler)
        history = await zammad.get_history(5)
        await zammad.aclose()

        assert seen["path"] == "/api/v1/ticket_history/5"
        assert [(h.attribute, h.value_to) for h in history] == [
            ("state", "closed")
        ]

    @pytest.mark.asyncio
    async def test_empty_history(self):
        zammad = _service(lambda request: httpx.Response(200, json={}))

        assert await zammad.get_history(5) == []
        await zammad.aclose()


class TestArticles:
    @pytest.mark.asyncio
    async def test_create_article_marks_discord_origin(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201, json={"id": 77, "ticket_id": 5, "body": "hi"}
            )

        zammad = _service(handler)
        article = await zammad.create_article(
            5, "hi", internal=True, **{"from": "a@x.org", "origin_by_id": None}
        )
        await zammad.aclose()

        assert article.id == 77
        assert seen["body"]["preferences"] == {"discord": {"synced": True}}
        assert seen["body"]["from"] == "a@x.org"
        assert "origin_by_id" not in seen["body"]
        assert seen["body"]["internal"] is True

    @pytest.mark.asyncio
    async def test_download_attachment(self):
        def handler(request):
            return httpx.Response(
                200, content=b"abc", headers={"content-type": "image/png"}
            )

        zammad = _service(handler)
        downloaded = await zammad.download_attachment(1, 2, 3, max_bytes=10)
        await zammad.aclose()

        assert downloaded.data == b"abc"
        assert downloaded.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_download_over_cap_aborts(self):
        zammad = _service(
            lambda request: httpx.Response(200, content=b"x" * 100)
        )

        with pytest.raises(AttachmentTooLarge):
            await zammad.download_attachment(1, 2, 3, max_bytes=10)
        await zammad.aclose()


class TestUsersAndStates:
    @pytest.mark.asyncio
    async def test_user_names_cached_and_system_user_skipped(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(
                200, json={"id": 5, "firstname": "Ann", "lastname": "Lee"}
            )

        zammad = _service(handler)
        assert await zammad.get_user_name(5) == "Ann Lee"
        assert await zammad.get_user_name(5) == "Ann Lee"
        assert await zammad.get_user_name(1) is None
        assert await zammad.get_user_name(None) is None
        await zammad.aclose()

        assert calls == ["/api/v1/users/5"]

    @pytest.mark.asyncio
    async def test_user_name_failure_returns_none(self):
        zammad = _service(lambda request: httpx.Response(500))

        assert await zammad.get_user_name(5) is None
        await zammad.aclose()

    @pytest.mark.asyncio
    async def test_find_user_falls_back_to_paging(self):
        def handler(request):
            if request.url.path.endswith("/users/search"):
                return httpx.Response(500, text="index broken")
            return httpx.Response(200, json=[
                {"id": 3, "email": "other@x.org"},
                {"id": 4, "email": "Ann@X.org"},
            ])

        zammad = _service(handler)
        user = await zammad.find_user_by_email("ann@x.org")
        await zammad.aclose()

        assert user.id == 4

    @pytest.mark.asyncio
    async def test_state_lookup_is_case_insensitive(self):
        zammad = _service(lambda request: httpx.Response(
            200, json=[{"id": 4, "name": "closed"}, {"id": 2, "name": "open"}]
        ))

        state = await zammad.get_state_by_name("Closed")
        await zammad.aclose()

        assert state.id == 4


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self):
        zammad = _service(lambda request: httpx.Response(200, json={}))

        assert await zammad.health_check() is True
        await zammad.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_unhealthy(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        zammad = _service(handler)

        assert await zammad.health_check() is False
        await zammad.aclose()
