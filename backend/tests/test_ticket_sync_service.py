"""
Tests for TicketSyncService: thread creation, state transitions with the
reopen grace window, presentation refresh and the customer-replied notice
"""

import pytest

from services.ticket_sync_service import CUSTOMER_REPLIED_NOTICE


async def _thread_for(runtime, zammad, state="open", **fields):
    zammad.add_ticket(100, number="31001", state=state, **fields)
    mapping = await runtime.ticket_sync.sync_ticket(100)
    await runtime.drain(timeout=1)
    return mapping


class TestFirstSight:
    @pytest.mark.asyncio
    async def test_creates_thread_and_posts_articles(
        self, runtime, zammad, discord, store
    ):
        zammad.add_article(100, 1, body="Printer smokes")

        mapping = await _thread_for(runtime, zammad)

        assert store.get_thread_by_ticket(100).thread_id == mapping.thread_id
        assert discord.thread_members[mapping.thread_id] == {"u1", "u2"}
        assert [m["content"] for m in discord.thread_messages(
            mapping.thread_id
        )] == ["**Customer:** Printer smokes"]

    @pytest.mark.asyncio
    async def test_owner_and_customer_names_resolved(
        self, runtime, zammad, store
    ):
        from schemas.zammad import ZammadUser

        zammad.users[5] = ZammadUser(id=5, firstname="Ann", lastname="Lee")
        store.set_actor("u1", "ann@example.com", 5)
        zammad.users[9] = ZammadUser(id=9, firstname="Jane", lastname="Doe")
        ticket = zammad.add_ticket(100, owner_id=5, customer_id=9)

        view = await runtime.ticket_sync.build_view(ticket)

        assert view.owner == "Ann Lee"
        assert view.owner_mention == "<@u1>"
        assert view.customer == "Jane Doe"
        assert view.url == "https://support.example.com/ticket/zoom/100"


class TestTransitions:
    @pytest.mark.asyncio
    async def test_close_locks_thread(self, runtime, zammad, discord, store):
        mapping = await _thread_for(runtime, zammad)
        zammad.set_state(100, "closed")

        await runtime.ticket_sync.sync_ticket(100)

        info = discord.threads[mapping.thread_id]
        assert info.locked and info.archived
        assert discord.thread_members[mapping.thread_id] == set()
        assert store.get_thread_by_ticket(100).state == "closed"

    @pytest.mark.asyncio
    async def test_reopen_inside_grace_window_ignored(
        self, runtime, zammad, discord, store
    ):
        mapping = await _thread_for(runtime, zammad, state="closed")
        zammad.set_state(100, "open")

        await runtime.ticket_sync.sync_ticket(100)

        assert store.get_thread_by_ticket(100).state == "closed"
        assert discord.threads[mapping.thread_id].locked
        # Only the sync's own fetch, no confirmation read
        assert zammad.point_reads == [100, 100]

    @pytest.mark.asyncio
    async def test_stale_reopen_rejected_by_point_read(
        self, runtime, zammad, discord, store, age_mapping
    ):
        mapping = await _thread_for(runtime, zammad, state="closed")
        age_mapping(100, 600)
        stale = zammad.tickets[100].model_copy(update={"state": "open"})

        await runtime.ticket_sync.sync_ticket(100, ticket=stale)

        assert store.get_thread_by_ticket(100).state == "closed"
        assert discord.threads[mapping.thread_id].locked

    @pytest.mark.asyncio
    async def test_confirmed_reopen_unlocks_and_adds_members(
        self, runtime, zammad, discord, store, age_mapping
    ):
        mapping = await _thread_for(runtime, zammad, state="closed")
        age_mapping(100, 600)
        zammad.set_state(100, "open")

        await runtime.ticket_sync.sync_ticket(100)

        info = discord.threads[mapping.thread_id]
        assert store.get_thread_by_ticket(100).state == "open"
        assert not info.locked and not info.archived
        assert discord.thread_members[mapping.thread_id] == {"u1", "u2"}

    @pytest.mark.asyncio
    async def test_point_read_with_other_closed_variant_updates_state(
        self, runtime, zammad, store, age_mapping
    ):
        await _thread_for(runtime, zammad, state="closed")
        age_mapping(100, 600)
        stale = zammad.tickets[100].model_copy(update={"state": "open"})
        zammad.set_state(100, "merged")

        await runtime.ticket_sync.sync_ticket(100, ticket=stale)

        assert store.get_thread_by_ticket(100).state == "merged"

    @pytest.mark.asyncio
    async def test_customer_reply_notice(self, runtime, zammad, discord):
        mapping = await _thread_for(
            runtime, zammad, state="waiting for reply"
        )
        assert discord.threads[mapping.thread_id].archived
        zammad.set_state(100, "open")

        await runtime.ticket_sync.process_ticket(
            100, article_sender="Customer"
        )

        contents = [
            m["content"] for m in discord.thread_messages(mapping.thread_id)
        ]
        assert CUSTOMER_REPLIED_NOTICE in contents
        assert not discord.threads[mapping.thread_id].archived

    @pytest.mark.asyncio
    async def test_no_notice_for_agent_reopen(self, runtime, zammad, discord):
        mapping = await _thread_for(
            runtime, zammad, state="waiting for reply"
        )
        zammad.set_state(100, "open")

        await runtime.ticket_sync.process_ticket(100, article_sender="Agent")

        assert discord.thread_messages(mapping.thread_id) == []


class TestPresentation:
    @pytest.mark.asyncio
    async def test_title_change_renames_thread(
        self, runtime, zammad, discord, store
    ):
        mapping = await _thread_for(runtime, zammad)
        zammad.tickets[100] = zammad.tickets[100].model_copy(
            update={"title": "Printer fixed"}
        )

        await runtime.ticket_sync.sync_ticket(100)

        assert store.get_thread_by_ticket(100).title == "Printer fixed"
        assert discord.threads[mapping.thread_id].name == (
            "#31001 Printer fixed"
        )
        assert discord.edited_messages[-1]["embeds"][0]["title"] == (
            "#31001 - Printer fixed"
        )

    @pytest.mark.asyncio
    async def test_unchanged_ticket_makes_no_edits(
        self, runtime, zammad, discord
    ):
        await _thread_for(runtime, zammad)
        edits = len(discord.thread_edits)

        await runtime.ticket_sync.sync_ticket(100)

        assert discord.edited_messages == []
        assert len(discord.thread_edits) == edits

    @pytest.mark.asyncio
    async def test_enforce_repairs_drift(self, runtime, zammad, discord):
        mapping = await _thread_for(runtime, zammad)
        discord.thread_members[mapping.thread_id] = set()

        await runtime.ticket_sync.sync_ticket(100, enforce=True)

        assert discord.thread_members[mapping.thread_id] == {"u1", "u2"}


class TestPendingCloseActivity:
    @pytest.mark.asyncio
    async def test_new_article_brings_members_back(
        self, runtime, zammad, discord, store
    ):
        mapping = await _thread_for(runtime, zammad, state="pending close")
        assert discord.thread_members[mapping.thread_id] == set()
        zammad.add_article(100, 1, body="any news?")

        await runtime.ticket_sync.process_ticket(
            100, article_sender="Customer", has_article=True
        )

        assert discord.thread_members[mapping.thread_id] == {"u1", "u2"}
        assert store.get_thread_by_ticket(100).state == "pending close"

    @pytest.mark.asyncio
    async def test_ticket_update_without_article_keeps_thread_hidden(
        self, runtime, zammad, discord
    ):
        mapping = await _thread_for(runtime, zammad, state="pending close")

        await runtime.ticket_sync.process_ticket(100)

        assert discord.thread_members[mapping.thread_id] == set()

    @pytest.mark.asyncio
    async def test_catch_up_enforce_keeps_re_added_members(
        self, runtime, zammad, discord
    ):
        mapping = await _thread_for(runtime, zammad, state="pending close")
        await runtime.ticket_sync.process_ticket(
            100, article_sender="Agent", has_article=True
        )

        await runtime.ticket_sync.sync_ticket(100, enforce=True)

        assert discord.thread_members[mapping.thread_id] == {"u1", "u2"}

    @pytest.mark.asyncio
    async def test_waiting_for_reply_is_not_affected(
        self, runtime, zammad, discord
    ):
        mapping = await _thread_for(
            runtime, zammad, state="waiting for reply"
        )

        await runtime.ticket_sync.process_ticket(
            100, article_sender="Agent", has_article=True
        )

        assert discord.thread_members[mapping.thread_id] == set()
        assert discord.threads[mapping.thread_id].archived
