"""Tests for HybridResolver and the query translation helpers."""

import pytest

from ticket_mirror.core.exceptions import (
    InvalidTableException,
    RepositoryException,
    TicketNotFoundException,
    UpstreamUnavailableException,
    ValidationException,
)
from ticket_mirror.tickets.application import TicketQuery
from ticket_mirror.tickets.application.services import build_local_filter, build_remote_query

from conftest import make_ticket, raw_record, raw_sla


class TestGetById:

    @pytest.mark.asyncio
    async def test_local_hit_skips_remote(self, resolver, writer, remote):
        await writer.write(make_ticket("abc"))

        record = await resolver.get_by_id("incident", "abc")

        assert record.ticket.id == "abc"
        assert remote.fetch_by_id_calls == 0

    @pytest.mark.asyncio
    async def test_remote_answer_is_cached(self, resolver, remote, store):
        remote.add("incident", raw_record("r1"))
        remote.slas["r1"] = [raw_sla("s1")]

        first = await resolver.get_by_id("incident", "r1")
        second = await resolver.get_by_id("incident", "r1")

        assert first.version == 1
        assert [m.id for m in first.slas] == ["s1"]
        assert second.ticket == first.ticket
        assert remote.fetch_by_id_calls == 1
        assert store.documents["r1"]["_version"] == 1

    @pytest.mark.asyncio
    async def test_local_copy_of_other_table_is_not_returned(self, resolver, writer, remote):
        await writer.write(make_ticket("abc"))

        with pytest.raises(TicketNotFoundException):
            await resolver.get_by_id("sc_task", "abc")
        assert remote.fetch_by_id_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_ticket_raises_not_found(self, resolver):
        with pytest.raises(TicketNotFoundException):
            await resolver.get_by_id("incident", "missing")

    @pytest.mark.asyncio
    async def test_remote_failure_on_local_miss(self, resolver, remote):
        remote.fail = True

        with pytest.raises(UpstreamUnavailableException) as exc_info:
            await resolver.get_by_id("incident", "r1")
        assert exc_info.value.retry_after_seconds == 45

    @pytest.mark.asyncio
    async def test_timeout_becomes_upstream_unavailable(self, resolver, remote):
        remote.add("incident", raw_record("r1"))
        remote.delay = 0.2

        with pytest.raises(UpstreamUnavailableException) as exc_info:
            await resolver.get_by_id("incident", "r1", timeout=0.01)
        assert exc_info.value.retry_after_seconds == 30

    @pytest.mark.asyncio
    async def test_unknown_table(self, resolver, remote):
        with pytest.raises(InvalidTableException):
            await resolver.get_by_id("problem", "abc")
        assert remote.fetch_by_id_calls == 0

    @pytest.mark.asyncio
    async def test_local_store_failure_falls_back(self, resolver, remote, store, monkeypatch):
        async def broken(filter):
            raise RepositoryException("database is down")

        monkeypatch.setattr(store, "find_one", broken)
        remote.add("incident", raw_record("r1"))

        record = await resolver.get_by_id("incident", "r1")

        assert record.ticket.id == "r1"
        assert remote.fetch_by_id_calls == 1


class TestQuery:

    @pytest.mark.asyncio
    async def test_empty_local_falls_back_to_remote(self, resolver, remote, store):
        for sys_id in ("r1", "r2", "r3"):
            remote.add("incident", raw_record(sys_id))

        result = await resolver.query("incident", TicketQuery())

        assert result.source == "remote"
        assert result.total == 3
        assert result.has_more is False
        assert [r.version for r in result.data] == [1, 1, 1]
        assert set(store.documents) == {"r1", "r2", "r3"}

    @pytest.mark.asyncio
    async def test_second_query_is_served_locally(self, resolver, remote):
        for sys_id in ("r1", "r2", "r3"):
            remote.add("incident", raw_record(sys_id))
        await resolver.query("incident", TicketQuery())

        result = await resolver.query("incident", TicketQuery())

        assert result.source == "local"
        assert result.total == 3
        assert remote.fetch_by_filter_calls == 1

    @pytest.mark.asyncio
    async def test_local_paging(self, resolver, writer):
        for ticket_id in ("a", "b", "c"):
            await writer.write(make_ticket(ticket_id))

        result = await resolver.query("incident", TicketQuery(page=1, limit=2))

        assert len(result.data) == 2
        assert result.total == 3
        assert result.has_more is True

    @pytest.mark.asyncio
    async def test_remote_failure_degrades_to_empty(self, resolver, remote):
        remote.fail = True

        result = await resolver.query("incident", TicketQuery())

        assert result.data == []
        assert result.total == 0
        assert result.source == "local"

    @pytest.mark.asyncio
    async def test_bad_remote_record_is_skipped(self, resolver, remote):
        remote.add("incident", raw_record("r1"))
        remote.add("incident", {"sys_id": "broken"})

        result = await resolver.query("incident", TicketQuery())

        assert [r.ticket.id for r in result.data] == ["r1"]

    @pytest.mark.asyncio
    async def test_remote_query_carries_filters(self, resolver, remote):
        await resolver.query("incident", TicketQuery(state="active", group="Network"))

        assert remote.last_query == (
            "stateIN1,2,3,18,-5^assignment_group.name=Network^ORDERBYDESCsys_updated_on"
        )

    @pytest.mark.asyncio
    async def test_invalid_state_class(self, resolver):
        with pytest.raises(ValidationException):
            await resolver.query("incident", TicketQuery(state="bogus"))

    @pytest.mark.asyncio
    async def test_invalid_table(self, resolver):
        with pytest.raises(InvalidTableException):
            await resolver.query("problem", TicketQuery())


class TestSyncTicket:

    @pytest.mark.asyncio
    async def test_reports_whether_store_changed(self, resolver, remote):
        remote.add("incident", raw_record("r1", state="2"))
        await resolver.get_by_id("incident", "r1")

        assert await resolver.sync_ticket("incident", "r1") is False

        remote.records["incident"] = [raw_record("r1", state="3")]
        assert await resolver.sync_ticket("incident", "r1") is True

    @pytest.mark.asyncio
    async def test_missing_remote_ticket(self, resolver):
        with pytest.raises(TicketNotFoundException):
            await resolver.sync_ticket("incident", "gone")


class TestQueryTranslation:

    def test_local_filter_single_state(self):
        query = TicketQuery(state="in_progress", group="Network")
        assert build_local_filter("incident", query) == {
            "ticket_type": "incident",
            "state": 2,
            "assignment_group": "Network",
        }

    def test_local_filter_state_class(self):
        assert build_local_filter("sc_task", TicketQuery(state="closed")) == {
            "ticket_type": "sc_task",
            "state": {"$in": [7, 10]},
        }

    def test_remote_query_all(self):
        assert build_remote_query(TicketQuery()) == "ORDERBYDESCsys_updated_on"

    def test_remote_query_single_state(self):
        assert build_remote_query(TicketQuery(state="resolved")) == (
            "state=6^ORDERBYDESCsys_updated_on"
        )
